"""核心模块"""

from .models import (
    ROOT_NODE_ID,
    DetectedBy,
    Edge,
    Node,
    RequestRecord,
    ServiceCategory,
    ServiceDescriptor,
    SourceKind,
)
from .classifier import ServiceClassifier, classify
from .graph import EDGE_UPSERTED, GRAPH_RESET, NODE_UPSERTED, GraphSnapshot, TrafficGraph
from .stats import HostStats, SessionSummary, StatsAggregator

__all__ = [
    "ROOT_NODE_ID",
    "DetectedBy",
    "Edge",
    "Node",
    "RequestRecord",
    "ServiceCategory",
    "ServiceDescriptor",
    "SourceKind",
    "ServiceClassifier",
    "classify",
    "EDGE_UPSERTED",
    "GRAPH_RESET",
    "NODE_UPSERTED",
    "GraphSnapshot",
    "TrafficGraph",
    "HostStats",
    "SessionSummary",
    "StatsAggregator",
]
