"""MCP 工具模块"""

from .monitor_tools import (
    monitor_status,
    monitor_start,
    monitor_stop,
    monitor_reset,
    monitor_export,
    traffic_load_har,
)
from .traffic_tools import (
    traffic_graph,
    traffic_stats,
    traffic_list,
)

__all__ = [
    # Monitor tools
    "monitor_status",
    "monitor_start",
    "monitor_stop",
    "monitor_reset",
    "monitor_export",
    "traffic_load_har",
    # Traffic tools
    "traffic_graph",
    "traffic_stats",
    "traffic_list",
]
