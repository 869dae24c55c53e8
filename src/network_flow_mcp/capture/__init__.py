"""流量采集模块"""

from .flow_addon import FlowAddon
from .interceptor import InterceptingTransport, RequestInterceptor
from .proxy import ProxyError, ProxyRunner
from .resource_timing import (
    ResourceTimingBuffer,
    ResourceTimingCollector,
    ResourceTimingEntry,
    ResourceTimingFeed,
    load_har,
)

__all__ = [
    "FlowAddon",
    "InterceptingTransport",
    "RequestInterceptor",
    "ProxyError",
    "ProxyRunner",
    "ResourceTimingBuffer",
    "ResourceTimingCollector",
    "ResourceTimingEntry",
    "ResourceTimingFeed",
    "load_har",
]
