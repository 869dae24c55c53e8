"""
数据模型定义

定义请求记录、服务识别结果以及流量图的节点与边。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

# 客户端根节点（会话期间始终存在）
ROOT_NODE_ID = "@client"  # "@" 不会出现在解析后的主机名中
ROOT_NODE_LABEL = "Client"
ROOT_NODE_CATEGORY = "client"
ROOT_NODE_COLOR = "#4CAF50"


class SourceKind(str, Enum):
    """请求来源"""

    PROMISE_REQUEST = "promise-request"  # 异步调用（httpx transport / 协程函数）
    EVENT_REQUEST = "event-request"  # 事件回调（mitmproxy addon）
    PASSIVE_RESOURCE = "passive-resource"  # 被动资源时序


class ServiceCategory(str, Enum):
    """服务分类"""

    CDN = "cdn"
    ANALYTICS = "analytics"
    ADVERTISING = "advertising"
    FONT = "font"
    MEDIA = "media"
    SOCIAL = "social"
    DATABASE = "database"
    API = "api"
    CLOUD = "cloud"
    AUTH = "auth"
    FIREWALL = "firewall"
    LOADBALANCER = "loadbalancer"
    MONITORING = "monitoring"
    PAYMENT = "payment"
    EMAIL = "email"
    SERVER = "server"


class DetectedBy(str, Enum):
    """命中的识别规则"""

    DOMAIN = "domain"
    PORT = "port"
    PATH = "path"
    DEFAULT = "default"


@dataclass(frozen=True)
class ServiceDescriptor:
    """服务识别结果"""

    name: str
    category: ServiceCategory
    icon: str
    detected_by: DetectedBy

    @property
    def label(self) -> str:
        return f"{self.icon} {self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category.value,
            "icon": self.icon,
            "detected_by": self.detected_by.value,
        }


@dataclass(frozen=True)
class RequestRecord:
    """
    单条请求记录

    创建后不可修改，按捕获顺序追加到请求日志。
    """

    # 基础标识
    id: str
    timestamp: float  # Unix 时间戳（秒）

    # 请求信息
    url: str
    hostname: str
    method: str
    source_kind: SourceKind

    # 结果
    duration_ms: float
    status: int  # 0 表示传输层失败
    service: ServiceDescriptor

    # 可选信息
    transfer_size: int | None = None
    error: str | None = None
    initiator: str | None = None  # 被动资源的发起类型: img, script, css 等

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "url": self.url,
            "hostname": self.hostname,
            "method": self.method,
            "source_kind": self.source_kind.value,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "transfer_size": self.transfer_size,
            "error": self.error,
            "initiator": self.initiator,
            "service": self.service.to_dict(),
        }


@dataclass(frozen=True)
class Node:
    """流量图节点，每个目标主机一个"""

    id: str
    label: str
    category: str
    color: str
    hostname: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "category": self.category,
            "color": self.color,
            "hostname": self.hostname,
        }


@dataclass
class Edge:
    """
    流量图的边

    同一 (source, target) 的所有调用聚合在一条边上，原地更新。
    """

    id: str
    source: str
    target: str
    last_method: str
    count: int = 1
    last_duration_ms: float = 0.0
    total_duration_ms: float = 0.0

    @property
    def mean_duration_ms(self) -> float:
        return self.total_duration_ms / self.count if self.count else 0.0

    @property
    def label(self) -> str:
        return f"{self.last_method} ({self.count})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from": self.source,
            "to": self.target,
            "label": self.label,
            "last_method": self.last_method,
            "count": self.count,
            "last_duration_ms": self.last_duration_ms,
            "total_duration_ms": self.total_duration_ms,
            "mean_duration_ms": self.mean_duration_ms,
        }
