"""
统计汇总

从请求日志按需计算会话总量和按主机的统计表。只读，不修改图或日志。
"""

from dataclasses import dataclass, field
from typing import Any

from .graph import TrafficGraph
from .models import ServiceDescriptor


@dataclass
class SessionSummary:
    """会话总量"""

    server_count: int = 0  # 不同目标主机数
    request_count: int = 0
    service_count: int = 0  # 不同服务分类数
    total_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "server_count": self.server_count,
            "request_count": self.request_count,
            "service_count": self.service_count,
            "total_bytes": self.total_bytes,
            "data_volume": format_bytes(self.total_bytes),
        }


@dataclass
class HostStats:
    """单个主机的统计"""

    hostname: str
    service: ServiceDescriptor  # 该主机首条记录的识别结果
    count: int = 0
    total_duration_ms: float = 0.0
    total_bytes: int = 0
    source_kinds: list[str] = field(default_factory=list)

    @property
    def mean_duration_ms(self) -> float:
        return self.total_duration_ms / self.count if self.count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostname": self.hostname,
            "service": self.service.to_dict(),
            "count": self.count,
            "mean_duration_ms": round(self.mean_duration_ms, 2),
            "total_bytes": self.total_bytes,
            "source_kinds": list(self.source_kinds),
        }


class StatsAggregator:
    """基于 TrafficGraph 请求日志的统计"""

    def __init__(self, graph: TrafficGraph):
        self.graph = graph

    def summary(self) -> SessionSummary:
        """
        会话总量

        request_count 和 total_bytes 统计日志中的全部记录；
        server_count 和 service_count 只统计有主机名的记录。
        """
        requests = self.graph.requests
        hosts = self.hosts()

        return SessionSummary(
            server_count=len(hosts),
            request_count=len(requests),
            service_count=len({h.service.category for h in hosts}),
            total_bytes=sum(r.transfer_size or 0 for r in requests),
        )

    def hosts(self) -> list[HostStats]:
        """
        按主机统计

        按请求数降序，相同请求数保持首次出现的顺序。
        """
        table: dict[str, HostStats] = {}

        for record in self.graph.requests:
            if not record.hostname:
                continue

            stat = table.get(record.hostname)
            if stat is None:
                stat = HostStats(hostname=record.hostname, service=record.service)
                table[record.hostname] = stat

            stat.count += 1
            stat.total_duration_ms += record.duration_ms
            stat.total_bytes += record.transfer_size or 0
            kind = record.source_kind.value
            if kind not in stat.source_kinds:
                stat.source_kinds.append(kind)

        # sorted 是稳定排序
        return sorted(table.values(), key=lambda s: s.count, reverse=True)

    def domains(self) -> list[str]:
        """按首次出现顺序返回所有目标主机名"""
        seen: dict[str, None] = {}
        for record in self.graph.requests:
            if record.hostname:
                seen.setdefault(record.hostname, None)
        return list(seen)


def format_bytes(num_bytes: float) -> str:
    """格式化字节数，如 1.5 KB"""
    for unit in ["B", "KB", "MB", "GB"]:
        if abs(num_bytes) < 1024:
            return f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024
    return f"{num_bytes:.1f} TB"
