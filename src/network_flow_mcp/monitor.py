"""
流量监控器

一个 TrafficMonitor 实例就是一次监控会话的全部状态：
请求日志、流量图、统计，以及挂在其上的拦截器和被动收集器。
"""

import itertools
import json
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from .capture.interceptor import RequestInterceptor
from .capture.resource_timing import ResourceTimingCollector, ResourceTimingFeed
from .core.classifier import ServiceClassifier
from .core.graph import GraphSnapshot, TrafficGraph
from .core.models import RequestRecord, SourceKind
from .core.stats import StatsAggregator
from .utils.url import parse_url

EXPORT_FILENAME_PREFIX = "network-flow-"


class TrafficMonitor:
    """
    流量监控会话

    - start() / stop() / reset() 均可重复调用
    - 停止后完成的请求不会进入日志，但被观测的调用本身不受影响
    - 无法解析的 URL 在生成记录前被丢弃
    """

    def __init__(
        self,
        timing_feed: ResourceTimingFeed | None = None,
        classifier: ServiceClassifier | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Args:
            timing_feed: 被动资源时序 feed，None 表示不收集
            classifier: 服务识别器，默认使用内置规则表
            clock: 单调时钟，用于计算请求耗时
        """
        self.classifier = classifier or ServiceClassifier()
        self.graph = TrafficGraph()
        self.stats = StatsAggregator(self.graph)
        self.interceptor = RequestInterceptor(self.record, clock=clock)
        self.collector = ResourceTimingCollector(timing_feed, self.interceptor.emit)
        self._monitoring = False
        self._ids = itertools.count(1)

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    # ============== 生命周期 ==============

    def start(self) -> None:
        if self._monitoring:
            return

        self._monitoring = True
        # 先打开开关，回放的被动条目才会被记录
        self.collector.start()
        logger.info("Network monitoring started")

    def stop(self) -> None:
        if not self._monitoring:
            return

        self._monitoring = False
        self.collector.stop()
        logger.info(f"Network monitoring stopped, {len(self.graph)} requests captured")

    def reset(self) -> None:
        """清空本次会话的日志、节点和边"""
        count = len(self.graph)
        self.graph.reset()
        self._ids = itertools.count(1)
        logger.info(f"Cleared {count} requests")

    # ============== 记录 ==============

    def record(
        self,
        url: str,
        method: str = "GET",
        source_kind: SourceKind = SourceKind.PROMISE_REQUEST,
        duration_ms: float = 0.0,
        status: int = 0,
        transfer_size: int | None = None,
        error: str | None = None,
        initiator: str | None = None,
    ) -> RequestRecord | None:
        """
        生成一条记录并写入流量图

        Returns:
            新记录；监控未开启或 URL 无法解析时返回 None
        """
        if not self._monitoring:
            return None

        parsed = parse_url(url)
        if parsed is None:
            logger.debug(f"Dropping request with unparsable URL: {url!r}")
            return None

        record = RequestRecord(
            id=f"req-{next(self._ids)}",
            timestamp=time.time(),
            url=url,
            hostname=parsed.hostname,
            method=method or "GET",
            source_kind=source_kind,
            duration_ms=duration_ms,
            status=status,
            service=self.classifier.classify(parsed),
            transfer_size=transfer_size if transfer_size is None or transfer_size >= 0 else None,
            error=error,
            initiator=initiator,
        )
        self.graph.ingest(record)

        logger.debug(
            f"[{record.id}] {record.method} {url[:80]} -> {record.status} "
            f"({record.duration_ms:.1f}ms, {record.service.name})"
        )
        return record

    # ============== 查询 / 导出 ==============

    def snapshot(self) -> GraphSnapshot:
        return self.graph.snapshot()

    def export(self) -> dict[str, Any]:
        """
        导出当前会话

        Returns:
            {timestamp, requests, nodes, edges}，可直接 JSON 序列化
        """
        snapshot = self.snapshot()
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "requests": [r.to_dict() for r in snapshot.requests],
            "nodes": [n.to_dict() for n in snapshot.nodes],
            "edges": [e.to_dict() for e in snapshot.edges],
        }

    def export_to_file(self, target: Path | str) -> Path:
        """
        导出到 JSON 文件

        Args:
            target: 文件路径；如果是已存在的目录，则在其中生成
                network-flow-<时间>.json

        Returns:
            写入的文件路径
        """
        path = Path(target)
        if path.is_dir():
            stamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
            path = path / f"{EXPORT_FILENAME_PREFIX}{stamp}.json"

        data = self.export()
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info(f"Exported {len(data['requests'])} requests to {path}")
        return path
