"""
被动资源时序

收集绕过拦截接口的资源加载（图片、样式表、脚本等）。
数据来源是一个资源时序 feed：先回放已有条目，再订阅新条目。
"""

import json
from collections import OrderedDict, deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from ..core.models import RequestRecord, SourceKind

DEFAULT_MAX_ENTRIES = 1000


@dataclass(frozen=True)
class ResourceTimingEntry:
    """单条资源时序"""

    name: str  # 资源 URL
    start_time: float  # 开始时间（毫秒）
    duration: float  # 耗时（毫秒）
    transfer_size: int | None = None
    initiator_type: str | None = None  # img, script, css, fetch 等
    response_status: int = 200  # feed 未提供时视为加载成功

    @property
    def key(self) -> tuple[str, float]:
        return (self.name, self.start_time)


EntryBatchCallback = Callable[[list[ResourceTimingEntry]], None]


class Observation(Protocol):
    def disconnect(self) -> None: ...


class ResourceTimingFeed(Protocol):
    """资源时序 feed：可读取已有条目，并按批推送新条目"""

    def get_entries(self) -> list[ResourceTimingEntry]: ...

    def observe(self, callback: EntryBatchCallback) -> Observation: ...


class _BufferObservation:
    def __init__(self, buffer: "ResourceTimingBuffer", callback: EntryBatchCallback):
        self._buffer = buffer
        self._callback = callback

    def disconnect(self) -> None:
        self._buffer._remove_observer(self._callback)


class ResourceTimingBuffer:
    """
    内存中的资源时序 feed

    宿主通过 push() 写入条目，每次 push 作为一批按顺序推送给订阅者。
    超出 max_entries 的最旧条目不再参与回放。
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._entries: deque[ResourceTimingEntry] = deque(maxlen=max_entries)
        self._observers: list[EntryBatchCallback] = []

    def get_entries(self) -> list[ResourceTimingEntry]:
        return list(self._entries)

    def observe(self, callback: EntryBatchCallback) -> _BufferObservation:
        self._observers.append(callback)
        return _BufferObservation(self, callback)

    def _remove_observer(self, callback: EntryBatchCallback) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def push(self, *entries: ResourceTimingEntry) -> None:
        if not entries:
            return
        self._entries.extend(entries)
        batch = list(entries)
        for callback in list(self._observers):
            callback(batch)

    def load_har(self, path: Path | str) -> int:
        """
        从 HAR 文件读取条目并推送

        Returns:
            读取的条目数
        """
        entries = load_har(path)
        self.push(*entries)
        return len(entries)

    def __len__(self) -> int:
        return len(self._entries)


class ResourceTimingCollector:
    """
    资源时序收集器

    start() 回放 feed 中已有条目后订阅新条目，可重复调用。
    已记录的条目按 (name, start_time) 去重，重启不会重复记录。
    去重集合只保留最近 max_seen 个键，与 feed 的回放上限一致。
    feed 不可用时静默跳过被动收集。
    """

    def __init__(
        self,
        feed: ResourceTimingFeed | None,
        emit: Callable[..., RequestRecord | None],
        max_seen: int = DEFAULT_MAX_ENTRIES,
    ):
        """
        Args:
            feed: 资源时序 feed，None 表示平台不支持
            emit: 记录回调，参数同 RequestInterceptor.emit
            max_seen: 去重集合的容量，不应小于 feed 保留的条目数
        """
        self.feed = feed
        self._emit = emit
        self._observation: Observation | None = None
        self._max_seen = max_seen
        self._seen: OrderedDict[tuple[str, float], None] = OrderedDict()

    @property
    def is_observing(self) -> bool:
        return self._observation is not None

    def start(self) -> None:
        if self._observation is not None:
            return

        if self.feed is None:
            logger.info("Resource timing feed unavailable, passive collection disabled")
            return

        try:
            self._observation = self.feed.observe(self.process_batch)
        except NotImplementedError:
            logger.info("Resource timing feed cannot be observed, passive collection disabled")
            return

        self.process_batch(self.feed.get_entries())

    def stop(self) -> None:
        if self._observation is not None:
            self._observation.disconnect()
            self._observation = None

    def process_batch(self, entries: Iterable[ResourceTimingEntry]) -> int:
        """
        按顺序处理一批条目

        Returns:
            新记录的条目数
        """
        recorded = 0
        for entry in entries:
            if entry.key in self._seen:
                continue

            record = self._emit(
                url=entry.name,
                method="GET",
                source_kind=SourceKind.PASSIVE_RESOURCE,
                duration_ms=entry.duration,
                status=entry.response_status,
                transfer_size=entry.transfer_size,
                initiator=entry.initiator_type,
            )
            # 无法解析或监控已停止的条目不计入已见集合
            if record is not None:
                self._remember(entry.key)
                recorded += 1

        return recorded

    def _remember(self, key: tuple[str, float]) -> None:
        self._seen[key] = None
        while len(self._seen) > self._max_seen:
            self._seen.popitem(last=False)


def load_har(path: Path | str) -> list[ResourceTimingEntry]:
    """
    解析 HAR 文件为资源时序条目

    缺少 URL 或时间字段的条目会被跳过。

    Raises:
        FileNotFoundError: 文件不存在
        ValueError: 不是合法的 HAR
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))

    try:
        raw_entries = data["log"]["entries"]
    except (KeyError, TypeError):
        raise ValueError(f"Not a HAR file: {path}") from None

    entries = []
    for raw in raw_entries:
        entry = _har_entry(raw)
        if entry is None:
            logger.debug("Skipping malformed HAR entry")
            continue
        entries.append(entry)
    return entries


def _har_entry(raw: dict[str, Any]) -> ResourceTimingEntry | None:
    try:
        url = raw["request"]["url"]
        started = datetime.fromisoformat(raw["startedDateTime"].replace("Z", "+00:00"))
        duration = float(raw.get("time") or 0)
    except (KeyError, TypeError, ValueError, AttributeError):
        return None

    response = raw.get("response") or {}
    return ResourceTimingEntry(
        name=url,
        start_time=started.timestamp() * 1000,
        duration=max(duration, 0.0),
        transfer_size=_har_transfer_size(response),
        initiator_type=raw.get("_resourceType"),
        response_status=_har_status(response),
    )


def _har_transfer_size(response: dict[str, Any]) -> int | None:
    # Chrome 导出的 HAR 带 _transferSize
    transfer = response.get("_transferSize")
    if isinstance(transfer, int) and transfer >= 0:
        return transfer

    body = response.get("bodySize", -1)
    headers = response.get("headersSize", -1)
    if isinstance(body, int) and body >= 0:
        return body + (headers if isinstance(headers, int) and headers > 0 else 0)
    return None


def _har_status(response: dict[str, Any]) -> int:
    status = response.get("status")
    # HAR 中 0 表示请求未完成
    return status if isinstance(status, int) and status >= 0 else 0
