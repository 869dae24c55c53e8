"""
请求拦截

包装两类发起请求的接口，在不改变调用方行为的前提下生成 RequestRecord：

- 异步调用：httpx 的 AsyncBaseTransport，或任意 ``async def fetch(url, **options)``
- 事件回调：mitmproxy addon（见 flow_addon.py）

拦截器通过依赖注入安装，不替换任何全局对象。
"""

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from loguru import logger

from ..core.models import RequestRecord, SourceKind
from .flow_addon import FlowAddon

RecordSink = Callable[..., RequestRecord | None]

_WRAPPED_ATTR = "__network_flow_interceptor__"


class RequestInterceptor:
    """
    请求拦截器

    所有包装器共享同一个 sink（通常是 TrafficMonitor.record）。
    sink 决定记录是否保留（如监控已停止时直接丢弃）。
    """

    def __init__(self, sink: RecordSink, clock: Callable[[], float] = time.perf_counter):
        """
        Args:
            sink: 接收记录参数的回调
            clock: 单调时钟（秒），用于计算耗时
        """
        self._sink = sink
        self.clock = clock
        self._addon: FlowAddon | None = None

    def emit(
        self,
        url: str,
        method: str,
        source_kind: SourceKind,
        duration_ms: float,
        status: int,
        transfer_size: int | None = None,
        error: str | None = None,
        initiator: str | None = None,
    ) -> RequestRecord | None:
        """把一次调用交给 sink，sink 的异常不会传给被观测的调用方"""
        try:
            return self._sink(
                url=url,
                method=method,
                source_kind=source_kind,
                duration_ms=max(duration_ms, 0.0),
                status=status,
                transfer_size=transfer_size,
                error=error,
                initiator=initiator,
            )
        except Exception:
            logger.exception(f"Failed to record {method} {url}")
            return None

    def elapsed_ms(self, start: float) -> float:
        return (self.clock() - start) * 1000

    # ============== 异步调用 ==============

    def wrap_transport(self, transport: httpx.AsyncBaseTransport) -> "InterceptingTransport":
        """包装 httpx 异步 transport，同一拦截器重复包装时返回原包装器"""
        if isinstance(transport, InterceptingTransport) and transport.interceptor is self:
            return transport
        return InterceptingTransport(transport, self)

    def client(self, **kwargs: Any) -> httpx.AsyncClient:
        """创建一个经过拦截的 httpx.AsyncClient，参数同 httpx.AsyncClient"""
        transport = kwargs.pop("transport", None) or httpx.AsyncHTTPTransport()
        return httpx.AsyncClient(transport=self.wrap_transport(transport), **kwargs)

    def wrap_async(
        self, func: Callable[..., Awaitable[Any]]
    ) -> Callable[..., Awaitable[Any]]:
        """
        包装 ``async def fetch(url, **options)`` 形式的协程函数

        method 取自 options["method"]，默认 GET；状态码取自返回对象的
        status_code 或 status。调用失败时记录 status=0 并原样抛出异常。
        """
        if getattr(func, _WRAPPED_ATTR, None) is self:
            return func

        @functools.wraps(func)
        async def wrapper(url: Any, *args: Any, **options: Any) -> Any:
            method = str(options.get("method") or "GET").upper()
            start = self.clock()

            try:
                response = await func(url, *args, **options)
            except (Exception, asyncio.CancelledError) as exc:
                self.emit(
                    url=str(url),
                    method=method,
                    source_kind=SourceKind.PROMISE_REQUEST,
                    duration_ms=self.elapsed_ms(start),
                    status=0,
                    error=_error_message(exc),
                )
                raise

            self.emit(
                url=str(url),
                method=method,
                source_kind=SourceKind.PROMISE_REQUEST,
                duration_ms=self.elapsed_ms(start),
                status=_response_status(response),
            )
            return response

        setattr(wrapper, _WRAPPED_ATTR, self)
        return wrapper

    # ============== 事件回调 ==============

    def flow_addon(self) -> FlowAddon:
        """返回绑定到本拦截器的 mitmproxy addon（每个拦截器只有一个）"""
        if self._addon is None:
            self._addon = FlowAddon(self)
        return self._addon


class InterceptingTransport(httpx.AsyncBaseTransport):
    """
    记录每次请求的 httpx transport

    耗时从发起到收到响应头（或失败）为止。
    """

    def __init__(self, transport: httpx.AsyncBaseTransport, interceptor: RequestInterceptor):
        self.transport = transport
        self.interceptor = interceptor

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        interceptor = self.interceptor
        url = str(request.url)
        start = interceptor.clock()

        try:
            response = await self.transport.handle_async_request(request)
        except (Exception, asyncio.CancelledError) as exc:
            interceptor.emit(
                url=url,
                method=request.method,
                source_kind=SourceKind.PROMISE_REQUEST,
                duration_ms=interceptor.elapsed_ms(start),
                status=0,
                error=_error_message(exc),
            )
            raise

        interceptor.emit(
            url=url,
            method=request.method,
            source_kind=SourceKind.PROMISE_REQUEST,
            duration_ms=interceptor.elapsed_ms(start),
            status=response.status_code,
            transfer_size=_content_length(response.headers),
        )
        return response

    async def aclose(self) -> None:
        await self.transport.aclose()


def _response_status(response: Any) -> int:
    for attr in ("status_code", "status"):
        value = getattr(response, attr, None)
        if isinstance(value, int):
            return value
    return 0


def _content_length(headers: httpx.Headers) -> int | None:
    value = headers.get("content-length")
    if value and value.isdigit():
        return int(value)
    return None


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, asyncio.CancelledError):
        return "Request cancelled"
    return str(exc) or type(exc).__name__
