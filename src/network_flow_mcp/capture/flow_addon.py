"""
mitmproxy addon

以事件方式观测经过代理的请求：
- requestheaders: 发起阶段，记录方法、URL 和开始时间
- response: 成功完成
- error: 失败（连接错误、客户端中断等），status 记为 0

addon 只读取 HTTPFlow，不做任何修改，代理行为保持不变。
"""

from typing import TYPE_CHECKING

from mitmproxy import http

from ..core.models import SourceKind

if TYPE_CHECKING:
    from .interceptor import RequestInterceptor


class FlowAddon:
    """把 mitmproxy 的 flow 事件转换为请求记录"""

    def __init__(self, interceptor: "RequestInterceptor"):
        self.interceptor = interceptor
        # flow.id -> (开始时间, 方法, URL)
        self._pending: dict[str, tuple[float, str, str]] = {}

    @property
    def pending_count(self) -> int:
        """尚未完成的请求数"""
        return len(self._pending)

    def requestheaders(self, flow: http.HTTPFlow) -> None:
        request = flow.request
        self._pending[flow.id] = (
            self.interceptor.clock(),
            request.method,
            request.pretty_url,
        )

    def response(self, flow: http.HTTPFlow) -> None:
        started = self._pending.pop(flow.id, None)
        response = flow.response
        if response is None:
            return

        if started is not None:
            start, method, url = started
            duration_ms = self.interceptor.elapsed_ms(start)
        else:
            # addon 在请求中途加载，退回使用 mitmproxy 自带的时间戳
            method = flow.request.method
            url = flow.request.pretty_url
            duration_ms = _flow_duration_ms(flow)

        content = response.raw_content
        self.interceptor.emit(
            url=url,
            method=method,
            source_kind=SourceKind.EVENT_REQUEST,
            duration_ms=duration_ms,
            status=response.status_code,
            transfer_size=len(content) if content is not None else None,
        )

    def error(self, flow: http.HTTPFlow) -> None:
        started = self._pending.pop(flow.id, None)
        if started is None:
            # 已经通过 response 记录过，或从未见过该请求
            return

        start, method, url = started
        self.interceptor.emit(
            url=url,
            method=method,
            source_kind=SourceKind.EVENT_REQUEST,
            duration_ms=self.interceptor.elapsed_ms(start),
            status=0,
            error=str(flow.error.msg) if flow.error else "Request failed",
        )


def _flow_duration_ms(flow: http.HTTPFlow) -> float:
    request = flow.request
    response = flow.response
    if response is not None and response.timestamp_end and request.timestamp_start:
        return (response.timestamp_end - request.timestamp_start) * 1000
    return 0.0
