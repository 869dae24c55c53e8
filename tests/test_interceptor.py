"""请求拦截测试"""

import asyncio

import httpx
import pytest

from network_flow_mcp.capture.interceptor import InterceptingTransport
from network_flow_mcp.core.models import SourceKind
from network_flow_mcp.monitor import TrafficMonitor

from factories import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(clock):
    monitor = TrafficMonitor(clock=clock)
    monitor.start()
    return monitor


class TestInterceptingTransport:
    """httpx transport 拦截测试"""

    @pytest.mark.asyncio
    async def test_records_successful_request(self, monitor, clock):
        def handler(request):
            clock.advance_ms(42)
            return httpx.Response(201, content=b"hello")

        async with monitor.interceptor.client(transport=httpx.MockTransport(handler)) as client:
            response = await client.post("https://api.example.com/items")

        assert response.status_code == 201
        assert response.content == b"hello"

        record = monitor.graph.requests[0]
        assert record.method == "POST"
        assert record.url == "https://api.example.com/items"
        assert record.hostname == "api.example.com"
        assert record.status == 201
        assert record.duration_ms == pytest.approx(42.0)
        assert record.transfer_size == 5
        assert record.source_kind == SourceKind.PROMISE_REQUEST

    @pytest.mark.asyncio
    async def test_non_2xx_keeps_status(self, monitor):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        async with monitor.interceptor.client(transport=transport) as client:
            response = await client.get("https://example.com/missing")

        assert response.status_code == 404
        assert monitor.graph.requests[0].status == 404

    @pytest.mark.asyncio
    async def test_failure_recorded_and_reraised(self, monitor, clock):
        def handler(request):
            clock.advance_ms(7)
            raise httpx.ConnectError("Connection refused", request=request)

        async with monitor.interceptor.client(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.ConnectError):
                await client.get("https://down.example.com/")

        record = monitor.graph.requests[0]
        assert record.status == 0
        assert record.error == "Connection refused"
        assert record.duration_ms == pytest.approx(7.0)
        assert monitor.graph.get_node("down.example.com") is not None

    def test_wrap_transport_idempotent(self, monitor):
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        wrapped = monitor.interceptor.wrap_transport(transport)

        assert isinstance(wrapped, InterceptingTransport)
        assert monitor.interceptor.wrap_transport(wrapped) is wrapped

    @pytest.mark.asyncio
    async def test_double_wrapped_records_once(self, monitor):
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        wrapped = monitor.interceptor.wrap_transport(monitor.interceptor.wrap_transport(transport))

        async with httpx.AsyncClient(transport=wrapped) as client:
            await client.get("https://example.com/")

        assert len(monitor.graph) == 1


class TestWrapAsync:
    """协程函数包装测试"""

    @pytest.mark.asyncio
    async def test_default_method_get(self, monitor):
        async def fetch(url, **options):
            return httpx.Response(200)

        wrapped = monitor.interceptor.wrap_async(fetch)
        response = await wrapped("https://example.com/")

        assert response.status_code == 200
        record = monitor.graph.requests[0]
        assert record.method == "GET"
        assert record.status == 200

    @pytest.mark.asyncio
    async def test_method_from_options(self, monitor):
        seen = {}

        async def fetch(url, **options):
            seen.update(options)
            return httpx.Response(204)

        wrapped = monitor.interceptor.wrap_async(fetch)
        await wrapped("https://example.com/x", method="delete", body="{}")

        assert seen == {"method": "delete", "body": "{}"}
        assert monitor.graph.requests[0].method == "DELETE"

    @pytest.mark.asyncio
    async def test_status_attribute_fallback(self, monitor):
        class Reply:
            status = 503

        async def fetch(url, **options):
            return Reply()

        await monitor.interceptor.wrap_async(fetch)("https://example.com/")
        assert monitor.graph.requests[0].status == 503

    @pytest.mark.asyncio
    async def test_exception_reraised_unchanged(self, monitor):
        error = ConnectionError("network unreachable")

        async def fetch(url, **options):
            raise error

        wrapped = monitor.interceptor.wrap_async(fetch)
        with pytest.raises(ConnectionError) as exc_info:
            await wrapped("https://example.com/")

        assert exc_info.value is error
        record = monitor.graph.requests[0]
        assert record.status == 0
        assert record.error == "network unreachable"

    @pytest.mark.asyncio
    async def test_cancellation_recorded(self, monitor):
        started = asyncio.Event()

        async def fetch(url, **options):
            started.set()
            await asyncio.Event().wait()

        task = asyncio.create_task(monitor.interceptor.wrap_async(fetch)("https://slow.example.com/"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        record = monitor.graph.requests[0]
        assert record.status == 0
        assert record.error == "Request cancelled"

    def test_wrap_async_idempotent(self, monitor):
        async def fetch(url, **options):
            return None

        wrapped = monitor.interceptor.wrap_async(fetch)
        assert monitor.interceptor.wrap_async(wrapped) is wrapped
        assert wrapped.__name__ == "fetch"

    @pytest.mark.asyncio
    async def test_call_completing_after_stop_not_recorded(self, monitor):
        """停止后才完成的调用照常返回，但不进入日志"""
        release = asyncio.Event()

        async def fetch(url, **options):
            await release.wait()
            return httpx.Response(200)

        task = asyncio.create_task(monitor.interceptor.wrap_async(fetch)("https://example.com/"))
        await asyncio.sleep(0)
        monitor.stop()
        release.set()
        response = await task

        assert response.status_code == 200
        assert len(monitor.graph) == 0

    @pytest.mark.asyncio
    async def test_unparsable_url_passes_through(self, monitor):
        async def fetch(url, **options):
            return "ok"

        assert await monitor.interceptor.wrap_async(fetch)("relative/path") == "ok"
        assert len(monitor.graph) == 0


class TestEmit:
    """记录回调测试"""

    def test_sink_error_is_swallowed(self, clock):
        from network_flow_mcp.capture.interceptor import RequestInterceptor

        def broken_sink(**kwargs):
            raise RuntimeError("storage full")

        interceptor = RequestInterceptor(broken_sink, clock=clock)
        result = interceptor.emit(
            url="https://example.com/",
            method="GET",
            source_kind=SourceKind.PROMISE_REQUEST,
            duration_ms=1.0,
            status=200,
        )
        assert result is None

    def test_negative_duration_clamped(self, monitor):
        record = monitor.interceptor.emit(
            url="https://example.com/",
            method="GET",
            source_kind=SourceKind.PROMISE_REQUEST,
            duration_ms=-3.0,
            status=200,
        )
        assert record.duration_ms == 0.0

    def test_flow_addon_cached(self, monitor):
        assert monitor.interceptor.flow_addon() is monitor.interceptor.flow_addon()
