"""mitmproxy addon 测试"""

from unittest.mock import MagicMock

import pytest

from network_flow_mcp.core.models import SourceKind
from network_flow_mcp.monitor import TrafficMonitor

from factories import FakeClock


def create_flow(
    flow_id: str = "flow-1",
    method: str = "GET",
    url: str = "https://api.example.com/v1/users",
    status_code: int = 200,
    content: bytes | None = b'{"ok": true}',
):
    """创建模拟的 HTTPFlow"""
    flow = MagicMock()
    flow.id = flow_id
    flow.request.method = method
    flow.request.pretty_url = url
    flow.request.timestamp_start = 1000.0
    flow.response.status_code = status_code
    flow.response.raw_content = content
    flow.response.timestamp_end = 1000.25
    flow.error = None
    return flow


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(clock):
    monitor = TrafficMonitor(clock=clock)
    monitor.start()
    return monitor


@pytest.fixture
def addon(monitor):
    return monitor.interceptor.flow_addon()


class TestResponse:
    """成功完成测试"""

    def test_records_completed_flow(self, monitor, addon, clock):
        flow = create_flow(method="POST", status_code=201)

        addon.requestheaders(flow)
        clock.advance_ms(80)
        addon.response(flow)

        record = monitor.graph.requests[0]
        assert record.source_kind == SourceKind.EVENT_REQUEST
        assert record.method == "POST"
        assert record.url == "https://api.example.com/v1/users"
        assert record.status == 201
        assert record.duration_ms == pytest.approx(80.0)
        assert record.transfer_size == len(b'{"ok": true}')
        assert addon.pending_count == 0

    def test_non_2xx_keeps_status(self, monitor, addon):
        flow = create_flow(status_code=500)
        addon.requestheaders(flow)
        addon.response(flow)
        assert monitor.graph.requests[0].status == 500

    def test_missing_start_uses_flow_timestamps(self, monitor, addon):
        """addon 中途加载时按 flow 自带时间戳计算耗时"""
        addon.response(create_flow())

        record = monitor.graph.requests[0]
        assert record.duration_ms == pytest.approx(250.0)

    def test_streamed_body_has_no_size(self, monitor, addon):
        flow = create_flow(content=None)
        addon.requestheaders(flow)
        addon.response(flow)
        assert monitor.graph.requests[0].transfer_size is None

    def test_flow_not_modified(self, addon):
        flow = create_flow()
        addon.requestheaders(flow)
        addon.response(flow)

        assert flow.response.status_code == 200
        assert flow.response.raw_content == b'{"ok": true}'
        flow.kill.assert_not_called()
        flow.intercept.assert_not_called()


class TestError:
    """失败测试"""

    def test_error_records_status_zero(self, monitor, addon, clock):
        flow = create_flow(url="https://down.example.com/")
        flow.response = None
        flow.error = MagicMock(msg="Connection refused")

        addon.requestheaders(flow)
        clock.advance_ms(15)
        addon.error(flow)

        record = monitor.graph.requests[0]
        assert record.status == 0
        assert record.error == "Connection refused"
        assert record.duration_ms == pytest.approx(15.0)

    def test_error_without_detail(self, monitor, addon):
        flow = create_flow()
        addon.requestheaders(flow)
        flow.error = None
        addon.error(flow)
        assert monitor.graph.requests[0].error == "Request failed"

    def test_error_after_response_not_double_counted(self, monitor, addon):
        """客户端在收到响应后断开，只记录一次"""
        flow = create_flow()
        addon.requestheaders(flow)
        addon.response(flow)
        flow.error = MagicMock(msg="Client disconnected")
        addon.error(flow)

        assert len(monitor.graph) == 1
        assert monitor.graph.requests[0].status == 200

    def test_unknown_flow_error_ignored(self, monitor, addon):
        flow = create_flow()
        flow.error = MagicMock(msg="boom")
        addon.error(flow)
        assert len(monitor.graph) == 0


class TestConcurrentFlows:
    """并发 flow 测试"""

    def test_flows_tracked_independently(self, monitor, addon, clock):
        first = create_flow("a", url="https://a.example.com/")
        second = create_flow("b", url="https://b.example.com/")

        addon.requestheaders(first)
        clock.advance_ms(10)
        addon.requestheaders(second)
        assert addon.pending_count == 2

        clock.advance_ms(5)
        addon.response(second)
        clock.advance_ms(5)
        addon.response(first)

        durations = {r.hostname: r.duration_ms for r in monitor.graph.requests}
        assert durations["b.example.com"] == pytest.approx(5.0)
        assert durations["a.example.com"] == pytest.approx(20.0)

    def test_not_recorded_when_stopped(self, monitor, addon):
        flow = create_flow()
        addon.requestheaders(flow)
        monitor.stop()
        addon.response(flow)

        assert len(monitor.graph) == 0
        assert addon.pending_count == 0
