"""流量监控会话测试"""

import json
import shutil
import tempfile
from pathlib import Path

from network_flow_mcp.capture.resource_timing import ResourceTimingBuffer, ResourceTimingEntry
from network_flow_mcp.core.models import ROOT_NODE_ID, SourceKind
from network_flow_mcp.monitor import TrafficMonitor


class TestLifecycle:
    """生命周期测试"""

    def test_initially_stopped(self):
        monitor = TrafficMonitor()
        assert monitor.is_monitoring is False
        assert monitor.record("https://example.com/") is None
        assert len(monitor.graph) == 0

    def test_start_is_idempotent(self):
        """重复 start 只订阅一次被动 feed，不会重复记录"""
        feed = ResourceTimingBuffer()
        feed.push(ResourceTimingEntry("https://cdn.example.com/a.png", 1.0, 5.0))
        monitor = TrafficMonitor(timing_feed=feed)

        monitor.start()
        monitor.start()

        assert len(feed._observers) == 1
        assert len(monitor.graph) == 1

        feed.push(ResourceTimingEntry("https://cdn.example.com/b.png", 2.0, 5.0))
        assert len(monitor.graph) == 2

    def test_stop_is_idempotent(self):
        monitor = TrafficMonitor(timing_feed=ResourceTimingBuffer())
        monitor.start()
        monitor.stop()
        monitor.stop()
        assert monitor.is_monitoring is False
        assert monitor.collector.is_observing is False

    def test_records_dropped_after_stop(self):
        monitor = TrafficMonitor()
        monitor.start()
        monitor.record("https://example.com/a")
        monitor.stop()
        assert monitor.record("https://example.com/b") is None
        assert len(monitor.graph) == 1

    def test_restart_resumes_recording(self):
        monitor = TrafficMonitor()
        monitor.start()
        monitor.stop()
        monitor.start()
        assert monitor.record("https://example.com/") is not None

    def test_start_without_feed(self):
        """平台不支持被动 feed 时监控照常工作"""
        monitor = TrafficMonitor(timing_feed=None)
        monitor.start()
        assert monitor.collector.is_observing is False
        assert monitor.record("https://example.com/") is not None


class TestRecord:
    """记录生成测试"""

    def setup_method(self):
        self.monitor = TrafficMonitor()
        self.monitor.start()

    def test_record_fields(self):
        record = self.monitor.record(
            "https://Fonts.GoogleApis.com/css2?family=Roboto",
            method="GET",
            source_kind=SourceKind.EVENT_REQUEST,
            duration_ms=12.5,
            status=200,
            transfer_size=2048,
        )

        assert record.id == "req-1"
        assert record.hostname == "fonts.googleapis.com"
        assert record.service.name == "Google Fonts"
        assert record.source_kind == SourceKind.EVENT_REQUEST
        assert record.transfer_size == 2048

    def test_ids_unique_and_sequential(self):
        ids = [self.monitor.record(f"https://h{i}.com/").id for i in range(3)]
        assert ids == ["req-1", "req-2", "req-3"]

    def test_unparsable_url_dropped(self):
        assert self.monitor.record("not a url") is None
        assert self.monitor.record("/relative/path") is None
        assert self.monitor.record("http://example.com:99999/") is None
        assert len(self.monitor.graph) == 0
        assert self.monitor.stats.summary().request_count == 0

    def test_negative_transfer_size_ignored(self):
        record = self.monitor.record("https://example.com/", transfer_size=-1)
        assert record.transfer_size is None

    def test_failure_recorded_with_status_zero(self):
        record = self.monitor.record(
            "https://example.com/", status=0, error="Connection refused"
        )
        assert record.status == 0
        assert record.error == "Connection refused"
        assert self.monitor.graph.get_node("example.com") is not None

    def test_example_session(self):
        """两个主机，三次调用"""
        for url in (
            "https://fonts.googleapis.com/x",
            "https://fonts.googleapis.com/y",
            "https://api.example.com/z",
        ):
            self.monitor.record(url, duration_ms=10.0, status=200)

        snapshot = self.monitor.snapshot()
        destinations = [n for n in snapshot.nodes if n.id != ROOT_NODE_ID]
        assert len(destinations) == 2
        assert sorted(e.count for e in snapshot.edges) == [1, 2]
        assert self.monitor.stats.summary().server_count == 2


class TestReset:
    """重置测试"""

    def test_reset_clears_session(self):
        monitor = TrafficMonitor()
        monitor.start()
        for host in ("a.com", "b.com", "c.com"):
            monitor.record(f"https://{host}/")

        monitor.reset()

        snapshot = monitor.snapshot()
        assert [n.id for n in snapshot.nodes] == [ROOT_NODE_ID]
        assert snapshot.edges == []
        assert snapshot.requests == []

    def test_reset_keeps_monitoring_state(self):
        monitor = TrafficMonitor()
        monitor.start()
        monitor.reset()
        assert monitor.is_monitoring is True
        assert monitor.record("https://example.com/").id == "req-1"

    def test_reset_does_not_replay_passive_entries(self):
        feed = ResourceTimingBuffer()
        feed.push(ResourceTimingEntry("https://cdn.example.com/a.png", 1.0, 5.0))
        monitor = TrafficMonitor(timing_feed=feed)
        monitor.start()
        monitor.reset()
        monitor.stop()
        monitor.start()
        assert len(monitor.graph) == 0


class TestExport:
    """导出测试"""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.monitor = TrafficMonitor()
        self.monitor.start()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_export_empty(self):
        data = self.monitor.export()
        assert data["requests"] == []
        assert len(data["nodes"]) == 1
        assert data["edges"] == []
        assert "timestamp" in data

    def test_export_round_trip_counts(self):
        """导出文件解析后的数量与同一时刻的快照一致"""
        for url in ("https://a.com/1", "https://a.com/2", "https://b.com/", "https://c.com/api/x"):
            self.monitor.record(url, duration_ms=3.0, status=200)

        snapshot = self.monitor.snapshot()
        path = self.monitor.export_to_file(Path(self.temp_dir) / "session.json")
        data = json.loads(path.read_text(encoding="utf-8"))

        assert len(data["requests"]) == len(snapshot.requests) == 4
        assert len(data["nodes"]) == len(snapshot.nodes) == 4
        assert len(data["edges"]) == len(snapshot.edges) == 3

    def test_export_to_directory_generates_name(self):
        self.monitor.record("https://example.com/")
        path = self.monitor.export_to_file(self.temp_dir)

        assert path.parent == Path(self.temp_dir)
        assert path.name.startswith("network-flow-")
        assert path.suffix == ".json"

    def test_export_serializes_enums(self):
        self.monitor.record("https://example.com/api/x", source_kind=SourceKind.PASSIVE_RESOURCE)
        data = json.loads(json.dumps(self.monitor.export()))

        request = data["requests"][0]
        assert request["source_kind"] == "passive-resource"
        assert request["service"]["category"] == "api"
        assert request["service"]["detected_by"] == "path"
        edge = data["edges"][0]
        assert edge["from"] == ROOT_NODE_ID
        assert edge["to"] == "example.com"
