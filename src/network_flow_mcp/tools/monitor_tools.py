"""
监控控制工具

start / stop / reset / export，以及向被动 feed 导入 HAR。
"""

from pathlib import Path
from typing import Any

from ..capture.proxy import ProxyError, ProxyRunner
from ..capture.resource_timing import ResourceTimingBuffer
from ..monitor import TrafficMonitor


def monitor_status(monitor: TrafficMonitor, runner: ProxyRunner | None = None) -> dict[str, Any]:
    """
    获取监控状态

    Returns:
        监控和代理状态信息
    """
    summary = monitor.stats.summary()
    status: dict[str, Any] = {
        "monitoring": monitor.is_monitoring,
        "passive_collection": monitor.collector.is_observing,
        "request_count": summary.request_count,
        "server_count": summary.server_count,
    }
    if runner is not None:
        status["proxy"] = {
            "running": runner.is_running,
            "address": f"{runner.host}:{runner.port}",
        }
    return status


async def monitor_start(monitor: TrafficMonitor, runner: ProxyRunner | None = None) -> dict[str, Any]:
    """
    开始监控，需要时先启动代理

    Returns:
        包含启动状态的字典
    """
    if runner is not None and not runner.is_running:
        try:
            await runner.start()
        except ProxyError as e:
            return {
                "success": False,
                "message": f"代理启动失败: {e}",
            }

    already = monitor.is_monitoring
    monitor.start()

    result: dict[str, Any] = {
        "success": True,
        "message": "监控已在运行" if already else "监控已开始",
        "monitoring": True,
    }
    if runner is not None:
        result["proxy_address"] = f"{runner.host}:{runner.port}"
    return result


def monitor_stop(monitor: TrafficMonitor) -> dict[str, Any]:
    """
    停止监控（代理继续转发，只是不再记录）

    Returns:
        包含停止状态的字典
    """
    was_monitoring = monitor.is_monitoring
    monitor.stop()
    return {
        "success": True,
        "message": "监控已停止" if was_monitoring else "监控未在运行",
        "monitoring": False,
        "request_count": len(monitor.graph),
    }


def monitor_reset(monitor: TrafficMonitor) -> dict[str, Any]:
    """
    清空当前会话

    Returns:
        包含清空数量的字典
    """
    count = len(monitor.graph)
    monitor.reset()
    return {
        "success": True,
        "message": f"Cleared {count} requests",
        "cleared_count": count,
    }


def monitor_export(monitor: TrafficMonitor, path: str | None = None) -> dict[str, Any]:
    """
    导出当前会话

    Args:
        monitor: 监控会话
        path: 目标文件或目录；为空时直接返回导出内容

    Returns:
        包含导出内容或文件路径的字典
    """
    if not path:
        return {
            "success": True,
            "export": monitor.export(),
        }

    try:
        written = monitor.export_to_file(Path(path).expanduser())
    except OSError as e:
        return {
            "success": False,
            "message": f"导出失败: {e}",
        }

    return {
        "success": True,
        "path": str(written),
        "request_count": len(monitor.graph),
    }


def traffic_load_har(monitor: TrafficMonitor, path: str) -> dict[str, Any]:
    """
    把 HAR 文件中的条目推送到被动资源 feed

    监控未开启时条目只进入 feed，下次 start() 时回放。

    Returns:
        包含导入数量的字典
    """
    feed = monitor.collector.feed
    if not isinstance(feed, ResourceTimingBuffer):
        return {
            "success": False,
            "message": "当前会话没有可写入的资源时序 feed",
        }

    before = len(monitor.graph)
    try:
        loaded = feed.load_har(Path(path).expanduser())
    except FileNotFoundError:
        return {
            "success": False,
            "message": f"文件不存在: {path}",
        }
    except OSError as e:
        return {
            "success": False,
            "message": f"读取失败: {e}",
        }
    except ValueError as e:
        return {
            "success": False,
            "message": f"无效的 HAR 文件: {e}",
        }

    return {
        "success": True,
        "loaded": loaded,
        "recorded": len(monitor.graph) - before,
    }
