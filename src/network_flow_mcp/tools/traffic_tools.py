"""
流量工具

提供流量图、统计表和请求列表查询。
"""

from typing import Any

from ..monitor import TrafficMonitor
from ..utils.url import match_domain, match_status

DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 50


def traffic_graph(monitor: TrafficMonitor) -> dict[str, Any]:
    """
    获取当前流量图

    Returns:
        包含节点和边的字典
    """
    snapshot = monitor.snapshot()
    return {
        "success": True,
        "nodes": [n.to_dict() for n in snapshot.nodes],
        "edges": [e.to_dict() for e in snapshot.edges],
        "node_count": len(snapshot.nodes),
        "edge_count": len(snapshot.edges),
    }


def traffic_stats(monitor: TrafficMonitor) -> dict[str, Any]:
    """
    获取会话统计和按主机统计表

    Returns:
        包含 summary、hosts、domains 的字典
    """
    return {
        "success": True,
        "summary": monitor.stats.summary().to_dict(),
        "hosts": [h.to_dict() for h in monitor.stats.hosts()],
        "domains": monitor.stats.domains(),
    }


def traffic_list(
    monitor: TrafficMonitor,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
    filter_domain: str | None = None,
    filter_category: str | None = None,
    filter_status: str | None = None,
) -> dict[str, Any]:
    """
    列出捕获的请求（最新在前）

    Args:
        monitor: 监控会话
        limit: 返回数量限制，默认 10，最大 50
        offset: 跳过前 N 条记录，用于分页
        filter_domain: 按主机名筛选（支持通配符，如 *.example.com）
        filter_category: 按服务分类筛选（cdn, api, database 等）
        filter_status: 按状态码筛选（如 200, 4xx, 500-599）

    Returns:
        包含请求列表的字典
    """
    try:
        limit = int(limit)
        offset = int(offset)
    except (TypeError, ValueError):
        return {
            "success": False,
            "message": f"无效的分页参数: limit={limit!r}, offset={offset!r}",
        }

    limit = max(0, min(limit, MAX_LIST_LIMIT))
    offset = max(0, offset)

    records = list(reversed(monitor.graph.requests))

    if filter_domain:
        records = [r for r in records if match_domain(r.hostname, filter_domain)]
    if filter_category:
        category = filter_category.strip().lower()
        records = [r for r in records if r.service.category.value == category]
    if filter_status:
        records = [r for r in records if match_status(r.status, filter_status)]

    total = len(records)
    page = records[offset:offset + limit]

    return {
        "success": True,
        "requests": [r.to_dict() for r in page],
        "returned": len(page),
        "offset": offset,
        "total": total,
        "has_more": offset + len(page) < total,
    }
