"""
MCP 服务入口

基于 MCP 协议的网络流量可视化服务。
代理在服务进程内运行，流量数据只保存在内存中，通过 monitor_export 导出。
"""

import argparse
import asyncio
import json
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .capture.proxy import DEFAULT_HOST, DEFAULT_PORT, ProxyRunner
from .capture.resource_timing import ResourceTimingBuffer
from .monitor import TrafficMonitor
from .tools import (
    monitor_status,
    monitor_start,
    monitor_stop,
    monitor_reset,
    monitor_export,
    traffic_load_har,
    traffic_graph,
    traffic_stats,
    traffic_list,
)

TOOLS = [
    # 监控控制
    Tool(
        name="monitor_status",
        description="获取监控状态：是否在监控、代理地址、已捕获的请求数。",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="monitor_start",
        description="开始监控。代理未运行时会先启动代理，客户端需要把 HTTP 代理指向返回的地址。",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="monitor_stop",
        description="停止监控。代理继续转发请求，但不再记录。",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="monitor_reset",
        description="清空当前会话的请求、节点和边，只保留客户端节点。",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="monitor_export",
        description="导出当前会话（timestamp, requests, nodes, edges）。指定 path 时写入 JSON 文件，否则直接返回。",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "目标文件或目录（目录下自动生成 network-flow-<时间>.json）",
                },
            },
        },
    ),
    # 流量查询
    Tool(
        name="traffic_graph",
        description="获取流量图：客户端到各目标主机的节点和边（含调用次数和耗时）。",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="traffic_stats",
        description="获取会话统计（服务器数、请求数、服务分类数、数据量）和按主机统计表。",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="traffic_list",
        description="列出捕获的请求，最新在前。支持分页和筛选。",
        inputSchema={
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "description": "返回数量限制，默认 10，最大 50",
                    "default": 10,
                },
                "offset": {
                    "type": "integer",
                    "description": "跳过前 N 条记录，用于分页",
                    "default": 0,
                },
                "filter_domain": {
                    "type": "string",
                    "description": "按主机名筛选，支持通配符（如 *.example.com）",
                },
                "filter_category": {
                    "type": "string",
                    "description": "按服务分类筛选（cdn, analytics, api, database, server 等）",
                },
                "filter_status": {
                    "type": "string",
                    "description": "按状态码筛选（如 200, 4xx, 500-599，0 表示失败）",
                },
            },
        },
    ),
    Tool(
        name="traffic_load_har",
        description="把 HAR 文件中的条目作为被动资源加载导入当前会话。",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "HAR 文件路径",
                },
            },
            "required": ["path"],
        },
    ),
]


def build_server(monitor: TrafficMonitor, runner: ProxyRunner | None = None) -> Server:
    """创建绑定到指定监控会话的 MCP 服务器"""
    server = Server("network-flow-mcp")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出所有可用工具"""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """处理工具调用"""
        result = await dispatch(monitor, runner, name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2, ensure_ascii=False))]

    return server


async def dispatch(
    monitor: TrafficMonitor,
    runner: ProxyRunner | None,
    name: str,
    arguments: dict[str, Any],
) -> dict[str, Any]:
    """按名称调用工具"""
    # 监控控制
    if name == "monitor_status":
        return monitor_status(monitor, runner)
    elif name == "monitor_start":
        return await monitor_start(monitor, runner)
    elif name == "monitor_stop":
        return monitor_stop(monitor)
    elif name == "monitor_reset":
        return monitor_reset(monitor)
    elif name == "monitor_export":
        return monitor_export(monitor, arguments.get("path"))

    # 流量查询
    elif name == "traffic_graph":
        return traffic_graph(monitor)
    elif name == "traffic_stats":
        return traffic_stats(monitor)
    elif name == "traffic_list":
        return traffic_list(
            monitor,
            limit=arguments.get("limit", 10),
            offset=arguments.get("offset", 0),
            filter_domain=arguments.get("filter_domain"),
            filter_category=arguments.get("filter_category"),
            filter_status=arguments.get("filter_status"),
        )
    elif name == "traffic_load_har":
        return traffic_load_har(monitor, arguments["path"])

    return {"error": f"Unknown tool: {name}"}


async def run_server(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
    """运行 MCP 服务器"""
    monitor = TrafficMonitor(timing_feed=ResourceTimingBuffer())
    runner = ProxyRunner(monitor.interceptor.flow_addon(), host=host, port=port)
    server = build_server(monitor, runner)

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        monitor.stop()
        await runner.stop()


def main():
    """入口函数"""
    parser = argparse.ArgumentParser(description="Network Flow MCP 服务")
    parser.add_argument("--host", default=DEFAULT_HOST, help=f"代理监听地址 (默认: {DEFAULT_HOST})")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"代理监听端口 (默认: {DEFAULT_PORT})")
    args = parser.parse_args()

    asyncio.run(run_server(args.host, args.port))


if __name__ == "__main__":
    main()
