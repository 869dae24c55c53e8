"""
Network Flow 启动脚本

交互式启动代理并监控经过它的流量，Ctrl+C 停止后打印统计并导出 JSON。
"""

import argparse
import asyncio
import socket
import subprocess
import sys
import time
from pathlib import Path

from loguru import logger

from ..capture.proxy import DEFAULT_HOST, DEFAULT_PORT, ProxyError, ProxyRunner
from ..capture.resource_timing import ResourceTimingBuffer
from ..core.graph import NODE_UPSERTED
from ..core.models import Edge, Node
from ..core.stats import format_bytes
from ..monitor import TrafficMonitor

# 配置 loguru
logger.remove()
logger.add(
    sys.stderr,
    format="<level>{message}</level>",
    level="INFO",
    colorize=True,
)


def get_local_ip() -> str:
    """获取本机局域网 IP"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "127.0.0.1"


def check_port_available(port: int) -> bool:
    """检查端口是否可用"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        s.bind(("0.0.0.0", port))
        s.close()
        return True
    except OSError:
        return False


def kill_port_process(port: int) -> bool:
    """关闭占用指定端口的进程"""
    try:
        result = subprocess.run(
            ["lsof", "-t", "-i", f":{port}"],
            capture_output=True,
            text=True
        )
    except OSError:
        return False

    pids = [pid for pid in result.stdout.strip().split('\n') if pid]
    if not pids:
        return False
    for pid in pids:
        subprocess.run(["kill", "-9", pid], capture_output=True)
    time.sleep(1)
    return check_port_available(port)


def log_new_node(event: str, item: Node | Edge) -> None:
    """新目标主机出现时输出一行"""
    if event == NODE_UPSERTED and isinstance(item, Node):
        logger.opt(colors=True).info(
            f"    <green>+</green> {item.label}  <dim>{item.hostname}</dim>"
        )


def print_summary(monitor: TrafficMonitor) -> None:
    """打印会话统计和按主机统计表"""
    summary = monitor.stats.summary()

    logger.opt(colors=True).info(f"\n<cyan>{'═' * 60}</cyan>")
    logger.opt(colors=True).info("<cyan>  会话统计</cyan>")
    logger.opt(colors=True).info(f"<cyan>{'═' * 60}</cyan>\n")

    logger.info(f"    服务器数: {summary.server_count}")
    logger.info(f"    请求数:   {summary.request_count}")
    logger.info(f"    服务分类: {summary.service_count}")
    logger.info(f"    数据量:   {format_bytes(summary.total_bytes)}")
    logger.info("")

    for stat in monitor.stats.hosts():
        logger.info(
            f"    {stat.service.label:<24} {stat.hostname:<36} "
            f"{stat.count:>5}  {stat.mean_duration_ms:>9.2f}ms  "
            f"{format_bytes(stat.total_bytes):>10}  {', '.join(stat.source_kinds)}"
        )
    logger.info("")


async def run_proxy(monitor: TrafficMonitor, runner: ProxyRunner) -> None:
    """开始监控并运行代理直到退出"""
    monitor.start()
    await runner.run()


def main():
    """主函数"""
    parser = argparse.ArgumentParser(description="Network Flow 启动脚本")
    parser.add_argument("--host", default=DEFAULT_HOST, help=f"监听地址 (默认: {DEFAULT_HOST})")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"监听端口 (默认: {DEFAULT_PORT})")
    parser.add_argument("--export-dir", type=Path, default=Path.cwd(), help="导出目录 (默认: 当前目录)")
    parser.add_argument("--har", type=Path, help="启动前导入的 HAR 文件（作为被动资源加载）")
    args = parser.parse_args()

    # ========== 欢迎界面 ==========
    logger.opt(colors=True).info("<magenta>╔════════════════════════════════════════════════════════════╗</magenta>")
    logger.opt(colors=True).info("<magenta>║            🚀 Network Flow 流量监控                        ║</magenta>")
    logger.opt(colors=True).info("<magenta>╚════════════════════════════════════════════════════════════╝</magenta>")

    # ========== 环境检测 ==========
    logger.opt(colors=True).info(f"\n<cyan>{'═' * 60}</cyan>")
    logger.opt(colors=True).info("<cyan>  环境检测</cyan>")
    logger.opt(colors=True).info(f"<cyan>{'═' * 60}</cyan>\n")

    # 端口检测
    if check_port_available(args.port):
        logger.opt(colors=True).success(f"    ✓ 端口 {args.port} 可用")
    else:
        logger.opt(colors=True).warning(f"    ⚠️  端口 {args.port} 已被占用")
        try:
            answer = input("\n    是否关闭占用该端口的进程？(y/N): ").strip().lower()
            if answer == 'y':
                if kill_port_process(args.port):
                    logger.opt(colors=True).success(f"    ✓ 端口 {args.port} 已释放")
                else:
                    logger.error("    ✗ 无法释放端口")
                    sys.exit(1)
            else:
                sys.exit(1)
        except (EOFError, KeyboardInterrupt):
            sys.exit(1)

    if not args.export_dir.is_dir():
        logger.error(f"    ✗ 导出目录不存在: {args.export_dir}")
        sys.exit(1)

    feed = ResourceTimingBuffer()
    if args.har:
        try:
            loaded = feed.load_har(args.har)
        except (OSError, ValueError) as e:
            logger.error(f"    ✗ 无法读取 HAR: {e}")
            sys.exit(1)
        logger.opt(colors=True).success(f"    ✓ 已导入 {loaded} 条 HAR 记录")

    monitor = TrafficMonitor(timing_feed=feed)
    monitor.graph.subscribe(log_new_node)
    runner = ProxyRunner(monitor.interceptor.flow_addon(), host=args.host, port=args.port)

    local_ip = get_local_ip()

    # ========== 显示配置信息 ==========
    logger.opt(colors=True).info(f"\n<cyan>{'═' * 60}</cyan>")
    logger.opt(colors=True).info("<cyan>  客户端配置</cyan>")
    logger.opt(colors=True).info(f"<cyan>{'═' * 60}</cyan>\n")

    logger.info("    HTTP 代理设置:")
    logger.info("")
    logger.info("       ┌─────────────────────────────────┐")
    logger.opt(colors=True).info(f"       │  服务器: <cyan>{local_ip:^20}</cyan> │")
    logger.opt(colors=True).info(f"       │  端  口: <cyan>{args.port:^20}</cyan> │")
    logger.info("       └─────────────────────────────────┘")
    logger.info("")
    logger.opt(colors=True).info("    证书安装: 客户端浏览器访问 <green>http://mitm.it</green>")
    logger.info("")

    # ========== 启动代理 ==========
    logger.opt(colors=True).info(f"<cyan>{'═' * 60}</cyan>")
    logger.opt(colors=True).info("<cyan>  监控中 (Ctrl+C 停止)</cyan>")
    logger.opt(colors=True).info(f"<cyan>{'═' * 60}</cyan>\n")

    try:
        asyncio.run(run_proxy(monitor, runner))
    except ProxyError as e:
        logger.error(f"    ✗ {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("\n")
        logger.warning("    正在停止监控...")

    monitor.stop()
    print_summary(monitor)

    try:
        path = monitor.export_to_file(args.export_dir)
    except OSError as e:
        logger.error(f"    ✗ 导出失败: {e}")
        sys.exit(1)

    logger.opt(colors=True).success(f"    ✓ 已导出: {path}")
    logger.warning("    ⚠️  记得关闭客户端代理设置!")
    logger.info("")


if __name__ == "__main__":
    main()
