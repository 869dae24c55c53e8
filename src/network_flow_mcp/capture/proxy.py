"""
代理运行器

在当前 asyncio 事件循环中运行 mitmproxy（DumpMaster），并挂载 FlowAddon。
"""

import asyncio

from loguru import logger
from mitmproxy.options import Options
from mitmproxy.tools.dump import DumpMaster

from .flow_addon import FlowAddon

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8288


class ProxyError(Exception):
    """代理启动或运行失败"""


class ProxyRunner:
    """
    进程内的 mitmproxy 代理

    start() 在端口监听成功后才返回，监听失败抛出 ProxyError。
    stop() 只关闭代理本身；正在进行的请求由 mitmproxy 负责收尾。
    """

    def __init__(self, addon: FlowAddon, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
        self.addon = addon
        self.host = host
        self.port = port
        self._master: DumpMaster | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """在后台启动代理，已运行时不做任何事"""
        if self.is_running:
            return

        options = Options(listen_host=self.host, listen_port=self.port)
        try:
            master = DumpMaster(options, with_termlog=False, with_dumper=False)
            # errorcheck 在启动出错时直接 sys.exit，会连带结束宿主进程
            errorcheck = master.addons.get("errorcheck")
            if errorcheck is not None:
                master.addons.remove(errorcheck)
                errorcheck.finish()
            master.addons.add(self.addon)
        except Exception as e:
            raise ProxyError(f"Failed to create proxy: {e}") from e

        # 先在这里完成监听，master.run() 中的同一步骤随后变为空操作
        proxyserver = master.addons.get("proxyserver")
        if not await proxyserver.setup_servers():
            await master.done()
            raise ProxyError(f"Proxy failed to listen on {self.host}:{self.port}: {_listen_error(proxyserver)}")

        self._master = master
        self._task = asyncio.create_task(self._serve(master))
        logger.info(f"Proxy listening on {self.host}:{self.port}")

    async def run(self) -> None:
        """启动代理并阻塞直到代理退出"""
        await self.start()
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        """关闭代理，未启动时不做任何事"""
        if self._master is None:
            return

        self._master.shutdown()
        task = self._task
        self._master = None
        self._task = None

        if task is not None:
            await task
        logger.info("Proxy stopped")

    @staticmethod
    async def _serve(master: DumpMaster) -> None:
        try:
            await master.run()
        except (Exception, SystemExit) as e:
            logger.error(f"Proxy stopped unexpectedly: {e}")
            raise ProxyError(f"Proxy stopped unexpectedly: {e}") from e


def _listen_error(proxyserver) -> str:
    errors = [str(s.last_exception) for s in proxyserver.servers if s.last_exception is not None]
    return "; ".join(errors) or "unknown error"
