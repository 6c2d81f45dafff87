"""
SOCKS 中继代理 - 连接分发模块

在监听地址上接受连接，为每个连接创建隧道，并按运行模式执行
客户端握手或服务端握手。运行模式在启动时确定，进程生命周期内不变。
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple, Type

from codec import XorCodec
from config import AgentConfig, AgentMode
from tunnel import BaseHandshake, ClientHandshake, ServerHandshake

logger = logging.getLogger('socks-relay-dispatcher')


HANDSHAKES: Dict[AgentMode, Type[BaseHandshake]] = {
    handshake.mode: handshake for handshake in (ClientHandshake, ServerHandshake)
}


class AgentServer:
    """
    中继代理服务端

    监听本地地址，接受连接后在独立任务中执行握手和中继，不阻塞监听循环。
    使用信号量限制并发隧道数。

    Attributes:
        config: 代理配置
        codec: 混淆编解码器，所有隧道共享
        handshake: 当前运行模式对应的握手实例
        active_tunnels: 当前活跃隧道数
        total_tunnels: 累计接受的连接数
    """

    def __init__(self, config: AgentConfig):
        config.validate()
        self.config = config
        self.codec = XorCodec(config.key)
        self.handshake = HANDSHAKES[config.mode](config, self.codec)
        self.connection_semaphore = asyncio.Semaphore(config.max_connections)
        self.active_tunnels = 0
        self.total_tunnels = 0
        self._server: Optional[asyncio.AbstractServer] = None

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """
        处理一个接入连接

        Args:
            reader: 接入连接读取流
            writer: 接入连接写入流
        """
        async with self.connection_semaphore:
            tunnel = self.handshake.create_tunnel(reader, writer)
            self.active_tunnels += 1
            self.total_tunnels += 1
            logger.debug(f"接受连接 {tunnel.peer} -> 隧道 {tunnel.tunnel_id}, "
                         f"活跃隧道数: {self.active_tunnels}/{self.config.max_connections}")
            try:
                await self.handshake.run(tunnel)
            finally:
                self.active_tunnels -= 1

    async def start(self) -> asyncio.AbstractServer:
        """
        绑定监听地址

        Raises:
            OSError: 监听失败
        """
        host, port = self.config.listen_address
        self._server = await asyncio.start_server(self.handle_client, host or None, port)
        logger.info(f"运行模式 {self.config.mode.value}，监听 {self.format_address(self.address)}")
        if self.config.mode is AgentMode.CLIENT:
            logger.info(f"上游代理: {self.config.upstream}")
        return self._server

    @property
    def address(self) -> Optional[Tuple]:
        """实际监听地址（端口为 0 时由系统分配）"""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()

    @staticmethod
    def format_address(address) -> str:
        if not address:
            return '-'
        return f"{address[0]}:{address[1]}"

    async def serve_forever(self):
        """启动并持续运行，直到被取消"""
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def stop(self, timeout: float = 5.0):
        """
        停止监听

        新版本 Python 的 wait_closed 会等待所有已接入连接结束，
        超过 timeout 后不再等待，剩余隧道随事件循环关闭。
        """
        if self._server is None:
            return
        self._server.close()
        try:
            await asyncio.wait_for(self._server.wait_closed(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"等待连接关闭超时，仍有 {self.active_tunnels} 条活跃隧道")
        logger.info(f"已停止监听，累计连接数: {self.total_tunnels}")
