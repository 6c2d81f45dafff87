"""
隧道基础类

本模块定义了客户端代理和服务端代理共享的核心功能，包括：
- 隧道对象：持有一对连接，负责中继和资源清理
- 握手基类：握手任务的统一入口和异常边界

客户端握手和服务端握手通过继承 BaseHandshake，实现各自的握手流程。
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from codec import XorCodec
from config import AgentConfig, AgentMode
from connection import close_writer
from protocol import ProtocolError, RelayError
from .relay import relay_direction

logger = logging.getLogger('socks-relay-tunnel')

_tunnel_ids = itertools.count(1)


class TunnelState(Enum):
    """隧道生命周期状态"""
    UNPAIRED = "unpaired"   # 只有接入的连接
    PAIRED = "paired"       # 出站连接已建立
    RELAYING = "relaying"   # 两个中继方向正在运行
    CLOSED = "closed"       # 两个连接均已关闭


class Tunnel:
    """
    一次客户端会话对应的隧道

    隧道独占持有两条连接：
    - client: 接入的连接（client 模式为 SOCKS5 客户端，server 模式为上游代理）
    - server: 出站的连接（client 模式为上游代理，server 模式为目标地址），
      在出站连接完全建立之前为 None

    Attributes:
        tunnel_id: 隧道编号，仅用于日志
        state: 当前生命周期状态
        bytes_out: client -> server 方向转发的字节数
        bytes_in: server -> client 方向转发的字节数
    """

    def __init__(self, client_reader: asyncio.StreamReader, client_writer: asyncio.StreamWriter,
                 codec: XorCodec, buffer_size: int = 1024, close_on_first_eof: bool = True):
        self.tunnel_id = next(_tunnel_ids)
        self.client_reader = client_reader
        self.client_writer = client_writer
        self.server_reader: Optional[asyncio.StreamReader] = None
        self.server_writer: Optional[asyncio.StreamWriter] = None
        self.codec = codec
        self.buffer_size = buffer_size
        self.close_on_first_eof = close_on_first_eof
        self.state = TunnelState.UNPAIRED
        self.bytes_out = 0
        self.bytes_in = 0

    @property
    def peer(self):
        """接入连接的对端地址"""
        return self.client_writer.get_extra_info('peername')

    @property
    def paired(self) -> bool:
        return self.server_writer is not None

    def pair(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """
        设置已建立的出站连接

        只能在出站连接完全建立之后调用，且每条隧道只能调用一次。
        """
        if self.state is not TunnelState.UNPAIRED:
            raise RelayError(f"隧道 {self.tunnel_id} 状态错误，无法配对: {self.state.value}")
        self.server_reader = reader
        self.server_writer = writer
        self.state = TunnelState.PAIRED

    async def relay(self):
        """
        启动两个中继方向，并等待它们结束

        close_on_first_eof 为 True 时，任一方向结束后立即关闭两条连接，
        使另一个方向的读取随之结束；为 False 时只等待两个方向各自结束。
        """
        if self.state is not TunnelState.PAIRED:
            raise RelayError(f"隧道 {self.tunnel_id} 尚未配对，无法中继")
        self.state = TunnelState.RELAYING

        outbound = asyncio.create_task(relay_direction(
            f"隧道 {self.tunnel_id} outbound", self.client_reader, self.server_writer,
            self.codec, self.buffer_size))
        inbound = asyncio.create_task(relay_direction(
            f"隧道 {self.tunnel_id} inbound", self.server_reader, self.client_writer,
            self.codec, self.buffer_size))
        tasks = (outbound, inbound)

        try:
            if self.close_on_first_eof:
                _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                if pending:
                    logger.debug(f"隧道 {self.tunnel_id} 一个方向已结束，关闭两端连接")
                    await self._close_connections()
            self.bytes_out, self.bytes_in = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _close_connections(self):
        await close_writer(self.client_writer)
        await close_writer(self.server_writer)

    async def close(self):
        """
        关闭隧道持有的所有连接

        握手任务的每条退出路径都会调用这里。可以重复调用。
        """
        if self.state is TunnelState.CLOSED:
            return
        relayed = self.state is TunnelState.RELAYING
        self.state = TunnelState.CLOSED
        await self._close_connections()
        if relayed:
            logger.info(f"隧道 {self.tunnel_id} 已关闭: 发送 {self.bytes_out} 字节, "
                        f"接收 {self.bytes_in} 字节")
        else:
            logger.debug(f"隧道 {self.tunnel_id} 已关闭")


class BaseHandshake(ABC):
    """
    握手基类，包含客户端握手和服务端握手共享的功能

    子类实现 handshake()，完成后隧道必须已经配对。run() 是握手任务的
    异常边界：任何异常都只终止当前隧道，不会影响监听循环和其他隧道。

    Attributes:
        config: 代理配置
        codec: 混淆编解码器
    """

    mode: AgentMode

    def __init__(self, config: AgentConfig, codec: XorCodec):
        self.config = config
        self.codec = codec

    def create_tunnel(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> Tunnel:
        """为接入的连接创建未配对的隧道"""
        return Tunnel(reader, writer, self.codec,
                      buffer_size=self.config.buffer_size,
                      close_on_first_eof=self.config.close_on_first_eof)

    async def read_exactly(self, reader: asyncio.StreamReader, n: int) -> bytes:
        """
        读取恰好 n 个字节

        Raises:
            asyncio.IncompleteReadError: 读满之前连接关闭
            asyncio.TimeoutError: 超过握手超时
        """
        return await asyncio.wait_for(reader.readexactly(n), timeout=self.config.handshake_timeout)

    async def send(self, writer: asyncio.StreamWriter, data: bytes):
        writer.write(data)
        await writer.drain()

    @abstractmethod
    async def handshake(self, tunnel: Tunnel):
        """执行握手并完成隧道配对"""

    async def run(self, tunnel: Tunnel):
        """
        握手任务入口：握手、中继、清理

        Args:
            tunnel: 刚创建的未配对隧道
        """
        try:
            await self.handshake(tunnel)
            await tunnel.relay()
        except ProtocolError as e:
            logger.warning(f"隧道 {tunnel.tunnel_id} 协议错误 {tunnel.peer}: {e}")
        except asyncio.IncompleteReadError as e:
            logger.warning(f"隧道 {tunnel.tunnel_id} 握手期间连接关闭 {tunnel.peer}: "
                           f"已读取 {len(e.partial)}/{e.expected} 字节")
        except asyncio.TimeoutError:
            logger.warning(f"隧道 {tunnel.tunnel_id} 握手超时 {tunnel.peer}")
        except OSError as e:
            logger.warning(f"隧道 {tunnel.tunnel_id} I/O 错误 {tunnel.peer}: {e}")
        except Exception:
            logger.exception(f"隧道 {tunnel.tunnel_id} 意外错误 {tunnel.peer}")
        finally:
            await tunnel.close()
