"""
服务端代理握手模块

本模块实现 server 模式下对每个接入连接执行的握手：读取上游代理发来的
地址交接帧，解码出目标地址，然后连接目标。
"""

import logging

from protocol import parse_handoff_payload, split_address
from config import AgentMode
from connection import open_target
from .base import BaseHandshake, Tunnel

logger = logging.getLogger('socks-relay-server')


class ServerHandshake(BaseHandshake):
    """地址交接帧握手（server 模式）"""

    mode = AgentMode.SERVER

    async def handshake(self, tunnel: Tunnel):
        reader = tunnel.client_reader

        length = (await self.read_exactly(reader, 1))[0]
        payload = await self.read_exactly(reader, length)
        target = parse_handoff_payload(payload, self.codec)
        host, port = split_address(target)
        logger.info(f"握手成功 {tunnel.peer} {target}")

        target_reader, target_writer = await open_target(
            host, port, timeout=self.config.connect_timeout)
        tunnel.pair(target_reader, target_writer)
