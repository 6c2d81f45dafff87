"""
客户端代理握手模块

本模块实现 client 模式下对每个接入连接执行的握手：

1. 问候阶段 - 只接受 05 01 00（版本 5，无认证）
2. 请求阶段 - 只接受 CONNECT，地址类型只支持 IPv4 和域名
3. 应答阶段 - 原样回显请求中的地址类型和地址字节
4. 连接上游代理，发送混淆后的地址交接帧
"""

import asyncio
import logging
from typing import Tuple

from protocol import (
    SOCKS5, GREETING, GREETING_REPLY, REQUEST_HEADER_SIZE, IPV4_ADDRESS_SIZE,
    ProtocolError, check_greeting, parse_request_header,
    format_ipv4_address, format_domain_address, make_reply, make_handoff_frame,
)
from config import AgentMode
from connection import open_target
from .base import BaseHandshake, Tunnel

logger = logging.getLogger('socks-relay-client')


class ClientHandshake(BaseHandshake):
    """
    SOCKS5 握手（client 模式）

    握手成功后隧道的 server 端是到上游代理的连接，上游代理从交接帧中
    得知真正的目标地址。
    """

    mode = AgentMode.CLIENT

    def __init__(self, config, codec):
        super().__init__(config, codec)
        self.upstream_host, self.upstream_port = config.upstream_address

    async def handshake(self, tunnel: Tunnel):
        reader, writer = tunnel.client_reader, tunnel.client_writer

        # 问候
        check_greeting(await self.read_exactly(reader, len(GREETING)))
        await self.send(writer, GREETING_REPLY)

        # 请求
        header = await self.read_exactly(reader, REQUEST_HEADER_SIZE)
        _, cmd, atyp = parse_request_header(header)
        if cmd != SOCKS5.CMD_CONNECT:
            await self.send(writer, make_reply(SOCKS5.REP_CMD_NOT_SUPPORTED))
            raise ProtocolError(f"不支持的命令: {SOCKS5.command_name(cmd)}")

        address_field, target = await self._read_address(reader, writer, atyp)

        try:
            frame = make_handoff_frame(target, self.codec)
        except ProtocolError:
            await self.send(writer, make_reply(SOCKS5.REP_FAILURE))
            raise

        # 应答原样回显请求地址
        await self.send(writer, make_reply(SOCKS5.REP_SUCCESS, atyp, address_field))
        logger.info(f"握手成功 {tunnel.peer} {target}")

        up_reader, up_writer = await open_target(
            self.upstream_host, self.upstream_port, timeout=self.config.connect_timeout)
        tunnel.pair(up_reader, up_writer)

        await self.send(up_writer, frame)

    async def _read_address(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                            atyp: int) -> Tuple[bytes, str]:
        """
        读取请求中的地址字段

        Returns:
            tuple: (应答中回显的地址字节, "host:port" 文本)
        """
        if atyp == SOCKS5.ATYP_IPV4:
            field = await self.read_exactly(reader, IPV4_ADDRESS_SIZE)
            return field, format_ipv4_address(field)

        if atyp == SOCKS5.ATYP_DOMAIN:
            length = await self.read_exactly(reader, 1)
            rest = await self.read_exactly(reader, length[0] + 2)
            return length + rest, format_domain_address(rest)

        await self.send(writer, make_reply(SOCKS5.REP_ATYP_NOT_SUPPORTED))
        raise ProtocolError(f"不支持的地址类型: {SOCKS5.address_type_name(atyp)}")
