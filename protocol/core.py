"""
SOCKS 中继代理 - 协议定义
定义客户端侧的 SOCKS5 子集，以及两个代理之间的地址交接帧。

版本: 1.0.0

功能概述:
本模块只负责字节格式：常量、编码、解码和校验，不做任何网络 I/O。
握手状态机（tunnel.client / tunnel.server）基于这里的函数实现。

SOCKS5 请求格式（客户端 -> 客户端代理）:
┌─────────┬────────┬────────┬──────────┬──────────────┬────────────┐
│ 版本    │ 命令   │ 保留   │ 地址类型 │   目标地址   │  目标端口  │
│ 1 字节  │ 1 字节 │ 1 字节 │  1 字节  │   可变长度   │   2 字节   │
└─────────┴────────┴────────┴──────────┴──────────────┴────────────┘

地址交接帧格式（客户端代理 -> 服务端代理）:
┌──────────┬─────────────────────────────┐
│ 长度 L   │  混淆后的 "host:port" 文本  │
│ 1 字节   │          L 字节             │
└──────────┴─────────────────────────────┘

所有多字节字段使用大端序（网络字节序）。
"""

import struct
from typing import Tuple

from codec import XorCodec


# ============================================================================
# 异常定义
# ============================================================================

class RelayError(Exception):
    """中继代理异常基类"""


class ProtocolError(RelayError):
    """
    握手协议错误

    握手字节格式错误、命令或地址类型不受支持、地址无法编码为交接帧时抛出。
    出现该错误时隧道立即终止。
    """


# ============================================================================
# SOCKS5 协议常量
# ============================================================================

class SOCKS5:
    """
    SOCKS5 协议常量定义

    本实现只支持无认证方式和 CONNECT 命令，地址类型只支持 IPv4 和域名。
    """
    VERSION = 0x05
    AUTH_NONE = 0x00
    CMD_CONNECT = 0x01
    CMD_BIND = 0x02
    CMD_UDP_ASSOCIATE = 0x03
    ATYP_IPV4 = 0x01
    ATYP_DOMAIN = 0x03
    ATYP_IPV6 = 0x04
    REP_SUCCESS = 0x00
    REP_FAILURE = 0x01
    REP_CMD_NOT_SUPPORTED = 0x07
    REP_ATYP_NOT_SUPPORTED = 0x08

    @classmethod
    def command_name(cls, cmd: int) -> str:
        names = {
            cls.CMD_CONNECT: 'CONNECT',
            cls.CMD_BIND: 'BIND',
            cls.CMD_UDP_ASSOCIATE: 'UDP ASSOCIATE',
        }
        return names.get(cmd, f'0x{cmd:02x}')

    @classmethod
    def address_type_name(cls, atyp: int) -> str:
        names = {
            cls.ATYP_IPV4: 'IPv4',
            cls.ATYP_DOMAIN: 'DOMAIN',
            cls.ATYP_IPV6: 'IPv6',
        }
        return names.get(atyp, f'0x{atyp:02x}')


# 客户端问候必须是：版本 5，1 种认证方法，无认证
GREETING = bytes([SOCKS5.VERSION, 0x01, SOCKS5.AUTH_NONE])
GREETING_REPLY = bytes([SOCKS5.VERSION, SOCKS5.AUTH_NONE])

REQUEST_HEADER_SIZE = 4  # 版本 + 命令 + 保留 + 地址类型
IPV4_ADDRESS_SIZE = 6    # 4 字节地址 + 2 字节端口

# 交接帧长度前缀只有 1 字节
MAX_HANDOFF_ADDRESS = 255


# ============================================================================
# SOCKS5 编解码
# ============================================================================

def check_greeting(data: bytes):
    """
    校验客户端问候

    Args:
        data: 客户端发送的前 3 个字节

    Raises:
        ProtocolError: 不是 05 01 00
    """
    if data != GREETING:
        raise ProtocolError(f"无效的 SOCKS5 问候: {data.hex(' ')}")


def parse_request_header(data: bytes) -> Tuple[int, int, int]:
    """
    解析 SOCKS5 请求头

    Args:
        data: 4 字节请求头

    Returns:
        tuple: (版本, 命令, 地址类型)

    Raises:
        ProtocolError: 长度不对或版本号不是 5
    """
    if len(data) != REQUEST_HEADER_SIZE:
        raise ProtocolError(f"SOCKS5 请求头长度错误: {len(data)}")
    version, cmd, _, atyp = data
    if version != SOCKS5.VERSION:
        raise ProtocolError(f"无效的 SOCKS5 版本: {version}")
    return version, cmd, atyp


def format_ipv4_address(data: bytes) -> str:
    """
    将 IPv4 地址字段格式化为 "a.b.c.d:port"

    Args:
        data: 4 字节地址 + 2 字节大端序端口
    """
    if len(data) != IPV4_ADDRESS_SIZE:
        raise ProtocolError(f"IPv4 地址字段长度错误: {len(data)}")
    port = struct.unpack('>H', data[4:6])[0]
    return f"{data[0]}.{data[1]}.{data[2]}.{data[3]}:{port}"


def format_domain_address(data: bytes) -> str:
    """
    将域名地址字段格式化为 "domain:port"

    Args:
        data: 域名字节 + 2 字节大端序端口（不含长度前缀）
    """
    if len(data) < 2:
        raise ProtocolError("域名地址字段缺少端口")
    try:
        domain = data[:-2].decode('ascii')
    except UnicodeDecodeError:
        raise ProtocolError(f"域名包含非 ASCII 字符: {data[:-2]!r}") from None
    port = struct.unpack('>H', data[-2:])[0]
    return f"{domain}:{port}"


def make_reply(rep: int, atyp: int = SOCKS5.ATYP_IPV4, address: bytes = b'\x00' * IPV4_ADDRESS_SIZE) -> bytes:
    """
    创建 SOCKS5 应答

    成功应答原样回显请求中的地址类型和地址字节，而不是本地绑定地址。

    Args:
        rep: 应答状态码
        atyp: 地址类型
        address: 地址字段（域名类型需包含长度前缀）和端口

    Returns:
        bytes: 版本(1) + 状态(1) + 保留(1) + 地址类型(1) + 地址 + 端口
    """
    return bytes([SOCKS5.VERSION, rep, 0x00, atyp]) + address


# ============================================================================
# 地址交接帧
# ============================================================================

def make_handoff_frame(address: str, codec: XorCodec) -> bytes:
    """
    创建地址交接帧

    Args:
        address: "host:port" 文本
        codec: 混淆编解码器

    Returns:
        bytes: 长度(1字节) + 混淆后的地址

    Raises:
        ProtocolError: 地址不是 ASCII 或超过 255 字节
    """
    try:
        raw = address.encode('ascii')
    except UnicodeEncodeError:
        raise ProtocolError(f"地址包含非 ASCII 字符: {address!r}") from None
    if len(raw) > MAX_HANDOFF_ADDRESS:
        raise ProtocolError(f"地址过长，无法编码为交接帧: {len(raw)} 字节")
    return struct.pack('>B', len(raw)) + codec.encode(raw)


def parse_handoff_payload(payload: bytes, codec: XorCodec) -> str:
    """
    解码交接帧负载（不含长度前缀）

    Args:
        payload: 混淆后的地址字节
        codec: 混淆编解码器

    Returns:
        str: 原始地址文本
    """
    try:
        return codec.decode(payload).decode('ascii')
    except UnicodeDecodeError:
        raise ProtocolError("交接帧地址不是 ASCII 文本") from None


def split_address(address: str) -> Tuple[str, int]:
    """
    将 "host:port" 拆分为主机和端口

    以最后一个冒号分隔端口。

    Raises:
        ProtocolError: 格式错误或端口超出 1-65535
    """
    host, sep, port_text = address.rpartition(':')
    if not sep or not host or not port_text.isdigit():
        raise ProtocolError(f"无效的目标地址: {address!r}")
    port = int(port_text)
    if not 0 < port <= 0xFFFF:
        raise ProtocolError(f"无效的目标端口: {address!r}")
    return host, port
