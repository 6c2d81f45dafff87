"""
SOCKS 中继隧道模块

本模块整合了中继代理的核心功能，提供了统一的隧道接口。

主要功能包括：
- SOCKS5 握手（client 模式）
- 地址交接帧握手（server 模式）
- 双向混淆中继
- 隧道生命周期管理

使用示例：
    from tunnel import ClientHandshake
    handshake = ClientHandshake(config, codec)
    tunnel = handshake.create_tunnel(reader, writer)
    await handshake.run(tunnel)
"""

from .base import BaseHandshake, Tunnel, TunnelState
from .relay import relay_direction
from .client import ClientHandshake
from .server import ServerHandshake

__all__ = [
    'BaseHandshake',
    'Tunnel',
    'TunnelState',
    'relay_direction',
    'ClientHandshake',
    'ServerHandshake',
]
