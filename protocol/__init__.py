"""
SOCKS 中继代理协议包

本包提供了中继代理的协议定义和实现，包括：
- SOCKS5 协议常量和应答构造
- SOCKS5 地址字段解析
- 代理之间的地址交接帧
- 协议异常类型

使用示例：
    from protocol import make_handoff_frame, parse_handoff_payload
    from codec import XorCodec

    codec = XorCodec(0x64)
    frame = make_handoff_frame('example.com:443', codec)
    address = parse_handoff_payload(frame[1:], codec)
"""

from .core import (
    # 异常
    RelayError,
    ProtocolError,

    # 协议常量
    SOCKS5,
    GREETING,
    GREETING_REPLY,
    REQUEST_HEADER_SIZE,
    IPV4_ADDRESS_SIZE,
    MAX_HANDOFF_ADDRESS,

    # SOCKS5 编解码
    check_greeting,
    parse_request_header,
    format_ipv4_address,
    format_domain_address,
    make_reply,

    # 地址交接帧
    make_handoff_frame,
    parse_handoff_payload,
    split_address,
)
