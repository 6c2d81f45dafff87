#!/usr/bin/env python3
"""
协议编解码测试

测试内容:
1. SOCKS5 问候和请求头校验
2. IPv4 / 域名地址字段格式化
3. 应答原样回显请求地址
4. 地址交接帧编解码
5. "host:port" 拆分
"""

import os
import sys

import pytest

# 添加当前目录到路径
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from codec import XorCodec
from protocol import (
    SOCKS5, ProtocolError, RelayError, MAX_HANDOFF_ADDRESS,
    check_greeting, parse_request_header, format_ipv4_address, format_domain_address,
    make_reply, make_handoff_frame, parse_handoff_payload, split_address,
)


def test_greeting():
    check_greeting(bytes.fromhex('050100'))
    for bad in ('040100', '050200', '050101', '0501'):
        with pytest.raises(ProtocolError):
            check_greeting(bytes.fromhex(bad))


def test_protocol_error_is_relay_error():
    assert issubclass(ProtocolError, RelayError)


def test_request_header():
    assert parse_request_header(bytes.fromhex('05010001')) == (5, SOCKS5.CMD_CONNECT, SOCKS5.ATYP_IPV4)
    with pytest.raises(ProtocolError):
        parse_request_header(bytes.fromhex('04010001'))
    with pytest.raises(ProtocolError):
        parse_request_header(bytes.fromhex('050100'))


def test_command_and_address_type_names():
    assert SOCKS5.command_name(SOCKS5.CMD_BIND) == 'BIND'
    assert SOCKS5.command_name(SOCKS5.CMD_UDP_ASSOCIATE) == 'UDP ASSOCIATE'
    assert SOCKS5.command_name(0x7f) == '0x7f'
    assert SOCKS5.address_type_name(SOCKS5.ATYP_IPV6) == 'IPv6'
    assert SOCKS5.address_type_name(0xff) == '0xff'


def test_format_ipv4_address():
    assert format_ipv4_address(bytes.fromhex('5db8d8220050')) == '93.184.216.34:80'
    assert format_ipv4_address(bytes.fromhex('7f000001ffff')) == '127.0.0.1:65535'
    with pytest.raises(ProtocolError):
        format_ipv4_address(bytes.fromhex('7f000001'))


def test_format_domain_address():
    assert format_domain_address(b'example.com\x01\xbb') == 'example.com:443'
    assert format_domain_address(b'\x00\x50') == ':80'
    with pytest.raises(ProtocolError):
        format_domain_address('пример'.encode('utf-8') + b'\x00\x50')


def test_ipv4_reply_mirrors_request():
    address = bytes.fromhex('5db8d8220050')
    reply = make_reply(SOCKS5.REP_SUCCESS, SOCKS5.ATYP_IPV4, address)
    assert reply == bytes.fromhex('050000015db8d8220050')
    assert reply[3] == SOCKS5.ATYP_IPV4
    assert reply[4:] == address


def test_domain_reply_mirrors_request():
    domain = b'example.com'
    field = bytes([len(domain)]) + domain + b'\x01\xbb'
    reply = make_reply(SOCKS5.REP_SUCCESS, SOCKS5.ATYP_DOMAIN, field)
    assert len(reply) == len(domain) + 7
    assert reply[4:] == field


def test_failure_reply_defaults_to_zero_ipv4():
    assert make_reply(SOCKS5.REP_ATYP_NOT_SUPPORTED) == bytes.fromhex('05080001000000000000')


def test_handoff_frame_layout():
    codec = XorCodec(0x64)
    frame = make_handoff_frame('93.184.216.34:80', codec)
    assert frame[0] == 16
    assert len(frame) == 17
    assert frame[1:] == bytes(b ^ 0x64 for b in b'93.184.216.34:80')


def test_handoff_round_trip_all_lengths():
    codec = XorCodec(0x3C)
    for length in range(MAX_HANDOFF_ADDRESS + 1):
        address = 'a' * length
        frame = make_handoff_frame(address, codec)
        assert frame[0] == length
        assert parse_handoff_payload(frame[1:1 + frame[0]], codec) == address


def test_handoff_rejects_oversized_address():
    address = 'a' * 250 + '.com:65535'
    with pytest.raises(ProtocolError):
        make_handoff_frame(address, XorCodec())


def test_handoff_rejects_non_ascii():
    with pytest.raises(ProtocolError):
        make_handoff_frame('例子.com:80', XorCodec())
    with pytest.raises(ProtocolError):
        parse_handoff_payload(XorCodec().encode('例子'.encode('utf-8')), XorCodec())


def test_handoff_decoded_with_wrong_key_differs():
    frame = make_handoff_frame('example.com:443', XorCodec(0x64))
    assert parse_handoff_payload(frame[1:], XorCodec(0x65)) != 'example.com:443'


def test_split_address():
    assert split_address('example.com:443') == ('example.com', 443)
    assert split_address('93.184.216.34:80') == ('93.184.216.34', 80)
    for bad in ('', 'example.com', ':80', 'example.com:', 'example.com:http',
                'example.com:0', 'example.com:70000'):
        with pytest.raises(ProtocolError):
            split_address(bad)


if __name__ == '__main__':
    sys.exit(pytest.main([__file__, '-v']))
