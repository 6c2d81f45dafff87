#!/usr/bin/env python3
"""
SOCKS 中继代理 - 程序入口

版本: 1.0.0

同一个程序以两种模式运行:
- client: 在本地提供 SOCKS5 代理（无认证，CONNECT，IPv4/域名），
  把每个会话转发给 server 模式的代理
- server: 接受 client 模式代理的连接，读取地址交接帧后连接真正的目标

两个代理之间的数据逐字节异或混淆，两端的混淆密钥必须一致。

使用示例:
    python agent.py -m server -l 0.0.0.0:1080
    python agent.py -m client -l 127.0.0.1:1080 -s 203.0.113.5:1080
"""

import argparse
import asyncio
import logging
from typing import Optional, Sequence

from config import AgentConfig, ConfigError, load_config
from dispatcher import AgentServer
from logger import LogConfig, LoggerManager, add_context

logger = logging.getLogger('socks-relay-agent')


def parse_key(value: str) -> int:
    """解析混淆密钥，支持 0x 前缀"""
    try:
        return int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"无效的混淆密钥: {value}") from None


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """
    解析命令行参数

    命令行参数:
        --config, -c: 配置文件路径 (默认: config.yaml)
        --mode, -m: 运行模式 client/server (默认: client)
        --listen, -l: 监听地址 (默认: 0.0.0.0:1080)
        --server, -s: 上游代理地址 (默认: 192.168.222.131:1080)
        --key, -k: 混淆密钥 (默认: 0x64)
        --debug, -d: 启用调试模式
    """
    parser = argparse.ArgumentParser(description='SOCKS5 中继代理')
    parser.add_argument('--config', '-c', default='config.yaml', help='配置文件路径')
    parser.add_argument('--mode', '-m', default=None, choices=['client', 'server'],
                        help='运行模式 (默认: client)')
    parser.add_argument('--listen', '-l', default=None, help='监听地址 (默认: 0.0.0.0:1080)')
    parser.add_argument('--server', '-s', default=None,
                        help='上游代理地址，仅 client 模式使用 (默认: 192.168.222.131:1080)')
    parser.add_argument('--key', '-k', type=parse_key, default=None, help='混淆密钥 (默认: 0x64)')
    parser.add_argument('--debug', '-d', action='store_true', help='启用调试模式')
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, config_data: dict) -> AgentConfig:
    """
    合并配置文件和命令行参数，命令行参数优先

    Raises:
        ConfigError: 配置无效
    """
    config = AgentConfig.from_dict(
        config_data.get('agent'),
        mode=args.mode,
        listen=args.listen,
        upstream=args.server,
        key=args.key,
    )
    config.validate()
    return config


async def run_agent(config: AgentConfig):
    """运行代理直到被取消"""
    server = AgentServer(config)
    try:
        await server.serve_forever()
    finally:
        await server.stop()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    主函数 - 解析命令行参数并启动代理

    Returns:
        int: 进程退出码，0 表示正常退出，1 表示配置错误或监听失败
    """
    args = parse_args(argv)

    try:
        config_data = load_config(args.config)
    except ConfigError as e:
        LoggerManager().initialize()
        logger.error(str(e))
        return 1

    log_config = LogConfig.from_dict(config_data.get('logging'))
    if args.debug:
        log_config.level = 'DEBUG'
    LoggerManager().initialize(log_config)

    try:
        config = build_config(args, config_data)
    except ConfigError as e:
        logger.error(f"配置错误: {e}")
        return 1

    add_context(mode=config.mode.value, listen=config.listen)
    logger.info(f"代理配置: 模式={config.mode.value}, 监听={config.listen}, "
                f"上游={config.upstream}, 密钥=0x{config.key:02x}")

    try:
        asyncio.run(run_agent(config))
    except KeyboardInterrupt:
        logger.info("代理已停止")
    except OSError as e:
        logger.error(f"监听失败 {config.listen}: {e}")
        return 1

    return 0


if __name__ == '__main__':
    exit(main())
