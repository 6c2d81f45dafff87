"""
隧道中继模块

每条隧道在握手成功后启动两个中继方向：
- outbound: 客户端连接 -> 服务端连接
- inbound:  服务端连接 -> 客户端连接

每个方向独占自己的读端和写端，两个方向之间不共享可变状态，
因此数据通路上不需要任何锁。
"""

import asyncio
import logging

from codec import XorCodec

logger = logging.getLogger('socks-relay-relay')


async def relay_direction(name: str, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                          codec: XorCodec, buffer_size: int = 1024) -> int:
    """
    单方向数据中继循环

    反复从 reader 读取一块数据，经混淆编解码器转换后写入 writer，
    直到读到 EOF 或发生 I/O 错误。该方向结束时不会关闭任何连接，
    连接由隧道统一关闭。

    Args:
        name: 方向名称，用于日志
        reader: 读取端
        writer: 写入端
        codec: 混淆编解码器
        buffer_size: 每次读取的最大字节数

    Returns:
        int: 本方向转发的字节数
    """
    total = 0
    try:
        while True:
            data = await reader.read(buffer_size)
            if not data:
                logger.debug(f"{name} 读到 EOF")
                break
            writer.write(codec.transform(data))
            await writer.drain()
            total += len(data)
    except OSError as e:
        logger.debug(f"{name} I/O 错误: {e}")
    except Exception as e:
        logger.error(f"{name} 中继异常: {e}", exc_info=True)
    return total
