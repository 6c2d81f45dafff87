"""
  连接管理模块 - 出站连接与连接关闭

  本模块提供握手阶段建立出站 TCP 连接，以及隧道清理阶段关闭连接的
  辅助函数。客户端代理用它连接上游代理，服务端代理用它连接目标地址。

  主要功能:
  - 建立出站 TCP 连接（可选超时，不重试）
  - 关闭流写入器（超时后强制中止传输）

  版本:1.0.0
"""

import asyncio
import logging
from typing import Optional, Tuple

logger = logging.getLogger('socks-relay-connection')


async def open_target(host: str, port: int,
                      timeout: Optional[float] = None) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """
    建立到指定主机的 TCP 连接

    连接失败不重试，异常直接抛给调用方，由调用方终止隧道。

    Args:
        host: 目标主机名或 IP 地址
        port: 目标端口号
        timeout: 连接超时（秒），None 表示不限制

    Returns:
        tuple: (reader, writer)

    Raises:
        OSError: 连接失败
        asyncio.TimeoutError: 连接超时
    """
    logger.debug(f"连接目标: {host}:{port}")
    return await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)


async def close_writer(writer: Optional[asyncio.StreamWriter], timeout: float = 5.0):
    """
    关闭流写入器并等待底层连接关闭

    等待超时或出错时强制中止传输。可以重复调用。

    Args:
        writer: 要关闭的写入器，None 时直接返回
        timeout: 等待关闭的超时（秒）
    """
    if writer is None:
        return
    try:
        writer.close()
        await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("关闭连接超时，强制关闭")
        writer.transport.abort()
    except (ConnectionResetError, BrokenPipeError, OSError):
        pass  # 连接已断开
