"""
SOCKS 中继代理 - 配置管理模块
加载 YAML 配置文件，合并命令行参数，校验代理配置。

版本: 1.0.0

功能概述:
本模块提供了配置管理功能，包括：
1. 运行模式定义（client / server）
2. 代理配置数据类
3. "host:port" 地址解析
4. YAML 配置文件的加载

配置优先级:
命令行参数 > 配置文件 > 默认值

配置文件格式:
    agent:
      mode: client
      listen: 0.0.0.0:1080
      upstream: 192.168.222.131:1080
      key: 0x64
    logging:
      level: INFO
"""

import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import yaml

from codec import DEFAULT_XOR_KEY

logger = logging.getLogger('socks-relay-config')


DEFAULT_LISTEN = "0.0.0.0:1080"
DEFAULT_UPSTREAM = "192.168.222.131:1080"
DEFAULT_BUFFER_SIZE = 1024


class ConfigError(ValueError):
    """配置错误"""


class AgentMode(Enum):
    """
    代理运行模式

    - CLIENT: 面向 SOCKS5 客户端，把请求转发给上游代理
    - SERVER: 面向上游代理，连接真正的目标地址
    """
    CLIENT = "client"
    SERVER = "server"

    @classmethod
    def parse(cls, value) -> 'AgentMode':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigError(f"无效的运行模式: {value!r}（只支持 client 或 server）") from None


def parse_address(address: str) -> Tuple[str, int]:
    """
    解析 "host:port" 格式的地址

    以最后一个冒号分隔端口，主机部分可以为空（表示所有地址）。

    Args:
        address: 地址字符串

    Returns:
        tuple: (主机, 端口)

    Raises:
        ConfigError: 格式错误或端口无效
    """
    host, sep, port_text = str(address).rpartition(':')
    if not sep or not port_text.isdigit():
        raise ConfigError(f"无效的地址: {address!r}（格式应为 host:port）")
    port = int(port_text)
    if not 0 <= port <= 0xFFFF:
        raise ConfigError(f"无效的端口: {address!r}")
    return host.strip('[]'), port


def _parse_int(value) -> int:
    """整数，字符串支持 0x 前缀；布尔值和小数不接受"""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(value)
    if isinstance(value, str):
        return int(value.strip(), 0)
    return int(value)


def _parse_timeout(value) -> Optional[float]:
    """超时秒数，None 或 0 表示不限制"""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(value)
    value = float(value)
    return value or None


def _convert(name: str, value, parser):
    try:
        return parser(value)
    except (TypeError, ValueError):
        raise ConfigError(f"无效的配置项 agent.{name}: {value!r}") from None


@dataclass
class AgentConfig:
    """
    代理配置数据类

    Attributes:
        mode: 运行模式（默认: client）
        listen: 本地监听地址（默认: "0.0.0.0:1080"）
        upstream: 上游代理地址，仅 client 模式使用（默认: "192.168.222.131:1080"）
        key: 混淆密钥，两端必须一致（默认: 0x64）
        buffer_size: 中继每次读取的字节数（默认: 1024）
        handshake_timeout: 握手阶段每次读取的超时（秒），None 或 0 表示不限制（默认: 10）
        connect_timeout: 建立出站连接的超时（秒），None 或 0 表示不限制（默认: 10）
        max_connections: 最大并发隧道数（默认: 1024）
        close_on_first_eof: 一个方向结束时是否立即关闭整条隧道（默认: True）
    """
    mode: AgentMode = AgentMode.CLIENT
    listen: str = DEFAULT_LISTEN
    upstream: str = DEFAULT_UPSTREAM
    key: int = DEFAULT_XOR_KEY
    buffer_size: int = DEFAULT_BUFFER_SIZE
    handshake_timeout: Optional[float] = 10.0
    connect_timeout: Optional[float] = 10.0
    max_connections: int = 1024
    close_on_first_eof: bool = True

    def __post_init__(self):
        self.mode = AgentMode.parse(self.mode)
        # 配置文件中的数值可能被写成字符串，统一在这里转换
        self.key = _convert('key', self.key, _parse_int)
        self.buffer_size = _convert('buffer_size', self.buffer_size, _parse_int)
        self.max_connections = _convert('max_connections', self.max_connections, _parse_int)
        self.handshake_timeout = _convert('handshake_timeout', self.handshake_timeout, _parse_timeout)
        self.connect_timeout = _convert('connect_timeout', self.connect_timeout, _parse_timeout)

    @property
    def listen_address(self) -> Tuple[str, int]:
        return parse_address(self.listen)

    @property
    def upstream_address(self) -> Tuple[str, int]:
        return parse_address(self.upstream)

    def validate(self):
        """
        校验配置

        Raises:
            ConfigError: 任一配置项无效
        """
        parse_address(self.listen)
        if self.mode is AgentMode.CLIENT:
            parse_address(self.upstream)
        if not isinstance(self.key, int) or not 0 <= self.key <= 0xFF:
            raise ConfigError(f"混淆密钥必须在 0-255 之间: {self.key!r}")
        if self.buffer_size <= 0:
            raise ConfigError(f"缓冲区大小必须大于 0: {self.buffer_size}")
        if self.max_connections <= 0:
            raise ConfigError(f"最大连接数必须大于 0: {self.max_connections}")
        for name in ('handshake_timeout', 'connect_timeout'):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ConfigError(f"超时不能为负数: agent.{name}={value}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], **overrides) -> 'AgentConfig':
        """
        从配置字典创建配置对象

        Args:
            data: 配置文件中的 agent 段
            **overrides: 覆盖配置文件的值（值为 None 的项被忽略）

        Returns:
            AgentConfig: 配置对象
        """
        known = {f.name for f in fields(cls)}
        values = {}
        for name, value in (data or {}).items():
            if name in known:
                values[name] = value
            else:
                logger.warning(f"忽略未知配置项: agent.{name}")
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ============================================================================
# 配置文件管理函数
# ============================================================================

def load_config(config_file: str) -> Dict[str, Any]:
    """
    加载配置文件

    从 YAML 格式的配置文件中加载配置数据

    Args:
        config_file: 配置文件路径

    Returns:
        Dict[str, Any]: 配置数据字典，如果文件不存在则返回空字典

    Raises:
        ConfigError: 文件格式错误
    """
    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"配置文件格式错误: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"配置文件顶层必须是字典: {config_file}")
    return data
