#!/usr/bin/env python3
"""
配置、日志和命令行测试

测试内容:
1. 地址解析和运行模式解析
2. 配置文件加载与校验
3. 命令行参数覆盖配置文件
4. 日志上下文和环境变量
5. 进程退出码
"""

import logging
import os
import socket
import sys

import pytest

# 添加当前目录到路径
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import agent
from config import AgentConfig, AgentMode, ConfigError, load_config, parse_address
from logger import ContextFilter, LogConfig, LogFormatter


def test_parse_address():
    assert parse_address('0.0.0.0:1080') == ('0.0.0.0', 1080)
    assert parse_address(':1080') == ('', 1080)
    assert parse_address('[::1]:1080') == ('::1', 1080)
    for bad in ('1080', 'host:', 'host:abc', 'host:70000'):
        with pytest.raises(ConfigError):
            parse_address(bad)


def test_agent_mode_parse():
    assert AgentMode.parse('client') is AgentMode.CLIENT
    assert AgentMode.parse(' Server ') is AgentMode.SERVER
    assert AgentMode.parse(AgentMode.SERVER) is AgentMode.SERVER
    with pytest.raises(ConfigError):
        AgentMode.parse('relay')


def test_defaults():
    config = AgentConfig()
    config.validate()
    assert config.mode is AgentMode.CLIENT
    assert config.listen_address == ('0.0.0.0', 1080)
    assert config.upstream_address == ('192.168.222.131', 1080)
    assert config.key == 0x64
    assert config.buffer_size == 1024
    assert config.close_on_first_eof is True


def test_zero_timeouts_disable_deadlines():
    config = AgentConfig(handshake_timeout=0, connect_timeout=0)
    assert config.handshake_timeout is None
    assert config.connect_timeout is None


def test_key_from_string():
    assert AgentConfig(key='0x7f').key == 0x7F
    with pytest.raises(ConfigError):
        AgentConfig(key='seven')


def test_quoted_numbers_are_converted():
    config = AgentConfig.from_dict({
        'handshake_timeout': '2.5', 'connect_timeout': '0',
        'buffer_size': '4096', 'max_connections': '16', 'key': '100',
    })
    config.validate()
    assert config.handshake_timeout == 2.5
    assert config.connect_timeout is None
    assert config.buffer_size == 4096
    assert config.max_connections == 16
    assert config.key == 100


@pytest.mark.parametrize('field, value', [
    ('handshake_timeout', 'soon'),
    ('connect_timeout', True),
    ('buffer_size', 'big'),
    ('buffer_size', 1.5),
    ('max_connections', None),
    ('key', None),
])
def test_invalid_numbers_raise_config_error(field, value):
    with pytest.raises(ConfigError, match=f'agent.{field}'):
        AgentConfig(**{field: value})


@pytest.mark.parametrize('kwargs', [
    {'key': 256},
    {'handshake_timeout': -1},
    {'buffer_size': 0},
    {'max_connections': 0},
    {'listen': 'nowhere'},
    {'upstream': 'nowhere'},
])
def test_validate_rejects(kwargs):
    with pytest.raises(ConfigError):
        AgentConfig(**kwargs).validate()


def test_server_mode_ignores_upstream():
    AgentConfig(mode='server', upstream='nowhere').validate()


def test_from_dict_with_overrides(caplog):
    data = {'mode': 'server', 'listen': '127.0.0.1:2080', 'key': 0x10, 'unknown': 1}
    with caplog.at_level(logging.WARNING):
        config = AgentConfig.from_dict(data, listen='127.0.0.1:3080', key=None)
    assert config.mode is AgentMode.SERVER
    assert config.listen == '127.0.0.1:3080'
    assert config.key == 0x10
    assert 'agent.unknown' in caplog.text


def test_load_config(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text('agent:\n  mode: server\n  key: 0x20\n', encoding='utf-8')
    assert load_config(str(path)) == {'agent': {'mode': 'server', 'key': 0x20}}

    assert load_config(str(tmp_path / 'missing.yaml')) == {}

    empty = tmp_path / 'empty.yaml'
    empty.write_text('', encoding='utf-8')
    assert load_config(str(empty)) == {}

    broken = tmp_path / 'broken.yaml'
    broken.write_text('agent: [\n', encoding='utf-8')
    with pytest.raises(ConfigError):
        load_config(str(broken))

    scalar = tmp_path / 'scalar.yaml'
    scalar.write_text('just text\n', encoding='utf-8')
    with pytest.raises(ConfigError):
        load_config(str(scalar))


def test_command_line_overrides_config_file():
    args = agent.parse_args(['-m', 'client', '-l', '127.0.0.1:1081', '-s', '10.0.0.1:9000', '-k', '0x33'])
    config = agent.build_config(args, {'agent': {'mode': 'server', 'listen': '0.0.0.0:5000',
                                                 'buffer_size': 4096}})
    assert config.mode is AgentMode.CLIENT
    assert config.listen == '127.0.0.1:1081'
    assert config.upstream == '10.0.0.1:9000'
    assert config.key == 0x33
    assert config.buffer_size == 4096


def test_parse_args_rejects_bad_key():
    with pytest.raises(SystemExit):
        agent.parse_args(['-k', 'xyz'])


# ============================================================================
# 日志
# ============================================================================

def test_context_filter():
    context_filter = ContextFilter(['mode', 'listen'])
    context_filter.add_context(mode='client')
    record = logging.LogRecord('test', logging.INFO, __file__, 1, 'msg', None, None)
    assert context_filter.filter(record)
    assert record.context == 'mode=client | listen=-'
    context_filter.add_context(mode='server', listen='127.0.0.1:1080')
    context_filter.filter(record)
    assert record.context == 'mode=server | listen=127.0.0.1:1080'


def test_formatter_without_context():
    formatter = LogFormatter(fmt='[%(context)s] %(levelname)s %(message)s', use_color=True)
    record = logging.LogRecord('test', logging.WARNING, __file__, 1, 'hello', None, None)
    output = formatter.format(record)
    assert output.startswith('[-] ')
    assert 'hello' in output
    assert record.levelname == 'WARNING'


def test_log_config_environment_overrides(monkeypatch):
    monkeypatch.setenv('LOG_LEVEL', 'DEBUG')
    monkeypatch.setenv('LOG_ENABLE_CONSOLE', 'false')
    config = LogConfig.from_dict({'level': 'WARNING', 'enable_console': True, 'log_file': 'x.log'})
    assert config.level == 'DEBUG'
    assert config.enable_console is False
    assert config.log_file == 'x.log'
    assert config.context_fields == ['mode', 'listen']


# ============================================================================
# 进程退出码
# ============================================================================

@pytest.fixture
def quiet_logging(monkeypatch):
    monkeypatch.setenv('LOG_ENABLE_CONSOLE', 'false')
    monkeypatch.setenv('LOG_ENABLE_FILE', 'false')
    monkeypatch.setenv('LOG_ENABLE_JOURNAL', 'false')
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_main_rejects_invalid_config(tmp_path, quiet_logging):
    path = tmp_path / 'config.yaml'
    path.write_text('agent:\n  mode: relay\n', encoding='utf-8')
    assert agent.main(['-c', str(path)]) == 1


def test_main_rejects_broken_config_file(tmp_path, quiet_logging):
    path = tmp_path / 'config.yaml'
    path.write_text('agent: [\n', encoding='utf-8')
    assert agent.main(['-c', str(path)]) == 1


def test_main_rejects_non_numeric_value(tmp_path, quiet_logging):
    path = tmp_path / 'config.yaml'
    path.write_text('agent:\n  mode: server\n  buffer_size: "big"\n', encoding='utf-8')
    assert agent.main(['-c', str(path)]) == 1


def test_main_exits_when_listen_fails(tmp_path, quiet_logging):
    with socket.socket() as busy:
        busy.bind(('127.0.0.1', 0))
        busy.listen(1)
        port = busy.getsockname()[1]
        code = agent.main(['-c', str(tmp_path / 'missing.yaml'), '-m', 'server',
                           '-l', f'127.0.0.1:{port}'])
    assert code == 1


if __name__ == '__main__':
    sys.exit(pytest.main([__file__, '-v']))
