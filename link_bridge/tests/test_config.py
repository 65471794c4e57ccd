"""Tests for configuration loading and the command line."""

import argparse
import json
import logging

import pytest

from conftest import connection_lost
from link_bridge.cli import build_parser, resolve_config, validate_hostname, validate_port
from link_bridge.config import DEFAULT_PORT, BridgeConfig, load_config
from link_bridge.connection import ConnectionHandle
from link_bridge.logging_config import ConsoleFormatter, JSONFormatter


class TestBridgeConfig:
    def test_defaults(self):
        config = BridgeConfig()
        assert config.port == DEFAULT_PORT == 20809
        assert config.host == "0.0.0.0"
        assert config.metrics_port is None
        assert config.enable_link is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LINKBRIDGE_PORT", "9100")
        monkeypatch.setenv("LINKBRIDGE_HOST", "127.0.0.1")
        monkeypatch.setenv("LINKBRIDGE_METRICS_PORT", "9101")
        monkeypatch.setenv("LINKBRIDGE_LINK", "yes")
        config = BridgeConfig.from_env()
        assert config.port == 9100
        assert config.host == "127.0.0.1"
        assert config.metrics_port == 9101
        assert config.enable_link is True

    def test_from_dict_ignores_unknown_keys(self):
        config = BridgeConfig.from_dict({"port": 1234, "theme": "dark"})
        assert config.port == 1234

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        BridgeConfig(port=4321, enable_link=True).save(path)
        assert json.loads(path.read_text())["port"] == 4321
        loaded = load_config(path)
        assert loaded.port == 4321
        assert loaded.enable_link is True

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(tmp_path / "absent.json") == BridgeConfig()


class TestCli:
    def test_validate_port(self):
        assert validate_port("20809") == 20809
        for bad in ("0", "65536", "abc"):
            with pytest.raises(argparse.ArgumentTypeError):
                validate_port(bad)

    def test_validate_hostname(self):
        assert validate_hostname("192.168.1.10") == "192.168.1.10"
        with pytest.raises(argparse.ArgumentTypeError):
            validate_hostname("bad host!")

    def test_command_line_overrides_environment(self, monkeypatch):
        monkeypatch.setenv("LINKBRIDGE_PORT", "9100")
        monkeypatch.setenv("LINKBRIDGE_METRICS_PORT", "9101")
        args = build_parser().parse_args(["--port", "9200", "--link", "--no-metrics"])
        config = resolve_config(args)
        assert config.port == 9200
        assert config.enable_link is True
        assert config.metrics_port is None

    def test_environment_used_without_flags(self, monkeypatch):
        monkeypatch.setenv("LINKBRIDGE_PORT", "9100")
        config = resolve_config(build_parser().parse_args([]))
        assert config.port == 9100


def test_json_formatter():
    record = logging.LogRecord("link_bridge.server", logging.INFO, __file__, 1, "Client %d connected", (3,), None)
    data = json.loads(JSONFormatter().format(record))
    assert data["level"] == "INFO"
    assert data["logger"] == "link_bridge.server"
    assert data["message"] == "Client 3 connected"


def test_json_formatter_carries_connection_context():
    record = logging.LogRecord("link_bridge.connection", logging.INFO, __file__, 1, "Connection 7 lost", (), None)
    record.connection_id = 7
    record.remote_address = ("127.0.0.1", 50000)
    data = json.loads(JSONFormatter().format(record))
    assert data["connection_id"] == 7
    assert data["remote_address"] == ["127.0.0.1", 50000]
    assert "client_count" not in data


def test_console_formatter_tags_connection():
    record = logging.LogRecord("link_bridge.server", logging.INFO, __file__, 1, "Client connected", (), None)
    assert "[conn" not in ConsoleFormatter().format(record)
    record.connection_id = 3
    assert ConsoleFormatter().format(record).endswith("Client connected [conn 3]")


@pytest.mark.asyncio
async def test_connection_logs_carry_connection_id(caplog, registry, make_socket):
    socket = make_socket()
    handle = ConnectionHandle(42, socket, registry)
    await handle.open()
    socket.disconnect(connection_lost())

    with caplog.at_level(logging.INFO, logger="link_bridge.connection"):
        await handle.receive_loop()

    lost = [r for r in caplog.records if "connection lost" in r.getMessage()]
    assert [r.connection_id for r in lost] == [42]
    assert json.loads(JSONFormatter().format(lost[0]))["connection_id"] == 42


def test_json_logs_flag(monkeypatch):
    monkeypatch.delenv("LINKBRIDGE_ENV", raising=False)
    assert build_parser().parse_args([]).json_logs is None
    assert build_parser().parse_args(["--json-logs"]).json_logs is True
