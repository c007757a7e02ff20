"""Unit tests for the command-line entry point."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from rpc_monitor.__main__ import async_main, main, parse_arguments
from rpc_monitor.app.service import MonitorService
from rpc_monitor.core.config import DEFAULT_CONFIG_PATH, MainConfig
from rpc_monitor.types import HTTPClient
from tests.fixtures.fakes import URL_A, URL_B, FakeProber

CONFIG_YAML = f"""
monitor:
  timeout_ms: 2500
endpoints:
  - url: {URL_A}
    name: Alpha
  - url: {URL_B}
    name: Bravo
application:
  syslog_enabled: false
"""


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "rpc-monitor.yaml"
    _ = path.write_text(CONFIG_YAML)
    return path


class TestParseArguments:
    def test_defaults(self) -> None:
        args = parse_arguments([])

        assert args.config == DEFAULT_CONFIG_PATH
        assert args.log_level is None
        assert args.method is None
        assert args.port is None
        assert not args.no_server
        assert not args.no_syslog
        assert not args.once

    def test_overrides(self) -> None:
        args = parse_arguments(
            ["-c", "/etc/rpc.yaml", "--log-level", "DEBUG", "--method", "eth_blockNumber", "--port", "8080", "--once"]
        )

        assert args.config == Path("/etc/rpc.yaml")
        assert args.log_level == "DEBUG"
        assert args.method == "eth_blockNumber"
        assert args.port == 8080
        assert args.once

    def test_rejects_unknown_log_level(self) -> None:
        with pytest.raises(SystemExit):
            _ = parse_arguments(["--log-level", "LOUD"])


class TestMain:
    """Test exit codes and the single-cycle mode."""

    def test_missing_config_exits_with_error(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(tmp_path / "missing.yaml"), "--no-syslog"])

        assert exc_info.value.code == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_missing_env_var_exits_with_error(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.delenv("RPC_MONITOR_TEST_URL", raising=False)
        path = tmp_path / "env.yaml"
        _ = path.write_text("endpoints:\n  - url: ${RPC_MONITOR_TEST_URL}\n")

        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(path), "--no-syslog"])

        assert exc_info.value.code == 1
        assert "RPC_MONITOR_TEST_URL" in capsys.readouterr().err

    async def test_run_once_prints_snapshot(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        prober = FakeProber({URL_A: 10, URL_B: 12})

        def build_service(config: MainConfig, client: HTTPClient) -> MonitorService:
            return MonitorService(config, client, prober=prober)

        monkeypatch.setattr("rpc_monitor.__main__.MonitorService", build_service)

        await async_main(config_path=config_file, method="chain_getFinalizedHead", enable_syslog=False, run_once=True)

        printed = json.loads(capsys.readouterr().out)
        assert [item["endpoint"]["url"] for item in printed] == [URL_B, URL_A]
        assert {item["method"] for item in printed} == {"chain_getFinalizedHead"}
        assert {call[1] for call in prober.calls} == {2500}
