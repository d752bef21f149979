"""Tests for the container-side command line."""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from scalezero.cli import peer_monitor
from scalezero.cli.peer_monitor import (
    EXIT_CONFIG_ERROR,
    EXIT_OK,
    EXIT_TERMINATED,
    build_parser,
    main,
    run_monitor,
    run_register_public,
    run_shutdown_watcher,
)
from scalezero.core.models import EndpointRole


@pytest.fixture(autouse=True)
def _no_signal_handlers():
    with patch.object(peer_monitor, "_install_signal_handlers"):
        yield


class TestRunMonitor:
    @pytest.mark.asyncio
    async def test_disabled_without_upstream(self):
        with patch.dict(os.environ, {}, clear=True):
            assert await run_monitor(EndpointRole.FRONTEND) == EXIT_OK

    @pytest.mark.asyncio
    async def test_config_error(self):
        with patch.dict(os.environ, {}, clear=True):
            assert await run_monitor(EndpointRole.BACKEND) == EXIT_CONFIG_ERROR

    @pytest.mark.asyncio
    async def test_exit_code_reflects_termination(self):
        monitor = MagicMock()
        monitor.run = AsyncMock(return_value=True)
        with patch.dict(os.environ, {"UPSTREAM_HOST": "10.0.1.5"}, clear=True), \
             patch.object(peer_monitor, "PeerHealthMonitor", return_value=monitor) as cls:
            assert await run_monitor(EndpointRole.FRONTEND) == EXIT_TERMINATED

        config = cls.call_args.args[0]
        assert config.peer_url == "http://10.0.1.5:9050"

    @pytest.mark.asyncio
    async def test_stopped_monitor_exits_cleanly(self):
        monitor = MagicMock()
        monitor.run = AsyncMock(return_value=False)
        with patch.dict(os.environ, {"WORKLOAD_NAME": "demo"}, clear=True), \
             patch.object(peer_monitor, "PeerHealthMonitor", return_value=monitor):
            assert await run_monitor(EndpointRole.BACKEND) == EXIT_OK


class TestShutdownWatcher:
    @pytest.mark.asyncio
    async def test_existing_file(self, tmp_path):
        path = tmp_path / "shutdown"
        path.touch()
        with patch(
            "scalezero.coordination.health_monitor.SupervisorTerminator.terminate",
            new_callable=AsyncMock,
        ) as terminate:
            assert await run_shutdown_watcher(path, 0.01) == EXIT_OK
        terminate.assert_awaited_once()


class TestRegisterPublic:
    @pytest.mark.asyncio
    async def test_skip_flag(self):
        with patch.dict(os.environ, {"SKIP_DNS_REGISTRATION": "true"}, clear=True), \
             patch.object(peer_monitor, "build_public_registrar") as build:
            assert await run_register_public("demo") == EXIT_OK
        build.assert_not_called()

    @pytest.mark.asyncio
    async def test_registers_workload(self):
        registrar = MagicMock()
        registrar.register = AsyncMock(return_value=False)
        with patch.dict(os.environ, {"SCALEZERO_DOMAIN": "example.com"}, clear=True), \
             patch.object(peer_monitor, "build_public_registrar", return_value=registrar):
            assert await run_register_public("demo") == EXIT_OK
        registrar.register.assert_awaited_once_with("demo")

    @pytest.mark.asyncio
    async def test_bad_config_file_is_not_fatal(self, tmp_path):
        env = {"SCALEZERO_CONFIG_FILE": str(tmp_path / "missing.yaml")}
        with patch.dict(os.environ, env, clear=True), \
             patch.object(peer_monitor, "build_public_registrar") as build:
            assert await run_register_public("demo") == EXIT_OK
        build.assert_not_called()


class TestParser:
    def test_monitor_requires_role(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["monitor"])

    def test_rejects_unknown_role(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["monitor", "--role", "sidecar"])

    def test_watch_defaults(self):
        args = build_parser().parse_args(["watch-shutdown"])
        assert str(args.path) == "/tmp/shutdown"
        assert args.interval == 1.0

    def test_main_disabled_monitor(self):
        with patch.dict(os.environ, {}, clear=True):
            assert main(["monitor", "--role", "frontend"]) == EXIT_OK
