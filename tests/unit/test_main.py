"""Tests for the plugin_updater command-line entry point."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from plugin_updater.config import Settings
from plugin_updater.errors import FetchError, SelfUpdateExecFailedError
from plugin_updater.main import build_parser, main, update_once
from plugin_updater.selfupdate import SelfUpdateOutcome
from plugin_updater.updater import UpdateResult, UpdateStatus


def _result(status: UpdateStatus) -> UpdateResult:
    return UpdateResult(status=status, revision="origin/master")


def _self_updater(enabled: bool = True) -> MagicMock:
    self_updater = MagicMock()
    self_updater.enabled = enabled
    self_updater.try_self_update.return_value = SelfUpdateOutcome.UP_TO_DATE
    return self_updater


class TestParser:
    """Tests for argument parsing."""

    def test_update_with_revision(self) -> None:
        args = build_parser().parse_args(["update", "--revision", "v2"])
        assert args.command == "update"
        assert args.revision == "v2"

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestUpdateOnce:
    """Tests for update_once()."""

    @pytest.mark.asyncio
    async def test_self_update_after_success(self) -> None:
        updater = MagicMock()
        updater.update_plugin = AsyncMock(return_value=_result(UpdateStatus.SUCCESS))
        self_updater = _self_updater()
        settings = Settings(_env_file=None)

        assert await update_once(updater, self_updater, settings) is True
        self_updater.try_self_update.assert_called_once_with(settings)

    @pytest.mark.asyncio
    async def test_no_self_update_after_failure(self) -> None:
        updater = MagicMock()
        failed = _result(UpdateStatus.FAILED)
        failed.error = FetchError("network unreachable")
        updater.update_plugin = AsyncMock(return_value=failed)
        self_updater = _self_updater()

        assert await update_once(updater, self_updater, Settings(_env_file=None)) is False
        self_updater.try_self_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_guard_rejection_is_not_a_failure(self) -> None:
        updater = MagicMock()
        updater.update_plugin = AsyncMock(return_value=_result(UpdateStatus.TOO_RECENT))
        self_updater = _self_updater()

        assert await update_once(updater, self_updater, Settings(_env_file=None)) is True
        self_updater.try_self_update.assert_not_called()


class TestMain:
    """Tests for main() exit codes."""

    @pytest.mark.asyncio
    async def test_exec_failure_exits_non_zero(self) -> None:
        updater = MagicMock()
        updater.update_plugin = AsyncMock(return_value=_result(UpdateStatus.SUCCESS))
        self_updater = _self_updater()
        self_updater.try_self_update.side_effect = SelfUpdateExecFailedError("can't exec")

        with (
            patch("plugin_updater.main.setup_logging"),
            patch("plugin_updater.main.get_settings", return_value=Settings(_env_file=None)),
            patch("plugin_updater.main.PluginUpdater.from_settings", return_value=updater),
            patch("plugin_updater.main.SelfUpdater.from_settings", return_value=self_updater),
        ):
            assert await main(["update"]) == 1

    @pytest.mark.asyncio
    async def test_version_command(self, capsys) -> None:
        updater = MagicMock()
        updater.current_version = AsyncMock(return_value="abc123")

        with (
            patch("plugin_updater.main.setup_logging"),
            patch("plugin_updater.main.get_settings", return_value=Settings(_env_file=None)),
            patch("plugin_updater.main.PluginUpdater.from_settings", return_value=updater),
            patch("plugin_updater.main.SelfUpdater.from_settings", return_value=_self_updater()),
        ):
            assert await main(["version"]) == 0

        assert capsys.readouterr().out.strip() == "abc123"
