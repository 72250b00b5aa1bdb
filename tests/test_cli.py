"""Tests for the command-line interface."""

import pytest

from blockwatch import cli as cli_module
from blockwatch.cli import build_parser, cli
from blockwatch.errors import BlockProcessingFailed


class TestBuildParser:
    """Tests for argument parsing."""

    def test_fill_arguments(self) -> None:
        args = build_parser().parse_args(["fill", "--start-block", "10", "--end-block", "20"])

        assert (args.command, args.start_block, args.end_block) == ("fill", 10, 20)

    def test_watch_contract_defaults(self) -> None:
        """Test that contracts are watched from genesis unless told otherwise."""
        args = build_parser().parse_args(
            ["watch-contract", "--address", "0xabc", "--kind", "erc20"]
        )

        assert (args.address, args.kind, args.starting_block) == ("0xabc", "erc20", 0)

    def test_reset_state_requires_block_number(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["reset-state"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_log_level_is_case_insensitive(self) -> None:
        args = build_parser().parse_args(["--log-level", "debug", "init-db"])

        assert args.log_level == "DEBUG"

    @pytest.mark.parametrize("command", ["init-db", "live", "clean-jobs"])
    def test_commands_without_arguments(self, command: str) -> None:
        assert build_parser().parse_args([command]).command == command


class TestCli:
    """Tests for dispatching commands."""

    def test_reset_state_dispatch(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the block number reaches the reset command."""
        calls: list[int] = []
        levels: list[str] = []

        async def fake_reset(block_number: int) -> int:
            calls.append(block_number)
            return 0

        monkeypatch.setattr(cli_module, "reset", fake_reset)
        monkeypatch.setattr(cli_module, "set_log_level", levels.append)

        with pytest.raises(SystemExit) as excinfo:
            cli(["--log-level", "warning", "reset-state", "--block-number", "42"])

        assert excinfo.value.code == 0
        assert calls == [42]
        assert levels == ["WARNING"]

    def test_metrics_port_starts_server(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the metrics endpoint is started before the command runs."""
        servers: list[tuple[str, int]] = []

        async def fake_clean_jobs() -> int:
            return 0

        monkeypatch.setattr(cli_module, "clean_jobs", fake_clean_jobs)
        monkeypatch.setattr(
            cli_module, "start_metrics_server", lambda host, port: servers.append((host, port))
        )

        with pytest.raises(SystemExit):
            cli(["--metrics-port", "9100", "clean-jobs"])

        assert servers == [("127.0.0.1", 9100)]

    def test_value_error_exits_with_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that validation errors are reported as a failed exit."""

        async def fake_fill(start_block: int, end_block: int, block_timeout: float | None) -> int:
            msg = "end_block 1 should not be below start_block 2"
            raise ValueError(msg)

        monkeypatch.setattr(cli_module, "fill", fake_fill)

        with pytest.raises(SystemExit) as excinfo:
            cli(["fill", "--start-block", "2", "--end-block", "1"])

        assert excinfo.value.code == 1

    def test_failed_fill_exits_non_zero(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a block failing during fill ends the command with status 1."""
        timeouts: list[float | None] = []

        async def fake_fill(start_block: int, end_block: int, block_timeout: float | None) -> int:
            timeouts.append(block_timeout)
            msg = f"Block {start_block} 0xa0001 failed: boom"
            raise BlockProcessingFailed(msg)

        monkeypatch.setattr(cli_module, "fill", fake_fill)

        with pytest.raises(SystemExit) as excinfo:
            cli(["fill", "--start-block", "1", "--end-block", "3", "--block-timeout", "2.5"])

        assert excinfo.value.code == 1
        assert timeouts == [2.5]
