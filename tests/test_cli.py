"""Tests for the command-line interface."""

import json
from unittest.mock import patch

import pytest

from psp_sync.cli import create_parser, main
from psp_sync.timeline import PageSourceContractError, PageSourceError


@pytest.fixture
def db_url(tmp_path):
    """File-backed SQLite URL so state survives between CLI invocations."""
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def use_simulator(history_25):
    """Route every provider lookup of the CLI to the simulated upstream."""
    with patch("psp_sync.cli.get_page_source", return_value=history_25):
        yield history_25


def run_cli(db_url, *args):
    return main(["--database-url", db_url, *args])


class TestParser:
    """Tests for argument parsing."""

    def test_run_defaults(self):
        args = create_parser().parse_args(["run", "--provider", "stripe"])

        assert args.command == "run"
        assert args.provider == "stripe"
        assert args.account == "default"
        assert args.max_steps is None

    @pytest.mark.parametrize("provider", ["increase_pending", "increase_declined"])
    def test_increase_listings_are_providers(self, provider):
        assert create_parser().parse_args(["run", "-p", provider]).provider == provider

    def test_unknown_provider_rejected(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["run", "--provider", "paypal"])

    @pytest.mark.parametrize("value", ["0", "-3", "ten"])
    def test_page_size_must_be_positive(self, value):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["run", "-p", "simulator", "--page-size", value])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out


class TestRunCommand:
    """Tests for the run command."""

    def test_run_to_completion(self, db_url, use_simulator, capsys):
        """Test that a run prints its summary and exits cleanly."""
        exit_code = run_cli(db_url, "run", "-p", "simulator", "-a", "acct_1", "--page-size", "10")

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["emitted"] == 25
        assert summary["has_more"] is False
        assert summary["phase"] == "tailing"

    def test_state_survives_between_runs(self, db_url, use_simulator, capsys):
        """Test that a paused run resumes from the stored timeline."""
        assert run_cli(db_url, "run", "-p", "simulator", "--page-size", "10", "--max-steps", "2") == 0
        first = json.loads(capsys.readouterr().out)
        assert first["emitted"] == 0
        assert first["depth"] == 2

        assert run_cli(db_url, "run", "-p", "simulator", "--page-size", "10") == 0
        second = json.loads(capsys.readouterr().out)
        assert second["emitted"] == 25
        assert second["steps"] == 3

    def test_retryable_error_exit_code(self, db_url, use_simulator):
        use_simulator.fail_next()

        assert run_cli(db_url, "run", "-p", "simulator") == 2

    def test_non_retryable_error_exit_code(self, db_url, use_simulator):
        use_simulator.fail_next(PageSourceError("Invalid API key", status_code=401, retryable=False))

        assert run_cli(db_url, "run", "-p", "simulator") == 3

    def test_contract_error_exit_code(self, db_url, use_simulator):
        use_simulator.fail_next(PageSourceContractError("Records out of order"))

        assert run_cli(db_url, "run", "-p", "simulator") == 3


class TestStatusCommand:
    """Tests for the status command."""

    def test_status_without_state(self, db_url, use_simulator):
        assert run_cli(db_url, "status", "-p", "simulator", "-a", "acct_1") == 1

    def test_status_after_run(self, db_url, use_simulator, capsys):
        """Test that status reports the stored progress."""
        run_cli(db_url, "run", "-p", "simulator", "-a", "acct_1", "--page-size", "10", "--max-steps", "3")
        capsys.readouterr()

        assert run_cli(db_url, "status", "-p", "simulator", "-a", "acct_1") == 0
        progress = json.loads(capsys.readouterr().out)
        assert progress["phase"] == "replaying"
        assert progress["latest_id"] == "sim_5"
        assert progress["payments_count"] == 5
