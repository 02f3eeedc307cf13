"""Tests for the popchain CLI."""
from __future__ import annotations

import pytest
from click.testing import CliRunner

from conftest import EVENT_ID, FakeLedger
from popchain_core import cli as cli_module
from popchain_core.cli import cli
from popchain_core.hashing import hash_email
from popchain_core.service import PopchainService
from popchain_core.store import InMemoryStore


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.setattr(cli_module.console, "width", 200)
    monkeypatch.setattr(cli_module, "setup_logging", lambda *args, **kwargs: None)
    return CliRunner()


@pytest.fixture
def fake_service(monkeypatch, settings):
    """Route the CLI to an in-process ledger."""
    ledger = FakeLedger()
    store = InMemoryStore()

    def from_settings(_settings):
        return PopchainService(settings, ledger, store)

    monkeypatch.setattr(cli_module.PopchainService, "from_settings", staticmethod(from_settings))
    monkeypatch.setattr(cli_module, "_settings", lambda ctx: settings)
    return ledger, store


class TestOfflineCommands:
    """Commands that never touch the network."""

    def test_hash_email(self, runner):
        result = runner.invoke(cli, ["hash-email", "a@example.com"], obj={})
        assert result.exit_code == 0
        assert result.output.strip() == hash_email("a@example.com")

    def test_decode_error_text(self, runner):
        result = runner.invoke(cli, ["decode-error", "MoveAbort(0x5::popchain_event, 3) in command 0"], obj={})
        assert result.exit_code == 0
        assert "not_whitelisted" in result.output
        assert "Abort code: 3" in result.output

    def test_decode_error_json(self, runner):
        result = runner.invoke(cli, ["decode-error", '{"code": 6}'], obj={})
        assert "already_claimed" in result.output

    def test_status(self, runner, tmp_path, monkeypatch):
        monkeypatch.delenv("POPCHAIN_ENVIRONMENT", raising=False)
        env = tmp_path / "popchain.env"
        env.write_text("POPCHAIN_LEDGER__NETWORK=devnet\n")
        result = runner.invoke(cli, ["--env-file", str(env), "status"], obj={})
        assert result.exit_code == 0
        assert "devnet" in result.output
        assert "in-memory" in result.output

    def test_status_reads_default_env_file(self, runner, tmp_path, monkeypatch):
        monkeypatch.delenv("POPCHAIN_LEDGER__NETWORK", raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("POPCHAIN_LEDGER__NETWORK=devnet\n")
        cli_module.load_settings.cache_clear()
        try:
            result = runner.invoke(cli, ["status"], obj={})
        finally:
            cli_module.load_settings.cache_clear()
        assert result.exit_code == 0
        assert "devnet" in result.output


class TestLedgerCommands:
    """Commands that go through the service."""

    def test_sponsor_funded(self, runner, fake_service):
        result = runner.invoke(cli, ["sponsor"], obj={})
        assert result.exit_code == 0
        assert "verified" in result.output

    def test_sponsor_underfunded(self, runner, fake_service):
        ledger, _ = fake_service
        ledger.balance = 0
        result = runner.invoke(cli, ["sponsor"], obj={})
        assert result.exit_code == 1
        assert "Please fund this address" in result.output

    def test_whitelist(self, runner, fake_service, tmp_path):
        _, store = fake_service
        emails = tmp_path / "emails.csv"
        emails.write_text("email\na@example.com\nb@example.com\n")
        result = runner.invoke(cli, ["whitelist", EVENT_ID, str(emails)], obj={})
        assert result.exit_code == 0
        assert "2" in result.output and "whitelisted" in result.output

    def test_whitelist_with_failures(self, runner, fake_service, tmp_path):
        emails = tmp_path / "emails.csv"
        emails.write_text("a@example.com\nnot-an-email\n")
        result = runner.invoke(cli, ["whitelist", EVENT_ID, str(emails)], obj={})
        assert result.exit_code == 1
        assert "not-an-email" in result.output

    def test_whitelist_bad_event(self, runner, fake_service, tmp_path):
        emails = tmp_path / "emails.csv"
        emails.write_text("a@example.com\n")
        result = runner.invoke(cli, ["whitelist", "event-1", str(emails)], obj={})
        assert result.exit_code == 1
        assert "Invalid event_id" in result.output
