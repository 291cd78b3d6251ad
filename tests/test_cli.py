# tests/test_cli.py
import pytest
from typer.testing import CliRunner

from homeserver_identity.cli.main_cli import app
from homeserver_identity.settings import settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def sqlite_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "storage_backend", "sqlite")
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "cli.sqlite3"))
    monkeypatch.setattr(settings, "server_name", "example.org")


def invoke(*args: str):
    return runner.invoke(app, list(args))


def test_db_init():
    result = invoke("db", "init")
    assert result.exit_code == 0, result.output
    assert "SQLiteStore" in result.output


def test_create_and_check_account():
    result = invoke("account", "create", "alice", "--password", "wonderland", "--display-name", "Alice")
    assert result.exit_code == 0, result.output
    assert "@alice:example.org" in result.output

    result = invoke("account", "exists", "alice")
    assert result.exit_code == 0
    assert "exists" in result.output

    result = invoke("account", "exists", "bob")
    assert result.exit_code == 1


def test_create_duplicate_account_fails():
    assert invoke("account", "create", "alice", "--password", "pw").exit_code == 0
    result = invoke("account", "create", "alice", "--password", "pw")
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_invalid_localpart_is_rejected():
    result = invoke("account", "exists", "Not Valid")
    assert result.exit_code == 1
    assert "Error" in result.output


def test_devices_of_account_without_devices():
    invoke("account", "create", "alice", "--password", "pw")
    result = invoke("account", "devices", "alice")
    assert result.exit_code == 0
    assert "No devices registered" in result.output


def test_revoke_devices_succeeds_without_devices():
    invoke("account", "create", "alice", "--password", "pw")
    result = invoke("account", "revoke-devices", "alice")
    assert result.exit_code == 0
    assert "Removed all devices" in result.output

    result = invoke("account", "revoke-devices", "alice", "--device-id", "PHONE")
    assert result.exit_code == 0
    assert "PHONE" in result.output


def test_issue_otp():
    invoke("account", "create", "alice", "--password", "pw")
    result = invoke("account", "otp", "alice", "--ttl", "60")
    assert result.exit_code == 0
    assert len(result.output.strip()) >= 24


def test_otp_for_unknown_account_reports_store_error():
    invoke("db", "init")
    result = invoke("account", "otp", "ghost")
    assert result.exit_code == 1
    assert "invalid_syntax" in result.output


def test_store_failure_exits_with_error(monkeypatch, tmp_path):
    # A directory cannot be opened as a database
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path))
    result = invoke("db", "init")
    assert result.exit_code == 1
    assert "connection_failed" in result.output
