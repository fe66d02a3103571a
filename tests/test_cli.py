"""Unit tests for main.py -- the operator CLI.

The service is swapped for the in-memory fixture so no database file is
touched.
"""

from dataclasses import replace

import pytest

import main as cli


@pytest.fixture
def run(service, monkeypatch):
    monkeypatch.setattr(cli, "_build_service", lambda: service)
    return cli.main


def test_no_command_prints_help(run, capsys):
    assert run([]) == 0
    assert "usage:" in capsys.readouterr().out


def test_hash_password(run, capsys):
    assert run(["hash-password", "Secret1!"]) == 0
    assert capsys.readouterr().out.strip().startswith("$argon2id$")


def test_hash_password_rejects_blank(run):
    assert run(["hash-password", "  "]) == 2


def test_reset_then_verify(run, capsys):
    assert run(["reset-password", "ops@x.com", "Reset1!"]) == 0
    assert run(["verify", "ops@x.com", "Reset1!"]) == 0
    out = capsys.readouterr().out
    assert "matched:   yes" in out
    assert run(["verify", "ops@x.com", "wrong"]) == 1


@pytest.mark.parametrize(
    "argv",
    [
        ["reset-password", "ops@x.com", "Reset1!"],
        ["verify", "ops@x.com", "Reset1!"],
    ],
)
def test_dev_commands_refused_without_dev_endpoints(run, service, monkeypatch, capsys, argv):
    monkeypatch.setattr(service, "config", replace(service.config, dev_endpoints=False))
    assert run(argv) == 2
    assert "DEV_ENDPOINTS=true" in capsys.readouterr().out
    assert service.store.find_user_id("ops@x.com") is None


def test_verify_unknown_user(run, capsys):
    assert run(["verify", "ghost@x.com", "pw"]) == 1
    assert "No credentials found" in capsys.readouterr().out


def test_purge_sessions(run, service, capsys):
    assert run(["purge-sessions"]) == 0
    assert "Purged 0 expired session(s)." in capsys.readouterr().out


def test_auth_error_is_reported(run, service, monkeypatch, capsys):
    from auth.errors import StorageUnavailable

    def boom(email, password):
        raise StorageUnavailable("Credential store unavailable")

    monkeypatch.setattr(service, "dev_verify", boom)
    assert run(["verify", "a@x.com", "pw"]) == 1
    assert "Credential store unavailable" in capsys.readouterr().out
