"""Tests for the CLI commands and environment configuration."""

import json
import logging
import os

import pytest

from replyproof import cli
from replyproof.config import Settings, configure_logging
from replyproof.schema import ValidationRecord, Verdict
from replyproof.store import JobStore

from conftest import make_job


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run from an empty directory so no .env file is picked up."""
    monkeypatch.chdir(tmp_path)
    for name in ("PORT", "REPLYPROOF_DATABASE_URL", "REPLYPROOF_EMBED_FILTER", "REPLYPROOF_WORKERS",
                 "REPLYPROOF_VISION_API_KEY", "OPENAI_API_KEY", "REPLYPROOF_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_settings_defaults(clean_env):
    s = Settings.from_env()
    assert s.port == 5000
    assert s.database_url == "sqlite:///replyproof.db"
    assert s.embed_filter == "regex"
    assert s.chain_id == 11155111


def test_settings_from_env(clean_env, monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("REPLYPROOF_EMBED_FILTER", "ANY")
    monkeypatch.setenv("REPLYPROOF_WORKERS", "0")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    s = Settings.from_env()
    assert s.port == 8080
    assert s.embed_filter == "any"
    assert s.workers == 1
    assert s.vision_api_key == "sk-test"


def test_unknown_embed_filter_falls_back(clean_env, monkeypatch):
    monkeypatch.setenv("REPLYPROOF_EMBED_FILTER", "everything")
    assert Settings.from_env().embed_filter == "regex"


def test_env_file_does_not_override(clean_env, monkeypatch):
    (clean_env / ".env").write_text("PORT=7000\nREPLYPROOF_LABEL=from-file\n")
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.delenv("REPLYPROOF_LABEL", raising=False)
    try:
        s = Settings.from_env()
    finally:
        os.environ.pop("REPLYPROOF_LABEL", None)
    assert s.port == 9000
    assert s.label == "from-file"


def test_configure_logging_twice_adds_one_handler():
    configure_logging("DEBUG")
    configure_logging("INFO")
    root = logging.getLogger()
    assert sum(1 for h in root.handlers if getattr(h, "_replyproof", False)) == 1
    assert root.level == logging.INFO


def test_unknown_command_prints_usage(monkeypatch, capsys):
    monkeypatch.setattr("sys.argv", ["replyproof", "frobnicate"])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 1
    out = capsys.readouterr().out
    assert "Unknown command: frobnicate" in out
    assert "replyproof serve" in out


def test_job_id_command(clean_env, monkeypatch, capsys):
    monkeypatch.setattr("sys.argv", ["replyproof", "job-id"])
    cli.main()
    job_id = capsys.readouterr().out.strip()
    assert len(job_id) == 29
    assert job_id[:13].isdigit()


def test_init_db_then_status(clean_env, monkeypatch, capsys):
    url = f"sqlite:///{clean_env / 'replyproof.db'}"
    monkeypatch.setenv("REPLYPROOF_DATABASE_URL", url)

    monkeypatch.setattr("sys.argv", ["replyproof", "init-db"])
    cli.main()
    assert "Tables ready" in capsys.readouterr().out

    JobStore.from_url(url, create=False).put_validation(
        ValidationRecord.from_verdict(make_job(), Verdict(is_valid=True, message="A cat."))
    )
    monkeypatch.setattr("sys.argv", ["replyproof", "status", "job-1"])
    cli.main()
    out = json.loads(capsys.readouterr().out)
    assert out["status"]["job_id"] == "job-1"
    assert out["status"]["stage"] == "AWAITING_PAYMENT"
    assert out["status"]["next_action"]["target"] == "/transactions/job-1"
    assert out["validation"]["isValid"] is True
    assert out["attestation"] is None


def test_status_requires_job_id(clean_env, monkeypatch):
    monkeypatch.setattr("sys.argv", ["replyproof", "status"])
    with pytest.raises(SystemExit):
        cli.main()
