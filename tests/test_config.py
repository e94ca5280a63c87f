import os

import pytest

from mailbyebye import config
from mailbyebye.config import DEFAULT_CONFIG, RunContext, RunTotals, load_config
from mailbyebye.engine import BulkResult, DeletionTally
from mailbyebye.errors import ValidationError


@pytest.fixture
def config_file(tmp_path):
    def _write(text):
        path = tmp_path / "test_config"
        path.write_text(text)
        os.chmod(path, 0o600)
        return str(path)
    return _write


def test_defaults_without_a_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "CONFIG_FILE_HOME", str(tmp_path / "missing"))
    assert load_config() == DEFAULT_CONFIG


def test_load_values(config_file):
    cfg = load_config(config_file(
        "# comment\n"
        "SERVICE_ACCOUNT_FILE = /keys/sa.json\n"
        "ADMIN_EMAIL=admin@example.com\n"
        "PAGE_SIZE=25\n"
        "START_DATE=2023-01-01\n"
        "SOMETHING_ELSE=ignored\n"
        "not a setting\n"
    ))
    assert cfg["SERVICE_ACCOUNT_FILE"] == "/keys/sa.json"
    assert cfg["ADMIN_EMAIL"] == "admin@example.com"
    assert cfg["PAGE_SIZE"] == 25
    assert cfg["START_DATE"] == "2023-01-01"
    assert "SOMETHING_ELSE" not in cfg


def test_bad_numbers_keep_defaults(config_file, capsys):
    cfg = load_config(config_file("PAGE_SIZE=lots\nMAX_WAIT_MINUTES=-3\n"))
    assert cfg["PAGE_SIZE"] == DEFAULT_CONFIG["PAGE_SIZE"]
    assert cfg["MAX_WAIT_MINUTES"] == DEFAULT_CONFIG["MAX_WAIT_MINUTES"]
    assert "PAGE_SIZE must be a positive number" in capsys.readouterr().out


def test_local_file_wins(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    home = tmp_path / "home_config"
    home.write_text("ADMIN_EMAIL=home@example.com\n")
    (tmp_path / ".mailbyebye_config").write_text("ADMIN_EMAIL=local@example.com\n")
    monkeypatch.setattr(config, "CONFIG_FILE_HOME", str(home))
    assert load_config()["ADMIN_EMAIL"] == "local@example.com"


def test_world_readable_file_warns(config_file, capsys):
    path = config_file("PAGE_SIZE=10\n")
    os.chmod(path, 0o644)
    load_config(path)
    assert "readable by other users" in capsys.readouterr().out


def test_missing_explicit_file(tmp_path):
    with pytest.raises(ValidationError):
        load_config(str(tmp_path / "nope"))


def test_wait_minutes(audit):
    ctx = RunContext(config=dict(DEFAULT_CONFIG), audit=audit, gate=None)
    assert ctx.max_wait_minutes == 10
    ctx.extended_wait = True
    assert ctx.max_wait_minutes == 120


def test_totals():
    totals = RunTotals()
    totals.add_tally(DeletionTally(deleted=5, failed=1))
    totals.add_tally(DeletionTally(would_delete=7))
    totals.add_bulk(BulkResult(item_count=100))
    assert (totals.targets, totals.deleted, totals.failed) == (3, 5, 1)
    assert (totals.would_delete, totals.purged) == (7, 100)
