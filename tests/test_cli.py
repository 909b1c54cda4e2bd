"""Tests for the command-line interface."""

import asyncio
import re

import pytest
from click.testing import CliRunner

from vigil.cli.cli import cli
from vigil.database.db import Database


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the CLI at a temporary database with no config file."""
    path = str(tmp_path / "cli.sqlite3")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VIGIL_DATABASE", path)
    return path


@pytest.fixture
def invoke(db_path):
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(cli, list(args))

    return _invoke


def _template_id(db_path, name):
    templates = asyncio.run(Database(db_path).list_templates(name=name))
    return templates[0]["id"]


def test_version(invoke):
    result = invoke("--version")
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_init_seeds_templates(invoke):
    result = invoke("init")
    assert result.exit_code == 0
    assert "10 template(s) added" in result.output

    again = invoke("init")
    assert "0 template(s) added" in again.output


def test_task_lifecycle(invoke, db_path):
    """Test creating a task from a template, running, pausing and resuming it."""
    invoke("init")
    template_id = _template_id(db_path, "Wallet Security Monitor")

    created = invoke(
        "from-template",
        template_id,
        "--user",
        "alice",
        "--config",
        '{"wallet_address": "EPCzpDDs4dNJvBEmJ1pvBN4tfCVNxZqJ7sTcHcepHdKT"}',
    )
    assert created.exit_code == 0, created.output
    task_id = re.search(r"Created task (\w+)", created.output).group(1)

    listed = invoke("list", "--user", "alice")
    assert listed.exit_code == 0

    ran = invoke("run", task_id)
    assert ran.exit_code == 0, ran.output
    assert "succeeded" in ran.output

    paused = invoke("pause", task_id)
    assert "paused" in paused.output
    assert invoke("run", task_id).exit_code == 1

    resumed = invoke("resume", task_id)
    assert "active" in resumed.output


def test_from_template_reports_missing_fields(invoke, db_path):
    invoke("init")
    template_id = _template_id(db_path, "Wallet Security Monitor")

    result = invoke("from-template", template_id, "--user", "alice")

    assert result.exit_code == 1
    assert "Missing required fields" in result.output
    assert "wallet_address" in result.output


def test_from_template_rejects_bad_json(invoke, db_path):
    invoke("init")
    template_id = _template_id(db_path, "Wallet Security Monitor")

    result = invoke("from-template", template_id, "--user", "alice", "--config", "{nope")

    assert result.exit_code == 2


def test_unknown_task_exits_with_error(invoke):
    result = invoke("run", "missing")
    assert result.exit_code == 1
    assert "Error" in result.output


def test_reporting_commands(invoke):
    for args in (("due",), ("health",), ("analytics", "alice"), ("cleanup", "-d", "7")):
        result = invoke(*args)
        assert result.exit_code == 0, f"{args}: {result.output}"

    assert "System Health" in invoke("health").output
    assert "Executed 0 task(s)" in invoke("due").output
