import json
from pathlib import Path
from uuid import uuid4

import pytest
from typer.testing import CliRunner

from dbtrace.cli import app as cli_app

runner = CliRunner()


@pytest.fixture()
def config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DBTRACE_RICH", "0")
    monkeypatch.setattr(cli_app, "runtime", None)
    session_id, correlation_id = uuid4(), uuid4()
    log_file = tmp_path / "sessions.jsonl"
    records = [
        {
            "type": "db",
            "sessionId": str(session_id),
            "correlationId": str(correlation_id),
            "name": "SELECT 1",
            "startedAt": 10,
            "duration": 5,
        },
        {"type": "session", "sessionId": str(session_id), "name": "GET /orders", "startedAt": 0, "duration": 80},
    ]
    log_file.write_text("\n".join(json.dumps(record) for record in records) + "\n", encoding="utf-8")
    config_path = tmp_path / "dbtrace.yml"
    config_path.write_text(
        f"source:\n  kind: file\n  path: {log_file}\nlogging:\n  enabled: false\n",
        encoding="utf-8",
    )
    return config_path, session_id, correlation_id


def test_latest_and_show(config_file) -> None:
    config_path, session_id, _ = config_file
    result = runner.invoke(cli_app.app, ["--config", str(config_path), "latest", "--top", "5"])
    assert result.exit_code == 0, result.output
    assert str(session_id) in result.output

    result = runner.invoke(cli_app.app, ["--config", str(config_path), "show", str(session_id)])
    assert result.exit_code == 0, result.output
    assert '"SELECT 1"' in result.output


def test_drill_up_and_not_found(config_file) -> None:
    config_path, session_id, correlation_id = config_file
    result = runner.invoke(cli_app.app, ["--config", str(config_path), "drill-up", str(correlation_id)])
    assert result.exit_code == 0, result.output
    assert str(session_id) in result.output

    result = runner.invoke(cli_app.app, ["--config", str(config_path), "drill-down", str(correlation_id)])
    assert result.exit_code == cli_app.EXIT_NOT_FOUND

    result = runner.invoke(cli_app.app, ["--config", str(config_path), "show", "not-a-uuid"])
    assert result.exit_code == cli_app.EXIT_FAILURE


def test_bad_config_exits(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_app, "runtime", None)
    result = runner.invoke(cli_app.app, ["--config", str(tmp_path / "absent.yml"), "latest"])
    assert result.exit_code == cli_app.EXIT_FAILURE
