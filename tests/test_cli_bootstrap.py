import json
from pathlib import Path
import sys

import pytest
from click.testing import CliRunner
from pymongo.errors import OperationFailure

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import dealdb.cli as cli
from dealdb.bootstrap.mongo_bootstrap import initialize
from tests.test_config_loader import ENV_VARS
from tests.test_mongo_bootstrap import FakeClient, FakeDatabase, make_config


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    cfg = tmp_path / "config.yaml"
    cfg.write_text("bootstrap:\n  credential:\n    secret: s3cret\n")
    return str(cfg)


def _json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


def test_bootstrap_mongo_prints_single_success_line(config_path, monkeypatch):
    client = FakeClient()
    monkeypatch.setattr("dealdb.bootstrap.mongo_bootstrap.get_client", lambda _s: client)

    result = CliRunner().invoke(cli.cli, ["bootstrap", "mongo", "--config", config_path])

    assert result.exit_code == 0, result.output
    lines = _json_lines(result.output)
    assert len(lines) == 1
    assert lines[0]["msg"] == "MongoDB initialized successfully"
    assert lines[0]["database"] == "deal_pipeline_db"
    assert lines[0]["n_created"] == 8
    assert client.closed is True


def test_bootstrap_mongo_verbose_logs_each_step(config_path, monkeypatch):
    monkeypatch.setattr("dealdb.bootstrap.mongo_bootstrap.get_client", lambda _s: FakeClient())

    result = CliRunner().invoke(cli.cli, ["bootstrap", "mongo", "--config", config_path, "--verbose"])

    assert result.exit_code == 0, result.output
    steps = [line["step"] for line in _json_lines(result.output) if "step" in line]
    assert steps[0] == "create_user:app_user"
    assert len(steps) == 8


def test_bootstrap_mongo_failure_exits_non_zero(config_path, monkeypatch):
    monkeypatch.setattr("dealdb.bootstrap.mongo_bootstrap.get_client", lambda _s: FakeClient(deny=True))

    result = CliRunner().invoke(cli.cli, ["bootstrap", "mongo", "--config", config_path])

    assert result.exit_code == 1
    assert "not authorized" in result.output
    failure = _json_lines(result.output)[-1]
    assert failure["error"] == "AuthorizationError"
    assert failure["step"] == "create_user:app_user"
    assert failure["reached"] == "database_selected"


def test_plan_lists_steps_with_policies(config_path):
    result = CliRunner().invoke(cli.cli, ["plan", "--config", config_path])

    assert result.exit_code == 0, result.output
    lines = result.output.rstrip().splitlines()
    assert len(lines) == 8
    assert lines[0] == " 1. create_user:app_user readWrite@deal_pipeline_db [if exists: skip]"
    assert lines[6] == " 7. create_index:users.email_1 (email:1) unique [if exists: skip]"


def test_verify_reports_problems(config_path, monkeypatch):
    client = FakeClient()
    monkeypatch.setattr(cli, "get_db", lambda s: client[s.bootstrap.database])

    result = CliRunner().invoke(cli.cli, ["verify", "--config", config_path])

    assert result.exit_code == 1
    assert "8 problem(s) found in deal_pipeline_db" in result.output


def test_verify_passes_after_bootstrap(config_path, monkeypatch):
    client = FakeClient()
    initialize(client, make_config())
    monkeypatch.setattr(cli, "get_db", lambda s: client[s.bootstrap.database])

    result = CliRunner().invoke(cli.cli, ["verify", "--config", config_path])

    assert result.exit_code == 0, result.output
    assert _json_lines(result.output)[-1]["msg"] == "database verified"


class _NoViewUserDatabase(FakeDatabase):
    def command(self, command, value=1, **kwargs):
        if command == "usersInfo":
            raise OperationFailure("not authorized on deal_pipeline_db to execute command usersInfo", code=13)
        return super().command(command, value, **kwargs)


def test_verify_without_view_user_privilege_fails_cleanly(config_path, monkeypatch):
    client = FakeClient()
    db = _NoViewUserDatabase(client._mongo["deal_pipeline_db"], client=client)
    monkeypatch.setattr(cli, "get_db", lambda _s: db)

    result = CliRunner().invoke(cli.cli, ["verify", "--config", config_path])

    assert result.exit_code == 1
    assert not isinstance(result.exception, OperationFailure)
    assert "not authorized on deal_pipeline_db" in result.output
    assert _json_lines(result.output)[-1]["error"] == "AuthorizationError"
    assert client.closed is True
