import json
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from sake import __version__
from sake.core.command import CommandResult
from sake.main import app

runner = CliRunner()


@pytest.fixture
def sake(store_path: Path):
    def invoke(*args: str, input: str | None = None):
        return runner.invoke(app, ["--store", str(store_path), *args], input=input)

    return invoke


def test_cli_runs_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "install" in result.output
    assert "publish" in result.output


def test_version_does_not_touch_the_store(store_path: Path):
    result = runner.invoke(app, ["--store", str(store_path), "version"])
    assert result.exit_code == 0
    assert f"sake, version {__version__}" in result.output
    assert not store_path.exists()


def test_install_list_uninstall(sake, sample_file: Path, store_path: Path):
    result = sake("install", str(sample_file))
    assert result.exit_code == 0
    assert "=> Installing task `db:migrate'" in result.output
    assert "=> Installing task `web:start'" in result.output
    assert store_path.exists()

    result = sake("list")
    assert result.exit_code == 0
    assert "sake db:migrate   # Migrate the database" in result.output
    assert "db:version" not in result.output

    result = sake("list", "--all")
    assert "sake db:version" in result.output

    result = sake("uninstall", "db:migrate", "nope")
    assert result.exit_code == 0
    assert "task 'db:migrate', :needs => [ 'environment' ] do" in result.output
    assert "!! Task `nope' is not installed" in result.output
    assert "db:migrate" not in store_path.read_text()


def test_install_twice_reports_existing_once(sake, tmp_path: Path):
    source = tmp_path / "db.rake"
    source.write_text("namespace('db'){ task 'migrate' }\n")
    sake("install", str(source))
    result = sake("install", str(source))
    assert result.exit_code == 0
    assert result.output.count("already exists") == 1

    result = sake("install", str(source), "--force")
    assert "=> Updating task `db:migrate'" in result.output


def test_install_named_task_from_stdin(sake, store_path: Path):
    result = sake("install", "-", "b", input="task :a\ntask :b\n")
    assert result.exit_code == 0
    assert "=> Installing task `b'" in result.output
    assert "task 'a'" not in store_path.read_text()


def test_install_missing_file_is_fatal(sake, tmp_path: Path):
    result = sake("install", str(tmp_path / "missing.rake"))
    assert result.exit_code == 1
    assert "ERROR: " in result.output
    assert "is not available" in result.output


def test_install_refuses_side_effects(sake, tmp_path: Path, store_path: Path):
    evil = tmp_path / "evil.rake"
    evil.write_text("system 'touch pwned'\ntask :innocent\n")
    result = sake("install", str(evil))
    assert result.exit_code == 1
    assert "ERROR: refusing to load `system'" in result.output
    assert not store_path.exists()


def test_list_pattern_falls_back_to_store(sake, sample_file: Path):
    sake("install", str(sample_file))
    result = sake("list", "db")
    assert result.exit_code == 0
    assert "db:migrate" in result.output
    assert "web:start" not in result.output


def test_list_file_and_json_format(sake, sample_file: Path):
    result = sake("list", str(sample_file), "--format", "json")
    assert result.exit_code == 0
    names = [t["name"] for t in json.loads(result.stdout)]
    assert names == ["db:migrate", "web:start"]


def test_no_command_lists_store(sake, sample_file: Path):
    sake("install", str(sample_file))
    result = sake()
    assert result.exit_code == 0
    assert "sake web:start" in result.output


def test_examine(sake, sample_file: Path):
    sake("install", str(sample_file))

    result = sake("examine", "web:start")
    assert result.exit_code == 0
    assert "task 'web:start', :port do |t, args|" in result.output

    result = sake("examine", str(sample_file), "db:version")
    assert "task 'db:version' do" in result.output

    result = sake("examine", "nope")
    assert result.exit_code == 1
    assert "ERROR: Task `nope' not found" in result.output


def test_publish_prints_url(sake, sample_file: Path):
    sake("install", str(sample_file))
    with patch("sake.main.operations.publish", return_value="https://paste.test/1") as publish:
        result = sake("publish", "web:start")
    assert result.exit_code == 0
    assert "https://paste.test/1" in result.output
    assert publish.call_args.args[1] == ["web:start"]


def test_run_propagates_exit_code(sake, sample_file: Path, store_path: Path):
    sake("install", str(sample_file))
    with patch("sake.core.operations.run_command", return_value=CommandResult(3)) as run_command:
        result = sake("run", "web:start", "8080")
    assert result.exit_code == 3
    assert run_command.call_args.args[0] == ["rake", "-f", str(store_path), "web:start[8080]"]


def test_run_unknown_task(sake):
    result = sake("run", "nope")
    assert result.exit_code == 1
    assert "ERROR: Task `nope' not found" in result.output


def test_serve_uses_config_defaults(sake):
    with patch("sake.main.uvicorn.run") as run:
        result = sake("serve")
    assert result.exit_code == 0
    assert run.call_args.kwargs == {"host": "0.0.0.0", "port": 4567}


def test_serve_daemon_spawns_detached_process(sake, store_path: Path):
    with patch("sake.main.spawn_detached", return_value=CommandResult(0, pid=4242)) as spawn:
        result = sake("serve", "--port", "9999", "--daemon")
    assert result.exit_code == 0
    assert "pid 4242" in result.output
    cmd = spawn.call_args.args[0]
    assert cmd[1:3] == ["-m", "sake.main"]
    assert cmd[-4:] == ["--host", "0.0.0.0", "--port", "9999"]
    assert str(store_path) in cmd


def test_generate_config(tmp_path: Path):
    config_file = tmp_path / "config.json"
    result = runner.invoke(app, ["--config-file", str(config_file), "generate-config"])
    assert result.exit_code == 0
    assert json.loads(config_file.read_text())["server"]["port"] == 4567

    result = runner.invoke(app, ["--config-file", str(config_file), "generate-config"])
    assert result.exit_code == 1
    assert "ERROR:" in result.output


def test_config_file_store_path(tmp_path: Path, sample_file: Path):
    store_file = tmp_path / "from-config.sake"
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"store_path": str(store_file)}))
    result = runner.invoke(app, ["--config-file", str(config_file), "install", str(sample_file)])
    assert result.exit_code == 0
    assert store_file.exists()
