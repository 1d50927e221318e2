import json

from typer.testing import CliRunner

from wabridge import __version__
from wabridge.cli.commands import app

runner = CliRunner()


def _out(result) -> str:
    # Rich wraps long lines at the console width.
    return " ".join(result.stdout.split())


def _write_config(path, **overrides):
    data = {"phone": "15551234567", **overrides}
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in _out(result)


def test_onboard_creates_config(tmp_path):
    path = tmp_path / "cfg" / "config.json"
    result = runner.invoke(app, ["onboard", "--config", str(path)])

    assert result.exit_code == 0
    assert "Created config" in _out(result)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["phone"] == ""
    assert data["allowedTools"] == ["Bash", "Read", "Write", "Edit"]
    assert data["transport"]["reconnectDelayMs"] == 3000


def test_onboard_keeps_existing_config_when_declined(tmp_path):
    path = _write_config(tmp_path / "config.json")
    result = runner.invoke(app, ["onboard", "--config", str(path)], input="n\n")

    assert result.exit_code == 0
    assert json.loads(path.read_text(encoding="utf-8"))["phone"] == "15551234567"


def test_run_without_config_exits_with_error(tmp_path):
    result = runner.invoke(app, ["run", "--config", str(tmp_path / "missing.json")])
    assert result.exit_code == 1
    assert "wabridge onboard" in _out(result)


def test_run_without_phone_exits_with_error(tmp_path, monkeypatch):
    monkeypatch.delenv("WABRIDGE_PHONE", raising=False)
    path = _write_config(tmp_path / "config.json", phone="")
    result = runner.invoke(app, ["run", "--config", str(path)])
    assert result.exit_code == 1
    assert "phone is required" in _out(result)


def test_status_reports_config_and_credentials(tmp_path):
    auth = tmp_path / "auth"
    path = _write_config(
        tmp_path / "config.json",
        cwd=str(tmp_path),
        transport={"authDir": str(auth)},
        engine={"command": "wabridge-no-such-engine-binary"},
    )
    result = runner.invoke(app, ["status", "--config", str(path)])

    assert result.exit_code == 0
    assert "15551234567" in _out(result)
    assert "not paired" in _out(result)
    assert "not on PATH" in _out(result)


def test_logout_removes_credentials(tmp_path):
    auth = tmp_path / "auth"
    auth.mkdir()
    (auth / "creds.json").write_text("{}", encoding="utf-8")
    path = _write_config(tmp_path / "config.json", transport={"authDir": str(auth)})

    result = runner.invoke(app, ["logout", "--config", str(path), "--yes"])

    assert result.exit_code == 0
    assert not auth.exists()


def test_logout_without_credentials(tmp_path):
    path = _write_config(tmp_path / "config.json", transport={"authDir": str(tmp_path / "none")})
    result = runner.invoke(app, ["logout", "--config", str(path), "--yes"])
    assert result.exit_code == 0
    assert "No stored credentials." in _out(result)
