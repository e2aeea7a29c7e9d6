from __future__ import annotations

from pathlib import Path

import pytest

from runnerhub.config.load_config import ConfigError, load_app_config


REPO_ROOT = Path(__file__).resolve().parents[1]


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "runnerhub.toml"
    p.write_text(text, encoding="utf-8")
    return p


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("RUNNERHUB_CONFIG_PATH", "RUNNERHUB_RUNNER_COMMAND", "RUNNERHUB_SQLITE_PATH"):
        monkeypatch.delenv(name, raising=False)


def test_shipped_default_config_loads() -> None:
    cfg = load_app_config(REPO_ROOT / "config" / "default.toml")
    assert cfg.runner.command == "gitlab-runner"
    assert cfg.runner.executor == "shell"
    assert cfg.cleanup.retention_months == 1
    assert cfg.cleanup.retention_days is None
    assert cfg.cleanup.cron == "0 0 * * *"
    assert cfg.storage.sqlite_path == "data/runnerhub.db"


def test_missing_default_file_falls_back_to_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RUNNERHUB_CONFIG_PATH", str(tmp_path / "absent.toml"))
    cfg = load_app_config()
    assert cfg.runner.command_timeout_s == 60.0
    assert cfg.cleanup.enabled is True
    assert cfg.cleanup.timezone == "UTC"


def test_missing_explicit_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_app_config(tmp_path / "absent.toml")


def test_partial_file_overrides_only_given_keys(tmp_path: Path) -> None:
    p = _write(
        tmp_path,
        """
[runner]
command = "sudo -n gitlab-runner"
command_timeout_s = 15

[cleanup]
retention_days = 7
timezone = "Asia/Shanghai"
""",
    )
    cfg = load_app_config(p)
    assert cfg.runner.command == "sudo -n gitlab-runner"
    assert cfg.runner.command_timeout_s == 15.0
    assert cfg.runner.executor == "shell"
    assert cfg.cleanup.retention_days == 7
    assert cfg.cleanup.timezone == "Asia/Shanghai"
    assert cfg.cleanup.cron == "0 0 * * *"


@pytest.mark.parametrize(
    "text",
    [
        "[cleanup]\ncron = \"every day\"\n",
        "[cleanup]\ntimezone = \"Mars/Olympus\"\n",
        "[cleanup]\nretention_days = 0\n",
        "[cleanup]\nretention_months = 0\n",
        "[cleanup]\nenabled = \"maybe\"\n",
        "[runner]\ncommand_timeout_s = -1\n",
        "[runner]\ncommand = \"  \"\n",
        "[storage]\nbusy_timeout_ms = \"soon\"\n",
        "[runner\n",
    ],
)
def test_invalid_values_raise_config_error(tmp_path: Path, text: str) -> None:
    with pytest.raises(ConfigError):
        load_app_config(_write(tmp_path, text))


def test_env_overrides_win_over_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = _write(tmp_path, "[runner]\ncommand = \"gitlab-runner\"\n[storage]\nsqlite_path = \"a.db\"\n")
    monkeypatch.setenv("RUNNERHUB_RUNNER_COMMAND", "/opt/bin/gitlab-runner")
    monkeypatch.setenv("RUNNERHUB_SQLITE_PATH", str(tmp_path / "b.db"))
    cfg = load_app_config(p)
    assert cfg.runner.command == "/opt/bin/gitlab-runner"
    assert cfg.storage.sqlite_path == str(tmp_path / "b.db")
