from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from copilot_monitor.config import MonitorSettings, get_settings

ENV_NAMES = [
    "GITHUB_TOKEN",
    "COPILOT_MONITOR_USERNAME",
    "COPILOT_MONITOR_INTERVAL",
    "COPILOT_MONITOR_DAYS",
    "COPILOT_MONITOR_ORGS",
    "COPILOT_MONITOR_REPOS",
    "COPILOT_MONITOR_IGNORE_JOBS",
    "COPILOT_MONITOR_TARGET_PATHS",
    "COPILOT_MONITOR_LOG_LEVEL",
    "COPILOT_MONITOR_AUTO_FIX",
    "COPILOT_MONITOR_MAX_SESSIONS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults() -> None:
    settings = MonitorSettings()

    assert settings.token_value() is None
    assert settings.slow_interval_seconds == 60
    assert settings.fast_interval_seconds == 15
    assert settings.lookback_days == 2
    assert settings.max_sessions == 50
    assert settings.ignore_jobs == ("danger",)
    assert settings.organizations == ()
    assert settings.auto_fix is False
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_secret")
    monkeypatch.setenv("COPILOT_MONITOR_INTERVAL", "120")
    monkeypatch.setenv("COPILOT_MONITOR_ORGS", "acme, globex,,")
    monkeypatch.setenv("COPILOT_MONITOR_REPOS", "acme/app,globex/site")
    monkeypatch.setenv("COPILOT_MONITOR_IGNORE_JOBS", "danger,license")
    monkeypatch.setenv("COPILOT_MONITOR_AUTO_FIX", "true")
    monkeypatch.setenv("COPILOT_MONITOR_LOG_LEVEL", "debug")
    monkeypatch.setenv("COPILOT_MONITOR_TARGET_PATHS", os.pathsep.join(["one", "two"]))

    settings = MonitorSettings()

    assert settings.token_value() == "ghp_secret"
    assert "ghp_secret" not in repr(settings)
    assert settings.slow_interval_seconds == 120
    assert settings.organizations == ("acme", "globex")
    assert settings.repositories == ("acme/app", "globex/site")
    assert settings.ignore_jobs == ("danger", "license")
    assert settings.auto_fix is True
    assert settings.log_level == "DEBUG"
    assert settings.target_paths == (Path("one"), Path("two"))


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("COPILOT_MONITOR_REPOS", "not-a-repo"),
        ("COPILOT_MONITOR_INTERVAL", "0"),
        ("COPILOT_MONITOR_MAX_SESSIONS", "0"),
        ("COPILOT_MONITOR_LOG_LEVEL", "verbose"),
    ],
)
def test_invalid_values_rejected(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        MonitorSettings()


def test_get_settings_resolves_paths_and_caches(tmp_path: Path) -> None:
    first = get_settings()
    second = get_settings()

    assert first is second
    assert first.journal_path.is_absolute()
    assert all(path.is_absolute() for path in first.target_paths)
