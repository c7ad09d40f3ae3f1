"""Engine settings: YAML defaults, environment overrides, bad values."""

from dataclasses import FrozenInstanceError

import pytest

from admissions_config.settings import (
    ENV_DATABASE_URL,
    ENV_LOG_LEVEL,
    ENV_SCHEDULER_INTERVAL,
    EngineSettings,
    load_settings,
)
from admissions_kernel.exceptions import ConfigurationError


def test_shipped_defaults():
    settings = load_settings(environ={})
    assert settings.database_url == "sqlite:///admissions.db"
    assert settings.log_level == "INFO"
    assert settings.scheduler_interval_seconds == 300
    assert settings.scheduler_item_timeout_seconds == 30
    assert settings.scheduler_max_workers == 4
    assert settings.max_automatic_chain == 10
    assert settings.auto_process_transitions is True
    assert settings.notification_channels == ("email", "in_app")


def test_environment_overrides():
    settings = load_settings(environ={
        ENV_DATABASE_URL: "postgresql://admissions@db/admissions",
        ENV_LOG_LEVEL: "debug",
        ENV_SCHEDULER_INTERVAL: "60",
    })
    assert settings.database_url == "postgresql://admissions@db/admissions"
    assert settings.log_level == "DEBUG"
    assert settings.scheduler_interval_seconds == 60.0


def test_custom_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "database:\n  url: sqlite:///custom.db\n"
        "scheduler:\n  tick_interval_seconds: 15\n  max_workers: 2\n"
    )
    settings = load_settings(path, environ={})
    assert settings.database_url == "sqlite:///custom.db"
    assert settings.scheduler_interval_seconds == 15
    assert settings.scheduler_max_workers == 2
    assert settings.scheduler_item_timeout_seconds == EngineSettings().scheduler_item_timeout_seconds


@pytest.mark.parametrize(
    "environ, fragment",
    [
        ({ENV_SCHEDULER_INTERVAL: "soon"}, "must be a number"),
        ({ENV_SCHEDULER_INTERVAL: "0"}, "must be positive"),
        ({ENV_LOG_LEVEL: "chatty"}, "unknown log level"),
    ],
)
def test_bad_environment_values(environ, fragment):
    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(environ=environ)
    assert any(fragment in e for e in exc_info.value.errors)


def test_bad_file_values_reported_together(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("scheduler:\n  max_workers: -1\n  item_timeout_seconds: none\n")
    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(path, environ={})
    assert len(exc_info.value.errors) == 2
    assert exc_info.value.source == str(path)


def test_missing_explicit_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "absent.yaml", environ={})


def test_settings_are_frozen():
    with pytest.raises(FrozenInstanceError):
        EngineSettings().log_level = "DEBUG"  # type: ignore[misc]
