"""
Engine settings (``admissions_config.settings``).

Reads ``settings.yaml`` (or a caller-supplied file) into a frozen
``EngineSettings``.  Three environment variables override the file:

* ``ADMISSIONS_DATABASE_URL``        -> ``database_url``
* ``ADMISSIONS_LOG_LEVEL``           -> ``log_level``
* ``ADMISSIONS_SCHEDULER_INTERVAL``  -> ``scheduler_interval_seconds``

Malformed values raise ``ConfigurationError``; no silent defaults for a
value that was given but cannot be used.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from admissions_kernel.exceptions import ConfigurationError

from admissions_config.loader import load_yaml_file

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

ENV_DATABASE_URL = "ADMISSIONS_DATABASE_URL"
ENV_LOG_LEVEL = "ADMISSIONS_LOG_LEVEL"
ENV_SCHEDULER_INTERVAL = "ADMISSIONS_SCHEDULER_INTERVAL"


@dataclass(frozen=True)
class EngineSettings:
    database_url: str = "sqlite:///admissions.db"
    database_pool_size: int = 20
    database_max_overflow: int = 10
    log_level: str = "INFO"
    auto_process_transitions: bool = True
    scheduler_interval_seconds: float = 300.0
    scheduler_item_timeout_seconds: float = 30.0
    scheduler_max_workers: int = 4
    max_automatic_chain: int = 10
    notification_channels: tuple[str, ...] = field(default=("email", "in_app"))


def _positive(key: str, value: Any, errors: list[str], cast=float):
    try:
        number = cast(value)
    except (TypeError, ValueError):
        errors.append(f"{key} must be a number, got {value!r}")
        return None
    if number <= 0:
        errors.append(f"{key} must be positive, got {value!r}")
        return None
    return number


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Load engine settings from YAML with environment overrides.

    Raises:
        FileNotFoundError: An explicit ``path`` does not exist.
        ConfigurationError: A value is present but unusable.
    """
    source = str(path or DEFAULT_SETTINGS_PATH)
    data = load_yaml_file(Path(source))
    env = os.environ if environ is None else environ
    errors: list[str] = []

    database = data.get("database") or {}
    scheduler = data.get("scheduler") or {}
    defaults = EngineSettings()

    database_url = env.get(ENV_DATABASE_URL) or database.get("url") or defaults.database_url

    log_level = str(
        env.get(ENV_LOG_LEVEL) or (data.get("logging") or {}).get("level") or defaults.log_level
    ).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        errors.append(f"unknown log level {log_level!r}")

    interval = _positive(
        "scheduler.tick_interval_seconds",
        env.get(ENV_SCHEDULER_INTERVAL)
        or scheduler.get("tick_interval_seconds", defaults.scheduler_interval_seconds),
        errors,
    )
    item_timeout = _positive(
        "scheduler.item_timeout_seconds",
        scheduler.get("item_timeout_seconds", defaults.scheduler_item_timeout_seconds),
        errors,
    )
    workers = _positive(
        "scheduler.max_workers",
        scheduler.get("max_workers", defaults.scheduler_max_workers),
        errors,
        cast=int,
    )
    chain = _positive(
        "scheduler.max_automatic_chain",
        scheduler.get("max_automatic_chain", defaults.max_automatic_chain),
        errors,
        cast=int,
    )

    if errors:
        raise ConfigurationError(source, errors)

    return EngineSettings(
        database_url=database_url,
        database_pool_size=int(database.get("pool_size", defaults.database_pool_size)),
        database_max_overflow=int(database.get("max_overflow", defaults.database_max_overflow)),
        log_level=log_level,
        auto_process_transitions=bool(
            scheduler.get("auto_process_transitions", defaults.auto_process_transitions)
        ),
        scheduler_interval_seconds=interval,
        scheduler_item_timeout_seconds=item_timeout,
        scheduler_max_workers=workers,
        max_automatic_chain=chain,
        notification_channels=tuple(
            (data.get("notifications") or {}).get(
                "default_channels", defaults.notification_channels
            )
        ),
    )
