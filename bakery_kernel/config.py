"""
Kernel configuration (``bakery_kernel.config``).

Responsibility
--------------
Loads the kernel's runtime settings from a YAML file and the process
environment into a frozen ``KernelConfig`` dataclass.

Invariants enforced
-------------------
* Unknown keys are an error, never silently ignored.
* Values are validated once, in ``__post_init__``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class KernelConfig:
    """Runtime settings for the bakery kernel."""

    database_url: str = "sqlite:///bakery.db"
    lock_timeout_seconds: float = 3.0
    max_conflict_retries: int = 3
    retry_backoff_seconds: float = 0.05
    cost_decimal_places: int = 9
    display_decimal_places: int = 2
    log_level: str = "INFO"
    echo_sql: bool = False

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.lock_timeout_seconds <= 0:
            raise ValueError(
                f"lock_timeout_seconds must be positive, got {self.lock_timeout_seconds}"
            )
        if self.max_conflict_retries < 0:
            raise ValueError(
                f"max_conflict_retries must be >= 0, got {self.max_conflict_retries}"
            )
        if self.retry_backoff_seconds < 0:
            raise ValueError(
                f"retry_backoff_seconds must be >= 0, got {self.retry_backoff_seconds}"
            )
        for name in ("cost_decimal_places", "display_decimal_places"):
            places = getattr(self, name)
            if not 2 <= places <= 18:
                raise ValueError(f"{name} must be between 2 and 18, got {places}")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"Unknown log_level: {self.log_level!r}")


def config_from_mapping(data: Mapping[str, Any]) -> KernelConfig:
    """
    Build a KernelConfig from a plain mapping.

    Raises:
        ValueError: on unknown keys or invalid values.
    """
    known = {f.name for f in fields(KernelConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
    return KernelConfig(**dict(data))


def load_config(path: str | Path) -> KernelConfig:
    """
    Load a KernelConfig from a YAML file.

    The file holds a flat mapping of KernelConfig fields, optionally nested
    under a top-level ``bakery_kernel`` key.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: on unknown keys or invalid values.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping, got {type(data).__name__}")
    if "bakery_kernel" in data:
        data = data["bakery_kernel"] or {}
    return config_from_mapping(data)


_ENV_OVERRIDES: tuple[tuple[str, str, type], ...] = (
    ("BAKERY_DATABASE_URL", "database_url", str),
    ("BAKERY_LOCK_TIMEOUT", "lock_timeout_seconds", float),
    ("BAKERY_MAX_RETRIES", "max_conflict_retries", int),
    ("BAKERY_LOG_LEVEL", "log_level", str),
)


def config_from_env(
    base: KernelConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> KernelConfig:
    """
    Apply BAKERY_* environment overrides on top of ``base``.

    Raises:
        ValueError: if an override cannot be parsed or fails validation.
    """
    env = os.environ if environ is None else environ
    config = base or KernelConfig()
    overrides: dict[str, Any] = {}
    for var, field_name, cast in _ENV_OVERRIDES:
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            overrides[field_name] = cast(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid value for {var}: {raw!r}") from exc
    return replace(config, **overrides) if overrides else config
