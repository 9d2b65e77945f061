"""
herald.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for the tuning knobs of the notification core
(probe timeout, retry budget, page sizes, retention windows).  Secrets and
connection strings stay in the environment (``DATABASE_URL``, via ``.env``).

Every key is optional — a missing key falls back to the default declared
on :class:`HeraldConfig`, so an empty file is a valid configuration.

Usage::

    from herald.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.probe_timeout_seconds) # 0.5
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path

import yaml

ORPHAN_POLICIES = ("omit", "flag")


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class HeraldConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Dispatch facade
    probe_timeout_seconds: float = 0.5
    orphan_policy: str = "omit"  # "omit" drops orphans, "flag" annotates them
    probe_workers: int = 4  # threads reserved for synchronous probes

    # Notification store
    max_update_retries: int = 3
    default_page_size: int = 20
    max_page_size: int = 100

    # Retention
    notification_retention_days: int = 90
    view_retention_days: int = 90
    compaction_interval_seconds: int = 86_400

    def __post_init__(self) -> None:
        if self.orphan_policy not in ORPHAN_POLICIES:
            raise ValueError(
                f"orphan_policy must be one of {ORPHAN_POLICIES}, "
                f"got {self.orphan_policy!r}"
            )
        if self.probe_timeout_seconds <= 0:
            raise ValueError("probe_timeout_seconds must be positive")
        if self.probe_workers < 1:
            raise ValueError("probe_workers must be at least 1")
        if self.max_update_retries < 1:
            raise ValueError("max_update_retries must be at least 1")
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError(
                "default_page_size must be between 1 and max_page_size"
            )
        if self.notification_retention_days < 1 or self.view_retention_days < 1:
            raise ValueError("retention windows must be at least one day")


_CASTS = {
    "probe_timeout_seconds": float,
    "orphan_policy": str,
    "probe_workers": int,
    "max_update_retries": int,
    "default_page_size": int,
    "max_page_size": int,
    "notification_retention_days": int,
    "view_retention_days": int,
    "compaction_interval_seconds": int,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HeraldConfig:
    """Read *path* and return a :class:`HeraldConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value cannot be converted or fails validation.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    known = {f.name for f in fields(HeraldConfig)}
    values = {}
    for key, value in raw.items():
        if key not in known or value is None:
            continue
        try:
            values[key] = _CASTS[key](value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for {key!r}: {value!r}") from exc

    return HeraldConfig(**values)
