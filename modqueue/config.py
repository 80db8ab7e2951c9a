"""Engine settings.

Defaults are overridden first by an optional YAML file (``MODQUEUE_CONFIG``
or an explicit path) and then by ``MODQUEUE_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from modqueue.errors import ValidationError

_ENV_PREFIX = "MODQUEUE_"


@dataclass
class Settings:
    data_dir: str = str(Path.home() / ".modqueue")
    store_timeout_seconds: float = 5.0
    backlog_age_hours: float = 24.0
    stats_period_days: int = 30
    scan_group_size: int = 10
    scan_max_workers: int = 4
    scan_pause_seconds: float = 0.5
    reopen_requires_admin: bool = True
    log_level: str = "INFO"
    # Remote content service; empty means the local JSON content store.
    content_api_url: str = ""
    content_api_token: str = ""

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


def _coerce(name: str, raw: Any, target: type) -> Any:
    try:
        if target is bool:
            if isinstance(raw, bool):
                return raw
            return str(raw).strip().lower() in ("1", "true", "yes", "on")
        return target(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid value for setting '{name}': {raw!r}") from exc


def load_settings(config_path: Optional[str | Path] = None) -> Settings:
    """Build settings from defaults, an optional YAML file, and the environment."""
    values: dict[str, Any] = {}
    types = {f.name: type(f.default) for f in fields(Settings)}

    path = config_path or os.environ.get(f"{_ENV_PREFIX}CONFIG")
    if path:
        try:
            with open(path) as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ValidationError(f"Could not read config file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ValidationError(f"Config file {path} must contain a mapping")
        for key, raw in data.items():
            if key in types:
                values[key] = _coerce(key, raw, types[key])

    for name, target in types.items():
        raw = os.environ.get(f"{_ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = _coerce(name, raw, target)

    return Settings(**values)
