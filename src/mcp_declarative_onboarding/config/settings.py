"""Engine settings.

Settings come from an optional YAML file, then environment variables,
which take precedence.

Environment Variables:
    ONBOARD_SETTINGS: Path to a settings YAML file (optional)
    ONBOARD_STATE_DIR: Directory of the persisted state (default: ~/.onboarding)
    ONBOARD_RETENTION_DAYS: Days a finished task is kept (default: 7)
    ONBOARD_MAX_PARALLEL: Bound on concurrent sub-steps within a domain (default: 4)
    ONBOARD_DEVICE: Inventory id of the device to onboard (default: first device)
"""
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path.home() / ".onboarding"
STATE_FILE_NAME = "state.yaml"


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring {name}={value!r}: not an integer")
        return default


@dataclass
class EngineSettings:
    """Runtime settings of the reconciliation engine."""
    state_dir: Path = field(default_factory=lambda: DEFAULT_STATE_DIR)
    retention_days: int = 7
    max_parallel: int = 4
    device_id: Optional[str] = None

    @property
    def state_file(self) -> Path:
        return self.state_dir / STATE_FILE_NAME

    @classmethod
    def from_yaml(cls, path: str) -> "EngineSettings":
        """Load settings from a YAML mapping; unknown keys are ignored."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                logger.warning(f"Ignoring unknown setting '{key}' in {path}")
        values = {k: v for k, v in data.items() if k in known}
        if "state_dir" in values:
            values["state_dir"] = Path(values["state_dir"]).expanduser()
        return cls(**values)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "EngineSettings":
        """Settings from the YAML file (if any) overridden by the environment."""
        path = path or os.environ.get("ONBOARD_SETTINGS")
        settings = cls.from_yaml(path) if path else cls()

        state_dir = os.environ.get("ONBOARD_STATE_DIR")
        if state_dir:
            settings.state_dir = Path(state_dir).expanduser()
        settings.retention_days = _int_env("ONBOARD_RETENTION_DAYS", settings.retention_days)
        settings.max_parallel = max(1, _int_env("ONBOARD_MAX_PARALLEL", settings.max_parallel))
        settings.device_id = os.environ.get("ONBOARD_DEVICE", settings.device_id)
        return settings
