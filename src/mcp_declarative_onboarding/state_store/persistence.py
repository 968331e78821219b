"""Durable storage for the state store.

A persistence backend loads and saves the whole state document:
{"tasks": {...}, "originalConfig": {...}, "mostRecentTask": id}.
"""
import copy
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import yaml

from ..config_engine.errors import PersistenceError

logger = logging.getLogger(__name__)


class Persistence(ABC):
    """Key/value durable store for task and original-config records."""

    @abstractmethod
    def load(self) -> Optional[dict[str, Any]]:
        """Return the stored state document, or None when nothing was stored."""
        pass

    @abstractmethod
    def save(self, data: dict[str, Any]) -> None:
        """Replace the stored state document."""
        pass


class MemoryPersistence(Persistence):
    """In-process persistence for tests and ephemeral runs."""

    def __init__(self, data: Optional[dict[str, Any]] = None):
        self.data = copy.deepcopy(data)
        self.saves = 0
        self.fail_saves = False

    def load(self) -> Optional[dict[str, Any]]:
        return copy.deepcopy(self.data)

    def save(self, data: dict[str, Any]) -> None:
        if self.fail_saves:
            raise PersistenceError("state could not be saved")
        self.data = copy.deepcopy(data)
        self.saves += 1


class YamlFilePersistence(Persistence):
    """State document kept in one YAML file, replaced atomically on save."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"Failed to load state from {self.path}: {e}") from e
        if data is not None and not isinstance(data, dict):
            raise PersistenceError(f"State file {self.path} does not contain a mapping")
        return data

    def save(self, data: dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, self.path)
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"Failed to save state to {self.path}: {e}") from e
        logger.debug(f"State saved to {self.path}")
