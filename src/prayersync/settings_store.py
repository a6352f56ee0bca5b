from __future__ import annotations

import logging
from pathlib import Path
import threading
from typing import Optional

import yaml

from prayersync.models import SettingsSnapshot


class SettingsStore:
    """YAML file holding the user's last saved settings snapshot."""

    def __init__(self, path: Path, defaults: Optional[SettingsSnapshot] = None) -> None:
        self._path = Path(path)
        self._defaults = defaults or SettingsSnapshot()
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SettingsSnapshot:
        with self._lock:
            if not self._path.exists():
                self._logger.info("No saved settings at %s; using defaults", self._path)
                return self._defaults
            try:
                data = yaml.safe_load(self._path.read_text(encoding="utf-8"))
            except (OSError, yaml.YAMLError) as exc:
                self._logger.warning("Failed to read settings %s: %s", self._path, exc)
                return self._defaults
        if not isinstance(data, dict):
            self._logger.warning("Settings file %s is not a mapping; using defaults", self._path)
            return self._defaults
        merged = self._defaults.to_dict()
        merged.update(data)
        return SettingsSnapshot.from_dict(merged)

    def save(self, snapshot: SettingsSnapshot) -> None:
        text = yaml.safe_dump(snapshot.to_dict(), sort_keys=True)
        tmp_path = self._path.with_suffix(".tmp")
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            try:
                tmp_path.write_text(text, encoding="utf-8")
                tmp_path.replace(self._path)
            except OSError as exc:
                self._logger.error("Failed to save settings %s: %s", self._path, exc)
                raise
        self._logger.info("Saved settings to %s", self._path)


class MemorySettingsStore:
    """In-process store for dry runs and tests."""

    def __init__(self, snapshot: Optional[SettingsSnapshot] = None) -> None:
        self.snapshot = snapshot or SettingsSnapshot()
        self.saves = 0

    def load(self) -> SettingsSnapshot:
        return self.snapshot

    def save(self, snapshot: SettingsSnapshot) -> None:
        self.snapshot = snapshot
        self.saves += 1
