"""
Persistent settings for the ride telemetry engine.

Overrides live in a JSON object on disk and are addressed with dot
notation. Engine parameters sit under the ``ride`` section:

    {"ride": {"warmup_timeout_s": 20, "hysteresis_mps": 0.25}}

A file that is not a JSON object is deleted with a warning and the
manager starts empty.
"""

import json
import logging
import os
from typing import Any, Dict, List

logger = logging.getLogger('rideTelemetry.settings')

SETTINGS_FILE = os.path.expanduser("~/.ride_telemetry_settings.json")

_MISSING = object()


def _split(key: str) -> List[str]:
    parts = key.split('.')
    if not all(parts):
        raise ValueError(f"invalid settings key: {key!r}")
    return parts


def _read_document(path: str) -> Dict[str, Any]:
    """
    Parse the settings file.

    Raises:
        ValueError: the file is not a JSON object
        OSError: the file exists but could not be read
    """
    with open(path, 'r', encoding='utf-8') as f:
        document = json.load(f)
    if not isinstance(document, dict):
        raise ValueError(f"expected a JSON object, got {type(document).__name__}")
    return document


def _write_document(path: str, document: Dict[str, Any]):
    """Replace the file in one rename; a failed write leaves the old file."""
    temp_path = path + '.tmp'
    try:
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2, sort_keys=True)
        os.replace(temp_path, path)
    except OSError:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise


class SettingsManager:
    """
    Dot-keyed view over one settings file.

    Every change is written straight back unless ``save=False``.
    """

    def __init__(self, file_path: str = SETTINGS_FILE):
        self._file_path = file_path
        self._settings: Dict[str, Any] = {}
        self._load()

    @property
    def file_path(self) -> str:
        return self._file_path

    def _load(self):
        if not os.path.exists(self._file_path):
            logger.debug("No settings file at %s", self._file_path)
            return
        try:
            self._settings = _read_document(self._file_path)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            logger.warning("Corrupt settings file %s, using defaults: %s",
                           self._file_path, e)
            self._discard_file()
            return
        except OSError as e:
            logger.warning("Could not read settings %s: %s", self._file_path, e)
            return
        logger.info("Settings loaded from %s", self._file_path)

    def _discard_file(self):
        try:
            os.remove(self._file_path)
        except OSError as e:
            logger.error("Could not remove corrupt settings file: %s", e)

    def _save(self):
        try:
            _write_document(self._file_path, self._settings)
        except OSError as e:
            logger.warning("Could not save settings to %s: %s", self._file_path, e)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Value at a dotted key, e.g. ``ride.warmup_timeout_s``.

        Missing keys, or a path running through a non-object, give default.
        """
        node: Any = self._settings
        for part in _split(key):
            node = node.get(part, _MISSING) if isinstance(node, dict) else _MISSING
            if node is _MISSING:
                return default
        return node

    def section(self, name: str) -> Dict[str, Any]:
        """Shallow copy of one top-level object, empty if absent."""
        value = self._settings.get(name)
        return dict(value) if isinstance(value, dict) else {}

    def set(self, key: str, value: Any, save: bool = True):
        """Store value at a dotted key, replacing non-object parents."""
        *parents, leaf = _split(key)
        node = self._settings
        for part in parents:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[leaf] = value
        if save:
            self._save()

    def get_all(self) -> dict:
        return self._settings.copy()

    def reset(self):
        """Forget every override and write the empty document."""
        self._settings = {}
        self._save()
