"""
Per-conversation settings: the streaming override and the conversation title.

SettingsStore is the key-value port the orchestrator is configured with.
YamlSettingsStore keeps everything under the ``runtime:`` block of a YAML
file and hot-reloads it when the file's mtime changes, so edits made by
another process are picked up without a restart.
"""

from __future__ import annotations

import abc
import logging
import os
import threading
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

STREAMING_PREFIX = "isStreamingEnabled_"
TITLE_PREFIX = "title_"


class SettingsStore(abc.ABC):
    """String key -> primitive value, with typed accessors on top."""

    @abc.abstractmethod
    def get(self, key: str, default=None):
        ...

    @abc.abstractmethod
    def set(self, key: str, value) -> bool:
        ...

    def get_streaming(self, conversation_id: str) -> bool | None:
        """Persisted streaming override, or None when never set."""
        value = self.get(f"{STREAMING_PREFIX}{conversation_id}")
        return None if value is None else bool(value)

    def set_streaming(self, conversation_id: str, enabled: bool) -> bool:
        return self.set(f"{STREAMING_PREFIX}{conversation_id}", bool(enabled))

    def get_title(self, conversation_id: str) -> str | None:
        return self.get(f"{TITLE_PREFIX}{conversation_id}")

    def set_title(self, conversation_id: str, title: str) -> bool:
        return self.set(f"{TITLE_PREFIX}{conversation_id}", title)


class InMemorySettingsStore(SettingsStore):
    def __init__(self, initial: dict | None = None):
        self._data: dict = dict(initial or {})

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value) -> bool:
        self._data[key] = value
        return True


class YamlSettingsStore(SettingsStore):
    """
    YAML-file-backed settings.
    Reads are served from a cache that is reloaded whenever the file changes.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._cache: dict = {}
        self._mtime: float = 0.0
        self._lock = threading.Lock()

    def _runtime(self) -> dict:
        """Return the runtime: block, hot-reloading if the file changed."""
        if not self.path.exists():
            return {}

        try:
            mtime = self.path.stat().st_mtime
        except OSError:
            return self._cache

        if mtime == self._mtime:
            return self._cache

        # File changed, reload
        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
            self._cache = data.get("runtime", {}) or {}
            self._mtime = mtime
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Keeping last good settings, failed to reload %s: %s", self.path, e)

        return self._cache

    def get(self, key: str, default=None):
        return self._runtime().get(key, default)

    def set(self, key: str, value) -> bool:
        """Write a single key into the runtime: block. Returns True on success."""
        with self._lock:
            try:
                if self.path.exists():
                    with open(self.path) as f:
                        data = yaml.safe_load(f) or {}
                else:
                    data = {}

                if "runtime" not in data or not isinstance(data["runtime"], dict):
                    data["runtime"] = {}

                data["runtime"][key] = value

                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "w") as f:
                    yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

                # Bust the mtime cache so the next read picks it up
                self._mtime = 0.0
                return True
            except (OSError, yaml.YAMLError) as e:
                logger.error(
                    "Settings write %s failed: %s (path=%s, writable=%s)",
                    key, e, self.path,
                    os.access(self.path.parent, os.W_OK),
                )
                return False
