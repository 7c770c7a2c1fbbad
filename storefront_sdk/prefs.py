# storefront_sdk/prefs.py
"""
Display preferences (theme, colour mode, list sorting) behind an injected
key-value store, so nothing reads ambient global state.
"""
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class PreferenceStore(ABC):
    @abstractmethod
    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryPreferenceStore(PreferenceStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key, default=None):
        return self._data.get(key, default)

    def set(self, key, value):
        self._data[key] = str(value)

    def delete(self, key):
        self._data.pop(key, None)


class JsonFilePreferenceStore(PreferenceStore):
    """Flat string map persisted to a JSON file; written through on every change."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data = self._read()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("ignoring unreadable preferences file %s: %s", self.path, e)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _write(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key, default=None):
        return self._data.get(key, default)

    def set(self, key, value):
        with self._lock:
            self._data[key] = str(value)
            self._write()

    def delete(self, key):
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._write()


class DisplayPreferences(BaseModel):
    theme: str = "default"
    color_mode: Literal["light", "dark"] = "light"
    sort_by: Literal["name", "price", "newest"] = "name"
    sort_order: Literal["asc", "desc"] = "asc"
    view_mode: Literal["grid", "list"] = "grid"


def load_preferences(store: PreferenceStore) -> DisplayPreferences:
    values: Dict[str, Any] = {}
    for name in DisplayPreferences.model_fields:
        raw = store.get(name)
        if raw is None:
            continue
        try:
            # validate one field at a time so a bad value only resets itself
            DisplayPreferences.model_validate({name: raw})
        except ValidationError:
            logger.warning("ignoring invalid stored preference %s=%r", name, raw)
            continue
        values[name] = raw
    return DisplayPreferences.model_validate(values)


def save_preferences(store: PreferenceStore, prefs: DisplayPreferences) -> None:
    for name, value in prefs.model_dump().items():
        store.set(name, value)
