# storage.py
# Durable key/value store for the custom band list (generic mode).

from __future__ import annotations
import json, logging, os
from typing import Any, List

from schema import Band, STORAGE_KEY, bands_from_json, bands_to_json, default_bands
from diagnostics import validate_bands
from utils import env_or_secret

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = os.path.join(os.path.expanduser("~"), ".eqviz", "storage.json")


def resolve_store_path(passed_path: str | None = None) -> str:
    """Priority: function arg > Streamlit secrets > env var > default."""
    if passed_path and passed_path.strip():
        return passed_path.strip()
    return env_or_secret("EQ_STORE_PATH", DEFAULT_STORE_PATH)


class LocalStore:
    """JSON file holding string keys, rewritten whole on every set()."""

    def __init__(self, path: str):
        self.path = path

    def _read_all(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error reading %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> bool:
        data = self._read_all()
        data[key] = value
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            tmp = self.path + ".tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.error("Error saving %s to %s: %s", key, self.path, e)
            return False
        return True


class BandStore:
    def __init__(self, store: LocalStore, key: str = STORAGE_KEY):
        self.store = store
        self.key = key

    def load(self) -> List[Band]:
        raw = self.store.get(self.key)
        # a saved empty list is a real choice (every band removed), not a first run
        if raw is not None:
            ok, errs = validate_bands(raw)
            if ok:
                return bands_from_json(raw)
            logger.error("Stored bands are invalid, using defaults: %s", errs)
            return default_bands()
        # first run: seed the defaults
        bands = default_bands()
        self.save(bands)
        return bands

    def save(self, bands: List[Band]) -> bool:
        return self.store.set(self.key, bands_to_json(bands))

    def reset(self) -> List[Band]:
        bands = default_bands()
        self.save(bands)
        return bands
