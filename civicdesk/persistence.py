# Key-value persistence boundary: the store loads everything on start and
# saves everything on change, so backends only need load(key) / save(key, value).

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from pymongo import MongoClient

from .config import STORE_BACKEND, STORE_PATH, MONGODB_URL, MONGODB_DB

logger = logging.getLogger(__name__)


class MemoryKeyValueStore:
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = {}
        for key, value in (initial or {}).items():
            self.save(key, value)

    def load(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return json.loads(self._data[key])

    def save(self, key: str, value: Any) -> None:
        # Stored serialized; every load returns fresh objects
        self._data[key] = json.dumps(value)


class JsonFileKeyValueStore:
    """All keys in one JSON document on disk, rewritten atomically on every save."""

    def __init__(self, path: str = STORE_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.error("Store file %s is not valid JSON: %s", self.path, e)
            raise

    def load(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read_all().get(key, default)

    def save(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            tmp.replace(self.path)


class MongoKeyValueStore:
    """One document per key in a single collection: {"_id": key, "value": ...}."""

    def __init__(self, url: str = MONGODB_URL, db_name: str = MONGODB_DB,
                 collection: str = "kv", client: Optional[MongoClient] = None):
        self.client = client or MongoClient(url)
        self.collection = self.client[db_name][collection]

    def load(self, key: str, default: Any = None) -> Any:
        doc = self.collection.find_one({"_id": key})
        return default if doc is None else doc.get("value", default)

    def save(self, key: str, value: Any) -> None:
        self.collection.replace_one({"_id": key}, {"_id": key, "value": value}, upsert=True)

    def close(self) -> None:
        self.client.close()


def build_kv_store(backend: str = STORE_BACKEND):
    if backend == "json":
        logger.info("Using JSON file store at %s", STORE_PATH)
        return JsonFileKeyValueStore(STORE_PATH)
    if backend == "mongo":
        logger.info("Using MongoDB store %s/%s", MONGODB_URL, MONGODB_DB)
        return MongoKeyValueStore(MONGODB_URL, MONGODB_DB)
    if backend != "memory":
        logger.warning("Unknown STORE_BACKEND %r; using in-memory store", backend)
    return MemoryKeyValueStore()
