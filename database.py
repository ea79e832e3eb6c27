"""
Key-value persistence substrate for the forum store.

The store only needs three operations on string keys: get, set and remove.
Values are opaque strings (the store writes JSON). Two backends are provided:

- MemoryKeyValueStore: a dict, used by tests and when no database is configured
- MongoKeyValueStore: one MongoDB document per key, {"_id": key, "value": str}

`db` is the MongoDB database handle built from DATABASE_URL / DATABASE_NAME,
or None when either is unset.
"""

import logging
import os
from typing import Dict, Optional

from pymongo import MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
KV_COLLECTION = os.getenv("KV_COLLECTION", "kv")

db = None
if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


class KeyValueStore:
    """Interface of the substrate. Backends override all three methods."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class MongoKeyValueStore(KeyValueStore):
    def __init__(self, collection):
        self.collection = collection

    def get(self, key: str) -> Optional[str]:
        doc = self.collection.find_one({"_id": key})
        if not doc:
            return None
        return doc.get("value")

    def set(self, key: str, value: str) -> None:
        self.collection.replace_one({"_id": key}, {"_id": key, "value": value}, upsert=True)

    def remove(self, key: str) -> None:
        self.collection.delete_one({"_id": key})


def get_backend() -> KeyValueStore:
    """Pick the substrate: MongoDB when configured, memory otherwise."""
    if db is not None:
        logger.info("Using MongoDB key-value collection %r", KV_COLLECTION)
        return MongoKeyValueStore(db[KV_COLLECTION])
    logger.warning("DATABASE_URL/DATABASE_NAME not set, data is kept in memory only")
    return MemoryKeyValueStore()
