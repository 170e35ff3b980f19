import json
import logging
import re
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import DocumentTooLarge

from config import Settings
from schemas import Dataset, Widget

logger = logging.getLogger(__name__)

DATASET_INDEX_KEY = "snapgraph-datasets"
DATASET_KEY_PREFIX = "dataset-"
CHART_CONFIG_PREFIX = "chart-config-"
WIDGETS_KEY = "snapgraph-dashboard-widgets"
ROWS_KEY_INFIX = "-rows-"

# MongoDB caps a document at 16 MB.
ROW_CHUNK_BYTES = 4 * 1024 * 1024


class ValueTooLargeError(Exception):
    """Raised when a value is too large for the store to hold under one key."""

    def __init__(self, key: str, size: int):
        super().__init__(f"Value for {key} is too large to store ({size} bytes)")
        self.key = key
        self.size = size


class KeyValueStore(Protocol):
    """String-keyed store holding opaque serialized values."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [k for k in self._data if k.startswith(prefix)]


class MongoStore:
    """One document per key: ``{_id: key, value, created_at, updated_at}``."""

    def __init__(self, collection: Collection) -> None:
        self._collection = collection

    def get(self, key: str) -> Optional[str]:
        doc = self._collection.find_one({"_id": key})
        return doc["value"] if doc else None

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc)
        try:
            self._collection.update_one(
                {"_id": key},
                {"$set": {"value": value, "updated_at": now}, "$setOnInsert": {"created_at": now}},
                upsert=True,
            )
        except DocumentTooLarge as e:
            raise ValueTooLargeError(key, len(value.encode("utf-8"))) from e

    def delete(self, key: str) -> None:
        self._collection.delete_one({"_id": key})

    def keys(self, prefix: str = "") -> List[str]:
        query: Dict[str, Any] = {}
        if prefix:
            query["_id"] = {"$regex": "^" + re.escape(prefix)}
        return [doc["_id"] for doc in self._collection.find(query, {"_id": 1})]

    def ping(self) -> List[str]:
        return self._collection.database.list_collection_names()[:10]


def get_store(settings: Settings) -> KeyValueStore:
    if settings.store_backend == "mongo":
        client = MongoClient(settings.database_url)
        return MongoStore(client[settings.database_name]["kv"])
    if settings.store_backend != "memory":
        raise ValueError(f"Invalid STORE_BACKEND: {settings.store_backend}. Must be 'memory' or 'mongo'")
    return MemoryStore()


def _load_json(store: KeyValueStore, key: str) -> Any:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable value stored under %s", key)
        return None


def _split_rows(rows: List[Dict[str, Any]], chunk_bytes: int) -> List[str]:
    """Serialize rows into JSON arrays of roughly ``chunk_bytes`` each."""
    chunks: List[str] = []
    parts: List[str] = []
    size = 0
    for row in rows:
        part = json.dumps(row)
        part_size = len(part.encode("utf-8")) + 1
        if parts and size + part_size > chunk_bytes:
            chunks.append("[" + ",".join(parts) + "]")
            parts, size = [], 0
        parts.append(part)
        size += part_size
    if parts:
        chunks.append("[" + ",".join(parts) + "]")
    return chunks


class DatasetRepository:
    """Datasets in upload order.

    Each dataset is stored as a header under ``dataset-<id>`` and its rows as
    JSON arrays under ``dataset-<id>-rows-<n>``, split so that no chunk goes
    much past ``chunk_bytes``. A single row larger than that gets a chunk of
    its own.
    """

    def __init__(self, store: KeyValueStore, chunk_bytes: int = ROW_CHUNK_BYTES) -> None:
        self.store = store
        self.chunk_bytes = chunk_bytes

    def _ids(self) -> List[str]:
        ids = _load_json(self.store, DATASET_INDEX_KEY)
        return ids if isinstance(ids, list) else []

    @staticmethod
    def _chunk_prefix(dataset_id: str) -> str:
        return f"{DATASET_KEY_PREFIX}{dataset_id}{ROWS_KEY_INFIX}"

    def _drop_chunks(self, dataset_id: str, start: int = 0) -> None:
        prefix = self._chunk_prefix(dataset_id)
        for key in self.store.keys(prefix):
            suffix = key[len(prefix):]
            if suffix.isdigit() and int(suffix) >= start:
                self.store.delete(key)

    def add(self, dataset: Dataset) -> Dataset:
        payload = dataset.model_dump(mode="json")
        chunks = _split_rows(payload.pop("rows"), self.chunk_bytes)
        payload["row_chunks"] = len(chunks)

        prefix = self._chunk_prefix(dataset.id)
        written: List[str] = []
        try:
            for n, chunk in enumerate(chunks):
                self.store.set(f"{prefix}{n}", chunk)
                written.append(f"{prefix}{n}")
            self.store.set(DATASET_KEY_PREFIX + dataset.id, json.dumps(payload))
        except ValueTooLargeError:
            for key in written:
                self.store.delete(key)
            raise
        self._drop_chunks(dataset.id, start=len(chunks))

        ids = self._ids()
        if dataset.id not in ids:
            ids.append(dataset.id)
        self.store.set(DATASET_INDEX_KEY, json.dumps(ids))
        logger.debug("Stored dataset %s in %d row chunks", dataset.id, len(chunks))
        return dataset

    def get(self, dataset_id: str) -> Optional[Dataset]:
        payload = _load_json(self.store, DATASET_KEY_PREFIX + dataset_id)
        if payload is None:
            return None
        if not isinstance(payload, dict):
            logger.warning("Ignoring unreadable dataset %s", dataset_id)
            return None

        chunk_count = payload.pop("row_chunks", None)
        if chunk_count is not None:
            rows: List[Dict[str, Any]] = []
            prefix = self._chunk_prefix(dataset_id)
            for n in range(chunk_count):
                chunk = _load_json(self.store, f"{prefix}{n}")
                if not isinstance(chunk, list):
                    logger.warning("Dataset %s is missing row chunk %d", dataset_id, n)
                    return None
                rows.extend(chunk)
            payload["rows"] = rows

        try:
            return Dataset.model_validate(payload)
        except ValidationError:
            logger.warning("Ignoring unreadable dataset %s", dataset_id)
            return None

    def list(self) -> List[Dataset]:
        datasets = []
        for dataset_id in self._ids():
            dataset = self.get(dataset_id)
            if dataset is not None:
                datasets.append(dataset)
        return datasets

    def delete(self, dataset_id: str) -> bool:
        ids = self._ids()
        if dataset_id not in ids:
            return False
        ids.remove(dataset_id)
        self.store.set(DATASET_INDEX_KEY, json.dumps(ids))
        self.store.delete(DATASET_KEY_PREFIX + dataset_id)
        self._drop_chunks(dataset_id)
        return True


class ChartConfigRepository:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def load(self, chart_id: str) -> Optional[Dict[str, Any]]:
        config = _load_json(self.store, CHART_CONFIG_PREFIX + chart_id)
        return config if isinstance(config, dict) else None

    def save(self, chart_id: str, config: Dict[str, Any]) -> Dict[str, Any]:
        payload = {**config, "timestamp": datetime.now(timezone.utc).isoformat()}
        self.store.set(CHART_CONFIG_PREFIX + chart_id, json.dumps(payload))
        return payload

    def reset(self, chart_id: str) -> None:
        self.store.delete(CHART_CONFIG_PREFIX + chart_id)


class WidgetRepository:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def load(self) -> List[Widget]:
        raw = _load_json(self.store, WIDGETS_KEY)
        if not isinstance(raw, list):
            return []
        try:
            return [Widget.model_validate(item) for item in raw]
        except ValidationError:
            logger.warning("Ignoring unreadable dashboard widgets")
            return []

    def save(self, widgets: List[Widget]) -> None:
        self.store.set(WIDGETS_KEY, json.dumps([w.model_dump() for w in widgets]))

    def clear(self) -> None:
        self.store.delete(WIDGETS_KEY)
