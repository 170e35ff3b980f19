import re
from datetime import datetime, timezone

import pytest
from pymongo.errors import DocumentTooLarge

from config import Settings
from database import (
    CHART_CONFIG_PREFIX,
    DATASET_INDEX_KEY,
    WIDGETS_KEY,
    ChartConfigRepository,
    DatasetRepository,
    MemoryStore,
    MongoStore,
    ValueTooLargeError,
    WidgetRepository,
    get_store,
)
from schemas import Column, Dataset, Widget


class FakeCollection:
    """Just enough of pymongo's Collection for MongoStore."""

    def __init__(self):
        self.docs = {}

    def find_one(self, query):
        doc = self.docs.get(query["_id"])
        return dict(doc) if doc else None

    def update_one(self, query, update, upsert=False):
        key = query["_id"]
        if key not in self.docs:
            assert upsert
            self.docs[key] = {"_id": key, **update.get("$setOnInsert", {})}
        self.docs[key].update(update["$set"])

    def delete_one(self, query):
        self.docs.pop(query["_id"], None)

    def find(self, query, projection=None):
        pattern = query.get("_id", {}).get("$regex")
        return [{"_id": k} for k in self.docs if pattern is None or re.match(pattern, k)]


class SizeLimitedCollection(FakeCollection):
    """Rejects values over ``limit`` bytes the way MongoDB rejects oversized documents."""

    def __init__(self, limit):
        super().__init__()
        self.limit = limit

    def update_one(self, query, update, upsert=False):
        if len(update["$set"]["value"].encode("utf-8")) > self.limit:
            raise DocumentTooLarge("BSON document too large")
        super().update_one(query, update, upsert)


def _settings(**overrides):
    values = dict(
        store_backend="memory",
        database_url="mongodb://localhost:27017",
        database_name="snapgraph",
        gemini_api_key="",
        gemini_model="gemini-flash-latest",
        gemini_timeout=30.0,
        max_upload_mb=50,
        cors_origins=["*"],
        log_level="INFO",
    )
    values.update(overrides)
    return Settings(**values)


def _dataset(dataset_id, name="sales.csv"):
    return Dataset(
        id=dataset_id,
        name=name,
        rows=[{"a": "1"}],
        columns=[Column(key="a", label="A", type="number", sample=["1"])],
        uploaded_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture(params=["memory", "mongo"])
def kv(request):
    if request.param == "memory":
        return MemoryStore()
    return MongoStore(FakeCollection())


def test_store_roundtrip(kv):
    kv.set("chart-config-a", "1")
    kv.set("chart-config-b", "2")
    kv.set("other", "3")

    assert kv.get("chart-config-a") == "1"
    assert sorted(kv.keys("chart-config-")) == ["chart-config-a", "chart-config-b"]
    assert len(kv.keys()) == 3

    kv.delete("chart-config-a")
    kv.delete("never-set")
    assert kv.get("chart-config-a") is None


def test_mongo_store_keeps_created_at_on_update():
    collection = FakeCollection()
    store = MongoStore(collection)

    store.set("k", "v1")
    created = collection.docs["k"]["created_at"]
    store.set("k", "v2")

    assert collection.docs["k"]["value"] == "v2"
    assert collection.docs["k"]["created_at"] == created


def test_get_store_selects_backend():
    assert isinstance(get_store(_settings()), MemoryStore)
    assert isinstance(get_store(_settings(store_backend="mongo")), MongoStore)
    with pytest.raises(ValueError):
        get_store(_settings(store_backend="redis"))


def test_dataset_repository_keeps_upload_order(kv):
    repo = DatasetRepository(kv)
    repo.add(_dataset("b"))
    repo.add(_dataset("a"))

    assert [d.id for d in repo.list()] == ["b", "a"]
    assert repo.get("a") == _dataset("a")
    assert repo.get("missing") is None


def test_dataset_repository_delete(kv):
    repo = DatasetRepository(kv)
    repo.add(_dataset("a"))

    assert repo.delete("a") is True
    assert repo.delete("a") is False
    assert repo.list() == []
    assert kv.get("dataset-a") is None


def test_chart_config_roundtrip(kv):
    repo = ChartConfigRepository(kv)

    saved = repo.save("w1", {"chart_type": "pie", "x_axis": "region"})

    assert "timestamp" in saved
    assert repo.load("w1") == saved
    repo.reset("w1")
    assert repo.load("w1") is None


def test_corrupt_chart_config_loads_as_missing(kv):
    kv.set(CHART_CONFIG_PREFIX + "w1", "{not json")

    assert ChartConfigRepository(kv).load("w1") is None


def test_widget_repository(kv):
    repo = WidgetRepository(kv)
    widgets = [Widget(id="widget-1", type="kpi", title="Kpi Widget")]

    repo.save(widgets)

    assert repo.load() == widgets
    repo.clear()
    assert repo.load() == []


def test_unreadable_widgets_load_as_empty(kv):
    kv.set(WIDGETS_KEY, '[{"id": "x"}]')

    assert WidgetRepository(kv).load() == []


def _wide_dataset(dataset_id, count):
    return Dataset(
        id=dataset_id,
        name="wide.csv",
        rows=[{"a": str(i), "b": "x" * 20} for i in range(count)],
        uploaded_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_mongo_store_reports_values_too_large():
    collection = SizeLimitedCollection(limit=10)
    store = MongoStore(collection)

    with pytest.raises(ValueTooLargeError) as exc:
        store.set("k", "x" * 11)

    assert exc.value.key == "k"
    assert exc.value.size == 11
    assert collection.docs == {}


def test_dataset_rows_are_split_across_chunks(kv):
    repo = DatasetRepository(kv, chunk_bytes=128)
    dataset = _wide_dataset("w", 20)

    repo.add(dataset)

    assert len(kv.keys("dataset-w-rows-")) > 1
    assert repo.get("w") == dataset
    assert "rows" not in kv.get("dataset-w")


def test_large_dataset_fits_a_size_limited_collection():
    collection = SizeLimitedCollection(limit=2048)
    repo = DatasetRepository(MongoStore(collection), chunk_bytes=1024)
    dataset = _wide_dataset("big", 300)

    repo.add(dataset)

    assert repo.get("big") == dataset
    assert [d.id for d in repo.list()] == ["big"]


def test_dataset_too_large_to_store_leaves_nothing_behind():
    collection = SizeLimitedCollection(limit=200)
    repo = DatasetRepository(MongoStore(collection), chunk_bytes=100)
    dataset = _wide_dataset("big", 5)
    dataset.rows.append({"a": "huge", "b": "x" * 500})

    with pytest.raises(ValueTooLargeError):
        repo.add(dataset)

    assert collection.docs == {}
    assert repo.list() == []


def test_delete_removes_row_chunks(kv):
    repo = DatasetRepository(kv, chunk_bytes=64)
    repo.add(_wide_dataset("w", 10))

    repo.delete("w")

    assert kv.keys("dataset-") == []
    assert kv.get(DATASET_INDEX_KEY) == "[]"


def test_storing_fewer_rows_drops_stale_chunks(kv):
    repo = DatasetRepository(kv, chunk_bytes=64)
    repo.add(_wide_dataset("w", 10))

    repo.add(_wide_dataset("w", 1))

    assert kv.keys("dataset-w-rows-") == ["dataset-w-rows-0"]
    assert len(repo.get("w").rows) == 1


def test_dataset_with_missing_chunk_loads_as_missing(kv):
    repo = DatasetRepository(kv, chunk_bytes=64)
    repo.add(_wide_dataset("w", 10))

    kv.delete("dataset-w-rows-1")

    assert repo.get("w") is None
    assert repo.list() == []
