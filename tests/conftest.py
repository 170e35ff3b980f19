"""Shared fixtures for the API and persistence tests."""

import pytest
from fastapi.testclient import TestClient

from database import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def client(store):
    import main

    main.app.dependency_overrides[main.get_kv_store] = lambda: store
    yield TestClient(main.app, raise_server_exceptions=False)
    main.app.dependency_overrides.clear()


@pytest.fixture
def sales_rows():
    return [
        {"region": "North", "product": "Widget", "revenue": "120", "date": "2024-01-15"},
        {"region": "South", "product": "Gadget", "revenue": "80", "date": "2024-01-20"},
        {"region": "North", "product": "Gadget", "revenue": "45.5", "date": "2024-02-03"},
        {"region": "East", "product": "Widget", "revenue": "n/a", "date": "2024-02-10"},
        {"region": "South", "product": "Widget", "revenue": "60", "date": "2024-03-01"},
        {"region": "West", "product": "Gizmo", "revenue": "200", "date": "2024-03-15"},
    ]
