"""Shared fixtures for the records API tests."""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from rostersync.main import create_app
from rostersync.sync.remote_memory import MemoryRemoteStore


@pytest.fixture
def record_store() -> MemoryRemoteStore:
    """Unopened in-memory store; the app lifespan opens and closes it."""
    return MemoryRemoteStore()


@pytest.fixture
def client(record_store: MemoryRemoteStore) -> Iterator[TestClient]:
    app = create_app(store=record_store)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_record(client: TestClient):
    """POST a record and return the JSON body."""

    def _make(name: str, age: int, **extra) -> dict:
        response = client.post("/api/v1/records", json={"name": name, "age": age, **extra})
        assert response.status_code == 201, response.text
        return response.json()

    return _make
