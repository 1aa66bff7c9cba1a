"""Tests for the records API routes."""

from __future__ import annotations

from fastapi import status
from fastapi.testclient import TestClient

API = "/api/v1"


class TestHealth:
    def test_health_reports_store(self, client: TestClient) -> None:
        response = client.get(f"{API}/health")
        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["status"] == "healthy"
        assert body["store"] == "MemoryRemoteStore"


class TestCreate:
    def test_create_returns_201_and_record(self, client: TestClient) -> None:
        response = client.post(f"{API}/records", json={"name": "  Alice  ", "age": 30})
        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["name"] == "Alice"
        assert body["age"] == 30
        assert body["id"]
        assert body["correlation_id"] is None
        assert body["version"] == 1

    def test_create_accepts_correlation_id_and_created_at(self, client: TestClient, make_record) -> None:
        body = make_record("Alice", 30, correlation_id="abc", created_at="2026-03-01T09:00:00Z")
        assert body["correlation_id"] == "abc"
        assert body["created_at"].startswith("2026-03-01T09:00:00")

    def test_invalid_payloads_are_rejected(self, client: TestClient) -> None:
        for payload in (
            {"name": "", "age": 30},
            {"name": "   ", "age": 30},
            {"name": "Alice", "age": 151},
            {"name": "Alice", "age": -1},
            {"name": "Alice", "age": "thirty"},
            {"age": 30},
        ):
            response = client.post(f"{API}/records", json=payload)
            assert response.status_code == 422, payload

    def test_duplicate_correlation_id_is_rejected(self, client: TestClient, make_record) -> None:
        make_record("Alice", 30, correlation_id="abc")
        response = client.post(f"{API}/records", json={"name": "Bob", "age": 25, "correlation_id": "abc"})
        assert response.status_code == 422
        assert "already in use" in response.json()["detail"]


class TestRead:
    def test_list_is_newest_first(self, client: TestClient, make_record) -> None:
        make_record("Old", 1, created_at="2026-03-01T09:00:00Z")
        make_record("New", 2, created_at="2026-03-02T09:00:00Z")
        names = [r["name"] for r in client.get(f"{API}/records").json()]
        assert names == ["New", "Old"]

    def test_get_by_id_and_missing(self, client: TestClient, make_record) -> None:
        created = make_record("Alice", 30)
        assert client.get(f"{API}/records/{created['id']}").json() == created
        missing = client.get(f"{API}/records/does-not-exist")
        assert missing.status_code == status.HTTP_404_NOT_FOUND

    def test_get_by_correlation(self, client: TestClient, make_record) -> None:
        created = make_record("Alice", 30, correlation_id="device-1")
        found = client.get(f"{API}/records/by-correlation/device-1")
        assert found.json()["id"] == created["id"]
        assert client.get(f"{API}/records/by-correlation/nope").status_code == 404

    def test_search_by_content(self, client: TestClient, make_record) -> None:
        make_record("Alice", 30)
        make_record("Alice", 31)
        response = client.get(f"{API}/records/search", params={"name": "Alice", "age": 30})
        assert [(r["name"], r["age"]) for r in response.json()] == [("Alice", 30)]
        bad = client.get(f"{API}/records/search", params={"name": "Alice", "age": 400})
        assert bad.status_code == 422


class TestUpdateDelete:
    def test_update_changes_fields_and_bumps_version(self, client: TestClient, make_record) -> None:
        created = make_record("Alice", 30)
        response = client.put(f"{API}/records/{created['id']}", json={"age": 31})
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["age"] == 31
        assert response.json()["version"] == 2

    def test_update_validation_and_empty_body(self, client: TestClient, make_record) -> None:
        created = make_record("Alice", 30)
        assert client.put(f"{API}/records/{created['id']}", json={"name": ""}).status_code == 422
        assert client.put(f"{API}/records/{created['id']}", json={}).status_code == 400
        assert client.put(f"{API}/records/missing", json={"age": 2}).status_code == 404

    def test_delete_then_404(self, client: TestClient, make_record) -> None:
        created = make_record("Alice", 30)
        response = client.delete(f"{API}/records/{created['id']}")
        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert client.delete(f"{API}/records/{created['id']}").status_code == 404


class TestSyncRoutes:
    def test_bulk_sync_creates_links_and_reports_errors(self, client: TestClient, make_record) -> None:
        make_record("Bob", 25)
        response = client.post(
            f"{API}/records/sync/bulk",
            json={
                "records": [
                    {"id": "local-a", "name": "Alice", "age": 30},
                    {"id": "local-b", "name": "Bob", "age": 25},
                    {"id": "local-c", "name": "", "age": 25},
                ]
            },
        )
        assert response.status_code == status.HTTP_200_OK
        report = response.json()
        assert (report["created"], report["updated"]) == (1, 1)
        assert [e["id"] for e in report["errors"]] == ["local-c"]

        bob = client.get(f"{API}/records/by-correlation/local-b").json()
        assert bob["name"] == "Bob"
        assert len(client.get(f"{API}/records").json()) == 2

    def test_cleanup_collapses_duplicates(self, client: TestClient, make_record) -> None:
        first = make_record("Bob", 25, created_at="2026-03-01T09:00:00Z")
        make_record("Bob", 25, created_at="2026-03-02T09:00:00Z")
        make_record("Bob", 25, created_at="2026-03-03T09:00:00Z")

        report = client.post(f"{API}/records/sync/cleanup").json()

        assert report["duplicates_found"] == 1
        assert report["records_deleted"] == 2
        assert report["duplicate_groups"] == [{"name": "Bob", "age": 25, "count": 3}]
        assert [r["id"] for r in client.get(f"{API}/records").json()] == [first["id"]]

    def test_status(self, client: TestClient, make_record) -> None:
        assert client.get(f"{API}/records/sync/status").json()["count"] == 0
        make_record("Alice", 30)
        body = client.get(f"{API}/records/sync/status").json()
        assert body["count"] == 1
        assert body["reachable"] is True
        assert body["last_updated"] is not None
