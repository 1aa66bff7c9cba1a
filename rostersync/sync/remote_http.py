"""REST client for the Rostersync remote record service.

Speaks the JSON API served by ``rostersync.main`` (routes under
``/api/v1/records``) and maps transport and HTTP failures onto the sync
error taxonomy:

    timeout / connection error / HTTP 5xx  ->  Unreachable
    malformed 2xx body                     ->  Unreachable
    HTTP 404                               ->  NotFound (None for lookups)
    HTTP 400 / 409 / 422, other 4xx        ->  ValidationError

Environment variables (via Settings):
    REMOTE_API_URL          — Base URL including the ``/api/v1`` prefix
    REMOTE_TIMEOUT_SECONDS  — Per-request timeout
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping

import httpx

from rostersync.config import get_settings
from rostersync.errors import NotFound, Unreachable, ValidationError
from rostersync.sync.base import (
    UPDATABLE_FIELDS,
    BulkItem,
    BulkItemError,
    BulkReport,
    Record,
    RecordId,
    RemoteStatus,
    RemoteStore,
)

logger = logging.getLogger("rostersync.sync.remote_http")


class HttpRemoteStore(RemoteStore):
    """``RemoteStore`` backed by the remote record service over HTTP.

    Usage::

        async with HttpRemoteStore("http://server:8000/api/v1") as remote:
            records = await remote.list_all()
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP remote store.

        Args:
            base_url:    API root (REMOTE_API_URL setting).
            timeout:     Request timeout in seconds (REMOTE_TIMEOUT_SECONDS setting).
            http_client: Optional pre-configured httpx client (for testing);
                         it is not closed by ``close()``.
        """
        super().__init__()
        settings = get_settings()
        self._base_url = (base_url or settings.remote_api_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.remote_timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        await super().open()
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        logger.debug("HTTP remote store ready at %s", self._base_url)

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        await super().close()

    # ------------------------------------------------------------------
    # RemoteStore interface
    # ------------------------------------------------------------------

    async def insert(self, record: Record) -> Record:
        payload: dict[str, Any] = {
            "name": record.name,
            "age": record.age,
            "created_at": record.created_at.isoformat(),
        }
        if record.correlation_id is not None:
            payload["correlation_id"] = record.correlation_id.value
        data = await self._request("POST", "/records", json=payload)
        return record_from_json(data)

    async def update(self, remote_id: RecordId, fields: Mapping[str, Any]) -> Record:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {sorted(unknown)}")
        payload = {
            key: value.value if isinstance(value, RecordId) else value
            for key, value in fields.items()
        }
        data = await self._request("PUT", f"/records/{remote_id.value}", json=payload)
        return record_from_json(data)

    async def delete(self, remote_id: RecordId) -> None:
        await self._request("DELETE", f"/records/{remote_id.value}")

    async def get(self, remote_id: RecordId) -> Record | None:
        try:
            data = await self._request("GET", f"/records/{remote_id.value}")
        except NotFound:
            return None
        return record_from_json(data)

    async def list_all(self) -> list[Record]:
        data = await self._request("GET", "/records")
        records = [record_from_json(item) for item in data]
        return sorted(records, key=lambda r: r.created_at)

    async def find_by_correlation_id(self, correlation_id: RecordId) -> Record | None:
        try:
            data = await self._request("GET", f"/records/by-correlation/{correlation_id.value}")
        except NotFound:
            return None
        return record_from_json(data)

    async def find_by_content(self, name: str, age: int) -> list[Record]:
        data = await self._request(
            "GET", "/records/search", params={"name": name.strip(), "age": age}
        )
        records = [record_from_json(item) for item in data]
        return sorted(records, key=lambda r: r.created_at)

    async def status(self) -> RemoteStatus:
        try:
            data = await self._request("GET", "/records/sync/status")
        except Unreachable as exc:
            logger.warning("Remote status probe failed: %s", exc)
            return RemoteStatus(count=0, last_updated=None, reachable=False)
        return RemoteStatus(
            count=data["count"],
            last_updated=_parse_datetime(data.get("last_updated")),
            reachable=data.get("reachable", True),
        )

    async def bulk_upsert(self, items: Iterable[BulkItem]) -> BulkReport:
        payload = {
            "records": [
                {
                    "id": item.id.value,
                    "name": item.name,
                    "age": item.age,
                    "created_at": item.created_at.isoformat(),
                    "updated_at": item.updated_at.isoformat(),
                }
                for item in items
            ]
        }
        data = await self._request("POST", "/records/sync/bulk", json=payload)
        return BulkReport(
            created=data["created"],
            updated=data["updated"],
            errors=[BulkItemError(id=e["id"], error=e["error"]) for e in data.get("errors", [])],
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json: Any = None,
    ) -> Any:
        """Send one request and classify any failure.

        Returns:
            Decoded JSON body, or None for empty (204) responses.

        Raises:
            Unreachable:     Transport failure, timeout or HTTP 5xx.
            NotFound:        HTTP 404.
            ValidationError: Any other HTTP 4xx.
        """
        self._require_ready()
        url = f"{self._base_url}{path}"
        try:
            response = await self._http_client.request(
                method, url, params=params, json=json, timeout=self._timeout
            )
        except httpx.TimeoutException as exc:
            raise Unreachable(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise Unreachable(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 500:
            raise Unreachable(f"{method} {path} returned {response.status_code}")
        if response.status_code == 404:
            raise NotFound(_error_detail(response) or f"{path} not found")
        if response.status_code >= 400:
            raise ValidationError(
                _error_detail(response) or f"{method} {path} rejected ({response.status_code})"
            )

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise Unreachable(f"{method} {path} returned a malformed body") from exc


# ---------------------------------------------------------------------------
# JSON mapping
# ---------------------------------------------------------------------------


def record_from_json(data: Mapping[str, Any]) -> Record:
    """Build a ``Record`` from the service's record representation.

    Raises:
        Unreachable: If the payload is not a record (the service is not
            answering as expected).
    """
    try:
        correlation_id = data.get("correlation_id")
        return Record(
            name=data["name"],
            age=data["age"],
            remote_id=RecordId.remote(str(data["id"])),
            correlation_id=RecordId.local(correlation_id) if correlation_id else None,
            created_at=_parse_datetime(data["created_at"]),
            updated_at=_parse_datetime(data["updated_at"]),
            version=data.get("version"),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise Unreachable(f"Malformed record in response: {exc!r}") from exc


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _error_detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, list):
        return "; ".join(str(item.get("msg", item)) for item in detail)
    return str(detail) if detail else None
