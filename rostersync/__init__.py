"""Rostersync: offline-first record management with two-way reconciliation.

Subpackages:
    sync/     — Record types, local/remote store adapters, reconciliation engine
    models/   — Pydantic request/response schemas for the remote record API
    routers/  — FastAPI routes of the remote record service
    services/ — Postgres-backed record store (asyncpg)
"""

__version__ = "0.1.0"
