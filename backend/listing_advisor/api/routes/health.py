"""Health check endpoint with real service connectivity probes.

Each probe has a short timeout. A dependency reporting "disconnected" does
not change the overall status: the endpoint always answers 200 so load
balancers keep routing.
"""

from __future__ import annotations

import asyncio

import httpx
import structlog
from fastapi import APIRouter

from listing_advisor.config import settings

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds per service check

VERSION = "0.1.0"


async def _check_postgres() -> str:
    """SELECT 1 against the configured database (postgres backend only)."""
    if settings.storage_backend != "postgres":
        return "not_configured"

    import asyncpg

    from listing_advisor.services.storage import pg_dsn

    try:
        conn = await asyncio.wait_for(
            asyncpg.connect(pg_dsn(settings.database_url)), timeout=_CHECK_TIMEOUT
        )
        try:
            await conn.fetchval("SELECT 1")
        finally:
            await conn.close()
        return "connected"
    except Exception as exc:
        logger.debug("health_postgres_failed", error=str(exc))
        return "disconnected"


async def _check_mercadolibre() -> str:
    """Unauthenticated GET of a public ML resource."""
    try:
        async with httpx.AsyncClient(timeout=_CHECK_TIMEOUT) as client:
            response = await client.get(f"{settings.ml_api_base_url.rstrip('/')}/sites/MLA")
        return "connected" if response.status_code < 500 else "disconnected"
    except httpx.HTTPError as exc:
        logger.debug("health_mercadolibre_failed", error=str(exc))
        return "disconnected"


@router.get("/health")
async def health_check() -> dict:
    """Liveness plus PostgreSQL and MercadoLibre probes, run in parallel."""
    postgres, mercadolibre = await asyncio.gather(_check_postgres(), _check_mercadolibre())

    return {
        "status": "ok",
        "version": VERSION,
        "environment": settings.environment,
        "storage_backend": settings.storage_backend,
        "postgres": postgres,
        "mercadolibre": mercadolibre,
        "ai": "configured" if settings.anthropic_api_key else "not_configured",
    }
