"""Listing persistence — idempotent upserts of listings, descriptions, analyses.

Every write is an upsert on the table's single unique key, so running the
analysis pipeline twice for the same item converges on the same rows:

    listings.item_id               <- upsert_listing
    listing_descriptions.listing_id <- upsert_description
    ai_analyses.listing_id          <- upsert_analysis

Two backends: PostgreSQL through an asyncpg pool, and an in-memory store used
in development mode and tests.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

import asyncpg
import structlog

from listing_advisor.config import settings
from listing_advisor.errors import PersistenceError
from listing_advisor.models.contracts import (
    Description,
    Listing,
    Recommendations,
    StoredAnalysis,
)

logger = structlog.get_logger()


class ListingStore(Protocol):
    async def upsert_listing(self, listing: Listing) -> str: ...

    async def upsert_description(self, listing_id: str, description: Description) -> None: ...

    async def upsert_analysis(
        self, listing_id: str, recommendations: Recommendations, model: str | None = None
    ) -> None: ...

    async def get_listing(self, external_id: str) -> tuple[str, Listing] | None: ...

    async def get_analysis(self, listing_id: str) -> StoredAnalysis | None: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

_UPSERT_LISTING = """
INSERT INTO listings (
    id, item_id, title, price, status,
    available_quantity, sold_quantity, category_id, permalink, updated_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, now())
ON CONFLICT (item_id) DO UPDATE SET
    title = EXCLUDED.title,
    price = EXCLUDED.price,
    status = EXCLUDED.status,
    available_quantity = EXCLUDED.available_quantity,
    sold_quantity = EXCLUDED.sold_quantity,
    category_id = EXCLUDED.category_id,
    permalink = EXCLUDED.permalink,
    updated_at = now()
RETURNING id
"""

_UPSERT_DESCRIPTION = """
INSERT INTO listing_descriptions (id, listing_id, plain_text, updated_at)
VALUES ($1, $2, $3, now())
ON CONFLICT (listing_id) DO UPDATE SET
    plain_text = EXCLUDED.plain_text,
    updated_at = now()
"""

_UPSERT_ANALYSIS = """
INSERT INTO ai_analyses (id, listing_id, recommendations, model, updated_at)
VALUES ($1, $2, $3::jsonb, $4, now())
ON CONFLICT (listing_id) DO UPDATE SET
    recommendations = EXCLUDED.recommendations,
    model = EXCLUDED.model,
    updated_at = now()
"""

_SELECT_LISTING = """
SELECT id, item_id, title, price, status, available_quantity, sold_quantity,
       category_id, permalink
FROM listings
WHERE item_id = $1
"""

_SELECT_ANALYSIS = """
SELECT listing_id, recommendations, model, updated_at
FROM ai_analyses
WHERE listing_id = $1
"""

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def pg_dsn(database_url: str) -> str:
    """Convert SQLAlchemy-style URL to plain PostgreSQL DSN for asyncpg."""
    return database_url.replace("postgresql+asyncpg://", "postgresql://")


class PostgresListingStore:
    """Store backed by an asyncpg pool. Each upsert is a single statement."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    @classmethod
    async def connect(cls, database_url: str) -> PostgresListingStore:
        pool = await asyncpg.create_pool(dsn=pg_dsn(database_url), min_size=1, max_size=5)
        return cls(pool)

    async def close(self) -> None:
        await self._pool.close()

    async def upsert_listing(self, listing: Listing) -> str:
        try:
            listing_id = await self._pool.fetchval(
                _UPSERT_LISTING,
                uuid.uuid4(),
                listing.external_id,
                listing.title,
                listing.price,
                listing.status,
                listing.available_quantity,
                listing.sold_quantity,
                listing.category_id,
                listing.permalink,
            )
        except _DB_ERRORS as exc:
            logger.error("listing_upsert_failed", external_id=listing.external_id, error=str(exc))
            raise PersistenceError("save listing", exc) from exc
        return str(listing_id)

    async def upsert_description(self, listing_id: str, description: Description) -> None:
        try:
            await self._pool.execute(
                _UPSERT_DESCRIPTION,
                uuid.uuid4(),
                uuid.UUID(listing_id),
                description.plain_text,
            )
        except _DB_ERRORS as exc:
            logger.error("description_upsert_failed", listing_id=listing_id, error=str(exc))
            raise PersistenceError("save description", exc) from exc

    async def upsert_analysis(
        self, listing_id: str, recommendations: Recommendations, model: str | None = None
    ) -> None:
        try:
            await self._pool.execute(
                _UPSERT_ANALYSIS,
                uuid.uuid4(),
                uuid.UUID(listing_id),
                recommendations.model_dump_json(),
                model,
            )
        except _DB_ERRORS as exc:
            logger.error("analysis_upsert_failed", listing_id=listing_id, error=str(exc))
            raise PersistenceError("save analysis", exc) from exc

    async def get_listing(self, external_id: str) -> tuple[str, Listing] | None:
        row = await self._pool.fetchrow(_SELECT_LISTING, external_id)
        if row is None:
            return None
        listing = Listing(
            external_id=row["item_id"],
            title=row["title"],
            price=row["price"],
            status=row["status"],
            available_quantity=row["available_quantity"],
            sold_quantity=row["sold_quantity"],
            category_id=row["category_id"],
            permalink=row["permalink"],
        )
        return str(row["id"]), listing

    async def get_analysis(self, listing_id: str) -> StoredAnalysis | None:
        row = await self._pool.fetchrow(_SELECT_ANALYSIS, uuid.UUID(listing_id))
        if row is None:
            return None
        raw = row["recommendations"]
        # asyncpg hands jsonb back as text unless a codec is registered
        data = json.loads(raw) if isinstance(raw, str) else raw
        return StoredAnalysis(
            listing_id=str(row["listing_id"]),
            recommendations=Recommendations.model_validate(data),
            model=row["model"],
            updated_at=row["updated_at"],
        )


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryListingStore:
    """Dict-backed store with the same keys and overwrite semantics as Postgres."""

    def __init__(self) -> None:
        self.listings: dict[str, tuple[str, Listing]] = {}
        self.descriptions: dict[str, Description] = {}
        self.analyses: dict[str, StoredAnalysis] = {}

    async def close(self) -> None:
        return None

    async def upsert_listing(self, listing: Listing) -> str:
        existing = self.listings.get(listing.external_id)
        listing_id = existing[0] if existing else str(uuid.uuid4())
        self.listings[listing.external_id] = (listing_id, listing)
        return listing_id

    def _require_listing(self, listing_id: str, operation: str) -> None:
        if not any(lid == listing_id for lid, _ in self.listings.values()):
            cause = LookupError(f"listing {listing_id} does not exist")
            raise PersistenceError(operation, cause)

    async def upsert_description(self, listing_id: str, description: Description) -> None:
        self._require_listing(listing_id, "save description")
        self.descriptions[listing_id] = description.model_copy(update={"listing_id": listing_id})

    async def upsert_analysis(
        self, listing_id: str, recommendations: Recommendations, model: str | None = None
    ) -> None:
        self._require_listing(listing_id, "save analysis")
        self.analyses[listing_id] = StoredAnalysis(
            listing_id=listing_id,
            recommendations=recommendations,
            model=model,
            updated_at=datetime.now(UTC),
        )

    async def get_listing(self, external_id: str) -> tuple[str, Listing] | None:
        return self.listings.get(external_id)

    async def get_analysis(self, listing_id: str) -> StoredAnalysis | None:
        return self.analyses.get(listing_id)


async def create_store() -> ListingStore:
    """Build the store selected by STORAGE_BACKEND."""
    if settings.storage_backend == "postgres":
        logger.info("storage_backend_selected", backend="postgres")
        return await PostgresListingStore.connect(settings.database_url)
    logger.info("storage_backend_selected", backend="memory")
    return InMemoryListingStore()
