"""Listing analysis orchestration.

analyze_listing runs a fixed sequence per item:

    fetching_remote -> normalizing -> persisting_listing ->
    persisting_description -> recommending -> persisting_analysis

Each stage starts only after the previous one finished. The first failure
ends the run (there is no resume); the error leaves with the failing stage
and the item id attached. A re-run starts from scratch, and because every
write is an upsert, repeated runs converge on the same stored rows.

list_seller_listings builds the read-only catalog view. It never fails
because of a single item: per-item detail failures fall back to the
search-result fields.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pydantic
import structlog

from listing_advisor.errors import (
    ListingAdvisorError,
    NotAuthenticated,
    UpstreamError,
    ValidationError,
)
from listing_advisor.models.contracts import (
    AnalysisResult,
    ItemSummary,
    SellerCatalog,
    StoredAnalysis,
    UserListingSummary,
)
from listing_advisor.services.normalizer import (
    normalize_description,
    normalize_listing,
    normalize_summary,
)
from listing_advisor.services.single_flight import SingleFlight

logger = structlog.get_logger("analysis")

STAGES = (
    "fetching_remote",
    "normalizing",
    "persisting_listing",
    "persisting_description",
    "recommending",
    "persisting_analysis",
)


def clean_item_id(external_id: str | None) -> str:
    """Strip and upper-case a marketplace item code ("mla111 " -> "MLA111")."""
    cleaned = (external_id or "").strip().upper()
    if not cleaned:
        raise ValidationError("Item id must not be empty")
    if not cleaned.isalnum():
        raise ValidationError(f"Invalid item id: {external_id!r}")
    return cleaned


class AnalysisOrchestrator:
    def __init__(
        self,
        gateway: Any,
        store: Any,
        recommender: Any,
        guard: SingleFlight | None = None,
        *,
        catalog_page_size: int = 50,
        catalog_max_items: int = 200,
        catalog_detail_concurrency: int = 8,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._recommender = recommender
        self._guard = guard or SingleFlight()
        self._page_size = catalog_page_size
        self._max_items = catalog_max_items
        self._detail_concurrency = catalog_detail_concurrency

    # --- Analysis pipeline ---

    async def analyze_listing(self, external_id: str, token: str | None) -> AnalysisResult:
        try:
            item_id = clean_item_id(external_id)
        except ValidationError as exc:
            raise exc.with_context(step="start", external_id=external_id) from None
        if not token:
            raise NotAuthenticated().with_context(step="start", external_id=item_id)

        return await self._guard.run(item_id, lambda: self._run_pipeline(item_id, token))

    async def _run_pipeline(self, external_id: str, token: str) -> AnalysisResult:
        log = logger.bind(external_id=external_id)
        stage = "start"
        log.info("analysis_start")
        try:
            stage = "fetching_remote"
            log.info("analysis_stage", stage=stage)
            item = await self._gateway.fetch_item(external_id, token)
            remote_description = await self._gateway.fetch_description(external_id, token)

            stage = "normalizing"
            log.info("analysis_stage", stage=stage)
            try:
                listing = normalize_listing(item)
            except pydantic.ValidationError as exc:
                raise UpstreamError("unknown", f"Item {external_id} has invalid fields") from exc
            description = normalize_description(listing.external_id, remote_description)

            stage = "persisting_listing"
            log.info("analysis_stage", stage=stage)
            listing_id = await self._store.upsert_listing(listing)
            description = description.model_copy(update={"listing_id": listing_id})

            stage = "persisting_description"
            log.info("analysis_stage", stage=stage, listing_id=listing_id)
            await self._store.upsert_description(listing_id, description)

            stage = "recommending"
            log.info("analysis_stage", stage=stage, listing_id=listing_id)
            recommendations = await self._recommender.analyze(listing, description)

            stage = "persisting_analysis"
            log.info("analysis_stage", stage=stage, listing_id=listing_id)
            await self._store.upsert_analysis(
                listing_id, recommendations, getattr(self._recommender, "model", None)
            )
        except ListingAdvisorError as exc:
            log.error(
                "analysis_failed",
                stage=stage,
                error_type=type(exc).__name__,
                error=exc.message,
            )
            raise exc.with_context(step=stage, external_id=external_id)

        log.info("analysis_complete", listing_id=listing_id)
        return AnalysisResult(
            listing_id=listing_id,
            listing=listing,
            description=description,
            recommendations=recommendations,
        )

    async def get_stored_analysis(self, external_id: str) -> StoredAnalysis | None:
        item_id = clean_item_id(external_id)
        stored = await self._store.get_listing(item_id)
        if stored is None:
            return None
        listing_id, _ = stored
        return await self._store.get_analysis(listing_id)

    # --- Seller catalog read model ---

    async def list_seller_listings(self, seller_id: str | None, token: str | None) -> SellerCatalog:
        if not seller_id or not token:
            raise NotAuthenticated("No autenticado")

        summaries: list[ItemSummary] = []
        total = 0
        offset = 0
        error: str | None = None
        while len(summaries) < self._max_items:
            try:
                page = await self._gateway.fetch_seller_active_items(
                    seller_id, token, offset, self._page_size
                )
            except UpstreamError as exc:
                logger.warning(
                    "catalog_search_failed",
                    seller_id=seller_id,
                    offset=offset,
                    kind=exc.kind,
                )
                error = exc.message
                if not summaries:
                    return SellerCatalog(items=[], total=0, error=error)
                break
            summaries.extend(page.items)
            total = page.total
            offset += len(page.items)
            if not page.items or offset >= total:
                break

        summaries = summaries[: self._max_items]
        semaphore = asyncio.Semaphore(self._detail_concurrency)

        async def _enrich(summary: ItemSummary) -> UserListingSummary:
            async with semaphore:
                try:
                    detail = await self._gateway.fetch_item(summary.id, token)
                except UpstreamError as exc:
                    logger.warning("catalog_detail_degraded", item_id=summary.id, kind=exc.kind)
                    return normalize_summary(summary)
            return normalize_summary(summary, detail)

        items = await asyncio.gather(*(_enrich(s) for s in summaries))
        logger.info(
            "catalog_loaded",
            seller_id=seller_id,
            count=len(items),
            degraded=sum(1 for i in items if i.detail_source == "summary"),
        )
        return SellerCatalog(items=list(items), total=total, error=error)
