"""Listing endpoints — seller catalog and AI analysis.

Credentials come from the cookies set by the OAuth callback. Pipeline errors
are not handled here: they propagate to the ListingAdvisorError handler in
main.py, which maps them onto ErrorResponse.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from listing_advisor.api.routes.auth import SELLER_ID_COOKIE, TOKEN_COOKIE
from listing_advisor.models.contracts import (
    AnalysisResult,
    ErrorResponse,
    SellerCatalog,
    SessionResponse,
    StoredAnalysis,
)
from listing_advisor.services.analysis import AnalysisOrchestrator

logger = structlog.get_logger()

router = APIRouter(tags=["listings"])


def _orchestrator(request: Request) -> AnalysisOrchestrator:
    return request.app.state.orchestrator


@router.get("/session", response_model=SessionResponse)
async def get_session(request: Request) -> SessionResponse:
    """Whether the browser holds a MercadoLibre token."""
    token = request.cookies.get(TOKEN_COOKIE)
    user_id = request.cookies.get(SELLER_ID_COOKIE)
    return SessionResponse(authenticated=bool(token and user_id), user_id=user_id)


@router.get(
    "/listings",
    response_model=SellerCatalog,
    responses={401: {"model": ErrorResponse}},
)
async def list_listings(request: Request) -> SellerCatalog:
    """Active listings of the signed-in seller.

    A failed seller search still answers 200, with an empty list and
    ``error`` set.
    """
    return await _orchestrator(request).list_seller_listings(
        request.cookies.get(SELLER_ID_COOKIE),
        request.cookies.get(TOKEN_COOKIE),
    )


@router.post(
    "/listings/{item_id}/analysis",
    response_model=AnalysisResult,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def analyze_listing(item_id: str, request: Request) -> AnalysisResult:
    """Fetch, store and critique one listing."""
    result = await _orchestrator(request).analyze_listing(
        item_id, request.cookies.get(TOKEN_COOKIE)
    )
    logger.info("listing_analyzed", item_id=result.listing.external_id)
    return result


@router.get(
    "/listings/{item_id}/analysis",
    response_model=StoredAnalysis,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def get_analysis(item_id: str, request: Request):
    """Most recent stored analysis for an item."""
    stored = await _orchestrator(request).get_stored_analysis(item_id)
    if stored is None:
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(
                error="analysis_not_found",
                message=f"No analysis stored for {item_id}",
                retryable=False,
            ).model_dump(),
        )
    return stored
