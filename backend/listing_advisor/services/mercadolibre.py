"""MercadoLibre API gateway.

Thin async wrapper over the three read endpoints the analysis pipeline
needs, plus the OAuth code exchange. Every call takes the bearer token as an
argument; nothing here reads or writes credential storage. No call is ever
retried: failures are classified into UpstreamError and raised.
"""

from __future__ import annotations

import urllib.parse
from typing import Any

import httpx
import pydantic
import structlog

from listing_advisor.errors import UpstreamError
from listing_advisor.models.contracts import (
    ItemDescription,
    ItemDetail,
    ItemSummary,
    SellerItemsPage,
    TokenResponse,
)

log = structlog.get_logger("mercadolibre")


def build_authorization_url(auth_url: str, client_id: str, redirect_uri: str) -> str:
    """URL the seller is redirected to in order to grant access."""
    params = urllib.parse.urlencode(
        {"response_type": "code", "client_id": client_id, "redirect_uri": redirect_uri}
    )
    return f"{auth_url}?{params}"


def _error_message(response: httpx.Response) -> str:
    """Pull the human-readable part out of an ML error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]


class MercadoLibreClient:
    """Async client for api.mercadolibre.com.

    The caller owns the httpx.AsyncClient (and closes it); this class only
    issues requests against it.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")

    async def _get(
        self,
        path: str,
        token: str,
        what: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        try:
            response = await self._http.get(url, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            log.warning("ml_request_timeout", path=path)
            raise UpstreamError("unknown", f"Timeout fetching {what}") from exc
        except httpx.RequestError as exc:
            log.warning("ml_request_failed", path=path, error_type=type(exc).__name__)
            raise UpstreamError(
                "unknown", f"Network error fetching {what}: {type(exc).__name__}"
            ) from exc

        if response.status_code >= 400:
            error = UpstreamError.from_status(
                response.status_code,
                f"Failed to fetch {what} ({response.status_code}): {_error_message(response)}",
            )
            log.warning(
                "ml_request_rejected",
                path=path,
                status=response.status_code,
                kind=error.kind,
            )
            raise error

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("unknown", f"Undecodable response for {what}") from exc

    async def fetch_item(self, external_id: str, token: str) -> ItemDetail:
        data = await self._get(f"/items/{external_id}", token, f"item {external_id}")
        try:
            return ItemDetail.model_validate(data)
        except pydantic.ValidationError as exc:
            raise UpstreamError("unknown", f"Unexpected item payload for {external_id}") from exc

    async def fetch_description(self, external_id: str, token: str) -> ItemDescription:
        data = await self._get(
            f"/items/{external_id}/description", token, f"description for item {external_id}"
        )
        if not data:
            return ItemDescription()
        try:
            return ItemDescription.model_validate(data)
        except pydantic.ValidationError as exc:
            raise UpstreamError(
                "unknown", f"Unexpected description payload for {external_id}"
            ) from exc

    async def fetch_seller_active_items(
        self,
        seller_id: str,
        token: str,
        offset: int = 0,
        limit: int = 50,
    ) -> SellerItemsPage:
        """One page of the seller's active items. Pagination is the caller's job.

        The search endpoint returns bare item ids unless richer attributes are
        requested; both shapes are accepted.
        """
        data = await self._get(
            f"/users/{seller_id}/items/search",
            token,
            "user listings",
            params={"offset": offset, "limit": limit, "status": "active"},
        )
        if not isinstance(data, dict):
            raise UpstreamError("unknown", "Unexpected seller search payload")

        items: list[ItemSummary] = []
        for raw in data.get("results") or []:
            if isinstance(raw, str):
                items.append(ItemSummary(id=raw))
            elif isinstance(raw, dict) and raw.get("id"):
                try:
                    items.append(ItemSummary.model_validate(raw))
                except pydantic.ValidationError:
                    log.warning("ml_search_result_skipped", item_id=raw.get("id"))
            else:
                log.warning("ml_search_result_skipped", data=repr(raw)[:100])

        paging = data.get("paging") or {}
        return SellerItemsPage(
            items=items,
            total=int(paging.get("total", len(items))),
            offset=int(paging.get("offset", offset)),
            limit=int(paging.get("limit", limit)),
        )

    async def exchange_code_for_token(
        self,
        code: str,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> TokenResponse:
        """Trade an OAuth authorization code for an access token."""
        payload = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        try:
            response = await self._http.post(
                f"{self._base_url}/oauth/token",
                json=payload,
                headers={"Accept": "application/json"},
            )
        except httpx.RequestError as exc:
            raise UpstreamError(
                "unknown", f"Network error exchanging code for token: {type(exc).__name__}"
            ) from exc

        if response.status_code >= 400:
            raise UpstreamError.from_status(
                response.status_code,
                f"Failed to exchange code for token: {_error_message(response)}",
            )
        try:
            return TokenResponse.model_validate(response.json())
        except ValueError as exc:
            raise UpstreamError("unknown", "Unexpected token payload") from exc
