"""Integration tests for the FastAPI endpoints.

The app runs in-process over ASGITransport with the conftest collaborators:
a mocked MercadoLibre gateway, the in-memory store and a mocked recommender.
Covers status codes, the ErrorResponse shape and cookie handling.
"""

from unittest.mock import AsyncMock, patch

import pytest

from listing_advisor.errors import AlreadyInProgress, PersistenceError, RecommendationError, UpstreamError
from listing_advisor.models.contracts import ItemSummary, SellerItemsPage, TokenResponse
from tests.factories import SELLER_ID


def _assert_error(resp, status: int, code: str, *, retryable: bool) -> dict:
    assert resp.status_code == status
    body = resp.json()
    assert body["error"] == code
    assert body["retryable"] is retryable
    assert body["message"]
    return body


class TestSession:
    """GET /api/v1/session"""

    @pytest.mark.asyncio
    async def test_anonymous(self, client):
        resp = await client.get("/api/v1/session")
        assert resp.status_code == 200
        assert resp.json() == {"authenticated": False, "user_id": None}

    @pytest.mark.asyncio
    async def test_authenticated(self, client, auth_headers):
        resp = await client.get("/api/v1/session", headers=auth_headers)
        assert resp.json() == {"authenticated": True, "user_id": SELLER_ID}


class TestListListings:
    """GET /api/v1/listings"""

    @pytest.mark.asyncio
    async def test_requires_auth(self, client):
        resp = await client.get("/api/v1/listings")
        _assert_error(resp, 401, "not_authenticated", retryable=False)

    @pytest.mark.asyncio
    async def test_returns_catalog(self, client, gateway, auth_headers):
        gateway.fetch_seller_active_items.return_value = SellerItemsPage(
            items=[ItemSummary(id="MLA111", title="Test", price=900)], total=1
        )
        resp = await client.get("/api/v1/listings", headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 1
        assert body["error"] is None
        assert body["items"][0]["id"] == "MLA111"
        assert body["items"][0]["price"] == 1000  # refreshed from item detail
        assert body["items"][0]["detail_source"] == "detail"
        args = gateway.fetch_seller_active_items.await_args.args
        assert args[0] == SELLER_ID

    @pytest.mark.asyncio
    async def test_search_failure_is_not_an_http_error(self, client, gateway, auth_headers):
        gateway.fetch_seller_active_items.side_effect = UpstreamError("unknown", "ML down")
        resp = await client.get("/api/v1/listings", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"items": [], "total": 0, "error": "ML down"}


class TestAnalyzeListing:
    """POST /api/v1/listings/{item_id}/analysis"""

    @pytest.mark.asyncio
    async def test_analyzes_listing(self, client, auth_headers, recommender):
        resp = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["listing"]["external_id"] == "MLA111"
        assert body["listing"]["permalink"] is None
        assert body["description"]["plain_text"] == "desc"
        assert body["description"]["listing_id"] == body["listing_id"]
        assert body["recommendations"] == recommender.analyze.return_value.model_dump()

    @pytest.mark.asyncio
    async def test_reanalysis_keeps_listing_id(self, client, auth_headers, store):
        first = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        second = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        assert first.json()["listing_id"] == second.json()["listing_id"]
        assert len(store.analyses) == 1

    @pytest.mark.asyncio
    async def test_requires_auth(self, client, gateway):
        resp = await client.post("/api/v1/listings/MLA111/analysis")
        _assert_error(resp, 401, "not_authenticated", retryable=False)
        gateway.fetch_item.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_item_id(self, client, auth_headers):
        resp = await client.post("/api/v1/listings/MLA-111/analysis", headers=auth_headers)
        _assert_error(resp, 422, "validation_error", retryable=False)

    @pytest.mark.asyncio
    async def test_upstream_not_found(self, client, gateway, auth_headers):
        gateway.fetch_item.side_effect = UpstreamError("not_found", "gone", status_code=404)
        resp = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        body = _assert_error(resp, 404, "upstream_fetch_failed", retryable=False)
        assert body["detail"] == "not_found"

    @pytest.mark.asyncio
    async def test_upstream_rate_limited(self, client, gateway, auth_headers):
        gateway.fetch_item.side_effect = UpstreamError("rate_limited", "slow", status_code=429)
        resp = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        _assert_error(resp, 429, "upstream_fetch_failed", retryable=True)

    @pytest.mark.asyncio
    async def test_expired_token(self, client, gateway, auth_headers):
        gateway.fetch_item.side_effect = UpstreamError("unauthorized", "expired", status_code=401)
        resp = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        _assert_error(resp, 401, "not_authenticated", retryable=False)

    @pytest.mark.asyncio
    async def test_ai_failure(self, client, recommender, auth_headers, store):
        recommender.analyze.side_effect = RecommendationError("missing_field", "no risks")
        resp = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        body = _assert_error(resp, 502, "ai_analysis_failed", retryable=True)
        assert body["detail"] == "missing_field"
        assert store.analyses == {}

    @pytest.mark.asyncio
    async def test_save_failure(self, client, store, auth_headers):
        store.upsert_listing = AsyncMock(
            side_effect=PersistenceError("save listing", ConnectionError("db down"))
        )
        resp = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        body = _assert_error(resp, 500, "save_failed", retryable=True)
        assert body["detail"] == "save listing"

    @pytest.mark.asyncio
    async def test_in_progress(self, client, orchestrator, auth_headers):
        with patch.object(
            orchestrator, "analyze_listing", AsyncMock(side_effect=AlreadyInProgress("MLA111"))
        ):
            resp = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        _assert_error(resp, 409, "analysis_in_progress", retryable=True)


class TestGetAnalysis:
    """GET /api/v1/listings/{item_id}/analysis"""

    @pytest.mark.asyncio
    async def test_not_found_before_analysis(self, client):
        resp = await client.get("/api/v1/listings/MLA111/analysis")
        _assert_error(resp, 404, "analysis_not_found", retryable=False)

    @pytest.mark.asyncio
    async def test_returns_stored_analysis(self, client, auth_headers, recommender):
        posted = await client.post("/api/v1/listings/MLA111/analysis", headers=auth_headers)
        resp = await client.get("/api/v1/listings/mla111/analysis")
        assert resp.status_code == 200
        body = resp.json()
        assert body["listing_id"] == posted.json()["listing_id"]
        assert body["model"] == "test-model"
        assert body["recommendations"] == recommender.analyze.return_value.model_dump()


class TestOAuthCallback:
    """GET /api/auth/mercadolibre/callback"""

    @pytest.mark.asyncio
    async def test_missing_code(self, client):
        resp = await client.get("/api/auth/mercadolibre/callback")
        _assert_error(resp, 400, "missing_code", retryable=False)

    @pytest.mark.asyncio
    async def test_sets_cookies_and_redirects(self, client, gateway):
        gateway.exchange_code_for_token.return_value = TokenResponse(
            access_token="APP_USR-new",
            expires_in=21600,
            user_id=42,
            refresh_token="TG-new",
        )
        resp = await client.get("/api/auth/mercadolibre/callback", params={"code": "abc"})
        assert resp.status_code == 307
        assert resp.headers["location"] == "http://test/?success=true"
        cookies = resp.headers.get_list("set-cookie")
        assert any(c.startswith("ml_access_token=APP_USR-new") for c in cookies)
        assert any(c.startswith("ml_refresh_token=TG-new") for c in cookies)
        assert any(c.startswith("ml_user_id=42") for c in cookies)
        assert all("HttpOnly" in c for c in cookies)
        assert gateway.exchange_code_for_token.await_args.args == ("abc",)

    @pytest.mark.asyncio
    async def test_exchange_failure_redirects_with_error(self, client, gateway):
        gateway.exchange_code_for_token.side_effect = UpstreamError("unknown", "invalid_grant")
        resp = await client.get("/api/auth/mercadolibre/callback", params={"code": "bad"})
        assert resp.status_code == 307
        assert resp.headers["location"] == "http://test/?error=auth_failed"
        assert "set-cookie" not in resp.headers


class TestLogin:
    """GET /auth/mercadolibre/login"""

    @pytest.mark.asyncio
    async def test_not_configured(self, client):
        with patch("listing_advisor.api.routes.auth.settings") as mock_settings:
            mock_settings.ml_client_id = ""
            resp = await client.get("/auth/mercadolibre/login")
        _assert_error(resp, 503, "oauth_not_configured", retryable=False)

    @pytest.mark.asyncio
    async def test_redirects_to_mercadolibre(self, client):
        with patch("listing_advisor.api.routes.auth.settings") as mock_settings:
            mock_settings.ml_client_id = "client-1"
            mock_settings.ml_client_secret = "secret"
            mock_settings.ml_redirect_uri = "https://app.example.com/api/auth/mercadolibre/callback"
            mock_settings.ml_auth_url = "https://auth.mercadolibre.com.ar/authorization"
            resp = await client.get("/auth/mercadolibre/login")
        assert resp.status_code == 307
        location = resp.headers["location"]
        assert location.startswith("https://auth.mercadolibre.com.ar/authorization?")
        assert "client_id=client-1" in location
