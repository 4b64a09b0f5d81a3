"""Shared fixtures: fake collaborators and an in-process API client.

The app's lifespan is not run under ASGITransport, so the client fixture
wires app.state by hand with a mocked MercadoLibre gateway, the in-memory
store and a mocked recommender.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from listing_advisor.main import app
from listing_advisor.models.contracts import ItemDescription, SellerItemsPage
from listing_advisor.services.analysis import AnalysisOrchestrator
from listing_advisor.services.single_flight import SingleFlight
from listing_advisor.services.storage import InMemoryListingStore
from tests.factories import SELLER_ID, TOKEN, make_item, make_recommendations


@pytest.fixture
def gateway() -> MagicMock:
    """MercadoLibre gateway mock serving the MLA111 fixture item."""
    mock = MagicMock()
    mock.fetch_item = AsyncMock(return_value=make_item())
    mock.fetch_description = AsyncMock(return_value=ItemDescription(plain_text="desc"))
    mock.fetch_seller_active_items = AsyncMock(return_value=SellerItemsPage())
    mock.exchange_code_for_token = AsyncMock()
    return mock


@pytest.fixture
def store() -> InMemoryListingStore:
    return InMemoryListingStore()


@pytest.fixture
def recommender() -> MagicMock:
    mock = MagicMock()
    mock.model = "test-model"
    mock.analyze = AsyncMock(return_value=make_recommendations())
    return mock


@pytest.fixture
def orchestrator(gateway, store, recommender) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(gateway, store, recommender, SingleFlight("reject"))


@pytest.fixture
async def client(gateway, store, orchestrator):
    app.state.ml_client = gateway
    app.state.store = store
    app.state.orchestrator = orchestrator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Cookie header as set by the OAuth callback."""
    return {"Cookie": f"ml_access_token={TOKEN}; ml_user_id={SELLER_ID}"}
