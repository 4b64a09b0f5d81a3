"""Listing Advisor contract models.

Three groups live here: raw MercadoLibre payloads (lenient, unknown keys
ignored), the canonical records the pipeline persists, and the API
request/response shapes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# === MercadoLibre payloads ===


class _RemotePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ItemDetail(_RemotePayload):
    """GET /items/{id}"""

    id: str
    title: str
    price: float
    currency_id: str | None = None
    status: str
    available_quantity: int = 0
    sold_quantity: int = 0
    category_id: str | None = None
    permalink: str | None = None
    thumbnail: str | None = None
    condition: str | None = None


class ItemDescription(_RemotePayload):
    """GET /items/{id}/description"""

    text: str | None = None
    plain_text: str | None = None
    last_updated: str | None = None
    date_created: str | None = None


class ItemSummary(_RemotePayload):
    """One entry of a seller's item search. Coarser than ItemDetail."""

    id: str
    title: str = ""
    price: float | None = None
    currency_id: str | None = None
    status: str | None = None
    available_quantity: int | None = None
    sold_quantity: int | None = None
    category_id: str | None = None
    permalink: str | None = None
    thumbnail: str | None = None
    condition: str | None = None


class SellerItemsPage(BaseModel):
    items: list[ItemSummary] = []
    total: int = 0
    offset: int = 0
    limit: int = 0


class TokenResponse(_RemotePayload):
    """POST /oauth/token"""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 21600
    scope: str = ""
    user_id: int
    refresh_token: str = ""


# === Canonical records ===


class Listing(BaseModel):
    external_id: str
    title: str
    price: float
    status: str
    available_quantity: int = Field(ge=0)
    sold_quantity: int = Field(ge=0)
    category_id: str | None = None
    permalink: str | None = None


class Description(BaseModel):
    external_id: str
    plain_text: str
    listing_id: str | None = None  # internal id, known once the listing is stored


class Recommendations(BaseModel):
    """LLM critique. All four lists are required; empty lists are valid."""

    title_improvements: list[str]
    description_issues: list[str]
    conversion_opportunities: list[str]
    commercial_risks: list[str]


class StoredAnalysis(BaseModel):
    listing_id: str
    recommendations: Recommendations
    model: str | None = None
    updated_at: datetime | None = None


class AnalysisResult(BaseModel):
    listing_id: str
    listing: Listing
    description: Description
    recommendations: Recommendations


# === Read model ===


class UserListingSummary(BaseModel):
    id: str
    title: str
    price: float
    currency_id: str
    status: str | None = None
    available_quantity: int
    sold_quantity: int
    category_id: str | None = None
    permalink: str | None = None
    thumbnail: str | None = None
    condition: str | None = None
    detail_source: Literal["detail", "summary"]


class SellerCatalog(BaseModel):
    items: list[UserListingSummary] = []
    total: int = 0
    error: str | None = None


# === API Request/Response Models ===


class SessionResponse(BaseModel):
    authenticated: bool
    user_id: str | None = None


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool
    detail: str | None = None
