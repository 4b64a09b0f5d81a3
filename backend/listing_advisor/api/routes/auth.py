"""MercadoLibre OAuth — login redirect and authorization-code callback.

The callback stores the access token, refresh token and seller id in
HTTP-only cookies. The rest of the service reads them back as opaque
strings and never inspects expiry.
"""

from __future__ import annotations

from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from listing_advisor.config import settings
from listing_advisor.errors import UpstreamError
from listing_advisor.models.contracts import ErrorResponse
from listing_advisor.services.mercadolibre import MercadoLibreClient, build_authorization_url

logger = structlog.get_logger()

router = APIRouter(tags=["auth"])

TOKEN_COOKIE = "ml_access_token"
REFRESH_COOKIE = "ml_refresh_token"
SELLER_ID_COOKIE = "ml_user_id"
REFRESH_COOKIE_MAX_AGE = 60 * 60 * 24 * 30  # 30 days


def _oauth_configured() -> bool:
    return bool(settings.ml_client_id and settings.ml_client_secret and settings.ml_redirect_uri)


def _set_cookie(response: Response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        name,
        value,
        max_age=max_age,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="none" if settings.cookie_secure else "lax",
    )


def _redirect_home(request: Request, **params: str) -> RedirectResponse:
    url = str(request.base_url)
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=307)


@router.get("/auth/mercadolibre/login", response_model=None)
async def login() -> Response:
    """Send the seller to MercadoLibre to grant access."""
    if not _oauth_configured():
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(
                error="oauth_not_configured",
                message="MercadoLibre OAuth credentials are not configured",
                retryable=False,
            ).model_dump(),
        )
    url = build_authorization_url(
        settings.ml_auth_url, settings.ml_client_id, settings.ml_redirect_uri
    )
    return RedirectResponse(url, status_code=307)


@router.get("/api/auth/mercadolibre/callback", response_model=None)
async def oauth_callback(request: Request, code: str | None = None) -> Response:
    """Exchange the authorization code and store the credentials in cookies."""
    if not code:
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error="missing_code",
                message="Authorization code is required",
                retryable=False,
            ).model_dump(),
        )

    ml_client: MercadoLibreClient = request.app.state.ml_client
    try:
        token = await ml_client.exchange_code_for_token(
            code,
            client_id=settings.ml_client_id,
            client_secret=settings.ml_client_secret,
            redirect_uri=settings.ml_redirect_uri,
        )
    except UpstreamError as exc:
        logger.error("oauth_callback_failed", kind=exc.kind, status=exc.status_code)
        return _redirect_home(request, error="auth_failed")

    response = _redirect_home(request, success="true")
    _set_cookie(response, TOKEN_COOKIE, token.access_token, token.expires_in)
    _set_cookie(response, REFRESH_COOKIE, token.refresh_token, REFRESH_COOKIE_MAX_AGE)
    _set_cookie(response, SELLER_ID_COOKIE, str(token.user_id), token.expires_in)
    logger.info("oauth_callback_succeeded", user_id=token.user_id)
    return response
