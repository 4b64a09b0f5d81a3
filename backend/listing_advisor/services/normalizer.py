"""Map MercadoLibre payloads onto the canonical records. Pure, no I/O."""

from __future__ import annotations

from listing_advisor.models.contracts import (
    Description,
    ItemDescription,
    ItemDetail,
    ItemSummary,
    Listing,
    UserListingSummary,
)

DESCRIPTION_PLACEHOLDER = "Sin descripción disponible."
DEFAULT_CURRENCY = "ARS"


def _blank_to_none(value: str | None) -> str | None:
    return value if value else None


def normalize_listing(item: ItemDetail) -> Listing:
    return Listing(
        external_id=item.id,
        title=item.title,
        price=item.price,
        status=item.status,
        available_quantity=item.available_quantity,
        sold_quantity=item.sold_quantity,
        category_id=_blank_to_none(item.category_id),
        permalink=_blank_to_none(item.permalink),
    )


def normalize_description(external_id: str, desc: ItemDescription) -> Description:
    """Plain text, then rich text, then the placeholder. Never empty."""
    for body in (desc.plain_text, desc.text):
        if body and body.strip():
            return Description(external_id=external_id, plain_text=body)
    return Description(external_id=external_id, plain_text=DESCRIPTION_PLACEHOLDER)


def normalize_summary(
    summary: ItemSummary, detail: ItemDetail | None = None
) -> UserListingSummary:
    """Catalog row for one item.

    Without a detail payload the coarser search fields are used as-is, so a
    failed detail fetch degrades the row instead of dropping it.
    """
    base = UserListingSummary(
        id=summary.id,
        title=summary.title,
        price=summary.price or 0,
        currency_id=summary.currency_id or DEFAULT_CURRENCY,
        status=summary.status,
        available_quantity=summary.available_quantity or 0,
        sold_quantity=summary.sold_quantity or 0,
        category_id=summary.category_id,
        permalink=summary.permalink,
        thumbnail=summary.thumbnail,
        condition=summary.condition,
        detail_source="summary",
    )
    if detail is None:
        return base

    return base.model_copy(
        update={
            "title": base.title or detail.title,
            "price": detail.price,
            "currency_id": summary.currency_id or detail.currency_id or DEFAULT_CURRENCY,
            "status": base.status or detail.status,
            "available_quantity": detail.available_quantity,
            "sold_quantity": detail.sold_quantity,
            "category_id": base.category_id or detail.category_id,
            "permalink": base.permalink or detail.permalink,
            "thumbnail": base.thumbnail or detail.thumbnail,
            "condition": base.condition or detail.condition,
            "detail_source": "detail",
        }
    )
