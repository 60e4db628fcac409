# Overview: Read-only lookups against the catalog and provider collaborators.

from __future__ import annotations

from ..extensions import db
from ..models import CatalogItem, Provider
from .errors import NotFoundError


def get_item(item_id: int) -> dict:
    """
    Catalog lookup used when a line is added to an order.

    Returns {"id", "name", "price_cents", "addons", "provider_id", "available"}
    with prices as they stand right now; callers snapshot them.
    """
    item = db.session.get(CatalogItem, item_id)
    if not item:
        raise NotFoundError(f"Catalog item {item_id} not found")

    return {
        "id": item.id,
        "name": item.name,
        "price_cents": item.price_cents,
        "addons": [
            {"id": addon.id, "name": addon.name, "price_cents": addon.price_cents}
            for addon in item.addons
        ],
        "provider_id": item.provider_id,
        "available": bool(item.is_available),
    }


def get_tenant_id(provider_id: int) -> int:
    """Resolve the tenant that owns a provider (used to scope new orders)."""
    provider = db.session.get(Provider, provider_id)
    if not provider:
        raise NotFoundError(f"Provider {provider_id} not found")
    return provider.tenant_id
