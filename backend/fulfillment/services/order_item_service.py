# Overview: In-flight editing of a live order's item list.

"""
Order Item Editor

WHY: Operators fix orders while they are live (customer asked for one more,
item out of stock). Every edit must leave final_amount_cents consistent
with the remaining lines.

RULES:
- Edits are rejected outright once the order is delivered or cancelled.
- Quantities are whole numbers >= 1; removing a line is a separate call.
- Added lines must come from the order's own provider; price and addon
  prices are snapshotted at add-time.
- Totals are recomputed in the same transaction as every edit.

TOTAL:
    subtotal = sum(quantity * (unit_price + sum(addon prices)))
    final    = subtotal - discount + delivery_charge + surcharge
"""

from __future__ import annotations

from ..extensions import db
from ..models import Order, OrderItem
from .catalog_service import get_item
from .concurrency import run_with_retry
from .errors import (
    InvalidQuantityError,
    ItemUnavailableError,
    NotFoundError,
    OrderNotEditableError,
    ProviderMismatchError,
)
from .notification_service import notify, report_failures
from .order_service import is_terminal, load_order_locked, touch


def calculate_totals(order: Order) -> dict:
    """
    Pure computation of the order's amounts from its current lines.

    Does not modify the order; calling it repeatedly yields the same result.
    """
    subtotal = sum(item.line_total_cents for item in order.items)
    final = (
        subtotal
        - (order.discount_cents or 0)
        + (order.delivery_charge_cents or 0)
        + (order.surcharge_cents or 0)
    )
    return {
        "subtotal_cents": subtotal,
        "final_amount_cents": max(0, final),
    }


def recalculate_total(order: Order) -> Order:
    """Write calculate_totals() back onto the order (no commit)."""
    totals = calculate_totals(order)
    order.subtotal_cents = totals["subtotal_cents"]
    order.final_amount_cents = totals["final_amount_cents"]
    return order


@report_failures("order.recalculated")
def recalculate_order_total(order_id: int) -> Order:
    """Recompute and persist totals for an order. Idempotent."""
    def _op():
        order = load_order_locked(order_id)
        before = (order.subtotal_cents, order.final_amount_cents)
        recalculate_total(order)
        if (order.subtotal_cents, order.final_amount_cents) != before:
            touch(order)
        db.session.commit()
        return order

    return run_with_retry(_op)


def _ensure_editable(order: Order) -> None:
    if is_terminal(order):
        raise OrderNotEditableError(
            f"Order {order.order_number} is {order.status}; items can no longer be edited",
            {"order_id": order.id, "status": order.status},
        )


def _find_item(order: Order, item_id: int) -> OrderItem:
    for item in order.items:
        if item.id == item_id:
            return item
    raise NotFoundError(
        f"Item {item_id} not found on order {order.order_number}",
        {"order_id": order.id, "item_id": item_id},
    )


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantityError(
            "Quantity must be a whole number of at least 1",
            {"quantity": quantity},
        )
    return quantity


def build_order_item(order: Order, spec: dict) -> OrderItem:
    """
    Build (not persist) an OrderItem from an item spec, snapshotting prices.

    spec: {"catalog_item_id": int, "quantity": int, "addon_ids": [int], "notes": str}
    """
    catalog_item_id = spec.get("catalog_item_id")
    if catalog_item_id is None:
        raise NotFoundError("catalog_item_id required")

    quantity = _validate_quantity(spec.get("quantity", 1))
    catalog = get_item(catalog_item_id)

    if catalog["provider_id"] != order.provider_id:
        raise ProviderMismatchError(
            "Item belongs to a different provider than the order",
            {
                "order_id": order.id,
                "order_provider_id": order.provider_id,
                "item_provider_id": catalog["provider_id"],
            },
        )
    for existing in order.items:
        if existing.provider_id != catalog["provider_id"]:
            raise ProviderMismatchError(
                "Order already holds items from another provider",
                {"order_id": order.id, "item_provider_id": existing.provider_id},
            )

    if not catalog["available"]:
        raise ItemUnavailableError(
            f"{catalog['name']} is currently unavailable",
            {"catalog_item_id": catalog_item_id},
        )

    addons_by_id = {addon["id"]: addon for addon in catalog["addons"]}
    addon_snapshot = []
    for addon_id in spec.get("addon_ids") or []:
        addon = addons_by_id.get(addon_id)
        if addon is None:
            raise NotFoundError(
                f"Addon {addon_id} not offered for {catalog['name']}",
                {"catalog_item_id": catalog_item_id, "addon_id": addon_id},
            )
        addon_snapshot.append({"name": addon["name"], "price_cents": addon["price_cents"]})

    return OrderItem(
        catalog_item_id=catalog_item_id,
        provider_id=catalog["provider_id"],
        name=catalog["name"],
        quantity=quantity,
        unit_price_cents=catalog["price_cents"],
        addons=addon_snapshot,
        notes=spec.get("notes"),
    )


@report_failures("order.item_updated")
def update_quantity(order_id: int, item_id: int, new_quantity: int, actor_id: int | None = None) -> Order:
    """
    Change the quantity of one line and recompute totals.

    Raises:
        InvalidQuantityError: new_quantity < 1
        OrderNotEditableError: order is delivered or cancelled
        NotFoundError: order or item does not exist
    """
    _validate_quantity(new_quantity)

    def _op():
        order = load_order_locked(order_id)
        _ensure_editable(order)
        item = _find_item(order, item_id)
        item.quantity = new_quantity
        recalculate_total(order)
        touch(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    notify("order.item_updated", f"Quantity updated on order {order.order_number}", order_id=order.id, actor_id=actor_id)
    return order


@report_failures("order.item_removed")
def remove_item(order_id: int, item_id: int, actor_id: int | None = None) -> Order:
    """
    Hard-delete one line and recompute totals.

    Removing the last line is allowed and leaves a zero-item order.
    """
    def _op():
        order = load_order_locked(order_id)
        _ensure_editable(order)
        item = _find_item(order, item_id)
        order.items.remove(item)
        recalculate_total(order)
        touch(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    notify("order.item_removed", f"Item removed from order {order.order_number}", order_id=order.id, actor_id=actor_id)
    return order


@report_failures("order.item_added")
def add_item(order_id: int, item_spec: dict, actor_id: int | None = None) -> Order:
    """
    Add a new line to a live order.

    Raises:
        OrderNotEditableError: order is delivered or cancelled
        ProviderMismatchError: item is from another provider
        ItemUnavailableError: catalog item is switched off
        InvalidQuantityError: quantity < 1
        NotFoundError: order, catalog item or addon does not exist
    """
    def _op():
        order = load_order_locked(order_id)
        _ensure_editable(order)
        order.items.append(build_order_item(order, item_spec))
        recalculate_total(order)
        touch(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    notify("order.item_added", f"Item added to order {order.order_number}", order_id=order.id, actor_id=actor_id)
    return order
