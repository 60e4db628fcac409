# Overview: Order state machine, agent assignment and order creation.

"""
Order State Machine

WHY: Single authority for whether a status or agent change is legal, and
for applying it atomically against the locked order row.

STATUS FLOW:
    pending -> confirmed -> preparing -> ready -> picked_up
            -> out_for_delivery -> delivered
    cancelled is reachable from every non-terminal status.

Forward moves may skip intermediate statuses (a dine-in order goes straight
from ready to delivered); backward moves and moves out of a terminal status
are rejected.

AGENT FLOW (independent sub-lifecycle):
    assigned -> accepted -> picked_up -> out_for_delivery -> delivered
    cancelled when the order is cancelled or the agent drops the order.

GUARDS:
- out_for_delivery needs a bound agent whose status is assigned or later.
- delivered needs the agent to be delivered, or no agent at all.
- Reassignment writes a ReassignmentEvent in the same transaction as the
  order update.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, DeliveryAgent, Order, ReassignmentEvent
from ..time_utils import utcnow
from .catalog_service import get_tenant_id
from .concurrency import lock_for_update, run_with_retry
from .errors import (
    IdempotencyConflictError,
    IllegalTransitionError,
    InvalidAmountError,
    NotFoundError,
    OrderTerminalError,
)
from .notification_service import notify, report_failures
from .sequence_service import next_order_number


# =============================================================================
# STATUS CONSTANTS
# =============================================================================

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_PREPARING = "preparing"
STATUS_READY = "ready"
STATUS_PICKED_UP = "picked_up"
STATUS_OUT_FOR_DELIVERY = "out_for_delivery"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"

# Happy path, in order
ORDER_FLOW = [
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_PREPARING,
    STATUS_READY,
    STATUS_PICKED_UP,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_DELIVERED,
]
VALID_ORDER_STATUSES = ORDER_FLOW + [STATUS_CANCELLED]
TERMINAL_STATUSES = {STATUS_DELIVERED, STATUS_CANCELLED}

AGENT_PENDING = "pending"
AGENT_ASSIGNED = "assigned"
AGENT_ACCEPTED = "accepted"
AGENT_PICKED_UP = "picked_up"
AGENT_OUT_FOR_DELIVERY = "out_for_delivery"
AGENT_DELIVERED = "delivered"
AGENT_CANCELLED = "cancelled"

AGENT_FLOW = [
    AGENT_PENDING,
    AGENT_ASSIGNED,
    AGENT_ACCEPTED,
    AGENT_PICKED_UP,
    AGENT_OUT_FOR_DELIVERY,
    AGENT_DELIVERED,
]
VALID_AGENT_STATUSES = AGENT_FLOW + [AGENT_CANCELLED]
# Agent states that count as "assigned or later"
AGENT_ENGAGED = set(AGENT_FLOW[1:])

AVAILABILITY_ONLINE = "online"
AVAILABILITY_BUSY = "busy"

DEFAULT_REASSIGN_REASON = "Manual reassignment by admin"


# =============================================================================
# LOOKUPS
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def load_order_locked(order_id: int) -> Order:
    """Fetch the order row with a row lock; raises NotFoundError."""
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def is_terminal(order: Order) -> bool:
    return order.status in TERMINAL_STATUSES


def touch(order: Order, now=None) -> None:
    """Bump updated_at; keeps it strictly increasing for the timeline."""
    now = now or utcnow()
    if order.updated_at is not None and now <= order.updated_at:
        now = order.updated_at + timedelta(microseconds=1)
    order.updated_at = now


def get_reassignments(order_id: int) -> list[ReassignmentEvent]:
    return (
        db.session.query(ReassignmentEvent)
        .filter_by(order_id=order_id)
        .order_by(ReassignmentEvent.timestamp.asc(), ReassignmentEvent.id.asc())
        .all()
    )


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def check_transition(order: Order, target_status: str) -> None:
    """
    Validate a status change without applying it.

    Raises IllegalTransitionError with the current/target pair in details.
    """
    details = {"order_id": order.id, "current_status": order.status, "target_status": target_status}

    if target_status not in VALID_ORDER_STATUSES:
        raise IllegalTransitionError(f"Unknown order status: {target_status}", details)

    if is_terminal(order):
        raise IllegalTransitionError(
            f"Order {order.order_number} is already {order.status}", details
        )

    if target_status == STATUS_CANCELLED:
        return

    if ORDER_FLOW.index(target_status) <= ORDER_FLOW.index(order.status):
        raise IllegalTransitionError(
            f"Cannot move order from {order.status} to {target_status}", details
        )

    if target_status == STATUS_OUT_FOR_DELIVERY:
        if order.assigned_agent_id is None or order.agent_status not in AGENT_ENGAGED:
            raise IllegalTransitionError(
                "Order cannot go out for delivery without an assigned agent", details
            )

    if target_status == STATUS_DELIVERED:
        if order.assigned_agent_id is not None and order.agent_status != AGENT_DELIVERED:
            details["agent_status"] = order.agent_status
            raise IllegalTransitionError(
                "Order cannot be delivered before its agent reports delivery", details
            )


def apply_transition(order: Order, target_status: str, now=None) -> Order:
    """Apply a validated transition to a locked order (no commit)."""
    now = now or utcnow()
    order.status = target_status
    touch(order, now)

    if target_status == STATUS_DELIVERED:
        order.delivered_at = order.updated_at
        if order.assigned_agent_id is not None:
            release_agent(order.assigned_agent_id, exclude_order_id=order.id)
    elif target_status == STATUS_CANCELLED:
        if order.assigned_agent_id is not None:
            if order.agent_status != AGENT_DELIVERED:
                order.agent_status = AGENT_CANCELLED
            release_agent(order.assigned_agent_id, exclude_order_id=order.id)
    return order


@report_failures("order.status")
def transition(order_id: int, target_status: str, actor_id: int | None = None) -> Order:
    """
    Move an order to target_status.

    Raises:
        NotFoundError: order does not exist
        IllegalTransitionError: target not reachable or order already terminal
    """
    def _op():
        order = load_order_locked(order_id)
        check_transition(order, target_status)
        apply_transition(order, target_status)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    notify(
        "order.status",
        f"Order {order.order_number} is now {order.status}",
        order_id=order.id,
        actor_id=actor_id,
    )
    return order


@report_failures("order.cancelled")
def cancel_order(order_id: int, reason: str, actor_id: int | None = None) -> Order:
    """Cancel a live order, recording why."""
    def _op():
        order = load_order_locked(order_id)
        check_transition(order, STATUS_CANCELLED)
        apply_transition(order, STATUS_CANCELLED)
        order.cancellation_reason = (reason or "").strip() or None
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s cancelled: %s", order.order_number, order.cancellation_reason)
    notify(
        "order.cancelled",
        f"Order {order.order_number} cancelled",
        order_id=order.id,
        actor_id=actor_id,
    )
    return order


# =============================================================================
# AGENT ASSIGNMENT
# =============================================================================

def release_agent(agent_id: int, exclude_order_id: int | None = None) -> None:
    """Put an agent back online when it has no other active order."""
    query = db.session.query(func.count(Order.id)).filter(
        Order.assigned_agent_id == agent_id,
        Order.status.notin_(sorted(TERMINAL_STATUSES)),
        Order.agent_status.in_(sorted(AGENT_ENGAGED - {AGENT_DELIVERED})),
    )
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)

    if not query.scalar():
        agent = db.session.get(DeliveryAgent, agent_id)
        if agent and agent.availability == AVAILABILITY_BUSY:
            agent.availability = AVAILABILITY_ONLINE


def _next_reassignment_timestamp(order_id: int, now):
    last = (
        db.session.query(func.max(ReassignmentEvent.timestamp))
        .filter(ReassignmentEvent.order_id == order_id)
        .scalar()
    )
    if last is not None and now <= last:
        return last + timedelta(microseconds=1)
    return now


def _find_keyed_reassignment(idempotency_key: str, order_id: int | None = None) -> ReassignmentEvent | None:
    query = db.session.query(ReassignmentEvent).filter_by(idempotency_key=idempotency_key)
    if order_id is not None:
        query = query.filter_by(order_id=order_id)
    return query.order_by(ReassignmentEvent.id.asc()).first()


@report_failures("order.assigned")
def assign_agent(
    order_id: int,
    agent_id: int,
    reason: str | None = None,
    *,
    note: str | None = None,
    actor_id: int | None = None,
    idempotency_key: str | None = None,
) -> Order:
    """
    Bind a delivery agent to an order.

    First assignment (no agent yet): sets the agent fields and bumps
    assignment_attempts; no audit record.

    Reassignment (a different agent is bound): appends one ReassignmentEvent
    with from/to agents and agent-status snapshots, then updates the order.
    Both writes commit together.

    Assigning the agent that is already bound is a no-op. A retried call
    carrying an idempotency_key already recorded for this order returns the
    current order without writing a second event. Keys are scoped to one
    order; reusing a key recorded on another order is rejected.

    Raises:
        NotFoundError: order or agent does not exist
        OrderTerminalError: order is delivered or cancelled
        IdempotencyConflictError: idempotency_key already used on another order
    """
    def _op():
        order = load_order_locked(order_id)

        if idempotency_key:
            seen = _find_keyed_reassignment(idempotency_key)
            if seen is not None:
                if seen.order_id != order.id:
                    raise IdempotencyConflictError(
                        "Idempotency key already used for another order",
                        {"order_id": order.id, "idempotency_key": idempotency_key, "used_by_order_id": seen.order_id},
                    )
                return order, None, "replayed"

        if is_terminal(order):
            raise OrderTerminalError(
                f"Order {order.order_number} is {order.status}; agent cannot be changed",
                {"order_id": order.id, "status": order.status},
            )

        agent = db.session.get(DeliveryAgent, agent_id)
        if not agent:
            raise NotFoundError(f"Delivery agent {agent_id} not found")

        if order.assigned_agent_id == agent_id:
            return order, None, "unchanged"

        now = utcnow()
        event = None
        previous_agent_id = order.assigned_agent_id

        try:
            if previous_agent_id is not None:
                event = ReassignmentEvent(
                    order_id=order.id,
                    from_agent_id=previous_agent_id,
                    to_agent_id=agent_id,
                    reason=(reason or "").strip() or DEFAULT_REASSIGN_REASON,
                    note=note,
                    status_before=order.agent_status,
                    status_after=AGENT_ASSIGNED,
                    actor_id=actor_id,
                    idempotency_key=idempotency_key,
                    timestamp=_next_reassignment_timestamp(order.id, now),
                )
                db.session.add(event)

            order.assigned_agent_id = agent_id
            order.agent_status = AGENT_ASSIGNED
            order.assigned_at = event.timestamp if event else now
            if order.first_assigned_at is None:
                order.first_assigned_at = order.assigned_at
            order.assignment_attempts = (order.assignment_attempts or 0) + 1
            touch(order, now)

            agent.availability = AVAILABILITY_BUSY
            db.session.flush()
            if previous_agent_id is not None:
                release_agent(previous_agent_id)

            db.session.commit()
        except IntegrityError:
            # A concurrent call recorded the same key first
            db.session.rollback()
            if idempotency_key and _find_keyed_reassignment(idempotency_key, order_id) is not None:
                return get_order(order_id), None, "replayed"
            raise

        return order, event, "reassigned" if event else "assigned"

    order, event, outcome = run_with_retry(_op)

    if outcome == "reassigned":
        current_app.logger.info(
            "Order %s reassigned from agent %s to agent %s: %s",
            order.order_number, event.from_agent_id, event.to_agent_id, event.reason,
        )
        notify(
            "order.reassigned",
            f"Order {order.order_number} reassigned",
            order_id=order.id,
            from_agent_id=event.from_agent_id,
            to_agent_id=event.to_agent_id,
            actor_id=actor_id,
        )
    elif outcome == "assigned":
        notify(
            "order.assigned",
            f"Order {order.order_number} assigned to agent {order.assigned_agent_id}",
            order_id=order.id,
            actor_id=actor_id,
        )
    return order


@report_failures("order.agent_status")
def update_agent_status(order_id: int, agent_status: str, actor_id: int | None = None) -> Order:
    """
    Advance the bound agent's sub-lifecycle (accepted, picked_up, ...).

    Raises:
        NotFoundError: order does not exist
        OrderTerminalError: order is delivered or cancelled
        IllegalTransitionError: no agent bound, unknown status, or backward move
    """
    def _op():
        order = load_order_locked(order_id)
        if is_terminal(order):
            raise OrderTerminalError(
                f"Order {order.order_number} is {order.status}",
                {"order_id": order.id, "status": order.status},
            )

        details = {"order_id": order.id, "current_agent_status": order.agent_status, "target": agent_status}
        if order.assigned_agent_id is None:
            raise IllegalTransitionError("Order has no assigned agent", details)
        if agent_status not in VALID_AGENT_STATUSES:
            raise IllegalTransitionError(f"Unknown agent status: {agent_status}", details)
        if order.agent_status in (AGENT_CANCELLED, AGENT_DELIVERED):
            raise IllegalTransitionError(
                f"Agent status {order.agent_status} is final; reassign the order instead", details
            )

        if agent_status != AGENT_CANCELLED:
            if AGENT_FLOW.index(agent_status) <= AGENT_FLOW.index(order.agent_status):
                raise IllegalTransitionError(
                    f"Cannot move agent status from {order.agent_status} to {agent_status}", details
                )

        order.agent_status = agent_status
        touch(order)
        db.session.flush()
        if agent_status in (AGENT_CANCELLED, AGENT_DELIVERED):
            release_agent(order.assigned_agent_id)

        db.session.commit()
        return order

    order = run_with_retry(_op)
    notify(
        "order.agent_status",
        f"Agent on order {order.order_number} is now {order.agent_status}",
        order_id=order.id,
        actor_id=actor_id,
    )
    return order


# =============================================================================
# ORDER CREATION
# =============================================================================

@report_failures("order.created")
def create_order(
    provider_id: int,
    customer_id: int | None = None,
    items: list[dict] | None = None,
    *,
    discount_cents: int = 0,
    delivery_charge_cents: int = 0,
    surcharge_cents: int = 0,
    order_type: str = "delivery",
    actor_id: int | None = None,
) -> Order:
    """
    Create a pending order for a provider.

    items: list of item specs ({"catalog_item_id", "quantity", "addon_ids",
    "notes"}), each snapshotted through the catalog lookup.
    """
    from .order_item_service import build_order_item, recalculate_total

    for label, value in (
        ("discount_cents", discount_cents),
        ("delivery_charge_cents", delivery_charge_cents),
        ("surcharge_cents", surcharge_cents),
    ):
        if value is None or value < 0:
            raise InvalidAmountError(f"{label} must be zero or positive")

    def _op():
        tenant_id = get_tenant_id(provider_id)
        if customer_id is not None and not db.session.get(Customer, customer_id):
            raise NotFoundError(f"Customer {customer_id} not found")

        now = utcnow()
        order = Order(
            tenant_id=tenant_id,
            provider_id=provider_id,
            customer_id=customer_id,
            order_number=next_order_number(tenant_id),
            order_type=order_type,
            discount_cents=discount_cents,
            delivery_charge_cents=delivery_charge_cents,
            surcharge_cents=surcharge_cents,
            status=STATUS_PENDING,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)

        for spec in items or []:
            order.items.append(build_order_item(order, spec))

        recalculate_total(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    notify("order.created", f"Order {order.order_number} created", order_id=order.id, actor_id=actor_id)
    return order
