# Overview: Read-only order timeline projection.

"""
Order Timeline

Merges what the stores know about an order into one ordered event list for
the tracking view and for audits:

- "order placed" at created_at
- "agent assigned" for the first agent binding
- one "agent reassigned" per ReassignmentEvent
- one milestone per status the order has reached (inferred from the
  forward-only status flow; timestamped with updated_at because per-status
  times are not stored)
- "cash collected" at collected_at

Sorted by time, then by kind priority so equal timestamps always come out
in the same order. Nothing here writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..models import Order, ReassignmentEvent
from ..time_utils import to_utc_z
from .order_service import (
    ORDER_FLOW,
    STATUS_CANCELLED,
    STATUS_PENDING,
    get_order,
    get_reassignments,
)


KIND_PLACED = "placed"
KIND_STATUS = "status"
KIND_ASSIGNMENT = "assignment"
KIND_REASSIGNMENT = "reassignment"
KIND_COLLECTION = "collection"

# Tie-break for equal timestamps: lower sorts first
KIND_PRIORITY = {
    KIND_PLACED: 0,
    KIND_STATUS: 1,
    KIND_ASSIGNMENT: 2,
    KIND_REASSIGNMENT: 3,
    KIND_COLLECTION: 4,
}

STATUS_LABELS = {
    "confirmed": ("Order Confirmed", "Provider confirmed the order"),
    "preparing": ("Preparing", "Provider started preparing the order"),
    "ready": ("Ready for Pickup", "Order is ready for pickup"),
    "picked_up": ("Order Picked Up", "Order picked up by delivery agent"),
    "out_for_delivery": ("Out for Delivery", "Order is on the way"),
    "delivered": ("Order Delivered", "Order successfully delivered"),
}


@dataclass
class TimelineEvent:
    time: datetime
    kind: str
    label: str
    description: str
    actor_refs: dict = field(default_factory=dict)
    status: str | None = None

    def to_dict(self) -> dict:
        return {
            "time": to_utc_z(self.time),
            "kind": self.kind,
            "label": self.label,
            "description": self.description,
            "actor_refs": dict(self.actor_refs),
            "status": self.status,
        }


def reached_statuses(status: str) -> list[str]:
    """Statuses past pending that an order in `status` has passed through."""
    if status == STATUS_CANCELLED:
        return [STATUS_CANCELLED]
    if status not in ORDER_FLOW:
        return []
    return ORDER_FLOW[1:ORDER_FLOW.index(status) + 1]


def build_timeline(order: Order, reassignments: list[ReassignmentEvent]) -> list[TimelineEvent]:
    """Pure projection of an order and its hand-off history."""
    events: list[TimelineEvent] = [
        TimelineEvent(
            time=order.created_at,
            kind=KIND_PLACED,
            label="Order Placed",
            description=f"Order {order.order_number} was placed",
            actor_refs={"customer_id": order.customer_id},
            status=STATUS_PENDING,
        )
    ]

    history = sorted(reassignments, key=lambda ev: (ev.timestamp, ev.id or 0))

    first_agent_id = history[0].from_agent_id if history else order.assigned_agent_id
    first_assigned_at = order.first_assigned_at or (None if history else order.assigned_at)
    if first_agent_id is not None and first_assigned_at is not None:
        events.append(
            TimelineEvent(
                time=first_assigned_at,
                kind=KIND_ASSIGNMENT,
                label="Agent Assigned",
                description=f"Delivery agent {first_agent_id} assigned",
                actor_refs={"agent_id": first_agent_id},
            )
        )

    for ev in history:
        description = f"Order reassigned from agent {ev.from_agent_id} to agent {ev.to_agent_id}"
        if ev.reason:
            description += f": {ev.reason}"
        events.append(
            TimelineEvent(
                time=ev.timestamp,
                kind=KIND_REASSIGNMENT,
                label="Agent Reassigned",
                description=description,
                actor_refs={
                    "from_agent_id": ev.from_agent_id,
                    "to_agent_id": ev.to_agent_id,
                    "actor_id": ev.actor_id,
                },
            )
        )

    for status in reached_statuses(order.status):
        if status == STATUS_CANCELLED:
            label = "Order Cancelled"
            description = (
                f"Cancelled: {order.cancellation_reason}"
                if order.cancellation_reason
                else "Order was cancelled"
            )
        else:
            label, description = STATUS_LABELS[status]
        events.append(
            TimelineEvent(
                time=order.updated_at,
                kind=KIND_STATUS,
                label=label,
                description=description,
                actor_refs={"agent_id": order.assigned_agent_id} if order.assigned_agent_id else {},
                status=status,
            )
        )

    if order.collected_at is not None:
        events.append(
            TimelineEvent(
                time=order.collected_at,
                kind=KIND_COLLECTION,
                label="Cash Collected",
                description=f"Collected {order.collected_amount_cents} in cash",
                actor_refs={"agent_id": order.assigned_agent_id} if order.assigned_agent_id else {},
            )
        )

    # sorted() is stable, so milestones keep flow order within a timestamp
    return sorted(events, key=lambda e: (e.time, KIND_PRIORITY[e.kind]))


def get_order_timeline(order_id: int) -> list[TimelineEvent]:
    order = get_order(order_id)
    return build_timeline(order, get_reassignments(order_id))
