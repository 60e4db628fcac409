from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class DeliveryAgent(db.Model):
    """
    Courier who can be bound to orders.

    AVAILABILITY: online, busy, offline. An agent is busy while bound to at
    least one active order; the assignment service flips it back to online
    once its last active order is handed off, cancelled or delivered.
    """
    __tablename__ = "delivery_agents"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    availability = db.Column(db.String(16), nullable=False, default="online", index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "phone": self.phone,
            "availability": self.availability,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Order(db.Model):
    """
    Customer order aggregate (the Order row plus its OrderItems).

    STATUS: pending -> confirmed -> preparing -> ready -> picked_up ->
    out_for_delivery -> delivered, with cancelled reachable from any
    non-terminal state. delivered and cancelled are terminal.

    AGENT STATUS: the courier's own sub-lifecycle for this order. Null for
    orders that never had an agent (dine-in, pickup).

    All amounts are integer minor units. final_amount_cents is derived and
    recomputed by the item editor after every item mutation.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "order_number", name="uq_orders_tenant_number"),
        db.Index("ix_orders_tenant_status_created", "tenant_id", "status", "created_at"),
        db.Index("ix_orders_agent_status", "assigned_agent_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Human-readable number (e.g., "ORD-001-000042"), assigned once
    order_number = db.Column(db.String(64), nullable=False)
    order_type = db.Column(db.String(16), nullable=False, default="delivery")  # delivery, pickup, dine_in

    # Amounts
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_charge_cents = db.Column(db.Integer, nullable=False, default=0)
    surcharge_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(32), nullable=False, default="pending", index=True)

    # Delivery agent binding
    assigned_agent_id = db.Column(db.Integer, db.ForeignKey("delivery_agents.id"), nullable=True)
    agent_status = db.Column(db.String(32), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    first_assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    assignment_attempts = db.Column(db.Integer, nullable=False, default=0)

    # Cash collection
    collected_amount_cents = db.Column(db.Integer, nullable=True)
    collected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    change_amount_cents = db.Column(db.Integer, nullable=True)
    change_reason = db.Column(db.String(255), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    provider = db.relationship("Provider")
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    assigned_agent = db.relationship("DeliveryAgent")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "provider_id": self.provider_id,
            "customer_id": self.customer_id,
            "order_number": self.order_number,
            "order_type": self.order_type,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "delivery_charge_cents": self.delivery_charge_cents,
            "surcharge_cents": self.surcharge_cents,
            "final_amount_cents": self.final_amount_cents,
            "status": self.status,
            "assigned_agent_id": self.assigned_agent_id,
            "agent_status": self.agent_status,
            "assigned_at": to_utc_z(self.assigned_at),
            "first_assigned_at": to_utc_z(self.first_assigned_at),
            "assignment_attempts": self.assignment_attempts,
            "collected_amount_cents": self.collected_amount_cents,
            "collected_at": to_utc_z(self.collected_at),
            "change_amount_cents": self.change_amount_cents,
            "change_reason": self.change_reason,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Individual line on an order.

    unit_price_cents and addons are snapshots taken from the catalog when the
    line was added and are never rewritten afterwards.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    catalog_item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    # JSON array of {"name": str, "price_cents": int}
    addons = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship("Order", back_populates="items")

    @property
    def addon_unit_cents(self) -> int:
        return sum(int(addon.get("price_cents", 0)) for addon in (self.addons or []))

    @property
    def line_total_cents(self) -> int:
        return self.quantity * (self.unit_price_cents + self.addon_unit_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "catalog_item_id": self.catalog_item_id,
            "provider_id": self.provider_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "addons": list(self.addons or []),
            "notes": self.notes,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }


class ReassignmentEvent(db.Model):
    """
    Append-only audit record of a delivery-agent hand-off.

    IMMUTABLE: Records are never updated or deleted. order_id is a reference,
    not ownership: removing an order leaves its hand-off history intact.
    """
    __tablename__ = "reassignment_events"
    __table_args__ = (
        db.Index("ix_reassignment_events_order_ts", "order_id", "timestamp"),
        db.UniqueConstraint("order_id", "idempotency_key", name="uq_reassignment_events_order_idem"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, nullable=False)

    from_agent_id = db.Column(db.Integer, nullable=True)  # Null means first assignment
    to_agent_id = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    note = db.Column(db.Text, nullable=True)

    status_before = db.Column(db.String(32), nullable=True)
    status_after = db.Column(db.String(32), nullable=False)

    actor_id = db.Column(db.Integer, nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_agent_id": self.from_agent_id,
            "to_agent_id": self.to_agent_id,
            "reason": self.reason,
            "note": self.note,
            "status_before": self.status_before,
            "status_after": self.status_after,
            "actor_id": self.actor_id,
            "idempotency_key": self.idempotency_key,
            "timestamp": to_utc_z(self.timestamp),
        }
