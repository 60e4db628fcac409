from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Tenant(db.Model):
    """
    Tenant (marketplace operator) for multi-tenant scoping.

    WHY: Orders, customers and agents are scoped to a tenant. The operations
    core only reads tenants; tenant CRUD lives outside this service.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Provider(db.Model):
    """
    A restaurant, store or service provider that fulfils orders.

    Every order belongs to exactly one provider; items added to an order
    must come from that provider's catalog.
    """
    __tablename__ = "providers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    kind = db.Column(db.String(32), nullable=False, default="restaurant")  # restaurant, grocery, service
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    tenant = db.relationship("Tenant", backref=db.backref("providers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "kind": self.kind,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class OrderSequence(db.Model):
    """
    Per-tenant counter backing human-facing order numbers.

    Numbers are allocated once and never reused, even if the order that
    took a number is later cancelled.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", name="uq_order_sequences_tenant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
