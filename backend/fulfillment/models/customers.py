from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Marketplace customer: places orders and owns an in-app wallet.

    MULTI-TENANT: Customers are scoped to tenants via tenant_id.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_tenant_id", "tenant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    tenant = db.relationship("Tenant", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Wallet(db.Model):
    """
    Per-customer wallet header.

    WHY: Serves as the row that serializes money movements for one user
    (row lock + version check). balance_cents is a read cache only: it is
    written in the same transaction as every ledger entry and can always be
    rebuilt by replaying WalletLedgerEntry rows. It is never the system of
    record.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_wallets_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("wallet", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "balance_cents": self.balance_cents,
            "created_at": to_utc_z(self.created_at),
            "last_updated": to_utc_z(self.last_updated),
            "version_id": self.version_id,
        }


class WalletLedgerEntry(db.Model):
    """
    Append-only ledger of wallet money movements.

    ENTRY TYPES:
    - credit: Top-up or manual credit
    - debit: Spend (stored as a negative amount)
    - refund: Order refund into the wallet
    - cashback: Cashback, including cash change credited for an order

    IMMUTABLE: Records are never updated or deleted. Balance for a user is
    the sum of amount_cents over their entries.
    """
    __tablename__ = "wallet_ledger_entries"
    __table_args__ = (
        db.Index("ix_wallet_entries_user_created", "user_id", "created_at"),
        db.Index("ix_wallet_entries_order_type", "source_order_id", "entry_type"),
        db.UniqueConstraint("reference", name="uq_wallet_entries_reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(16), nullable=False, index=True)  # credit, debit, refund, cashback
    amount_cents = db.Column(db.Integer, nullable=False)  # Positive for inflow, negative for outflow

    # References only: orders are never owners of ledger facts
    source_order_id = db.Column(db.Integer, nullable=True)
    remarks = db.Column(db.String(255), nullable=True)
    # Set only on movements that must happen at most once, e.g. "order-change:42"
    reference = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.entry_type,
            "amount_cents": self.amount_cents,
            "source_order_id": self.source_order_id,
            "remarks": self.remarks,
            "reference": self.reference,
            "created_at": to_utc_z(self.created_at),
        }
