from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class CatalogItem(db.Model):
    """
    Menu item or product offered by a provider.

    Read-only from the operations core: prices are snapshotted into
    OrderItem rows at add-time, so later edits here never touch past orders.
    """
    __tablename__ = "catalog_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    provider = db.relationship("Provider", backref=db.backref("catalog_items", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_available": self.is_available,
            "addons": [addon.to_dict() for addon in self.addons],
            "created_at": to_utc_z(self.created_at),
        }


class CatalogAddon(db.Model):
    """Optional extra (topping, side, add-on service) for a catalog item."""
    __tablename__ = "catalog_addons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("catalog_items.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    item = db.relationship("CatalogItem", backref=db.backref("addons", lazy=True, order_by="CatalogAddon.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "name": self.name,
            "price_cents": self.price_cents,
        }
