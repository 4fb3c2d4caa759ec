from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from tubex.time_utils import to_utc_z, to_iso_date


# Legacy price list status
PRICE_LIST_DRAFT = "draft"
PRICE_LIST_ACTIVE = "active"
PRICE_LIST_INACTIVE = "inactive"
PRICE_LIST_ARCHIVED = "archived"
PRICE_LIST_STATUSES = {PRICE_LIST_DRAFT, PRICE_LIST_ACTIVE, PRICE_LIST_INACTIVE, PRICE_LIST_ARCHIVED}

# Unified pricing type
PRICING_BASE = "base"
PRICING_WHOLESALE = "wholesale"
PRICING_RETAIL = "retail"
PRICING_PREMIUM = "premium"
PRICING_DEALER = "dealer"
PRICING_BULK = "bulk"
PRICING_PROMOTIONAL = "promotional"
PRICING_TYPES = {
    PRICING_BASE,
    PRICING_WHOLESALE,
    PRICING_RETAIL,
    PRICING_PREMIUM,
    PRICING_DEALER,
    PRICING_BULK,
    PRICING_PROMOTIONAL,
}

# Pricing audit actions
PRICING_ACTION_CREATED = "created"
PRICING_ACTION_UPDATED = "updated"
PRICING_ACTION_DELETED = "deleted"
PRICING_ACTION_ACTIVATED = "activated"
PRICING_ACTION_DEACTIVATED = "deactivated"
PRICING_ACTION_BULK_IMPORT = "bulk_import"


class PriceList(db.Model):
    """
    Legacy named collection of per-product price overrides for a company.

    At most one price list per company is the default; a partial unique index
    backs the read-then-write reset done by the service.
    """
    __tablename__ = "price_lists"
    __table_args__ = (
        db.Index(
            "uq_price_lists_company_default",
            "company_id",
            unique=True,
            sqlite_where=text("is_default = 1"),
            postgresql_where=text("is_default"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=PRICE_LIST_DRAFT)
    effective_from = db.Column(db.Date, nullable=True)
    effective_to = db.Column(db.Date, nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    global_discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    meta = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    company = db.relationship("Company", backref=db.backref("price_lists", lazy=True))

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "company_id": self.company_id,
            "status": self.status,
            "effective_from": to_iso_date(self.effective_from),
            "effective_to": to_iso_date(self.effective_to),
            "is_default": self.is_default,
            "global_discount_percentage": str(self.global_discount_percentage or 0),
            "metadata": self.meta or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PriceListItem(db.Model):
    """Per-product price within a price list, optionally time-windowed."""
    __tablename__ = "price_list_items"
    __table_args__ = (
        db.UniqueConstraint("price_list_id", "product_id", name="uq_price_list_items_list_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    price_cents = db.Column(db.Integer, nullable=False)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    effective_from = db.Column(db.Date, nullable=True)
    effective_to = db.Column(db.Date, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    price_list = db.relationship(
        "PriceList",
        backref=db.backref("items", lazy=True, cascade="all, delete-orphan", order_by="PriceListItem.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "price_list_id": self.price_list_id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "price_cents": self.price_cents,
            "discount_percentage": str(self.discount_percentage or 0),
            "effective_from": to_iso_date(self.effective_from),
            "effective_to": to_iso_date(self.effective_to),
            "metadata": self.meta or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductPriceHistory(db.Model):
    """
    Legacy price audit row.

    IMMUTABLE: Every legacy price mutation writes one of these in the same
    transaction.
    """
    __tablename__ = "product_price_history"
    __table_args__ = (
        db.Index("ix_product_price_history_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id", ondelete="SET NULL"), nullable=True)
    old_price_cents = db.Column(db.Integer, nullable=True)
    new_price_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    changed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "price_list_id": self.price_list_id,
            "old_price_cents": self.old_price_cents,
            "new_price_cents": self.new_price_cents,
            "reason": self.reason,
            "changed_by_id": self.changed_by_id,
            "metadata": self.meta or {},
            "created_at": to_utc_z(self.created_at),
        }


class ProductPricing(db.Model):
    """
    Unified pricing row: one price per (product, company, pricing_type,
    validity window, quantity tier).

    Replaces price list overrides; every change is mirrored into PricingHistory.
    """
    __tablename__ = "product_pricing"
    __table_args__ = (
        db.Index("ix_product_pricing_lookup", "product_id", "company_id", "pricing_type", "is_active"),
        db.Index("ix_product_pricing_window", "company_id", "effective_from", "effective_to"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    pricing_type = db.Column(db.String(16), nullable=False, default=PRICING_BASE)
    price_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    min_quantity = db.Column(db.Integer, nullable=True)
    max_quantity = db.Column(db.Integer, nullable=True)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    effective_from = db.Column(db.Date, nullable=True)
    effective_to = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    # Carries the migration tag (metadata.migrated_from) among other things
    meta = db.Column("metadata", db.JSON, nullable=True)
    migrated_from = db.Column(db.String(32), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product")
    company = db.relationship("Company")

    def snapshot(self) -> dict:
        """Audit-friendly view of the priced fields."""
        return {
            "pricing_type": self.pricing_type,
            "price_cents": self.price_cents,
            "currency": self.currency,
            "min_quantity": self.min_quantity,
            "max_quantity": self.max_quantity,
            "discount_percentage": str(self.discount_percentage or 0),
            "effective_from": to_iso_date(self.effective_from),
            "effective_to": to_iso_date(self.effective_to),
            "is_active": self.is_active,
        }

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "product_id": self.product_id,
            "company_id": self.company_id,
            "created_by_id": self.created_by_id,
            "metadata": self.meta or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        data.update(self.snapshot())
        return data


class PricingHistory(db.Model):
    """
    Append-only audit trail for unified pricing changes.

    product_pricing_id is nulled when the pricing row is deleted; the
    deletion itself is recorded as a row with action=deleted.
    """
    __tablename__ = "pricing_history"
    __table_args__ = (
        db.Index("ix_pricing_history_pricing_changed", "product_pricing_id", "changed_at"),
        db.Index("ix_pricing_history_action_changed", "action", "changed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_pricing_id = db.Column(
        db.Integer, db.ForeignKey("product_pricing.id", ondelete="SET NULL"), nullable=True
    )
    action = db.Column(db.String(24), nullable=False)
    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)
    changed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)
    migrated_from = db.Column(db.String(32), nullable=True, index=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_pricing_id": self.product_pricing_id,
            "action": self.action,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "changed_by_id": self.changed_by_id,
            "reason": self.reason,
            "metadata": self.meta or {},
            "changed_at": to_utc_z(self.changed_at),
        }
