from __future__ import annotations

from ..extensions import db
from tubex.time_utils import to_utc_z, to_iso_date


# Quote lifecycle
QUOTE_DRAFT = "draft"
QUOTE_PENDING = "pending"
QUOTE_ACCEPTED = "accepted"
QUOTE_REJECTED = "rejected"
QUOTE_EXPIRED = "expired"
QUOTE_CONVERTED = "converted"
QUOTE_STATUSES = {QUOTE_DRAFT, QUOTE_PENDING, QUOTE_ACCEPTED, QUOTE_REJECTED, QUOTE_EXPIRED, QUOTE_CONVERTED}

# Order lifecycle
ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_STATUSES = {ORDER_PENDING, ORDER_CONFIRMED, ORDER_PROCESSING, ORDER_SHIPPED, ORDER_DELIVERED, ORDER_CANCELLED}

# Order payment status
ORDER_PAYMENT_PENDING = "pending"
ORDER_PAYMENT_PAID = "paid"
ORDER_PAYMENT_FAILED = "failed"
ORDER_PAYMENT_REFUNDED = "refunded"
ORDER_PAYMENT_STATUSES = {ORDER_PAYMENT_PENDING, ORDER_PAYMENT_PAID, ORDER_PAYMENT_FAILED, ORDER_PAYMENT_REFUNDED}


class Quote(db.Model):
    """
    Quote document offered to a customer.

    total_amount_cents is derived from the items and recomputed in full on
    every item mutation.
    """
    __tablename__ = "quotes"
    __table_args__ = (
        db.Index("ix_quotes_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    quote_number = db.Column(db.String(64), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=QUOTE_DRAFT, index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    valid_until = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("User", foreign_keys=[customer_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "quote_number": self.quote_number,
            "customer_id": self.customer_id,
            "company_id": self.company_id,
            "created_by_id": self.created_by_id,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "valid_until": to_iso_date(self.valid_until),
            "notes": self.notes,
            "metadata": self.meta or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class QuoteItem(db.Model):
    """Line item owned by a quote; removed with it."""
    __tablename__ = "quote_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    quote = db.relationship(
        "Quote",
        backref=db.backref("items", lazy=True, cascade="all, delete-orphan", order_by="QuoteItem.id"),
    )
    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents - (self.discount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class Order(db.Model):
    """
    Purchase order placed by a customer.

    Created directly from line items or by converting an accepted quote.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=ORDER_PAYMENT_PENDING, index=True)
    payment_method = db.Column(db.String(32), nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_address = db.Column(db.JSON, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("User", foreign_keys=[customer_id])

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "company_id": self.company_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "total_amount_cents": self.total_amount_cents,
            "delivery_address": self.delivery_address,
            "metadata": self.meta or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line item owned by an order; cascade-deleted with it."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    meta = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("items", lazy=True, cascade="all, delete-orphan", order_by="OrderItem.id"),
    )
    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents - (self.discount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
            "metadata": self.meta or {},
            "created_at": to_utc_z(self.created_at),
        }


class OrderHistory(db.Model):
    """
    Append-only record of order status changes.

    IMMUTABLE: Rows are never updated or deleted.
    """
    __tablename__ = "order_history"
    __table_args__ = (
        db.Index("ix_order_history_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    previous_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=False, default="")
    meta = db.Column("metadata", db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "timestamp": to_utc_z(self.created_at),
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "notes": self.notes,
            "user": {"id": self.user.id, "email": self.user.email} if self.user else None,
            "metadata": self.meta or {},
        }
