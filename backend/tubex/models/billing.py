from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from tubex.time_utils import to_utc_z, to_iso_date


# Invoice lifecycle
INVOICE_DRAFT = "draft"
INVOICE_SENT = "sent"
INVOICE_VIEWED = "viewed"
INVOICE_PARTIALLY_PAID = "partially_paid"
INVOICE_PAID = "paid"
INVOICE_VOID = "void"
INVOICE_STATUSES = {INVOICE_DRAFT, INVOICE_SENT, INVOICE_VIEWED, INVOICE_PARTIALLY_PAID, INVOICE_PAID, INVOICE_VOID}

# Payment term -> due date offset in days
PAYMENT_TERM_DAYS = {
    "immediate": 0,
    "net7": 7,
    "net15": 15,
    "net30": 30,
    "net45": 45,
    "net60": 60,
    "net90": 90,
}

# Payment ledger vocabularies
PAYMENT_METHODS = {"credit_card", "bank_transfer", "cash", "check", "paypal", "stripe", "other"}

PAYMENT_TYPE_ORDER = "order_payment"
PAYMENT_TYPE_INVOICE = "invoice_payment"
PAYMENT_TYPE_REFUND = "refund"
PAYMENT_TYPE_ADVANCE = "advance_payment"
PAYMENT_TYPE_ADJUSTMENT = "adjustment"
PAYMENT_TYPES = {PAYMENT_TYPE_ORDER, PAYMENT_TYPE_INVOICE, PAYMENT_TYPE_REFUND, PAYMENT_TYPE_ADVANCE, PAYMENT_TYPE_ADJUSTMENT}

RECONCILIATION_UNRECONCILED = "unreconciled"
RECONCILIATION_RECONCILED = "reconciled"
RECONCILIATION_DISPUTED = "disputed"
RECONCILIATION_PENDING_REVIEW = "pending_review"
RECONCILIATION_STATUSES = {
    RECONCILIATION_UNRECONCILED,
    RECONCILIATION_RECONCILED,
    RECONCILIATION_DISPUTED,
    RECONCILIATION_PENDING_REVIEW,
}

_LIVE_ORDER_INVOICE = "order_id IS NOT NULL AND status <> 'void'"


class Invoice(db.Model):
    """
    Invoice document billed to a customer, optionally derived from an order.

    paid_amount_cents is a cached aggregate of the invoice's payment rows;
    the payments table is the source of truth.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        # At most one live (non-void) invoice per order
        db.Index(
            "uq_invoices_live_order",
            "order_id",
            unique=True,
            sqlite_where=text(_LIVE_ORDER_INVOICE),
            postgresql_where=text(_LIVE_ORDER_INVOICE),
        ),
        db.Index("ix_invoices_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_DRAFT, index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_term = db.Column(db.String(16), nullable=False, default="net30")
    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    billing_address = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("User", foreign_keys=[customer_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    order = db.relationship("Order", backref=db.backref("invoices", lazy=True))

    @property
    def remaining_cents(self) -> int:
        return max(0, self.total_amount_cents - self.paid_amount_cents)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "created_by_id": self.created_by_id,
            "order_id": self.order_id,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_cents": self.remaining_cents,
            "payment_term": self.payment_term,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "billing_address": self.billing_address,
            "notes": self.notes,
            "metadata": self.meta or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """Line item owned by an invoice; cascade-deleted with it."""
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship(
        "Invoice",
        backref=db.backref("items", lazy=True, cascade="all, delete-orphan", order_by="InvoiceItem.id"),
    )
    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents - (self.discount_cents or 0) + (self.tax_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Payment ledger row against an order or an invoice.

    DESIGN: Payments are first-class rows, never JSON inside the invoice.
    Amounts are immutable once recorded; only reconciliation fields change.
    Exactly one of order_id / invoice_id is populated.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint(
            "(order_id IS NULL) <> (invoice_id IS NULL)",
            name="ck_payments_single_target",
        ),
        db.Index("ix_payments_invoice_created", "invoice_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(64), nullable=False, unique=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, default="bank_transfer")
    payment_type = db.Column(db.String(32), nullable=False, default=PAYMENT_TYPE_INVOICE)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    external_reference_id = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)

    reconciliation_status = db.Column(db.String(16), nullable=False, default=RECONCILIATION_UNRECONCILED, index=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciled_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    recorded_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "order_id": self.order_id,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "payment_type": self.payment_type,
            "payment_date": to_utc_z(self.payment_date),
            "external_reference_id": self.external_reference_id,
            "notes": self.notes,
            "metadata": self.meta or {},
            "reconciliation_status": self.reconciliation_status,
            "reconciled_at": to_utc_z(self.reconciled_at),
            "reconciled_by_id": self.reconciled_by_id,
            "recorded_by_id": self.recorded_by_id,
            "created_at": to_utc_z(self.created_at),
        }
