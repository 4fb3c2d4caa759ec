# Overview: Service-layer operations for invoices; encapsulates business logic and database work.

"""
Invoice Lifecycle

STATES:
- draft -> sent -> viewed -> partially_paid -> paid
- any non-void status -> void (terminal, soft delete)

RULES:
- At most one live (non-void) invoice per order. The order row is locked
  before the check and a partial unique index backs it.
- paid_amount_cents is derived from the payment ledger; it is never
  written directly.
- Draft invoices accept a full item replacement; total includes tax.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError, ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Invoice, InvoiceItem, User, Company
from ..models.billing import (
    INVOICE_DRAFT,
    INVOICE_SENT,
    INVOICE_VIEWED,
    INVOICE_PARTIALLY_PAID,
    INVOICE_PAID,
    INVOICE_VOID,
    INVOICE_STATUSES,
    PAYMENT_TERM_DAYS,
    PAYMENT_TYPE_INVOICE,
)
from ..models.sales import ORDER_CANCELLED
from ..time_utils import today, utcnow, parse_iso_date, to_utc_z
from .actor import Actor
from .document_service import next_document_number, INVOICE_PREFIX
from .money import parse_cents, parse_line_items, document_total, format_cents
from .pagination import paginate
from .payment_service import record_invoice_payment, payment_summary_for_invoice
from .product_service import load_products
from .unit_of_work import run_in_unit_of_work

logger = logging.getLogger(__name__)


INVOICE_SORT_FIELDS = {
    "created_at": Invoice.created_at,
    "updated_at": Invoice.updated_at,
    "issue_date": Invoice.issue_date,
    "due_date": Invoice.due_date,
    "total_amount_cents": Invoice.total_amount_cents,
    "invoice_number": Invoice.invoice_number,
}

# Status changes allowed through update_invoice. Payment statuses are
# derived from the ledger and void goes through void_invoice.
MANUAL_INVOICE_TRANSITIONS = {
    INVOICE_DRAFT: {INVOICE_SENT},
    INVOICE_SENT: {INVOICE_VIEWED},
}

PAYMENT_STATUSES = {INVOICE_PAID, INVOICE_PARTIALLY_PAID}
SENDABLE_STATUSES = {INVOICE_DRAFT, INVOICE_SENT}
CREATOR_FIELDS = ("payment_term", "issue_date", "due_date", "billing_address", "items")


def calculate_due_date(issue_date, payment_term: str):
    """Due date = issue date + the payment term's day offset."""
    if payment_term not in PAYMENT_TERM_DAYS:
        raise ValidationError(f"Invalid payment_term: {payment_term}")
    return issue_date + timedelta(days=PAYMENT_TERM_DAYS[payment_term])


def _parse_date(value, field):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date")


def _resolve_dates(issue_date, due_date, payment_term):
    if payment_term not in PAYMENT_TERM_DAYS:
        raise ValidationError(f"Invalid payment_term: {payment_term}")
    issue = _parse_date(issue_date, "issue_date") or today()
    due = _parse_date(due_date, "due_date") or calculate_due_date(issue, payment_term)
    if due < issue:
        raise ValidationError("due_date cannot be before issue_date")
    return issue, due


def _is_party(actor: Actor, invoice: Invoice) -> bool:
    return actor.is_admin or actor.user_id in (invoice.customer_id, invoice.created_by_id)


def _is_admin_or_creator(actor: Actor, invoice: Invoice) -> bool:
    return actor.is_admin or actor.user_id == invoice.created_by_id


def _build_items(uow, raw_items) -> list[InvoiceItem]:
    lines = parse_line_items(raw_items, allow_tax=True)
    products = load_products(uow, [line.product_id for line in lines])
    return [
        InvoiceItem(
            product_id=line.product_id,
            description=line.description or products[line.product_id].name,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            discount_cents=line.discount_cents,
            tax_cents=line.tax_cents,
            notes=line.notes,
        )
        for line in lines
    ]


def _lock_invoiceable_order(uow, actor: Actor, order_id: int):
    """Lock the order and make sure it can take a new invoice."""
    order = uow.orders.get_for_update(order_id)
    if not order:
        raise NotFoundError("Order not found")
    if not actor.is_admin and order.customer_id != actor.user_id:
        raise ForbiddenError("Not authorized to create invoice for this order")
    if order.status == ORDER_CANCELLED:
        raise ValidationError("Cannot create invoice for cancelled order")

    existing = (
        uow.invoices.query()
        .filter(Invoice.order_id == order.id, Invoice.status != INVOICE_VOID)
        .first()
    )
    if existing:
        raise ValidationError(f"Invoice #{existing.invoice_number} already exists for this order")
    return order


def _insert_invoice(uow, invoice: Invoice, items: list[InvoiceItem]) -> Invoice:
    uow.invoices.add(invoice)
    try:
        uow.flush()
    except IntegrityError:
        raise ValidationError("An invoice already exists for this order")
    for item in items:
        invoice.items.append(item)
    invoice.total_amount_cents = document_total(items)
    return invoice


def create_invoice(
    actor: Actor,
    items,
    *,
    order_id: int | None = None,
    customer_id: int | None = None,
    payment_term: str | None = None,
    issue_date=None,
    due_date=None,
    billing_address=None,
    notes: str | None = None,
    metadata: dict | None = None,
    uow=None,
) -> Invoice:
    """
    Create a draft invoice from explicit line items.

    The customer defaults to the order's customer when an order is given,
    otherwise to the acting user. An order's invoice always bills the order's
    customer. Only admins may bill another customer.
    """
    payment_term = payment_term or current_app.config["DEFAULT_PAYMENT_TERM"]
    issue, due = _resolve_dates(issue_date, due_date, payment_term)

    def _op(uow):
        bill_to = customer_id
        if order_id is not None:
            order = _lock_invoiceable_order(uow, actor, order_id)
            if bill_to is not None and bill_to != order.customer_id:
                raise ValidationError("customer_id must match the order's customer")
            bill_to = order.customer_id
        bill_to = bill_to or actor.user_id
        if bill_to != actor.user_id and not actor.is_admin:
            raise ForbiddenError("Not authorized to invoice another customer")
        if not uow.users.get(bill_to):
            raise NotFoundError("Customer not found")

        invoice_items = _build_items(uow, items)
        invoice = Invoice(
            invoice_number=next_document_number(uow, document_type="INVOICE", prefix=INVOICE_PREFIX),
            customer_id=bill_to,
            created_by_id=actor.user_id,
            order_id=order_id,
            status=INVOICE_DRAFT,
            total_amount_cents=0,
            paid_amount_cents=0,
            payment_term=payment_term,
            issue_date=issue,
            due_date=due,
            billing_address=billing_address,
            notes=notes,
            meta=dict(metadata) if metadata else None,
        )
        return _insert_invoice(uow, invoice, invoice_items)

    invoice = run_in_unit_of_work(_op, uow)
    logger.info("Invoice %s created by user %s", invoice.invoice_number, actor.user_id)
    return invoice


def create_invoice_from_order(
    actor: Actor,
    order_id: int,
    *,
    payment_term: str | None = None,
    issue_date=None,
    due_date=None,
    billing_address=None,
    notes: str | None = None,
    metadata: dict | None = None,
    uow=None,
) -> Invoice:
    """Bill an order: items are copied from the order lines with zero tax."""
    payment_term = payment_term or current_app.config["DEFAULT_PAYMENT_TERM"]
    issue, due = _resolve_dates(issue_date, due_date, payment_term)

    def _op(uow):
        order = _lock_invoiceable_order(uow, actor, order_id)

        items = [
            InvoiceItem(
                product_id=oi.product_id,
                description=oi.product.name if oi.product else f"Product #{oi.product_id}",
                quantity=oi.quantity,
                unit_price_cents=oi.unit_price_cents,
                discount_cents=oi.discount_cents or 0,
                tax_cents=0,
                notes="",
            )
            for oi in order.items
        ]
        invoice = Invoice(
            invoice_number=next_document_number(uow, document_type="INVOICE", prefix=INVOICE_PREFIX),
            customer_id=order.customer_id,
            created_by_id=actor.user_id,
            order_id=order.id,
            status=INVOICE_DRAFT,
            total_amount_cents=0,
            paid_amount_cents=0,
            payment_term=payment_term,
            issue_date=issue,
            due_date=due,
            billing_address=billing_address or order.delivery_address,
            notes=notes,
            meta={**(metadata or {}), "created_from_order": order.id},
        )
        return _insert_invoice(uow, invoice, items)

    invoice = run_in_unit_of_work(_op, uow)
    logger.info("Invoice %s created from order %s", invoice.invoice_number, order_id)
    return invoice


def list_invoices(
    actor: Actor,
    *,
    status: str | None = None,
    customer_id: int | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page=1,
    limit=10,
):
    if sort_by not in INVOICE_SORT_FIELDS:
        raise ValidationError(f"Invalid sort_by: {sort_by}")
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc")

    query = db.session.query(Invoice)
    if actor.is_admin:
        if customer_id is not None:
            query = query.filter(Invoice.customer_id == customer_id)
    else:
        query = query.filter(
            (Invoice.customer_id == actor.user_id) | (Invoice.created_by_id == actor.user_id)
        )
    if status:
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"Invalid invoice status: {status}")
        query = query.filter(Invoice.status == status)

    column = INVOICE_SORT_FIELDS[sort_by]
    ordering = column.asc() if sort_order == "asc" else column.desc()
    return paginate(query.order_by(ordering, Invoice.id.asc()), page, limit)


def get_invoice(actor: Actor, invoice_id: int) -> Invoice:
    """
    Fetch an invoice for a party to it.

    The customer opening a sent invoice marks it viewed.
    """
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    if not _is_party(actor, invoice):
        raise ForbiddenError("Not authorized to view this invoice")

    if invoice.status == INVOICE_SENT and actor.user_id == invoice.customer_id:
        def _op(uow):
            locked = uow.invoices.get_for_update(invoice_id)
            if locked.status == INVOICE_SENT:
                locked.status = INVOICE_VIEWED
                locked.meta = {**(locked.meta or {}), "viewed_at": to_utc_z(utcnow())}
            return locked

        invoice = run_in_unit_of_work(_op)
    return invoice


def update_invoice(actor: Actor, invoice_id: int, *, uow=None, **fields) -> Invoice:
    """
    Patch an invoice with per-field authorization.

    - notes / metadata: any party to the invoice
    - paid_amount_cents (raise only): any party; recorded as a ledger payment
      for the difference
    - status: paid / partially_paid only when the ledger already says so;
      other manual steps by admin or creator
    - payment_term, dates, billing_address, items: admin or creator
    - void invoices: admin only, notes / metadata only
    """
    def _op(uow):
        invoice = uow.invoices.get_for_update(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found")
        if not _is_party(actor, invoice):
            raise ForbiddenError("Not authorized to update this invoice")

        privileged = _is_admin_or_creator(actor, invoice)

        if invoice.status == INVOICE_VOID:
            if not actor.is_admin:
                raise ValidationError("Voided invoice cannot be updated")
            blocked = sorted(k for k, v in fields.items() if v is not None and k not in ("notes", "metadata"))
            if blocked:
                raise ValidationError(
                    "Only notes and metadata can be changed on a voided invoice",
                    details={"fields": blocked},
                )

        touched_creator_fields = [k for k in CREATOR_FIELDS if fields.get(k) is not None]
        if touched_creator_fields and not privileged:
            raise ForbiddenError("Not authorized to change these invoice fields")

        if fields.get("payment_term") is not None:
            if fields["payment_term"] not in PAYMENT_TERM_DAYS:
                raise ValidationError(f"Invalid payment_term: {fields['payment_term']}")
            invoice.payment_term = fields["payment_term"]
        if fields.get("issue_date") is not None:
            invoice.issue_date = _parse_date(fields["issue_date"], "issue_date")
            if fields.get("due_date") is None:
                invoice.due_date = calculate_due_date(invoice.issue_date, invoice.payment_term)
        if fields.get("due_date") is not None:
            invoice.due_date = _parse_date(fields["due_date"], "due_date")
        if invoice.due_date < invoice.issue_date:
            raise ValidationError("due_date cannot be before issue_date")
        if fields.get("billing_address") is not None:
            invoice.billing_address = fields["billing_address"]

        if fields.get("items") is not None:
            if invoice.status != INVOICE_DRAFT:
                raise ValidationError("Items can only be replaced on draft invoices")
            replacement = _build_items(uow, fields["items"])
            invoice.items.clear()
            uow.flush()
            for item in replacement:
                invoice.items.append(item)
            invoice.total_amount_cents = document_total(replacement)

        if fields.get("paid_amount_cents") is not None:
            _raise_paid_amount(uow, actor, invoice, fields["paid_amount_cents"])

        status = fields.get("status")
        if status is not None and status != invoice.status:
            _apply_manual_status(actor, invoice, status, privileged)

        if "notes" in fields and fields["notes"] is not None:
            invoice.notes = fields["notes"]
        if fields.get("metadata"):
            invoice.meta = {**(invoice.meta or {}), **fields["metadata"]}
        return invoice

    return run_in_unit_of_work(_op, uow)


def _raise_paid_amount(uow, actor: Actor, invoice: Invoice, value) -> None:
    target = parse_cents(value, "paid_amount_cents")
    delta = target - invoice.paid_amount_cents
    if delta < 0:
        raise ValidationError("paid_amount_cents cannot be lowered; reconcile or refund the payment instead")
    if delta == 0:
        return
    record_invoice_payment(
        uow, actor, invoice,
        amount_cents=delta,
        payment_method="other",
        payment_type=PAYMENT_TYPE_INVOICE,
        notes="Recorded through invoice update",
    )


def _apply_manual_status(actor: Actor, invoice: Invoice, status: str, privileged: bool) -> None:
    if status not in INVOICE_STATUSES:
        raise ValidationError(f"Invalid invoice status: {status}")
    if status == INVOICE_VOID:
        raise ValidationError("Use void to cancel an invoice")
    if status in PAYMENT_STATUSES:
        raise ValidationError(
            f"Invoice status {status} follows recorded payments; record a payment instead"
        )
    if not privileged:
        raise ForbiddenError("Not authorized to change invoice status")
    if status not in MANUAL_INVOICE_TRANSITIONS.get(invoice.status, set()):
        raise ValidationError(f"Invalid status transition from {invoice.status} to {status}")
    invoice.status = status


def record_payment(
    actor: Actor,
    invoice_id: int,
    *,
    amount_cents,
    payment_method,
    payment_date=None,
    notes: str | None = None,
    transaction_id: str | None = None,
    external_reference_id: str | None = None,
    metadata: dict | None = None,
    uow=None,
):
    """
    Record a payment against an invoice.

    Returns (invoice, payment, summary) where summary carries the previous and
    new paid amounts and the remaining balance.
    """
    def _op(uow):
        invoice = uow.invoices.get_for_update(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found")
        if not _is_party(actor, invoice):
            raise ForbiddenError("Not authorized to record payment for this invoice")

        previous_paid = invoice.paid_amount_cents
        payment = record_invoice_payment(
            uow, actor, invoice,
            amount_cents=amount_cents,
            payment_method=payment_method,
            payment_date=payment_date,
            transaction_id=transaction_id,
            external_reference_id=external_reference_id,
            notes=notes,
            metadata=metadata,
        )
        summary = {
            "amount_cents": payment.amount_cents,
            "previous_paid_amount_cents": previous_paid,
            "new_paid_amount_cents": invoice.paid_amount_cents,
            "remaining_cents": invoice.remaining_cents,
        }
        return invoice, payment, summary

    invoice, payment, summary = run_in_unit_of_work(_op, uow)
    logger.info(
        "Payment %s of %s recorded on invoice %s",
        payment.transaction_id, format_cents(payment.amount_cents), invoice.invoice_number,
    )
    return invoice, payment, summary


def send_invoice(actor: Actor, invoice_id: int, email: str, *, message: str | None = None, uow=None) -> Invoice:
    """
    Mark an invoice as sent and log the send in its metadata.

    Delivery itself happens outside this service.
    """
    if not email or "@" not in str(email):
        raise ValidationError("A valid email address is required")

    def _op(uow):
        invoice = uow.invoices.get_for_update(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found")
        if not _is_admin_or_creator(actor, invoice):
            raise ForbiddenError("Not authorized to send this invoice")
        if invoice.status not in SENDABLE_STATUSES:
            raise ValidationError(f"Cannot send invoice with status {invoice.status}")

        meta = dict(invoice.meta or {})
        history = list(meta.get("email_history") or [])
        history.append({
            "sent_to": email,
            "sent_at": to_utc_z(utcnow()),
            "sent_by": actor.user_id,
            "message": message,
        })
        meta["email_history"] = history
        invoice.meta = meta
        invoice.status = INVOICE_SENT
        return invoice

    invoice = run_in_unit_of_work(_op, uow)
    logger.info("Invoice %s marked sent to %s", invoice.invoice_number, email)
    return invoice


def void_invoice(actor: Actor, invoice_id: int, *, reason: str | None = None, uow=None) -> Invoice:
    if not actor.is_admin:
        raise ForbiddenError("Only administrators can void invoices")

    def _op(uow):
        invoice = uow.invoices.get_for_update(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found")
        if invoice.status == INVOICE_VOID:
            raise ValidationError("Invoice is already void")
        invoice.status = INVOICE_VOID
        invoice.meta = {
            **(invoice.meta or {}),
            "voided_by": actor.user_id,
            "voided_at": to_utc_z(utcnow()),
            "void_reason": reason or "Administrative action",
        }
        return invoice

    invoice = run_in_unit_of_work(_op, uow)
    logger.info("Invoice %s voided by user %s", invoice.invoice_number, actor.user_id)
    return invoice


def get_invoice_document(actor: Actor, invoice_id: int) -> dict:
    """
    Everything a renderer needs: invoice, items with products, issuing company.

    The issuing company is the creator's company.
    """
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    if not _is_party(actor, invoice):
        raise ForbiddenError("Not authorized to access this invoice")

    creator = db.session.get(User, invoice.created_by_id)
    company = db.session.get(Company, creator.company_id) if creator and creator.company_id else None
    if company is None:
        raise NotFoundError("Company information not found")

    return {
        "invoice": invoice.to_dict(include_items=True),
        "company": {
            "name": company.name,
            "address": company.address,
            "phone": company.contact_phone,
            "email": company.email or "",
        },
        "customer": invoice.customer.to_dict() if invoice.customer else None,
        "payment_summary": payment_summary_for_invoice(invoice),
    }
