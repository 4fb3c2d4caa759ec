# Overview: Payment ledger service; records payments and keeps invoice/order paid totals in sync with it.

"""
Payment Ledger Service

WHY: Payments are rows, not an array inside invoice metadata, so they can be
queried, reconciled and summed.

DESIGN:
- A payment targets exactly one order or one invoice.
- Amounts are immutable once recorded; corrections are refunds or
  adjustments, and reconciliation only changes the reconciliation fields.
- The cached paid total on the target is recomputed from the ledger after
  every write. Disputed payments do not count, refunds count negative.

SECURITY:
- Recording: admin, the document's customer, or (invoices) its creator
- Reconciliation: admin only
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func

from ..errors import ValidationError, ForbiddenError, NotFoundError, ConflictError
from ..extensions import db
from ..models import Payment, Invoice, Order
from ..models.billing import (
    PAYMENT_METHODS,
    PAYMENT_TYPES,
    PAYMENT_TYPE_ORDER,
    PAYMENT_TYPE_INVOICE,
    PAYMENT_TYPE_REFUND,
    RECONCILIATION_STATUSES,
    RECONCILIATION_DISPUTED,
    RECONCILIATION_UNRECONCILED,
    INVOICE_VOID,
    INVOICE_PAID,
    INVOICE_PARTIALLY_PAID,
    INVOICE_SENT,
)
from ..models.sales import ORDER_CANCELLED, ORDER_PAYMENT_PAID, ORDER_PAYMENT_PENDING
from ..time_utils import utcnow, to_utc_z, parse_iso_datetime
from .actor import Actor
from .money import parse_cents
from .pagination import paginate
from .unit_of_work import run_in_unit_of_work

logger = logging.getLogger(__name__)


def generate_transaction_id() -> str:
    return f"TXN-{uuid.uuid4().hex[:20].upper()}"


def _signed_amount(payment: Payment) -> int:
    return -payment.amount_cents if payment.payment_type == PAYMENT_TYPE_REFUND else payment.amount_cents


def ledger_total(session, *, invoice_id: int | None = None, order_id: int | None = None) -> int:
    """Net non-disputed payments for one invoice or one order."""
    query = session.query(Payment).filter(Payment.reconciliation_status != RECONCILIATION_DISPUTED)
    if invoice_id is not None:
        query = query.filter(Payment.invoice_id == invoice_id)
    else:
        query = query.filter(Payment.order_id == order_id)
    return sum(_signed_amount(p) for p in query.all())


def sync_invoice_paid_amount(session, invoice: Invoice) -> Invoice:
    """Recompute paid_amount_cents and the payment-driven status from the ledger."""
    session.flush()
    paid = ledger_total(session, invoice_id=invoice.id)
    invoice.paid_amount_cents = max(paid, 0)
    if invoice.status == INVOICE_VOID:
        return invoice

    payment_statuses = (INVOICE_PAID, INVOICE_PARTIALLY_PAID)
    if invoice.paid_amount_cents > 0:
        if invoice.status not in payment_statuses:
            # Restored once disputes or refunds bring the ledger back to zero
            invoice.meta = {**(invoice.meta or {}), "status_before_payment": invoice.status}
        if invoice.paid_amount_cents >= invoice.total_amount_cents:
            invoice.status = INVOICE_PAID
        else:
            invoice.status = INVOICE_PARTIALLY_PAID
    elif invoice.status in payment_statuses:
        invoice.status = (invoice.meta or {}).get("status_before_payment") or INVOICE_SENT
    return invoice


def sync_order_payment_status(session, order: Order) -> Order:
    session.flush()
    paid = ledger_total(session, order_id=order.id)
    if paid > 0 and paid >= order.total_amount_cents:
        order.payment_status = ORDER_PAYMENT_PAID
    elif order.payment_status == ORDER_PAYMENT_PAID:
        order.payment_status = ORDER_PAYMENT_PENDING
    return order


def _validate_method(payment_method: str | None) -> str:
    if not payment_method:
        raise ValidationError("payment_method is required")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment_method: {payment_method}")
    return payment_method


def _parse_payment_date(value):
    if value is None or value == "":
        return utcnow()
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError("payment_date must be an ISO datetime")


def _new_payment(uow, actor: Actor, *, amount_cents: int, payment_method, payment_type, customer_id,
                 invoice_id=None, order_id=None, payment_date=None, transaction_id=None,
                 external_reference_id=None, notes=None, metadata=None) -> Payment:
    transaction_id = transaction_id or generate_transaction_id()
    if uow.payments.filter_by(transaction_id=transaction_id).first():
        raise ConflictError(f"Payment with transaction_id {transaction_id} already exists")

    payment = Payment(
        transaction_id=transaction_id,
        invoice_id=invoice_id,
        order_id=order_id,
        customer_id=customer_id,
        amount_cents=amount_cents,
        payment_method=payment_method,
        payment_type=payment_type,
        payment_date=_parse_payment_date(payment_date),
        external_reference_id=external_reference_id,
        notes=notes,
        meta=dict(metadata) if metadata else None,
        reconciliation_status=RECONCILIATION_UNRECONCILED,
        recorded_by_id=actor.user_id,
    )
    uow.payments.add(payment)
    return payment


def record_invoice_payment(
    uow,
    actor: Actor,
    invoice: Invoice,
    *,
    amount_cents,
    payment_method,
    payment_type: str = PAYMENT_TYPE_INVOICE,
    payment_date=None,
    transaction_id=None,
    external_reference_id=None,
    notes=None,
    metadata=None,
) -> Payment:
    """
    Ledger write for an already-locked invoice; the caller owns the transaction.
    """
    amount = parse_cents(amount_cents, "amount_cents")
    if amount <= 0:
        raise ValidationError("amount_cents must be greater than zero")
    _validate_method(payment_method)
    if invoice.status == INVOICE_VOID:
        raise ValidationError("Cannot record payment for voided invoice")
    if invoice.status == INVOICE_PAID and payment_type != PAYMENT_TYPE_REFUND:
        raise ValidationError("Invoice is already paid in full")

    payment = _new_payment(
        uow, actor,
        amount_cents=amount,
        payment_method=payment_method,
        payment_type=payment_type,
        customer_id=invoice.customer_id,
        invoice_id=invoice.id,
        payment_date=payment_date,
        transaction_id=transaction_id,
        external_reference_id=external_reference_id,
        notes=notes,
        metadata=metadata,
    )
    sync_invoice_paid_amount(uow.session, invoice)
    return payment


def _require_invoice_party(actor: Actor, invoice: Invoice) -> None:
    if actor.is_admin or actor.user_id in (invoice.customer_id, invoice.created_by_id):
        return
    raise ForbiddenError("Not authorized to record payment for this invoice")


def _require_order_party(actor: Actor, order: Order) -> None:
    if actor.is_admin or actor.user_id == order.customer_id:
        return
    raise ForbiddenError("Not authorized to record payment for this order")


def create_payment(
    actor: Actor,
    *,
    amount_cents,
    payment_method,
    payment_type: str | None = None,
    order_id: int | None = None,
    invoice_id: int | None = None,
    payment_date=None,
    transaction_id: str | None = None,
    external_reference_id: str | None = None,
    notes: str | None = None,
    metadata: dict | None = None,
    uow=None,
) -> Payment:
    """Record a payment against exactly one order or one invoice."""
    if (order_id is None) == (invoice_id is None):
        raise ValidationError("Exactly one of order_id or invoice_id is required")
    if payment_type is None:
        payment_type = PAYMENT_TYPE_INVOICE if invoice_id is not None else PAYMENT_TYPE_ORDER
    if payment_type not in PAYMENT_TYPES:
        raise ValidationError(f"Invalid payment_type: {payment_type}")

    def _op(uow):
        if invoice_id is not None:
            invoice = uow.invoices.get_for_update(invoice_id)
            if not invoice:
                raise NotFoundError("Invoice not found")
            _require_invoice_party(actor, invoice)
            return record_invoice_payment(
                uow, actor, invoice,
                amount_cents=amount_cents,
                payment_method=payment_method,
                payment_type=payment_type,
                payment_date=payment_date,
                transaction_id=transaction_id,
                external_reference_id=external_reference_id,
                notes=notes,
                metadata=metadata,
            )

        order = uow.orders.get_for_update(order_id)
        if not order:
            raise NotFoundError("Order not found")
        _require_order_party(actor, order)
        if order.status == ORDER_CANCELLED and payment_type != PAYMENT_TYPE_REFUND:
            raise ValidationError("Cannot record payment for cancelled order")

        amount = parse_cents(amount_cents, "amount_cents")
        if amount <= 0:
            raise ValidationError("amount_cents must be greater than zero")
        payment = _new_payment(
            uow, actor,
            amount_cents=amount,
            payment_method=_validate_method(payment_method),
            payment_type=payment_type,
            customer_id=order.customer_id,
            order_id=order.id,
            payment_date=payment_date,
            transaction_id=transaction_id,
            external_reference_id=external_reference_id,
            notes=notes,
            metadata=metadata,
        )
        sync_order_payment_status(uow.session, order)
        return payment

    payment = run_in_unit_of_work(_op, uow)
    logger.info("Payment %s recorded (%s cents)", payment.transaction_id, payment.amount_cents)
    return payment


def reconcile_payment(actor: Actor, payment_id: int, reconciliation_status: str, *, notes: str | None = None, uow=None) -> Payment:
    if not actor.is_admin:
        raise ForbiddenError("Only administrators can reconcile payments")
    if reconciliation_status not in RECONCILIATION_STATUSES:
        raise ValidationError(f"Invalid reconciliation_status: {reconciliation_status}")

    def _op(uow):
        payment = uow.payments.get_for_update(payment_id)
        if not payment:
            raise NotFoundError("Payment not found")

        now = utcnow()
        payment.reconciliation_status = reconciliation_status
        payment.reconciled_at = now
        payment.reconciled_by_id = actor.user_id
        if notes:
            stamp = f"[{to_utc_z(now)}] Reconciliation: {notes}"
            payment.notes = f"{payment.notes}\n{stamp}" if payment.notes else stamp

        if payment.invoice_id is not None:
            invoice = uow.invoices.get_for_update(payment.invoice_id)
            sync_invoice_paid_amount(uow.session, invoice)
        else:
            order = uow.orders.get_for_update(payment.order_id)
            sync_order_payment_status(uow.session, order)
        return payment

    payment = run_in_unit_of_work(_op, uow)
    logger.info("Payment %s marked %s by user %s", payment.transaction_id, reconciliation_status, actor.user_id)
    return payment


def get_payment(actor: Actor, payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment not found")
    if not actor.is_admin and payment.customer_id != actor.user_id and payment.recorded_by_id != actor.user_id:
        raise ForbiddenError("Not authorized to view this payment")
    return payment


def list_payments(
    actor: Actor,
    *,
    invoice_id: int | None = None,
    order_id: int | None = None,
    reconciliation_status: str | None = None,
    page=1,
    limit=10,
):
    query = db.session.query(Payment)
    if not actor.is_admin:
        query = query.filter(Payment.customer_id == actor.user_id)
    if invoice_id is not None:
        query = query.filter(Payment.invoice_id == invoice_id)
    if order_id is not None:
        query = query.filter(Payment.order_id == order_id)
    if reconciliation_status:
        if reconciliation_status not in RECONCILIATION_STATUSES:
            raise ValidationError(f"Invalid reconciliation_status: {reconciliation_status}")
        query = query.filter(Payment.reconciliation_status == reconciliation_status)
    return paginate(query.order_by(Payment.payment_date.desc(), Payment.id.desc()), page, limit)


def payment_summary_for_invoice(invoice: Invoice) -> dict:
    """
    Paid / remaining breakdown for an invoice.

    Returns:
        Dict with total, paid, remaining and per-status counts
    """
    counts = dict(
        db.session.query(Payment.reconciliation_status, func.count(Payment.id))
        .filter(Payment.invoice_id == invoice.id)
        .group_by(Payment.reconciliation_status)
        .all()
    )
    return {
        "invoice_id": invoice.id,
        "total_amount_cents": invoice.total_amount_cents,
        "paid_amount_cents": invoice.paid_amount_cents,
        "remaining_cents": invoice.remaining_cents,
        "payment_count": sum(counts.values()),
        "by_reconciliation_status": counts,
        "is_fully_paid": invoice.total_amount_cents > 0 and invoice.paid_amount_cents >= invoice.total_amount_cents,
    }
