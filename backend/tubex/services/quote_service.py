# Overview: Service-layer operations for quotes; encapsulates business logic and database work.

"""
Quote Lifecycle

STATES:
- draft -> pending | rejected | expired
- pending -> accepted | rejected | expired
- accepted -> converted (only through convert_to_order)

Accepted, rejected, expired and converted quotes are frozen: update_quote
refuses them. Item changes always replace the whole item set and recompute
the total from scratch.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from flask import current_app

from ..errors import ValidationError, ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Quote, QuoteItem, Order, OrderItem, OrderHistory
from ..models.sales import (
    QUOTE_DRAFT,
    QUOTE_PENDING,
    QUOTE_ACCEPTED,
    QUOTE_REJECTED,
    QUOTE_EXPIRED,
    QUOTE_CONVERTED,
    QUOTE_STATUSES,
    ORDER_PENDING,
    ORDER_PAYMENT_PENDING,
)
from ..time_utils import today, utcnow, parse_iso_date, to_utc_z
from .actor import Actor
from .document_service import next_document_number, QUOTE_PREFIX
from .money import parse_line_items, document_total
from .pagination import paginate
from .product_service import load_products
from .unit_of_work import run_in_unit_of_work

logger = logging.getLogger(__name__)


QUOTE_TRANSITIONS = {
    QUOTE_DRAFT: {QUOTE_PENDING, QUOTE_REJECTED, QUOTE_EXPIRED},
    QUOTE_PENDING: {QUOTE_ACCEPTED, QUOTE_REJECTED, QUOTE_EXPIRED},
}

FROZEN_QUOTE_STATUSES = {QUOTE_ACCEPTED, QUOTE_REJECTED, QUOTE_EXPIRED, QUOTE_CONVERTED}
UNDELETABLE_QUOTE_STATUSES = {QUOTE_ACCEPTED, QUOTE_CONVERTED}


def _require_owner_or_admin(actor: Actor, quote: Quote, action: str) -> None:
    if not actor.is_admin and quote.customer_id != actor.user_id:
        raise ForbiddenError(f"Not authorized to {action} this quote")


def _parse_valid_until(value):
    try:
        valid_until = parse_iso_date(value)
    except ValueError:
        raise ValidationError("valid_until must be an ISO date")
    if valid_until is not None and valid_until < today():
        raise ValidationError("valid_until cannot be in the past")
    return valid_until


def _build_items(uow, raw_items) -> list[QuoteItem]:
    lines = parse_line_items(raw_items)
    load_products(uow, [line.product_id for line in lines])
    return [
        QuoteItem(
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            discount_cents=line.discount_cents,
            notes=line.notes,
        )
        for line in lines
    ]


def create_quote(
    actor: Actor,
    items,
    *,
    valid_until=None,
    notes: str | None = None,
    metadata: dict | None = None,
    uow=None,
) -> Quote:
    """
    Create a draft quote for the acting customer.

    Every referenced product must exist or nothing is written. Without an
    explicit valid_until the quote is valid for DEFAULT_QUOTE_VALIDITY_DAYS.
    """
    valid_until = _parse_valid_until(valid_until)
    if valid_until is None:
        valid_until = today() + timedelta(days=current_app.config["DEFAULT_QUOTE_VALIDITY_DAYS"])

    def _op(uow):
        quote_items = _build_items(uow, items)

        quote = Quote(
            quote_number=next_document_number(uow, document_type="QUOTE", prefix=QUOTE_PREFIX),
            customer_id=actor.user_id,
            company_id=actor.company_id,
            created_by_id=actor.user_id,
            status=QUOTE_DRAFT,
            total_amount_cents=0,
            valid_until=valid_until,
            notes=notes,
            meta=dict(metadata) if metadata else None,
        )
        uow.quotes.add(quote)
        uow.flush()

        for item in quote_items:
            quote.items.append(item)
        quote.total_amount_cents = document_total(quote_items)
        return quote

    quote = run_in_unit_of_work(_op, uow)
    logger.info("Quote %s created for customer %s", quote.quote_number, actor.user_id)
    return quote


def list_quotes(actor: Actor, *, status: str | None = None, page=1, limit=10):
    query = db.session.query(Quote)
    if not actor.is_admin:
        query = query.filter(Quote.customer_id == actor.user_id)
    if status:
        if status not in QUOTE_STATUSES:
            raise ValidationError(f"Invalid quote status: {status}")
        query = query.filter(Quote.status == status)
    return paginate(query.order_by(Quote.created_at.desc(), Quote.id.desc()), page, limit)


def get_quote(actor: Actor, quote_id: int) -> Quote:
    quote = db.session.get(Quote, quote_id)
    if not quote:
        raise NotFoundError("Quote not found")
    _require_owner_or_admin(actor, quote, "view")
    return quote


def update_quote(
    actor: Actor,
    quote_id: int,
    *,
    status: str | None = None,
    valid_until=None,
    notes: str | None = None,
    items=None,
    metadata: dict | None = None,
    uow=None,
) -> Quote:
    """
    Patch a quote that is still open (draft or pending).

    A new item list replaces the old one wholesale; metadata is merged.
    """
    def _op(uow):
        quote = uow.quotes.get_for_update(quote_id)
        if not quote:
            raise NotFoundError("Quote not found")
        _require_owner_or_admin(actor, quote, "update")
        if quote.status in FROZEN_QUOTE_STATUSES:
            raise ValidationError(f"Cannot update a quote in status {quote.status}")

        if status is not None and status != quote.status:
            if status not in QUOTE_TRANSITIONS.get(quote.status, set()):
                raise ValidationError(f"Invalid status transition from {quote.status} to {status}")
            quote.status = status

        if valid_until is not None:
            quote.valid_until = _parse_valid_until(valid_until)
        if notes is not None:
            quote.notes = notes

        if items is not None:
            replacement = _build_items(uow, items)
            quote.items.clear()
            uow.flush()
            for item in replacement:
                quote.items.append(item)
            quote.total_amount_cents = document_total(replacement)

        if metadata:
            quote.meta = {**(quote.meta or {}), **metadata}
        return quote

    return run_in_unit_of_work(_op, uow)


def delete_quote(actor: Actor, quote_id: int, *, uow=None) -> None:
    def _op(uow):
        quote = uow.quotes.get_for_update(quote_id)
        if not quote:
            raise NotFoundError("Quote not found")
        _require_owner_or_admin(actor, quote, "delete")
        if quote.status in UNDELETABLE_QUOTE_STATUSES:
            raise ValidationError(f"Cannot delete a quote in status {quote.status}")
        uow.quotes.delete(quote)

    run_in_unit_of_work(_op, uow)
    logger.info("Quote %s deleted by user %s", quote_id, actor.user_id)


def convert_to_order(
    actor: Actor,
    quote_id: int,
    *,
    payment_method: str | None = None,
    delivery_address=None,
    metadata: dict | None = None,
    uow=None,
) -> Order:
    """
    Turn an accepted, unexpired quote into a pending order.

    Order, order items, the first order history row and the quote status
    change are written in one transaction.
    """
    def _op(uow):
        quote = uow.quotes.get_for_update(quote_id)
        if not quote:
            raise NotFoundError("Quote not found")
        _require_owner_or_admin(actor, quote, "convert")
        if quote.status != QUOTE_ACCEPTED:
            raise ValidationError("Only accepted quotes can be converted to orders")
        if quote.valid_until is not None and quote.valid_until < today():
            raise ValidationError("Quote has expired")

        order = Order(
            customer_id=quote.customer_id,
            company_id=quote.company_id,
            status=ORDER_PENDING,
            payment_status=ORDER_PAYMENT_PENDING,
            payment_method=payment_method,
            delivery_address=delivery_address,
            total_amount_cents=0,
            meta={
                **(metadata or {}),
                "converted_from_quote": quote.id,
                "quote_number": quote.quote_number,
            },
        )
        uow.orders.add(order)
        uow.flush()

        order_items = [
            OrderItem(
                product_id=qi.product_id,
                quantity=qi.quantity,
                unit_price_cents=qi.unit_price_cents,
                discount_cents=qi.discount_cents,
                meta={"quote_item_id": qi.id},
            )
            for qi in quote.items
        ]
        for item in order_items:
            order.items.append(item)
        order.total_amount_cents = document_total(order_items)

        uow.order_history.add(OrderHistory(
            order_id=order.id,
            user_id=actor.user_id,
            previous_status=None,
            new_status=ORDER_PENDING,
            notes=f"Order created from quote {quote.quote_number}",
            meta={"quote_id": quote.id},
        ))

        quote.status = QUOTE_CONVERTED
        quote.meta = {
            **(quote.meta or {}),
            "converted_to_order": order.id,
            "converted_at": to_utc_z(utcnow()),
        }
        return order

    order = run_in_unit_of_work(_op, uow)
    logger.info("Quote %s converted to order %s", quote_id, order.id)
    return order
