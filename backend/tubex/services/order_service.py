# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Order Lifecycle

STATES:
- pending -> confirmed -> processing -> shipped -> delivered
- pending | confirmed -> cancelled

Every status change appends an OrderHistory row in the same transaction.
Bulk processing isolates each order in a savepoint and reports failures
instead of aborting the batch.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..errors import AppError, ValidationError, ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Order, OrderItem, OrderHistory
from ..models.billing import PAYMENT_METHODS
from ..models.catalog import PRODUCT_ACTIVE
from ..models.sales import (
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    ORDER_STATUSES,
    ORDER_PAYMENT_PENDING,
)
from ..time_utils import utcnow, to_utc_z
from .actor import Actor
from .money import parse_line_items, parse_int, validate_line, document_total
from .pagination import paginate
from .pricing_service import resolve_unit_price
from .product_service import load_products
from .unit_of_work import UnitOfWork, run_in_unit_of_work

logger = logging.getLogger(__name__)


ORDER_TRANSITIONS = {
    ORDER_PENDING: {ORDER_CONFIRMED, ORDER_CANCELLED},
    ORDER_CONFIRMED: {ORDER_PROCESSING, ORDER_CANCELLED},
    ORDER_PROCESSING: {ORDER_SHIPPED},
    ORDER_SHIPPED: {ORDER_DELIVERED},
}

ORDER_ACTIONS = {
    "confirm": ORDER_CONFIRMED,
    "process": ORDER_PROCESSING,
    "ship": ORDER_SHIPPED,
    "deliver": ORDER_DELIVERED,
    "cancel": ORDER_CANCELLED,
}


def is_valid_transition(current: str, target: str) -> bool:
    return target in ORDER_TRANSITIONS.get(current, set())


def target_status(action: str) -> str:
    """Map an action name (or a target status) to the status it leads to."""
    if action in ORDER_ACTIONS:
        return ORDER_ACTIONS[action]
    if action in ORDER_STATUSES:
        return action
    raise ValidationError(f"Invalid order action: {action}")


def _require_owner_or_admin(actor: Actor, order: Order, action: str) -> None:
    if not actor.is_admin and order.customer_id != actor.user_id:
        raise ForbiddenError(f"Not authorized to {action} this order")


def _record_history(uow, order, actor, previous, new, notes=None, meta=None):
    uow.order_history.add(OrderHistory(
        order_id=order.id,
        user_id=actor.user_id,
        previous_status=previous,
        new_status=new,
        notes=notes or "",
        meta=meta or {},
    ))


def create_order(
    actor: Actor,
    items,
    *,
    delivery_address=None,
    payment_method: str | None = None,
    metadata: dict | None = None,
    uow=None,
) -> Order:
    """
    Place a pending order for the acting customer.

    Lines without unit_price_cents are priced from the buyer's active unified
    pricing, falling back to the product base price.
    """
    lines = parse_line_items(items, require_unit_price=False)
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment_method: {payment_method}")

    def _op(uow):
        products = load_products(uow, [line.product_id for line in lines])
        inactive = sorted({pid for pid, p in products.items() if p.status != PRODUCT_ACTIVE})
        if inactive:
            raise ValidationError(
                "One or more products are not available",
                details={"inactive_product_ids": inactive},
            )

        order_items = []
        for line in lines:
            unit_price = line.unit_price_cents
            if unit_price is None:
                unit_price = resolve_unit_price(
                    products[line.product_id], actor.company_id, line.quantity, session=uow.session
                )
            validate_line(line.quantity, unit_price, line.discount_cents)
            order_items.append(OrderItem(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=unit_price,
                discount_cents=line.discount_cents,
                meta={"notes": line.notes} if line.notes else None,
            ))

        order = Order(
            customer_id=actor.user_id,
            company_id=actor.company_id,
            status=ORDER_PENDING,
            payment_status=ORDER_PAYMENT_PENDING,
            payment_method=payment_method,
            delivery_address=delivery_address,
            total_amount_cents=0,
            meta=dict(metadata) if metadata else None,
        )
        uow.orders.add(order)
        uow.flush()

        for item in order_items:
            order.items.append(item)
        order.total_amount_cents = document_total(order_items)

        _record_history(uow, order, actor, None, ORDER_PENDING, "Order created", {"updated_via": "create"})
        return order

    order = run_in_unit_of_work(_op, uow)
    logger.info("Order %s created for customer %s", order.id, actor.user_id)
    return order


def list_orders(actor: Actor, *, status: str | None = None, page=1, limit=10):
    query = db.session.query(Order)
    if not actor.is_admin:
        query = query.filter(Order.customer_id == actor.user_id)
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid order status: {status}")
        query = query.filter(Order.status == status)
    return paginate(query.order_by(Order.created_at.desc(), Order.id.desc()), page, limit)


def get_order(actor: Actor, order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    _require_owner_or_admin(actor, order, "view")
    return order


def _apply_transition(uow, actor: Actor, order_id: int, new_status: str, notes=None, via="manual") -> Order:
    order = uow.orders.get_for_update(order_id)
    if not order:
        raise NotFoundError("Order not found")
    _require_owner_or_admin(actor, order, "update")

    previous = order.status
    if not is_valid_transition(previous, new_status):
        raise ValidationError(f"Invalid status transition from {previous} to {new_status}")

    order.status = new_status
    order.meta = {
        **(order.meta or {}),
        "last_updated": to_utc_z(utcnow()),
        "updated_by": actor.user_id,
    }
    _record_history(uow, order, actor, previous, new_status, notes, {"updated_via": via})
    return order


def transition_order(actor: Actor, order_id: int, action: str, *, notes: str | None = None, uow=None) -> Order:
    new_status = target_status(action)
    if new_status == ORDER_CANCELLED:
        return cancel_order(actor, order_id, notes, uow=uow)

    order = run_in_unit_of_work(lambda work: _apply_transition(work, actor, order_id, new_status, notes), uow)
    logger.info("Order %s moved to %s by user %s", order_id, new_status, actor.user_id)
    return order


def cancel_order(actor: Actor, order_id: int, reason: str | None, *, uow=None) -> Order:
    if not reason or not str(reason).strip():
        raise ValidationError("A cancellation reason is required")

    def _op(uow):
        order = uow.orders.get_for_update(order_id)
        if not order:
            raise NotFoundError("Order not found")
        _require_owner_or_admin(actor, order, "cancel")
        if order.status in (ORDER_CANCELLED, ORDER_DELIVERED):
            raise ValidationError(f"Order is already {order.status}")
        order = _apply_transition(uow, actor, order_id, ORDER_CANCELLED, str(reason).strip(), via="cancel")
        order.meta = {**(order.meta or {}), "cancellation_reason": str(reason).strip()}
        return order

    order = run_in_unit_of_work(_op, uow)
    logger.info("Order %s cancelled by user %s", order_id, actor.user_id)
    return order


def update_order(
    actor: Actor,
    order_id: int,
    *,
    payment_method: str | None = None,
    delivery_address=None,
    uow=None,
) -> Order:
    """Change payment method or delivery address; closed orders are read-only."""
    if payment_method is None and delivery_address is None:
        raise ValidationError("Nothing to update")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment_method: {payment_method}")

    def _op(uow):
        order = uow.orders.get_for_update(order_id)
        if not order:
            raise NotFoundError("Order not found")
        _require_owner_or_admin(actor, order, "update")
        if order.status in (ORDER_CANCELLED, ORDER_DELIVERED):
            raise ValidationError(f"Cannot update a {order.status} order")

        if payment_method is not None:
            order.payment_method = payment_method
        if delivery_address is not None:
            order.delivery_address = delivery_address
        order.meta = {
            **(order.meta or {}),
            "last_updated": to_utc_z(utcnow()),
            "updated_by": actor.user_id,
        }
        return order

    order = run_in_unit_of_work(_op, uow)
    logger.info("Order %s details updated by user %s", order_id, actor.user_id)
    return order


def bulk_process_orders(actor: Actor, order_ids, action: str, *, notes: str | None = None) -> dict:
    """
    Apply one action to many orders.

    Each order runs in its own savepoint: a missing, foreign or
    wrongly-stated order lands in "failed" with a reason and the others
    still commit. Never raises for individual orders.
    """
    if not isinstance(order_ids, (list, tuple)) or not order_ids:
        raise ValidationError("order_ids must be a non-empty list")
    new_status = target_status(action)
    if new_status == ORDER_CANCELLED and not (notes and str(notes).strip()):
        raise ValidationError("A cancellation reason is required")

    processed: list = []
    failed: list = []

    with UnitOfWork() as uow:
        for raw_id in order_ids:
            try:
                order_id = parse_int(raw_id, "order id")
            except ValidationError as exc:
                failed.append({"id": raw_id, "reason": exc.message})
                continue
            try:
                with uow.savepoint():
                    _apply_transition(uow, actor, order_id, new_status, notes, via="bulk")
                processed.append(order_id)
            except AppError as exc:
                failed.append({"id": order_id, "reason": exc.message})
            except SQLAlchemyError:
                logger.exception("Bulk %s failed for order %s", action, order_id)
                failed.append({"id": order_id, "reason": "Database error"})

    logger.info(
        "Bulk %s by user %s: %s processed, %s failed",
        action, actor.user_id, len(processed), len(failed),
    )
    return {"processed": processed, "failed": failed}


def get_order_history(actor: Actor, order_id: int) -> list[OrderHistory]:
    order = get_order(actor, order_id)
    return (
        db.session.query(OrderHistory)
        .filter(OrderHistory.order_id == order.id)
        .order_by(OrderHistory.created_at.desc(), OrderHistory.id.desc())
        .all()
    )
