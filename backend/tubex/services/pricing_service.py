# Overview: Service-layer operations for unified product pricing; every mutation is audited in pricing history.

"""
Unified Pricing Service

WHY: One table of (product, company, pricing_type, window, quantity tier)
prices replaces the per-company price list overrides. Order creation asks
this module for the buyer's unit price.

AUDIT:
- Every create / update / activate / deactivate / delete writes one
  PricingHistory row in the same transaction as the change.
- Deleting a pricing row keeps its history (product_pricing_id is nulled).
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import or_

from ..errors import ValidationError, ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Product, ProductPricing, PricingHistory
from ..models.pricing import (
    PRICING_TYPES,
    PRICING_BASE,
    PRICING_ACTION_CREATED,
    PRICING_ACTION_UPDATED,
    PRICING_ACTION_DELETED,
    PRICING_ACTION_ACTIVATED,
    PRICING_ACTION_DEACTIVATED,
)
from ..time_utils import today, parse_iso_date
from .actor import Actor
from .money import parse_cents, parse_percentage, apply_percentage_discount
from .pagination import paginate
from .unit_of_work import run_in_unit_of_work

logger = logging.getLogger(__name__)


_UPDATABLE_FIELDS = {
    "pricing_type",
    "price_cents",
    "currency",
    "min_quantity",
    "max_quantity",
    "discount_percentage",
    "effective_from",
    "effective_to",
}


def _require_company_access(actor: Actor, company_id: int) -> None:
    if actor.is_admin:
        return
    if actor.company_id is None or actor.company_id != company_id:
        raise ForbiddenError("Not authorized to manage pricing for this company")


def _parse_quantity(value, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        qty = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if qty < 0:
        raise ValidationError(f"{field} cannot be negative")
    return qty


def _parse_date(value, field: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date")


def _apply_fields(pricing: ProductPricing, fields: dict) -> None:
    if "pricing_type" in fields and fields["pricing_type"] is not None:
        if fields["pricing_type"] not in PRICING_TYPES:
            raise ValidationError(f"Invalid pricing_type: {fields['pricing_type']}")
        pricing.pricing_type = fields["pricing_type"]
    if "price_cents" in fields and fields["price_cents"] is not None:
        pricing.price_cents = parse_cents(fields["price_cents"], "price_cents")
    if fields.get("currency"):
        currency = str(fields["currency"]).strip().upper()
        if len(currency) != 3:
            raise ValidationError("currency must be a 3-letter code")
        pricing.currency = currency
    if "min_quantity" in fields:
        pricing.min_quantity = _parse_quantity(fields["min_quantity"], "min_quantity")
    if "max_quantity" in fields:
        pricing.max_quantity = _parse_quantity(fields["max_quantity"], "max_quantity")
    if "discount_percentage" in fields:
        pricing.discount_percentage = parse_percentage(fields["discount_percentage"], "discount_percentage")
    if "effective_from" in fields:
        pricing.effective_from = _parse_date(fields["effective_from"], "effective_from")
    if "effective_to" in fields:
        pricing.effective_to = _parse_date(fields["effective_to"], "effective_to")

    if (
        pricing.min_quantity is not None
        and pricing.max_quantity is not None
        and pricing.min_quantity > pricing.max_quantity
    ):
        raise ValidationError("min_quantity cannot exceed max_quantity")
    if pricing.effective_from and pricing.effective_to and pricing.effective_from > pricing.effective_to:
        raise ValidationError("effective_from cannot be after effective_to")


def _history(uow, pricing, action, *, old_values, new_values, actor_id, reason=None, meta=None):
    uow.pricing_history.add(PricingHistory(
        product_pricing_id=pricing.id if pricing is not None else None,
        action=action,
        old_values=old_values,
        new_values=new_values,
        changed_by_id=actor_id,
        reason=reason,
        meta=meta,
    ))


def create_pricing(actor: Actor, *, product_id: int, company_id: int | None = None, uow=None, **fields) -> ProductPricing:
    company_id = company_id if company_id is not None else actor.company_id
    if company_id is None:
        raise ValidationError("company_id is required")
    _require_company_access(actor, company_id)
    if fields.get("price_cents") is None:
        raise ValidationError("price_cents is required")

    def _op(uow):
        if not uow.products.get(product_id):
            raise NotFoundError("Product not found")
        if not uow.companies.get(company_id):
            raise NotFoundError("Company not found")

        pricing = ProductPricing(
            product_id=product_id,
            company_id=company_id,
            pricing_type=PRICING_BASE,
            currency="USD",
            discount_percentage=0,
            is_active=True,
            created_by_id=actor.user_id,
            meta=fields.get("metadata") or None,
        )
        _apply_fields(pricing, {k: v for k, v in fields.items() if k in _UPDATABLE_FIELDS})
        uow.pricing.add(pricing)
        uow.flush()

        _history(
            uow, pricing, PRICING_ACTION_CREATED,
            old_values=None,
            new_values=pricing.snapshot(),
            actor_id=actor.user_id,
            reason=fields.get("reason"),
        )
        return pricing

    return run_in_unit_of_work(_op, uow)


def _load_for_write(uow, actor: Actor, pricing_id: int) -> ProductPricing:
    pricing = uow.pricing.get_for_update(pricing_id)
    if not pricing:
        raise NotFoundError("Pricing not found")
    _require_company_access(actor, pricing.company_id)
    return pricing


def update_pricing(actor: Actor, pricing_id: int, *, reason: str | None = None, uow=None, **fields) -> ProductPricing:
    def _op(uow):
        pricing = _load_for_write(uow, actor, pricing_id)
        before = pricing.snapshot()
        _apply_fields(pricing, {k: v for k, v in fields.items() if k in _UPDATABLE_FIELDS})
        if fields.get("metadata"):
            pricing.meta = {**(pricing.meta or {}), **fields["metadata"]}
        after = pricing.snapshot()

        if after != before:
            _history(
                uow, pricing, PRICING_ACTION_UPDATED,
                old_values=before,
                new_values=after,
                actor_id=actor.user_id,
                reason=reason,
            )
        return pricing

    return run_in_unit_of_work(_op, uow)


def set_pricing_active(actor: Actor, pricing_id: int, active: bool, *, reason: str | None = None, uow=None) -> ProductPricing:
    def _op(uow):
        pricing = _load_for_write(uow, actor, pricing_id)
        if pricing.is_active == bool(active):
            return pricing
        before = pricing.snapshot()
        pricing.is_active = bool(active)
        _history(
            uow, pricing, PRICING_ACTION_ACTIVATED if active else PRICING_ACTION_DEACTIVATED,
            old_values=before,
            new_values=pricing.snapshot(),
            actor_id=actor.user_id,
            reason=reason,
        )
        return pricing

    return run_in_unit_of_work(_op, uow)


def delete_pricing(actor: Actor, pricing_id: int, *, reason: str | None = None, uow=None) -> None:
    def _op(uow):
        pricing = _load_for_write(uow, actor, pricing_id)
        _history(
            uow, pricing, PRICING_ACTION_DELETED,
            old_values=pricing.snapshot(),
            new_values=None,
            actor_id=actor.user_id,
            reason=reason,
            meta={"deleted_pricing_id": pricing.id, "product_id": pricing.product_id},
        )
        uow.flush()
        # History outlives the row it describes
        uow.pricing_history.filter_by(product_pricing_id=pricing.id).update(
            {PricingHistory.product_pricing_id: None}, synchronize_session="fetch"
        )
        uow.pricing.delete(pricing)
        logger.info("Deleted pricing %s for product %s", pricing.id, pricing.product_id)

    run_in_unit_of_work(_op, uow)


def get_pricing(actor: Actor, pricing_id: int) -> ProductPricing:
    pricing = db.session.get(ProductPricing, pricing_id)
    if not pricing:
        raise NotFoundError("Pricing not found")
    _require_company_access(actor, pricing.company_id)
    return pricing


def list_pricing(
    actor: Actor,
    *,
    company_id: int | None = None,
    product_id: int | None = None,
    pricing_type: str | None = None,
    active_only: bool = False,
    page=1,
    limit=10,
):
    company_id = company_id if company_id is not None else (None if actor.is_admin else actor.company_id)
    if company_id is not None:
        _require_company_access(actor, company_id)

    query = db.session.query(ProductPricing)
    if company_id is not None:
        query = query.filter(ProductPricing.company_id == company_id)
    if product_id:
        query = query.filter(ProductPricing.product_id == product_id)
    if pricing_type:
        query = query.filter(ProductPricing.pricing_type == pricing_type)
    if active_only:
        query = query.filter(ProductPricing.is_active.is_(True))
    return paginate(query.order_by(ProductPricing.id.asc()), page, limit)


def get_pricing_history(actor: Actor, pricing_id: int) -> list[PricingHistory]:
    pricing = db.session.get(ProductPricing, pricing_id)
    if pricing is not None:
        _require_company_access(actor, pricing.company_id)
    elif not actor.is_admin:
        raise NotFoundError("Pricing not found")

    return (
        db.session.query(PricingHistory)
        .filter(PricingHistory.product_pricing_id == pricing_id)
        .order_by(PricingHistory.changed_at.desc(), PricingHistory.id.desc())
        .all()
    )


def find_applicable_pricing(session, product_id: int, company_id: int | None, quantity: int = 1, on_date: date | None = None):
    """
    Best active unified pricing row for a buyer, or None.

    Matches company, validity window and quantity tier. Among matches the
    most specific tier (highest min_quantity) wins, then the lowest price.
    """
    if company_id is None:
        return None
    on_date = on_date or today()
    candidates = (
        session.query(ProductPricing)
        .filter(
            ProductPricing.product_id == product_id,
            ProductPricing.company_id == company_id,
            ProductPricing.is_active.is_(True),
            or_(ProductPricing.effective_from.is_(None), ProductPricing.effective_from <= on_date),
            or_(ProductPricing.effective_to.is_(None), ProductPricing.effective_to >= on_date),
            or_(ProductPricing.min_quantity.is_(None), ProductPricing.min_quantity <= quantity),
            or_(ProductPricing.max_quantity.is_(None), ProductPricing.max_quantity >= quantity),
        )
        .all()
    )
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda p: (-(p.min_quantity or 0), apply_percentage_discount(p.price_cents, p.discount_percentage), p.id),
    )


def resolve_unit_price(product: Product, company_id: int | None, quantity: int = 1, on_date: date | None = None, *, session=None) -> int:
    """Unit price in cents for a buyer: matching unified pricing, else the product base price."""
    session = session if session is not None else db.session
    pricing = find_applicable_pricing(session, product.id, company_id, quantity, on_date)
    if pricing is None:
        return product.base_price_cents
    return apply_percentage_discount(pricing.price_cents, pricing.discount_percentage)
