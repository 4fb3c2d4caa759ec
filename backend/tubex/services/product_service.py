# Overview: Service-layer operations for the product catalog; encapsulates business logic and database work.

from __future__ import annotations

import logging

from ..errors import ValidationError, ForbiddenError, NotFoundError, ConflictError
from ..extensions import db
from ..models import Product, ProductPriceHistory
from ..models.catalog import VALID_PRODUCT_STATUSES, PRODUCT_ACTIVE
from .actor import Actor
from .money import parse_cents
from .pagination import paginate
from .unit_of_work import run_in_unit_of_work

logger = logging.getLogger(__name__)


def load_products(uow, product_ids) -> dict[int, Product]:
    """
    Batch-load every referenced product, all-or-nothing.

    A single missing id fails the whole call with a 400; repeated ids are fine.
    """
    wanted = set(product_ids)
    products = uow.products.find_by_ids(wanted)
    if len(products) != len(wanted):
        missing = sorted(wanted - {p.id for p in products})
        raise ValidationError(
            "One or more products not found",
            details={"missing_product_ids": missing},
        )
    return {p.id: p for p in products}


def _require_catalog_writer(actor: Actor, supplier_id: int | None) -> None:
    if actor.is_admin:
        return
    if supplier_id is None or actor.company_id != supplier_id:
        raise ForbiddenError("Not authorized to manage this product")


def create_product(
    actor: Actor,
    *,
    name: str,
    base_price_cents,
    unit: str | None = None,
    sku: str | None = None,
    description: str | None = None,
    supplier_id: int | None = None,
    status: str | None = None,
    uow=None,
) -> Product:
    if not name or not str(name).strip():
        raise ValidationError("name is required")
    price = parse_cents(base_price_cents, "base_price_cents")
    status = status or PRODUCT_ACTIVE
    if status not in VALID_PRODUCT_STATUSES:
        raise ValidationError(f"Invalid product status: {status}")
    supplier_id = supplier_id if supplier_id is not None else actor.company_id
    _require_catalog_writer(actor, supplier_id)

    def _op(uow):
        if sku and uow.products.filter_by(sku=sku).first():
            raise ConflictError(f"SKU {sku} already exists")

        product = Product(
            name=str(name).strip(),
            description=description,
            sku=sku,
            base_price_cents=price,
            unit=unit or "piece",
            supplier_id=supplier_id,
            status=status,
        )
        uow.products.add(product)
        uow.flush()

        uow.price_history.add(ProductPriceHistory(
            product_id=product.id,
            old_price_cents=None,
            new_price_cents=price,
            reason="Product created",
            changed_by_id=actor.user_id,
            meta={"action": "product_created"},
        ))
        return product

    return run_in_unit_of_work(_op, uow)


def update_product(actor: Actor, product_id: int, *, uow=None, **changes) -> Product:
    """Patch product fields; a base price change is written to the price history."""
    def _op(uow):
        product = uow.products.get_for_update(product_id)
        if not product:
            raise NotFoundError("Product not found")
        _require_catalog_writer(actor, product.supplier_id)

        if "name" in changes and changes["name"] is not None:
            if not str(changes["name"]).strip():
                raise ValidationError("name cannot be blank")
            product.name = str(changes["name"]).strip()
        if "description" in changes:
            product.description = changes["description"]
        if changes.get("unit"):
            product.unit = changes["unit"]
        if changes.get("status") is not None:
            if changes["status"] not in VALID_PRODUCT_STATUSES:
                raise ValidationError(f"Invalid product status: {changes['status']}")
            product.status = changes["status"]

        if changes.get("base_price_cents") is not None:
            new_price = parse_cents(changes["base_price_cents"], "base_price_cents")
            old_price = product.base_price_cents
            if new_price != old_price:
                product.base_price_cents = new_price
                uow.price_history.add(ProductPriceHistory(
                    product_id=product.id,
                    old_price_cents=old_price,
                    new_price_cents=new_price,
                    reason=changes.get("price_change_reason") or "Base price updated",
                    changed_by_id=actor.user_id,
                    meta={"action": "base_price_updated"},
                ))
        return product

    return run_in_unit_of_work(_op, uow)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def list_products(
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    search: str | None = None,
    page=1,
    limit=10,
) -> tuple[list[Product], dict]:
    query = db.session.query(Product)
    if status:
        query = query.filter(Product.status == status)
    if supplier_id:
        query = query.filter(Product.supplier_id == supplier_id)
    if search:
        query = query.filter(Product.name.ilike(f"%{search}%"))
    return paginate(query.order_by(Product.name.asc(), Product.id.asc()), page, limit)
