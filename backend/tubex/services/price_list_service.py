# Overview: Service-layer operations for legacy price lists; encapsulates business logic and database work.

"""
Price List Service (legacy pricing path)

WHY: Companies keep named price lists with per-product overrides until the
unified pricing migration runs. The write paths stay live so data keeps
flowing into the audit trail.

RULES:
- A price list belongs to one company; other companies see 404.
- At most one default per company: the company row is locked, other
  defaults are cleared, then the new default is set, in one transaction.
- No price mutation without a ProductPriceHistory row in the same
  transaction.
"""

from __future__ import annotations

import csv
import io
import logging

from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError, NotFoundError, ConflictError
from ..extensions import db
from ..models import PriceList, PriceListItem, Product, ProductPriceHistory
from ..models.pricing import PRICE_LIST_STATUSES, PRICE_LIST_DRAFT
from ..time_utils import parse_iso_date, utcnow, to_utc_z
from .actor import Actor
from .money import parse_cents, parse_decimal_amount, parse_percentage, parse_int, format_cents
from .pagination import paginate
from .product_service import load_products
from .unit_of_work import run_in_unit_of_work

logger = logging.getLogger(__name__)


CSV_COLUMNS = ["product_id", "sku", "product_name", "price", "discount_percentage", "effective_from", "effective_to"]


def _parse_date(value, field):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date")


def _check_window(effective_from, effective_to) -> None:
    if effective_from and effective_to and effective_from > effective_to:
        raise ValidationError("effective_from cannot be after effective_to")


def _visible(actor: Actor, price_list: PriceList | None) -> PriceList:
    if price_list is None or (not actor.is_admin and price_list.company_id != actor.company_id):
        raise NotFoundError("Price list not found")
    return price_list


def _load_for_write(uow, actor: Actor, price_list_id: int) -> PriceList:
    return _visible(actor, uow.price_lists.get_for_update(price_list_id))


def _price_history(uow, actor: Actor, *, product_id, price_list_id, old_price, new_price, reason, action, extra=None):
    uow.price_history.add(ProductPriceHistory(
        product_id=product_id,
        price_list_id=price_list_id,
        old_price_cents=old_price,
        new_price_cents=new_price,
        reason=reason,
        changed_by_id=actor.user_id,
        meta={"action": action, **(extra or {})},
    ))


def _make_default(uow, price_list: PriceList) -> None:
    """Clear the company's other defaults under a company row lock, then set this one."""
    uow.companies.get_for_update(price_list.company_id)
    (
        uow.price_lists.query()
        .filter(
            PriceList.company_id == price_list.company_id,
            PriceList.is_default.is_(True),
            PriceList.id != price_list.id,
        )
        .update({PriceList.is_default: False}, synchronize_session="fetch")
    )
    uow.flush()
    price_list.is_default = True
    try:
        uow.flush()
    except IntegrityError:
        raise ConflictError("Another default price list was set concurrently")


# =============================================================================
# PRICE LISTS
# =============================================================================

def create_price_list(
    actor: Actor,
    *,
    name: str,
    description: str | None = None,
    company_id: int | None = None,
    status: str | None = None,
    effective_from=None,
    effective_to=None,
    is_default: bool = False,
    global_discount_percentage=None,
    metadata: dict | None = None,
    uow=None,
) -> PriceList:
    if not name or not str(name).strip():
        raise ValidationError("name is required")
    company_id = company_id if (company_id is not None and actor.is_admin) else actor.company_id
    if company_id is None:
        raise ValidationError("company_id is required")
    status = status or PRICE_LIST_DRAFT
    if status not in PRICE_LIST_STATUSES:
        raise ValidationError(f"Invalid price list status: {status}")
    start = _parse_date(effective_from, "effective_from")
    end = _parse_date(effective_to, "effective_to")
    _check_window(start, end)
    discount = parse_percentage(global_discount_percentage, "global_discount_percentage")

    def _op(uow):
        if not uow.companies.get(company_id):
            raise NotFoundError("Company not found")
        price_list = PriceList(
            name=str(name).strip(),
            description=description,
            company_id=company_id,
            status=status,
            effective_from=start,
            effective_to=end,
            is_default=False,
            global_discount_percentage=discount,
            meta=dict(metadata) if metadata else None,
        )
        uow.price_lists.add(price_list)
        uow.flush()
        if is_default:
            _make_default(uow, price_list)
        return price_list

    price_list = run_in_unit_of_work(_op, uow)
    logger.info("Price list %s created for company %s", price_list.id, company_id)
    return price_list


def update_price_list(actor: Actor, price_list_id: int, *, uow=None, **fields) -> PriceList:
    def _op(uow):
        price_list = _load_for_write(uow, actor, price_list_id)

        if fields.get("name") is not None:
            if not str(fields["name"]).strip():
                raise ValidationError("name cannot be blank")
            price_list.name = str(fields["name"]).strip()
        if "description" in fields and fields["description"] is not None:
            price_list.description = fields["description"]
        if fields.get("status") is not None:
            if fields["status"] not in PRICE_LIST_STATUSES:
                raise ValidationError(f"Invalid price list status: {fields['status']}")
            price_list.status = fields["status"]
        if "effective_from" in fields:
            price_list.effective_from = _parse_date(fields["effective_from"], "effective_from")
        if "effective_to" in fields:
            price_list.effective_to = _parse_date(fields["effective_to"], "effective_to")
        _check_window(price_list.effective_from, price_list.effective_to)
        if fields.get("global_discount_percentage") is not None:
            price_list.global_discount_percentage = parse_percentage(
                fields["global_discount_percentage"], "global_discount_percentage"
            )
        if fields.get("metadata"):
            price_list.meta = {**(price_list.meta or {}), **fields["metadata"]}

        if fields.get("is_default") is True and not price_list.is_default:
            _make_default(uow, price_list)
        elif fields.get("is_default") is False:
            price_list.is_default = False
        return price_list

    return run_in_unit_of_work(_op, uow)


def delete_price_list(actor: Actor, price_list_id: int, *, uow=None) -> None:
    def _op(uow):
        price_list = _load_for_write(uow, actor, price_list_id)
        uow.price_lists.delete(price_list)

    run_in_unit_of_work(_op, uow)
    logger.info("Price list %s deleted by user %s", price_list_id, actor.user_id)


def get_price_list(actor: Actor, price_list_id: int) -> PriceList:
    return _visible(actor, db.session.get(PriceList, price_list_id))


def list_price_lists(actor: Actor, *, status: str | None = None, search: str | None = None, page=1, limit=10):
    query = db.session.query(PriceList)
    if not actor.is_admin:
        query = query.filter(PriceList.company_id == actor.company_id)
    if status:
        query = query.filter(PriceList.status == status)
    if search:
        query = query.filter(PriceList.name.ilike(f"%{search}%"))
    return paginate(query.order_by(PriceList.created_at.desc(), PriceList.id.desc()), page, limit)


# =============================================================================
# PRICE LIST ITEMS
# =============================================================================

def list_items(actor: Actor, price_list_id: int, *, search: str | None = None, page=1, limit=10):
    get_price_list(actor, price_list_id)
    query = (
        db.session.query(PriceListItem)
        .join(Product, Product.id == PriceListItem.product_id)
        .filter(PriceListItem.price_list_id == price_list_id)
    )
    if search:
        query = query.filter(Product.name.ilike(f"%{search}%"))
    return paginate(query.order_by(PriceListItem.id.asc()), page, limit)


def _item_fields(raw: dict, *, require_price: bool) -> dict:
    fields = {}
    if raw.get("price_cents") is not None or require_price:
        fields["price_cents"] = parse_cents(raw.get("price_cents"), "price_cents")
    if "discount_percentage" in raw:
        fields["discount_percentage"] = parse_percentage(raw.get("discount_percentage"), "discount_percentage")
    if "effective_from" in raw:
        fields["effective_from"] = _parse_date(raw.get("effective_from"), "effective_from")
    if "effective_to" in raw:
        fields["effective_to"] = _parse_date(raw.get("effective_to"), "effective_to")
    return fields


def _new_item(uow, actor, price_list, product, fields, *, reason, action) -> PriceListItem:
    item = PriceListItem(
        product_id=product.id,
        price_cents=fields["price_cents"],
        discount_percentage=fields.get("discount_percentage", 0),
        effective_from=fields.get("effective_from"),
        effective_to=fields.get("effective_to"),
    )
    _check_window(item.effective_from, item.effective_to)
    price_list.items.append(item)
    _price_history(
        uow, actor,
        product_id=product.id,
        price_list_id=price_list.id,
        old_price=product.base_price_cents,
        new_price=item.price_cents,
        reason=reason or f"Added to price list: {price_list.name}",
        action=action,
        extra={"price_list_name": price_list.name},
    )
    return item


def _update_item(uow, actor, price_list, item, fields, *, reason, action) -> PriceListItem:
    old_price = item.price_cents
    for key, value in fields.items():
        setattr(item, key, value)
    _check_window(item.effective_from, item.effective_to)
    if item.price_cents != old_price:
        _price_history(
            uow, actor,
            product_id=item.product_id,
            price_list_id=price_list.id,
            old_price=old_price,
            new_price=item.price_cents,
            reason=reason or "Price list item updated",
            action=action,
            extra={"price_list_item_id": item.id},
        )
    return item


def add_item(actor: Actor, price_list_id: int, *, product_id: int, reason: str | None = None, uow=None, **raw) -> PriceListItem:
    product_id = parse_int(product_id, "product_id")
    fields = _item_fields(raw, require_price=True)

    def _op(uow):
        price_list = _load_for_write(uow, actor, price_list_id)
        product = uow.products.get(product_id)
        if not product:
            raise NotFoundError("Product not found")
        if uow.price_list_items.filter_by(price_list_id=price_list.id, product_id=product.id).first():
            raise ConflictError("This product already exists in the price list")
        item = _new_item(uow, actor, price_list, product, fields, reason=reason, action="added_to_price_list")
        try:
            uow.flush()
        except IntegrityError:
            raise ConflictError("This product already exists in the price list")
        return item

    return run_in_unit_of_work(_op, uow)


def _get_item(uow, price_list: PriceList, item_id: int) -> PriceListItem:
    item = uow.price_list_items.get(item_id)
    if not item or item.price_list_id != price_list.id:
        raise NotFoundError("Price list item not found")
    return item


def update_item(actor: Actor, price_list_id: int, item_id: int, *, reason: str | None = None, uow=None, **raw) -> PriceListItem:
    fields = _item_fields(raw, require_price=False)

    def _op(uow):
        price_list = _load_for_write(uow, actor, price_list_id)
        item = _get_item(uow, price_list, item_id)
        return _update_item(uow, actor, price_list, item, fields, reason=reason, action="price_list_item_updated")

    return run_in_unit_of_work(_op, uow)


def delete_item(actor: Actor, price_list_id: int, item_id: int, *, uow=None) -> None:
    def _op(uow):
        price_list = _load_for_write(uow, actor, price_list_id)
        item = _get_item(uow, price_list, item_id)
        price_list.items.remove(item)

    run_in_unit_of_work(_op, uow)


def bulk_add_items(actor: Actor, price_list_id: int, items, *, reason: str | None = None, uow=None) -> list[PriceListItem]:
    """Add many products at once; any missing product (400) or duplicate (409) aborts the whole batch."""
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    parsed = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict) or raw.get("product_id") is None:
            raise ValidationError(f"items[{index}].product_id is required")
        parsed.append((parse_int(raw["product_id"], f"items[{index}].product_id"), _item_fields(raw, require_price=True)))

    product_ids = [pid for pid, _ in parsed]
    if len(set(product_ids)) != len(product_ids):
        raise ValidationError("Duplicate product_id in items")

    def _op(uow):
        price_list = _load_for_write(uow, actor, price_list_id)
        products = load_products(uow, product_ids)
        existing = sorted(
            row.product_id
            for row in uow.price_list_items.query().filter(
                PriceListItem.price_list_id == price_list.id,
                PriceListItem.product_id.in_(product_ids),
            )
        )
        if existing:
            raise ConflictError(
                f"Products already in price list: {', '.join(str(pid) for pid in existing)}",
                details={"product_ids": existing},
            )
        created = [
            _new_item(uow, actor, price_list, products[pid], fields, reason=reason, action="bulk_added_to_price_list")
            for pid, fields in parsed
        ]
        uow.flush()
        return created

    created = run_in_unit_of_work(_op, uow)
    logger.info("Bulk added %s items to price list %s", len(created), price_list_id)
    return created


def bulk_update_items(actor: Actor, price_list_id: int, items, *, reason: str | None = None, uow=None) -> list[PriceListItem]:
    """Update many items by id; ids not in this price list fail the whole batch with 400."""
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    parsed = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict) or raw.get("id") is None:
            raise ValidationError(f"items[{index}].id is required")
        parsed.append((parse_int(raw["id"], f"items[{index}].id"), _item_fields(raw, require_price=False)))

    def _op(uow):
        price_list = _load_for_write(uow, actor, price_list_id)
        wanted = {item_id for item_id, _ in parsed}
        found = {
            row.id: row
            for row in uow.price_list_items.query().filter(
                PriceListItem.price_list_id == price_list.id,
                PriceListItem.id.in_(wanted),
            )
        }
        if len(found) != len(wanted):
            raise ValidationError(
                "One or more items not found in this price list",
                details={"missing_item_ids": sorted(wanted - set(found))},
            )
        return [
            _update_item(uow, actor, price_list, found[item_id], fields, reason=reason, action="bulk_price_update")
            for item_id, fields in parsed
        ]

    updated = run_in_unit_of_work(_op, uow)
    logger.info("Bulk updated %s items in price list %s", len(updated), price_list_id)
    return updated


# =============================================================================
# CSV EXPORT / IMPORT
# =============================================================================

def export_price_list_csv(actor: Actor, price_list_id: int) -> str:
    price_list = get_price_list(actor, price_list_id)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for item in price_list.items:
        writer.writerow({
            "product_id": item.product_id,
            "sku": (item.product.sku or "") if item.product else "",
            "product_name": item.product.name if item.product else "",
            "price": format_cents(item.price_cents),
            "discount_percentage": str(item.discount_percentage or 0),
            "effective_from": item.effective_from.isoformat() if item.effective_from else "",
            "effective_to": item.effective_to.isoformat() if item.effective_to else "",
        })
    return buffer.getvalue()


def _resolve_csv_product(uow, row: dict):
    raw_id = (row.get("product_id") or "").strip()
    if raw_id:
        if not raw_id.isdigit():
            raise ValidationError("product_id must be an integer")
        return uow.products.get(int(raw_id))
    sku = (row.get("sku") or "").strip()
    if sku:
        return uow.products.filter_by(sku=sku).first()
    raise ValidationError("product_id or sku is required")


def import_price_list_csv(actor: Actor, price_list_id: int, csv_text: str, *, uow=None) -> dict:
    """
    Upsert price list items from CSV text (columns as in export).

    Bad rows are reported in "errors" and skipped; good rows are written with
    their price history in one transaction.
    """
    if not csv_text or not csv_text.strip():
        raise ValidationError("CSV content is empty")
    reader = csv.DictReader(io.StringIO(csv_text))
    if not reader.fieldnames or "price" not in reader.fieldnames:
        raise ValidationError("CSV must have a header row with a price column")
    rows = list(reader)

    def _op(uow):
        price_list = _load_for_write(uow, actor, price_list_id)
        existing = {item.product_id: item for item in price_list.items}
        created = updated = 0
        errors = []

        for line_no, row in enumerate(rows, start=2):
            try:
                product = _resolve_csv_product(uow, row)
                if product is None:
                    raise ValidationError("Product not found")
                fields = {"price_cents": parse_decimal_amount(row.get("price"), "price")}
                if (row.get("discount_percentage") or "").strip():
                    fields["discount_percentage"] = parse_percentage(row["discount_percentage"], "discount_percentage")
                if (row.get("effective_from") or "").strip():
                    fields["effective_from"] = _parse_date(row["effective_from"], "effective_from")
                if (row.get("effective_to") or "").strip():
                    fields["effective_to"] = _parse_date(row["effective_to"], "effective_to")
                _check_window(fields.get("effective_from"), fields.get("effective_to"))
            except ValidationError as exc:
                errors.append({"row": line_no, "error": exc.message})
                continue

            if product.id in existing:
                _update_item(uow, actor, price_list, existing[product.id], fields,
                             reason="Price list CSV import", action="imported_to_price_list")
                updated += 1
            else:
                existing[product.id] = _new_item(uow, actor, price_list, product, fields,
                                                 reason=f"Imported to price list: {price_list.name}",
                                                 action="imported_to_price_list")
                created += 1

        price_list.meta = {
            **(price_list.meta or {}),
            "last_import": {"at": to_utc_z(utcnow()), "by": actor.user_id, "source": "csv_import"},
        }
        return {"created": created, "updated": updated, "errors": errors}

    report = run_in_unit_of_work(_op, uow)
    logger.info(
        "CSV import into price list %s: %s created, %s updated, %s errors",
        price_list_id, report["created"], report["updated"], len(report["errors"]),
    )
    return report


def get_product_price_history(product_id: int, *, page=1, limit=10):
    if not db.session.get(Product, product_id):
        raise NotFoundError("Product not found")
    query = (
        db.session.query(ProductPriceHistory)
        .filter(ProductPriceHistory.product_id == product_id)
        .order_by(ProductPriceHistory.created_at.desc(), ProductPriceHistory.id.desc())
    )
    return paginate(query, page, limit)
