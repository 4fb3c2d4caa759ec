# Overview: One-shot migration from legacy price lists to unified pricing, with verify and rollback.

"""
Pricing Migration

Moves the legacy pricing data into the unified tables in one transaction:

1. every PriceListItem becomes a ProductPricing row (+ a "created" history row)
2. every ProductPriceHistory row becomes an "updated" PricingHistory row
3. counts are verified; a mismatch rolls the whole run back

Every row written here carries a migrated_from tag (column and metadata), so
a second run is refused and rollback can find exactly what the run created.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from ..errors import ValidationError, InternalError
from ..models import PriceListItem, ProductPriceHistory, ProductPricing, PricingHistory
from ..models.pricing import (
    PRICE_LIST_ACTIVE,
    PRICING_ACTION_CREATED,
    PRICING_ACTION_UPDATED,
    PRICING_BASE,
    PRICING_WHOLESALE,
    PRICING_RETAIL,
    PRICING_PREMIUM,
    PRICING_DEALER,
    PRICING_BULK,
    PRICING_PROMOTIONAL,
)
from ..time_utils import utcnow, to_utc_z
from .unit_of_work import UnitOfWork, run_in_unit_of_work

logger = logging.getLogger(__name__)


MIGRATED_FROM_ITEM = "price_list_item"
MIGRATED_FROM_HISTORY = "product_price_history"

# Checked in order; first match wins
_NAME_KEYWORDS = (
    ("wholesale", PRICING_WHOLESALE),
    ("retail", PRICING_RETAIL),
    ("premium", PRICING_PREMIUM),
    ("dealer", PRICING_DEALER),
    ("bulk", PRICING_BULK),
    ("promo", PRICING_PROMOTIONAL),
)


def determine_pricing_type(price_list_name: str | None) -> str:
    name = (price_list_name or "").lower()
    for keyword, pricing_type in _NAME_KEYWORDS:
        if keyword in name:
            return pricing_type
    return PRICING_BASE


def _source_items(uow) -> list[PriceListItem]:
    return uow.price_list_items.query().order_by(PriceListItem.id.asc()).all()


def _source_history(uow) -> list[ProductPriceHistory]:
    return uow.price_history.query().order_by(ProductPriceHistory.id.asc()).all()


def _migrate_price_list_items(uow, items, actor_id, migration_date: str) -> int:
    for item in items:
        price_list = item.price_list
        pricing_type = determine_pricing_type(price_list.name)
        pricing = ProductPricing(
            product_id=item.product_id,
            company_id=price_list.company_id,
            pricing_type=pricing_type,
            price_cents=item.price_cents,
            currency="USD",
            discount_percentage=item.discount_percentage or 0,
            effective_from=item.effective_from,
            effective_to=item.effective_to,
            is_active=price_list.status == PRICE_LIST_ACTIVE,
            created_by_id=actor_id,
            migrated_from=MIGRATED_FROM_ITEM,
            meta={
                "migrated_from": MIGRATED_FROM_ITEM,
                "original_price_list_id": price_list.id,
                "original_item_id": item.id,
                "original_price_list_name": price_list.name,
                "migration_date": migration_date,
            },
        )
        uow.pricing.add(pricing)
        uow.flush()

        uow.pricing_history.add(PricingHistory(
            product_pricing_id=pricing.id,
            action=PRICING_ACTION_CREATED,
            old_values=None,
            new_values=pricing.snapshot(),
            changed_by_id=actor_id,
            reason=f"Migrated from price list: {price_list.name}",
            migrated_from=MIGRATED_FROM_ITEM,
            meta={"migrated_from": MIGRATED_FROM_ITEM, "original_item_id": item.id},
        ))
    return len(items)


def _migrate_price_history(uow, rows, migration_date: str) -> int:
    for old in rows:
        uow.pricing_history.add(PricingHistory(
            product_pricing_id=None,
            action=PRICING_ACTION_UPDATED,
            old_values={"price_cents": old.old_price_cents},
            new_values={"price_cents": old.new_price_cents},
            changed_by_id=old.changed_by_id,
            reason=old.reason,
            changed_at=old.created_at,
            migrated_from=MIGRATED_FROM_HISTORY,
            meta={
                "migrated_from": MIGRATED_FROM_HISTORY,
                "original_id": old.id,
                "product_id": old.product_id,
                "price_list_id": old.price_list_id,
                "migration_date": migration_date,
            },
        ))
    return len(rows)


def _counts(uow) -> dict:
    uow.flush()
    return {
        "price_list_items": uow.price_list_items.count(),
        "migrated_pricing": uow.pricing.count(ProductPricing.migrated_from == MIGRATED_FROM_ITEM),
        "product_price_history": uow.price_history.count(),
        "migrated_history": uow.pricing_history.count(PricingHistory.migrated_from == MIGRATED_FROM_HISTORY),
    }


def _counts_match(counts: dict) -> bool:
    return (
        counts["price_list_items"] == counts["migrated_pricing"]
        and counts["product_price_history"] == counts["migrated_history"]
    )


def migrate_to_unified_pricing(actor_id: int | None = None, *, uow=None) -> dict:
    """
    Run the migration in one transaction and return a report.

    Raises:
        ValidationError: migrated rows already exist
        InternalError: source and migrated counts differ (nothing is kept)
    """
    def _op(uow):
        if uow.pricing.count(ProductPricing.migrated_from.isnot(None)) or uow.pricing_history.count(
            PricingHistory.migrated_from.isnot(None)
        ):
            raise ValidationError("Pricing migration has already been applied; roll it back first")

        migration_date = to_utc_z(utcnow())
        logger.info("Starting pricing migration")
        items = _migrate_price_list_items(uow, _source_items(uow), actor_id, migration_date)
        logger.info("Migrated %s price list items", items)
        history = _migrate_price_history(uow, _source_history(uow), migration_date)
        logger.info("Migrated %s price history rows", history)

        counts = _counts(uow)
        if not _counts_match(counts):
            logger.error("Pricing migration count mismatch: %s", counts)
            raise InternalError("Migration count mismatch", details=counts)

        return {
            "migrated_pricing": items,
            "migrated_history": history,
            "counts": counts,
            "migration_date": migration_date,
        }

    report = run_in_unit_of_work(_op, uow, attempts=1)
    logger.info("Pricing migration completed")
    return report


def rollback_migration(*, uow=None) -> dict:
    """Delete every row the migration created."""
    def _op(uow):
        history_deleted = (
            uow.pricing_history.query()
            .filter(PricingHistory.migrated_from.isnot(None))
            .delete(synchronize_session=False)
        )
        migrated_ids = select(ProductPricing.id).where(ProductPricing.migrated_from == MIGRATED_FROM_ITEM)
        # Later edits to migrated rows keep their history, detached
        (
            uow.pricing_history.query()
            .filter(PricingHistory.product_pricing_id.in_(migrated_ids))
            .update({PricingHistory.product_pricing_id: None}, synchronize_session=False)
        )
        pricing_deleted = (
            uow.pricing.query()
            .filter(ProductPricing.migrated_from == MIGRATED_FROM_ITEM)
            .delete(synchronize_session=False)
        )
        return {"deleted_history": history_deleted, "deleted_pricing": pricing_deleted}

    result = run_in_unit_of_work(_op, uow, attempts=1)
    logger.info(
        "Pricing migration rolled back: %s pricing rows, %s history rows",
        result["deleted_pricing"], result["deleted_history"],
    )
    return result


def verify_migration(*, uow=None) -> dict:
    uow = uow or UnitOfWork()
    counts = _counts(uow)
    return {**counts, "ok": _counts_match(counts)}
