# Overview: Pytest coverage for the legacy price list -> unified pricing migration.

"""
Pricing Migration Tests

The migration runs in one transaction: either every price list item and
every price history row is carried over, or nothing is. A second run is
refused, and rollback removes exactly what the run created.
"""

import pytest

from tubex.errors import ValidationError, InternalError
from tubex.models import ProductPricing, PricingHistory, ProductPriceHistory
from tubex.services import pricing_migration_service, price_list_service, pricing_service
from tubex.services.pricing_migration_service import determine_pricing_type

from conftest import as_actor


@pytest.fixture
def legacy_pricing(db_session, customer, other_customer, products):
    """Two price lists (one active wholesale, one draft promo) with three items."""
    wholesale = price_list_service.create_price_list(as_actor(customer), name="Wholesale 2025", status="active")
    promo = price_list_service.create_price_list(as_actor(other_customer), name="Spring Promo")
    price_list_service.bulk_add_items(as_actor(customer), wholesale.id, [
        {"product_id": products[0].id, "price_cents": 900, "discount_percentage": 5},
        {"product_id": products[1].id, "price_cents": 2200, "effective_to": "2030-12-31"},
    ])
    price_list_service.add_item(as_actor(other_customer), promo.id, product_id=products[0].id, price_cents=850)
    return wholesale, promo


class TestDeterminePricingType:
    """Price list name -> pricing type."""

    @pytest.mark.parametrize("name, expected", [
        ("Wholesale 2025", "wholesale"),
        ("RETAIL walk-in", "retail"),
        ("Premium partners", "premium"),
        ("Dealer net", "dealer"),
        ("Bulk buyers", "bulk"),
        ("Spring Promo", "promotional"),
        ("Contract pricing", "base"),
        (None, "base"),
    ])
    def test_keywords(self, name, expected):
        assert determine_pricing_type(name) == expected


class TestMigrate:
    """Running the migration."""

    def test_migrates_items_and_history(self, db_session, admin, customer, buyer, legacy_pricing, products):
        wholesale, promo = legacy_pricing

        report = pricing_migration_service.migrate_to_unified_pricing(admin.id)

        assert report["migrated_pricing"] == 3
        assert report["migrated_history"] == 3
        assert report["counts"]["price_list_items"] == 3

        rows = db_session.query(ProductPricing).order_by(ProductPricing.id).all()
        assert [r.pricing_type for r in rows] == ["wholesale", "wholesale", "promotional"]
        assert [r.is_active for r in rows] == [True, True, False]
        assert rows[0].company_id == buyer.id
        assert rows[0].price_cents == 900
        assert str(rows[0].discount_percentage) == "5.00"
        assert rows[1].effective_to.isoformat() == "2030-12-31"
        assert rows[0].migrated_from == "price_list_item"
        assert rows[0].meta["original_price_list_id"] == wholesale.id
        assert rows[0].created_by_id == admin.id

        created = db_session.query(PricingHistory).filter_by(action="created").count()
        carried = db_session.query(PricingHistory).filter_by(migrated_from="product_price_history").all()
        assert created == 3
        assert len(carried) == 3
        assert {h.new_values["price_cents"] for h in carried} == {900, 2200, 850}

    def test_migrated_pricing_drives_order_prices(self, db_session, admin, customer, legacy_pricing, products):
        pricing_migration_service.migrate_to_unified_pricing(admin.id)
        price = pricing_service.resolve_unit_price(products[0], customer.company_id)
        # 9.00 less 5%
        assert price == 855

    def test_second_run_refused(self, db_session, admin, legacy_pricing):
        pricing_migration_service.migrate_to_unified_pricing(admin.id)
        with pytest.raises(ValidationError):
            pricing_migration_service.migrate_to_unified_pricing(admin.id)
        assert db_session.query(ProductPricing).count() == 3

    def test_count_mismatch_rolls_back(self, db_session, admin, legacy_pricing, monkeypatch):
        """A partial source read must not leave any migrated rows behind."""
        original = pricing_migration_service._source_items
        monkeypatch.setattr(pricing_migration_service, "_source_items", lambda uow: original(uow)[:1])

        with pytest.raises(InternalError) as exc:
            pricing_migration_service.migrate_to_unified_pricing(admin.id)

        assert exc.value.details["price_list_items"] == 3
        assert exc.value.details["migrated_pricing"] == 1
        assert db_session.query(ProductPricing).count() == 0
        assert db_session.query(PricingHistory).count() == 0

    def test_empty_source_migrates_nothing(self, db_session, admin):
        report = pricing_migration_service.migrate_to_unified_pricing(admin.id)
        assert report["migrated_pricing"] == 0
        assert report["migrated_history"] == 0


class TestVerifyAndRollback:
    """Post-run checks and undo."""

    def test_verify_before_and_after(self, db_session, admin, legacy_pricing):
        before = pricing_migration_service.verify_migration()
        assert before["ok"] is False
        assert before["migrated_pricing"] == 0

        pricing_migration_service.migrate_to_unified_pricing(admin.id)
        after = pricing_migration_service.verify_migration()
        assert after["ok"] is True
        assert after["price_list_items"] == after["migrated_pricing"] == 3
        assert after["product_price_history"] == after["migrated_history"] == 3

    def test_rollback_removes_migrated_rows_only(self, db_session, admin, customer, legacy_pricing, products):
        pricing_migration_service.migrate_to_unified_pricing(admin.id)
        manual = pricing_service.create_pricing(as_actor(customer), product_id=products[1].id, price_cents=1999)

        result = pricing_migration_service.rollback_migration()

        assert result == {"deleted_history": 6, "deleted_pricing": 3}
        db_session.expire_all()
        remaining = db_session.query(ProductPricing).all()
        assert [p.id for p in remaining] == [manual.id]
        assert db_session.query(PricingHistory).filter_by(product_pricing_id=manual.id).count() == 1
        # Legacy data is untouched
        assert db_session.query(ProductPriceHistory).count() == 3

    def test_migration_can_rerun_after_rollback(self, db_session, admin, legacy_pricing):
        pricing_migration_service.migrate_to_unified_pricing(admin.id)
        pricing_migration_service.rollback_migration()
        report = pricing_migration_service.migrate_to_unified_pricing(admin.id)
        assert report["migrated_pricing"] == 3
