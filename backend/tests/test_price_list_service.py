# Overview: Pytest coverage for legacy price lists, their items, and CSV import/export.

"""
Price List Tests

SECURITY: price lists are company-scoped; another company's list answers
404 rather than revealing that it exists.

Also covers the one-default-per-company rule, duplicate product
conflicts, the price history written for every price mutation, and the
CSV round trip.
"""

import csv
import io

import pytest

from tubex.errors import ValidationError, NotFoundError, ConflictError
from tubex.models import PriceList, PriceListItem, ProductPriceHistory
from tubex.services import price_list_service
from tubex.services.price_list_service import CSV_COLUMNS

from conftest import as_actor


def _new_list(user, name="Contract 2025", **kwargs):
    return price_list_service.create_price_list(as_actor(user), name=name, **kwargs)


class TestPriceLists:
    """Price list CRUD and scoping."""

    def test_create_for_own_company(self, db_session, customer, buyer):
        price_list = _new_list(customer, status="active", global_discount_percentage="5")

        assert price_list.company_id == buyer.id
        assert price_list.status == "active"
        assert price_list.is_default is False
        assert str(price_list.global_discount_percentage) == "5.00"

    def test_non_admin_cannot_target_other_company(self, db_session, customer, buyer, other_buyer):
        price_list = _new_list(customer, company_id=other_buyer.id)
        assert price_list.company_id == buyer.id

    def test_other_company_sees_404(self, db_session, customer, other_customer):
        price_list = _new_list(customer)
        with pytest.raises(NotFoundError):
            price_list_service.get_price_list(as_actor(other_customer), price_list.id)
        with pytest.raises(NotFoundError):
            price_list_service.update_price_list(as_actor(other_customer), price_list.id, name="Hijacked")

    def test_admin_sees_all(self, db_session, admin, customer, other_customer):
        _new_list(customer)
        _new_list(other_customer)
        _, pagination = price_list_service.list_price_lists(as_actor(admin))
        assert pagination["total"] == 2
        _, pagination = price_list_service.list_price_lists(as_actor(customer))
        assert pagination["total"] == 1

    def test_invalid_window_rejected(self, db_session, customer):
        with pytest.raises(ValidationError):
            _new_list(customer, effective_from="2025-06-01", effective_to="2025-01-01")

    def test_bad_date_rejected(self, db_session, customer):
        with pytest.raises(ValidationError):
            _new_list(customer, effective_from="June first")

    def test_delete_removes_items(self, db_session, customer, products):
        price_list = _new_list(customer)
        price_list_service.add_item(as_actor(customer), price_list.id, product_id=products[0].id, price_cents=900)

        price_list_service.delete_price_list(as_actor(customer), price_list.id)
        assert db_session.get(PriceList, price_list.id) is None
        assert db_session.query(PriceListItem).count() == 0


class TestDefaultPriceList:
    """At most one default per company."""

    def test_new_default_clears_previous(self, db_session, customer, buyer):
        first = _new_list(customer, name="Old default", is_default=True)
        second = _new_list(customer, name="New default", is_default=True)

        db_session.expire_all()
        defaults = db_session.query(PriceList).filter_by(company_id=buyer.id, is_default=True).all()
        assert [p.id for p in defaults] == [second.id]
        assert db_session.get(PriceList, first.id).is_default is False

    def test_update_to_default(self, db_session, customer, buyer):
        first = _new_list(customer, name="A", is_default=True)
        second = _new_list(customer, name="B")

        price_list_service.update_price_list(as_actor(customer), second.id, is_default=True)

        db_session.expire_all()
        assert db_session.get(PriceList, first.id).is_default is False
        assert db_session.get(PriceList, second.id).is_default is True

    def test_defaults_are_per_company(self, db_session, customer, other_customer):
        mine = _new_list(customer, is_default=True)
        theirs = _new_list(other_customer, is_default=True)

        db_session.expire_all()
        assert db_session.get(PriceList, mine.id).is_default is True
        assert db_session.get(PriceList, theirs.id).is_default is True


class TestPriceListItems:
    """Single and bulk item writes."""

    def test_add_item_writes_history(self, db_session, customer, products):
        price_list = _new_list(customer)
        item = price_list_service.add_item(
            as_actor(customer), price_list.id, product_id=products[0].id, price_cents=900, discount_percentage="2.5",
        )

        assert item.price_cents == 900
        history = db_session.query(ProductPriceHistory).filter_by(price_list_id=price_list.id).one()
        assert history.old_price_cents == 1000
        assert history.new_price_cents == 900
        assert history.changed_by_id == customer.id
        assert history.meta["action"] == "added_to_price_list"

    def test_duplicate_product_conflicts(self, db_session, customer, products):
        price_list = _new_list(customer)
        actor = as_actor(customer)
        price_list_service.add_item(actor, price_list.id, product_id=products[0].id, price_cents=900)
        with pytest.raises(ConflictError):
            price_list_service.add_item(actor, price_list.id, product_id=products[0].id, price_cents=800)

    def test_price_required(self, db_session, customer, products):
        price_list = _new_list(customer)
        with pytest.raises(ValidationError):
            price_list_service.add_item(as_actor(customer), price_list.id, product_id=products[0].id)

    def test_update_item_price_writes_history(self, db_session, customer, products):
        price_list = _new_list(customer)
        actor = as_actor(customer)
        item = price_list_service.add_item(actor, price_list.id, product_id=products[0].id, price_cents=900)

        price_list_service.update_item(actor, price_list.id, item.id, price_cents=850, reason="Volume deal")

        rows = (
            db_session.query(ProductPriceHistory)
            .filter_by(price_list_id=price_list.id)
            .order_by(ProductPriceHistory.id)
            .all()
        )
        assert [(r.old_price_cents, r.new_price_cents) for r in rows] == [(1000, 900), (900, 850)]
        assert rows[-1].reason == "Volume deal"

    def test_update_without_price_change_skips_history(self, db_session, customer, products):
        price_list = _new_list(customer)
        actor = as_actor(customer)
        item = price_list_service.add_item(actor, price_list.id, product_id=products[0].id, price_cents=900)

        price_list_service.update_item(actor, price_list.id, item.id, effective_to="2030-12-31")
        assert db_session.query(ProductPriceHistory).filter_by(price_list_id=price_list.id).count() == 1

    def test_item_from_other_list_not_found(self, db_session, customer, products):
        actor = as_actor(customer)
        first = _new_list(customer, name="First")
        second = _new_list(customer, name="Second")
        item = price_list_service.add_item(actor, first.id, product_id=products[0].id, price_cents=900)
        with pytest.raises(NotFoundError):
            price_list_service.update_item(actor, second.id, item.id, price_cents=1)

    def test_bulk_add(self, db_session, customer, products):
        price_list = _new_list(customer)
        created = price_list_service.bulk_add_items(as_actor(customer), price_list.id, [
            {"product_id": products[0].id, "price_cents": 950},
            {"product_id": products[1].id, "price_cents": 2400},
        ])
        assert sorted(i.product_id for i in created) == [products[0].id, products[1].id]
        assert db_session.query(ProductPriceHistory).filter_by(price_list_id=price_list.id).count() == 2

    def test_bulk_add_is_all_or_nothing(self, db_session, customer, products):
        price_list = _new_list(customer)
        actor = as_actor(customer)
        price_list_service.add_item(actor, price_list.id, product_id=products[1].id, price_cents=2400)

        with pytest.raises(ConflictError) as exc:
            price_list_service.bulk_add_items(actor, price_list.id, [
                {"product_id": products[0].id, "price_cents": 950},
                {"product_id": products[1].id, "price_cents": 2300},
            ])
        assert exc.value.details["product_ids"] == [products[1].id]
        assert db_session.query(PriceListItem).filter_by(price_list_id=price_list.id).count() == 1

    def test_bulk_add_missing_product(self, db_session, customer, products):
        price_list = _new_list(customer)
        with pytest.raises(ValidationError):
            price_list_service.bulk_add_items(as_actor(customer), price_list.id, [
                {"product_id": products[0].id, "price_cents": 950},
                {"product_id": 987654, "price_cents": 100},
            ])
        assert db_session.query(PriceListItem).count() == 0

    def test_bulk_add_duplicate_ids_in_payload(self, db_session, customer, products):
        price_list = _new_list(customer)
        with pytest.raises(ValidationError):
            price_list_service.bulk_add_items(as_actor(customer), price_list.id, [
                {"product_id": products[0].id, "price_cents": 950},
                {"product_id": products[0].id, "price_cents": 900},
            ])

    def test_bulk_ids_accept_numeric_strings(self, db_session, customer, products):
        price_list = _new_list(customer)
        actor = as_actor(customer)
        created = price_list_service.bulk_add_items(actor, price_list.id, [
            {"product_id": str(products[0].id), "price_cents": 950},
        ])
        assert created[0].product_id == products[0].id

        updated = price_list_service.bulk_update_items(actor, price_list.id, [
            {"id": str(created[0].id), "price_cents": 925},
        ])
        assert updated[0].price_cents == 925

    def test_bulk_add_string_duplicate_and_bad_ids(self, db_session, customer, products):
        price_list = _new_list(customer)
        actor = as_actor(customer)
        with pytest.raises(ValidationError):
            price_list_service.bulk_add_items(actor, price_list.id, [
                {"product_id": products[0].id, "price_cents": 950},
                {"product_id": str(products[0].id), "price_cents": 900},
            ])
        with pytest.raises(ValidationError):
            price_list_service.bulk_add_items(actor, price_list.id, [{"product_id": {"id": 1}, "price_cents": 1}])
        assert db_session.query(PriceListItem).count() == 0

    def test_bulk_update(self, db_session, customer, products):
        price_list = _new_list(customer)
        actor = as_actor(customer)
        a = price_list_service.add_item(actor, price_list.id, product_id=products[0].id, price_cents=950)
        b = price_list_service.add_item(actor, price_list.id, product_id=products[1].id, price_cents=2400)

        updated = price_list_service.bulk_update_items(actor, price_list.id, [
            {"id": a.id, "price_cents": 900},
            {"id": b.id, "discount_percentage": 5},
        ])
        assert [i.price_cents for i in updated] == [900, 2400]
        # Only the price change is audited
        assert db_session.query(ProductPriceHistory).filter_by(price_list_id=price_list.id).count() == 3

    def test_bulk_update_unknown_item(self, db_session, customer, products):
        price_list = _new_list(customer)
        with pytest.raises(ValidationError):
            price_list_service.bulk_update_items(as_actor(customer), price_list.id, [{"id": 55555, "price_cents": 1}])


class TestCsv:
    """CSV export and import."""

    def test_export_columns_and_values(self, db_session, customer, products):
        price_list = _new_list(customer)
        price_list_service.add_item(
            as_actor(customer), price_list.id,
            product_id=products[0].id, price_cents=1250, discount_percentage="5", effective_from="2025-01-01",
        )

        text = price_list_service.export_price_list_csv(as_actor(customer), price_list.id)
        rows = list(csv.DictReader(io.StringIO(text)))

        assert text.splitlines()[0] == ",".join(CSV_COLUMNS)
        assert rows == [{
            "product_id": str(products[0].id),
            "sku": "PIPE-20",
            "product_name": products[0].name,
            "price": "12.50",
            "discount_percentage": "5.00",
            "effective_from": "2025-01-01",
            "effective_to": "",
        }]

    def test_import_creates_updates_and_reports(self, db_session, customer, products):
        price_list = _new_list(customer)
        actor = as_actor(customer)
        price_list_service.add_item(actor, price_list.id, product_id=products[0].id, price_cents=900)

        csv_text = (
            "product_id,sku,price,discount_percentage\n"
            f"{products[0].id},,8.75,\n"
            ",PIPE-32,20.00,10\n"
            ",NO-SUCH-SKU,1.00,\n"
            f"{products[1].id},,abc,\n"
        )
        report = price_list_service.import_price_list_csv(actor, price_list.id, csv_text)

        assert report["created"] == 1
        assert report["updated"] == 1
        assert report["errors"] == [
            {"row": 4, "error": "Product not found"},
            {"row": 5, "error": "price must be a decimal amount"},
        ]
        prices = {
            i.product_id: i.price_cents
            for i in db_session.query(PriceListItem).filter_by(price_list_id=price_list.id)
        }
        assert prices == {products[0].id: 875, products[1].id: 2000}
        assert db_session.get(PriceList, price_list.id).meta["last_import"]["source"] == "csv_import"

    def test_import_round_trips_export(self, db_session, customer, products):
        actor = as_actor(customer)
        source = _new_list(customer, name="Source")
        price_list_service.add_item(actor, source.id, product_id=products[1].id, price_cents=2222)
        target = _new_list(customer, name="Target")

        report = price_list_service.import_price_list_csv(
            actor, target.id, price_list_service.export_price_list_csv(actor, source.id),
        )
        assert report == {"created": 1, "updated": 0, "errors": []}

    def test_import_requires_price_header(self, db_session, customer):
        price_list = _new_list(customer)
        with pytest.raises(ValidationError):
            price_list_service.import_price_list_csv(as_actor(customer), price_list.id, "sku,cost\nA,1\n")

    def test_import_into_foreign_list(self, db_session, customer, other_customer):
        price_list = _new_list(customer)
        with pytest.raises(NotFoundError):
            price_list_service.import_price_list_csv(as_actor(other_customer), price_list.id, "sku,price\nA,1\n")


class TestProductPriceHistory:
    """History listing for a product."""

    def test_newest_first(self, db_session, customer, products):
        price_list = _new_list(customer)
        actor = as_actor(customer)
        item = price_list_service.add_item(actor, price_list.id, product_id=products[0].id, price_cents=900)
        price_list_service.update_item(actor, price_list.id, item.id, price_cents=800)

        rows, pagination = price_list_service.get_product_price_history(products[0].id)
        assert pagination["total"] == 2
        assert rows[0].new_price_cents == 800

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            price_list_service.get_product_price_history(123456)
