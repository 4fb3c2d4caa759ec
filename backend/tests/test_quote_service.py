# Overview: Pytest coverage for the quote lifecycle and quote-to-order conversion.

"""
Quote Lifecycle Tests

Covers creation defaults, the status machine, frozen states, ownership
checks, wholesale item replacement and conversion into an order.
"""

from datetime import timedelta

import pytest

from tubex.errors import ValidationError, ForbiddenError, NotFoundError
from tubex.models import Quote, QuoteItem, Order, OrderHistory
from tubex.services import quote_service
from tubex.time_utils import today

from conftest import as_actor


def _items(products, qty=2):
    return [
        {"product_id": products[0].id, "quantity": qty, "unit_price_cents": 1000},
        {"product_id": products[1].id, "quantity": 1, "unit_price_cents": 2500, "discount_cents": 500},
    ]


def _accepted_quote(customer, products):
    actor = as_actor(customer)
    quote = quote_service.create_quote(actor, _items(products))
    quote_service.update_quote(actor, quote.id, status="pending")
    quote_service.update_quote(actor, quote.id, status="accepted")
    return quote


class TestCreateQuote:
    """Quote creation."""

    def test_creates_draft_with_total_and_number(self, db_session, customer, products):
        quote = quote_service.create_quote(as_actor(customer), _items(products))

        assert quote.status == "draft"
        assert quote.customer_id == customer.id
        assert quote.company_id == customer.company_id
        assert quote.quote_number.startswith("QT-")
        # 2 x 10.00 + (25.00 - 5.00)
        assert quote.total_amount_cents == 4000
        assert len(quote.items) == 2

    def test_default_validity_is_thirty_days(self, db_session, customer, products):
        quote = quote_service.create_quote(as_actor(customer), _items(products))
        assert quote.valid_until == today() + timedelta(days=30)

    def test_explicit_valid_until(self, db_session, customer, products):
        target = today() + timedelta(days=5)
        quote = quote_service.create_quote(as_actor(customer), _items(products), valid_until=target.isoformat())
        assert quote.valid_until == target

    def test_past_valid_until_rejected(self, db_session, customer, products):
        past = (today() - timedelta(days=1)).isoformat()
        with pytest.raises(ValidationError):
            quote_service.create_quote(as_actor(customer), _items(products), valid_until=past)

    def test_unknown_product_writes_nothing(self, db_session, customer, products):
        """One missing product fails the whole quote."""
        items = _items(products) + [{"product_id": 999999, "quantity": 1, "unit_price_cents": 100}]
        with pytest.raises(ValidationError) as exc:
            quote_service.create_quote(as_actor(customer), items)

        assert exc.value.message == "One or more products not found"
        assert exc.value.details["missing_product_ids"] == [999999]
        assert db_session.query(Quote).count() == 0
        assert db_session.query(QuoteItem).count() == 0

    def test_quote_numbers_are_unique(self, db_session, customer, products):
        actor = as_actor(customer)
        first = quote_service.create_quote(actor, _items(products))
        second = quote_service.create_quote(actor, _items(products))
        assert first.quote_number != second.quote_number


class TestQuoteStatusMachine:
    """Status transitions and frozen states."""

    def test_draft_to_pending_to_accepted(self, db_session, customer, products):
        quote = _accepted_quote(customer, products)
        assert db_session.get(Quote, quote.id).status == "accepted"

    def test_draft_cannot_jump_to_accepted(self, db_session, customer, products):
        actor = as_actor(customer)
        quote = quote_service.create_quote(actor, _items(products))
        with pytest.raises(ValidationError) as exc:
            quote_service.update_quote(actor, quote.id, status="accepted")
        assert "Invalid status transition" in exc.value.message

    def test_accepted_quote_is_frozen(self, db_session, customer, products):
        quote = _accepted_quote(customer, products)
        with pytest.raises(ValidationError):
            quote_service.update_quote(as_actor(customer), quote.id, notes="too late")

    def test_rejected_quote_is_frozen(self, db_session, customer, products):
        actor = as_actor(customer)
        quote = quote_service.create_quote(actor, _items(products))
        quote_service.update_quote(actor, quote.id, status="rejected")
        with pytest.raises(ValidationError):
            quote_service.update_quote(actor, quote.id, status="pending")


class TestQuoteUpdates:
    """Item replacement and metadata merge."""

    def test_items_replaced_wholesale(self, db_session, customer, products):
        actor = as_actor(customer)
        quote = quote_service.create_quote(actor, _items(products))

        updated = quote_service.update_quote(
            actor, quote.id,
            items=[{"product_id": products[1].id, "quantity": 3, "unit_price_cents": 2000}],
        )

        assert updated.total_amount_cents == 6000
        assert db_session.query(QuoteItem).filter_by(quote_id=quote.id).count() == 1

    def test_metadata_is_merged(self, db_session, customer, products):
        actor = as_actor(customer)
        quote = quote_service.create_quote(actor, _items(products), metadata={"source": "portal"})
        updated = quote_service.update_quote(actor, quote.id, metadata={"project": "north wing"})
        assert updated.meta == {"source": "portal", "project": "north wing"}

    def test_other_customer_cannot_update(self, db_session, customer, other_customer, products):
        quote = quote_service.create_quote(as_actor(customer), _items(products))
        with pytest.raises(ForbiddenError):
            quote_service.update_quote(as_actor(other_customer), quote.id, notes="mine now")

    def test_admin_can_update_any_quote(self, db_session, admin, customer, products):
        quote = quote_service.create_quote(as_actor(customer), _items(products))
        updated = quote_service.update_quote(as_actor(admin), quote.id, notes="reviewed")
        assert updated.notes == "reviewed"


class TestQuoteAccess:
    """Reads, listing and deletion."""

    def test_other_customer_cannot_view(self, db_session, customer, other_customer, products):
        quote = quote_service.create_quote(as_actor(customer), _items(products))
        with pytest.raises(ForbiddenError):
            quote_service.get_quote(as_actor(other_customer), quote.id)

    def test_missing_quote(self, db_session, customer):
        with pytest.raises(NotFoundError):
            quote_service.get_quote(as_actor(customer), 424242)

    def test_list_scoped_to_customer(self, db_session, admin, customer, other_customer, products):
        quote_service.create_quote(as_actor(customer), _items(products))
        quote_service.create_quote(as_actor(other_customer), _items(products))

        rows, pagination = quote_service.list_quotes(as_actor(customer))
        assert [q.customer_id for q in rows] == [customer.id]
        assert pagination["total"] == 1

        rows, pagination = quote_service.list_quotes(as_actor(admin))
        assert pagination["total"] == 2

    def test_delete_draft(self, db_session, customer, products):
        actor = as_actor(customer)
        quote = quote_service.create_quote(actor, _items(products))
        quote_service.delete_quote(actor, quote.id)
        assert db_session.get(Quote, quote.id) is None
        assert db_session.query(QuoteItem).count() == 0

    def test_accepted_quote_cannot_be_deleted(self, db_session, customer, products):
        quote = _accepted_quote(customer, products)
        with pytest.raises(ValidationError):
            quote_service.delete_quote(as_actor(customer), quote.id)


class TestConvertToOrder:
    """Quote to order conversion."""

    def test_accepted_quote_converts(self, db_session, customer, products):
        quote = _accepted_quote(customer, products)
        order = quote_service.convert_to_order(as_actor(customer), quote.id, payment_method="bank_transfer")

        assert order.status == "pending"
        assert order.customer_id == customer.id
        assert order.total_amount_cents == quote.total_amount_cents
        assert len(order.items) == len(quote.items)
        assert order.meta["converted_from_quote"] == quote.id

        refreshed = db_session.get(Quote, quote.id)
        assert refreshed.status == "converted"
        assert refreshed.meta["converted_to_order"] == order.id

        history = db_session.query(OrderHistory).filter_by(order_id=order.id).all()
        assert len(history) == 1
        assert history[0].new_status == "pending"
        assert history[0].notes == f"Order created from quote {quote.quote_number}"

    def test_draft_quote_cannot_convert(self, db_session, customer, products):
        actor = as_actor(customer)
        quote = quote_service.create_quote(actor, _items(products))
        with pytest.raises(ValidationError):
            quote_service.convert_to_order(actor, quote.id)
        assert db_session.query(Order).count() == 0

    def test_converted_quote_cannot_convert_twice(self, db_session, customer, products):
        quote = _accepted_quote(customer, products)
        actor = as_actor(customer)
        quote_service.convert_to_order(actor, quote.id)
        with pytest.raises(ValidationError):
            quote_service.convert_to_order(actor, quote.id)
        assert db_session.query(Order).count() == 1

    def test_other_customer_cannot_convert(self, db_session, customer, other_customer, products):
        quote = _accepted_quote(customer, products)
        with pytest.raises(ForbiddenError):
            quote_service.convert_to_order(as_actor(other_customer), quote.id)

    def test_expired_quote_cannot_convert(self, db_session, customer, products):
        quote = _accepted_quote(customer, products)
        quote.valid_until = today() - timedelta(days=1)
        db_session.commit()

        with pytest.raises(ValidationError) as exc:
            quote_service.convert_to_order(as_actor(customer), quote.id)
        assert exc.value.message == "Quote has expired"
        assert db_session.query(Order).count() == 0

    def test_failed_item_copy_leaves_quote_accepted(self, db_session, customer, products, monkeypatch):
        """Order, items, history and the quote status change commit together or not at all."""
        quote = _accepted_quote(customer, products)

        def _broken_total(items):
            raise RuntimeError("item copy failed")

        monkeypatch.setattr(quote_service, "document_total", _broken_total)
        with pytest.raises(RuntimeError):
            quote_service.convert_to_order(as_actor(customer), quote.id)

        db_session.expire_all()
        assert db_session.get(Quote, quote.id).status == "accepted"
        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderHistory).count() == 0


class TestClosedQuotes:
    """Expired and converted quotes."""

    def test_expired_quote_is_frozen_but_deletable(self, db_session, customer, products):
        actor = as_actor(customer)
        quote = quote_service.create_quote(actor, _items(products))
        quote_service.update_quote(actor, quote.id, status="expired")

        with pytest.raises(ValidationError):
            quote_service.update_quote(actor, quote.id, notes="extend please")
        with pytest.raises(ValidationError):
            quote_service.update_quote(actor, quote.id, status="pending")

        quote_service.delete_quote(actor, quote.id)
        assert db_session.get(Quote, quote.id) is None

    def test_converted_quote_is_frozen_and_kept(self, db_session, customer, products):
        actor = as_actor(customer)
        quote = _accepted_quote(customer, products)
        quote_service.convert_to_order(actor, quote.id)

        with pytest.raises(ValidationError):
            quote_service.update_quote(actor, quote.id, items=_items(products, qty=9))
        with pytest.raises(ValidationError):
            quote_service.delete_quote(actor, quote.id)

        db_session.expire_all()
        kept = db_session.get(Quote, quote.id)
        assert kept.status == "converted"
        assert kept.total_amount_cents == 4000
