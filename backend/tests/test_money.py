# Overview: Pytest coverage for line-item arithmetic and amount parsing.

"""
Money Helper Tests

Amounts are integer cents end to end. These tests pin the parsing rules
(no floats, no negatives, two decimals max) and the line total formula
quantity * unit price - discount + tax.
"""

from decimal import Decimal

import pytest

from tubex.errors import ValidationError
from tubex.services.money import (
    LineInput,
    line_total,
    document_total,
    validate_line,
    parse_cents,
    parse_decimal_amount,
    format_cents,
    parse_percentage,
    apply_percentage_discount,
    parse_line_items,
)


class TestLineTotals:
    """Line and document totals."""

    def test_line_total_applies_discount_and_tax(self):
        """3 x 10.00 - 5.00 + 2.50 = 27.50"""
        assert line_total(3, 1000, 500, 250) == 2750

    def test_document_total_accepts_mappings_and_objects(self):
        """Totals work on request payloads and on model-like objects alike."""
        items = [
            {"quantity": 2, "unit_price_cents": 1000, "discount_cents": 100},
            LineInput(product_id=1, quantity=1, unit_price_cents=2500, tax_cents=200),
        ]
        assert document_total(items) == 1900 + 2700

    def test_document_total_treats_missing_fields_as_zero(self):
        assert document_total([{"quantity": 4, "unit_price_cents": 250, "discount_cents": None}]) == 1000

    def test_empty_document_totals_zero(self):
        assert document_total([]) == 0


class TestValidateLine:
    """Per-line invariants."""

    def test_valid_line_passes(self):
        validate_line(2, 1000, 2000, 0)

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_must_be_positive(self, quantity):
        with pytest.raises(ValidationError):
            validate_line(quantity, 1000)

    def test_discount_cannot_exceed_gross(self):
        with pytest.raises(ValidationError) as exc:
            validate_line(2, 1000, 2001)
        assert "cannot exceed" in exc.value.message

    def test_negative_tax_rejected(self):
        with pytest.raises(ValidationError):
            validate_line(1, 1000, 0, -1)


class TestParseCents:
    """JSON amount normalization."""

    def test_int_and_integer_string_accepted(self):
        assert parse_cents(1250, "amount") == 1250
        assert parse_cents(" 1250 ", "amount") == 1250

    @pytest.mark.parametrize("value", [True, 12.5, "1.5", "1e3", "abc", [1]])
    def test_non_integer_amounts_rejected(self, value):
        with pytest.raises(ValidationError):
            parse_cents(value, "amount")

    def test_negative_rejected_unless_allowed(self):
        with pytest.raises(ValidationError):
            parse_cents(-5, "amount")
        assert parse_cents(-5, "amount", allow_negative=True) == -5

    def test_missing_value(self):
        with pytest.raises(ValidationError) as exc:
            parse_cents(None, "amount")
        assert exc.value.message == "amount is required"
        assert parse_cents("", "amount", required=False) is None


class TestDecimalAmounts:
    """CSV-style decimal prices."""

    def test_decimal_string_to_cents(self):
        assert parse_decimal_amount("12.50", "price") == 1250
        assert parse_decimal_amount("7", "price") == 700

    def test_more_than_two_decimals_rejected(self):
        with pytest.raises(ValidationError):
            parse_decimal_amount("1.005", "price")

    def test_garbage_rejected(self):
        with pytest.raises(ValidationError):
            parse_decimal_amount("twelve", "price")

    def test_format_cents(self):
        assert format_cents(123450) == "1234.50"
        assert format_cents(5) == "0.05"
        assert format_cents(-250) == "-2.50"


class TestPercentages:
    """Discount percentages."""

    def test_parse_percentage_bounds(self):
        assert parse_percentage("12.5", "discount") == Decimal("12.50")
        assert parse_percentage(None, "discount") == Decimal("0")
        with pytest.raises(ValidationError):
            parse_percentage(101, "discount")
        with pytest.raises(ValidationError):
            parse_percentage(-1, "discount")

    def test_apply_discount_rounds_half_up(self):
        # 999 * 0.95 = 949.05
        assert apply_percentage_discount(999, Decimal("5")) == 949
        # 10 * 0.85 = 8.5 -> 9
        assert apply_percentage_discount(10, Decimal("15")) == 9

    def test_zero_discount_is_identity(self):
        assert apply_percentage_discount(1234, 0) == 1234


class TestParseLineItems:
    """Request payload validation for document items."""

    def test_valid_items(self):
        lines = parse_line_items([
            {"product_id": 1, "quantity": 2, "unit_price_cents": 500, "notes": "rush"},
            {"product_id": "2", "quantity": "1", "unit_price_cents": "750"},
        ])
        assert [(l.product_id, l.quantity, l.unit_price_cents) for l in lines] == [(1, 2, 500), (2, 1, 750)]
        assert lines[0].notes == "rush"

    @pytest.mark.parametrize("items", [None, [], "nope", {"product_id": 1}])
    def test_items_must_be_non_empty_list(self, items):
        with pytest.raises(ValidationError):
            parse_line_items(items)

    def test_missing_product_id(self):
        with pytest.raises(ValidationError) as exc:
            parse_line_items([{"quantity": 1, "unit_price_cents": 100}])
        assert "product_id" in exc.value.message

    def test_unit_price_optional_when_caller_prices(self):
        lines = parse_line_items([{"product_id": 1, "quantity": 3}], require_unit_price=False)
        assert lines[0].unit_price_cents is None

    def test_tax_ignored_unless_allowed(self):
        raw = [{"product_id": 1, "quantity": 1, "unit_price_cents": 100, "tax_cents": 20}]
        assert parse_line_items(raw)[0].tax_cents == 0
        assert parse_line_items(raw, allow_tax=True)[0].tax_cents == 20
