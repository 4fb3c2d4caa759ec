# Overview: Line-item arithmetic shared by quotes, orders and invoices.

"""
Monetary Line-Item Calculator

All amounts are integer cents (fixed-point, two fraction digits).

RULES:
- line total = quantity * unit price - discount + tax
- document total = sum of line totals, recomputed in full from the item set
  on every create and every item-replacing update (never patched incrementally)
- quantity > 0, unit price >= 0, discount >= 0, tax >= 0, discount <= gross
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping

from ..errors import ValidationError


MAX_AMOUNT_CENTS = 99_999_999_999


@dataclass(frozen=True)
class LineInput:
    """Validated line item request, independent of the document it lands on."""
    product_id: int
    quantity: int
    unit_price_cents: int | None
    discount_cents: int = 0
    tax_cents: int = 0
    notes: str = ""
    description: str | None = None


def line_total(quantity: int, unit_price_cents: int, discount_cents: int = 0, tax_cents: int = 0) -> int:
    return quantity * unit_price_cents - (discount_cents or 0) + (tax_cents or 0)


def _field(item: Any, name: str, default: int = 0):
    if isinstance(item, Mapping):
        value = item.get(name, default)
    else:
        value = getattr(item, name, default)
    return default if value is None else value


def document_total(items: Iterable[Any]) -> int:
    """Sum of line totals for mappings or objects exposing the cents fields."""
    return sum(
        line_total(
            _field(item, "quantity"),
            _field(item, "unit_price_cents"),
            _field(item, "discount_cents"),
            _field(item, "tax_cents"),
        )
        for item in items
    )


def validate_line(quantity: int, unit_price_cents: int, discount_cents: int = 0, tax_cents: int = 0) -> None:
    if quantity <= 0:
        raise ValidationError("quantity must be greater than zero")
    if unit_price_cents < 0:
        raise ValidationError("unit_price_cents cannot be negative")
    if discount_cents < 0:
        raise ValidationError("discount_cents cannot be negative")
    if tax_cents < 0:
        raise ValidationError("tax_cents cannot be negative")
    if discount_cents > quantity * unit_price_cents:
        raise ValidationError("discount_cents cannot exceed quantity * unit_price_cents")


def parse_cents(value: Any, field: str, *, required: bool = True, allow_negative: bool = False) -> int | None:
    """
    Normalize a JSON amount to integer cents.

    Accepts ints and integer strings. Rejects booleans, floats and
    scientific notation so that rounding never happens silently.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer amount in cents")
    if isinstance(value, int):
        cents = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be an integer amount in cents")
        try:
            cents = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer amount in cents")
    else:
        raise ValidationError(f"{field} must be an integer amount in cents")

    if cents < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative")
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds the maximum amount")
    return cents


def parse_decimal_amount(value: Any, field: str) -> int:
    """Parse a decimal currency string such as "12.50" into cents (CSV input)."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal amount")
    if amount.as_tuple().exponent < -2:
        raise ValidationError(f"{field} must have at most two decimal places")
    cents = int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative")
    return cents


def format_cents(cents: int) -> str:
    """Render cents as a plain decimal string ("1234.50")."""
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


def parse_percentage(value: Any, field: str) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        pct = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return pct.quantize(Decimal("0.01"))


def apply_percentage_discount(amount_cents: int, percentage) -> int:
    if not percentage:
        return amount_cents
    discounted = Decimal(amount_cents) * (Decimal(100) - Decimal(str(percentage))) / Decimal(100)
    return int(discounted.to_integral_value(rounding=ROUND_HALF_UP))


def parse_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def parse_line_items(
    raw_items: Any,
    *,
    require_unit_price: bool = True,
    allow_tax: bool = False,
) -> list[LineInput]:
    """
    Validate a list of line item payloads.

    Each payload needs product_id and quantity; unit_price_cents is required
    unless the caller prices lines itself (orders default to the catalog price).
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    lines: list[LineInput] = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"items[{index}] must be an object")
        if raw.get("product_id") is None:
            raise ValidationError(f"items[{index}].product_id is required")

        product_id = parse_int(raw.get("product_id"), f"items[{index}].product_id")
        quantity = parse_int(raw.get("quantity"), f"items[{index}].quantity")
        unit_price = parse_cents(
            raw.get("unit_price_cents"),
            f"items[{index}].unit_price_cents",
            required=require_unit_price,
        )
        discount = parse_cents(raw.get("discount_cents"), f"items[{index}].discount_cents", required=False) or 0
        tax = 0
        if allow_tax:
            tax = parse_cents(raw.get("tax_cents"), f"items[{index}].tax_cents", required=False) or 0

        if unit_price is not None:
            validate_line(quantity, unit_price, discount, tax)
        elif quantity <= 0:
            raise ValidationError("quantity must be greater than zero")

        lines.append(LineInput(
            product_id=product_id,
            quantity=quantity,
            unit_price_cents=unit_price,
            discount_cents=discount,
            tax_cents=tax,
            notes=str(raw.get("notes") or ""),
            description=raw.get("description"),
        ))
    return lines
