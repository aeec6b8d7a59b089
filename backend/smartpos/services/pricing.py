# Overview: Sale-type pricing rules, per-line VAT and order totals.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from ..errors import ValidationError

"""
Pricing rules (authoritative)

- Effective unit price is chosen by the line's SaleType; exactly one rule per variant.
- Line VAT = round_half_up(unit_price * quantity * tax_rate / 100); tax_rate -1 means exempt.
- Loyalty discount is applied to the pre-tax subtotal and never pushes it below 0.
- total = max(subtotal - discount, 0) + vat
"""

EXEMPT_TAX_RATE = -1


class SaleType(str, Enum):
    NORMAL = "NORMAL"
    PROMOTIONAL = "PROMOTIONAL"
    CLEARANCE = "CLEARANCE"
    AT_COST = "AT_COST"
    FREE = "FREE"

    @classmethod
    def parse(cls, value) -> "SaleType":
        if value is None or value == "":
            return cls.NORMAL
        if isinstance(value, cls):
            return value
        key = str(value).strip().upper()
        key = _SALE_TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(
                f"Invalid sale_type: {value!r}. Must be one of {[t.value for t in cls]}"
            )


# Labels the POS front end still sends
_SALE_TYPE_ALIASES = {
    "VIP": "PROMOTIONAL",
}


def _list_price(list_price: int, cost_price: int | None, custom_price: int | None) -> int:
    return list_price


def _override_or_cost(list_price: int, cost_price: int | None, custom_price: int | None) -> int:
    if custom_price is not None:
        return custom_price
    if cost_price is not None:
        return cost_price
    return list_price


def _free(list_price: int, cost_price: int | None, custom_price: int | None) -> int:
    return 0


PRICING_RULES: dict[SaleType, Callable[[int, int | None, int | None], int]] = {
    SaleType.NORMAL: _list_price,
    SaleType.PROMOTIONAL: _override_or_cost,
    SaleType.CLEARANCE: _override_or_cost,
    SaleType.AT_COST: _override_or_cost,
    SaleType.FREE: _free,
}

_missing_rules = set(SaleType) - set(PRICING_RULES)
if _missing_rules:
    raise RuntimeError(f"SaleType without pricing rule: {_missing_rules}")


def effective_unit_price(sale_type: SaleType, list_price: int, cost_price: int | None = None, custom_price: int | None = None) -> int:
    return PRICING_RULES[SaleType.parse(sale_type)](list_price, cost_price, custom_price)


def normalize_tax_rate(tax_rate: int | None) -> int:
    if tax_rate is None or tax_rate == EXEMPT_TAX_RATE:
        return 0
    return tax_rate


def line_vat(unit_price: int, quantity: int, tax_rate: int | None) -> int:
    """Half-up rounding in integer arithmetic (no float drift on large totals)."""
    rate = normalize_tax_rate(tax_rate)
    if rate <= 0:
        return 0
    return (unit_price * quantity * rate + 50) // 100


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    sale_type: SaleType
    custom_price: int | None
    list_price: int
    unit_price: int
    tax_rate: int
    vat_amount: int

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class OrderTotals:
    subtotal: int
    discount_amount: int
    vat_amount: int
    total_amount: int

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "vat_amount": self.vat_amount,
            "total_amount": self.total_amount,
        }


def price_line(product, quantity: int, sale_type=SaleType.NORMAL, custom_price: int | None = None) -> PricedLine:
    """Freeze catalog prices for one line."""
    sale_type = SaleType.parse(sale_type)
    unit_price = effective_unit_price(sale_type, product.price, product.cost_price, custom_price)
    return PricedLine(
        product_id=product.id,
        quantity=quantity,
        sale_type=sale_type,
        custom_price=custom_price,
        list_price=product.price,
        unit_price=unit_price,
        tax_rate=product.tax_rate,
        vat_amount=line_vat(unit_price, quantity, product.tax_rate),
    )


def compute_totals(lines: Iterable[PricedLine], discount_amount: int = 0) -> OrderTotals:
    lines = list(lines)
    subtotal = sum(line.line_total for line in lines)
    vat_amount = sum(line.vat_amount for line in lines)
    discount_amount = max(discount_amount, 0)
    return OrderTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        vat_amount=vat_amount,
        total_amount=max(subtotal - discount_amount, 0) + vat_amount,
    )
