from types import SimpleNamespace

import pytest

from smartpos.errors import ValidationError
from smartpos.services.pricing import (
    PRICING_RULES,
    SaleType,
    compute_totals,
    effective_unit_price,
    line_vat,
    price_line,
)


def product(price=10000, cost_price=7000, tax_rate=10):
    return SimpleNamespace(id=1, price=price, cost_price=cost_price, tax_rate=tax_rate)


def test_every_sale_type_has_a_rule():
    assert set(PRICING_RULES) == set(SaleType)


@pytest.mark.parametrize(
    "sale_type, custom_price, expected",
    [
        (SaleType.NORMAL, None, 10000),
        (SaleType.NORMAL, 5000, 10000),
        (SaleType.PROMOTIONAL, 8500, 8500),
        (SaleType.PROMOTIONAL, None, 7000),
        (SaleType.CLEARANCE, 3000, 3000),
        (SaleType.AT_COST, None, 7000),
        (SaleType.FREE, 9000, 0),
    ],
)
def test_effective_unit_price(sale_type, custom_price, expected):
    assert effective_unit_price(sale_type, 10000, 7000, custom_price) == expected


def test_override_without_cost_falls_back_to_list_price():
    assert effective_unit_price(SaleType.CLEARANCE, 10000, None, None) == 10000


@pytest.mark.parametrize("sale_type", [SaleType.AT_COST, SaleType.PROMOTIONAL, SaleType.CLEARANCE])
def test_zero_cost_price_is_a_real_cost(sale_type):
    assert effective_unit_price(sale_type, 5000, 0, None) == 0


def test_sale_type_parse_accepts_vip_alias_and_defaults():
    assert SaleType.parse("vip") is SaleType.PROMOTIONAL
    assert SaleType.parse(None) is SaleType.NORMAL
    assert SaleType.parse("clearance") is SaleType.CLEARANCE

    with pytest.raises(ValidationError):
        SaleType.parse("BOGUS")


def test_line_vat_rounds_half_up_and_treats_exempt_as_zero():
    assert line_vat(10000, 2, 10) == 2000
    assert line_vat(15, 1, 10) == 2  # 1.5 -> 2
    assert line_vat(14, 1, 10) == 1  # 1.4 -> 1
    assert line_vat(10000, 3, -1) == 0
    assert line_vat(10000, 3, None) == 0


def test_totals_for_single_line_order():
    line = price_line(product(), 2)

    totals = compute_totals([line])

    assert (totals.subtotal, totals.vat_amount, totals.total_amount) == (20000, 2000, 22000)
    assert totals.discount_amount == 0


def test_discount_applies_to_subtotal_and_never_goes_below_zero():
    line = price_line(product(price=1000, tax_rate=10), 1)

    totals = compute_totals([line], discount_amount=5000)

    assert totals.total_amount == 0 + 100
    assert totals.total_amount == max(totals.subtotal - totals.discount_amount, 0) + totals.vat_amount


def test_price_line_freezes_list_and_unit_price():
    line = price_line(product(), 3, "FREE")

    assert line.list_price == 10000
    assert line.unit_price == 0
    assert line.line_total == 0
    assert line.vat_amount == 0
