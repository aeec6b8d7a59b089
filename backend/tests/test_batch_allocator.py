from datetime import date
from types import SimpleNamespace

import pytest

from smartpos.errors import InsufficientStockError
from smartpos.services.batch_allocator import BatchAllocator


TODAY = date(2025, 1, 5)


def batch(id, quantity, expiry, reserved=0):
    return SimpleNamespace(id=id, quantity=quantity, reserved=reserved, expiry_date=expiry)


@pytest.fixture
def allocator():
    return BatchAllocator(today=lambda: TODAY)


def test_fefo_binds_earliest_expiring_batch(allocator):
    batches = [
        batch(3, 5, None),
        batch(2, 5, date(2025, 2, 1)),
        batch(1, 5, date(2025, 1, 10)),
    ]

    allocation = allocator.allocate(42, 3, batches)

    assert allocation.batch_id == 1
    assert allocation.expiry_date == date(2025, 1, 10)
    assert allocation.quantity == 3
    assert allocation.is_complete


def test_undated_batches_sort_last_and_ties_break_by_id(allocator):
    batches = [
        batch(9, 5, None),
        batch(7, 5, date(2025, 3, 1)),
        batch(4, 5, date(2025, 3, 1)),
        batch(2, 5, None),
    ]

    assert [b.id for b in allocator.eligible(batches)] == [4, 7, 2, 9]


def test_expired_batches_are_skipped_but_expiring_today_is_sellable(allocator):
    batches = [
        batch(1, 50, date(2025, 1, 4)),
        batch(2, 5, TODAY),
    ]

    allocation = allocator.allocate(42, 2, batches)

    assert allocation.batch_id == 2
    assert [b.id for b in allocator.eligible(batches)] == [2]


def test_empty_and_fully_reserved_batches_are_passed_over(allocator):
    batches = [
        batch(1, 0, date(2025, 1, 6)),
        batch(2, 4, date(2025, 1, 7), reserved=4),
        batch(3, 6, date(2025, 1, 8)),
    ]

    assert allocator.allocate(42, 1, batches).batch_id == 3


def test_line_is_capped_at_one_batch_never_split(allocator):
    batches = [
        batch(1, 2, date(2025, 1, 6)),
        batch(2, 10, date(2025, 1, 20)),
    ]

    allocation = allocator.allocate(42, 5, batches)

    assert allocation.batch_id == 1
    assert allocation.quantity == 2
    assert allocation.shortfall == 3
    assert not allocation.is_complete


def test_no_eligible_batch_raises_insufficient_stock(allocator):
    batches = [batch(1, 5, date(2024, 12, 31)), batch(2, 0, None)]

    with pytest.raises(InsufficientStockError) as exc_info:
        allocator.allocate(42, 1, batches)

    assert exc_info.value.product_id == 42
    assert exc_info.value.available == 0


def test_product_without_batches_is_unbound(allocator):
    allocation = allocator.allocate(42, 7, [])

    assert allocation.batch_id is None
    assert allocation.quantity == 7
    assert allocation.is_complete


def test_allocate_lines_counts_units_bound_by_earlier_lines(allocator):
    batches = {42: [batch(1, 3, date(2025, 1, 6)), batch(2, 10, date(2025, 2, 1))]}

    first, second = allocator.allocate_lines([(42, 3), (42, 2)], batches)

    assert (first.batch_id, first.quantity) == (1, 3)
    assert (second.batch_id, second.quantity) == (2, 2)


def test_allocation_is_deterministic(allocator):
    batches = [batch(i, 5, date(2025, 1, 10)) for i in (5, 3, 8)]

    results = {allocator.allocate(42, 1, list(reversed(batches))).batch_id for _ in range(5)}

    assert results == {3}
