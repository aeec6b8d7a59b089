# Overview: FEFO (first-expiring-first-out) batch selection for order lines.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, Sequence

from ..errors import InsufficientStockError
from smartpos.time_utils import utctoday


@dataclass(frozen=True)
class Allocation:
    """
    Batch bound to one order line.

    quantity is capped at what the batch can supply; shortfall is the part of
    the request it cannot cover. batch_id is None for products without batches.
    """
    product_id: int
    requested: int
    quantity: int
    batch_id: int | None = None
    expiry_date: date | None = None

    @property
    def shortfall(self) -> int:
        return self.requested - self.quantity

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0


def _fefo_key(batch):
    # Dated batches first (earliest expiry), undated last, then by id
    return (batch.expiry_date is None, batch.expiry_date or date.max, batch.id)


class BatchAllocator:
    """
    Pure FEFO policy. Reads batch attributes only; never touches the database.

    Expired batches (expiry strictly before today) are skipped; a batch that
    expires today is still sellable. One batch per line, never split.
    """

    def __init__(self, *, today: Callable[[], date] = utctoday):
        self.today = today

    def eligible(self, batches: Iterable) -> list:
        today = self.today()
        live = [b for b in batches if b.expiry_date is None or b.expiry_date >= today]
        return sorted(live, key=_fefo_key)

    def allocate(
        self,
        product_id: int,
        quantity: int,
        batches: Sequence,
        *,
        taken: dict[int, int] | None = None,
    ) -> Allocation:
        """
        Pick the batch for one line.

        `taken` maps batch id -> units already bound by earlier lines of the same
        cart, so two lines of one product do not both count the same free units.

        Raises InsufficientStockError(available=0) when the product has batches
        but none is eligible with free quantity.
        """
        if not batches:
            return Allocation(product_id=product_id, requested=quantity, quantity=quantity)

        taken = taken or {}
        for batch in self.eligible(batches):
            free = batch.quantity - (batch.reserved or 0) - taken.get(batch.id, 0)
            if free > 0:
                return Allocation(
                    product_id=product_id,
                    requested=quantity,
                    quantity=min(quantity, free),
                    batch_id=batch.id,
                    expiry_date=batch.expiry_date,
                )

        raise InsufficientStockError(product_id, quantity, 0)

    def allocate_lines(self, requests: Iterable[tuple[int, int]], batches_by_product: dict[int, Sequence]) -> list[Allocation]:
        """Allocate (product_id, quantity) requests in order, tracking units bound so far."""
        taken: dict[int, int] = {}
        allocations = []
        for product_id, quantity in requests:
            allocation = self.allocate(
                product_id,
                quantity,
                batches_by_product.get(product_id) or [],
                taken=taken,
            )
            if allocation.batch_id is not None:
                taken[allocation.batch_id] = taken.get(allocation.batch_id, 0) + allocation.quantity
            allocations.append(allocation)
        return allocations
