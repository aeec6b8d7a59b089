# Overview: Per (store, product) stock bookkeeping; the only writer of Stock and Batch quantities.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from sqlalchemy import case, or_, update

from ..errors import InsufficientStockError, UnknownProductError
from ..models import Batch, Stock
from smartpos.time_utils import utctoday
from .audit_service import append_audit_event

logger = logging.getLogger(__name__)
"""
Stock Ledger Invariants (authoritative)

- available = sellable - reserved, never negative after a successful call.
- sellable = sum of non-expired batch quantities when the product has batches,
  else Stock.quantity.
- reserved <= quantity on every Stock and Batch row.
- Every mutation is a conditional UPDATE checked by rowcount (compare-and-set);
  two writers can never both succeed past zero.
- The ledger never commits. Callers run it inside atomic_scope(); a failing
  call is undone by the scope's rollback.
"""


@dataclass(frozen=True)
class StockLine:
    product_id: int
    quantity: int
    batch_id: int | None = None


@dataclass(frozen=True)
class StockLevel:
    store_id: int
    product_id: int
    quantity: int
    reserved: int
    sellable: int
    available: int

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reserved": self.reserved,
            "sellable": self.sellable,
            "available": self.available,
        }


class StockLedger:
    def __init__(self, session, *, today: Callable = utctoday):
        self.session = session
        self.today = today

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _stock_row(self, store_id: int, product_id: int) -> Stock:
        stock = (
            self.session.query(Stock)
            .filter_by(store_id=store_id, product_id=product_id)
            .populate_existing()
            .first()
        )
        if stock is None:
            raise UnknownProductError(product_id, store_id)
        return stock

    def _batches(self, product_id: int) -> list[Batch]:
        return (
            self.session.query(Batch)
            .filter(Batch.product_id == product_id)
            .order_by(Batch.id.asc())
            .populate_existing()
            .all()
        )

    def get_level(self, store_id: int, product_id: int) -> StockLevel:
        stock = self._stock_row(store_id, product_id)
        batches = self._batches(product_id)
        today = self.today()

        if batches:
            sellable = sum(b.quantity for b in batches if not b.is_expired(today))
        else:
            sellable = stock.quantity

        return StockLevel(
            store_id=store_id,
            product_id=product_id,
            quantity=stock.quantity,
            reserved=stock.reserved,
            sellable=sellable,
            available=max(sellable - stock.reserved, 0),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _not_expired(self):
        return or_(Batch.expiry_date.is_(None), Batch.expiry_date >= self.today())

    def _insufficient(self, store_id: int, line: StockLine) -> InsufficientStockError:
        level = self.get_level(store_id, line.product_id)
        return InsufficientStockError(line.product_id, line.quantity, level.available)

    def _require_available(self, store_id: int, line: StockLine) -> None:
        """
        Unbound lines of a batch-tracked product must fit inside the
        non-expired stock; the Stock row alone still counts expired units.
        """
        if line.batch_id is not None:
            return
        level = self.get_level(store_id, line.product_id)
        if level.available < line.quantity:
            raise InsufficientStockError(line.product_id, line.quantity, level.available)

    def _apply_stock(self, store_id: int, line: StockLine, condition, values) -> None:
        stmt = (
            update(Stock)
            .where(
                Stock.store_id == store_id,
                Stock.product_id == line.product_id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if condition is not None:
            stmt = stmt.where(condition)
        result = self.session.execute(stmt)
        if not result.rowcount:
            # Either the row is missing (UnknownProductError) or the guard failed
            raise self._insufficient(store_id, line)

    def _apply_batch(self, line: StockLine, condition, values) -> int:
        stmt = (
            update(Batch)
            .where(
                Batch.id == line.batch_id,
                Batch.product_id == line.product_id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if condition is not None:
            stmt = stmt.where(condition)
        return self.session.execute(stmt).rowcount

    def _batch_shortage(self, line: StockLine) -> InsufficientStockError:
        batch = self.session.get(Batch, line.batch_id, populate_existing=True)
        free = 0
        if batch is not None and not batch.is_expired(self.today()):
            free = max(batch.free_quantity, 0)
        return InsufficientStockError(
            line.product_id,
            line.quantity,
            free,
            message=f"Batch {line.batch_id} of product {line.product_id} cannot cover {line.quantity} units (free: {free})",
        )

    def _audit(self, store_id: int, event_type: str, line: StockLine, *, order_id=None, refund_id=None) -> None:
        append_audit_event(
            self.session,
            store_id=store_id,
            event_type=event_type,
            event_category="inventory",
            entity_type="product",
            entity_id=line.product_id,
            order_id=order_id,
            refund_id=refund_id,
            payload={"quantity": line.quantity, "batch_id": line.batch_id},
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def reserve(self, store_id: int, lines: Iterable[StockLine], *, order_id: int | None = None) -> None:
        """Hold units for an unpaid order: reserved += n where available >= n."""
        for line in lines:
            self._require_available(store_id, line)
            self._apply_stock(
                store_id,
                line,
                Stock.quantity - Stock.reserved >= line.quantity,
                {"reserved": Stock.reserved + line.quantity},
            )
            if line.batch_id is not None:
                matched = self._apply_batch(
                    line,
                    (Batch.quantity - Batch.reserved >= line.quantity) & self._not_expired(),
                    {"reserved": Batch.reserved + line.quantity},
                )
                if not matched:
                    raise self._batch_shortage(line)
            self._audit(store_id, "stock.reserved", line, order_id=order_id)

    def release(self, store_id: int, lines: Iterable[StockLine], *, order_id: int | None = None) -> None:
        """Give back a reservation. Floored at 0 so a double release cannot go negative."""
        for line in lines:
            stmt = (
                update(Stock)
                .where(Stock.store_id == store_id, Stock.product_id == line.product_id)
                .values(
                    reserved=case(
                        (Stock.reserved >= line.quantity, Stock.reserved - line.quantity),
                        else_=0,
                    )
                )
                .execution_options(synchronize_session=False)
            )
            if not self.session.execute(stmt).rowcount:
                raise UnknownProductError(line.product_id, store_id)
            if line.batch_id is not None:
                self._apply_batch(
                    line,
                    None,
                    {
                        "reserved": case(
                            (Batch.reserved >= line.quantity, Batch.reserved - line.quantity),
                            else_=0,
                        )
                    },
                )
            self._audit(store_id, "stock.released", line, order_id=order_id)

    def commit_decrement(
        self,
        store_id: int,
        lines: Iterable[StockLine],
        *,
        reserved: bool = False,
        order_id: int | None = None,
    ) -> None:
        """
        Physically deduct sold units.

        reserved=True converts an earlier reservation: quantity and reserved both
        drop by n. Otherwise the sale may only consume unreserved units.
        """
        for line in lines:
            if reserved:
                self._apply_stock(
                    store_id,
                    line,
                    Stock.quantity >= line.quantity,
                    {
                        "quantity": Stock.quantity - line.quantity,
                        "reserved": case(
                            (Stock.reserved >= line.quantity, Stock.reserved - line.quantity),
                            else_=0,
                        ),
                    },
                )
                batch_condition = Batch.quantity >= line.quantity
                batch_values = {
                    "quantity": Batch.quantity - line.quantity,
                    "reserved": case(
                        (Batch.reserved >= line.quantity, Batch.reserved - line.quantity),
                        else_=0,
                    ),
                }
            else:
                self._require_available(store_id, line)
                self._apply_stock(
                    store_id,
                    line,
                    Stock.quantity - Stock.reserved >= line.quantity,
                    {"quantity": Stock.quantity - line.quantity},
                )
                batch_condition = (Batch.quantity - Batch.reserved >= line.quantity) & self._not_expired()
                batch_values = {"quantity": Batch.quantity - line.quantity}

            if line.batch_id is not None:
                if not self._apply_batch(line, batch_condition, batch_values):
                    raise self._batch_shortage(line)
            self._audit(store_id, "stock.committed", line, order_id=order_id)

    def commit_increment(
        self,
        store_id: int,
        lines: Iterable[StockLine],
        *,
        order_id: int | None = None,
        refund_id: int | None = None,
    ) -> None:
        """Restock units (refund or cancelled cash sale), back into the original batch when it still exists."""
        for line in lines:
            stmt = (
                update(Stock)
                .where(Stock.store_id == store_id, Stock.product_id == line.product_id)
                .values(quantity=Stock.quantity + line.quantity)
                .execution_options(synchronize_session=False)
            )
            if not self.session.execute(stmt).rowcount:
                raise UnknownProductError(line.product_id, store_id)
            if line.batch_id is not None:
                if not self._apply_batch(line, None, {"quantity": Batch.quantity + line.quantity}):
                    logger.warning(
                        "Restocked product %s in store %s without batch %s (batch no longer exists)",
                        line.product_id,
                        store_id,
                        line.batch_id,
                    )
            self._audit(store_id, "stock.restocked", line, order_id=order_id, refund_id=refund_id)
