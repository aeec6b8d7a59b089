"""
PaymentStatusPoller -- cancellable polling task for one QR payment.

Contract:
    Calls ``fetch_status()`` every ``interval_seconds`` until one of:
      - the status is PAID (outcome "PAID"),
      - the order was cancelled server-side (outcome "CANCELLED"),
      - the QR expiry passes (outcome "EXPIRED"),
      - the owner calls ``cancel()`` (outcome "STOPPED").

    A ``poll_interval_seconds`` field in a status response replaces the
    interval, so the server config sets the cadence.

    One poller has exactly one owner. ``start()`` runs it on a daemon thread,
    ``run()`` runs it inline (tests). A failing fetch is logged and retried on
    the next tick; it never ends the poll on its own.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from smartpos.time_utils import parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)

OUTCOME_PAID = "PAID"
OUTCOME_CANCELLED = "CANCELLED"
OUTCOME_EXPIRED = "EXPIRED"
OUTCOME_STOPPED = "STOPPED"


class PaymentStatusPoller:
    def __init__(
        self,
        fetch_status: Callable[[], dict],
        *,
        interval_seconds: float = 3.0,
        expires_at: datetime | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_status: Callable[[dict], None] | None = None,
    ):
        self._fetch_status = fetch_status
        self._interval = interval_seconds
        self._expires_at = expires_at
        self._clock = clock
        self._on_status = on_status
        self._stop_event = threading.Event()
        self._done = threading.Event()
        self._thread: threading.Thread | None = None
        self.outcome: str | None = None
        self.last_status: dict | None = None
        self.attempts = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._done.clear()
        self._thread = threading.Thread(target=self.run, name="payment-status-poller", daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        """Stop polling (e.g., the cashier closed the QR dialog)."""
        self._stop_event.set()

    def wait(self, timeout: float | None = None) -> str | None:
        self._done.wait(timeout=timeout)
        return self.outcome

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> str:
        try:
            self.outcome = self._loop()
        finally:
            self._done.set()
        logger.info("Payment polling finished: %s after %d attempts", self.outcome, self.attempts)
        return self.outcome

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def _loop(self) -> str:
        while not self._stop_event.is_set():
            if self._expired():
                return OUTCOME_EXPIRED

            self.attempts += 1
            try:
                status = self._fetch_status()
            except Exception:
                logger.exception("Payment status fetch failed (attempt %d)", self.attempts)
                status = None

            if status is not None:
                self.last_status = status
                if self._on_status is not None:
                    self._on_status(status)

                state = str(status.get("status") or "").upper()
                if state == OUTCOME_PAID:
                    return OUTCOME_PAID
                if state == OUTCOME_CANCELLED:
                    return OUTCOME_CANCELLED

                if status.get("poll_interval_seconds"):
                    self._interval = float(status["poll_interval_seconds"])
                # The server may have issued a new QR with a later expiry
                if status.get("expires_at"):
                    self._expires_at = parse_iso_datetime(status["expires_at"])
                if status.get("expired") or self._expired():
                    return OUTCOME_EXPIRED

            # Wait for interval or until cancelled
            self._stop_event.wait(timeout=self._interval)

        return OUTCOME_STOPPED
