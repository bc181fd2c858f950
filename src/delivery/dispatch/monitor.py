"""Background offer expiry.

Offers carry their own deadline; this thread makes sure a lapsed offer is
timed out and the order moves on even when no rider ever answers. In a
deployment with an external scheduler, call ``expire_overdue_offers`` from
there instead and leave the monitor stopped.
"""

import threading

import structlog

from delivery import settings
from delivery.dispatch.dispatcher import ExpireOverdueOffers

logger = structlog.get_logger(__name__)


class OfferExpiryMonitor:
    def __init__(self, domain, interval_seconds: float | None = None) -> None:
        self.domain = domain
        self.interval_seconds = interval_seconds or settings.OFFER_SWEEP_INTERVAL_SECONDS
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="offer-expiry-monitor", daemon=True)
        self._thread.start()
        logger.info("Offer expiry monitor started", interval_seconds=self.interval_seconds)

    def stop(self, join: bool = True) -> None:
        self._stop_event.set()
        if join and self._thread is not None:
            self._thread.join()
        logger.info("Offer expiry monitor stopped")

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sweep_once(self) -> int:
        with self.domain.domain_context():
            return self.domain.process(ExpireOverdueOffers(), asynchronous=False)

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                expired = self.sweep_once()
            except Exception:
                # Keep the thread alive; the next tick retries
                logger.exception("Offer expiry sweep failed")
                continue
            if expired:
                logger.info("Offers timed out by monitor", expired_count=expired)
