"""
Periodic settlement of sealed timeslots.

A daemon thread wakes every ``interval`` seconds and runs the orchestrator on
every timeslot the record store reports as SEALED. A failed or empty run is
only logged. The timeslot stays SEALED and is picked up again on a later
tick; nothing is retried inside a tick.
"""

import logging
import threading
from typing import Dict, Optional

from energy_auction.config import CLEARING_INTERVAL_SECONDS
from energy_auction.errors import ClearingError
from energy_auction.services.clearing import ClearingOrchestrator, ClearingResult

logger = logging.getLogger(__name__)


class ClearingScheduler:
    def __init__(self, orchestrator: ClearingOrchestrator, interval: int = CLEARING_INTERVAL_SECONDS):
        self.orchestrator = orchestrator
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.info("[CLEARING SCHEDULER] already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="clearing-scheduler", daemon=True)
        self._thread.start()
        logger.info("[CLEARING SCHEDULER] started, interval %s seconds", self.interval)

    def stop(self, timeout: float = 10) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("[CLEARING SCHEDULER] stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.exception("[CLEARING SCHEDULER ERROR] %s", e)
            self._stop.wait(self.interval)

    def run_once(self) -> Dict[str, ClearingResult]:
        """Clear every sealed timeslot once; returns results keyed by timeslot id."""
        timeslot_ids = self.orchestrator.store.list_sealed_timeslots()
        if not timeslot_ids:
            logger.debug("[CLEARING SCHEDULER] no sealed timeslots")
            return {}

        logger.info("[CLEARING SCHEDULER] %s sealed timeslots to clear", len(timeslot_ids))
        results: Dict[str, ClearingResult] = {}
        for timeslot_id in timeslot_ids:
            result = self.orchestrator.execute_clearing(timeslot_id)
            results[timeslot_id] = result
            if isinstance(result, ClearingError):
                logger.warning("[CLEARING SCHEDULER] timeslot %s: %s", timeslot_id, result.message)
            elif not result.market_cleared:
                logger.info("[CLEARING SCHEDULER] timeslot %s did not clear: %s",
                            timeslot_id, result.no_clearing_reason)
        return results


__all__ = ['ClearingScheduler']
