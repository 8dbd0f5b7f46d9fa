"""
Market clearing for one timeslot.

``compute_clearing`` is the pure pipeline (curves -> intersection ->
allocation) and is safe for previews: every clearing failure comes back as a
``ClearingError`` value.

``ClearingOrchestrator.execute_clearing`` wraps it with the two external
steps, loading the active records and committing the matches. It holds the
timeslot's lock for the whole run. A run moves through

    Loaded -> Curved -> Solved -> Allocated -> Committed

and drops to Failed from any step. A run that fails never writes to the
record store. When the curves do not cross, the zero-volume outcome is
returned and the timeslot is left SEALED, so the caller may clear it again
later.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Union

from energy_auction.config import CLEARING_LOCK_TIMEOUT
from energy_auction.errors import (
    ClearingError,
    ClearingFailure,
    NoMarketClearing,
    TimeslotStateError,
)
from energy_auction.models import Bid, ClearingOutcome, SupplyOffer, TimeslotStatus
from energy_auction.services.allocation import allocate
from energy_auction.services.amounts import checked_sum
from energy_auction.services.curves import (
    build_demand_curve,
    build_supply_curve,
    sort_bids,
    sort_supplies,
)
from energy_auction.services.intersection import find_intersection
from energy_auction.services.locks import TimeslotLocks, timeslot_locks
from energy_auction.services.record_store import RecordStore

logger = logging.getLogger(__name__)

ClearingResult = Union[ClearingOutcome, ClearingError]
Publisher = Callable[[str, Dict[str, Any]], None]

SETTLED_EVENT = "timeslot.settled"


class RunState(str, Enum):
    PENDING = "PENDING"
    LOADED = "LOADED"
    CURVED = "CURVED"
    SOLVED = "SOLVED"
    ALLOCATED = "ALLOCATED"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


_NEXT_STATE = {
    RunState.PENDING: RunState.LOADED,
    RunState.LOADED: RunState.CURVED,
    RunState.CURVED: RunState.SOLVED,
    RunState.SOLVED: RunState.ALLOCATED,
    RunState.ALLOCATED: RunState.COMMITTED,
}


class ClearingRun:
    """Tracks one run through the clearing states."""

    def __init__(self, timeslot_id: Optional[str] = None):
        self.timeslot_id = timeslot_id
        self.state = RunState.PENDING
        self.failure: Optional[ClearingFailure] = None

    @property
    def finished(self) -> bool:
        return self.state in (RunState.COMMITTED, RunState.FAILED)

    def advance(self, state: RunState) -> None:
        if _NEXT_STATE.get(self.state) != state:
            raise RuntimeError(f"Illegal clearing transition {self.state.value} -> {state.value}")
        logger.debug("[CLEARING] timeslot=%s %s -> %s", self.timeslot_id, self.state.value, state.value)
        self.state = state

    def fail(self, failure: ClearingFailure) -> None:
        if self.finished:
            raise RuntimeError(f"Clearing run already finished in {self.state.value}")
        logger.info(
            "[CLEARING] timeslot=%s failed in %s: %s",
            self.timeslot_id, self.state.value, failure.kind,
        )
        self.failure = failure
        self.state = RunState.FAILED


def _no_clearing_outcome(
    bids: Sequence[Bid],
    supplies: Sequence[SupplyOffer],
    reason: str,
) -> ClearingOutcome:
    return ClearingOutcome(
        clearing_price=0,
        cleared_quantity=0,
        unmet_demand=checked_sum(b.quantity for b in bids),
        unmet_supply=checked_sum(s.quantity for s in supplies),
        no_clearing_reason=reason,
    )


def _run_pipeline(
    bids: Sequence[Bid],
    supplies: Sequence[SupplyOffer],
    run: ClearingRun,
) -> ClearingOutcome:
    demand_curve = build_demand_curve(bids)
    supply_curve = build_supply_curve(supplies)
    run.advance(RunState.CURVED)

    try:
        intersection = find_intersection(demand_curve, supply_curve)
    except NoMarketClearing as exc:
        run.fail(exc)
        return _no_clearing_outcome(bids, supplies, exc.message)
    run.advance(RunState.SOLVED)

    allocation = allocate(
        sort_bids(bids),
        sort_supplies(supplies),
        intersection,
        demand_curve=demand_curve,
        supply_curve=supply_curve,
    )
    run.advance(RunState.ALLOCATED)

    return ClearingOutcome(
        clearing_price=intersection.price,
        cleared_quantity=intersection.quantity,
        matched_bids=allocation.matched_bids,
        matched_supplies=allocation.matched_supplies,
        unmet_demand=allocation.unmet_demand,
        unmet_supply=allocation.unmet_supply,
    )


def compute_clearing(bids: Sequence[Bid], supplies: Sequence[SupplyOffer]) -> ClearingResult:
    run = ClearingRun()
    run.advance(RunState.LOADED)
    try:
        return _run_pipeline(bids, supplies, run)
    except ClearingFailure as exc:
        run.fail(exc)
        return ClearingError.from_failure(exc)


def _guard_status(timeslot_id: str, status: Optional[TimeslotStatus]) -> None:
    if status is None:
        raise TimeslotStateError(
            f"Timeslot {timeslot_id} not found", statuscode=404, details={"timeslotId": timeslot_id}
        )
    if status == TimeslotStatus.SETTLED:
        raise TimeslotStateError(
            f"Timeslot {timeslot_id} is already settled",
            details={"timeslotId": timeslot_id, "status": status.value},
        )
    if status != TimeslotStatus.SEALED:
        raise TimeslotStateError(
            f"Can only clear sealed timeslots, {timeslot_id} is {status.value}",
            details={"timeslotId": timeslot_id, "status": status.value},
        )


class ClearingOrchestrator:
    def __init__(
        self,
        store: RecordStore,
        locks: Optional[TimeslotLocks] = None,
        publish: Optional[Publisher] = None,
        lock_timeout: float = CLEARING_LOCK_TIMEOUT,
    ):
        self.store = store
        self.locks = locks or timeslot_locks
        self.publish = publish
        self.lock_timeout = lock_timeout

    def preview(self, timeslot_id: str) -> ClearingResult:
        """Dry run on the currently active records; never writes."""
        try:
            bids = self.store.load_bids(timeslot_id)
            supplies = self.store.load_supplies(timeslot_id)
        except ClearingFailure as exc:
            return ClearingError.from_failure(exc)
        return compute_clearing(bids, supplies)

    def execute_clearing(self, timeslot_id: str) -> ClearingResult:
        run = ClearingRun(timeslot_id)
        try:
            with self.locks.hold(timeslot_id, self.lock_timeout):
                return self._execute(run)
        except ClearingFailure as exc:
            if not run.finished:
                run.fail(exc)
            logger.warning("[CLEARING ERROR] timeslot=%s %s: %s", timeslot_id, exc.kind, exc.message)
            return ClearingError.from_failure(exc)

    def _execute(self, run: ClearingRun) -> ClearingOutcome:
        timeslot_id = run.timeslot_id
        _guard_status(timeslot_id, self.store.get_timeslot_status(timeslot_id))

        bids = self.store.load_bids(timeslot_id)
        supplies = self.store.load_supplies(timeslot_id)
        run.advance(RunState.LOADED)
        logger.info(
            "[CLEARING] timeslot=%s loaded %s bids, %s supplies",
            timeslot_id, len(bids), len(supplies),
        )

        outcome = _run_pipeline(bids, supplies, run)
        if not outcome.market_cleared:
            logger.warning("[CLEARING] timeslot=%s no clearing: %s", timeslot_id, outcome.no_clearing_reason)
            return outcome

        self._commit(timeslot_id, outcome)
        run.advance(RunState.COMMITTED)
        logger.info(
            "[CLEARING] timeslot=%s settled price=%s volume=%s bids=%s supplies=%s",
            timeslot_id,
            outcome.clearing_price,
            outcome.cleared_quantity,
            len(outcome.matched_bids),
            len(outcome.matched_supplies),
        )
        self._publish(timeslot_id, outcome)
        return outcome

    def _commit(self, timeslot_id: str, outcome: ClearingOutcome) -> None:
        with self.store.transaction():
            # Another process may have settled the slot since the first check.
            _guard_status(timeslot_id, self.store.lock_timeslot(timeslot_id))
            for matched in outcome.matched_bids:
                self.store.mark_bid_matched(matched.bid_id, matched.allocated_quantity)
            for matched in outcome.matched_supplies:
                self.store.mark_supply_allocated(
                    matched.supply_id, matched.allocated_quantity, outcome.clearing_price
                )
            self.store.set_timeslot_clearing_price(
                timeslot_id, outcome.clearing_price, outcome.cleared_quantity
            )

    def _publish(self, timeslot_id: str, outcome: ClearingOutcome) -> None:
        if self.publish is None:
            return
        payload = {"timeslotId": timeslot_id, **outcome.to_dict()}
        try:
            self.publish(SETTLED_EVENT, payload)
        except Exception:
            # settlement is already committed here
            logger.exception("[CLEARING] timeslot=%s failed to publish %s", timeslot_id, SETTLED_EVENT)


__all__ = [
    'ClearingOrchestrator',
    'ClearingResult',
    'ClearingRun',
    'RunState',
    'SETTLED_EVENT',
    'compute_clearing',
]
