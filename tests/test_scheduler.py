import threading

from clearing_helpers import make_bid, make_supply
from energy_auction.errors import ClearingError
from energy_auction.models import ClearingOutcome, TimeslotStatus
from energy_auction.services.clearing import ClearingOrchestrator
from energy_auction.services.clearing_scheduler import ClearingScheduler


def test_run_once_settles_every_sealed_timeslot(sealed_store, locks) -> None:
    sealed_store.add_timeslot("ts-dry")
    sealed_store.add_bid("ts-dry", make_bid("cheap", "1", "1"))
    sealed_store.add_supply("ts-dry", make_supply("dear", "5", "1"))
    sealed_store.add_timeslot("ts-open", TimeslotStatus.OPEN)

    results = ClearingScheduler(ClearingOrchestrator(sealed_store, locks=locks)).run_once()

    assert set(results) == {"ts-1", "ts-dry"}
    assert isinstance(results["ts-1"], ClearingOutcome)
    assert results["ts-1"].market_cleared
    assert not results["ts-dry"].market_cleared
    assert sealed_store.timeslots["ts-1"]["status"] == TimeslotStatus.SETTLED
    assert sealed_store.timeslots["ts-dry"]["status"] == TimeslotStatus.SEALED


def test_run_once_keeps_going_after_a_failed_timeslot(sealed_store, locks) -> None:
    sealed_store.add_timeslot("ts-2")
    sealed_store.add_bid("ts-2", make_bid("b", "5", "1"))
    sealed_store.add_supply("ts-2", make_supply("s", "5", "1"))
    sealed_store.fail_on = "mark_supply_allocated"

    results = ClearingScheduler(ClearingOrchestrator(sealed_store, locks=locks)).run_once()

    assert all(isinstance(r, ClearingError) for r in results.values())
    assert len(results) == 2


def test_nothing_sealed_is_a_no_op(store, locks) -> None:
    assert ClearingScheduler(ClearingOrchestrator(store, locks=locks)).run_once() == {}


def test_start_ticks_and_stop_joins(sealed_store, locks) -> None:
    ticked = threading.Event()
    orchestrator = ClearingOrchestrator(sealed_store, locks=locks, publish=lambda e, d: ticked.set())
    scheduler = ClearingScheduler(orchestrator, interval=60)

    scheduler.start()
    try:
        assert ticked.wait(5)
        assert scheduler.running
    finally:
        scheduler.stop()

    assert not scheduler.running
    assert sealed_store.commits == 1


def test_loop_survives_an_unexpected_error(store, locks) -> None:
    calls = []
    second_tick = threading.Event()

    def flaky_listing():
        calls.append(1)
        if len(calls) >= 2:
            second_tick.set()
        raise RuntimeError("driver exploded")

    store.list_sealed_timeslots = flaky_listing
    scheduler = ClearingScheduler(ClearingOrchestrator(store, locks=locks), interval=0.01)

    scheduler.start()
    try:
        assert second_tick.wait(5)
        assert scheduler.running
    finally:
        scheduler.stop()
