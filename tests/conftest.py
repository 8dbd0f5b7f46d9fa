import pytest

from clearing_helpers import InMemoryRecordStore, make_bid, make_supply
from energy_auction.services.locks import TimeslotLocks


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def locks() -> TimeslotLocks:
    return TimeslotLocks()


@pytest.fixture
def sealed_store(store: InMemoryRecordStore) -> InMemoryRecordStore:
    """ts-1 sealed with two bids and two supply offers that cross at 9."""
    store.add_timeslot("ts-1")
    store.add_bid("ts-1", make_bid("b-10", "10", "5", seconds=1))
    store.add_bid("ts-1", make_bid("b-8", "8", "5", seconds=2))
    store.add_supply("ts-1", make_supply("s-6", "6", "4", seconds=1))
    store.add_supply("ts-1", make_supply("s-9", "9", "6", seconds=2))
    return store
