"""
Interface to the bid/supply/timeslot record store.

The clearing engine never talks to a database directly; it is handed an
object satisfying ``RecordStore``. ``energy_auction.db.MySQLRecordStore`` is
the production implementation. Implementations signal failure by raising
``RecordStoreError``.
"""

from typing import ContextManager, List, Optional, Protocol

from energy_auction.models import Bid, SupplyOffer, TimeslotStatus


class RecordStore(Protocol):
    def load_bids(self, timeslot_id: str) -> List[Bid]:
        """Active (PENDING) bids of the timeslot."""
        ...

    def load_supplies(self, timeslot_id: str) -> List[SupplyOffer]:
        """Active (COMMITTED) supply offers of the timeslot."""
        ...

    def get_timeslot_status(self, timeslot_id: str) -> Optional[TimeslotStatus]:
        ...

    def list_sealed_timeslots(self) -> List[str]:
        ...

    def transaction(self) -> ContextManager[None]:
        """Group the commit calls below; commit on exit, roll back on error."""
        ...

    def lock_timeslot(self, timeslot_id: str) -> Optional[TimeslotStatus]:
        """Re-read the status inside ``transaction()``, locking the row."""
        ...

    def mark_bid_matched(self, bid_id: str, allocated_quantity: int) -> None:
        ...

    def mark_supply_allocated(self, supply_id: str, allocated_quantity: int, allocation_price: int) -> None:
        ...

    def set_timeslot_clearing_price(self, timeslot_id: str, price: int, quantity: int) -> None:
        """Record the outcome and move the timeslot to SETTLED."""
        ...


__all__ = ['RecordStore']
