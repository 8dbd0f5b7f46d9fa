from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from energy_auction.services.amounts import format_price, format_quantity


class TimeslotStatus(str, Enum):
    OPEN = "OPEN"
    SEALED = "SEALED"
    SETTLED = "SETTLED"


@dataclass(frozen=True)
class Bid:
    """A buyer's offer to purchase up to ``quantity`` at most ``price``.

    Attributes:
        id: record id in the store.
        bidder_id: owning participant.
        price: maximum price, integer price units.
        quantity: requested energy, integer quantity units.
        submitted_at: commit time, first tie-break at equal price.
    """

    id: str
    bidder_id: str
    price: int
    quantity: int
    submitted_at: Optional[datetime] = None


@dataclass(frozen=True)
class SupplyOffer:
    """A seller's offer to deliver up to ``quantity`` for at least ``reserve_price``."""

    id: str
    supplier_id: str
    reserve_price: int
    quantity: int
    submitted_at: Optional[datetime] = None


@dataclass(frozen=True)
class CurvePoint:
    price: int
    cumulative_quantity: int

    def to_dict(self) -> Dict[str, str]:
        return {
            "price": format_price(self.price),
            "cumulativeQuantity": format_quantity(self.cumulative_quantity),
        }


@dataclass(frozen=True)
class Intersection:
    price: int
    quantity: int


@dataclass(frozen=True)
class MatchedBid:
    bid_id: str
    allocated_quantity: int
    price: int

    def to_dict(self) -> Dict[str, str]:
        return {
            "bidId": self.bid_id,
            "allocatedQuantity": format_quantity(self.allocated_quantity),
            "price": format_price(self.price),
        }


@dataclass(frozen=True)
class MatchedSupply:
    supply_id: str
    allocated_quantity: int
    reserve_price: int

    def to_dict(self) -> Dict[str, str]:
        return {
            "supplyId": self.supply_id,
            "allocatedQuantity": format_quantity(self.allocated_quantity),
            "reservePrice": format_price(self.reserve_price),
        }


@dataclass(frozen=True)
class ClearingOutcome:
    """Result of one clearing run.

    ``no_clearing_reason`` is None when the curves crossed. Otherwise the run
    hit NoMarketClearing and the outcome carries zero volume with every
    submitted quantity reported as unmet. Its price is held as 0 and
    serialised as null, since no price was discovered.
    """

    clearing_price: int
    cleared_quantity: int
    matched_bids: Tuple[MatchedBid, ...] = ()
    matched_supplies: Tuple[MatchedSupply, ...] = ()
    unmet_demand: int = 0
    unmet_supply: int = 0
    no_clearing_reason: Optional[str] = None

    @property
    def market_cleared(self) -> bool:
        return self.no_clearing_reason is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clearingPrice": format_price(self.clearing_price) if self.market_cleared else None,
            "clearedQuantity": format_quantity(self.cleared_quantity),
            "matchedBids": [m.to_dict() for m in self.matched_bids],
            "matchedSupplies": [m.to_dict() for m in self.matched_supplies],
            "unmetDemand": format_quantity(self.unmet_demand),
            "unmetSupply": format_quantity(self.unmet_supply),
            "marketCleared": self.market_cleared,
            "noClearingReason": self.no_clearing_reason,
        }


@dataclass(frozen=True)
class Allocation:
    matched_bids: Tuple[MatchedBid, ...]
    matched_supplies: Tuple[MatchedSupply, ...]
    unmet_demand: int
    unmet_supply: int
