"""
Merit-order allocation at the clearing price.

Both sides are walked independently in curve order. Each eligible participant
takes as much of the remaining cleared quantity as it asked for, so only the
marginal participant on each side can be partially filled. Once the cleared
quantity is used up, every later participant gets nothing, even one whose
price qualifies.
"""

import logging
from typing import Sequence

from energy_auction.errors import AllocationMismatch
from energy_auction.models import (
    Allocation,
    Bid,
    CurvePoint,
    Intersection,
    MatchedBid,
    MatchedSupply,
    SupplyOffer,
)
from energy_auction.services.amounts import checked_sub, checked_sum

logger = logging.getLogger(__name__)


def _curve_state(curve: Sequence[CurvePoint]):
    return [(p.price, p.cumulative_quantity) for p in curve]


def allocate(
    sorted_bids: Sequence[Bid],
    sorted_supplies: Sequence[SupplyOffer],
    intersection: Intersection,
    demand_curve: Sequence[CurvePoint] = (),
    supply_curve: Sequence[CurvePoint] = (),
) -> Allocation:
    """Assign per-participant quantities at ``intersection``.

    ``sorted_bids`` and ``sorted_supplies`` must be in the order used to build
    the curves. The curves themselves are only carried into the
    AllocationMismatch details for diagnosis.
    """
    clearing_price = intersection.price

    matched_bids = []
    remaining = intersection.quantity
    for bid in sorted_bids:
        if remaining == 0:
            break
        if bid.price < clearing_price:
            continue
        fill = min(remaining, bid.quantity)
        matched_bids.append(MatchedBid(bid_id=bid.id, allocated_quantity=fill, price=bid.price))
        remaining = checked_sub(remaining, fill)

    matched_supplies = []
    remaining = intersection.quantity
    for supply in sorted_supplies:
        if remaining == 0:
            break
        if supply.reserve_price > clearing_price:
            continue
        fill = min(remaining, supply.quantity)
        matched_supplies.append(
            MatchedSupply(supply_id=supply.id, allocated_quantity=fill, reserve_price=supply.reserve_price)
        )
        remaining = checked_sub(remaining, fill)

    bid_filled = checked_sum(m.allocated_quantity for m in matched_bids)
    supply_filled = checked_sum(m.allocated_quantity for m in matched_supplies)
    if bid_filled != intersection.quantity or supply_filled != intersection.quantity:
        details = {
            "clearingPrice": clearing_price,
            "clearedQuantity": intersection.quantity,
            "demandAllocated": bid_filled,
            "supplyAllocated": supply_filled,
            "demandCurve": _curve_state(demand_curve),
            "supplyCurve": _curve_state(supply_curve),
        }
        logger.error("[CLEARING ERROR] allocation mismatch: %s", details)
        raise AllocationMismatch(details=details)

    demand_total = checked_sum(b.quantity for b in sorted_bids)
    supply_total = checked_sum(s.quantity for s in sorted_supplies)
    return Allocation(
        matched_bids=tuple(matched_bids),
        matched_supplies=tuple(matched_supplies),
        unmet_demand=checked_sub(demand_total, bid_filled),
        unmet_supply=checked_sub(supply_total, supply_filled),
    )


__all__ = ['allocate']
