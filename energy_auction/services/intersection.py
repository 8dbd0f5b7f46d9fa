"""
Intersection of the demand and supply step curves.

The clearing price is set by the marginal accepted seller. For each demand
step (p_d, q_d), walking from the highest bid down, two crossings are tried:

- demand-limited: the first supply step whose cumulative quantity covers q_d.
  The market trades q_d if that step's price is <= p_d.
- supply-limited: otherwise, the last supply step that is both short of q_d
  and priced <= p_d. The market trades that step's cumulative quantity.

Supply step prices rise and demand prices fall along the walk, so once no
supply step is priced at or below p_d, no later demand step can cross either.
Among the feasible crossings the one with the largest volume wins. On equal
volume the first one found is kept.

Two indices walk the supply curve: ``covered`` only moves forward and
``affordable`` only moves backward, which keeps the search O(n + m).
"""

import logging
from typing import Optional, Sequence

from energy_auction.errors import NoMarketClearing
from energy_auction.models import CurvePoint, Intersection

logger = logging.getLogger(__name__)


def _better(best: Optional[Intersection], price: int, quantity: int) -> Intersection:
    if best is None or quantity > best.quantity:
        return Intersection(price=price, quantity=quantity)
    return best


def find_intersection(
    demand_curve: Sequence[CurvePoint],
    supply_curve: Sequence[CurvePoint],
) -> Intersection:
    if not demand_curve or not supply_curve:
        raise NoMarketClearing(
            "No bids or no supply for this timeslot",
            details={"demandPoints": len(demand_curve), "supplyPoints": len(supply_curve)},
        )
    if demand_curve[0].price < supply_curve[0].price:
        raise NoMarketClearing(
            "Highest bid is below the lowest reserve price",
            details={"highestBid": demand_curve[0].price, "lowestReserve": supply_curve[0].price},
        )

    best: Optional[Intersection] = None
    # first supply step covering the demand quantity
    covered = 0
    # number of supply steps priced at or below the demand price
    affordable = len(supply_curve)
    for point in demand_curve:
        while (covered < len(supply_curve)
               and supply_curve[covered].cumulative_quantity < point.cumulative_quantity):
            covered += 1
        while affordable > 0 and supply_curve[affordable - 1].price > point.price:
            affordable -= 1

        if covered < affordable:
            best = _better(best, supply_curve[covered].price, point.cumulative_quantity)
            continue

        marginal = min(covered, affordable) - 1
        if marginal < 0:
            break
        short = supply_curve[marginal]
        best = _better(best, short.price, short.cumulative_quantity)

    if best is None:
        raise NoMarketClearing(
            "Demand and supply curves do not intersect",
            details={"highestBid": demand_curve[0].price, "lowestReserve": supply_curve[0].price},
        )

    logger.debug("[CLEARING] intersection price=%s quantity=%s", best.price, best.quantity)
    return best


__all__ = ['find_intersection']
