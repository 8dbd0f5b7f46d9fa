"""
Demand and supply curves.

Bids are ranked by price descending and supplies by reserve price ascending.
At equal price the earlier submission wins, then the lower id, so the same
input always yields the same curve regardless of fetch order.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Sequence, Tuple

from energy_auction.errors import InvalidInput
from energy_auction.models import Bid, CurvePoint, SupplyOffer
from energy_auction.services.amounts import checked_add

# Records without a timestamp sort after timestamped ones at the same price.
_NO_TIMESTAMP = datetime.max.replace(tzinfo=timezone.utc)


def _submission_key(submitted_at) -> datetime:
    if submitted_at is None:
        return _NO_TIMESTAMP
    if submitted_at.tzinfo is None:
        return submitted_at.replace(tzinfo=timezone.utc)
    return submitted_at


def _is_units(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate(record_id: str, price: int, quantity: int, price_field: str) -> None:
    for name, value in ((price_field, price), ("quantity", quantity)):
        if not _is_units(value):
            raise InvalidInput(
                f"Record {record_id} has a non-integer {name}",
                details={"id": record_id, name: repr(value)},
            )
    if quantity <= 0:
        raise InvalidInput(
            f"Record {record_id} has non-positive quantity",
            details={"id": record_id, "quantity": quantity},
        )
    if price < 0:
        raise InvalidInput(
            f"Record {record_id} has negative {price_field}",
            details={"id": record_id, price_field: price},
        )


def sort_bids(bids: Iterable[Bid]) -> List[Bid]:
    return sorted(bids, key=lambda b: (-b.price, _submission_key(b.submitted_at), b.id))


def sort_supplies(supplies: Iterable[SupplyOffer]) -> List[SupplyOffer]:
    return sorted(
        supplies,
        key=lambda s: (s.reserve_price, _submission_key(s.submitted_at), s.id),
    )


def _accumulate(steps: Iterable[Tuple[int, int]]) -> Tuple[CurvePoint, ...]:
    curve = []
    running = 0
    for price, quantity in steps:
        running = checked_add(running, quantity)
        curve.append(CurvePoint(price=price, cumulative_quantity=running))
    return tuple(curve)


def build_demand_curve(bids: Sequence[Bid]) -> Tuple[CurvePoint, ...]:
    for bid in bids:
        _validate(bid.id, bid.price, bid.quantity, "price")
    return _accumulate((b.price, b.quantity) for b in sort_bids(bids))


def build_supply_curve(supplies: Sequence[SupplyOffer]) -> Tuple[CurvePoint, ...]:
    for supply in supplies:
        _validate(supply.id, supply.reserve_price, supply.quantity, "reservePrice")
    return _accumulate((s.reserve_price, s.quantity) for s in sort_supplies(supplies))


__all__ = ['sort_bids', 'sort_supplies', 'build_demand_curve', 'build_supply_curve']
