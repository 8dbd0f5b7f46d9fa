from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Sequence

from flask import Blueprint, current_app, g, jsonify

from ..config import PRICE_DECIMALS
from ..errors import ClearingError, ClearingFailure
from ..models import Bid, SupplyOffer
from ..security import require_admin
from ..services.amounts import checked_sum, format_price, format_quantity, from_units
from ..services.curves import build_demand_curve, build_supply_curve

timeslots_bp = Blueprint('timeslots', __name__, url_prefix='/api')

PRICE_QUANT = Decimal(1).scaleb(-PRICE_DECIMALS)


def _orchestrator():
    return current_app.extensions['clearing_orchestrator']


def _load(timeslot_id: str):
    store = _orchestrator().store
    return store.load_bids(timeslot_id), store.load_supplies(timeslot_id)


def _respond(result, status=200):
    if isinstance(result, ClearingError):
        raise result.to_exception()
    return jsonify(result.to_dict()), status


def _aggregate_levels(curve) -> List[Dict]:
    """Collapse a step curve into one entry per distinct price."""
    levels: List[Dict] = []
    previous = 0
    for point in curve:
        step = point.cumulative_quantity - previous
        previous = point.cumulative_quantity
        if levels and levels[-1]['_price'] == point.price:
            levels[-1]['_quantity'] += step
            levels[-1]['orderCount'] += 1
            levels[-1]['_cumulative'] = point.cumulative_quantity
            continue
        levels.append({
            '_price': point.price,
            '_quantity': step,
            '_cumulative': point.cumulative_quantity,
            'orderCount': 1,
        })
    return [
        {
            "price": format_price(level['_price']),
            "totalQuantity": format_quantity(level['_quantity']),
            "orderCount": level['orderCount'],
            "cumulativeQuantity": format_quantity(level['_cumulative']),
        }
        for level in levels
    ]


def _average_price(prices: Sequence[int]) -> str:
    if not prices:
        return format_price(0)
    mean = from_units(checked_sum(prices), PRICE_DECIMALS) / Decimal(len(prices))
    return str(mean.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP))


def timeslot_stats(bids: Sequence[Bid], supplies: Sequence[SupplyOffer]) -> Dict:
    return {
        "totalBids": len(bids),
        "totalSupplies": len(supplies),
        "totalDemand": format_quantity(checked_sum(b.quantity for b in bids)),
        "totalSupply": format_quantity(checked_sum(s.quantity for s in supplies)),
        "averageBidPrice": _average_price([b.price for b in bids]),
        "averageSupplyPrice": _average_price([s.reserve_price for s in supplies]),
    }


@timeslots_bp.get('/timeslots/<timeslot_id>/clearing/preview')
def preview_clearing(timeslot_id: str):
    return _respond(_orchestrator().preview(timeslot_id))


@timeslots_bp.get('/timeslots/<timeslot_id>/curves')
def timeslot_curves(timeslot_id: str):
    bids, supplies = _load(timeslot_id)
    demand_curve = build_demand_curve(bids)
    supply_curve = build_supply_curve(supplies)
    return jsonify({
        "timeslotId": timeslot_id,
        "demand": [p.to_dict() for p in demand_curve],
        "supply": [p.to_dict() for p in supply_curve],
        "demandLevels": _aggregate_levels(demand_curve),
        "supplyLevels": _aggregate_levels(supply_curve),
    })


@timeslots_bp.get('/timeslots/<timeslot_id>/stats')
def get_timeslot_stats(timeslot_id: str):
    store = _orchestrator().store
    status = store.get_timeslot_status(timeslot_id)
    if status is None:
        raise ClearingFailure(f"Timeslot {timeslot_id} not found", statuscode=404)
    bids, supplies = _load(timeslot_id)
    payload = {"timeslotId": timeslot_id, "status": status.value}
    payload.update(timeslot_stats(bids, supplies))
    return jsonify(payload)


@timeslots_bp.post('/admin/timeslots/<timeslot_id>/settle')
@require_admin
def settle_timeslot(timeslot_id: str):
    current_app.logger.info("Settle requested for timeslot %s by %s", timeslot_id, g.user['id'])
    return _respond(_orchestrator().execute_clearing(timeslot_id))
