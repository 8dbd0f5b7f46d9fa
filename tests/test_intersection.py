import pytest

from clearing_helpers import p, q
from energy_auction.errors import NoMarketClearing
from energy_auction.models import CurvePoint, Intersection
from energy_auction.services.intersection import find_intersection


def curve(*steps):
    return tuple(CurvePoint(p(price), q(cum)) for price, cum in steps)


def test_price_is_set_by_the_marginal_seller() -> None:
    demand = curve(("10", "5"), ("8", "10"))
    supply = curve(("6", "4"), ("9", "10"))
    assert find_intersection(demand, supply) == Intersection(p("9"), q("5"))


def test_prefers_the_crossing_with_most_volume() -> None:
    # every demand step crosses the single cheap supply step; take the deepest one
    demand = curve(("10", "5"), ("9", "10"), ("8", "12"))
    supply = curve(("1", "20"),)
    assert find_intersection(demand, supply) == Intersection(p("1"), q("12"))


def test_supply_exhausted_before_demand() -> None:
    demand = curve(("10", "5"), ("9", "10"))
    supply = curve(("1", "7"),)
    assert find_intersection(demand, supply) == Intersection(p("1"), q("7"))


def test_cheap_supply_step_clears_when_the_covering_step_is_too_expensive() -> None:
    demand = curve(("10", "10"),)
    supply = curve(("1", "1"), ("50", "2"), ("60", "22"))
    assert find_intersection(demand, supply) == Intersection(p("1"), q("1"))


def test_exact_match_at_equal_price() -> None:
    demand = curve(("7", "3"),)
    supply = curve(("7", "3"),)
    assert find_intersection(demand, supply) == Intersection(p("7"), q("3"))


@pytest.mark.parametrize(
    "demand, supply",
    [
        ((), curve(("1", "1"))),
        (curve(("1", "1")), ()),
        ((), ()),
    ],
)
def test_empty_side_does_not_clear(demand, supply) -> None:
    with pytest.raises(NoMarketClearing):
        find_intersection(demand, supply)


def test_highest_bid_below_lowest_reserve_does_not_clear() -> None:
    with pytest.raises(NoMarketClearing) as excinfo:
        find_intersection(curve(("5", "10"),), curve(("7", "10"),))
    assert excinfo.value.details["highestBid"] == p("5")
    assert excinfo.value.details["lowestReserve"] == p("7")
