from dataclasses import replace

import pytest

from clearing_helpers import make_bid, make_supply, p, q
from energy_auction.errors import AmountOverflow, ClearingError, InvalidInput
from energy_auction.models import Bid, CurvePoint, SupplyOffer
from energy_auction.services.amounts import MAX_UNITS
from energy_auction.services.clearing import compute_clearing
from energy_auction.services.curves import (
    build_demand_curve,
    build_supply_curve,
    sort_bids,
    sort_supplies,
)


def test_demand_curve_is_price_descending_and_cumulative() -> None:
    bids = [make_bid("a", "8", "5"), make_bid("b", "10", "5"), make_bid("c", "9", "2")]
    curve = build_demand_curve(bids)
    assert curve == (
        CurvePoint(p("10"), q("5")),
        CurvePoint(p("9"), q("7")),
        CurvePoint(p("8"), q("12")),
    )


def test_supply_curve_is_price_ascending_and_cumulative() -> None:
    supplies = [make_supply("x", "9", "6"), make_supply("y", "6", "4")]
    curve = build_supply_curve(supplies)
    assert curve == (CurvePoint(p("6"), q("4")), CurvePoint(p("9"), q("10")))


def test_equal_prices_break_ties_by_submission_then_id() -> None:
    late = make_bid("a-late", "10", "1", seconds=30)
    early = make_bid("z-early", "10", "1", seconds=10)
    same_time_b = make_bid("b", "10", "1", seconds=20)
    same_time_a = make_bid("a", "10", "1", seconds=20)
    ordered = sort_bids([late, same_time_b, early, same_time_a])
    assert [b.id for b in ordered] == ["z-early", "a", "b", "a-late"]

    offers = [make_supply("s2", "5", "1", seconds=2), make_supply("s1", "5", "1", seconds=2)]
    assert [s.id for s in sort_supplies(offers)] == ["s1", "s2"]


def test_ordering_does_not_depend_on_fetch_order() -> None:
    bids = [make_bid(f"b{i}", "7", "1", seconds=i % 3) for i in range(9)]
    assert sort_bids(bids) == sort_bids(list(reversed(bids)))


def test_missing_timestamps_sort_after_known_ones() -> None:
    undated = replace(make_bid("a", "10", "1"), submitted_at=None)
    dated = make_bid("b", "10", "1", seconds=500)
    assert [b.id for b in sort_bids([undated, dated])] == ["b", "a"]


def test_naive_timestamps_compare_with_aware_ones() -> None:
    aware = make_bid("a", "10", "1", seconds=5)
    naive = replace(make_bid("b", "10", "1"), submitted_at=aware.submitted_at.replace(tzinfo=None))
    assert [b.id for b in sort_bids([aware, naive])] == ["a", "b"]


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity_is_rejected(quantity) -> None:
    bad = replace(make_bid("bad", "10", "1"), quantity=quantity)
    with pytest.raises(InvalidInput) as excinfo:
        build_demand_curve([make_bid("ok", "10", "1"), bad])
    assert "bad" in excinfo.value.message


def test_negative_reserve_price_is_rejected() -> None:
    bad = replace(make_supply("neg", "1", "1"), reserve_price=-1)
    with pytest.raises(InvalidInput):
        build_supply_curve([bad])


@pytest.mark.parametrize(
    "bid",
    [
        Bid("float-price", "u", 10.5, 20000),
        Bid("float-qty", "u", 100000, 2.25),
        Bid("bool-qty", "u", 100000, True),
    ],
)
def test_amounts_must_be_integer_units(bid) -> None:
    with pytest.raises(InvalidInput) as excinfo:
        build_demand_curve([bid])
    assert excinfo.value.details["id"] == bid.id


def test_float_book_is_rejected_by_the_pipeline() -> None:
    result = compute_clearing([Bid("b", "u", 10.5, 2.25)], [SupplyOffer("s", "u", 3.1, 2.25)])
    assert isinstance(result, ClearingError)
    assert result.kind == "INVALID_INPUT"


def test_zero_price_is_allowed() -> None:
    assert build_supply_curve([make_supply("free", "0", "3")]) == (CurvePoint(0, q("3")),)


def test_cumulative_overflow_is_an_error() -> None:
    huge = [replace(make_bid(f"h{i}", "1", "1"), quantity=MAX_UNITS // 2 + 1) for i in range(2)]
    with pytest.raises(AmountOverflow):
        build_demand_curve(huge)


def test_empty_input_gives_empty_curve() -> None:
    assert build_demand_curve([]) == ()
    assert build_supply_curve([]) == ()
