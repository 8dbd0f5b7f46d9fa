from dataclasses import replace

import jwt
import pytest

from clearing_helpers import make_bid
from energy_auction.app import create_app
from energy_auction.config import JWT_ALGO, JWT_SECRET
from energy_auction.models import TimeslotStatus


def bearer(sub="7", is_admin=1):
    token = jwt.encode({"sub": sub, "is_admin": is_admin}, JWT_SECRET, algorithm=JWT_ALGO)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def events():
    return []


@pytest.fixture
def client(sealed_store, events):
    app = create_app(store=sealed_store, publish=lambda e, d: events.append((e, d)))
    app.config["TESTING"] = True
    return app.test_client()


def test_preview_returns_the_outcome_without_writing(client, sealed_store) -> None:
    res = client.get("/api/timeslots/ts-1/clearing/preview")

    assert res.status_code == 200
    body = res.get_json()
    assert body["clearingPrice"] == "9.0000"
    assert body["clearedQuantity"] == "5.0000"
    assert body["matchedSupplies"] == [
        {"supplyId": "s-6", "allocatedQuantity": "4.0000", "reservePrice": "6.0000"},
        {"supplyId": "s-9", "allocatedQuantity": "1.0000", "reservePrice": "9.0000"},
    ]
    assert sealed_store.commits == 0


def test_preview_of_a_book_that_does_not_cross(client, sealed_store) -> None:
    res = client.get("/api/timeslots/empty/clearing/preview")

    assert res.status_code == 200
    body = res.get_json()
    assert body["marketCleared"] is False
    assert body["noClearingReason"]
    assert body["clearingPrice"] is None


def test_curves_are_cumulative_with_levels(client, sealed_store) -> None:
    sealed_store.add_bid("ts-1", make_bid("b-10-late", "10", "1", seconds=9))

    body = client.get("/api/timeslots/ts-1/curves").get_json()

    assert body["demand"] == [
        {"price": "10.0000", "cumulativeQuantity": "5.0000"},
        {"price": "10.0000", "cumulativeQuantity": "6.0000"},
        {"price": "8.0000", "cumulativeQuantity": "11.0000"},
    ]
    assert body["demandLevels"][0] == {
        "price": "10.0000", "totalQuantity": "6.0000", "orderCount": 2, "cumulativeQuantity": "6.0000",
    }
    assert [level["price"] for level in body["supplyLevels"]] == ["6.0000", "9.0000"]


def test_curves_reject_an_invalid_record(client, sealed_store) -> None:
    sealed_store.add_bid("ts-1", replace(make_bid("zero", "10", "1"), quantity=0))

    res = client.get("/api/timeslots/ts-1/curves")

    assert res.status_code == 400
    assert res.get_json()["kind"] == "INVALID_INPUT"


def test_stats_summarise_the_active_book(client) -> None:
    body = client.get("/api/timeslots/ts-1/stats").get_json()

    assert body["status"] == "SEALED"
    assert body["totalBids"] == 2
    assert body["totalDemand"] == "10.0000"
    assert body["totalSupply"] == "10.0000"
    assert body["averageBidPrice"] == "9.0000"
    assert body["averageSupplyPrice"] == "7.5000"


def test_stats_of_an_unknown_timeslot(client) -> None:
    assert client.get("/api/timeslots/nope/stats").status_code == 404


def test_settle_requires_a_token(client, sealed_store) -> None:
    res = client.post("/api/admin/timeslots/ts-1/settle")
    assert res.status_code == 401
    assert sealed_store.commits == 0


def test_settle_requires_an_admin(client, sealed_store) -> None:
    res = client.post("/api/admin/timeslots/ts-1/settle", headers=bearer(is_admin=0))
    assert res.status_code == 403
    assert sealed_store.commits == 0


def test_admin_settles_once(client, sealed_store, events) -> None:
    res = client.post("/api/admin/timeslots/ts-1/settle", headers=bearer())

    assert res.status_code == 200
    assert res.get_json()["clearingPrice"] == "9.0000"
    assert sealed_store.timeslots["ts-1"]["status"] == TimeslotStatus.SETTLED
    assert [e for e, _ in events] == ["timeslot.settled"]

    again = client.post("/api/admin/timeslots/ts-1/settle", headers=bearer())
    assert again.status_code == 409
    assert again.get_json()["kind"] == "TIMESLOT_STATE"


def test_settle_unknown_timeslot(client) -> None:
    res = client.post("/api/admin/timeslots/nope/settle", headers=bearer())
    assert res.status_code == 404


def test_store_outage_is_a_503(client, sealed_store) -> None:
    sealed_store.fail_on = "set_timeslot_clearing_price"

    res = client.post("/api/admin/timeslots/ts-1/settle", headers=bearer())

    assert res.status_code == 503
    assert res.get_json()["kind"] == "RECORD_STORE"
    assert sealed_store.timeslots["ts-1"]["status"] == TimeslotStatus.SEALED
