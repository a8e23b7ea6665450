"""Tests for the order feed and store."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import StopLoop
from placedefender.orders import Order, OrderStore, parse_orders


def _response(status=200, payload=None, bad_json=False):
    response = MagicMock()
    response.status_code = status
    if bad_json:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def loaded_store():
    store = OrderStore("https://example.invalid/orders.json")
    store._snapshot = (Order(5, 5, 1),)
    store.has_data = True
    return store


class TestParseOrders:

    def test_parses_triples(self):
        assert parse_orders([[1, 2, 3], [4, 5, 6]]) == [Order(1, 2, 3), Order(4, 5, 6)]

    def test_drops_malformed_entries(self):
        data = [[1, 2, 3], [1, 2], [-1, 2, 3], ["1", 2, 3], [1, 2, True], None, [7, 8, 9]]
        assert parse_orders(data) == [Order(1, 2, 3), Order(7, 8, 9)]

    def test_drops_orders_off_the_canvas(self):
        data = [[1999, 1999, 2], [2000, 5, 2], [5, 2000, 2]]
        assert parse_orders(data, bounds=(2000, 2000)) == [Order(1999, 1999, 2)]

    def test_rejects_non_list(self):
        with pytest.raises(ValueError):
            parse_orders({"orders": []})


class TestRefresh:

    @pytest.mark.asyncio
    async def test_empty_before_first_refresh(self):
        store = OrderStore()
        assert store.snapshot == ()
        assert store.has_data is False

    @pytest.mark.asyncio
    async def test_success_replaces_snapshot(self, loaded_store):
        previous = loaded_store.snapshot
        with patch("placedefender.orders.requests.get", return_value=_response(payload=[[10, 10, 2]])):
            assert await loaded_store.refresh() is True

        assert loaded_store.snapshot == (Order(10, 10, 2),)
        assert previous == (Order(5, 5, 1),)
        assert loaded_store.has_data is True

    @pytest.mark.asyncio
    async def test_first_success_sets_has_data(self):
        store = OrderStore()
        with patch("placedefender.orders.requests.get", return_value=_response(payload=[])):
            await store.refresh()

        assert store.has_data is True
        assert store.snapshot == ()

    @pytest.mark.asyncio
    async def test_non_200_keeps_snapshot(self, loaded_store):
        with patch("placedefender.orders.requests.get", return_value=_response(status=503)):
            assert await loaded_store.refresh() is False

        assert loaded_store.snapshot == (Order(5, 5, 1),)
        assert loaded_store.has_data is True

    @pytest.mark.asyncio
    async def test_transport_error_keeps_snapshot(self, loaded_store):
        with patch("placedefender.orders.requests.get", side_effect=requests.ConnectionError("down")):
            assert await loaded_store.refresh() is False

        assert loaded_store.snapshot == (Order(5, 5, 1),)

    @pytest.mark.asyncio
    async def test_bad_payload_keeps_snapshot(self, loaded_store):
        with patch("placedefender.orders.requests.get", return_value=_response(bad_json=True)):
            assert await loaded_store.refresh() is False
        with patch("placedefender.orders.requests.get", return_value=_response(payload={"nope": 1})):
            assert await loaded_store.refresh() is False

        assert loaded_store.snapshot == (Order(5, 5, 1),)

    @pytest.mark.asyncio
    async def test_failed_first_refresh_leaves_no_data(self):
        store = OrderStore()
        with patch("placedefender.orders.requests.get", return_value=_response(status=404)):
            await store.refresh()

        assert store.has_data is False


@pytest.mark.asyncio
async def test_run_refreshes_on_a_timer():
    store = OrderStore()
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 2:
            raise StopLoop()

    get = MagicMock(return_value=_response(payload=[[1, 1, 1]]))
    with patch("placedefender.orders.requests.get", get):
        with pytest.raises(StopLoop):
            await store.run(interval=300, sleep=fake_sleep)

    assert sleeps == [300, 300]
    assert get.call_count == 2
    assert store.snapshot == (Order(1, 1, 1),)
