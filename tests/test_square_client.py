import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from grill_backoffice.square.base import SquareAPIError, SquareNotFoundError
from grill_backoffice.square.client import SquareClient, format_square_timestamp

ORDER_JSON = {
    "id": "O1",
    "state": "COMPLETED",
    "closed_at": "2024-05-01T18:30:00.000Z",
    "line_items": [
        {
            "name": "Burger",
            "catalog_object_id": "V1",
            "quantity": "2",
            "modifiers": [{"catalog_object_id": "DOUBLE", "name": "Double"}],
        }
    ],
}


def _client(handler, *, location_id="L1"):
    http_client = httpx.Client(
        transport=httpx.MockTransport(handler),
        base_url="https://connect.squareupsandbox.com",
    )
    return SquareClient(
        access_token="test-token",
        environment="sandbox",
        location_id=location_id,
        api_version="2024-07-17",
        http_client=http_client,
        retry_backoff_seconds=0,
    )


def test_get_order_parses_line_items_and_sends_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["version"] = request.headers["Square-Version"]
        return httpx.Response(200, json={"order": ORDER_JSON})

    order = _client(handler).get_order("O1")

    assert seen == {"path": "/v2/orders/O1", "auth": "Bearer test-token", "version": "2024-07-17"}
    assert order.id == "O1"
    assert order.closed_at == datetime(2024, 5, 1, 18, 30, tzinfo=timezone.utc)
    assert order.line_items[0].variation_id == "V1"
    assert order.line_items[0].quantity == Decimal("2")
    assert order.line_items[0].modifier_ids == ("DOUBLE",)


def test_get_payment_and_refund():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v2/payments/PAY1":
            return httpx.Response(200, json={"payment": {"id": "PAY1", "status": "completed", "order_id": "O1"}})
        return httpx.Response(
            200,
            json={"refund": {"id": "REF1", "status": "COMPLETED", "payment_id": "PAY1", "order_id": "O1"}},
        )

    client = _client(handler)
    payment = client.get_payment("PAY1")
    refund = client.get_refund("REF1")

    assert payment.is_completed
    assert payment.order_id == "O1"
    assert refund.is_completed
    assert refund.payment_id == "PAY1"


def test_not_found_raises_without_retry():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(404, json={"errors": [{"code": "NOT_FOUND"}]})

    with pytest.raises(SquareNotFoundError) as excinfo:
        _client(handler).get_order("missing")

    assert len(attempts) == 1
    assert excinfo.value.status_code == 404
    assert excinfo.value.errors == [{"code": "NOT_FOUND"}]


def test_client_error_is_not_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(401, json={"errors": [{"code": "UNAUTHORIZED"}]})

    with pytest.raises(SquareAPIError) as excinfo:
        _client(handler).get_payment("PAY1")

    assert len(attempts) == 1
    assert excinfo.value.status_code == 401


def test_server_error_is_retried_until_success():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"order": ORDER_JSON})

    order = _client(handler).get_order("O1")

    assert order.id == "O1"
    assert len(attempts) == 3


def test_transport_errors_exhaust_retries():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SquareAPIError):
        _client(handler).get_order("O1")

    assert len(attempts) == SquareClient.MAX_RETRIES


def test_search_orders_follows_cursor():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        if "cursor" not in body:
            return httpx.Response(200, json={"orders": [ORDER_JSON], "cursor": "page-2"})
        return httpx.Response(200, json={"orders": [dict(ORDER_JSON, id="O2")]})

    start_at = datetime(2024, 5, 1, tzinfo=timezone.utc)
    end_at = datetime(2024, 5, 1, 23, 59, 59, 999000, tzinfo=timezone.utc)
    orders = list(_client(handler).search_orders(start_at, end_at))

    assert [order.id for order in orders] == ["O1", "O2"]
    assert bodies[1]["cursor"] == "page-2"
    assert bodies[0]["location_ids"] == ["L1"]
    query_filter = bodies[0]["query"]["filter"]
    assert query_filter["state_filter"] == {"states": ["COMPLETED"]}
    assert query_filter["date_time_filter"]["closed_at"] == {
        "start_at": "2024-05-01T00:00:00.000Z",
        "end_at": "2024-05-01T23:59:59.999Z",
    }


def test_search_orders_requires_location():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    with pytest.raises(SquareAPIError):
        list(_client(handler, location_id="").search_orders(datetime.now(timezone.utc), datetime.now(timezone.utc)))


def test_list_catalog_variations_pages_through_items():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["types"] == "ITEM"
        if request.url.params.get("cursor") is None:
            return httpx.Response(
                200,
                json={
                    "objects": [
                        {
                            "type": "ITEM",
                            "item_data": {
                                "name": "Burger",
                                "variations": [
                                    {"id": "V1", "item_variation_data": {"name": "Regular", "sku": "BRG-R"}},
                                    {"id": "V1D", "item_variation_data": {"name": "Double"}},
                                ],
                            },
                        }
                    ],
                    "cursor": "next",
                },
            )
        return httpx.Response(
            200,
            json={"objects": [{"type": "ITEM", "item_data": {"name": "Fries", "variations": [{"id": "V2"}]}}]},
        )

    variations = _client(handler).list_catalog_variations()

    assert [variation.variation_id for variation in variations] == ["V1", "V1D", "V2"]
    assert variations[0].sku == "BRG-R"
    assert variations[2].item_name == "Fries"
    assert variations[2].variation_name is None


def test_format_square_timestamp_treats_naive_as_utc():
    assert format_square_timestamp(datetime(2024, 5, 1, 12, 0)) == "2024-05-01T12:00:00.000Z"
