from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Iterator

import httpx

from grill_backoffice.core.config import (
    SQUARE_ACCESS_TOKEN,
    SQUARE_API_VERSION,
    SQUARE_ENVIRONMENT,
    SQUARE_LOCATION_ID,
    SQUARE_TIMEOUT_SECONDS,
)
from grill_backoffice.square.base import (
    CatalogVariationInfo,
    OrderSearchPage,
    SquareAPIError,
    SquareNotFoundError,
    SquareOrder,
    SquarePayment,
    SquareRefund,
)

logger = logging.getLogger(__name__)

BASE_URLS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}


def format_square_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SquareClient:
    """Thin client over the Square REST API for the calls the inventory core needs.

    Transport failures and 5xx answers are retried up to ``MAX_RETRIES`` times;
    4xx answers fail immediately.
    """

    MAX_RETRIES = 3
    SEARCH_PAGE_LIMIT = 500

    def __init__(
        self,
        *,
        access_token: str = SQUARE_ACCESS_TOKEN,
        environment: str = SQUARE_ENVIRONMENT,
        location_id: str = SQUARE_LOCATION_ID,
        api_version: str = SQUARE_API_VERSION,
        timeout: float = SQUARE_TIMEOUT_SECONDS,
        http_client: httpx.Client | None = None,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        if not access_token:
            logger.warning("SQUARE_ACCESS_TOKEN is not set; Square API calls will fail until it is provided")
        self.location_id = location_id
        self.retry_backoff_seconds = retry_backoff_seconds
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Square-Version": api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._client = http_client or httpx.Client(
            base_url=BASE_URLS.get(environment, BASE_URLS["sandbox"]),
            timeout=timeout,
        )
        logger.info("Square client initialized environment=%s location_id=%s", environment, location_id or "-")

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SquareClient":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()

    def get_order(self, order_id: str) -> SquareOrder:
        if not order_id:
            raise ValueError("Order ID is required")
        data = self._request("GET", f"/v2/orders/{order_id}")
        return SquareOrder.from_api(data["order"])

    def get_payment(self, payment_id: str) -> SquarePayment:
        if not payment_id:
            raise ValueError("Payment ID is required")
        data = self._request("GET", f"/v2/payments/{payment_id}")
        return SquarePayment.from_api(data["payment"])

    def get_refund(self, refund_id: str) -> SquareRefund:
        if not refund_id:
            raise ValueError("Refund ID is required")
        data = self._request("GET", f"/v2/refunds/{refund_id}")
        return SquareRefund.from_api(data["refund"])

    def search_orders(self, start_at: datetime, end_at: datetime) -> Iterator[SquareOrder]:
        """Yields every COMPLETED order closed inside ``[start_at, end_at]``."""
        cursor: str | None = None
        while True:
            page = self._search_orders_page(start_at, end_at, cursor)
            yield from page.orders
            cursor = page.cursor
            if not cursor:
                break

    def list_catalog_variations(self) -> list[CatalogVariationInfo]:
        variations: list[CatalogVariationInfo] = []
        cursor: str | None = None
        while True:
            params = {"types": "ITEM"}
            if cursor:
                params["cursor"] = cursor
            data = self._request("GET", "/v2/catalog/list", params=params)

            for obj in data.get("objects") or []:
                if obj.get("type") != "ITEM":
                    continue
                item_data = obj.get("item_data") or {}
                for variation in item_data.get("variations") or []:
                    variation_data = variation.get("item_variation_data") or {}
                    variations.append(
                        CatalogVariationInfo(
                            variation_id=variation["id"],
                            item_name=item_data.get("name"),
                            variation_name=variation_data.get("name"),
                            sku=variation_data.get("sku"),
                        )
                    )

            cursor = data.get("cursor")
            if not cursor:
                break
        return variations

    def _search_orders_page(self, start_at: datetime, end_at: datetime, cursor: str | None) -> OrderSearchPage:
        if not self.location_id:
            raise SquareAPIError("No Square location configured. Set SQUARE_LOCATION_ID in your environment.")

        body: dict[str, Any] = {
            "location_ids": [self.location_id],
            "query": {
                "filter": {
                    "date_time_filter": {
                        "closed_at": {
                            "start_at": format_square_timestamp(start_at),
                            "end_at": format_square_timestamp(end_at),
                        }
                    },
                    "state_filter": {"states": ["COMPLETED"]},
                },
                "sort": {"sort_field": "CLOSED_AT", "sort_order": "ASC"},
            },
            "limit": self.SEARCH_PAGE_LIMIT,
            "return_entries": False,
        }
        if cursor:
            body["cursor"] = cursor

        data = self._request("POST", "/v2/orders/search", json_body=body)
        return OrderSearchPage(
            orders=[SquareOrder.from_api(order) for order in data.get("orders") or []],
            cursor=data.get("cursor") or None,
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        last_error: Exception | None = None

        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                response = self._client.request(method, path, params=params, json=json_body, headers=self._headers)
            except httpx.TransportError as exc:
                last_error = SquareAPIError(f"Square request failed: {exc}")
                logger.warning("Square transport error method=%s path=%s attempt=%s", method, path, attempt)
            else:
                if 200 <= response.status_code < 300:
                    try:
                        return response.json()
                    except json.JSONDecodeError as exc:
                        raise SquareAPIError("Square returned a non-JSON body", status_code=response.status_code) from exc

                errors = _extract_errors(response)
                message = f"Square {method} {path} failed with {response.status_code}"
                if response.status_code == 404:
                    raise SquareNotFoundError(message, status_code=404, errors=errors)
                if response.status_code < 500:
                    raise SquareAPIError(message, status_code=response.status_code, errors=errors)

                last_error = SquareAPIError(message, status_code=response.status_code, errors=errors)
                logger.warning(
                    "Square server error method=%s path=%s status=%s attempt=%s",
                    method,
                    path,
                    response.status_code,
                    attempt,
                )

            if attempt < self.MAX_RETRIES and self.retry_backoff_seconds > 0:
                time.sleep(self.retry_backoff_seconds * (2 ** (attempt - 1)))

        raise last_error or SquareAPIError(f"Square {method} {path} failed")


def _extract_errors(response: httpx.Response) -> list[dict]:
    try:
        body = response.json()
    except json.JSONDecodeError:
        return []
    errors = body.get("errors") if isinstance(body, dict) else None
    return errors if isinstance(errors, list) else []
