from datetime import datetime, timezone
from decimal import Decimal

import pytest

from grill_backoffice.services import reconciliation
from grill_backoffice.services.ledger import get_on_hand
from grill_backoffice.services.reconciliation import (
    previous_day_window,
    reconcile_orders_for_range,
    reconcile_previous_day,
)
from grill_backoffice.services.webhook_processor import SquareWebhookProcessor
from grill_backoffice.square.base import SquareAPIError
from grill_backoffice.square.webhooks import parse_envelope
from tests.fixtures_data import (
    CLOSED_AT,
    WINDOW_END,
    WINDOW_START,
    FakeOrderSource,
    build_session_factory,
    ledger_rows,
    line,
    make_order,
    make_payment,
    payment_event,
    seed_item,
    seed_recipe,
)


@pytest.fixture()
def scenario():
    session_factory = build_session_factory()
    item_id = seed_item(session_factory, "Patty", on_hand="10")
    seed_recipe(session_factory, "V1", item_id, "1.0")
    source = FakeOrderSource(orders=[make_order("O1", line("V1", 1))], payments=[make_payment()])
    return session_factory, item_id, source


def _on_hand(session_factory, item_id):
    db = session_factory()
    try:
        return get_on_hand(db, item_id)
    finally:
        db.close()


def test_missing_sale_is_corrected_and_second_run_converges(scenario):
    session_factory, item_id, source = scenario

    first = reconcile_orders_for_range(session_factory, source, WINDOW_START, WINDOW_END)
    second = reconcile_orders_for_range(session_factory, source, WINDOW_START, WINDOW_END)

    assert first.to_dict() == {"processed_orders": 1, "adjustments": 1, "failed_orders": 0}
    assert second.adjustments == 0
    rows = ledger_rows(session_factory, reason="RECON")
    assert len(rows) == 1
    assert rows[0].delta == Decimal("-1")
    assert rows[0].square_order_id == "O1"
    assert rows[0].note == "Reconciliation adjustment for O1"
    assert rows[0].occurred_at.replace(tzinfo=None) == CLOSED_AT.replace(tzinfo=None)
    assert _on_hand(session_factory, item_id) == Decimal("9")


def test_order_already_applied_by_webhook_needs_no_adjustment(scenario):
    session_factory, item_id, source = scenario
    processor = SquareWebhookProcessor(order_source=source, session_factory=session_factory)
    processor.process(parse_envelope(payment_event("evt-1")))

    result = reconcile_orders_for_range(session_factory, source, WINDOW_START, WINDOW_END)

    assert result.adjustments == 0
    assert ledger_rows(session_factory, reason="RECON") == []
    assert _on_hand(session_factory, item_id) == Decimal("9")


def test_recipe_drift_is_corrected_by_difference(scenario):
    session_factory, item_id, source = scenario
    processor = SquareWebhookProcessor(order_source=source, session_factory=session_factory)
    processor.process(parse_envelope(payment_event("evt-1")))
    seed_recipe(session_factory, "V1", item_id, "1.5")

    result = reconcile_orders_for_range(session_factory, source, WINDOW_START, WINDOW_END)

    assert result.adjustments == 1
    assert ledger_rows(session_factory, reason="RECON")[0].delta == Decimal("-0.5")
    assert _on_hand(session_factory, item_id) == Decimal("8.5")


def test_orders_outside_window_are_ignored(scenario):
    session_factory, _item_id, source = scenario
    source.orders["O2"] = make_order("O2", line("V1", 1), closed_at=datetime(2024, 5, 3, tzinfo=timezone.utc))

    result = reconcile_orders_for_range(session_factory, source, WINDOW_START, WINDOW_END)

    assert result.processed_orders == 1


def test_failing_order_is_counted_and_batch_continues(scenario, monkeypatch):
    session_factory, item_id, source = scenario
    source.orders["BAD"] = make_order("BAD", line("V1", 1))
    original = reconciliation.calculate_usage_for_order

    def flaky_usage(db, order):
        if order.id == "BAD":
            raise RuntimeError("recipe lookup failed")
        return original(db, order)

    monkeypatch.setattr(reconciliation, "calculate_usage_for_order", flaky_usage)

    result = reconcile_orders_for_range(session_factory, source, WINDOW_START, WINDOW_END)

    assert result.processed_orders == 2
    assert result.failed_orders == 1
    assert result.adjustments == 1
    assert _on_hand(session_factory, item_id) == Decimal("9")


def test_order_search_failure_propagates(scenario):
    session_factory, _item_id, source = scenario
    source.search_error = SquareAPIError("Square unavailable", status_code=503)

    with pytest.raises(SquareAPIError):
        reconcile_orders_for_range(session_factory, source, WINDOW_START, WINDOW_END)


def test_previous_day_window_covers_yesterday_in_utc():
    start_at, end_at = previous_day_window(datetime(2024, 5, 2, 3, 30, tzinfo=timezone.utc))

    assert start_at == WINDOW_START
    assert end_at == WINDOW_END


def test_reconcile_previous_day_uses_yesterday_window(scenario):
    session_factory, _item_id, source = scenario

    result = reconcile_previous_day(session_factory, source, now=datetime(2024, 5, 2, 3, 30, tzinfo=timezone.utc))

    assert result.processed_orders == 1
    assert result.adjustments == 1
