from datetime import date, datetime, timedelta, timezone

import pytest

from storefront.services.transaction_service import (
    TransactionFilter,
    TransactionService,
    payment_mode_label,
)


@pytest.fixture
def transactions(db_session):
    return TransactionService(db_session)


@pytest.fixture
def history(customer, products, place_order):
    cod = place_order(customer, [(products[0], 1)])
    card = place_order(customer, [(products[1], 1)], payment_method="credit_card")
    return cod, card


def test_payment_mode_labels():
    assert payment_mode_label("cod") == "Cash on Delivery"
    assert payment_mode_label("upi") == "UPI"
    assert payment_mode_label("gift_card") == "Gift Card"
    assert payment_mode_label(None) == "Unknown"


def test_filter_from_args_validates_input():
    filters = TransactionFilter.from_args({"status": "Completed", "date_from": "2024-05-01"})
    assert filters.status == "completed"
    assert filters.date_from == date(2024, 5, 1)
    assert filters.payment_mode == "all"

    with pytest.raises(ValueError):
        TransactionFilter.from_args({"status": "stolen"})
    with pytest.raises(ValueError):
        TransactionFilter.from_args({"date_to": "yesterday"})


def test_list_filters_by_mode_and_status(transactions, customer, history):
    cod, card = history
    assert len(transactions.list_transactions(customer.id)) == 2

    by_mode = transactions.list_transactions(customer.id, TransactionFilter(payment_mode="cod"))
    assert [t.order_id for t in by_mode] == [cod.id]

    by_status = transactions.list_transactions(customer.id, TransactionFilter(status="completed"))
    assert [t.order_id for t in by_status] == [card.id]


def test_date_range_includes_the_whole_last_day(transactions, customer, history):
    today = datetime.now(timezone.utc).date()
    assert len(transactions.list_transactions(customer.id, TransactionFilter(date_from=today, date_to=today))) == 2
    tomorrow = today + timedelta(days=1)
    assert transactions.list_transactions(customer.id, TransactionFilter(date_from=tomorrow)) == []


def test_other_users_see_nothing(transactions, other_customer, history):
    assert transactions.list_transactions(other_customer.id) == []
    assert transactions.get_transaction(transactions.list_transactions()[0].id, other_customer.id) is None


def test_stats_count_only_completed_spend(transactions, customer, history):
    stats = transactions.stats(customer.id)
    # 12999 + 18% tax, free shipping
    assert stats.total_spent == pytest.approx(15338.82)
    assert stats.completed_count == 1
    assert stats.pending_count == 1
    assert stats.total_transactions == 2


def test_receipt_text(transactions, customer, history):
    _, card = history
    [transaction] = transactions.list_transactions(customer.id, TransactionFilter(status="completed"))
    receipt = transactions.receipt_text(transaction)
    assert f"Order ID: {card.id}" in receipt
    assert "Payment Method: Credit Card" in receipt
    assert "Total: ₹15338.82" in receipt
    assert "Status: COMPLETED" in receipt


def test_csv_export(transactions, customer, history):
    lines = transactions.export_csv(customer.id).strip().split("\n")
    assert lines[0] == "Order ID,Date,Payment Mode,Amount,Status"
    assert len(lines) == 3
    assert any(line.endswith("Cash on Delivery,₹635.00,pending") for line in lines[1:])


def test_report_summarises_history(transactions, customer, history):
    report = transactions.export_report(customer.id, now=datetime(2024, 6, 1, tzinfo=timezone.utc))
    assert report.startswith("TRANSACTION HISTORY REPORT")
    assert "Generated: 01/06/2024" in report
    assert "- Total Transactions: 2" in report
    assert "- Completed: 1" in report
    assert "- Pending: 1" in report
