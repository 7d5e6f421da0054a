from __future__ import annotations

import csv
import io
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from storefront.models import PaymentMode, Transaction, TransactionStatus
from storefront.services.pricing_service import format_price

PAYMENT_MODE_LABELS: Dict[str, str] = {
    PaymentMode.CREDIT_CARD.value: "Credit Card",
    PaymentMode.DEBIT_CARD.value: "Debit Card",
    PaymentMode.UPI.value: "UPI",
    PaymentMode.COD.value: "Cash on Delivery",
    PaymentMode.NET_BANKING.value: "Net Banking",
    PaymentMode.WALLET.value: "Wallet",
    PaymentMode.SANDBOX.value: "Sandbox (Test Pay)",
}


def payment_mode_label(mode: Optional[str]) -> str:
    return PAYMENT_MODE_LABELS.get(mode or "", (mode or "Unknown").replace("_", " ").title())


def _parse_day(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class TransactionFilter:
    payment_mode: str = "all"
    status: str = "all"
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @classmethod
    def from_args(cls, args: Dict[str, Any]) -> "TransactionFilter":
        """Build from query-string style values. Raises ValueError on bad dates or status."""
        status = (args.get("status") or "all").strip().lower()
        if status != "all":
            TransactionStatus(status)
        return cls(
            payment_mode=(args.get("payment_mode") or "all").strip().lower(),
            status=status,
            date_from=_parse_day(args.get("date_from")),
            date_to=_parse_day(args.get("date_to")),
        )


@dataclass(frozen=True)
class TransactionStats:
    total_spent: float
    completed_count: int
    pending_count: int
    total_transactions: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TransactionService:
    """Payment history for shoppers and the admin transaction manager."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def list_transactions(
        self,
        user_id: Optional[str] = None,
        filters: Optional[TransactionFilter] = None,
    ) -> List[Transaction]:
        filters = filters or TransactionFilter()
        query = self.db.query(Transaction)
        if user_id is not None:
            query = query.filter(Transaction.user_id == user_id)
        if filters.payment_mode and filters.payment_mode != "all":
            query = query.filter(Transaction.payment_mode == filters.payment_mode)
        if filters.status and filters.status != "all":
            query = query.filter(Transaction.status == TransactionStatus(filters.status))
        if filters.date_from:
            query = query.filter(Transaction.timestamp >= datetime.combine(filters.date_from, time.min))
        if filters.date_to:
            # The whole of the last day counts
            query = query.filter(Transaction.timestamp <= datetime.combine(filters.date_to, time.max))
        return query.order_by(Transaction.timestamp.desc()).all()

    def get_transaction(self, transaction_id: str, user_id: Optional[str] = None) -> Optional[Transaction]:
        query = self.db.query(Transaction).filter(Transaction.id == transaction_id)
        if user_id is not None:
            query = query.filter(Transaction.user_id == user_id)
        return query.first()

    def stats(self, user_id: Optional[str] = None) -> TransactionStats:
        query = self.db.query(Transaction.amount, Transaction.status)
        if user_id is not None:
            query = query.filter(Transaction.user_id == user_id)
        rows = query.all()
        completed = [float(amount) for amount, status in rows if status == TransactionStatus.COMPLETED]
        pending = [1 for _, status in rows if status == TransactionStatus.PENDING]
        return TransactionStats(
            total_spent=round(sum(completed), 2),
            completed_count=len(completed),
            pending_count=len(pending),
            total_transactions=len(rows),
        )

    @staticmethod
    def receipt_text(transaction: Transaction) -> str:
        stamp = transaction.timestamp or datetime.now(timezone.utc)
        return "\n".join([
            "RECEIPT",
            "========",
            f"Order ID: {transaction.order_id}",
            f"Transaction: {transaction.transaction_ref or transaction.id}",
            f"Date: {stamp:%d/%m/%Y}",
            f"Payment Method: {payment_mode_label(transaction.payment_mode)}",
            f"Total: {format_price(transaction.amount)}",
            f"Status: {transaction.status.value.upper()}",
        ])

    def export_csv(
        self,
        user_id: Optional[str] = None,
        filters: Optional[TransactionFilter] = None,
    ) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["Order ID", "Date", "Payment Mode", "Amount", "Status"])
        for transaction in self.list_transactions(user_id, filters):
            writer.writerow([
                transaction.order_id,
                f"{transaction.timestamp:%Y-%m-%d}" if transaction.timestamp else "",
                payment_mode_label(transaction.payment_mode),
                format_price(transaction.amount),
                transaction.status.value,
            ])
        return buffer.getvalue()

    def export_report(
        self,
        user_id: Optional[str] = None,
        filters: Optional[TransactionFilter] = None,
        now: Optional[datetime] = None,
    ) -> str:
        transactions = self.list_transactions(user_id, filters)
        stats = self.stats(user_id)
        generated = now or datetime.now(timezone.utc)
        lines = [
            "TRANSACTION HISTORY REPORT",
            "==========================",
            f"Generated: {generated:%d/%m/%Y}",
            "",
            "Summary:",
            f"- Total Transactions: {stats.total_transactions}",
            f"- Total Spent: {format_price(stats.total_spent)}",
            f"- Completed: {stats.completed_count}",
            f"- Pending: {stats.pending_count}",
            "",
            "Transactions:",
        ]
        for transaction in transactions:
            stamp = f"{transaction.timestamp:%d/%m/%Y}" if transaction.timestamp else "-"
            lines.append(
                f"  {transaction.order_id} | {stamp} | {payment_mode_label(transaction.payment_mode)}"
                f" | {format_price(transaction.amount)} | {transaction.status.value}"
            )
        return "\n".join(lines)
