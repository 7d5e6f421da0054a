from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Order, OrderStatus, Profile, Role

try:
    _LOCAL_TZ = ZoneInfo(getattr(Config, "DEFAULT_TIMEZONE", "UTC"))
except ZoneInfoNotFoundError:
    _LOCAL_TZ = timezone.utc


@dataclass(frozen=True)
class SalesWindow:
    days: int
    start: datetime
    end: datetime


def trailing_window(days: int, now: Optional[datetime] = None) -> SalesWindow:
    """The window covering the last ``days`` days up to ``now``."""
    now = as_utc(now or datetime.now(timezone.utc))
    return SalesWindow(days=days, start=now - timedelta(days=days), end=now)


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back naive; every stored timestamp is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_local_date(value: datetime) -> date:
    return as_utc(value).astimezone(_LOCAL_TZ).date()


def compute_sales_summary(
    session: Session,
    window_days: Optional[int] = None,
    chart_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, object]:
    """
    Revenue, order volume and a daily chart for the admin analytics screen.

    Cancelled orders are excluded from every figure. Customers are counted
    from profiles with the customer role, regardless of the window.
    """
    window = trailing_window(window_days or Config.ANALYTICS_WINDOW_DAYS, now)
    rows = (
        session.query(Order.total, Order.created_at)
        .filter(Order.created_at >= window.start)
        .filter(Order.status != OrderStatus.CANCELLED)
        .order_by(Order.created_at.desc())
        .all()
    )
    totals = [float(row[0] or 0) for row in rows]
    total_revenue = round(sum(totals), 2)
    total_orders = len(totals)

    customer_count = (
        session.query(Profile)
        .filter(Profile.role == Role.CUSTOMER.value)
        .count()
    )

    series = build_daily_series(
        [(row[1], float(row[0] or 0)) for row in rows if row[1] is not None],
        days=chart_days or Config.ANALYTICS_CHART_DAYS,
        now=window.end,
    )

    return {
        "total_revenue": total_revenue,
        "total_orders": total_orders,
        "total_customers": customer_count,
        "average_order_value": round(total_revenue / total_orders, 2) if total_orders else 0.0,
        "series": series,
    }


def build_daily_series(
    points: List[tuple],
    days: int,
    now: Optional[datetime] = None,
) -> List[Dict[str, object]]:
    """Bucket (timestamp, amount) pairs into one entry per day, oldest first."""
    now = as_utc(now or datetime.now(timezone.utc))
    revenue: Dict[date, float] = defaultdict(float)
    counts: Dict[date, int] = defaultdict(int)
    for timestamp, amount in points:
        day = _to_local_date(timestamp)
        revenue[day] += amount
        counts[day] += 1

    today = _to_local_date(now)
    series: List[Dict[str, object]] = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        series.append({
            "date": day.isoformat(),
            "label": day.strftime("%b %d"),
            "revenue": round(revenue.get(day, 0.0), 2),
            "orders": counts.get(day, 0),
        })
    return series


__all__ = [
    "SalesWindow",
    "as_utc",
    "trailing_window",
    "compute_sales_summary",
    "build_daily_series",
]
