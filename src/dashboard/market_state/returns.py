# src/dashboard/market_state/returns.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from src.dashboard.market_state.models import BalanceReturn

PERIODS = ("day", "month", "year")

_PCT = Decimal("0.01")


def period_start(period: str, now: datetime) -> datetime:
    """
    Start of the previous calendar period (UTC):
      day   -> 00:00 of yesterday
      month -> 1st of last month
      year  -> Jan 1st of last year
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "day":
        return midnight - timedelta(days=1)
    if period == "month":
        if midnight.month == 1:
            return midnight.replace(year=midnight.year - 1, month=12, day=1)
        return midnight.replace(month=midnight.month - 1, day=1)
    if period == "year":
        return midnight.replace(year=midnight.year - 1, month=1, day=1)
    raise ValueError(f"unknown period: {period!r} (expected one of {PERIODS})")


def compute_return(
    period: str,
    start_total: Optional[Decimal],
    end_total: Optional[Decimal],
) -> BalanceReturn:
    if start_total is None or end_total is None:
        return BalanceReturn(period, start_total, end_total, None, None)

    change = end_total - start_total
    pct: Optional[Decimal] = None
    if start_total != 0:
        pct = (change / start_total * 100).quantize(_PCT, rounding=ROUND_HALF_UP)
    return BalanceReturn(period, start_total, end_total, change, pct)
