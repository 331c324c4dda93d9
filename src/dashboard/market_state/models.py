# src/dashboard/market_state/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional


@dataclass(slots=True, frozen=True)
class ExchangeAccount:
    id: int
    user_id: int
    name: str
    api_key: str = field(repr=False)
    api_secret: str = field(repr=False)
    base_url: Optional[str] = None
    is_active: bool = True


@dataclass(slots=True, frozen=True)
class BalanceSnapshot:
    id: int
    account_id: int
    total_balance_usd: Decimal
    recorded_at: datetime

    def to_message(self) -> str:
        return f"{self.id} {self.account_id} {self.total_balance_usd} {self.recorded_at.isoformat()}"


@dataclass(slots=True, frozen=True)
class AccountFailure:
    account_id: Optional[int]
    account_name: str
    kind: str
    message: str


@dataclass(slots=True)
class PassResult:
    tick_at: datetime
    snapshots: List[BalanceSnapshot] = field(default_factory=list)
    failures: List[AccountFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(slots=True, frozen=True)
class BalanceReturn:
    period: str
    start_total: Optional[Decimal]
    end_total: Optional[Decimal]
    change: Optional[Decimal]
    change_pct: Optional[Decimal]

    def to_dict(self) -> dict:
        def s(v: Optional[Decimal]) -> Optional[str]:
            return None if v is None else str(v)

        return {
            "period": self.period,
            "start_total": s(self.start_total),
            "end_total": s(self.end_total),
            "change": s(self.change),
            "change_pct": s(self.change_pct),
        }
