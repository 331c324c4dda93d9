# src/dashboard/data/storage/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from src.dashboard.market_state.models import BalanceSnapshot, ExchangeAccount


class Storage(ABC):
    @abstractmethod
    def ensure_tables(self) -> None: ...

    # ------------------------------------------------------------------
    # users / linked exchange accounts
    # ------------------------------------------------------------------

    @abstractmethod
    def list_user_ids(self) -> list[int]: ...

    @abstractmethod
    def list_user_exchange_accounts(self, user_id: int, *, active_only: bool = True) -> list[ExchangeAccount]: ...

    # ------------------------------------------------------------------
    # balance records
    # ------------------------------------------------------------------

    @abstractmethod
    def insert_balance_record(
        self,
        *,
        account_id: int,
        total_balance_usd: Decimal,
        recorded_at: datetime,
    ) -> BalanceSnapshot:
        """Single-row insert; returns the stored record (with its id)."""

    @abstractmethod
    def get_latest_balance_record(self, account_id: int) -> BalanceSnapshot | None: ...

    @abstractmethod
    def get_user_total_balance_at(self, user_id: int, ts: datetime) -> Decimal | None:
        """
        Sum over the user's accounts of each account's latest record at or before ts.
        None when no account has a record that old.
        """
