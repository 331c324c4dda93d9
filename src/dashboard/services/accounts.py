# src/dashboard/services/accounts.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict

from src.dashboard.data.storage.base import Storage
from src.dashboard.exchanges.binance.errors import BinanceConfigError
from src.dashboard.exchanges.binance.models import CrossMarginAccount, ValidationResult
from src.dashboard.exchanges.binance.rest import BinanceSpotREST
from src.dashboard.exchanges.registry import ExchangeClientRegistry
from src.dashboard.market_state.models import BalanceReturn, BalanceSnapshot
from src.dashboard.market_state.returns import PERIODS, compute_return, period_start

log = logging.getLogger("dashboard.services.accounts")


class AccountService:
    """
    What the HTTP handlers talk to: linked accounts, their cached clients and
    the balance history derived from the snapshot records.
    """

    def __init__(self, storage: Storage, clients: ExchangeClientRegistry | None = None):
        self.db = storage
        self.clients = clients or ExchangeClientRegistry()

    def cache_user_clients(self, user_id: int) -> int:
        accounts = self.db.list_user_exchange_accounts(user_id)
        for acc in accounts:
            self.clients.get_or_create(acc.name, acc.api_key, acc.api_secret, acc.base_url)
        log.info("cached %d client(s) for user=%s", len(accounts), user_id)
        return len(accounts)

    def client_for(self, name: str) -> BinanceSpotREST:
        client = self.clients.get(name)
        if client is None:
            raise BinanceConfigError(f"no client for account {name!r}; link the account first")
        return client

    def validate_credentials(self, api_key: str, api_secret: str, base_url: str | None = None) -> ValidationResult:
        try:
            client = BinanceSpotREST(api_key, api_secret, base_url)
        except BinanceConfigError as e:
            return ValidationResult(error_message=str(e))
        try:
            return client.validate_account()
        finally:
            client.close()

    def margin_summary(self, name: str) -> CrossMarginAccount:
        return self.client_for(name).get_margin_account_info()

    def balance_returns(self, user_id: int, now: datetime | None = None) -> Dict[str, BalanceReturn]:
        now = now or datetime.now(timezone.utc)
        end_total = self.db.get_user_total_balance_at(user_id, now)
        out: Dict[str, BalanceReturn] = {}
        for period in PERIODS:
            start_total = self.db.get_user_total_balance_at(user_id, period_start(period, now))
            out[period] = compute_return(period, start_total, end_total)
        return out

    def latest_balance(self, account_id: int) -> BalanceSnapshot | None:
        return self.db.get_latest_balance_record(account_id)
