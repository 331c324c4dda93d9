# tests/conftest.py
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List
from urllib.parse import parse_qsl, urlsplit

import psycopg
import pytest

from src.dashboard.data.storage.base import Storage
from src.dashboard.exchanges.binance import rest
from src.dashboard.exchanges.binance.rest import BinanceSpotREST
from src.dashboard.market_state.models import BalanceSnapshot, ExchangeAccount


FIXED_TS_MS = 1700000000000


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str | None = None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """
    Stand-in for requests.Session: responses are registered per URL path.
    A registered value may be a FakeResponse, an exception instance (raised),
    a callable(url) -> FakeResponse, or a list consumed one item per call.
    """

    def __init__(self):
        self.routes: Dict[str, Any] = {}
        self.calls: List[dict] = []
        self.closed = False

    def add(self, path: str, value: Any) -> None:
        self.routes[path] = value

    def request(self, method: str, url: str, headers=None, timeout=None):
        parts = urlsplit(url)
        self.calls.append(
            {
                "method": method,
                "url": url,
                "path": parts.path,
                "query": parts.query,
                "params": dict(parse_qsl(parts.query)),
                "headers": dict(headers or {}),
                "timeout": timeout,
            }
        )
        value = self.routes.get(parts.path)
        if value is None:
            return FakeResponse(404, text=f"no route for {parts.path}")
        if isinstance(value, list):
            value = value.pop(0)
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(url)
        return value

    def calls_to(self, path: str) -> List[dict]:
        return [c for c in self.calls if c["path"] == path]

    def close(self) -> None:
        self.closed = True


def margin_payload(asset: str = "1.0", liability: str = "0.4") -> dict:
    return {
        "borrowEnabled": True,
        "marginLevel": "2.5",
        "totalAssetOfBtc": asset,
        "totalLiabilityOfBtc": liability,
        "totalNetAssetOfBtc": "0.6",
        "tradeEnabled": True,
        "transferEnabled": True,
        "userAssets": [
            {
                "asset": "BTC",
                "borrowed": "0.4",
                "free": "1.0",
                "interest": "0.0001",
                "locked": "0",
                "netAsset": "0.5999",
            }
        ],
    }


class FakeStorage(Storage):
    def __init__(self, accounts: Dict[int, List[ExchangeAccount]] | None = None):
        self.accounts = accounts or {}
        self.records: List[BalanceSnapshot] = []
        self.fail_list = False
        self.fail_insert_for: set[int] = set()
        self.totals_at: Callable[[int, datetime], Decimal | None] = lambda uid, ts: None

    def ensure_tables(self) -> None:
        pass

    def list_user_ids(self) -> list[int]:
        return sorted(self.accounts)

    def list_user_exchange_accounts(self, user_id: int, *, active_only: bool = True) -> list[ExchangeAccount]:
        if self.fail_list:
            raise psycopg.OperationalError("db down")
        return [a for a in self.accounts.get(user_id, []) if a.is_active or not active_only]

    def insert_balance_record(self, *, account_id: int, total_balance_usd: Decimal, recorded_at: datetime) -> BalanceSnapshot:
        if account_id in self.fail_insert_for:
            raise psycopg.OperationalError(f"insert failed for {account_id}")
        snap = BalanceSnapshot(
            id=len(self.records) + 1,
            account_id=account_id,
            total_balance_usd=total_balance_usd,
            recorded_at=recorded_at,
        )
        self.records.append(snap)
        return snap

    def get_latest_balance_record(self, account_id: int) -> BalanceSnapshot | None:
        mine = [r for r in self.records if r.account_id == account_id]
        return mine[-1] if mine else None

    def get_user_total_balance_at(self, user_id: int, ts: datetime) -> Decimal | None:
        return self.totals_at(user_id, ts)


@pytest.fixture(autouse=True)
def fixed_timestamp(monkeypatch):
    monkeypatch.setattr(rest, "_ts_ms", lambda: FIXED_TS_MS)
    return FIXED_TS_MS


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(session) -> BinanceSpotREST:
    return BinanceSpotREST("test-key", "test-secret", "https://binance.test", session=session)


@pytest.fixture
def response_cls():
    return FakeResponse


@pytest.fixture
def session_cls():
    return FakeSession


@pytest.fixture
def storage_cls():
    return FakeStorage


@pytest.fixture
def margin():
    return margin_payload
