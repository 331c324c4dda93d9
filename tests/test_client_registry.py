# tests/test_client_registry.py
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.dashboard.exchanges.binance.errors import BinanceConfigError
from src.dashboard.exchanges.binance.rest import BinanceSpotREST
from src.dashboard.exchanges.registry import ExchangeClientRegistry
from src.dashboard.market_state.models import ExchangeAccount
from src.dashboard.services.accounts import AccountService


class CountingFactory:
    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.created = []
        self._lock = threading.Lock()

    def __call__(self, key, secret, base_url):
        time.sleep(self.delay)
        c = BinanceSpotREST(key, secret, base_url)
        with self._lock:
            self.created.append(c)
        return c


def _account(acc_id: int, name: str) -> ExchangeAccount:
    return ExchangeAccount(id=acc_id, user_id=1, name=name, api_key=f"k{acc_id}", api_secret=f"s{acc_id}")


# ============================================================
# registry
# ============================================================

def test_get_or_create_memoizes_by_name():
    factory = CountingFactory()
    reg = ExchangeClientRegistry(factory)

    a = reg.get_or_create("main", "k", "s")
    b = reg.get_or_create("main", "other-k", "other-s")

    assert a is b
    assert len(factory.created) == 1
    assert "main" in reg and len(reg) == 1


def test_cached_client_is_returned_without_credentials():
    reg = ExchangeClientRegistry(CountingFactory())
    c = reg.get_or_create("main", "k", "s")

    assert reg.get_or_create("main", "", "") is c


def test_missing_credentials_and_no_cache_fails():
    reg = ExchangeClientRegistry(CountingFactory())

    with pytest.raises(BinanceConfigError):
        reg.get_or_create("ghost", "", "")
    assert reg.get("ghost") is None


def test_concurrent_callers_share_one_client():
    factory = CountingFactory(delay=0.01)
    reg = ExchangeClientRegistry(factory)
    got = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        got.append(reg.get_or_create("main", "k", "s"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)

    assert len(factory.created) == 1
    assert len(got) == 8 and all(c is got[0] for c in got)


def test_remove_and_clear():
    reg = ExchangeClientRegistry(CountingFactory())
    reg.get_or_create("a", "k", "s")
    reg.get_or_create("b", "k", "s")

    assert reg.remove("a") is True
    assert reg.remove("a") is False
    reg.clear()
    assert len(reg) == 0


# ============================================================
# account service
# ============================================================

def test_cache_user_clients(storage_cls):
    storage = storage_cls({1: [_account(1, "main"), _account(2, "alt")]})
    svc = AccountService(storage, ExchangeClientRegistry(CountingFactory()))

    assert svc.cache_user_clients(1) == 2
    assert svc.client_for("main").api_key == "k1"
    assert svc.client_for("alt").api_key == "k2"


def test_client_for_unknown_account(storage_cls):
    svc = AccountService(storage_cls())

    with pytest.raises(BinanceConfigError):
        svc.client_for("nope")


def test_validate_credentials_rejects_empty_key(storage_cls):
    res = AccountService(storage_cls()).validate_credentials("", "secret")

    assert not res.is_valid
    assert "must be set" in res.error_message


def test_balance_returns(storage_cls):
    now = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)
    totals = {
        now: Decimal("1100"),
        datetime(2024, 3, 14, tzinfo=timezone.utc): Decimal("1000"),
        datetime(2024, 2, 1, tzinfo=timezone.utc): Decimal("2200"),
    }
    storage = storage_cls()
    storage.totals_at = lambda uid, ts: totals.get(ts)

    out = AccountService(storage).balance_returns(1, now)

    assert out["day"].change == Decimal("100")
    assert out["day"].change_pct == Decimal("10.00")
    assert out["month"].change_pct == Decimal("-50.00")
    assert out["year"].start_total is None and out["year"].change_pct is None


def test_latest_balance(storage_cls):
    storage = storage_cls({1: [_account(1, "main")]})
    svc = AccountService(storage)
    assert svc.latest_balance(1) is None

    ts = datetime(2024, 3, 15, tzinfo=timezone.utc)
    storage.insert_balance_record(account_id=1, total_balance_usd=Decimal("10.00"), recorded_at=ts)
    storage.insert_balance_record(account_id=1, total_balance_usd=Decimal("12.50"), recorded_at=ts)

    assert svc.latest_balance(1).total_balance_usd == Decimal("12.50")


def test_margin_summary_uses_the_cached_client(storage_cls, session, response_cls, margin):
    session.add("/sapi/v1/margin/account", response_cls(200, margin("1.0", "0.4")))
    session.add("/api/v3/ticker/price", response_cls(200, {"symbol": "BTCUSDT", "price": "50000.00"}))
    registry = ExchangeClientRegistry(lambda k, s, u: BinanceSpotREST(k, s, "https://binance.test", session=session))
    svc = AccountService(storage_cls({1: [_account(1, "main")]}), registry)
    svc.cache_user_clients(1)

    assert svc.margin_summary("main").total_net_asset_of_usdt == "30000.00"
    assert session.calls[0]["headers"]["X-MBX-APIKEY"] == "k1"
