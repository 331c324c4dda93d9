# src/dashboard/market_state/pollers/balance_poller.py
from __future__ import annotations

import logging
import queue
import random
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional

import psycopg

from src.dashboard.data.storage.base import Storage
from src.dashboard.exchanges.binance.errors import BinanceError, error_kind
from src.dashboard.exchanges.binance.rest import BinanceSpotREST
from src.dashboard.market_state.models import (
    AccountFailure,
    BalanceSnapshot,
    ExchangeAccount,
    PassResult,
)

logger = logging.getLogger("dashboard.market_state.balance_poller")

FAILURE_POLICIES = ("isolate", "fail_fast")

ClientFactory = Callable[[ExchangeAccount], BinanceSpotREST]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until_next_tick(now_ts: float, interval_sec: float = 60.0) -> float:
    """Seconds from now_ts to the next multiple of interval_sec (a full interval when exactly on one)."""
    interval = float(interval_sec)
    next_tick = (int(now_ts // interval) + 1) * interval
    return max(0.0, next_tick - now_ts)


def backoff_delay(attempt: int, *, base_sec: float, max_sec: float, rng: random.Random) -> float:
    """Exponential backoff with full jitter; attempt starts at 0."""
    return rng.uniform(0.0, min(max_sec, base_sec * (2 ** attempt)))


class PollerAborted(Exception):
    """Raised inside a pass under the fail_fast policy."""

    def __init__(self, failure: AccountFailure):
        super().__init__(f"{failure.account_name}: [{failure.kind}] {failure.message}")
        self.failure = failure


class BalanceSnapshotPoller(threading.Thread):
    """
    ONE poller per user.

    Every tick (start of each minute by default) it walks the user's linked
    Binance accounts one by one, reads the cross-margin net asset in USD,
    stores a balance record and puts a one-line description of it on ``results``.
    """

    def __init__(
        self,
        *,
        user_id: int,
        storage: Storage,
        results: "queue.Queue[str]",
        client_factory: ClientFactory | None = None,
        interval_sec: float = 60.0,
        failure_policy: str = "isolate",
        max_retries: int = 3,
        backoff_base_sec: float = 1.0,
        backoff_max_sec: float = 20.0,
        rng: random.Random | None = None,
    ):
        super().__init__(daemon=True, name=f"BalanceSnapshot-user-{user_id}")
        if failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"failure_policy must be one of {FAILURE_POLICIES}, got {failure_policy!r}")

        self.user_id = int(user_id)
        self.db = storage
        self.results = results
        self.client_factory: ClientFactory = client_factory or (
            lambda acc: BinanceSpotREST(acc.api_key, acc.api_secret, acc.base_url)
        )
        self.interval_sec = float(interval_sec)
        self.failure_policy = failure_policy
        self.max_retries = max(0, int(max_retries))
        self.backoff_base_sec = float(backoff_base_sec)
        self.backoff_max_sec = float(backoff_max_sec)
        self._rng = rng or random.Random()

        self._stop = threading.Event()
        self._last_recorded: Dict[int, datetime] = {}
        self.aborted: Optional[AccountFailure] = None

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # ------------------------------------------------------------------
    # loop
    # ------------------------------------------------------------------

    def run(self) -> None:
        logger.info("balance poller started: user=%s policy=%s", self.user_id, self.failure_policy)

        while not self._stop.is_set():
            if self._stop.wait(seconds_until_next_tick(time.time(), self.interval_sec)):
                break
            try:
                res = self.run_once()
            except PollerAborted as e:
                self.aborted = e.failure
                logger.error("balance poller stopped: user=%s %s", self.user_id, e)
                return
            logger.info(
                "tick done: user=%s snapshots=%d failures=%d",
                self.user_id,
                len(res.snapshots),
                len(res.failures),
            )

        logger.info("balance poller stopped: user=%s", self.user_id)

    # ------------------------------------------------------------------
    # one pass
    # ------------------------------------------------------------------

    def run_once(self) -> PassResult:
        res = PassResult(tick_at=_utc_now())

        try:
            accounts = self.db.list_user_exchange_accounts(self.user_id)
        except psycopg.Error as e:
            self._fail(res, AccountFailure(None, "*", "storage", f"failed to get accounts: {e}"))
            return res
        except Exception as e:
            self._fail(res, AccountFailure(None, "*", error_kind(e), f"failed to get accounts: {e!r}"))
            return res

        for acc in accounts:
            if self._stop.is_set():
                break
            try:
                snap = self._snapshot_account(acc)
            except BinanceError as e:
                self._fail(res, AccountFailure(acc.id, acc.name, error_kind(e), str(e)))
                continue
            except psycopg.Error as e:
                self._fail(res, AccountFailure(acc.id, acc.name, "storage", str(e)))
                continue
            except Exception as e:
                self._fail(res, AccountFailure(acc.id, acc.name, error_kind(e), repr(e)))
                continue
            if snap is None:
                break

            res.snapshots.append(snap)
            self.results.put(snap.to_message())

        return res

    def _fail(self, res: PassResult, failure: AccountFailure) -> None:
        res.failures.append(failure)
        if self.failure_policy == "fail_fast":
            raise PollerAborted(failure)
        logger.warning(
            "snapshot failed: user=%s account=%s kind=%s | %s",
            self.user_id,
            failure.account_name,
            failure.kind,
            failure.message,
        )

    def _snapshot_account(self, acc: ExchangeAccount) -> BalanceSnapshot | None:
        client = self.client_factory(acc)
        try:
            total_usd = self._fetch_net_usd(client, acc)
        finally:
            client.close()
        if total_usd is None:
            return None

        recorded_at = _utc_now()
        last = self._last_recorded.get(acc.id)
        if last is not None and recorded_at < last:
            recorded_at = last

        snap = self.db.insert_balance_record(
            account_id=acc.id,
            total_balance_usd=total_usd,
            recorded_at=recorded_at,
        )
        self._last_recorded[acc.id] = recorded_at
        return snap

    def _fetch_net_usd(self, client: BinanceSpotREST, acc: ExchangeAccount) -> Decimal | None:
        """Margin net asset in USD; transient errors are retried with backoff. None if stopped meanwhile."""
        attempt = 0
        while True:
            try:
                info = client.get_margin_account_info()
                return Decimal(info.total_net_asset_of_usdt)
            except BinanceError as e:
                if not e.is_transient or attempt >= self.max_retries or self.failure_policy == "fail_fast":
                    raise
                delay = backoff_delay(
                    attempt,
                    base_sec=self.backoff_base_sec,
                    max_sec=self.backoff_max_sec,
                    rng=self._rng,
                )
                attempt += 1
                logger.warning(
                    "transient error: user=%s account=%s kind=%s retry %d/%d in %.2fs | %s",
                    self.user_id,
                    acc.name,
                    e.kind,
                    attempt,
                    self.max_retries,
                    delay,
                    e,
                )
                if self._stop.wait(delay):
                    return None
