# src/dashboard/run_balance.py
from __future__ import annotations

import logging
import queue
import signal
import threading
from typing import List

from dotenv import load_dotenv

from src.dashboard.config import SnapshotServiceConfig, load_config
from src.dashboard.data.storage.base import Storage
from src.dashboard.data.storage.postgres.pool import create_pool
from src.dashboard.data.storage.postgres.storage import PostgreSQLStorage
from src.dashboard.exchanges.binance.rest import BinanceSpotREST
from src.dashboard.market_state.models import ExchangeAccount
from src.dashboard.market_state.pollers.balance_poller import BalanceSnapshotPoller

log = logging.getLogger("dashboard.run_balance")


# =============================================================================
# Wiring
# =============================================================================

def make_client_factory(cfg: SnapshotServiceConfig):
    def factory(acc: ExchangeAccount) -> BinanceSpotREST:
        return BinanceSpotREST(
            acc.api_key,
            acc.api_secret,
            acc.base_url or cfg.base_url,
            timeout=cfg.timeout_sec,
            quote_asset=cfg.quote_asset,
        )

    return factory


def build_pollers(
    cfg: SnapshotServiceConfig,
    storage: Storage,
    results: "queue.Queue[str]",
) -> List[BalanceSnapshotPoller]:
    factory = make_client_factory(cfg)
    pollers: List[BalanceSnapshotPoller] = []
    for user_id in storage.list_user_ids():
        pollers.append(
            BalanceSnapshotPoller(
                user_id=user_id,
                storage=storage,
                results=results,
                client_factory=factory,
                interval_sec=cfg.interval_sec,
                failure_policy=cfg.failure_policy,
                max_retries=cfg.max_retries,
                backoff_base_sec=cfg.backoff_base_sec,
                backoff_max_sec=cfg.backoff_max_sec,
            )
        )
    return pollers


def consume_results(results: "queue.Queue[str]", stop: threading.Event, *, poll_sec: float = 0.5) -> int:
    """Log every result message until stop is set and the queue is empty. Returns the message count."""
    n = 0
    while True:
        try:
            msg = results.get(timeout=poll_sec)
        except queue.Empty:
            if stop.is_set():
                return n
            continue
        log.info("Got: %s", msg)
        n += 1


# =============================================================================
# Entrypoint
# =============================================================================

def main() -> None:
    load_dotenv()
    cfg = load_config()

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(threadName)s | %(message)s",
    )
    log.info("=== BALANCE SNAPSHOT SERVICE START ===")
    log.info(
        "interval=%.0fs policy=%s retries=%d base_url=%s",
        cfg.interval_sec,
        cfg.failure_policy,
        cfg.max_retries,
        cfg.base_url,
    )

    pool = create_pool(cfg.pg_dsn)
    storage = PostgreSQLStorage(pool)
    storage.ensure_tables()

    results: "queue.Queue[str]" = queue.Queue()
    stop = threading.Event()

    def _on_signal(signum, _frame):
        log.info("signal %s received, stopping...", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _on_signal)

    pollers = build_pollers(cfg, storage, results)
    log.info("Starting %d balance poller(s)", len(pollers))
    for p in pollers:
        p.start()

    try:
        consume_results(results, stop)
    except KeyboardInterrupt:
        log.info("Stopping...")
    finally:
        for p in pollers:
            p.stop()
        for p in pollers:
            p.join(timeout=cfg.timeout_sec + 5.0)
        # anything produced while shutting down
        while not results.empty():
            log.info("Got: %s", results.get_nowait())
        pool.close()
        log.info("=== BALANCE SNAPSHOT SERVICE STOPPED ===")


if __name__ == "__main__":
    main()
