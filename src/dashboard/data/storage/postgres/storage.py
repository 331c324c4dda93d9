# src/dashboard/data/storage/postgres/storage.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from psycopg_pool import ConnectionPool

from src.dashboard.data.storage.base import Storage
from src.dashboard.market_state.models import BalanceSnapshot, ExchangeAccount

logger = logging.getLogger("dashboard.data.storage.postgres")


DDL = (
    """
    CREATE TABLE IF NOT EXISTS users (
      id         SERIAL PRIMARY KEY,
      email      TEXT NOT NULL UNIQUE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS binance_accounts (
      id         SERIAL PRIMARY KEY,
      user_id    INT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      name       TEXT NOT NULL,
      api_key    TEXT NOT NULL,
      api_secret TEXT NOT NULL,
      base_url   TEXT,
      is_active  BOOLEAN NOT NULL DEFAULT TRUE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      UNIQUE (user_id, name)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS balance_records (
      id                 BIGSERIAL PRIMARY KEY,
      binance_account_id INT NOT NULL REFERENCES binance_accounts(id) ON DELETE CASCADE,
      total_balance_usd  NUMERIC(20, 2) NOT NULL,
      recorded_at        TIMESTAMPTZ NOT NULL
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS balance_records_account_ts_idx
      ON balance_records (binance_account_id, recorded_at DESC);
    """,
)


def _row_to_account(r: dict) -> ExchangeAccount:
    return ExchangeAccount(
        id=int(r["id"]),
        user_id=int(r["user_id"]),
        name=str(r["name"]),
        api_key=r["api_key"] or "",
        api_secret=r["api_secret"] or "",
        base_url=r.get("base_url") or None,
        is_active=bool(r["is_active"]),
    )


def _row_to_snapshot(r: dict) -> BalanceSnapshot:
    return BalanceSnapshot(
        id=int(r["id"]),
        account_id=int(r["binance_account_id"]),
        total_balance_usd=Decimal(r["total_balance_usd"]),
        recorded_at=r["recorded_at"],
    )


class PostgreSQLStorage(Storage):
    """
    PostgreSQL storage: linked Binance accounts and balance records.
    """

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    # ======================================================================
    # HELPERS
    # ======================================================================

    def _fetch_all(self, query: str, params: Any = None) -> list[dict]:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
                if not rows:
                    return []
                cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in rows]

    def _fetch_one(self, query: str, params: Any = None) -> dict | None:
        rows = self._fetch_all(query, params)
        return rows[0] if rows else None

    # ======================================================================
    # SCHEMA
    # ======================================================================

    def ensure_tables(self) -> None:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                for ddl in DDL:
                    cur.execute(ddl)
            conn.commit()
        logger.info("schema ok: users, binance_accounts, balance_records")

    # ======================================================================
    # USERS / ACCOUNTS
    # ======================================================================

    def list_user_ids(self) -> list[int]:
        rows = self._fetch_all("SELECT id FROM users ORDER BY id")
        return [int(r["id"]) for r in rows]

    def list_user_exchange_accounts(self, user_id: int, *, active_only: bool = True) -> list[ExchangeAccount]:
        query = """
            SELECT id, user_id, name, api_key, api_secret, base_url, is_active
            FROM binance_accounts
            WHERE user_id = %(uid)s
        """
        if active_only:
            query += " AND is_active"
        query += " ORDER BY id"
        return [_row_to_account(r) for r in self._fetch_all(query, {"uid": int(user_id)})]

    # ======================================================================
    # BALANCE RECORDS
    # ======================================================================

    def insert_balance_record(
        self,
        *,
        account_id: int,
        total_balance_usd: Decimal,
        recorded_at: datetime,
    ) -> BalanceSnapshot:
        query = """
            INSERT INTO balance_records (binance_account_id, total_balance_usd, recorded_at)
            VALUES (%(acc)s, %(usd)s, %(ts)s)
            RETURNING id, binance_account_id, total_balance_usd, recorded_at
        """
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, {"acc": int(account_id), "usd": total_balance_usd, "ts": recorded_at})
                row = cur.fetchone()
                cols = [d.name for d in cur.description]
            conn.commit()
        return _row_to_snapshot(dict(zip(cols, row)))

    def get_latest_balance_record(self, account_id: int) -> BalanceSnapshot | None:
        r = self._fetch_one(
            """
            SELECT id, binance_account_id, total_balance_usd, recorded_at
            FROM balance_records
            WHERE binance_account_id = %(acc)s
            ORDER BY recorded_at DESC, id DESC
            LIMIT 1
            """,
            {"acc": int(account_id)},
        )
        return _row_to_snapshot(r) if r else None

    def get_user_total_balance_at(self, user_id: int, ts: datetime) -> Decimal | None:
        r = self._fetch_one(
            """
            SELECT SUM(r.total_balance_usd) AS total
            FROM binance_accounts a
            JOIN LATERAL (
                SELECT total_balance_usd
                FROM balance_records
                WHERE binance_account_id = a.id AND recorded_at <= %(ts)s
                ORDER BY recorded_at DESC, id DESC
                LIMIT 1
            ) r ON TRUE
            WHERE a.user_id = %(uid)s
            """,
            {"uid": int(user_id), "ts": ts},
        )
        if not r or r["total"] is None:
            return None
        return Decimal(r["total"])
