# src/dashboard/data/storage/postgres/pool.py
from psycopg_pool import ConnectionPool


def create_pool(dsn: str, *, max_size: int = 10) -> ConnectionPool:
    # one connection per poller thread at most; pollers write one row at a time
    return ConnectionPool(
        conninfo=dsn,
        min_size=1,
        max_size=max_size,
        name="dashboard",
        open=True,
        kwargs={"autocommit": False, "prepare_threshold": 0},
    )
