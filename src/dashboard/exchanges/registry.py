# src/dashboard/exchanges/registry.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

from src.dashboard.exchanges.binance.errors import BinanceConfigError
from src.dashboard.exchanges.binance.rest import BinanceSpotREST

log = logging.getLogger("dashboard.exchanges.registry")

ClientFactory = Callable[[str, str, Optional[str]], BinanceSpotREST]


class ExchangeClientRegistry:
    """
    Memoizes one Binance client per account name.

    Reads take the lock only briefly; creation re-checks the map under the lock
    so concurrent callers for the same name end up sharing one client.
    """

    def __init__(self, factory: ClientFactory | None = None):
        self._factory: ClientFactory = factory or (lambda k, s, u: BinanceSpotREST(k, s, u))
        self._clients: Dict[str, BinanceSpotREST] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._clients

    def get(self, name: str) -> BinanceSpotREST | None:
        with self._lock:
            return self._clients.get(name)

    def get_or_create(
        self,
        name: str,
        api_key: str,
        api_secret: str,
        base_url: str | None = None,
    ) -> BinanceSpotREST:
        client = self.get(name)
        if client is not None:
            return client

        with self._lock:
            # another thread may have won the race
            client = self._clients.get(name)
            if client is not None:
                return client

            if not api_key or not api_secret:
                raise BinanceConfigError(f"no cached client for {name!r} and no credentials to create one")

            client = self._factory(api_key, api_secret, base_url)
            self._clients[name] = client
            log.info("client cached: %s", name)
            return client

    def remove(self, name: str) -> bool:
        with self._lock:
            client = self._clients.pop(name, None)
        if client is None:
            return False
        client.close()
        return True

    def clear(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for c in clients:
            c.close()
