# src/dashboard/exchanges/binance/rest.py
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlencode

import requests

from src.dashboard.exchanges.binance.errors import (
    BinanceConfigError,
    BinanceConversionError,
    BinanceDecodeError,
    BinanceError,
    BinanceNetworkError,
    BinanceTimeoutError,
    classify_status,
)
from src.dashboard.exchanges.binance.models import (
    AccountInfo,
    CrossMarginAccount,
    PriceQuote,
    ValidationResult,
)

BASE_URL = "https://api.binance.com"
DEFAULT_TIMEOUT_SEC = 10.0

# margin account totals are always reported in BTC
MARGIN_BASE_ASSET = "BTC"

CENTS = Decimal("0.01")

log = logging.getLogger("dashboard.exchanges.binance.rest")


def _ts_ms() -> int:
    return int(time.time() * 1000)


def sign(secret: str | bytes, query_string: str) -> str:
    """hex(HMAC_SHA256(secret, query_string))"""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return hmac.new(secret, query_string.encode("utf-8"), hashlib.sha256).hexdigest()


def to_decimal(value: Any, what: str) -> Decimal:
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise BinanceConversionError(f"error converting {what} to a number: {value!r}") from e
    if not d.is_finite():
        raise BinanceConversionError(f"error converting {what} to a number: {value!r}")
    return d


def format_usd(value: Decimal) -> str:
    try:
        return str(value.quantize(CENTS, rounding=ROUND_HALF_UP))
    except InvalidOperation as e:
        raise BinanceConversionError(f"error converting net USD to cents: {value!r}") from e


class BinanceSpotREST:
    """
    Binance spot / cross-margin REST client (signed + public).

    No retries here: every failure is raised as a typed BinanceError and the
    caller decides whether it is worth another attempt (see ``is_transient``).
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        recv_window: int | None = None,
        quote_asset: str = "USDT",
        session: requests.Session | None = None,
    ):
        if not api_key or not api_secret:
            raise BinanceConfigError("key and secret must be set")

        self.base_url = (base_url or BASE_URL).rstrip("/")
        self.api_key = api_key
        self._api_secret = api_secret.encode("utf-8")

        self.timeout = float(timeout)
        self.recv_window = int(recv_window) if recv_window else None
        self.base_asset = MARGIN_BASE_ASSET
        self.quote_asset = quote_asset.upper()

        self.sess = session or requests.Session()

    def __repr__(self) -> str:
        return f"BinanceSpotREST(base_url={self.base_url!r}, api_key={self.api_key[:4]}***)"

    @property
    def price_symbol(self) -> str:
        return f"{self.base_asset}{self.quote_asset}"

    def close(self) -> None:
        self.sess.close()

    # ---------------------------------------------------------------------
    # SIGN
    # ---------------------------------------------------------------------

    def _signed_query(self, params: dict[str, Any] | None = None) -> str:
        """
        Returns "<query>&signature=<hex>". The query string is encoded once and the
        very same text is both signed and sent.
        """
        p: dict[str, Any] = dict(params or {})
        if self.recv_window:
            p["recvWindow"] = self.recv_window
        p["timestamp"] = _ts_ms()

        qs = urlencode(p)
        return f"{qs}&signature={sign(self._api_secret, qs)}"

    # ---------------------------------------------------------------------
    # CORE REQUEST
    # ---------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        signed: bool = False,
    ) -> Any:
        headers: dict[str, str] = {}
        if signed:
            query = self._signed_query(params)
            headers["X-MBX-APIKEY"] = self.api_key
        else:
            query = urlencode(params or {})

        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"

        try:
            r = self.sess.request(method, url, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise BinanceTimeoutError(f"{method} {path}: no response within {self.timeout:.0f}s") from e
        except requests.RequestException as e:
            raise BinanceNetworkError(f"{method} {path}: error sending the request: {e}") from e

        err = classify_status(r.status_code, r.text)
        if err is not None:
            log.warning("Binance HTTP %d %s %s (%s)", r.status_code, method, path, err.kind)
            raise err

        try:
            return r.json()
        except ValueError as e:
            raise BinanceDecodeError(f"{method} {path}: error decoding the response: {e}") from e

    def _get(self, path: str, *, params: dict[str, Any] | None = None, signed: bool = False) -> Any:
        return self._request("GET", path, params=params, signed=signed)

    # ---------------------------------------------------------------------
    # API METHODS
    # ---------------------------------------------------------------------

    def get_price(self, symbol: str) -> PriceQuote:
        return PriceQuote.from_payload(self._get("/api/v3/ticker/price", params={"symbol": symbol}))

    def get_account_info(self) -> AccountInfo:
        return AccountInfo.from_payload(self._get("/api/v3/account", signed=True))

    def get_margin_account_info(self) -> CrossMarginAccount:
        """
        Cross-margin account with ``total_net_asset_of_usdt`` filled in from a live
        <BASE><QUOTE> price fetched right after the account call.
        """
        acc = CrossMarginAccount.from_payload(self._get("/sapi/v1/margin/account", signed=True))

        total_asset = to_decimal(acc.total_asset_of_btc, "totalAssetOfBtc")
        total_liability = to_decimal(acc.total_liability_of_btc, "totalLiabilityOfBtc")

        # one quote for both legs so asset and liability are valued at the same price
        price = self.get_price(self.price_symbol)
        asset_usd = self.base_to_quote(total_asset, price.price)
        liability_usd = self.base_to_quote(total_liability, price.price)

        acc.total_net_asset_of_usdt = format_usd(asset_usd - liability_usd)
        return acc

    def base_to_quote(self, amount: Any, price: Any | None = None) -> Decimal:
        """Value a base-asset amount in the quote asset; fetches a live price when none is given."""
        amt = to_decimal(amount, f"{self.base_asset} amount")
        if price is None:
            price = self.get_price(self.price_symbol).price
        return amt * to_decimal(price, f"{self.price_symbol} price")

    def validate_account(self) -> ValidationResult:
        res = ValidationResult()

        try:
            self.get_account_info()
        except BinanceError as e:
            res.error_message = f"Spot API failed: {e}"
            return res

        res.is_valid = True
        res.spot_enabled = True

        try:
            self.get_margin_account_info()
            res.margin_enabled = True
        except BinanceError as e:
            log.info("margin check failed for %r: %s", self, e)
            res.margin_enabled = False

        return res
