# src/dashboard/exchanges/binance/errors.py
from __future__ import annotations


class BinanceError(Exception):
    """Base class for everything the Binance client raises."""

    kind: str = "binance"
    is_transient: bool = False


# -------------------------
# configuration
# -------------------------
class BinanceConfigError(BinanceError):
    kind = "config"


# -------------------------
# transport
# -------------------------
class BinanceNetworkError(BinanceError):
    kind = "network"
    is_transient = True


class BinanceTimeoutError(BinanceNetworkError):
    kind = "timeout"


# -------------------------
# HTTP status
# -------------------------
class BinanceAPIError(BinanceError):
    kind = "api"

    def __init__(self, status_code: int, body: str = "", message: str | None = None):
        self.status_code = int(status_code)
        self.body = body or ""
        super().__init__(message or f"API error {self.status_code}: {self.body}")

    @property
    def is_transient(self) -> bool:  # type: ignore[override]
        return self.status_code >= 500


class BinanceUnauthorizedError(BinanceAPIError):
    kind = "unauthorized"

    def __init__(self, body: str = ""):
        super().__init__(401, body, "unauthorized - check your API key")


class BinanceForbiddenError(BinanceAPIError):
    kind = "forbidden"

    def __init__(self, body: str = ""):
        super().__init__(403, body, "forbidden - check your API permissions")


class BinanceRateLimitError(BinanceAPIError):
    kind = "rate_limited"

    def __init__(self, body: str = ""):
        super().__init__(429, body, "rate limit exceeded")

    @property
    def is_transient(self) -> bool:  # type: ignore[override]
        return True


# -------------------------
# payload
# -------------------------
class BinanceDecodeError(BinanceError):
    kind = "decode"


class BinanceConversionError(BinanceError):
    kind = "conversion"


def classify_status(status_code: int, body: str) -> BinanceAPIError | None:
    """Map a non-200 HTTP status to the matching error, None for 200."""
    if status_code == 200:
        return None
    if status_code == 401:
        return BinanceUnauthorizedError(body)
    if status_code == 403:
        return BinanceForbiddenError(body)
    if status_code == 429:
        return BinanceRateLimitError(body)
    return BinanceAPIError(status_code, body)


def error_kind(exc: BaseException) -> str:
    return getattr(exc, "kind", None) or type(exc).__name__
