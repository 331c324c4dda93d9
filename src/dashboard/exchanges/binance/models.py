# src/dashboard/exchanges/binance/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List

from src.dashboard.exchanges.binance.errors import BinanceDecodeError


def _require_mapping(payload: Any, what: str) -> dict:
    if not isinstance(payload, dict):
        raise BinanceDecodeError(f"unexpected {what} payload: {type(payload).__name__}")
    return payload


def _str_field(payload: dict, key: str, what: str, default: str | None = None) -> str:
    v = payload.get(key, default)
    if v is None:
        raise BinanceDecodeError(f"{what}: missing field {key!r}")
    return str(v)


@dataclass(slots=True, frozen=True)
class PriceQuote:
    symbol: str
    price: str  # decimal string as returned by the exchange

    @classmethod
    def from_payload(cls, payload: Any) -> "PriceQuote":
        p = _require_mapping(payload, "ticker price")
        return cls(symbol=_str_field(p, "symbol", "ticker price"), price=_str_field(p, "price", "ticker price"))


@dataclass(slots=True, frozen=True)
class Balance:
    asset: str
    free: str
    locked: str


@dataclass(slots=True)
class AccountInfo:
    balances: List[Balance] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "AccountInfo":
        p = _require_mapping(payload, "account")
        raw = p.get("balances") or []
        if not isinstance(raw, list):
            raise BinanceDecodeError("account: 'balances' is not a list")
        out: List[Balance] = []
        for b in raw:
            b = _require_mapping(b, "balance")
            out.append(
                Balance(
                    asset=_str_field(b, "asset", "balance"),
                    free=_str_field(b, "free", "balance", "0"),
                    locked=_str_field(b, "locked", "balance", "0"),
                )
            )
        return cls(balances=out)


@dataclass(slots=True, frozen=True)
class CrossMarginAsset:
    asset: str
    borrowed: str
    free: str
    interest: str
    locked: str
    net_asset: str


@dataclass(slots=True)
class CrossMarginAccount:
    borrow_enabled: bool
    margin_level: str
    total_asset_of_btc: str
    total_liability_of_btc: str
    total_net_asset_of_btc: str
    trade_enabled: bool
    transfer_enabled: bool
    user_assets: List[CrossMarginAsset] = field(default_factory=list)
    # filled by the client after the live price conversion
    total_net_asset_of_usdt: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "CrossMarginAccount":
        what = "margin account"
        p = _require_mapping(payload, what)
        assets: List[CrossMarginAsset] = []
        for a in p.get("userAssets") or []:
            a = _require_mapping(a, "margin asset")
            assets.append(
                CrossMarginAsset(
                    asset=_str_field(a, "asset", "margin asset"),
                    borrowed=_str_field(a, "borrowed", "margin asset", "0"),
                    free=_str_field(a, "free", "margin asset", "0"),
                    interest=_str_field(a, "interest", "margin asset", "0"),
                    locked=_str_field(a, "locked", "margin asset", "0"),
                    net_asset=_str_field(a, "netAsset", "margin asset", "0"),
                )
            )
        return cls(
            borrow_enabled=bool(p.get("borrowEnabled", False)),
            margin_level=str(p.get("marginLevel", "")),
            total_asset_of_btc=_str_field(p, "totalAssetOfBtc", what),
            total_liability_of_btc=_str_field(p, "totalLiabilityOfBtc", what),
            total_net_asset_of_btc=_str_field(p, "totalNetAssetOfBtc", what, ""),
            trade_enabled=bool(p.get("tradeEnabled", False)),
            transfer_enabled=bool(p.get("transferEnabled", False)),
            user_assets=assets,
        )


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool = False
    spot_enabled: bool = False
    margin_enabled: bool = False
    error_message: str = ""

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "spot_enabled": self.spot_enabled,
            "margin_enabled": self.margin_enabled,
            "error_message": self.error_message,
        }
