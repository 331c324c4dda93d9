# src/dashboard/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from src.dashboard.exchanges.binance.rest import BASE_URL, DEFAULT_TIMEOUT_SEC

DEFAULT_CONFIG_PATH = "config/balance_snapshots.yaml"


@dataclass(frozen=True)
class SnapshotServiceConfig:
    pg_dsn: str = ""

    # binance
    base_url: str = BASE_URL
    timeout_sec: float = DEFAULT_TIMEOUT_SEC
    quote_asset: str = "USDT"

    # poller
    interval_sec: float = 60.0
    #   - "isolate"   : a failing account is logged and skipped, the rest of the tick goes on
    #   - "fail_fast" : first error stops the user's poller
    failure_policy: str = "isolate"
    max_retries: int = 3
    backoff_base_sec: float = 1.0
    backoff_max_sec: float = 20.0

    log_level: str = "INFO"


def _get_env(name: str, env: Mapping[str, str]) -> Optional[str]:
    v = env.get(name)
    if v is None:
        return None
    v = v.strip()
    return v or None


def parse_config(raw: Mapping[str, Any] | None) -> SnapshotServiceConfig:
    raw = raw or {}
    binance = raw.get("binance") or {}
    poller = raw.get("poller") or {}
    if not isinstance(binance, dict) or not isinstance(poller, dict):
        raise ValueError("'binance' and 'poller' sections must be mappings")

    d = SnapshotServiceConfig()
    cfg = SnapshotServiceConfig(
        pg_dsn=str(raw.get("pg_dsn", d.pg_dsn) or ""),
        base_url=str(binance.get("base_url", d.base_url)).strip() or d.base_url,
        timeout_sec=float(binance.get("timeout_sec", d.timeout_sec)),
        quote_asset=str(binance.get("quote_asset", d.quote_asset)).strip().upper(),
        interval_sec=float(poller.get("interval_sec", d.interval_sec)),
        failure_policy=str(poller.get("failure_policy", d.failure_policy)).strip().lower(),
        max_retries=int(poller.get("max_retries", d.max_retries)),
        backoff_base_sec=float(poller.get("backoff_base_sec", d.backoff_base_sec)),
        backoff_max_sec=float(poller.get("backoff_max_sec", d.backoff_max_sec)),
        log_level=str(raw.get("log_level", d.log_level)).strip().upper(),
    )
    _validate(cfg)
    return cfg


def _validate(cfg: SnapshotServiceConfig) -> None:
    if cfg.failure_policy not in ("isolate", "fail_fast"):
        raise ValueError(f"poller.failure_policy must be 'isolate' or 'fail_fast', got {cfg.failure_policy!r}")
    if cfg.interval_sec <= 0:
        raise ValueError("poller.interval_sec must be > 0")
    if cfg.timeout_sec <= 0:
        raise ValueError("binance.timeout_sec must be > 0")
    if cfg.max_retries < 0:
        raise ValueError("poller.max_retries must be >= 0")


def load_config(path: str | Path | None = None, env: Mapping[str, str] | None = None) -> SnapshotServiceConfig:
    """
    YAML file (optional) + environment overrides:
      SNAPSHOT_CONFIG          path of the YAML file
      PG_DSN                   postgres DSN (required in the end)
      BINANCE_BASE_URL         override binance.base_url
      SNAPSHOT_FAILURE_POLICY  override poller.failure_policy
      LOG_LEVEL
    """
    env = os.environ if env is None else env

    cfg_path = Path(path or _get_env("SNAPSHOT_CONFIG", env) or DEFAULT_CONFIG_PATH)
    raw: dict = {}
    if cfg_path.exists():
        raw = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{cfg_path}: top level must be a mapping")
    elif path is not None:
        raise FileNotFoundError(f"config not found: {cfg_path}")

    cfg = parse_config(raw)

    overrides: dict[str, Any] = {}
    if _get_env("PG_DSN", env):
        overrides["pg_dsn"] = _get_env("PG_DSN", env)
    if _get_env("BINANCE_BASE_URL", env):
        overrides["base_url"] = _get_env("BINANCE_BASE_URL", env)
    if _get_env("SNAPSHOT_FAILURE_POLICY", env):
        overrides["failure_policy"] = str(_get_env("SNAPSHOT_FAILURE_POLICY", env)).lower()
    if _get_env("LOG_LEVEL", env):
        overrides["log_level"] = str(_get_env("LOG_LEVEL", env)).upper()

    if overrides:
        cfg = replace(cfg, **overrides)
        _validate(cfg)

    if not cfg.pg_dsn:
        raise RuntimeError("PG_DSN env var (or pg_dsn in config) is required")
    return cfg
