# backend/wpos/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/wpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///wpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Sale-completion engine. Frozen into SaleEngineConfig at app creation.
    SALE_MAX_RETRIES = _env_int("SALE_MAX_RETRIES", 3)
    SALE_RETRY_BASE_DELAY = _env_float("SALE_RETRY_BASE_DELAY", 0.1)
    SALE_RETRY_MAX_DELAY = _env_float("SALE_RETRY_MAX_DELAY", 2.0)
    SALE_BATCH_SIZE = _env_int("SALE_BATCH_SIZE", 100)
    SALE_LOW_STOCK_THRESHOLD = _env_int("SALE_LOW_STOCK_THRESHOLD", 5)
    SALE_PAYMENT_TOLERANCE_CENTS = _env_int("SALE_PAYMENT_TOLERANCE_CENTS", 1)
    SALE_ANALYTICS_TOP_N = _env_int("SALE_ANALYTICS_TOP_N", 10)
    SALE_ANALYTICS_INLINE = _env_bool("SALE_ANALYTICS_INLINE", True)
    SALE_TIMEOUT_SECONDS = _env_float("SALE_TIMEOUT_SECONDS", None)


@dataclass(frozen=True)
class SaleEngineConfig:
    """
    Settings for the sale-completion engine.

    Passed explicitly into the orchestrator and stock engine; nothing in the
    engine reads Flask config or a settings table on its own.
    """
    max_retries: int = 3
    retry_base_delay: float = 0.1
    retry_max_delay: float = 2.0
    batch_size: int = 100
    low_stock_threshold: int = 5
    payment_tolerance_cents: int = 1
    analytics_top_n: int = 10
    analytics_inline: bool = True
    timeout_seconds: Optional[float] = None

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.payment_tolerance_cents < 0:
            raise ValueError("payment_tolerance_cents must be non-negative")
        if self.analytics_top_n < 1:
            raise ValueError("analytics_top_n must be at least 1")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "SaleEngineConfig":
        defaults = cls()
        timeout = mapping.get("SALE_TIMEOUT_SECONDS", defaults.timeout_seconds)
        return cls(
            max_retries=int(mapping.get("SALE_MAX_RETRIES", defaults.max_retries)),
            retry_base_delay=float(mapping.get("SALE_RETRY_BASE_DELAY", defaults.retry_base_delay)),
            retry_max_delay=float(mapping.get("SALE_RETRY_MAX_DELAY", defaults.retry_max_delay)),
            batch_size=int(mapping.get("SALE_BATCH_SIZE", defaults.batch_size)),
            low_stock_threshold=int(mapping.get("SALE_LOW_STOCK_THRESHOLD", defaults.low_stock_threshold)),
            payment_tolerance_cents=int(
                mapping.get("SALE_PAYMENT_TOLERANCE_CENTS", defaults.payment_tolerance_cents)
            ),
            analytics_top_n=int(mapping.get("SALE_ANALYTICS_TOP_N", defaults.analytics_top_n)),
            analytics_inline=bool(mapping.get("SALE_ANALYTICS_INLINE", defaults.analytics_inline)),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )
