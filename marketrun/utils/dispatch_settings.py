from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int, *, minimum: int = 0, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except Exception:
        value = int(default)
    return max(minimum, min(value, maximum))


def _env_float(name: str, default: float, *, minimum: float = 0.0, maximum: float = 1e9) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        value = float(raw) if raw else float(default)
    except Exception:
        value = float(default)
    return max(minimum, min(value, maximum))


@dataclass(frozen=True)
class DispatchSettings:
    max_rejections: int = 5
    top_candidates: int = 4
    market_capacity: int = 3
    search_initial_radius_km: float = 5.0
    search_max_radius_km: float = 20.0
    search_radius_step_km: float = 5.0
    search_limit: int = 10
    service_fee_rate: float = 0.05
    delivery_fee: float = 500.0
    payment_expiry_minutes: int = 30
    currency: str = "NGN"


def get_dispatch_settings() -> DispatchSettings:
    """Read dispatch tunables from the environment on every call."""
    return DispatchSettings(
        max_rejections=_env_int("DISPATCH_MAX_REJECTIONS", 5, minimum=1, maximum=50),
        top_candidates=_env_int("DISPATCH_TOP_CANDIDATES", 4, minimum=1, maximum=50),
        market_capacity=_env_int("DISPATCH_MARKET_CAPACITY", 3, minimum=1, maximum=50),
        search_initial_radius_km=_env_float("DISPATCH_SEARCH_INITIAL_RADIUS_KM", 5.0, minimum=0.1, maximum=500.0),
        search_max_radius_km=_env_float("DISPATCH_SEARCH_MAX_RADIUS_KM", 20.0, minimum=0.1, maximum=500.0),
        search_radius_step_km=_env_float("DISPATCH_SEARCH_RADIUS_STEP_KM", 5.0, minimum=0.1, maximum=500.0),
        search_limit=_env_int("DISPATCH_SEARCH_LIMIT", 10, minimum=1, maximum=500),
        service_fee_rate=_env_float("SERVICE_FEE_RATE", 0.05, minimum=0.0, maximum=1.0),
        delivery_fee=_env_float("DELIVERY_FEE", 500.0, minimum=0.0),
        payment_expiry_minutes=_env_int("PAYMENT_EXPIRY_MINUTES", 30, minimum=1, maximum=7 * 24 * 60),
        currency=((os.getenv("PAYMENT_CURRENCY") or "NGN").strip().upper() or "NGN"),
    )
