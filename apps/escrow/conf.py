"""Escrow settings with defaults; override through settings.ESCROW."""
import datetime
from decimal import Decimal

from django.conf import settings

DEFAULTS = {
    "PLATFORM_FEE_RATE": Decimal("0.05"),
    "RELEASE_WINDOW_DAYS": 7,
    "ORDER_ACCEPT_DEADLINE_HOURS": 72,
    "DISPUTE_RESPONSE_DAYS": 3,
    "DEFAULT_CURRENCY": "KES",
    # a seller's wallet, and so every order they receive, uses their country's currency
    "COUNTRY_CURRENCY": {"KE": "KES", "UG": "UGX", "TZ": "TZS", "RW": "RWF"},
    "CURRENCY_PRECISION": {"UGX": 0, "RWF": 0, "TZS": 0},
    "WITHDRAWAL_FEE_RATE": Decimal("0.02"),
    "WITHDRAWAL_FEE_LIMITS": {
        "KES": (Decimal("10"), Decimal("500")),
        "UGX": (Decimal("300"), Decimal("15000")),
        "TZS": (Decimal("200"), Decimal("10000")),
        "RWF": (Decimal("100"), Decimal("5000")),
        "USD": (Decimal("0.10"), Decimal("5")),
    },
    "SWEEP_INTERVAL_MINUTES": 60,
}


def get_setting(name):
    overrides = getattr(settings, "ESCROW", {}) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]


def fee_rate() -> Decimal:
    return Decimal(str(get_setting("PLATFORM_FEE_RATE")))


def release_window() -> datetime.timedelta:
    return datetime.timedelta(days=int(get_setting("RELEASE_WINDOW_DAYS")))


def accept_deadline() -> datetime.timedelta:
    return datetime.timedelta(hours=int(get_setting("ORDER_ACCEPT_DEADLINE_HOURS")))


def dispute_response_window() -> datetime.timedelta:
    return datetime.timedelta(days=int(get_setting("DISPUTE_RESPONSE_DAYS")))


def currency_precision(currency: str) -> int:
    return int(get_setting("CURRENCY_PRECISION").get((currency or "").upper(), 2))


def currency_for_country(country: str) -> str:
    return get_setting("COUNTRY_CURRENCY").get((country or "").upper(), get_setting("DEFAULT_CURRENCY"))
