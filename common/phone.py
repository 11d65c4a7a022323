# common/phone.py
import re
from typing import Optional

import phonenumbers
from django.conf import settings


def default_region() -> str:
    return getattr(settings, "PHONE_DEFAULT_REGION", "KE")


def normalize_local_digits(s: Optional[str]) -> Optional[str]:
    if s is None:
        return None
    return re.sub(r"\D", "", s)


def to_e164(phone_raw: str, region: Optional[str] = None) -> str:
    """
    Accepts either local/national digits or already-E.164.
    Returns a strict E.164 string like '+2547xxxxxxxx' or raises ValueError.
    """
    if not phone_raw or not str(phone_raw).strip():
        raise ValueError("empty phone")
    raw = str(phone_raw).strip()
    try:
        if raw.startswith("+"):
            num = phonenumbers.parse(raw, None)
        else:
            num = phonenumbers.parse(normalize_local_digits(raw), region or default_region())
    except phonenumbers.NumberParseException as exc:
        raise ValueError(str(exc)) from exc
    if not phonenumbers.is_possible_number(num) or not phonenumbers.is_valid_number(num):
        raise ValueError("invalid phone number")
    return phonenumbers.format_number(num, phonenumbers.PhoneNumberFormat.E164)


def normalize_phone(phone_raw: Optional[str], region: Optional[str] = None) -> Optional[str]:
    """Best-effort normalisation: E.164 when parseable, else '+' and digits only."""
    if phone_raw is None:
        return None
    phone_raw = phone_raw.strip()
    if not phone_raw:
        return ""
    try:
        return to_e164(phone_raw, region)
    except ValueError:
        if phone_raw.startswith("+"):
            return "+" + normalize_local_digits(phone_raw[1:])
        return normalize_local_digits(phone_raw)
