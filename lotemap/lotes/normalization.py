"""Identifier derivation and lenient field normalization for lot rows.

Every ingestion path (CSV adapter, database adapter, seed command, seller
drafts) goes through these helpers so that ids and statuses stay identical
across storage backends.
"""
from __future__ import annotations

import math
import re
from datetime import datetime

ALLOWED_STATUS = ("LIBRE", "SEPARADO", "VENDIDO")
DEFAULT_STATUS = "LIBRE"

COMMA_THOUSANDS = "thousands"
COMMA_DECIMAL = "decimal"
COMMA_MODES = (COMMA_THOUSANDS, COMMA_DECIMAL)

MONTHS = ("ene", "feb", "mar", "abr", "may", "jun", "jul", "ago", "sep", "oct", "nov", "dic")

_NON_NUMERIC_RE = re.compile(r"[^\d.,-]")
_LEADING_NUMBER_RE = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
_LEADING_INT_RE = re.compile(r"[+-]?\d+")


def to_lote_id(mz: str, lote: int | str) -> str:
    return f"{str(mz).strip().upper()}-{str(lote).strip().zfill(2)}"


def normalize_lote_id(value: str | None) -> str:
    return normalize_text(value).upper()


def normalize_status(value: str | None) -> str:
    normalized = normalize_text(value).upper()
    return normalized if normalized in ALLOWED_STATUS else DEFAULT_STATUS


def normalize_text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def optional_text(value: object) -> str | None:
    return normalize_text(value) or None


def clean_number(value: object, comma_mode: str = COMMA_THOUSANDS) -> float | None:
    """Best-effort parse of a locale formatted amount.

    ``thousands`` drops every comma (``"1,234.50"`` -> 1234.5), ``decimal``
    treats dots as grouping and the comma as the decimal point
    (``"1.234,50"`` -> 1234.5). Every character other than digits, dots,
    commas and minus signs is stripped first, so unit suffixes leak their
    digits (``"12.5 m2"`` -> 12.52). Only the leading numeric prefix of what
    remains is read, so ``"120-130"`` yields 120.0. Raises only on an unknown
    ``comma_mode``; unparsable input gives ``None``.
    """
    if comma_mode not in COMMA_MODES:
        raise ValueError(f"Modo de coma desconocido: {comma_mode}")
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    raw = _NON_NUMERIC_RE.sub("", str(value))
    if not raw:
        return None
    if comma_mode == COMMA_DECIMAL:
        if "," in raw:
            raw = raw.replace(".", "").replace(",", ".")
    else:
        raw = raw.replace(",", "")

    match = _LEADING_NUMBER_RE.match(raw)
    if not match:
        return None
    number = float(match.group(0))
    return number if math.isfinite(number) else None


def parse_lote_number(value: object) -> int | None:
    match = _LEADING_INT_RE.match(normalize_text(value))
    if not match:
        return None
    return int(match.group(0))


def current_timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now()
    month = MONTHS[now.month - 1]
    return f"{now:%d}-{month}-{now:%y} {now:%H:%M:%S}"


def format_real(value: float | None) -> str:
    if value is None or math.isnan(value):
        return ""
    return f"{value:.2f}"
