from __future__ import annotations


def money(value: float | int | None) -> str:
    if value is None:
        return "-"
    return f"S/ {float(value):,.2f}"


def area(value: float | None) -> str:
    if value is None:
        return "-"
    return f"{float(value):.2f} m2"
