from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from lotemap.core.utils import area, money

MIN_DOWN_PAYMENT = 6000.0
QUICK_TERMS = (12, 24, 36)
DEFAULT_INSTALLMENTS = 24
MIN_VALIDITY_DAYS = 1
MAX_VALIDITY_DAYS = 30
DEFAULT_VALIDITY_DAYS = 7

FIELD_AMOUNT = "descuentoSoles"
FIELD_PCT = "descuentoPct"
FIELD_PROMO = "precioPromocional"
DISCOUNT_FIELDS = (FIELD_AMOUNT, FIELD_PCT, FIELD_PROMO)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def _cents(value: float) -> float:
    return round(value, 2)


def _to_cents(value: float | None) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def flat_monthly(price: float, down_payment: float, installments: int) -> float:
    if installments <= 0:
        return 0.0
    return max(price - down_payment, 0.0) / installments


def quote_monthly(principal: float, installments: int, annual_rate: float = 0.0) -> float:
    if installments <= 0:
        return 0.0
    i = annual_rate / 12 / 100
    if i <= 0:
        return principal / installments
    growth = (1 + i) ** installments
    return principal * (i * growth) / (growth - 1)


def effective_down_payment(down_payment: float | None) -> float:
    # Below the floor the amount is raised, never rejected.
    if down_payment is None:
        return MIN_DOWN_PAYMENT
    return max(float(down_payment), MIN_DOWN_PAYMENT)


@dataclass(frozen=True)
class Quote:
    price: float
    down_payment: float
    financed: float
    installments: int
    annual_rate: float
    monthly: float

    def to_dict(self) -> dict[str, float | int]:
        return {
            "price": self.price,
            "downPayment": self.down_payment,
            "financed": self.financed,
            "installments": self.installments,
            "annualRate": self.annual_rate,
            "monthly": _cents(self.monthly),
        }


def build_quote(
    price: float,
    down_payment: float | None,
    installments: int = DEFAULT_INSTALLMENTS,
    annual_rate: float = 0.0,
) -> Quote:
    down = effective_down_payment(down_payment)
    financed = max(price - down, 0.0)
    return Quote(
        price=price,
        down_payment=down,
        financed=financed,
        installments=installments,
        annual_rate=annual_rate,
        monthly=quote_monthly(financed, installments, annual_rate),
    )


def quick_quotes(
    price: float,
    down_payment: float | None,
    terms: tuple[int, ...] = QUICK_TERMS,
) -> dict[int, float]:
    down = effective_down_payment(down_payment)
    return {months: _cents(flat_monthly(price, down, months)) for months in terms}


@dataclass
class DiscountState:
    """Three views of one promotional price, kept consistent.

    The field the seller touched last is authoritative and the other two are
    derived from it. With nothing touched yet the promotional price wins.
    """

    regular_price: float
    descuento_soles: float = 0.0
    descuento_pct: float = 0.0
    precio_promocional: float | None = None
    last_edited: str | None = None

    def __post_init__(self) -> None:
        self.regular_price = max(float(self.regular_price or 0.0), 0.0)
        if self.precio_promocional is None:
            self.precio_promocional = self.regular_price
        self.reconcile()

    def edit(self, field_name: str, value: float | None) -> "DiscountState":
        if field_name not in DISCOUNT_FIELDS:
            raise ValueError(f"Campo de descuento desconocido: {field_name}")
        amount = float(value or 0.0)
        if field_name == FIELD_AMOUNT:
            self.descuento_soles = amount
        elif field_name == FIELD_PCT:
            self.descuento_pct = amount
        else:
            self.precio_promocional = amount
        self.last_edited = field_name
        return self.reconcile()

    def set_regular_price(self, price: float) -> "DiscountState":
        self.regular_price = max(float(price or 0.0), 0.0)
        return self.reconcile()

    def reconcile(self) -> "DiscountState":
        regular = _to_cents(self.regular_price)
        source = self.last_edited or FIELD_PROMO
        if source == FIELD_AMOUNT:
            amount = _clamp(_to_cents(self.descuento_soles), ZERO, regular)
        elif source == FIELD_PCT:
            pct = _clamp(Decimal(str(self.descuento_pct)), ZERO, HUNDRED)
            amount = (regular * pct / HUNDRED).quantize(CENT)
        else:
            amount = regular - _clamp(_to_cents(self.precio_promocional), ZERO, regular)

        # Promo price derives from the rounded discount: both always sum to the regular price.
        self.regular_price = float(regular)
        self.descuento_soles = float(amount)
        self.precio_promocional = float(regular - amount)
        if source == FIELD_PCT:
            self.descuento_pct = _clamp(self.descuento_pct, 0.0, 100.0)
        else:
            self.descuento_pct = float(amount / regular * HUNDRED) if regular > 0 else 0.0
        return self

    def to_dict(self) -> dict[str, object]:
        return {
            "regularPrice": self.regular_price,
            FIELD_AMOUNT: self.descuento_soles,
            FIELD_PCT: round(self.descuento_pct, 2),
            FIELD_PROMO: self.precio_promocional,
            "lastEdited": self.last_edited,
        }


def clamp_validity_days(days: int | float | None) -> int:
    return int(_clamp(int(days or 0), MIN_VALIDITY_DAYS, MAX_VALIDITY_DAYS))


@dataclass
class Promotion:
    """Promotional window; expiry is always measured from the last edit."""

    validity_days: int = DEFAULT_VALIDITY_DAYS
    clock: Callable[[], datetime] = field(default=datetime.now, repr=False)
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        self.set_validity_days(self.validity_days)

    def set_validity_days(self, days: int | float | None) -> datetime:
        self.validity_days = clamp_validity_days(days)
        self.expires_at = self.clock() + timedelta(days=self.validity_days)
        return self.expires_at


def build_proforma(
    lote: dict[str, object],
    quote: Quote,
    discount: DiscountState | None = None,
    promotion: Promotion | None = None,
) -> dict[str, object]:
    data: dict[str, object] = {
        "lote": {
            "id": lote.get("id"),
            "area": area(lote.get("areaM2")),
            "precio": money(lote.get("price")),
            "estado": lote.get("condicion"),
            "asesor": lote.get("asesor") or "-",
        },
        "cotizacion": {
            "precio": money(quote.price),
            "inicial": money(quote.down_payment),
            "meses": quote.installments,
            "cuota": money(quote.monthly),
            "formula": "(Precio - Inicial) / Meses",
        },
        "cuotasRapidas": {
            f"{months} meses": money(amount)
            for months, amount in quick_quotes(quote.price, quote.down_payment).items()
        },
    }
    if discount is not None and discount.descuento_soles > 0:
        data["promocion"] = {
            "precioRegular": money(discount.regular_price),
            "descuento": money(discount.descuento_soles),
            "descuentoPct": f"{discount.descuento_pct:.2f}%",
            "precioPromocional": money(discount.precio_promocional),
            "validoHasta": promotion.expires_at.strftime("%d/%m/%Y")
            if promotion and promotion.expires_at
            else None,
        }
    return data
