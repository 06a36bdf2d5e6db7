from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from lotemap.lotes.pricing import (
    FIELD_AMOUNT,
    FIELD_PCT,
    FIELD_PROMO,
    MIN_DOWN_PAYMENT,
    DiscountState,
    Promotion,
    build_proforma,
    build_quote,
    effective_down_payment,
    flat_monthly,
    quick_quotes,
    quote_monthly,
)


def test_flat_monthly():
    assert flat_monthly(45000, 6000, 24) == pytest.approx(1625.0)
    assert flat_monthly(5000, 6000, 12) == 0.0
    assert flat_monthly(45000, 6000, 0) == 0.0
    assert flat_monthly(45000, 6000, -3) == 0.0


def test_amortized_quote_matches_annuity_formula():
    assert quote_monthly(10000, 12, 12) == pytest.approx(888.49, abs=0.01)


def test_amortized_quote_degenerates_to_flat_without_interest():
    assert quote_monthly(24000, 24, 0) == pytest.approx(1000.0)
    assert quote_monthly(24000, 24, -5) == pytest.approx(1000.0)
    assert quote_monthly(24000, 0, 10) == 0.0


@pytest.mark.parametrize("down", [0, 1, 2500, 5999.99, None])
def test_down_payment_floor(down):
    assert effective_down_payment(down) == MIN_DOWN_PAYMENT
    assert build_quote(45000, down, 24).down_payment == 6000


def test_down_payment_above_floor_is_kept():
    quote = build_quote(45000, 10000, 24)
    assert quote.down_payment == 10000
    assert quote.financed == 35000
    assert quote.monthly == pytest.approx(35000 / 24)


def test_quick_quotes_use_standard_terms():
    assert quick_quotes(42000, 6000) == {12: 3000.0, 24: 1500.0, 36: 1000.0}


@pytest.mark.parametrize("regular", [0, 1, 999.99, 45000, 123456.78])
def test_half_percentage_discount(regular):
    state = DiscountState(regular_price=regular).edit(FIELD_PCT, 50)
    assert state.precio_promocional == pytest.approx(regular * 0.5, abs=0.01)
    assert state.descuento_soles == pytest.approx(regular * 0.5, abs=0.01)
    assert state.descuento_pct == 50


@pytest.mark.parametrize("regular", [45000.01, 45000.03, 999.99, 12345.67, 0.01])
@pytest.mark.parametrize(
    ("field_name", "value"),
    [(FIELD_PCT, 50), (FIELD_PCT, 33.3), (FIELD_AMOUNT, 1234.565), (FIELD_PROMO, 777.777)],
)
def test_discount_and_promo_price_add_up_to_regular_price(regular, field_name, value):
    state = DiscountState(regular_price=regular).edit(field_name, value)
    parts = Decimal(str(state.descuento_soles)) + Decimal(str(state.precio_promocional))
    assert parts == Decimal(str(regular))


def test_odd_cent_half_split():
    state = DiscountState(regular_price=45000.03).edit(FIELD_PCT, 50)
    assert state.descuento_soles == 22500.02
    assert state.precio_promocional == 22500.01


def test_untouched_state_treats_promo_price_as_authoritative():
    state = DiscountState(regular_price=100000, descuento_soles=1, descuento_pct=99, precio_promocional=90000)
    assert state.last_edited is None
    assert state.descuento_soles == 10000
    assert state.descuento_pct == pytest.approx(10)
    assert state.precio_promocional == 90000


def test_last_touched_field_wins():
    state = DiscountState(regular_price=50000)
    state.edit(FIELD_AMOUNT, 5000)
    assert (state.descuento_pct, state.precio_promocional) == (pytest.approx(10), 45000)

    state.edit(FIELD_PCT, 20)
    assert (state.descuento_soles, state.precio_promocional) == (10000, 40000)

    state.edit(FIELD_PROMO, 47500)
    assert (state.descuento_soles, state.descuento_pct) == (2500, pytest.approx(5))

    # Re-running the cycle does not drift.
    state.reconcile()
    assert (state.descuento_soles, state.precio_promocional) == (2500, 47500)


def test_discount_values_are_clamped():
    state = DiscountState(regular_price=100000)
    state.edit(FIELD_AMOUNT, 250000)
    assert (state.descuento_soles, state.descuento_pct, state.precio_promocional) == (100000, 100, 0)

    state.edit(FIELD_PCT, 150)
    assert state.descuento_pct == 100
    assert state.precio_promocional == 0

    state.edit(FIELD_PROMO, -10)
    assert state.precio_promocional == 0
    assert state.descuento_soles == 100000

    state.edit(FIELD_AMOUNT, -5)
    assert state.descuento_soles == 0
    assert state.precio_promocional == 100000


def test_regular_price_change_recomputes_from_last_edit():
    state = DiscountState(regular_price=40000).edit(FIELD_PCT, 25)
    state.set_regular_price(80000)
    assert state.descuento_soles == 20000
    assert state.precio_promocional == 60000


def test_unknown_discount_field_is_rejected():
    with pytest.raises(ValueError):
        DiscountState(regular_price=1000).edit("descuento", 10)


def test_promotion_expiry_is_measured_from_each_edit():
    now = [datetime(2026, 10, 19, 9, 0)]
    promo = Promotion(validity_days=7, clock=lambda: now[0])
    assert promo.expires_at == datetime(2026, 10, 26, 9, 0)

    now[0] = now[0] + timedelta(days=3)
    promo.set_validity_days(7)
    assert promo.expires_at == datetime(2026, 10, 29, 9, 0)


@pytest.mark.parametrize(("days", "expected"), [(0, 1), (-4, 1), (45, 30), (15, 15), (None, 1)])
def test_promotion_window_is_clamped(days, expected):
    promo = Promotion(clock=lambda: datetime(2026, 1, 1))
    promo.set_validity_days(days)
    assert promo.validity_days == expected
    assert promo.expires_at == datetime(2026, 1, 1) + timedelta(days=expected)


def test_build_proforma():
    lote = {"id": "A-07", "areaM2": 120.5, "price": 45000.0, "condicion": "LIBRE"}
    quote = build_quote(45000, 6000, 24)
    discount = DiscountState(regular_price=45000).edit(FIELD_AMOUNT, 4500)
    promo = Promotion(validity_days=10, clock=lambda: datetime(2026, 10, 19))

    proforma = build_proforma(lote, quote, discount, promo)

    assert proforma["lote"] == {
        "id": "A-07",
        "area": "120.50 m2",
        "precio": "S/ 45,000.00",
        "estado": "LIBRE",
        "asesor": "-",
    }
    assert proforma["cotizacion"]["cuota"] == "S/ 1,625.00"
    assert proforma["cuotasRapidas"]["12 meses"] == "S/ 3,250.00"
    assert proforma["promocion"]["precioPromocional"] == "S/ 40,500.00"
    assert proforma["promocion"]["validoHasta"] == "29/10/2026"


def test_build_proforma_without_discount_has_no_promo_block():
    proforma = build_proforma({"id": "B-02"}, build_quote(52000, 8000, 12))
    assert "promocion" not in proforma
    assert proforma["cotizacion"]["inicial"] == "S/ 8,000.00"
