from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from flask import jsonify, make_response, request

from lotemap.lotes import lotes_bp
from lotemap.lotes.normalization import clean_number
from lotemap.lotes.pricing import (
    DEFAULT_INSTALLMENTS,
    DEFAULT_VALIDITY_DAYS,
    DISCOUNT_FIELDS,
    FIELD_PROMO,
    DiscountState,
    Promotion,
    build_quote,
    quick_quotes,
)
from lotemap.lotes.services import (
    export_table_csv,
    filter_lotes,
    get_storage,
    parse_filters,
    search_lotes,
    status_summary,
)
from lotemap.lotes.storage import StorageError

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _method_not_allowed(allowed: str):
    response = jsonify({"error": "Method not allowed"})
    response.status_code = 405
    response.headers["Allow"] = allowed
    return response


@lotes_bp.route("/lotes", methods=ALL_METHODS)
def list_lotes():
    if request.method != "GET":
        return _method_not_allowed("GET")
    try:
        items = get_storage().list_lotes()
    except StorageError:
        logger.exception("GET /api/lotes fallo")
        return jsonify({"error": "No se pudo leer lotes"}), 500
    return jsonify({"items": [lote.to_dict() for lote in items], "updatedAt": _iso_now()})


@lotes_bp.route("/lotes/<lote_id>", methods=ALL_METHODS)
def update_lote(lote_id: str):
    if request.method != "PUT":
        return _method_not_allowed("PUT")
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    try:
        item = get_storage().update_by_id(lote_id, payload)
    except StorageError:
        logger.exception("PUT /api/lotes/%s fallo", lote_id)
        return jsonify({"error": "No se pudo actualizar lote"}), 500
    if item is None:
        return jsonify({"error": "Lote no encontrado"}), 404
    return jsonify({"item": item.to_dict(), "savedAt": _iso_now()})


@lotes_bp.get("/lotes/resumen")
def lotes_summary():
    try:
        items = get_storage().list_lotes()
    except StorageError:
        logger.exception("Resumen de lotes fallo")
        return jsonify({"error": "No se pudo leer lotes"}), 500
    return jsonify({"total": len(items), "porEstado": status_summary(items)})


@lotes_bp.get("/lotes.csv")
def export_lotes():
    try:
        items = get_storage().list_lotes()
    except StorageError:
        logger.exception("Exportacion de lotes fallo")
        return jsonify({"error": "No se pudo leer lotes"}), 500
    rows = search_lotes(filter_lotes(items, parse_filters(request.args)), request.args.get("q", ""))
    response = make_response(export_table_csv(rows))
    response.headers["Content-Type"] = "text/csv; charset=utf-8"
    response.headers["Content-Disposition"] = f'attachment; filename="lotes_{date.today().isoformat()}.csv"'
    return response


@lotes_bp.route("/cotizacion", methods=ALL_METHODS)
def quote():
    if request.method != "POST":
        return _method_not_allowed("POST")
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}

    price = clean_number(payload.get("price")) or 0.0
    installments = clean_number(payload.get("installments"))
    installments = DEFAULT_INSTALLMENTS if installments is None else int(installments)
    annual_rate = clean_number(payload.get("annualRate")) or 0.0
    result = build_quote(price, clean_number(payload.get("downPayment")), installments, annual_rate)

    discount = DiscountState(
        regular_price=price,
        precio_promocional=clean_number(payload.get(FIELD_PROMO)),
    )
    last_edited = payload.get("lastEdited")
    if last_edited in DISCOUNT_FIELDS and last_edited in payload:
        discount.edit(last_edited, clean_number(payload.get(last_edited)))
    validity_days = clean_number(payload.get("validityDays"))
    promotion = Promotion(validity_days=DEFAULT_VALIDITY_DAYS if validity_days is None else validity_days)

    return jsonify(
        {
            "quote": result.to_dict(),
            "quickQuotes": {str(k): v for k, v in quick_quotes(price, result.down_payment).items()},
            "discount": discount.to_dict(),
            "promoExpiresAt": promotion.expires_at.isoformat() if promotion.expires_at else None,
        }
    )
