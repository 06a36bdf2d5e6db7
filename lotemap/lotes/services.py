from __future__ import annotations

import csv
import logging
from collections import Counter
from io import StringIO
from pathlib import Path
from typing import Iterable, Mapping

from flask import current_app
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from lotemap.core.extensions import db
from lotemap.core.models import LoteRecord, utcnow
from lotemap.lotes.normalization import (
    ALLOWED_STATUS,
    COMMA_THOUSANDS,
    clean_number,
    format_real,
    normalize_text,
)
from lotemap.lotes.storage import Lote, LoteStorage, StorageError, map_csv_row

logger = logging.getLogger(__name__)

ALL_STATUSES = "TODOS"
EXPORT_HEADERS = ["MZ", "LT", "AREA_M2", "ASESOR", "PRECIO", "CONDICION"]
SEED_BATCH_SIZE = 200


def get_storage() -> LoteStorage:
    return current_app.extensions["lotes_storage"]


def parse_filters(values: Mapping[str, str]) -> dict[str, object]:
    return {
        "mz": normalize_text(values.get("mz")).upper(),
        "status": (normalize_text(values.get("status")) or ALL_STATUSES).upper(),
        "price_min": clean_number(values.get("price_min") or None),
        "price_max": clean_number(values.get("price_max") or None),
        "area_min": clean_number(values.get("area_min") or None),
        "area_max": clean_number(values.get("area_max") or None),
    }


def filter_lotes(lotes: Iterable[Lote], filters: Mapping[str, object]) -> list[Lote]:
    mz = filters.get("mz") or ""
    status = filters.get("status") or ALL_STATUSES
    price_min = filters.get("price_min")
    price_max = filters.get("price_max")
    area_min = filters.get("area_min")
    area_max = filters.get("area_max")

    rows: list[Lote] = []
    for lote in lotes:
        price = lote.price or 0.0
        area = lote.area_m2 or 0.0
        if mz and lote.mz != mz:
            continue
        if status != ALL_STATUSES and lote.condicion != status:
            continue
        if price_min is not None and price < price_min:
            continue
        if price_max is not None and price > price_max:
            continue
        if area_min is not None and area < area_min:
            continue
        if area_max is not None and area > area_max:
            continue
        rows.append(lote)
    return rows


def search_lotes(lotes: Iterable[Lote], query: str) -> list[Lote]:
    term = normalize_text(query).lower()
    if not term:
        return list(lotes)
    rows: list[Lote] = []
    for lote in lotes:
        haystack = " ".join(
            [
                lote.id,
                lote.mz,
                str(lote.lote),
                "" if lote.price is None else f"{lote.price:g}",
                lote.asesor or "",
                lote.condicion,
                lote.cliente or "",
                lote.comentario or "",
            ]
        ).lower()
        if term in haystack:
            rows.append(lote)
    return rows


def status_summary(lotes: Iterable[Lote]) -> dict[str, int]:
    counts = Counter(lote.condicion for lote in lotes)
    return {status: counts.get(status, 0) for status in ALLOWED_STATUS}


def export_table_csv(lotes: Iterable[Lote]) -> bytes:
    stream = StringIO()
    writer = csv.writer(stream, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for lote in lotes:
        writer.writerow(
            [
                lote.mz,
                str(lote.lote),
                format_real(lote.area_m2),
                lote.asesor or "",
                format_real(lote.price),
                lote.condicion,
            ]
        )
    return stream.getvalue().encode("utf-8")


def read_seed_rows(path: str | Path, comma_mode: str = COMMA_THOUSANDS) -> list[dict[str, object]]:
    try:
        with open(path, encoding="utf-8-sig", newline="") as handle:
            rows = list(csv.DictReader(handle))
    except (OSError, csv.Error, UnicodeDecodeError) as exc:
        raise StorageError(f"No se pudo leer {Path(path).name}") from exc

    mapped: dict[str, dict[str, object]] = {}
    for row in rows:
        lote = map_csv_row(row, comma_mode)
        if lote is None:
            continue
        # Later rows for the same parcel replace earlier ones.
        mapped[lote.id] = {
            "id": lote.id,
            "mz": lote.mz,
            "lote": lote.lote,
            "area": lote.area_m2,
            "precio": lote.price,
            "condicion": lote.condicion,
            "asesor": lote.asesor or "",
            "cliente": lote.cliente or "",
            "comentario": lote.comentario or "",
            "ultima_modificacion": lote.ultima_modificacion or "",
        }
    return list(mapped.values())


def _upsert_statement(chunk: list[dict[str, object]]):
    dialect = db.engine.dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise StorageError(f"Upsert no soportado para {dialect}")
    stmt = insert(LoteRecord).values(chunk)
    updatable = {key: stmt.excluded[key] for key in chunk[0] if key != "id"}
    updatable["updated_at"] = utcnow()
    return stmt.on_conflict_do_update(index_elements=[LoteRecord.id], set_=updatable)


def seed_lotes_from_csv(
    path: str | Path,
    batch_size: int = SEED_BATCH_SIZE,
    comma_mode: str = COMMA_THOUSANDS,
) -> int:
    if batch_size <= 0:
        raise ValueError("El tamano de lote debe ser positivo")
    rows = read_seed_rows(path, comma_mode)
    try:
        for start in range(0, len(rows), batch_size):
            chunk = rows[start : start + batch_size]
            db.session.execute(_upsert_statement(chunk))
            db.session.commit()
            logger.info("Upsert de %s lotes (desde %s)", len(chunk), start)
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageError("Error en upsert de lotes") from exc
    return len(rows)
