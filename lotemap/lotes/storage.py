from __future__ import annotations

import csv
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from io import StringIO
from pathlib import Path
from typing import Callable, Mapping

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from lotemap.core.extensions import db
from lotemap.core.models import LoteRecord
from lotemap.lotes.normalization import (
    COMMA_THOUSANDS,
    clean_number,
    current_timestamp,
    format_real,
    normalize_lote_id,
    normalize_status,
    normalize_text,
    optional_text,
    parse_lote_number,
    to_lote_id,
)

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "MZ",
    "LOTE",
    "AREA",
    "PRECIO",
    "CONDICION",
    "ASESOR",
    "CLIENTE",
    "COMENTARIO",
    "ULTIMA_MODIFICACION",
)
PATCH_TEXT_FIELDS = ("asesor", "cliente", "comentario")
BACKENDS = ("csv", "db")


class StorageError(Exception):
    """The canonical dataset could not be read or written."""


@dataclass(frozen=True)
class Lote:
    id: str
    mz: str
    lote: int
    area_m2: float | None = None
    price: float | None = None
    condicion: str = "LIBRE"
    asesor: str | None = None
    cliente: str | None = None
    comentario: str | None = None
    ultima_modificacion: str | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "mz": self.mz,
            "lote": self.lote,
            "areaM2": self.area_m2,
            "price": self.price,
            "condicion": self.condicion,
        }
        for key, value in (
            ("asesor", self.asesor),
            ("cliente", self.cliente),
            ("comentario", self.comentario),
            ("ultimaModificacion", self.ultima_modificacion),
        ):
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "Lote":
        return cls(
            id=str(data["id"]),
            mz=str(data["mz"]),
            lote=int(data["lote"]),
            area_m2=clean_number(data.get("areaM2")),
            price=clean_number(data.get("price")),
            condicion=normalize_status(data.get("condicion")),
            asesor=optional_text(data.get("asesor")),
            cliente=optional_text(data.get("cliente")),
            comentario=optional_text(data.get("comentario")),
            ultima_modificacion=optional_text(data.get("ultimaModificacion")),
        )

    def with_fields(self, **fields) -> "Lote":
        return replace(self, **fields)


def sort_key(lote: Lote) -> tuple[str, int]:
    return (lote.mz, lote.lote)


def map_csv_row(row: Mapping[str, object], comma_mode: str = COMMA_THOUSANDS) -> Lote | None:
    mz = normalize_text(row.get("MZ")).upper()
    number = parse_lote_number(row.get("LOTE"))
    if not mz or number is None or number <= 0:
        return None
    return Lote(
        id=to_lote_id(mz, number),
        mz=mz,
        lote=number,
        area_m2=clean_number(row.get("AREA"), comma_mode),
        price=clean_number(row.get("PRECIO"), comma_mode),
        condicion=normalize_status(row.get("CONDICION")),
        asesor=optional_text(row.get("ASESOR")),
        cliente=optional_text(row.get("CLIENTE")),
        comentario=optional_text(row.get("COMENTARIO")),
        ultima_modificacion=optional_text(row.get("ULTIMA_MODIFICACION")),
    )


def map_record(record: LoteRecord) -> Lote:
    return Lote(
        id=record.id,
        mz=record.mz,
        lote=record.lote,
        area_m2=record.area,
        price=record.precio,
        condicion=normalize_status(record.condicion),
        asesor=record.asesor or None,
        cliente=record.cliente or None,
        comentario=record.comentario or None,
        ultima_modificacion=record.ultima_modificacion or None,
    )


class LoteStorage:
    """Common contract of the canonical lot stores."""

    def __init__(
        self,
        comma_mode: str = COMMA_THOUSANDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.comma_mode = comma_mode
        self.clock = clock or datetime.now

    def list_lotes(self) -> list[Lote]:
        raise NotImplementedError

    def update_by_id(self, lote_id: str, patch: Mapping[str, object]) -> Lote | None:
        raise NotImplementedError

    def _timestamp(self) -> str:
        return current_timestamp(self.clock())

    def _patch_values(self, patch: Mapping[str, object]) -> dict[str, object]:
        values: dict[str, object] = {}
        if "estado" in patch:
            values["condicion"] = normalize_status(patch.get("estado"))
        for field in PATCH_TEXT_FIELDS:
            if field in patch:
                values[field] = normalize_text(patch.get(field))
        if "price" in patch:
            values["precio"] = clean_number(patch.get("price"), self.comma_mode)
        values["ultima_modificacion"] = self._timestamp()
        return values


_PATH_LOCKS: dict[str, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(key, threading.Lock())


class CsvLoteStorage(LoteStorage):
    """Lot store backed by a header CSV file.

    Rewrites go through a temporary file plus ``os.replace`` under a
    per-path lock, so readers in this process never see a partial file.
    Separate processes writing the same file still race (last write wins).
    """

    def __init__(self, path: str | Path, **kwargs) -> None:
        super().__init__(**kwargs)
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    def list_lotes(self) -> list[Lote]:
        with self._lock:
            rows, _fields = self._read_state()
        # Several rows for one parcel: the last one is canonical, as in the seed.
        lotes: dict[str, Lote] = {}
        for row in rows:
            lote = map_csv_row(row, self.comma_mode)
            if lote is not None:
                lotes[lote.id] = lote
        return sorted(lotes.values(), key=sort_key)

    def update_by_id(self, lote_id: str, patch: Mapping[str, object]) -> Lote | None:
        target = normalize_lote_id(lote_id)
        with self._lock:
            rows, fields = self._read_state()
            row = next((r for r in reversed(rows) if self._row_id(r) == target), None)
            if row is None:
                return None

            values = self._patch_values(patch)
            if "condicion" in values:
                row["CONDICION"] = values["condicion"]
            for field in PATCH_TEXT_FIELDS:
                if field in values:
                    row[field.upper()] = values[field]
            if "precio" in values:
                row["PRECIO"] = format_real(values["precio"])
            row["ULTIMA_MODIFICACION"] = values["ultima_modificacion"]

            self._write_state(rows, fields)
        logger.info("Lote %s actualizado en %s", target, self.path)
        return map_csv_row(row, self.comma_mode)

    def _row_id(self, row: Mapping[str, object]) -> str | None:
        mz = normalize_text(row.get("MZ")).upper()
        number = parse_lote_number(row.get("LOTE"))
        if not mz or number is None or number <= 0:
            return None
        return to_lote_id(mz, number)

    def _read_state(self) -> tuple[list[dict[str, str]], list[str]]:
        try:
            text = self.path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"No se pudo leer {self.path.name}") from exc
        try:
            reader = csv.DictReader(StringIO(text))
            rows = [
                {key: (value or "") for key, value in row.items() if key is not None}
                for row in reader
                if any((value or "").strip() for value in row.values() if isinstance(value, str))
            ]
            fields = list(reader.fieldnames or [])
        except csv.Error as exc:
            raise StorageError(f"CSV malformado: {self.path.name}") from exc
        for column in CSV_COLUMNS:
            if column not in fields:
                fields.append(column)
        return rows, fields

    def _write_state(self, rows: list[dict[str, str]], fields: list[str]) -> None:
        stream = StringIO()
        writer = csv.DictWriter(stream, fieldnames=fields, lineterminator="\n", extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({key: row.get(key, "") for key in fields})
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(stream.getvalue())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise StorageError(f"No se pudo actualizar {self.path.name}") from exc


class DatabaseLoteStorage(LoteStorage):
    """Lot store backed by the ``lotes`` table."""

    def list_lotes(self) -> list[Lote]:
        try:
            records = db.session.scalars(
                select(LoteRecord).order_by(LoteRecord.mz.asc(), LoteRecord.lote.asc())
            ).all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError("No se pudo leer lotes desde la base de datos") from exc
        return [map_record(record) for record in records]

    def update_by_id(self, lote_id: str, patch: Mapping[str, object]) -> Lote | None:
        target = normalize_lote_id(lote_id)
        values = self._patch_values(patch)
        try:
            # Direct column patch, the row is never hydrated before writing.
            result = db.session.execute(
                update(LoteRecord)
                .where(LoteRecord.id == target)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.session.rollback()
                return None
            db.session.commit()
            record = db.session.get(LoteRecord, target, populate_existing=True)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError("No se pudo actualizar lote en la base de datos") from exc
        logger.info("Lote %s actualizado en base de datos", target)
        return map_record(record) if record else None


def build_storage(config: Mapping[str, object]) -> LoteStorage:
    backend = normalize_text(config.get("LOTES_BACKEND") or "csv").lower()
    comma_mode = str(config.get("NUMBER_COMMA_MODE") or COMMA_THOUSANDS)
    if backend == "csv":
        return CsvLoteStorage(str(config.get("LOTES_CSV_PATH")), comma_mode=comma_mode)
    if backend == "db":
        return DatabaseLoteStorage(comma_mode=comma_mode)
    raise ValueError(f"LOTES_BACKEND invalido: {backend} (usa {', '.join(BACKENDS)})")
