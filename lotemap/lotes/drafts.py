from __future__ import annotations

import logging
import re
from typing import Iterable, Protocol

from lotemap.lotes.client import ApiError
from lotemap.lotes.normalization import normalize_status
from lotemap.lotes.storage import Lote

logger = logging.getLogger(__name__)

DRAFT_FIELDS = ("price", "asesor", "estado", "cliente", "comentario")
_INPUT_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


def number_from_input(value: str) -> float | None:
    # Seller input accepts a decimal comma ("1200,5").
    match = _INPUT_NUMBER_RE.match(value.strip().replace(",", "."))
    return float(match.group(0)) if match else None


def price_to_input(value: float | None) -> str:
    if value is None:
        return ""
    return str(int(value)) if float(value).is_integer() else str(value)


class DraftBook:
    """Unsaved seller edits keyed by lot id."""

    def __init__(self) -> None:
        self.drafts: dict[str, dict[str, str]] = {}

    def _base(self, row: Lote) -> dict[str, str]:
        return {
            "price": price_to_input(row.price),
            "asesor": row.asesor or "",
            "estado": normalize_status(row.condicion),
            "cliente": row.cliente or "",
            "comentario": row.comentario or "",
        }

    def read_value(self, row: Lote, field: str) -> str:
        draft = self.drafts.get(row.id)
        if draft is not None:
            return draft[field]
        return self._base(row)[field]

    def write(self, row: Lote, field: str, value: str) -> None:
        if field not in DRAFT_FIELDS:
            raise ValueError(f"Campo no editable: {field}")
        draft = self.drafts.get(row.id) or self._base(row)
        self.drafts[row.id] = {**draft, field: value}

    def is_dirty(self, row: Lote) -> bool:
        draft = self.drafts.get(row.id)
        if draft is None:
            return False
        return (
            number_from_input(draft["price"]) != row.price
            or draft["asesor"] != (row.asesor or "")
            or draft["estado"] != normalize_status(row.condicion)
            or draft["cliente"] != (row.cliente or "")
            or draft["comentario"] != (row.comentario or "")
        )

    def has_pending_changes(self, rows: Iterable[Lote]) -> bool:
        return any(self.is_dirty(row) for row in rows)

    def payload(self, lote_id: str) -> dict[str, object] | None:
        draft = self.drafts.get(lote_id)
        if draft is None:
            return None
        return {
            "price": number_from_input(draft["price"]),
            "asesor": draft["asesor"],
            "estado": normalize_status(draft["estado"]),
            "cliente": draft["cliente"],
            "comentario": draft["comentario"],
        }

    def discard(self, lote_id: str) -> None:
        self.drafts.pop(lote_id, None)


class LotesApi(Protocol):
    def list_lotes(self) -> list[Lote]: ...

    def update_lote(self, lote_id: str, payload: dict[str, object]) -> Lote | None: ...


class SellerPanel:
    """Seller page state: loaded rows, drafts, and the save in flight.

    Results are applied only after the API answers; drafts are never
    written optimistically into ``rows``.
    """

    def __init__(self, api: LotesApi) -> None:
        self.api = api
        self.rows: list[Lote] = []
        self.drafts = DraftBook()
        self.saving_id: str | None = None
        self.loading = False
        self.error: str | None = None
        self.notice = ""

    def load_rows(self, keep_notice: bool = True) -> bool:
        if not keep_notice:
            self.notice = ""
        self.loading = True
        try:
            self.rows = self.api.list_lotes()
            self.error = None
            return True
        except ApiError:
            # Previously loaded rows stay usable.
            logger.exception("No se pudo cargar lotes")
            self.error = "No se pudo cargar la data del vendedor. Verifica la API."
            return False
        finally:
            self.loading = False

    def save_row(self, row: Lote) -> bool:
        if self.saving_id is not None:
            return False
        payload = self.drafts.payload(row.id)
        if payload is None:
            return False

        self.saving_id = row.id
        self.notice = ""
        try:
            item = self.api.update_lote(row.id, payload)
        except ApiError:
            logger.exception("No se pudo guardar %s", row.id)
            self.error = f"No se pudo guardar {row.id}"
            return False
        finally:
            self.saving_id = None

        if item is not None:
            self.rows = [item if current.id == row.id else current for current in self.rows]
        self.drafts.discard(row.id)
        self.notice = f"Lote {row.id} guardado"
        self.error = None
        return True
