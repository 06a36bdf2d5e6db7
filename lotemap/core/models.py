from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lotemap.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoteRecord(db.Model):
    # Fila canonica de un lote (tabla compartida con la carga masiva)
    __tablename__ = "lotes"
    __table_args__ = (
        UniqueConstraint("mz", "lote", name="lotes_mz_lote_unique_idx"),
        CheckConstraint("lote > 0", name="ck_lotes_lote_positive"),
    )

    id: Mapped[str] = mapped_column(db.String(20), primary_key=True)
    mz: Mapped[str] = mapped_column(db.String(10), nullable=False)
    lote: Mapped[int] = mapped_column(nullable=False)
    area: Mapped[float | None] = mapped_column(db.Numeric(10, 2, asdecimal=False), nullable=True)
    precio: Mapped[float | None] = mapped_column(db.Numeric(12, 2, asdecimal=False), nullable=True)
    condicion: Mapped[str] = mapped_column(db.String(20), nullable=False, default="LIBRE")
    asesor: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    cliente: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    comentario: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    ultima_modificacion: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
