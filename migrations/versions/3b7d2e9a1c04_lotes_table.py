"""lotes table

Revision ID: 3b7d2e9a1c04
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3b7d2e9a1c04"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "lotes",
        sa.Column("id", sa.String(length=20), nullable=False),
        sa.Column("mz", sa.String(length=10), nullable=False),
        sa.Column("lote", sa.Integer(), nullable=False),
        sa.Column("area", sa.Numeric(10, 2), nullable=True),
        sa.Column("precio", sa.Numeric(12, 2), nullable=True),
        sa.Column("condicion", sa.String(length=20), nullable=False, server_default="LIBRE"),
        sa.Column("asesor", sa.Text(), nullable=True),
        sa.Column("cliente", sa.Text(), nullable=True),
        sa.Column("comentario", sa.Text(), nullable=True),
        sa.Column("ultima_modificacion", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("mz", "lote", name="lotes_mz_lote_unique_idx"),
        sa.CheckConstraint("lote > 0", name="ck_lotes_lote_positive"),
    )


def downgrade():
    op.drop_table("lotes")
