"""create los_data and los_thresholds"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5e1c2a7d9b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    # Older deployments created los_data by hand; only add what is missing there.
    if "los_data" in insp.get_table_names():
        cols = {c["name"] for c in insp.get_columns("los_data")}
        if "serial_number" not in cols:
            op.add_column("los_data", sa.Column("serial_number", sa.String(length=64), nullable=True))
        if "topic" not in cols:
            op.add_column("los_data", sa.Column("topic", sa.String(length=255), nullable=True))
    else:
        op.create_table(
            "los_data",
            sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
            sa.Column("LoS-Temp(c)", sa.Float(), nullable=True),
            sa.Column("LoS-Rx Light", sa.Float(), nullable=True),
            sa.Column("LoS- R2", sa.Float(), nullable=True),
            sa.Column("LoS-HeartBeat", sa.Float(), nullable=True),
            sa.Column("LoS - PPM", sa.Float(), nullable=True),
            sa.Column(
                "recorded_at",
                sa.TIMESTAMP(timezone=True),
                server_default=sa.text("CURRENT_TIMESTAMP"),
                nullable=False,
            ),
            sa.Column("serial_number", sa.String(length=64), nullable=True),
            sa.Column("topic", sa.String(length=255), nullable=True),
        )
        op.create_index(op.f("ix_los_data_recorded_at"), "los_data", ["recorded_at"], unique=False)

    op.create_index(op.f("ix_los_data_serial_number"), "los_data", ["serial_number"], unique=False)
    op.create_index(
        "ix_los_data_serial_recorded_desc",
        "los_data",
        ["serial_number", sa.text("recorded_at DESC")],
        unique=False,
    )

    op.create_table(
        "los_thresholds",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("serial_number", sa.String(length=64), nullable=True, unique=True),
        sa.Column("ppm", sa.Float(), nullable=False),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_table("los_thresholds")
    op.drop_index("ix_los_data_serial_recorded_desc", table_name="los_data")
    op.drop_index(op.f("ix_los_data_serial_number"), table_name="los_data")
    op.drop_index(op.f("ix_los_data_recorded_at"), table_name="los_data")
    op.drop_table("los_data")
