"""create attendance_records

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00

"""
from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("timestamp", sa.String(length=40), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("accuracy_meters", sa.Float(), nullable=False),
        sa.Column("location_sampled_at", sa.String(length=40), nullable=False),
        sa.Column("face_detected", sa.Boolean(), nullable=False),
        sa.Column("snapshot_image", sa.Text(), nullable=True),
        sa.Column("detection_method", sa.String(length=16), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_attendance_records_type", "attendance_records", ["type"])
    op.create_index("ix_attendance_records_timestamp", "attendance_records", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_attendance_records_timestamp", table_name="attendance_records")
    op.drop_index("ix_attendance_records_type", table_name="attendance_records")
    op.drop_table("attendance_records")
