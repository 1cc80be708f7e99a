"""Initial schema: directory, students and pickup tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="guardian"),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("photo", sa.Text(), nullable=True),
        sa.Column(
            "children_ids", postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            nullable=False, server_default=sa.text("'{}'::uuid[]"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── refresh_tokens ────────────────────────────────────────────────
    op.create_table(
        "refresh_tokens",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── students ──────────────────────────────────────────────────────
    op.create_table(
        "students",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("student_number", sa.String(50), unique=True, nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("grade", sa.String(20), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column(
            "guardian_ids", postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            nullable=False, server_default=sa.text("'{}'::uuid[]"),
        ),
        sa.Column("photo", sa.Text(), nullable=False, server_default="no-photo.jpg"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── pickup_codes ──────────────────────────────────────────────────
    op.create_table(
        "pickup_codes",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("guardian_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(64), unique=True, nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )

    # ── authorized_pickups ────────────────────────────────────────────
    op.create_table(
        "authorized_pickups",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("relationship", sa.String(50), nullable=False),
        sa.Column("phone", sa.String(40), nullable=False),
        sa.Column("code", sa.String(64), unique=True, nullable=True),
        sa.Column("code_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── pickup_logs ───────────────────────────────────────────────────
    op.create_table(
        "pickup_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("student_name", sa.String(201), nullable=False),
        sa.Column("guardian_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("authorized_pickup_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("pickup_person_name", sa.String(100), nullable=True),
        sa.Column("verified_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )

    # ── Indexes ───────────────────────────────────────────────────────
    op.create_index("ix_pickup_codes_student_id", "pickup_codes", ["student_id"])
    op.create_index("ix_authorized_pickups_student_id", "authorized_pickups", ["student_id"])
    op.create_index("ix_pickup_logs_student_id", "pickup_logs", ["student_id"])
    op.create_index("ix_pickup_logs_timestamp", "pickup_logs", ["timestamp"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index("ix_pickup_logs_timestamp", table_name="pickup_logs")
    op.drop_index("ix_pickup_logs_student_id", table_name="pickup_logs")
    op.drop_index("ix_authorized_pickups_student_id", table_name="authorized_pickups")
    op.drop_index("ix_pickup_codes_student_id", table_name="pickup_codes")
    op.drop_table("pickup_logs")
    op.drop_table("authorized_pickups")
    op.drop_table("pickup_codes")
    op.drop_table("students")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
