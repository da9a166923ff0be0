"""Initial schema: users, vehicles, service requests and their ledgers

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = sa.dialects.postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    # Users (minimal actor profile)
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("full_name", sa.String(150), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_role", "users", ["role"])

    # Vehicles
    op.create_table(
        "vehicles",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("customer_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("make", sa.String(100), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("license_plate", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_vehicles_customer_id", "vehicles", ["customer_id"])

    # Service requests (aggregate root)
    op.create_table(
        "service_requests",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("customer_id", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("vehicle_id", UUID, sa.ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("service_type", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("preferred_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("assigned_mechanic_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("estimated_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("down_payment", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_method", sa.String(20), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("mechanic_notes", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("estimated_cost IS NULL OR estimated_cost >= 0",
                           name="ck_service_request_estimated_cost_positive"),
        sa.CheckConstraint("down_payment IS NULL OR down_payment >= 0",
                           name="ck_service_request_down_payment_positive"),
        sa.CheckConstraint("total_cost IS NULL OR total_cost >= 0",
                           name="ck_service_request_total_cost_positive"),
        sa.CheckConstraint(
            "assigned_mechanic_id IS NOT NULL OR status NOT IN "
            "('in_progress', 'parts_needed', 'quality_check', 'awaiting_payment', 'completed')",
            name="ck_service_request_mechanic_when_claimed",
        ),
        sa.CheckConstraint("total_cost IS NULL OR status IN ('awaiting_payment', 'completed')",
                           name="ck_service_request_total_cost_status"),
        sa.CheckConstraint("version >= 1", name="ck_service_request_version_positive"),
    )
    op.create_index("ix_service_requests_customer_id", "service_requests", ["customer_id"])
    op.create_index("ix_service_requests_vehicle_id", "service_requests", ["vehicle_id"])
    op.create_index("ix_service_requests_status", "service_requests", ["status"])
    op.create_index("ix_service_request_customer_created",
                    "service_requests",
                    ["customer_id", "created_at"])
    op.create_index("ix_service_request_mechanic_status",
                    "service_requests",
                    ["assigned_mechanic_id", "status"])

    # Status history (append-only)
    op.create_table(
        "status_history",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("service_request_id", UUID,
                  sa.ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("changed_by", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("request_version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_status_history_request_created",
                    "status_history",
                    ["service_request_id", "created_at"])

    # Progress entries
    op.create_table(
        "service_progress",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("service_request_id", UUID,
                  sa.ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("progress_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("created_by", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_service_progress_request_created",
                    "service_progress",
                    ["service_request_id", "created_at"])

    # Photos
    op.create_table(
        "service_photos",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("service_request_id", UUID,
                  sa.ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_progress_id", UUID,
                  sa.ForeignKey("service_progress.id", ondelete="CASCADE"), nullable=True),
        sa.Column("photo_url", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("uploaded_by", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_service_photos_service_progress_id", "service_photos", ["service_progress_id"])
    op.create_index("ix_service_photo_request_created",
                    "service_photos",
                    ["service_request_id", "created_at"])


def downgrade() -> None:
    op.drop_table("service_photos")
    op.drop_table("service_progress")
    op.drop_table("status_history")
    op.drop_table("service_requests")
    op.drop_table("vehicles")
    op.drop_table("users")
