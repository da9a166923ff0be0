import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autoservice.database import Base
from autoservice.models.enums import PaymentMethod, RequestStatus
from autoservice.models.types import GUID


class ServiceRequest(Base):
    __tablename__ = "service_requests"
    __table_args__ = (
        CheckConstraint("estimated_cost IS NULL OR estimated_cost >= 0", name="ck_service_request_estimated_cost_positive"),
        CheckConstraint("down_payment IS NULL OR down_payment >= 0", name="ck_service_request_down_payment_positive"),
        CheckConstraint("total_cost IS NULL OR total_cost >= 0", name="ck_service_request_total_cost_positive"),
        CheckConstraint(
            "assigned_mechanic_id IS NOT NULL OR status NOT IN "
            "('in_progress', 'parts_needed', 'quality_check', 'awaiting_payment', 'completed')",
            name="ck_service_request_mechanic_when_claimed",
        ),
        CheckConstraint(
            "total_cost IS NULL OR status IN ('awaiting_payment', 'completed')",
            name="ck_service_request_total_cost_status",
        ),
        CheckConstraint("version >= 1", name="ck_service_request_version_positive"),
        Index("ix_service_request_customer_created", "customer_id", "created_at"),
        Index("ix_service_request_mechanic_status", "assigned_mechanic_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    vehicle_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    service_type: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferred_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[RequestStatus] = mapped_column(
        String(30), nullable=False, default=RequestStatus.PENDING, index=True
    )
    assigned_mechanic_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    estimated_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    down_payment: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    payment_method: Mapped[PaymentMethod | None] = mapped_column(String(20), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # JSON array of {"note", "cost"} items; older rows may hold plain text.
    mechanic_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Optimistic concurrency token, bumped on every accepted write.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    customer: Mapped["User"] = relationship("User", foreign_keys=[customer_id], lazy="raise")
    assigned_mechanic: Mapped["User | None"] = relationship(
        "User", foreign_keys=[assigned_mechanic_id], lazy="raise"
    )
    vehicle: Mapped["Vehicle"] = relationship("Vehicle", lazy="raise")
    history: Mapped[list["StatusHistory"]] = relationship(
        "StatusHistory", back_populates="service_request", cascade="all, delete-orphan",
        passive_deletes=True, lazy="raise",
    )
    progress_entries: Mapped[list["ServiceProgress"]] = relationship(
        "ServiceProgress", back_populates="service_request", cascade="all, delete-orphan",
        passive_deletes=True, lazy="raise",
    )
    photos: Mapped[list["ServicePhoto"]] = relationship(
        "ServicePhoto", back_populates="service_request", cascade="all, delete-orphan",
        passive_deletes=True, lazy="raise",
    )
