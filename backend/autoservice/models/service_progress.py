import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autoservice.database import Base
from autoservice.models.types import GUID


class ServiceProgress(Base):
    __tablename__ = "service_progress"
    __table_args__ = (
        Index("ix_service_progress_request_created", "service_request_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    service_request_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False
    )
    progress_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    service_request: Mapped["ServiceRequest"] = relationship("ServiceRequest", back_populates="progress_entries")
    photos: Mapped[list["ServicePhoto"]] = relationship(
        "ServicePhoto", back_populates="progress", passive_deletes=True, lazy="raise"
    )
