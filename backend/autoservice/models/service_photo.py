import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autoservice.database import Base
from autoservice.models.types import GUID


class ServicePhoto(Base):
    __tablename__ = "service_photos"
    __table_args__ = (
        Index("ix_service_photo_request_created", "service_request_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    service_request_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False
    )
    service_progress_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("service_progress.id", ondelete="CASCADE"), nullable=True, index=True
    )
    photo_url: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_by: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    service_request: Mapped["ServiceRequest"] = relationship("ServiceRequest", back_populates="photos")
    progress: Mapped["ServiceProgress | None"] = relationship("ServiceProgress", back_populates="photos")
