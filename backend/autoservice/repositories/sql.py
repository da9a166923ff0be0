import enum
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoservice.database import async_session
from autoservice.lifecycle.errors import Conflict, LifecycleError, NotFound, ValidationError
from autoservice.models.enums import RequestStatus
from autoservice.models.service_photo import ServicePhoto
from autoservice.models.service_progress import ServiceProgress
from autoservice.models.service_request import ServiceRequest
from autoservice.models.status_history import StatusHistory
from autoservice.models.user import User
from autoservice.models.vehicle import Vehicle
from autoservice.schemas.ledger import ServicePhotoRecord, ServiceProgressRecord
from autoservice.schemas.service_request import (
    ServiceRequestRecord,
    StatusHistoryRecord,
    UserRecord,
    VehicleRecord,
)

logger = structlog.get_logger()

# Columns a lifecycle write may change. Identity, ownership and creation data never move.
_MUTABLE_REQUEST_FIELDS = {
    "status",
    "assigned_mechanic_id",
    "estimated_cost",
    "down_payment",
    "total_cost",
    "payment_method",
    "admin_notes",
    "mechanic_notes",
    "version",
    "updated_at",
}


def _row_values(record, include: set[str] | None = None) -> dict:
    values = record.model_dump(include=include)
    return {key: value.value if isinstance(value, enum.Enum) else value for key, value in values.items()}


class SqlLifecycleRepository:
    """``LifecycleRepository`` over one SQLAlchemy ``AsyncSession``."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.committed = False

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except IntegrityError as exc:
            logger.warning("lifecycle_integrity_error", error=str(exc.orig))
            raise ValidationError("Write rejected by database constraints") from exc
        except OperationalError as exc:
            raise Conflict("The service request is being modified by another user. Reload and retry.") from exc

    async def get_request(self, request_id: uuid.UUID) -> ServiceRequestRecord:
        result = await self.session.execute(
            select(ServiceRequest)
            .where(ServiceRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound("ServiceRequest", request_id)
        return ServiceRequestRecord.model_validate(row)

    async def insert_request(self, record: ServiceRequestRecord) -> ServiceRequestRecord:
        self.session.add(ServiceRequest(**_row_values(record)))
        await self._flush()
        return record

    async def save_request(self, record: ServiceRequestRecord, expected_version: int) -> ServiceRequestRecord:
        # Compare-and-set on the version column: exactly one concurrent writer can match.
        try:
            result = await self.session.execute(
                update(ServiceRequest)
                .where(ServiceRequest.id == record.id, ServiceRequest.version == expected_version)
                .values(**_row_values(record, _MUTABLE_REQUEST_FIELDS))
                .execution_options(synchronize_session=False)
            )
        except OperationalError as exc:
            # Lock contention (e.g. SQLite "database is locked") means another writer holds the row.
            logger.info("service_request_write_locked", request_id=str(record.id))
            raise Conflict("The service request is being modified by another user. Reload and retry.") from exc

        if result.rowcount != 1:
            logger.info(
                "service_request_version_conflict",
                request_id=str(record.id),
                expected_version=expected_version,
            )
            raise Conflict("The service request was modified by another user. Reload and retry.")
        return record

    async def append_history(self, entry: StatusHistoryRecord) -> StatusHistoryRecord:
        self.session.add(StatusHistory(**_row_values(entry)))
        await self._flush()
        return entry

    async def append_progress(self, entry: ServiceProgressRecord) -> ServiceProgressRecord:
        self.session.add(ServiceProgress(**entry.model_dump()))
        await self._flush()
        return entry

    async def append_photo(self, entry: ServicePhotoRecord) -> ServicePhotoRecord:
        self.session.add(ServicePhoto(**entry.model_dump()))
        await self._flush()
        return entry

    async def get_progress(self, progress_id: uuid.UUID) -> ServiceProgressRecord:
        result = await self.session.execute(
            select(ServiceProgress).where(ServiceProgress.id == progress_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound("ServiceProgress", progress_id)
        return ServiceProgressRecord.model_validate(row)

    async def list_history(self, request_id: uuid.UUID) -> list[StatusHistoryRecord]:
        result = await self.session.execute(
            select(StatusHistory)
            .where(StatusHistory.service_request_id == request_id)
            .order_by(StatusHistory.created_at.desc(), StatusHistory.request_version.desc())
        )
        return [StatusHistoryRecord.model_validate(row) for row in result.scalars().all()]

    async def list_progress(self, request_id: uuid.UUID) -> list[ServiceProgressRecord]:
        result = await self.session.execute(
            select(ServiceProgress)
            .where(ServiceProgress.service_request_id == request_id)
            .order_by(ServiceProgress.created_at.desc())
        )
        return [ServiceProgressRecord.model_validate(row) for row in result.scalars().all()]

    async def list_photos(
        self, request_id: uuid.UUID, progress_id: uuid.UUID | None = None
    ) -> list[ServicePhotoRecord]:
        query = select(ServicePhoto).where(ServicePhoto.service_request_id == request_id)
        if progress_id is not None:
            query = query.where(ServicePhoto.service_progress_id == progress_id)
        result = await self.session.execute(query.order_by(ServicePhoto.created_at.desc()))
        return [ServicePhotoRecord.model_validate(row) for row in result.scalars().all()]

    async def list_requests(
        self,
        *,
        customer_id: uuid.UUID | None = None,
        assigned_mechanic_id: uuid.UUID | None = None,
        status: RequestStatus | None = None,
    ) -> list[ServiceRequestRecord]:
        query = select(ServiceRequest)
        if customer_id is not None:
            query = query.where(ServiceRequest.customer_id == customer_id)
        if assigned_mechanic_id is not None:
            query = query.where(ServiceRequest.assigned_mechanic_id == assigned_mechanic_id)
        if status is not None:
            query = query.where(ServiceRequest.status == status.value)
        result = await self.session.execute(
            query.order_by(ServiceRequest.created_at.desc()).execution_options(populate_existing=True)
        )
        return [ServiceRequestRecord.model_validate(row) for row in result.scalars().all()]

    async def get_vehicle(self, vehicle_id: uuid.UUID) -> VehicleRecord | None:
        result = await self.session.execute(select(Vehicle).where(Vehicle.id == vehicle_id))
        row = result.scalar_one_or_none()
        return VehicleRecord.model_validate(row) if row is not None else None

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None:
        result = await self.session.execute(select(User).where(User.id == user_id))
        row = result.scalar_one_or_none()
        return UserRecord.model_validate(row) if row is not None else None

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except OperationalError as exc:
            raise Conflict("The service request is being modified by another user. Reload and retry.") from exc
        self.committed = True


class SqlLifecycleStore:
    """Opens one session (and transaction) per unit of work."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session):
        self._session_factory = session_factory

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[SqlLifecycleRepository]:
        async with self._session_factory() as session:
            repository = SqlLifecycleRepository(session)
            try:
                yield repository
            except LifecycleError as exc:
                await session.rollback()
                logger.info("lifecycle_unit_rolled_back", error=exc.code)
                raise
            except Exception:
                await session.rollback()
                logger.exception("lifecycle_unit_failed")
                raise
            else:
                if not repository.committed:
                    await session.rollback()
