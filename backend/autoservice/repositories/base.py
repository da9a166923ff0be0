"""Persistence interface consumed by the lifecycle engine.

A ``LifecycleStore`` opens units of work. Each unit yields a
``LifecycleRepository``; its writes become durable only when ``commit()`` is
awaited, and leaving the block without committing discards them.
"""
import uuid
from contextlib import AbstractAsyncContextManager
from typing import Protocol

from autoservice.models.enums import RequestStatus
from autoservice.schemas.ledger import ServicePhotoRecord, ServiceProgressRecord
from autoservice.schemas.service_request import (
    ServiceRequestRecord,
    StatusHistoryRecord,
    UserRecord,
    VehicleRecord,
)


class LifecycleRepository(Protocol):
    async def get_request(self, request_id: uuid.UUID) -> ServiceRequestRecord:
        """Return the request or raise ``NotFound``."""
        ...

    async def insert_request(self, record: ServiceRequestRecord) -> ServiceRequestRecord: ...

    async def save_request(self, record: ServiceRequestRecord, expected_version: int) -> ServiceRequestRecord:
        """Overwrite the stored request if its version is still ``expected_version``.

        Raises ``Conflict`` when another writer got there first.
        """
        ...

    async def append_history(self, entry: StatusHistoryRecord) -> StatusHistoryRecord: ...

    async def append_progress(self, entry: ServiceProgressRecord) -> ServiceProgressRecord: ...

    async def append_photo(self, entry: ServicePhotoRecord) -> ServicePhotoRecord: ...

    async def get_progress(self, progress_id: uuid.UUID) -> ServiceProgressRecord:
        """Return the progress entry or raise ``NotFound``."""
        ...

    async def list_history(self, request_id: uuid.UUID) -> list[StatusHistoryRecord]:
        """Newest first."""
        ...

    async def list_progress(self, request_id: uuid.UUID) -> list[ServiceProgressRecord]:
        """Newest first."""
        ...

    async def list_photos(
        self, request_id: uuid.UUID, progress_id: uuid.UUID | None = None
    ) -> list[ServicePhotoRecord]:
        """Newest first, optionally restricted to one progress entry."""
        ...

    async def list_requests(
        self,
        *,
        customer_id: uuid.UUID | None = None,
        assigned_mechanic_id: uuid.UUID | None = None,
        status: RequestStatus | None = None,
    ) -> list[ServiceRequestRecord]:
        """Newest first."""
        ...

    async def get_vehicle(self, vehicle_id: uuid.UUID) -> VehicleRecord | None: ...

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None: ...

    async def commit(self) -> None: ...


class LifecycleStore(Protocol):
    def begin(self) -> AbstractAsyncContextManager[LifecycleRepository]: ...
