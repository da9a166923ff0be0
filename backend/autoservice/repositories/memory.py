"""In-process ``LifecycleStore`` used by tests and local tooling.

Writes are staged per unit of work and applied atomically on ``commit()``,
which re-checks every saved request's version under a lock so that exactly
one of several concurrent writers wins.
"""
import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from autoservice.lifecycle.errors import Conflict, NotFound
from autoservice.models.enums import RequestStatus, UserRole
from autoservice.schemas.ledger import ServicePhotoRecord, ServiceProgressRecord
from autoservice.schemas.service_request import (
    ServiceRequestRecord,
    StatusHistoryRecord,
    UserRecord,
    VehicleRecord,
)


class InMemoryLifecycleRepository:
    def __init__(self, store: "InMemoryLifecycleStore"):
        self._store = store
        self._inserted: dict[uuid.UUID, ServiceRequestRecord] = {}
        # request id -> (expected version, new record)
        self._saved: dict[uuid.UUID, tuple[int, ServiceRequestRecord]] = {}
        self._history: list[StatusHistoryRecord] = []
        self._progress: list[ServiceProgressRecord] = []
        self._photos: list[ServicePhotoRecord] = []
        self.committed = False

    def _current(self, request_id: uuid.UUID) -> ServiceRequestRecord | None:
        if request_id in self._saved:
            return self._saved[request_id][1]
        if request_id in self._inserted:
            return self._inserted[request_id]
        return self._store.requests.get(request_id)

    async def get_request(self, request_id: uuid.UUID) -> ServiceRequestRecord:
        record = self._current(request_id)
        if record is None:
            raise NotFound("ServiceRequest", request_id)
        return record.model_copy()

    async def insert_request(self, record: ServiceRequestRecord) -> ServiceRequestRecord:
        self._inserted[record.id] = record.model_copy()
        return record

    async def save_request(self, record: ServiceRequestRecord, expected_version: int) -> ServiceRequestRecord:
        current = self._current(record.id)
        if current is None:
            raise NotFound("ServiceRequest", record.id)
        if current.version != expected_version:
            raise Conflict("The service request was modified by another user. Reload and retry.")
        if record.id in self._inserted:
            self._inserted[record.id] = record.model_copy()
        else:
            first_expected = self._saved.get(record.id, (expected_version, record))[0]
            self._saved[record.id] = (first_expected, record.model_copy())
        return record

    async def append_history(self, entry: StatusHistoryRecord) -> StatusHistoryRecord:
        self._history.append(entry.model_copy())
        return entry

    async def append_progress(self, entry: ServiceProgressRecord) -> ServiceProgressRecord:
        self._progress.append(entry.model_copy())
        return entry

    async def append_photo(self, entry: ServicePhotoRecord) -> ServicePhotoRecord:
        self._photos.append(entry.model_copy())
        return entry

    async def get_progress(self, progress_id: uuid.UUID) -> ServiceProgressRecord:
        for entry in [*self._store.progress, *self._progress]:
            if entry.id == progress_id:
                return entry.model_copy()
        raise NotFound("ServiceProgress", progress_id)

    async def list_history(self, request_id: uuid.UUID) -> list[StatusHistoryRecord]:
        entries = [e for e in [*self._store.history, *self._history] if e.service_request_id == request_id]
        return sorted(entries, key=lambda e: (e.created_at, e.request_version), reverse=True)

    async def list_progress(self, request_id: uuid.UUID) -> list[ServiceProgressRecord]:
        entries = [e for e in [*self._store.progress, *self._progress] if e.service_request_id == request_id]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    async def list_photos(
        self, request_id: uuid.UUID, progress_id: uuid.UUID | None = None
    ) -> list[ServicePhotoRecord]:
        entries = [
            e for e in [*self._store.photos, *self._photos]
            if e.service_request_id == request_id
            and (progress_id is None or e.service_progress_id == progress_id)
        ]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    async def list_requests(
        self,
        *,
        customer_id: uuid.UUID | None = None,
        assigned_mechanic_id: uuid.UUID | None = None,
        status: RequestStatus | None = None,
    ) -> list[ServiceRequestRecord]:
        ids = [*self._store.requests, *(i for i in self._inserted if i not in self._store.requests)]
        records = [self._current(request_id) for request_id in ids]
        matches = [
            r.model_copy() for r in records
            if (customer_id is None or r.customer_id == customer_id)
            and (assigned_mechanic_id is None or r.assigned_mechanic_id == assigned_mechanic_id)
            and (status is None or r.status == status)
        ]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def get_vehicle(self, vehicle_id: uuid.UUID) -> VehicleRecord | None:
        return self._store.vehicles.get(vehicle_id)

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None:
        return self._store.users.get(user_id)

    async def commit(self) -> None:
        async with self._store.lock:
            for request_id, (expected_version, _) in self._saved.items():
                stored = self._store.requests.get(request_id)
                if stored is None or stored.version != expected_version:
                    raise Conflict("The service request was modified by another user. Reload and retry.")
            self._store.requests.update(self._inserted)
            self._store.requests.update({rid: record for rid, (_, record) in self._saved.items()})
            self._store.history.extend(self._history)
            self._store.progress.extend(self._progress)
            self._store.photos.extend(self._photos)
        self.committed = True


class InMemoryLifecycleStore:
    def __init__(self):
        self.requests: dict[uuid.UUID, ServiceRequestRecord] = {}
        self.history: list[StatusHistoryRecord] = []
        self.progress: list[ServiceProgressRecord] = []
        self.photos: list[ServicePhotoRecord] = []
        self.vehicles: dict[uuid.UUID, VehicleRecord] = {}
        self.users: dict[uuid.UUID, UserRecord] = {}
        self.lock = asyncio.Lock()

    def add_user(self, role: UserRole, full_name: str = "Test User", user_id: uuid.UUID | None = None) -> UserRecord:
        user = UserRecord(id=user_id or uuid.uuid4(), full_name=full_name, role=role)
        self.users[user.id] = user
        return user

    def add_vehicle(
        self,
        customer_id: uuid.UUID,
        make: str = "Toyota",
        model: str = "Avanza",
        year: int = 2019,
        license_plate: str = "B 1234 XYZ",
    ) -> VehicleRecord:
        vehicle = VehicleRecord(
            id=uuid.uuid4(),
            customer_id=customer_id,
            make=make,
            model=model,
            year=year,
            license_plate=license_plate,
        )
        self.vehicles[vehicle.id] = vehicle
        return vehicle

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[InMemoryLifecycleRepository]:
        # Uncommitted staging is simply dropped.
        yield InMemoryLifecycleRepository(self)
