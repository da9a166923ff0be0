import os
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "development")

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from autoservice.database import Base
from autoservice.lifecycle.engine import RequestLifecycleEngine
from autoservice.lifecycle.history import HistoryQuery
from autoservice.lifecycle.ledger import ProgressLedger
from autoservice.models.enums import UserRole
from autoservice.models.user import User
from autoservice.models.vehicle import Vehicle
from autoservice.repositories.memory import InMemoryLifecycleStore
from autoservice.repositories.sql import SqlLifecycleStore
from autoservice.schemas.service_request import Actor, UserRecord, VehicleRecord

# Use SQLite for tests (in-memory, one shared connection)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@dataclass
class Cast:
    """The people and vehicle every lifecycle test works with."""

    admin: UserRecord
    mechanic: UserRecord
    other_mechanic: UserRecord
    customer: UserRecord
    vehicle: VehicleRecord

    @property
    def admin_actor(self) -> Actor:
        return Actor(id=self.admin.id, role=UserRole.ADMIN)

    @property
    def mechanic_actor(self) -> Actor:
        return Actor(id=self.mechanic.id, role=UserRole.MECHANIC)

    @property
    def other_mechanic_actor(self) -> Actor:
        return Actor(id=self.other_mechanic.id, role=UserRole.MECHANIC)

    @property
    def customer_actor(self) -> Actor:
        return Actor(id=self.customer.id, role=UserRole.CUSTOMER)


async def _seed_sql() -> Cast:
    users = {
        "admin": User(id=uuid.uuid4(), full_name="Admin Bengkel", role=UserRole.ADMIN, phone="+6281100000000"),
        "mechanic": User(id=uuid.uuid4(), full_name="Budi Santoso", role=UserRole.MECHANIC, phone="+6281100000001"),
        "other_mechanic": User(id=uuid.uuid4(), full_name="Agus Wijaya", role=UserRole.MECHANIC),
        "customer": User(id=uuid.uuid4(), full_name="Siti Rahma", role=UserRole.CUSTOMER, phone="+6281100000002"),
    }
    vehicle = Vehicle(
        id=uuid.uuid4(),
        customer_id=users["customer"].id,
        make="Toyota",
        model="Avanza",
        year=2019,
        license_plate="B 1234 XYZ",
    )
    async with test_session() as session:
        session.add_all(users.values())
        await session.flush()
        session.add(vehicle)
        await session.commit()

    return Cast(
        **{name: UserRecord.model_validate(user) for name, user in users.items()},
        vehicle=VehicleRecord.model_validate(vehicle),
    )


def _seed_memory(store: InMemoryLifecycleStore) -> Cast:
    customer = store.add_user(UserRole.CUSTOMER, "Siti Rahma")
    return Cast(
        admin=store.add_user(UserRole.ADMIN, "Admin Bengkel"),
        mechanic=store.add_user(UserRole.MECHANIC, "Budi Santoso"),
        other_mechanic=store.add_user(UserRole.MECHANIC, "Agus Wijaya"),
        customer=customer,
        vehicle=store.add_vehicle(customer.id),
    )


@pytest_asyncio.fixture
async def sql_store() -> AsyncGenerator[SqlLifecycleStore, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield SqlLifecycleStore(test_session)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def memory_store() -> InMemoryLifecycleStore:
    return InMemoryLifecycleStore()


@pytest_asyncio.fixture
async def memory_cast(memory_store: InMemoryLifecycleStore) -> Cast:
    return _seed_memory(memory_store)


@pytest_asyncio.fixture
async def sql_cast(sql_store: SqlLifecycleStore) -> Cast:
    return await _seed_sql()


@pytest_asyncio.fixture(params=["sql", "memory"])
async def store(request):
    """Runs a test once per persistence adapter."""
    if request.param == "memory":
        yield InMemoryLifecycleStore()
        return

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield SqlLifecycleStore(test_session)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def cast(store) -> Cast:
    if isinstance(store, InMemoryLifecycleStore):
        return _seed_memory(store)
    return await _seed_sql()


@pytest_asyncio.fixture
async def lifecycle(store) -> RequestLifecycleEngine:
    return RequestLifecycleEngine(store)


@pytest_asyncio.fixture
async def history(store) -> HistoryQuery:
    return HistoryQuery(store)


@pytest_asyncio.fixture
async def ledger(store) -> ProgressLedger:
    return ProgressLedger(store)


@pytest_asyncio.fixture
async def pending_request(lifecycle: RequestLifecycleEngine, cast: Cast):
    return await lifecycle.create_request(
        cast.customer.id, cast.vehicle.id, "Engine Overhaul", "Engine knocks when cold"
    )


@pytest_asyncio.fixture
async def in_progress_request(lifecycle: RequestLifecycleEngine, cast: Cast, pending_request):
    await lifecycle.transition(
        pending_request.id, cast.admin_actor, "approved", {"assigned_mechanic_id": cast.mechanic.id}
    )
    return await lifecycle.transition(pending_request.id, cast.mechanic_actor, "in_progress")
