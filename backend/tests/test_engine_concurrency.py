"""Optimistic concurrency and deadlines.

Races are driven against the in-process store with a barrier so both calls
load the same version before either writes. The SQL adapter's compare-and-set
is exercised with a stale snapshot.
"""
import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from autoservice.lifecycle.engine import RequestLifecycleEngine
from autoservice.lifecycle.errors import Conflict, Timeout
from autoservice.lifecycle.history import HistoryQuery
from autoservice.models.enums import RequestStatus
from autoservice.repositories.memory import InMemoryLifecycleRepository
from autoservice.repositories.sql import SqlLifecycleRepository


def _barrier_get_request(parties: int):
    original = InMemoryLifecycleRepository.get_request
    loaded = 0
    all_loaded = asyncio.Event()

    async def get_request(self, request_id):
        nonlocal loaded
        record = await original(self, request_id)
        loaded += 1
        if loaded == parties:
            all_loaded.set()
        await all_loaded.wait()
        return record

    return get_request


@pytest.mark.asyncio
async def test_two_concurrent_transitions_one_wins(memory_store, memory_cast):
    cast = memory_cast
    lifecycle = RequestLifecycleEngine(memory_store)
    request = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Engine Overhaul")
    await lifecycle.transition(request.id, cast.admin_actor, "approved", {"assigned_mechanic_id": cast.mechanic.id})
    await lifecycle.transition(request.id, cast.mechanic_actor, "in_progress")

    with patch.object(InMemoryLifecycleRepository, "get_request", _barrier_get_request(2)):
        results = await asyncio.gather(
            lifecycle.transition(
                request.id, cast.mechanic_actor, "parts_needed", {"mechanic_notes": [{"note": "Gasket"}]}
            ),
            lifecycle.transition(
                request.id, cast.mechanic_actor, "quality_check", {"mechanic_notes": [{"note": "Test drive"}]}
            ),
            return_exceptions=True,
        )

    conflicts = [r for r in results if isinstance(r, Conflict)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(conflicts) == 1
    assert len(successes) == 1
    assert conflicts[0].retryable is True

    stored = await lifecycle.get_request(request.id)
    assert stored.status == successes[0].status
    assert stored.version == successes[0].version

    entries = await HistoryQuery(memory_store).list_history(request.id)
    assert len(entries) == 3
    assert entries[0].status == successes[0].status
    await HistoryQuery(memory_store).replay(request.id)


@pytest.mark.asyncio
async def test_concurrent_admin_and_mechanic(memory_store, memory_cast):
    cast = memory_cast
    lifecycle = RequestLifecycleEngine(memory_store)
    request = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Brake service")
    await lifecycle.transition(request.id, cast.admin_actor, "approved", {"assigned_mechanic_id": cast.mechanic.id})

    with patch.object(InMemoryLifecycleRepository, "get_request", _barrier_get_request(2)):
        results = await asyncio.gather(
            lifecycle.transition(request.id, cast.mechanic_actor, "in_progress"),
            lifecycle.transition(request.id, cast.admin_actor, "rejected", {"admin_notes": "Customer cancelled"}),
            return_exceptions=True,
        )

    assert sum(isinstance(r, Conflict) for r in results) == 1
    entries = await HistoryQuery(memory_store).list_history(request.id)
    assert len(entries) == 2


@pytest.mark.asyncio
async def test_different_requests_do_not_conflict(memory_store, memory_cast):
    cast = memory_cast
    lifecycle = RequestLifecycleEngine(memory_store)
    first = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Oil change")
    second = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Tyre rotation")

    with patch.object(InMemoryLifecycleRepository, "get_request", _barrier_get_request(2)):
        results = await asyncio.gather(
            lifecycle.transition(first.id, cast.admin_actor, "approved", {"assigned_mechanic_id": cast.mechanic.id}),
            lifecycle.transition(second.id, cast.admin_actor, "rejected", {"admin_notes": "Duplicate"}),
        )

    assert [r.status for r in results] == [RequestStatus.APPROVED, RequestStatus.REJECTED]


@pytest.mark.asyncio
async def test_persistence_timeout(memory_store, memory_cast):
    cast = memory_cast
    lifecycle = RequestLifecycleEngine(memory_store)
    request = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Oil change")

    async def slow_get_request(self, request_id):
        await asyncio.sleep(1)

    with patch.object(InMemoryLifecycleRepository, "get_request", slow_get_request):
        with pytest.raises(Timeout) as exc_info:
            await lifecycle.transition(
                request.id, cast.admin_actor, "approved",
                {"assigned_mechanic_id": cast.mechanic.id}, timeout=0.05,
            )
    assert exc_info.value.retryable is True

    stored = await lifecycle.get_request(request.id)
    assert stored.status == RequestStatus.PENDING


@pytest.mark.asyncio
async def test_uncommitted_unit_is_discarded(memory_store, memory_cast):
    cast = memory_cast
    lifecycle = RequestLifecycleEngine(memory_store)
    request = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Oil change")

    async with memory_store.begin() as repo:
        record = await repo.get_request(request.id)
        await repo.save_request(record.model_copy(update={"version": 2}), expected_version=1)

    assert (await lifecycle.get_request(request.id)).version == 1


# ============ SQL adapter ============


@pytest.mark.asyncio
async def test_sql_stale_version_conflicts(sql_store, sql_cast):
    cast = sql_cast
    lifecycle = RequestLifecycleEngine(sql_store)
    request = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Engine Overhaul")
    stale = await lifecycle.get_request(request.id)

    await lifecycle.assign_mechanic(request.id, cast.admin_actor, cast.mechanic.id)

    async with sql_store.begin() as repo:
        with pytest.raises(Conflict):
            await repo.save_request(
                stale.model_copy(update={"service_type": "ignored", "version": 2}),
                expected_version=stale.version,
            )

    stored = await lifecycle.get_request(request.id)
    assert stored.version == 2
    assert stored.assigned_mechanic_id == cast.mechanic.id


@pytest.mark.asyncio
async def test_sql_transition_on_stale_snapshot_conflicts(sql_store, sql_cast):
    cast = sql_cast
    lifecycle = RequestLifecycleEngine(sql_store)
    request = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Engine Overhaul")
    stale = await lifecycle.get_request(request.id)
    await lifecycle.assign_mechanic(request.id, cast.admin_actor, cast.mechanic.id)

    async def stale_get_request(self, request_id):
        return stale

    with patch.object(SqlLifecycleRepository, "get_request", stale_get_request):
        with pytest.raises(Conflict):
            await lifecycle.transition(
                request.id, cast.admin_actor, "rejected", {"admin_notes": "Duplicate request"}
            )

    stored = await lifecycle.get_request(request.id)
    assert stored.status == RequestStatus.PENDING
    assert await HistoryQuery(sql_store).list_history(request.id) == []


@pytest.mark.asyncio
async def test_sql_lock_error_is_a_conflict(sql_store, sql_cast):
    cast = sql_cast
    lifecycle = RequestLifecycleEngine(sql_store)
    request = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Engine Overhaul")
    record = await lifecycle.get_request(request.id)

    async with sql_store.begin() as repo:
        with patch.object(
            repo.session, "execute",
            side_effect=OperationalError("UPDATE service_requests", {}, Exception("database is locked")),
        ):
            with pytest.raises(Conflict):
                await repo.save_request(record.model_copy(update={"version": 2}), expected_version=1)
