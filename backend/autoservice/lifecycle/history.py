from collections.abc import Iterable

from autoservice.lifecycle.common import as_uuid, resolve_timeout, with_deadline
from autoservice.lifecycle.errors import InvalidTransition
from autoservice.lifecycle.transitions import is_transition
from autoservice.models.enums import RequestStatus
from autoservice.repositories.base import LifecycleStore
from autoservice.schemas.service_request import StatusHistoryRecord


def chronological(entries: Iterable[StatusHistoryRecord]) -> list[StatusHistoryRecord]:
    """Oldest first; ``request_version`` breaks timestamp ties."""
    return sorted(entries, key=lambda entry: (entry.created_at, entry.request_version))


def verify_history_walk(entries: Iterable[StatusHistoryRecord]) -> list[RequestStatus]:
    """Check the recorded statuses form a walk through the transition table from ``pending``.

    Returns the status path, starting with ``pending``. Raises
    ``InvalidTransition`` on the first step that is not a table edge.
    """
    path = [RequestStatus.PENDING]
    for entry in chronological(entries):
        if not is_transition(path[-1], entry.status):
            raise InvalidTransition(
                path[-1],
                entry.status,
                f"History step {len(path)} moves from '{path[-1].value}' to '{entry.status.value}', "
                "which is not a legal transition",
            )
        path.append(entry.status)
    return path


class HistoryQuery:
    """Read-only access to a request's status audit trail."""

    def __init__(self, store: LifecycleStore, *, timeout: float | None = None):
        self.store = store
        self.timeout = timeout

    async def list_history(
        self, request_id, *, chronological_order: bool = False, timeout: float | None = None
    ) -> list[StatusHistoryRecord]:
        request_id = as_uuid(request_id, "request_id")
        deadline = resolve_timeout(timeout, self.timeout)
        async with self.store.begin() as repo:
            await with_deadline(repo.get_request(request_id), deadline)
            entries = await with_deadline(repo.list_history(request_id), deadline)
        if chronological_order:
            return chronological(entries)
        return entries

    async def replay(self, request_id, *, timeout: float | None = None) -> list[RequestStatus]:
        entries = await self.list_history(request_id, chronological_order=True, timeout=timeout)
        return verify_history_walk(entries)
