import asyncio
import uuid
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import TypeVar

from autoservice.config import settings
from autoservice.lifecycle.errors import Timeout, ValidationError

T = TypeVar("T")


def resolve_timeout(timeout: float | None, default: float | None = None) -> float:
    if timeout is not None:
        return timeout
    if default is not None:
        return default
    return settings.PERSISTENCE_TIMEOUT_SECONDS


async def with_deadline(awaitable: Awaitable[T], timeout: float) -> T:
    """Await a persistence call, converting a missed deadline into ``Timeout``."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise Timeout(f"Persistence call exceeded {timeout:g}s") from exc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_uuid(value, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a valid UUID") from exc
