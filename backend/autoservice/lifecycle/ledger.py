"""Progress entries and photos attached to a service request.

Both are append-only and never change the request status. Uploading a photo
is a separate step from recording it, so a failed upload never undoes the
progress entry written before it.
"""
import asyncio
import uuid
from datetime import date
from typing import Protocol

from autoservice.config import settings
from autoservice.lifecycle.common import as_uuid, resolve_timeout, utcnow, with_deadline
from autoservice.lifecycle.errors import Forbidden, UploadFailed, ValidationError
from autoservice.models.enums import RequestStatus, UserRole
from autoservice.repositories.base import LifecycleStore
from autoservice.schemas.ledger import ServicePhotoRecord, ServiceProgressRecord
from autoservice.schemas.service_request import Actor


class PhotoUploader(Protocol):
    async def upload(self, content: bytes) -> str:
        """Store the bytes and return an opaque reference (URL or key)."""
        ...


def _as_progress_date(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError("progress_date must be an ISO date (YYYY-MM-DD)") from exc


class ProgressLedger:
    def __init__(
        self,
        store: LifecycleStore,
        uploader: PhotoUploader | None = None,
        *,
        timeout: float | None = None,
        upload_timeout: float | None = None,
    ):
        self.store = store
        self.uploader = uploader
        self.timeout = timeout
        self.upload_timeout = upload_timeout

    async def add_progress(
        self,
        request_id,
        actor: Actor,
        progress_date: date | str,
        description: str,
        *,
        timeout: float | None = None,
    ) -> ServiceProgressRecord:
        """Record work done on a request that is in progress. Assigned mechanic only."""
        request_id = as_uuid(request_id, "request_id")
        description = (description or "").strip()
        if not description:
            raise ValidationError("Progress description is required")
        progress_day = _as_progress_date(progress_date)
        deadline = resolve_timeout(timeout, self.timeout)

        async with self.store.begin() as repo:
            request = await with_deadline(repo.get_request(request_id), deadline)
            if actor.role != UserRole.MECHANIC or request.assigned_mechanic_id != actor.id:
                raise Forbidden("Only the assigned mechanic can add progress")
            if request.status != RequestStatus.IN_PROGRESS:
                raise Forbidden(
                    f"Progress can only be added while in progress, not '{request.status.value}'"
                )

            entry = ServiceProgressRecord(
                id=uuid.uuid4(),
                service_request_id=request_id,
                progress_date=progress_day,
                description=description,
                created_by=actor.id,
                created_at=utcnow(),
            )
            await with_deadline(repo.append_progress(entry), deadline)
            await with_deadline(repo.commit(), deadline)
        return entry

    async def attach_photo(
        self,
        request_id,
        progress_id,
        actor: Actor,
        photo_ref: str,
        description: str | None = None,
        *,
        timeout: float | None = None,
    ) -> ServicePhotoRecord:
        """Record an already-uploaded photo against a request and, optionally, one progress entry."""
        request_id = as_uuid(request_id, "request_id")
        progress_id = as_uuid(progress_id, "progress_id") if progress_id is not None else None
        photo_ref = (photo_ref or "").strip()
        if not photo_ref:
            raise ValidationError("photo_ref is required")
        description = description.strip() or None if description else None
        deadline = resolve_timeout(timeout, self.timeout)

        async with self.store.begin() as repo:
            request = await with_deadline(repo.get_request(request_id), deadline)
            is_assigned = actor.role == UserRole.MECHANIC and request.assigned_mechanic_id == actor.id
            if actor.role != UserRole.ADMIN and not is_assigned:
                raise Forbidden("Only an admin or the assigned mechanic can attach photos")

            if progress_id is not None:
                progress = await with_deadline(repo.get_progress(progress_id), deadline)
                if progress.service_request_id != request_id:
                    raise ValidationError("Progress entry belongs to a different service request")

            photo = ServicePhotoRecord(
                id=uuid.uuid4(),
                service_request_id=request_id,
                service_progress_id=progress_id,
                photo_url=photo_ref,
                description=description,
                uploaded_by=actor.id,
                created_at=utcnow(),
            )
            await with_deadline(repo.append_photo(photo), deadline)
            await with_deadline(repo.commit(), deadline)
        return photo

    async def upload_photo(self, content: bytes, *, timeout: float | None = None) -> str:
        if self.uploader is None:
            raise UploadFailed("No photo uploader configured")
        deadline = resolve_timeout(timeout, self.upload_timeout or settings.UPLOAD_TIMEOUT_SECONDS)
        try:
            return await asyncio.wait_for(self.uploader.upload(content), timeout=deadline)
        except asyncio.TimeoutError as exc:
            raise UploadFailed(f"Photo upload exceeded {deadline:g}s") from exc
        except UploadFailed:
            raise
        except Exception as exc:
            raise UploadFailed(f"Photo upload failed: {exc}") from exc

    async def add_progress_with_photo(
        self,
        request_id,
        actor: Actor,
        progress_date: date | str,
        description: str,
        content: bytes,
        photo_description: str | None = None,
        *,
        timeout: float | None = None,
    ) -> tuple[ServiceProgressRecord, ServicePhotoRecord]:
        """Add a progress entry, upload a photo, then attach it to the entry.

        The three steps commit separately. If the upload fails the progress
        entry stays; the raised ``UploadFailed`` carries it as ``progress``.
        """
        progress = await self.add_progress(request_id, actor, progress_date, description, timeout=timeout)
        try:
            photo_ref = await self.upload_photo(content)
        except UploadFailed as exc:
            exc.progress = progress
            raise
        photo = await self.attach_photo(
            request_id, progress.id, actor, photo_ref, photo_description, timeout=timeout
        )
        return progress, photo

    async def list_progress(self, request_id, *, timeout: float | None = None) -> list[ServiceProgressRecord]:
        request_id = as_uuid(request_id, "request_id")
        deadline = resolve_timeout(timeout, self.timeout)
        async with self.store.begin() as repo:
            await with_deadline(repo.get_request(request_id), deadline)
            return await with_deadline(repo.list_progress(request_id), deadline)

    async def list_photos(
        self, request_id, progress_id=None, *, timeout: float | None = None
    ) -> list[ServicePhotoRecord]:
        request_id = as_uuid(request_id, "request_id")
        progress_id = as_uuid(progress_id, "progress_id") if progress_id is not None else None
        deadline = resolve_timeout(timeout, self.timeout)
        async with self.store.begin() as repo:
            await with_deadline(repo.get_request(request_id), deadline)
            return await with_deadline(repo.list_photos(request_id, progress_id), deadline)
