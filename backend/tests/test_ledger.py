import asyncio
import uuid
from datetime import date
from unittest.mock import AsyncMock

import pytest

from autoservice.lifecycle.errors import Forbidden, NotFound, UploadFailed, ValidationError
from autoservice.lifecycle.ledger import ProgressLedger


# ============ add_progress ============


@pytest.mark.asyncio
async def test_add_progress(ledger, cast, in_progress_request):
    entry = await ledger.add_progress(
        in_progress_request.id, cast.mechanic_actor, "2026-10-19", "  Removed cylinder head  "
    )
    assert entry.description == "Removed cylinder head"
    assert entry.progress_date == date(2026, 10, 19)
    assert entry.created_by == cast.mechanic.id

    entries = await ledger.list_progress(in_progress_request.id)
    assert [e.id for e in entries] == [entry.id]


@pytest.mark.asyncio
async def test_progress_does_not_touch_status(ledger, lifecycle, cast, in_progress_request):
    await ledger.add_progress(in_progress_request.id, cast.mechanic_actor, date.today(), "Drained oil")
    stored = await lifecycle.get_request(in_progress_request.id)
    assert stored.status == in_progress_request.status
    assert stored.version == in_progress_request.version


@pytest.mark.asyncio
async def test_add_progress_requires_assigned_mechanic(ledger, cast, in_progress_request):
    for actor in (cast.other_mechanic_actor, cast.admin_actor, cast.customer_actor):
        with pytest.raises(Forbidden):
            await ledger.add_progress(in_progress_request.id, actor, date.today(), "Work")


@pytest.mark.asyncio
async def test_add_progress_only_while_in_progress(ledger, lifecycle, cast, in_progress_request):
    await lifecycle.transition(
        in_progress_request.id, cast.mechanic_actor, "parts_needed", {"mechanic_notes": [{"note": "Gasket"}]}
    )
    with pytest.raises(Forbidden, match="parts_needed"):
        await ledger.add_progress(in_progress_request.id, cast.mechanic_actor, date.today(), "Waiting")


@pytest.mark.asyncio
async def test_add_progress_requires_description(ledger, cast, in_progress_request):
    with pytest.raises(ValidationError):
        await ledger.add_progress(in_progress_request.id, cast.mechanic_actor, date.today(), "   ")


@pytest.mark.asyncio
async def test_add_progress_rejects_bad_date(ledger, cast, in_progress_request):
    with pytest.raises(ValidationError):
        await ledger.add_progress(in_progress_request.id, cast.mechanic_actor, "19/10/2026", "Work")


@pytest.mark.asyncio
async def test_add_progress_unknown_request(ledger, cast):
    with pytest.raises(NotFound):
        await ledger.add_progress(uuid.uuid4(), cast.mechanic_actor, date.today(), "Work")


@pytest.mark.asyncio
async def test_progress_listed_newest_first(ledger, cast, in_progress_request):
    first = await ledger.add_progress(in_progress_request.id, cast.mechanic_actor, date.today(), "Day one")
    await asyncio.sleep(0.01)
    second = await ledger.add_progress(in_progress_request.id, cast.mechanic_actor, date.today(), "Day two")
    entries = await ledger.list_progress(in_progress_request.id)
    assert [e.id for e in entries] == [second.id, first.id]


# ============ attach_photo ============


@pytest.mark.asyncio
async def test_attach_photo_to_progress(ledger, cast, in_progress_request):
    progress = await ledger.add_progress(in_progress_request.id, cast.mechanic_actor, date.today(), "Head off")
    photo = await ledger.attach_photo(
        in_progress_request.id, progress.id, cast.mechanic_actor,
        "https://storage.autoservice.dev/service-photos/a.jpg", "Cylinder wall",
    )
    assert photo.service_progress_id == progress.id
    assert photo.uploaded_by == cast.mechanic.id

    assert [p.id for p in await ledger.list_photos(in_progress_request.id, progress.id)] == [photo.id]


@pytest.mark.asyncio
async def test_admin_can_attach_request_level_photo(ledger, cast, in_progress_request):
    photo = await ledger.attach_photo(in_progress_request.id, None, cast.admin_actor, "photos/intake.png")
    assert photo.service_progress_id is None
    assert [p.id for p in await ledger.list_photos(in_progress_request.id)] == [photo.id]


@pytest.mark.asyncio
async def test_attach_photo_forbidden_for_others(ledger, cast, in_progress_request):
    for actor in (cast.other_mechanic_actor, cast.customer_actor):
        with pytest.raises(Forbidden):
            await ledger.attach_photo(in_progress_request.id, None, actor, "photos/x.jpg")


@pytest.mark.asyncio
async def test_attach_photo_requires_reference(ledger, cast, in_progress_request):
    with pytest.raises(ValidationError):
        await ledger.attach_photo(in_progress_request.id, None, cast.mechanic_actor, "  ")


@pytest.mark.asyncio
async def test_attach_photo_unknown_progress(ledger, cast, in_progress_request):
    with pytest.raises(NotFound):
        await ledger.attach_photo(in_progress_request.id, uuid.uuid4(), cast.mechanic_actor, "photos/x.jpg")


@pytest.mark.asyncio
async def test_attach_photo_progress_from_other_request(ledger, lifecycle, cast, in_progress_request):
    other = await lifecycle.create_request(cast.customer.id, cast.vehicle.id, "Tune up")
    await lifecycle.transition(other.id, cast.admin_actor, "approved", {"assigned_mechanic_id": cast.mechanic.id})
    await lifecycle.transition(other.id, cast.mechanic_actor, "in_progress")
    foreign = await ledger.add_progress(other.id, cast.mechanic_actor, date.today(), "Spark plugs")

    with pytest.raises(ValidationError, match="different service request"):
        await ledger.attach_photo(in_progress_request.id, foreign.id, cast.mechanic_actor, "photos/x.jpg")


# ============ upload ============


@pytest.mark.asyncio
async def test_upload_without_uploader(ledger):
    with pytest.raises(UploadFailed):
        await ledger.upload_photo(b"\xff\xd8\xffdata")


@pytest.mark.asyncio
async def test_upload_timeout_is_upload_failed(store):
    async def hang(content):
        await asyncio.sleep(1)

    uploader = AsyncMock()
    uploader.upload.side_effect = hang
    ledger = ProgressLedger(store, uploader, upload_timeout=0.05)
    with pytest.raises(UploadFailed, match="exceeded"):
        await ledger.upload_photo(b"\xff\xd8\xffdata")


@pytest.mark.asyncio
async def test_upload_error_is_upload_failed(store):
    uploader = AsyncMock()
    uploader.upload.side_effect = ConnectionError("network down")
    ledger = ProgressLedger(store, uploader)
    with pytest.raises(UploadFailed, match="network down") as exc_info:
        await ledger.upload_photo(b"\xff\xd8\xffdata")
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_upload_error_after_progress_keeps_progress(store, cast, in_progress_request):
    uploader = AsyncMock()
    uploader.upload.side_effect = ConnectionError("network down")
    ledger = ProgressLedger(store, uploader)

    with pytest.raises(UploadFailed) as exc_info:
        await ledger.add_progress_with_photo(
            in_progress_request.id, cast.mechanic_actor, date.today(), "Honed cylinders", b"\xff\xd8\xffdata"
        )

    kept = exc_info.value.progress
    assert kept is not None
    assert [e.id for e in await ledger.list_progress(in_progress_request.id)] == [kept.id]
    assert await ledger.list_photos(in_progress_request.id) == []


@pytest.mark.asyncio
async def test_add_progress_with_photo(store, cast, in_progress_request):
    uploader = AsyncMock()
    uploader.upload.return_value = "https://cdn.example.test/service-photos/1.jpg"
    ledger = ProgressLedger(store, uploader)

    progress, photo = await ledger.add_progress_with_photo(
        in_progress_request.id, cast.mechanic_actor, date.today(), "Honed cylinders", b"\xff\xd8\xffdata", "After"
    )
    uploader.upload.assert_awaited_once_with(b"\xff\xd8\xffdata")
    assert photo.service_progress_id == progress.id
    assert photo.photo_url == "https://cdn.example.test/service-photos/1.jpg"
    assert photo.description == "After"


@pytest.mark.asyncio
async def test_failed_upload_keeps_progress(store, cast, in_progress_request):
    uploader = AsyncMock()
    uploader.upload.side_effect = UploadFailed("bucket unavailable")
    ledger = ProgressLedger(store, uploader)

    with pytest.raises(UploadFailed) as exc_info:
        await ledger.add_progress_with_photo(
            in_progress_request.id, cast.mechanic_actor, date.today(), "Honed cylinders", b"\x89PNGdata"
        )

    kept = exc_info.value.progress
    assert kept is not None
    assert [e.id for e in await ledger.list_progress(in_progress_request.id)] == [kept.id]
    assert await ledger.list_photos(in_progress_request.id) == []


@pytest.mark.asyncio
async def test_listing_unknown_request(ledger):
    with pytest.raises(NotFound):
        await ledger.list_progress(uuid.uuid4())
    with pytest.raises(NotFound):
        await ledger.list_photos(uuid.uuid4())
