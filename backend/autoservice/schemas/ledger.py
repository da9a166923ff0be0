import uuid
from datetime import date

from pydantic import BaseModel

from autoservice.schemas.common import UTCDateTime


class ServiceProgressRecord(BaseModel):
    id: uuid.UUID
    service_request_id: uuid.UUID
    progress_date: date
    description: str
    created_by: uuid.UUID
    created_at: UTCDateTime

    model_config = {"from_attributes": True}


class ServicePhotoRecord(BaseModel):
    id: uuid.UUID
    service_request_id: uuid.UUID
    service_progress_id: uuid.UUID | None = None
    photo_url: str
    description: str | None = None
    uploaded_by: uuid.UUID
    created_at: UTCDateTime

    model_config = {"from_attributes": True}
