import uuid
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from autoservice.lifecycle.mechanic_notes import MechanicNoteItem, mechanic_notes_total, parse_mechanic_notes
from autoservice.models.enums import PaymentMethod, RequestStatus, UserRole
from autoservice.schemas.common import UTCDateTime


class Actor(BaseModel):
    """Who is performing an engine call. Resolved by the API layer, never implicit."""

    id: uuid.UUID
    role: UserRole

    model_config = {"frozen": True}


class ServiceRequestRecord(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    vehicle_id: uuid.UUID
    service_type: str
    description: str | None = None
    preferred_date: date | None = None
    status: RequestStatus = RequestStatus.PENDING
    assigned_mechanic_id: uuid.UUID | None = None
    estimated_cost: Decimal | None = None
    down_payment: Decimal | None = None
    total_cost: Decimal | None = None
    payment_method: PaymentMethod | None = None
    admin_notes: str | None = None
    mechanic_notes: str | None = None
    version: int = 1
    created_at: UTCDateTime
    updated_at: UTCDateTime

    model_config = {"from_attributes": True}

    @property
    def mechanic_note_items(self) -> list[MechanicNoteItem]:
        return parse_mechanic_notes(self.mechanic_notes)

    @property
    def notes_total(self) -> Decimal:
        """Sum of the costs the mechanic itemized in the notes."""
        return mechanic_notes_total(self.mechanic_note_items)

    @property
    def balance_due(self) -> Decimal | None:
        """``total_cost`` less the down payment; ``None`` until billed."""
        if self.total_cost is None:
            return None
        return self.total_cost - (self.down_payment or Decimal("0"))


class TransitionPayload(BaseModel):
    """Fields that may accompany a status change.

    Only the fields explicitly set are applied; passing ``None`` explicitly
    clears a field.
    """

    assigned_mechanic_id: uuid.UUID | None = None
    estimated_cost: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    down_payment: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    total_cost: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    payment_method: PaymentMethod | None = None
    admin_notes: str | None = Field(None, max_length=2000)
    mechanic_notes: list[MechanicNoteItem] | None = None

    model_config = {"extra": "forbid"}

    @field_validator("mechanic_notes")
    @classmethod
    def validate_note_costs(cls, v: list[MechanicNoteItem] | None) -> list[MechanicNoteItem] | None:
        for item in v or []:
            if item.cost is not None and item.cost < 0:
                raise ValueError("mechanic note costs must be >= 0")
        return v

    @field_validator("admin_notes")
    @classmethod
    def blank_admin_notes_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    def provided_fields(self) -> set[str]:
        return set(self.model_fields_set)


class StatusHistoryRecord(BaseModel):
    id: uuid.UUID
    service_request_id: uuid.UUID
    status: RequestStatus
    notes: str | None = None
    changed_by: uuid.UUID
    request_version: int
    created_at: UTCDateTime

    model_config = {"from_attributes": True}


class VehicleRecord(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    make: str
    model: str
    year: int
    license_plate: str

    model_config = {"from_attributes": True}


class UserRecord(BaseModel):
    id: uuid.UUID
    full_name: str
    role: UserRole
    phone: str | None = None

    model_config = {"from_attributes": True}
