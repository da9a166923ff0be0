"""Request lifecycle engine.

Every operation loads the request inside one unit of work, checks the actor
and the transition table, applies the change with a version compare-and-set
and, for status changes, appends exactly one history row before committing.
Nothing here logs or retries; errors propagate to the caller.
"""
import uuid
from datetime import date
from decimal import Decimal

from pydantic import ValidationError as PydanticValidationError

from autoservice.lifecycle.common import as_uuid, resolve_timeout, utcnow, with_deadline
from autoservice.lifecycle.errors import Forbidden, InvalidTransition, MissingField, ValidationError
from autoservice.lifecycle.mechanic_notes import has_content, serialize_mechanic_notes, summarize_mechanic_notes
from autoservice.lifecycle.transitions import (
    ASSIGNABLE_STATUSES,
    BILLED_STATUSES,
    CLAIMED_STATUSES,
    allowed_transition,
    is_terminal,
    is_transition,
)
from autoservice.models.enums import PaymentMethod, RequestStatus, UserRole
from autoservice.repositories.base import LifecycleRepository, LifecycleStore
from autoservice.schemas.service_request import (
    Actor,
    ServiceRequestRecord,
    StatusHistoryRecord,
    TransitionPayload,
)

MECHANIC_WRITABLE_FIELDS = frozenset({"mechanic_notes"})

DEFAULT_HISTORY_NOTES: dict[RequestStatus, str] = {
    RequestStatus.APPROVED: "Request approved",
    RequestStatus.IN_PROGRESS: "Work in progress",
    RequestStatus.PARTS_NEEDED: "Waiting for parts",
    RequestStatus.QUALITY_CHECK: "Quality check started",
    RequestStatus.AWAITING_PAYMENT: "Work finished, awaiting payment",
    RequestStatus.COMPLETED: "Payment recorded and service completed",
    RequestStatus.REJECTED: "Request rejected",
}


def _as_status(value) -> RequestStatus:
    try:
        return RequestStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown status '{value}'") from exc


def _as_payload(payload) -> TransitionPayload:
    if payload is None:
        return TransitionPayload()
    if isinstance(payload, TransitionPayload):
        return payload
    try:
        return TransitionPayload.model_validate(payload)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "payload"
        raise ValidationError(f"Invalid {field}: {error['msg']}") from exc


def _as_date(value) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError("preferred_date must be an ISO date (YYYY-MM-DD)") from exc


def _authorize(record: ServiceRequestRecord, actor: Actor) -> None:
    """Admins act on any request, mechanics only on their own, customers never."""
    if actor.role == UserRole.ADMIN:
        return
    if actor.role == UserRole.MECHANIC and record.assigned_mechanic_id == actor.id:
        return
    if actor.role == UserRole.MECHANIC:
        raise Forbidden("Only the assigned mechanic can update this request")
    raise Forbidden(f"Role '{actor.role.value}' cannot change a service request")


def _derive_history_note(target: RequestStatus, changes: TransitionPayload) -> str:
    if changes.admin_notes:
        return changes.admin_notes
    summary = summarize_mechanic_notes(changes.mechanic_notes or [])
    if summary:
        return summary
    return DEFAULT_HISTORY_NOTES.get(target, f"Status changed to {target.value}")


class RequestLifecycleEngine:
    """Validates and applies service request changes against a ``LifecycleStore``.

    ``timeout`` is the default deadline (seconds) for each persistence call;
    every operation also accepts its own ``timeout``.
    """

    def __init__(self, store: LifecycleStore, *, timeout: float | None = None):
        self.store = store
        self.timeout = timeout

    def _deadline(self, timeout: float | None) -> float:
        return resolve_timeout(timeout, self.timeout)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_request(self, request_id, *, timeout: float | None = None) -> ServiceRequestRecord:
        request_id = as_uuid(request_id, "request_id")
        deadline = self._deadline(timeout)
        async with self.store.begin() as repo:
            return await with_deadline(repo.get_request(request_id), deadline)

    async def list_requests(
        self,
        *,
        customer_id=None,
        assigned_mechanic_id=None,
        status=None,
        timeout: float | None = None,
    ) -> list[ServiceRequestRecord]:
        """Newest-first listing, optionally filtered by customer, mechanic and status."""
        filters = {
            "customer_id": as_uuid(customer_id, "customer_id") if customer_id is not None else None,
            "assigned_mechanic_id": (
                as_uuid(assigned_mechanic_id, "assigned_mechanic_id")
                if assigned_mechanic_id is not None else None
            ),
            "status": _as_status(status) if status is not None else None,
        }
        deadline = self._deadline(timeout)
        async with self.store.begin() as repo:
            return await with_deadline(repo.list_requests(**filters), deadline)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_request(
        self,
        customer_id,
        vehicle_id,
        service_type: str,
        description: str | None = None,
        preferred_date: date | str | None = None,
        *,
        timeout: float | None = None,
    ) -> ServiceRequestRecord:
        if not customer_id:
            raise ValidationError("customer_id is required")
        if not vehicle_id:
            raise ValidationError("vehicle_id is required")
        customer_id = as_uuid(customer_id, "customer_id")
        vehicle_id = as_uuid(vehicle_id, "vehicle_id")

        service_type = (service_type or "").strip()
        if not service_type:
            raise ValidationError("service_type is required")
        if len(service_type) > 100:
            raise ValidationError("service_type must be at most 100 characters")
        description = description.strip() or None if description else None
        preferred = _as_date(preferred_date)

        deadline = self._deadline(timeout)
        async with self.store.begin() as repo:
            vehicle = await with_deadline(repo.get_vehicle(vehicle_id), deadline)
            if vehicle is None:
                raise ValidationError(f"Vehicle '{vehicle_id}' not found")
            if vehicle.customer_id != customer_id:
                raise ValidationError("Vehicle does not belong to this customer")

            now = utcnow()
            record = ServiceRequestRecord(
                id=uuid.uuid4(),
                customer_id=customer_id,
                vehicle_id=vehicle_id,
                service_type=service_type,
                description=description,
                preferred_date=preferred,
                status=RequestStatus.PENDING,
                version=1,
                created_at=now,
                updated_at=now,
            )
            await with_deadline(repo.insert_request(record), deadline)
            await with_deadline(repo.commit(), deadline)
        return record

    async def transition(
        self,
        request_id,
        actor: Actor,
        target_status,
        payload: TransitionPayload | dict | None = None,
        *,
        timeout: float | None = None,
    ) -> ServiceRequestRecord:
        """Move a request to ``target_status``, applying ``payload`` in the same write.

        Re-submitting the current status updates the payload fields in place
        without a history row, and is a no-op when nothing changes.
        """
        request_id = as_uuid(request_id, "request_id")
        target = _as_status(target_status)
        deadline = self._deadline(timeout)

        async with self.store.begin() as repo:
            current = await with_deadline(repo.get_request(request_id), deadline)
            _authorize(current, actor)
            updated = await self._apply(repo, current, actor, target, payload, deadline)
            if updated is not current:
                await with_deadline(repo.commit(), deadline)
        return updated

    async def assign_mechanic(
        self,
        request_id,
        actor: Actor,
        mechanic_id,
        *,
        timeout: float | None = None,
    ) -> ServiceRequestRecord:
        """Set or change the assigned mechanic while the job is still unclaimed."""
        if actor.role != UserRole.ADMIN:
            raise Forbidden("Only admins can assign mechanics")
        request_id = as_uuid(request_id, "request_id")
        mechanic_id = as_uuid(mechanic_id, "mechanic_id")
        deadline = self._deadline(timeout)

        async with self.store.begin() as repo:
            current = await with_deadline(repo.get_request(request_id), deadline)
            if current.status not in ASSIGNABLE_STATUSES:
                raise Forbidden(
                    f"Cannot reassign a request in status '{current.status.value}': job already claimed"
                )
            if current.assigned_mechanic_id == mechanic_id:
                return current
            await self._check_assignee(repo, mechanic_id, deadline)

            updated = current.model_copy(update={
                "assigned_mechanic_id": mechanic_id,
                "version": current.version + 1,
                "updated_at": utcnow(),
            })
            await with_deadline(repo.save_request(updated, expected_version=current.version), deadline)
            await with_deadline(repo.commit(), deadline)
        return updated

    async def record_payment(
        self,
        request_id,
        actor: Actor,
        total_cost: Decimal | int | str,
        method: PaymentMethod | str,
        *,
        admin_notes: str | None = None,
        timeout: float | None = None,
    ) -> ServiceRequestRecord:
        """Record the final bill and complete the request."""
        if actor.role != UserRole.ADMIN:
            raise Forbidden("Only admins can record payments")
        request_id = as_uuid(request_id, "request_id")
        deadline = self._deadline(timeout)

        async with self.store.begin() as repo:
            current = await with_deadline(repo.get_request(request_id), deadline)
            if current.status != RequestStatus.AWAITING_PAYMENT:
                raise InvalidTransition(
                    current.status,
                    RequestStatus.COMPLETED,
                    f"Payment can only be recorded while awaiting payment, not '{current.status.value}'",
                )
            fields = {"total_cost": total_cost, "payment_method": method}
            if admin_notes is not None:
                fields["admin_notes"] = admin_notes
            updated = await self._apply(repo, current, actor, RequestStatus.COMPLETED, fields, deadline)
            await with_deadline(repo.commit(), deadline)
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _check_assignee(self, repo: LifecycleRepository, mechanic_id: uuid.UUID, deadline: float) -> None:
        user = await with_deadline(repo.get_user(mechanic_id), deadline)
        if user is None or user.role != UserRole.MECHANIC:
            raise ValidationError(f"User '{mechanic_id}' is not a mechanic")

    async def _apply(
        self,
        repo: LifecycleRepository,
        current: ServiceRequestRecord,
        actor: Actor,
        target: RequestStatus,
        payload,
        deadline: float,
    ) -> ServiceRequestRecord:
        """Validate and write one change. Returns ``current`` itself when nothing changes."""
        if is_terminal(current.status):
            raise InvalidTransition(
                current.status, target, f"Request is already '{current.status.value}' and cannot change"
            )

        same_status = target == current.status
        required: frozenset[str] = frozenset()
        if not same_status:
            if not is_transition(current.status, target):
                raise InvalidTransition(current.status, target)
            check = allowed_transition(current.status, target, actor.role)
            if not check.allowed:
                raise Forbidden(
                    f"Role '{actor.role.value}' cannot move a request from "
                    f"'{current.status.value}' to '{target.value}'"
                )
            required = check.required_fields

        changes = _as_payload(payload)
        provided = changes.provided_fields()
        if actor.role != UserRole.ADMIN and provided - MECHANIC_WRITABLE_FIELDS:
            raise Forbidden(
                f"Role '{actor.role.value}' cannot set: {', '.join(sorted(provided - MECHANIC_WRITABLE_FIELDS))}"
            )

        missing = set()
        for field in required:
            if field == "mechanic_notes":
                if not has_content(changes.mechanic_notes):
                    missing.add(field)
            elif field == "assigned_mechanic_id":
                if "assigned_mechanic_id" not in provided and current.assigned_mechanic_id is None:
                    missing.add(field)
                elif "assigned_mechanic_id" in provided and changes.assigned_mechanic_id is None:
                    missing.add(field)
            elif getattr(changes, field) is None:
                missing.add(field)
        if missing:
            raise MissingField(missing, target)

        fields = {name: getattr(changes, name) for name in provided}
        if "mechanic_notes" in fields:
            fields["mechanic_notes"] = serialize_mechanic_notes(changes.mechanic_notes)

        if fields.get("total_cost") is not None and target not in BILLED_STATUSES:
            raise ValidationError("total_cost can only be set once the work is finished")
        if fields.get("payment_method") is not None and target != RequestStatus.COMPLETED:
            raise ValidationError("payment_method can only be set when the request is completed")

        if "assigned_mechanic_id" in fields and fields["assigned_mechanic_id"] != current.assigned_mechanic_id:
            if current.status not in ASSIGNABLE_STATUSES:
                raise Forbidden(
                    f"Cannot reassign a request in status '{current.status.value}': job already claimed"
                )
            new_mechanic = fields["assigned_mechanic_id"]
            if new_mechanic is None:
                if target in CLAIMED_STATUSES or target == RequestStatus.APPROVED:
                    raise ValidationError(f"A mechanic must stay assigned in status '{target.value}'")
            else:
                await self._check_assignee(repo, new_mechanic, deadline)

        if target == RequestStatus.COMPLETED:
            total = fields.get("total_cost", current.total_cost)
            down = fields.get("down_payment", current.down_payment)
            if down is not None and total < down:
                raise ValidationError("total_cost cannot be lower than the down payment")

        if target == RequestStatus.REJECTED and current.status in BILLED_STATUSES:
            # total_cost only exists while billed
            fields["total_cost"] = None
        if not same_status:
            fields["status"] = target

        changed = {name: value for name, value in fields.items() if getattr(current, name) != value}
        if same_status and not changed:
            return current

        updated = current.model_copy(update={
            **changed,
            "version": current.version + 1,
            "updated_at": utcnow(),
        })
        await with_deadline(repo.save_request(updated, expected_version=current.version), deadline)

        if not same_status:
            entry = StatusHistoryRecord(
                id=uuid.uuid4(),
                service_request_id=current.id,
                status=target,
                notes=_derive_history_note(target, changes),
                changed_by=actor.id,
                request_version=updated.version,
                created_at=updated.updated_at,
            )
            await with_deadline(repo.append_history(entry), deadline)
        return updated
