"""Error kinds raised by the lifecycle engine.

Every error is scoped to the single operation that raised it. ``status_code``
is the HTTP status an API layer should answer with; ``retryable`` tells the
caller whether reloading and retrying the same call can succeed.
"""
from collections.abc import Iterable


class LifecycleError(Exception):
    code = "lifecycle_error"
    status_code = 400
    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail, "retryable": self.retryable}


class ValidationError(LifecycleError):
    """Malformed or missing input; the caller must correct it."""

    code = "validation_error"
    status_code = 422


class NotFound(LifecycleError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class Forbidden(LifecycleError):
    """Actor role or ownership does not allow the operation."""

    code = "forbidden"
    status_code = 403


class InvalidTransition(LifecycleError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current, target, detail: str | None = None):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(detail or f"Cannot transition from '{current_value}' to '{target_value}'")
        self.current = current
        self.target = target


class MissingField(LifecycleError):
    """A transition-specific required payload field is absent."""

    code = "missing_field"
    status_code = 422

    def __init__(self, fields: Iterable[str], target=None):
        self.fields = tuple(sorted(fields))
        target_value = getattr(target, "value", target)
        suffix = f" for transition to '{target_value}'" if target_value else ""
        super().__init__(f"Missing required field(s){suffix}: {', '.join(self.fields)}")
        self.target = target


class Conflict(LifecycleError):
    """Another write won the race; reload and retry."""

    code = "conflict"
    status_code = 409
    retryable = True


class Timeout(LifecycleError):
    """A persistence call exceeded its deadline."""

    code = "timeout"
    status_code = 504
    retryable = True


class UploadFailed(LifecycleError):
    """The upload collaborator failed. Data written before the upload is kept.

    ``progress`` is set when the failure happened after a progress entry was
    committed by ``ProgressLedger.add_progress_with_photo``.
    """

    code = "upload_failed"
    status_code = 502

    def __init__(self, detail: str, progress=None):
        super().__init__(detail)
        self.progress = progress


__all__ = [
    "LifecycleError",
    "ValidationError",
    "NotFound",
    "Forbidden",
    "InvalidTransition",
    "MissingField",
    "Conflict",
    "Timeout",
    "UploadFailed",
]
