from autoservice.models.service_photo import ServicePhoto
from autoservice.models.service_progress import ServiceProgress
from autoservice.models.service_request import ServiceRequest
from autoservice.models.status_history import StatusHistory
from autoservice.models.user import User
from autoservice.models.vehicle import Vehicle

__all__ = [
    "User",
    "Vehicle",
    "ServiceRequest",
    "StatusHistory",
    "ServiceProgress",
    "ServicePhoto",
]
