import enum

# These enums are stored as VARCHAR columns, same as the rest of the schema.


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    MECHANIC = "mechanic"
    CUSTOMER = "customer"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    PARTS_NEEDED = "parts_needed"
    QUALITY_CHECK = "quality_check"
    AWAITING_PAYMENT = "awaiting_payment"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    NON_CASH = "non_cash"
