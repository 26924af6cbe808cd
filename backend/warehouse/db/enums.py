import enum


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    ON_HOLD = "ON_HOLD"
    CANCELLED = "CANCELLED"


class TransactionType(str, enum.Enum):
    RECEIVED = "RECEIVED"
    SHIPPED = "SHIPPED"
    ADJUSTED = "ADJUSTED"
    RETURNED = "RETURNED"