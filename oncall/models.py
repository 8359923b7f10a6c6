"""
Domain models for the on-call roster.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

DEFAULT_MONTHLY_SHIFT_LIMIT = 8


class CamelModel(BaseModel):
    """
    Serialized with camelCase keys on the wire; snake_case works in Python.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserRole(StrEnum):
    PHYSICIAN = "physician"
    LEARNER = "learner"
    ADMIN = "admin"


class ShiftStatus(StrEnum):
    SCHEDULED = "scheduled"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class TradeStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class TradeType(StrEnum):
    REASSIGN = "reassign"
    SWAP = "swap"


# roles that occupy a one-per-day slot; admins are supervisory and exempt
EXCLUSIVE_ROLES = frozenset({UserRole.PHYSICIAN, UserRole.LEARNER})


class User(CamelModel):
    id: str
    name: str
    phone: str
    role: UserRole = UserRole.PHYSICIAN
    is_active: bool = True
    monthly_shift_limit: int = DEFAULT_MONTHLY_SHIFT_LIMIT
    created_at: datetime


class Schedule(CamelModel):
    id: str
    month: int
    year: int
    day: int
    user_id: str
    status: ShiftStatus = ShiftStatus.SCHEDULED
    created_at: datetime


class MonthlySettings(CamelModel):
    id: str
    month: int
    year: int
    is_published: bool = False
    public_share_token: str | None = None
    created_at: datetime


class ShiftTrade(CamelModel):
    """
    Audit entry written after an ownership transfer has been committed.
    """

    id: str
    trade_type: TradeType
    from_user_id: str
    to_user_id: str
    schedule_id: str
    counterpart_schedule_id: str | None = None
    month: int
    year: int
    status: TradeStatus = TradeStatus.APPROVED
    requested_at: datetime
    responded_at: datetime | None = None
