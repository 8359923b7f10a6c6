"""
Request and response bodies for the HTTP API.

Field limits live here so that malformed input is rejected before it reaches
the validator or the store.
"""

from typing import Annotated

from pydantic import UUID4, Field, StringConstraints

from oncall.models import (
    DEFAULT_MONTHLY_SHIFT_LIMIT,
    CamelModel,
    MonthlySettings,
    Schedule,
    ShiftStatus,
    User,
    UserRole,
)

PHONE_PATTERN = r"^\+?[\d\s\-().]{10,20}$"

Name = Annotated[str, StringConstraints(min_length=1, max_length=100)]
Phone = Annotated[str, StringConstraints(pattern=PHONE_PATTERN)]
ShiftLimit = Annotated[int, Field(ge=1, le=31)]
Month = Annotated[int, Field(ge=1, le=12)]
Year = Annotated[int, Field(ge=2020, le=2100)]
Day = Annotated[int, Field(ge=1, le=31)]


class UserCreate(CamelModel):
    name: Name
    phone: Phone
    role: UserRole = UserRole.PHYSICIAN
    is_active: bool = True
    monthly_shift_limit: ShiftLimit = DEFAULT_MONTHLY_SHIFT_LIMIT


class UserUpdate(CamelModel):
    name: Name | None = None
    phone: Phone | None = None
    role: UserRole | None = None
    is_active: bool | None = None
    monthly_shift_limit: ShiftLimit | None = None


class ScheduleCreate(CamelModel):
    month: Month
    year: Year
    day: Day
    user_id: UUID4
    status: ShiftStatus = ShiftStatus.SCHEDULED


class ReassignRequest(CamelModel):
    schedule_id: UUID4
    to_user_id: UUID4


class SwapRequest(CamelModel):
    schedule_id_a: UUID4
    schedule_id_b: UUID4


class MonthYear(CamelModel):
    month: Month
    year: Year


class MonthlySettingsUpdate(MonthYear):
    is_published: bool | None = None
    public_share_token: Annotated[str, StringConstraints(min_length=1)] | None = None


class GeneratedToken(CamelModel):
    token: str
    share_url: str
    settings: MonthlySettings


class PublicSchedule(CamelModel):
    schedules: list[Schedule]
    users: list[User]
    settings: MonthlySettings


class MessageResponse(CamelModel):
    message: str
