"""
Scheduling constraint checks.

`validate_schedule` answers "would this entry be legal if it existed?" against
the current store contents. It reads only, never raises for a rule violation,
and stops at the first failed rule:

  - USER_NOT_FOUND: the candidate's user does not exist
  - DUPLICATE_USER_DAY: the user already holds a slot that day
  - MONTHLY_LIMIT_EXCEEDED: the user is at their monthly shift limit
  - ROLE_SLOT_TAKEN: another physician (or learner) already holds that day

Rows listed in `exclude` are treated as absent, which lets reassign and swap
evaluate the post-move state without the moved rows conflicting with
themselves. Admin-role users neither take nor are blocked by a role slot.
"""

import logging
from collections.abc import Collection
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel

from oncall.models import EXCLUSIVE_ROLES, ShiftStatus, UserRole

if TYPE_CHECKING:
    from oncall.storage import ScheduleStorage

logger = logging.getLogger(__name__)


class Violation(StrEnum):
    USER_NOT_FOUND = "user_not_found"
    DUPLICATE_USER_DAY = "duplicate_user_day"
    MONTHLY_LIMIT_EXCEEDED = "monthly_limit_exceeded"
    ROLE_SLOT_TAKEN = "role_slot_taken"


class ScheduleCandidate(BaseModel):
    month: int
    year: int
    day: int
    user_id: str
    status: ShiftStatus = ShiftStatus.SCHEDULED


@dataclass(frozen=True)
class ValidationResult:
    violation: Violation | None = None
    message: str | None = None
    role: UserRole | None = None
    limit: int | None = None

    @property
    def is_valid(self) -> bool:
        return self.violation is None

    def __str__(self) -> str:
        if self.is_valid:
            return "ok"
        return f"{self.violation.value}: {self.message}"


VALID = ValidationResult()


def validate_schedule(
    storage: "ScheduleStorage",
    candidate: ScheduleCandidate,
    exclude: Collection[str] = frozenset(),
) -> ValidationResult:
    user = storage.get_user(candidate.user_id)
    if user is None:
        return ValidationResult(Violation.USER_NOT_FOUND, "User not found")

    same_day = storage.list_schedules(
        user_id=candidate.user_id,
        month=candidate.month,
        year=candidate.year,
        day=candidate.day,
        exclude=exclude,
    )
    if same_day:
        return ValidationResult(
            Violation.DUPLICATE_USER_DAY, "User is already scheduled for this day"
        )

    count = storage.count_user_month(
        candidate.user_id, candidate.month, candidate.year, exclude=exclude
    )
    if count >= user.monthly_shift_limit:
        return ValidationResult(
            Violation.MONTHLY_LIMIT_EXCEEDED,
            "User has reached their monthly shift limit of "
            f"{user.monthly_shift_limit}",
            limit=user.monthly_shift_limit,
        )

    if user.role in EXCLUSIVE_ROLES:
        day_rows = storage.list_schedules_for_day(
            candidate.month, candidate.year, candidate.day, exclude=exclude
        )
        for row in day_rows:
            owner = storage.get_user(row.user_id)
            if owner is not None and owner.role == user.role:
                return ValidationResult(
                    Violation.ROLE_SLOT_TAKEN,
                    f"Only one {user.role.value} can be scheduled per day",
                    role=user.role,
                )

    logger.debug(
        "candidate %s/%s/%s for user %s passes",
        candidate.year,
        candidate.month,
        candidate.day,
        candidate.user_id,
    )
    return VALID
