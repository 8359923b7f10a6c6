"""
Schedule mutations: create, delete, reassign and swap.

Each mutation runs validate-then-commit inside the month lock(s) of the rows
it touches, and leaves the store untouched when it rejects.
"""

import calendar
import logging
from collections.abc import Callable
from datetime import datetime

from oncall.errors import ConflictError, IntegrityError, InvalidInputError, NotFoundError
from oncall.models import Schedule, ShiftTrade, TradeType, User
from oncall.storage import (
    ScheduleStorage,
    UniqueConstraintViolation,
    UnknownOwnerViolation,
    new_id,
)
from oncall.validator import ScheduleCandidate, Violation, validate_schedule

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]


def is_real_date(month: int, year: int, day: int) -> bool:
    if not 1 <= month <= 12:
        return False
    return 1 <= day <= calendar.monthrange(year, month)[1]


def create_schedule(
    storage: ScheduleStorage, candidate: ScheduleCandidate, *, now_fn: NowFn
) -> Schedule:
    if not is_real_date(candidate.month, candidate.year, candidate.day):
        raise InvalidInputError(
            "Invalid date: this day does not exist in the specified month"
        )

    with storage.month_locks.hold((candidate.year, candidate.month)):
        result = validate_schedule(storage, candidate)
        if result.violation == Violation.USER_NOT_FOUND:
            raise NotFoundError(result.message)
        if not result.is_valid:
            logger.info(
                "Rejected schedule for user %s on %s-%02d-%02d: %s",
                candidate.user_id,
                candidate.year,
                candidate.month,
                candidate.day,
                result,
            )
            raise ConflictError(result.message, result.violation)

        schedule = Schedule(
            id=new_id(),
            month=candidate.month,
            year=candidate.year,
            day=candidate.day,
            user_id=candidate.user_id,
            status=candidate.status,
            created_at=now_fn(),
        )
        try:
            storage.insert_schedule(schedule)
        except UnknownOwnerViolation as exc:
            raise NotFoundError("User not found") from exc
        except UniqueConstraintViolation as exc:
            logger.warning("Schedule insert refused by store: %s", exc)
            raise ConflictError("This day slot was just taken") from exc

    logger.info(
        "Scheduled user %s on %s-%02d-%02d (schedule %s)",
        schedule.user_id,
        schedule.year,
        schedule.month,
        schedule.day,
        schedule.id,
    )
    return schedule


def delete_schedule(storage: ScheduleStorage, schedule_id: str) -> None:
    schedule = storage.get_schedule(schedule_id)
    if schedule is None:
        raise NotFoundError("Schedule not found")

    with storage.month_locks.hold((schedule.year, schedule.month)):
        if not storage.delete_schedule(schedule_id):
            raise NotFoundError("Schedule not found")

    logger.info("Deleted schedule %s", schedule_id)


def _active_user(storage: ScheduleStorage, user_id: str, label: str) -> User:
    user = storage.get_user(user_id)
    if user is None:
        raise NotFoundError(f"{label} not found")
    if not user.is_active:
        raise ConflictError(f"{user.name} is not an active user")
    return user


def _candidate_for(schedule: Schedule, user_id: str) -> ScheduleCandidate:
    return ScheduleCandidate(
        month=schedule.month,
        year=schedule.year,
        day=schedule.day,
        user_id=user_id,
        status=schedule.status,
    )


def reassign_schedule(
    storage: ScheduleStorage,
    schedule_id: str,
    to_user_id: str,
    *,
    now_fn: NowFn,
) -> Schedule:
    schedule = storage.get_schedule(schedule_id)
    if schedule is None:
        raise NotFoundError("Schedule not found")

    with storage.month_locks.hold((schedule.year, schedule.month)):
        # re-read inside the lock; the row may have moved or gone meanwhile
        schedule = storage.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule not found")

        target = _active_user(storage, to_user_id, "Target user")
        if schedule.user_id == target.id:
            raise ConflictError("Schedule is already assigned to this user")

        result = validate_schedule(
            storage, _candidate_for(schedule, target.id), exclude={schedule.id}
        )
        if not result.is_valid:
            logger.info(
                "Rejected reassign of schedule %s to %s: %s",
                schedule.id,
                target.id,
                result,
            )
            raise ConflictError(result.message, result.violation)

        try:
            [updated] = storage.update_schedule_owners({schedule.id: target.id})
        except KeyError as exc:
            raise IntegrityError(
                f"Schedule {schedule.id} vanished during reassignment"
            ) from exc
        except UnknownOwnerViolation as exc:
            raise NotFoundError("Target user not found") from exc
        except UniqueConstraintViolation as exc:
            logger.warning("Reassign refused by store: %s", exc)
            raise ConflictError("This day slot was just taken") from exc

    now = now_fn()
    storage.append_trade(
        ShiftTrade(
            id=new_id(),
            trade_type=TradeType.REASSIGN,
            from_user_id=schedule.user_id,
            to_user_id=target.id,
            schedule_id=schedule.id,
            month=schedule.month,
            year=schedule.year,
            requested_at=now,
            responded_at=now,
        )
    )
    logger.info(
        "Reassigned schedule %s from %s to %s",
        schedule.id,
        schedule.user_id,
        target.id,
    )
    return updated


def swap_schedules(
    storage: ScheduleStorage,
    schedule_id_a: str,
    schedule_id_b: str,
    *,
    now_fn: NowFn,
) -> list[Schedule]:
    """
    Exchange the owners of two schedules.

    Both sides are validated against the same pre-swap snapshot with both
    rows excluded; the two owner updates are then written in one store call.
    If either side fails nothing changes. Conflict messages name the user
    whose constraint failed.
    """
    first_a = storage.get_schedule(schedule_id_a)
    first_b = storage.get_schedule(schedule_id_b)
    if first_a is None or first_b is None:
        raise NotFoundError("Schedule not found")

    months = ((first_a.year, first_a.month), (first_b.year, first_b.month))
    with storage.month_locks.hold(*months):
        schedule_a = storage.get_schedule(schedule_id_a)
        schedule_b = storage.get_schedule(schedule_id_b)
        if schedule_a is None or schedule_b is None:
            raise NotFoundError("Schedule not found")
        if schedule_a.user_id == schedule_b.user_id:
            raise ConflictError("Cannot swap schedules belonging to the same user")

        user_a = _active_user(storage, schedule_a.user_id, "Schedule owner")
        user_b = _active_user(storage, schedule_b.user_id, "Schedule owner")

        pair = {schedule_a.id, schedule_b.id}
        checks = (
            (
                user_b,
                validate_schedule(
                    storage, _candidate_for(schedule_a, user_b.id), exclude=pair
                ),
            ),
            (
                user_a,
                validate_schedule(
                    storage, _candidate_for(schedule_b, user_a.id), exclude=pair
                ),
            ),
        )
        for user, result in checks:
            if not result.is_valid:
                logger.info(
                    "Rejected swap of %s and %s: %s failed %s",
                    schedule_a.id,
                    schedule_b.id,
                    user.id,
                    result,
                )
                raise ConflictError(f"{user.name}: {result.message}", result.violation)

        try:
            swapped = storage.update_schedule_owners(
                {schedule_a.id: user_b.id, schedule_b.id: user_a.id}
            )
        except KeyError as exc:
            raise IntegrityError(
                f"Schedule {exc.args[0]} vanished during swap"
            ) from exc
        except UnknownOwnerViolation as exc:
            raise NotFoundError("Schedule owner not found") from exc
        except UniqueConstraintViolation as exc:
            logger.warning("Swap refused by store: %s", exc)
            raise ConflictError("This day slot was just taken") from exc

    now = now_fn()
    for schedule, from_user, to_user, counterpart in (
        (schedule_a, user_a, user_b, schedule_b),
        (schedule_b, user_b, user_a, schedule_a),
    ):
        storage.append_trade(
            ShiftTrade(
                id=new_id(),
                trade_type=TradeType.SWAP,
                from_user_id=from_user.id,
                to_user_id=to_user.id,
                schedule_id=schedule.id,
                counterpart_schedule_id=counterpart.id,
                month=schedule.month,
                year=schedule.year,
                requested_at=now,
                responded_at=now,
            )
        )
    logger.info(
        "Swapped schedules %s (%s -> %s) and %s (%s -> %s)",
        schedule_a.id,
        user_a.id,
        user_b.id,
        schedule_b.id,
        user_b.id,
        user_a.id,
    )
    return swapped
