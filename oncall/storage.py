"""
Entity store: users, schedules, monthly settings and the trade log, kept in an
`InMemoryKeyValueDatabase` under typed key prefixes.
"""

import uuid
from collections.abc import Collection, Mapping
from typing import Any

from oncall.database import InMemoryKeyValueDatabase, KeyedLocks
from oncall.models import (
    EXCLUSIVE_ROLES,
    MonthlySettings,
    Schedule,
    ShiftTrade,
    User,
)

Entity = User | Schedule | MonthlySettings | ShiftTrade


class ConstraintViolation(Exception):
    """A schedule write the store refuses; nothing is written."""


class UniqueConstraintViolation(ConstraintViolation):
    """
    Raised by the store when a schedule write would double-book a user or a
    role slot on a day.
    """


class UnknownOwnerViolation(ConstraintViolation):
    """Raised when a schedule write names a user that no longer exists."""


def new_id() -> str:
    return str(uuid.uuid4())


def _settings_key(month: int, year: int) -> str:
    return f"settings:{year}-{month:02d}"


class ScheduleStorage:
    def __init__(
        self, db: InMemoryKeyValueDatabase[str, Entity] | None = None
    ) -> None:
        self.db: InMemoryKeyValueDatabase[str, Entity] = (
            db if db is not None else InMemoryKeyValueDatabase()
        )
        # validate+commit critical sections, keyed by (year, month)
        self.month_locks: KeyedLocks[tuple[int, int]] = KeyedLocks()

    # users

    def get_user(self, user_id: str) -> User | None:
        user = self.db.get(f"user:{user_id}")
        return user if isinstance(user, User) else None

    def get_user_by_name(self, name: str) -> User | None:
        return next(
            (u for u in self.db.all() if isinstance(u, User) and u.name == name),
            None,
        )

    def list_users(self) -> list[User]:
        users = [u for u in self.db.all() if isinstance(u, User)]
        return sorted(users, key=lambda u: (u.created_at, u.name))

    def put_user(self, user: User) -> User:
        self.db.put(f"user:{user.id}", user)
        return user

    def update_user(self, user_id: str, updates: Mapping[str, Any]) -> User | None:
        with self.db.locked():
            user = self.get_user(user_id)
            if user is None:
                return None
            updated = user.model_copy(update=dict(updates))
            self.db.put(f"user:{user_id}", updated)
            return updated

    def delete_user(self, user_id: str) -> bool:
        return self.db.delete(f"user:{user_id}")

    # schedules

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        schedule = self.db.get(f"schedule:{schedule_id}")
        return schedule if isinstance(schedule, Schedule) else None

    def list_schedules(
        self,
        *,
        month: int | None = None,
        year: int | None = None,
        day: int | None = None,
        user_id: str | None = None,
        exclude: Collection[str] = (),
    ) -> list[Schedule]:
        schedules = [
            s
            for s in self.db.all()
            if isinstance(s, Schedule)
            and (month is None or s.month == month)
            and (year is None or s.year == year)
            and (day is None or s.day == day)
            and (user_id is None or s.user_id == user_id)
            and s.id not in exclude
        ]
        return sorted(schedules, key=lambda s: (s.year, s.month, s.day, s.created_at))

    def list_schedules_for_month(self, month: int, year: int) -> list[Schedule]:
        return self.list_schedules(month=month, year=year)

    def list_schedules_for_day(
        self, month: int, year: int, day: int, *, exclude: Collection[str] = ()
    ) -> list[Schedule]:
        return self.list_schedules(month=month, year=year, day=day, exclude=exclude)

    def count_user_month(
        self, user_id: str, month: int, year: int, *, exclude: Collection[str] = ()
    ) -> int:
        return len(
            self.list_schedules(
                user_id=user_id, month=month, year=year, exclude=exclude
            )
        )

    def insert_schedule(self, schedule: Schedule) -> Schedule:
        with self.db.locked():
            self._check_slot_unique(schedule, ignore={schedule.id})
            self.db.put(f"schedule:{schedule.id}", schedule)
        return schedule

    def update_schedule_owners(self, owners: Mapping[str, str]) -> list[Schedule]:
        """
        Point each schedule id in `owners` at its new user id in one write.

        The rows are checked against the uniqueness backstop as a group (with
        each other already moved), then written together. Raises `KeyError`
        if a row has vanished, `UnknownOwnerViolation` if a new owner is gone
        and `UniqueConstraintViolation` on a clash; nothing is written in any
        case.
        """
        with self.db.locked():
            updated: dict[str, Schedule] = {}
            for schedule_id, user_id in owners.items():
                current = self.get_schedule(schedule_id)
                if current is None:
                    raise KeyError(schedule_id)
                updated[schedule_id] = current.model_copy(update={"user_id": user_id})

            for schedule in updated.values():
                self._check_slot_unique(
                    schedule, ignore=set(updated), others=updated.values()
                )

            self.db.put_many({f"schedule:{s.id}": s for s in updated.values()})
            return [updated[schedule_id] for schedule_id in owners]

    def delete_schedule(self, schedule_id: str) -> bool:
        return self.db.delete(f"schedule:{schedule_id}")

    def _check_slot_unique(
        self,
        schedule: Schedule,
        *,
        ignore: Collection[str],
        others: Collection[Schedule] = (),
    ) -> None:
        owner = self.get_user(schedule.user_id)
        if owner is None:
            raise UnknownOwnerViolation(f"user {schedule.user_id} does not exist")

        neighbours = self.list_schedules_for_day(
            schedule.month, schedule.year, schedule.day, exclude=ignore
        ) + [
            s
            for s in others
            if s.id != schedule.id
            and (s.month, s.year, s.day) == (schedule.month, schedule.year, schedule.day)
        ]

        for other in neighbours:
            if other.user_id == schedule.user_id:
                raise UniqueConstraintViolation(
                    f"user {schedule.user_id} already holds "
                    f"{schedule.year}-{schedule.month:02d}-{schedule.day:02d}"
                )
            if owner.role not in EXCLUSIVE_ROLES:
                continue
            other_owner = self.get_user(other.user_id)
            if other_owner is not None and other_owner.role == owner.role:
                raise UniqueConstraintViolation(
                    f"{owner.role} slot on "
                    f"{schedule.year}-{schedule.month:02d}-{schedule.day:02d} is taken"
                )

    # monthly settings

    def get_settings(self, month: int, year: int) -> MonthlySettings | None:
        settings = self.db.get(_settings_key(month, year))
        return settings if isinstance(settings, MonthlySettings) else None

    def get_settings_by_token(self, token: str) -> MonthlySettings | None:
        return next(
            (
                s
                for s in self.db.all()
                if isinstance(s, MonthlySettings) and s.public_share_token == token
            ),
            None,
        )

    def put_settings(self, settings: MonthlySettings) -> MonthlySettings:
        self.db.put(_settings_key(settings.month, settings.year), settings)
        return settings

    # trade log

    def append_trade(self, trade: ShiftTrade) -> ShiftTrade:
        self.db.put(f"trade:{trade.id}", trade)
        return trade

    def list_trades(
        self, *, month: int | None = None, year: int | None = None
    ) -> list[ShiftTrade]:
        trades = [
            t
            for t in self.db.all()
            if isinstance(t, ShiftTrade)
            and (month is None or t.month == month)
            and (year is None or t.year == year)
        ]
        return sorted(trades, key=lambda t: t.requested_at, reverse=True)
