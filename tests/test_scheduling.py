"""
Engine tests: constraint checks and the create/reassign/swap mutations,
exercised directly against a fresh `ScheduleStorage`.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

import pytest

from oncall import scheduling, users
from oncall.errors import ConflictError, InvalidInputError, NotFoundError
from oncall.models import Schedule, User, UserRole
from oncall.schemas import UserCreate, UserUpdate
from oncall.storage import (
    ScheduleStorage,
    UniqueConstraintViolation,
    UnknownOwnerViolation,
)
from oncall.validator import ScheduleCandidate, Violation, validate_schedule

NOW = datetime(2025, 3, 1, 8, 0, tzinfo=UTC)


def _now() -> datetime:
    return NOW


@pytest.fixture
def storage() -> ScheduleStorage:
    return ScheduleStorage()


def _user(
    storage: ScheduleStorage,
    name: str,
    *,
    role: UserRole = UserRole.PHYSICIAN,
    limit: int = 8,
    active: bool = True,
) -> User:
    return users.create_user(
        storage,
        UserCreate(
            name=name,
            phone="+1 555 010 0000",
            role=role,
            monthly_shift_limit=limit,
            is_active=active,
        ),
        now_fn=_now,
    )


def _candidate(user: User, day: int, *, month: int = 3, year: int = 2025):
    return ScheduleCandidate(month=month, year=year, day=day, user_id=user.id)


def _book(
    storage: ScheduleStorage, user: User, day: int, *, month: int = 3, year: int = 2025
) -> Schedule:
    return scheduling.create_schedule(
        storage, _candidate(user, day, month=month, year=year), now_fn=_now
    )


def _owners(storage: ScheduleStorage, *schedules: Schedule) -> list[str]:
    return [storage.get_schedule(s.id).user_id for s in schedules]


class TestValidateSchedule:
    def test_unknown_user(self, storage):
        result = validate_schedule(
            storage, ScheduleCandidate(month=3, year=2025, day=1, user_id="nobody")
        )
        assert result.violation == Violation.USER_NOT_FOUND
        assert not result.is_valid

    def test_same_user_same_day(self, storage):
        dr = _user(storage, "Dr. Dup", role=UserRole.ADMIN)
        _book(storage, dr, 4)

        result = validate_schedule(storage, _candidate(dr, 4))
        assert result.violation == Violation.DUPLICATE_USER_DAY
        assert result.message == "User is already scheduled for this day"

    def test_monthly_limit_carries_limit(self, storage):
        dr = _user(storage, "Dr. Two", limit=2)
        _book(storage, dr, 1)
        _book(storage, dr, 2)

        result = validate_schedule(storage, _candidate(dr, 3))
        assert result.violation == Violation.MONTHLY_LIMIT_EXCEEDED
        assert result.limit == 2
        assert result.message == "User has reached their monthly shift limit of 2"

        # other months are counted separately
        assert validate_schedule(storage, _candidate(dr, 3, month=4)).is_valid

    def test_role_slots(self, storage):
        dr_a = _user(storage, "Dr. A")
        dr_b = _user(storage, "Dr. B")
        learner_a = _user(storage, "Learner A", role=UserRole.LEARNER)
        learner_b = _user(storage, "Learner B", role=UserRole.LEARNER)
        _book(storage, dr_a, 5)
        _book(storage, learner_a, 5)

        physician = validate_schedule(storage, _candidate(dr_b, 5))
        assert physician.violation == Violation.ROLE_SLOT_TAKEN
        assert physician.role == UserRole.PHYSICIAN
        assert physician.message == "Only one physician can be scheduled per day"

        learner = validate_schedule(storage, _candidate(learner_b, 5))
        assert learner.role == UserRole.LEARNER
        assert learner.message == "Only one learner can be scheduled per day"

    def test_admins_are_exempt_from_role_slots(self, storage):
        dr = _user(storage, "Dr. Busy")
        admin = _user(storage, "Admin One", role=UserRole.ADMIN)
        other_admin = _user(storage, "Admin Two", role=UserRole.ADMIN)
        _book(storage, dr, 6)

        assert validate_schedule(storage, _candidate(admin, 6)).is_valid
        _book(storage, admin, 6)
        assert validate_schedule(storage, _candidate(other_admin, 6)).is_valid

    def test_excluded_rows_are_ignored(self, storage):
        dr_a = _user(storage, "Dr. A")
        dr_b = _user(storage, "Dr. B")
        held = _book(storage, dr_a, 7)

        assert not validate_schedule(storage, _candidate(dr_b, 7)).is_valid
        assert validate_schedule(storage, _candidate(dr_b, 7), exclude={held.id}).is_valid

    def test_has_no_side_effects(self, storage):
        dr_a = _user(storage, "Dr. A")
        dr_b = _user(storage, "Dr. B")
        _book(storage, dr_a, 8)
        before = storage.db.all()

        validate_schedule(storage, _candidate(dr_b, 8))
        validate_schedule(storage, _candidate(dr_b, 9))

        assert storage.db.all() == before


class TestCreateSchedule:
    @pytest.mark.parametrize("year", [2024, 2025, 2026])
    def test_february_30th_is_rejected(self, storage, year):
        dr = _user(storage, "Dr. Feb")
        with pytest.raises(InvalidInputError, match="Invalid date"):
            _book(storage, dr, 30, month=2, year=year)
        assert storage.list_schedules() == []

    def test_leap_day(self, storage):
        dr = _user(storage, "Dr. Leap")
        assert _book(storage, dr, 29, month=2, year=2024).day == 29
        with pytest.raises(InvalidInputError):
            _book(storage, dr, 29, month=2, year=2025)

    def test_unknown_user_is_not_found(self, storage):
        with pytest.raises(NotFoundError):
            scheduling.create_schedule(
                storage,
                ScheduleCandidate(month=3, year=2025, day=1, user_id="ghost"),
                now_fn=_now,
            )

    def test_conflict_carries_violation(self, storage):
        solo = _user(storage, "Dr. Solo", limit=1)
        first = _book(storage, solo, 3)
        assert first.status == "scheduled"
        assert first.created_at == NOW

        with pytest.raises(ConflictError) as excinfo:
            _book(storage, solo, 10)
        assert excinfo.value.violation == Violation.MONTHLY_LIMIT_EXCEEDED
        assert excinfo.value.status_code == 409

    def test_concurrent_bookings_for_one_slot(self, storage):
        doctors = [_user(storage, f"Dr. {i}") for i in range(8)]

        def attempt(user: User) -> bool:
            try:
                _book(storage, user, 15)
            except ConflictError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, doctors))

        assert outcomes.count(True) == 1
        assert len(storage.list_schedules_for_day(3, 2025, 15)) == 1

    def test_owner_deleted_after_validation(self, storage, monkeypatch):
        dr = _user(storage, "Dr. Leaving")
        validate = scheduling.validate_schedule

        def validate_then_delete(*args, **kwargs):
            result = validate(*args, **kwargs)
            users.delete_user(storage, dr.id)
            return result

        monkeypatch.setattr(scheduling, "validate_schedule", validate_then_delete)

        with pytest.raises(NotFoundError):
            _book(storage, dr, 9)
        assert storage.list_schedules_for_month(3, 2025) == []

    def test_bookings_race_owner_deletion(self, storage):
        doctors = [_user(storage, f"Dr. {i}") for i in range(8)]

        def book(user: User) -> None:
            try:
                _book(storage, user, 1 + doctors.index(user))
            except NotFoundError:
                pass

        def delete(user: User) -> None:
            try:
                users.delete_user(storage, user.id)
            except ConflictError:
                pass

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [
                pool.submit(task, user)
                for user in doctors
                for task in (book, delete)
            ]
            for future in futures:
                future.result()

        for schedule in storage.list_schedules_for_month(3, 2025):
            assert storage.get_user(schedule.user_id) is not None
        for user in doctors:
            booked = storage.list_schedules(user_id=user.id)
            assert (storage.get_user(user.id) is None) == (booked == [])

    def test_delete(self, storage):
        dr = _user(storage, "Dr. Gone")
        booked = _book(storage, dr, 2)

        scheduling.delete_schedule(storage, booked.id)
        assert storage.get_schedule(booked.id) is None
        with pytest.raises(NotFoundError):
            scheduling.delete_schedule(storage, booked.id)


class TestReassign:
    def test_moves_owner_in_place_and_logs(self, storage):
        x = _user(storage, "Dr. X")
        y = _user(storage, "Dr. Y")
        booked = _book(storage, x, 5)

        moved = scheduling.reassign_schedule(storage, booked.id, y.id, now_fn=_now)

        assert moved.id == booked.id
        assert moved.user_id == y.id
        [trade] = storage.list_trades(month=3, year=2025)
        assert (trade.trade_type, trade.from_user_id, trade.to_user_id) == (
            "reassign",
            x.id,
            y.id,
        )
        assert trade.requested_at == NOW

    def test_same_user_is_rejected(self, storage):
        x = _user(storage, "Dr. X")
        booked = _book(storage, x, 5)

        with pytest.raises(ConflictError, match="already assigned"):
            scheduling.reassign_schedule(storage, booked.id, x.id, now_fn=_now)
        assert _owners(storage, booked) == [x.id]
        assert storage.list_trades() == []

    def test_target_must_exist_and_be_active(self, storage):
        x = _user(storage, "Dr. X")
        idle = _user(storage, "Dr. Idle", active=False)
        booked = _book(storage, x, 5)

        with pytest.raises(NotFoundError):
            scheduling.reassign_schedule(storage, booked.id, "ghost", now_fn=_now)
        with pytest.raises(ConflictError, match="not an active user"):
            scheduling.reassign_schedule(storage, booked.id, idle.id, now_fn=_now)
        with pytest.raises(NotFoundError):
            scheduling.reassign_schedule(storage, "missing", x.id, now_fn=_now)
        assert _owners(storage, booked) == [x.id]

    def test_target_already_working_that_day(self, storage):
        x = _user(storage, "Dr. X")
        y = _user(storage, "Dr. Y", role=UserRole.ADMIN)
        s1 = _book(storage, x, 5)
        _book(storage, y, 5)
        storage.update_user(y.id, {"role": UserRole.PHYSICIAN})

        with pytest.raises(ConflictError) as excinfo:
            scheduling.reassign_schedule(storage, s1.id, y.id, now_fn=_now)
        assert excinfo.value.violation == Violation.DUPLICATE_USER_DAY
        assert _owners(storage, s1) == [x.id]

    def test_physician_slot_taken(self, storage):
        x = _user(storage, "Dr. X")
        y = _user(storage, "Dr. Y")
        learner = _user(storage, "Learner L", role=UserRole.LEARNER)
        _book(storage, x, 5)
        learner_slot = _book(storage, learner, 5)

        with pytest.raises(ConflictError) as excinfo:
            scheduling.reassign_schedule(storage, learner_slot.id, y.id, now_fn=_now)
        assert excinfo.value.violation == Violation.ROLE_SLOT_TAKEN
        assert _owners(storage, learner_slot) == [learner.id]

    def test_target_monthly_limit(self, storage):
        x = _user(storage, "Dr. X")
        y = _user(storage, "Dr. Y", limit=1)
        _book(storage, y, 1)
        booked = _book(storage, x, 2)

        with pytest.raises(ConflictError, match="monthly shift limit of 1"):
            scheduling.reassign_schedule(storage, booked.id, y.id, now_fn=_now)


    def test_concurrent_reassigns_into_one_slot(self, storage):
        admins = [_user(storage, f"Admin {i}", role=UserRole.ADMIN) for i in range(8)]
        doctors = [_user(storage, f"Dr. {i}") for i in range(8)]
        rows = [_book(storage, admin, 15) for admin in admins]

        def attempt(move: tuple[Schedule, User]) -> bool:
            schedule, target = move
            try:
                scheduling.reassign_schedule(storage, schedule.id, target.id, now_fn=_now)
            except ConflictError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, zip(rows, doctors)))

        assert outcomes.count(True) == 1
        doctor_ids = {d.id for d in doctors}
        held = [
            s
            for s in storage.list_schedules_for_day(3, 2025, 15)
            if s.user_id in doctor_ids
        ]
        assert len(held) == 1
        assert len(storage.list_trades(month=3, year=2025)) == 1


class TestSwap:
    def test_exchanges_owners_and_logs_both_sides(self, storage):
        x = _user(storage, "Dr. X")
        y = _user(storage, "Dr. Y")
        s1 = _book(storage, x, 5)
        s2 = _book(storage, y, 20)

        swapped = scheduling.swap_schedules(storage, s1.id, s2.id, now_fn=_now)

        assert [(s.id, s.user_id) for s in swapped] == [(s1.id, y.id), (s2.id, x.id)]
        assert _owners(storage, s1, s2) == [y.id, x.id]
        trades = storage.list_trades(month=3, year=2025)
        assert len(trades) == 2
        assert {(t.schedule_id, t.counterpart_schedule_id) for t in trades} == {
            (s1.id, s2.id),
            (s2.id, s1.id),
        }

    def test_full_limits_still_swap_within_a_month(self, storage):
        x = _user(storage, "Dr. X", limit=1)
        y = _user(storage, "Dr. Y", limit=1)
        s1 = _book(storage, x, 5)
        s2 = _book(storage, y, 20)

        scheduling.swap_schedules(storage, s1.id, s2.id, now_fn=_now)
        assert _owners(storage, s1, s2) == [y.id, x.id]

    def test_first_side_failure_changes_nothing(self, storage):
        x = _user(storage, "Dr. X")
        y = _user(storage, "Dr. Y", role=UserRole.ADMIN)
        s1 = _book(storage, x, 5)
        s2 = _book(storage, y, 20)
        _book(storage, y, 5)

        with pytest.raises(ConflictError) as excinfo:
            scheduling.swap_schedules(storage, s1.id, s2.id, now_fn=_now)
        assert excinfo.value.message.startswith("Dr. Y: ")
        assert _owners(storage, s1, s2) == [x.id, y.id]
        assert storage.list_trades() == []

    def test_second_side_failure_changes_nothing(self, storage):
        x = _user(storage, "Dr. X", limit=1)
        y = _user(storage, "Dr. Y")
        s1 = _book(storage, x, 5)
        s2 = _book(storage, y, 3, month=4)
        _book(storage, x, 10, month=4)

        with pytest.raises(ConflictError) as excinfo:
            scheduling.swap_schedules(storage, s1.id, s2.id, now_fn=_now)
        assert excinfo.value.violation == Violation.MONTHLY_LIMIT_EXCEEDED
        assert excinfo.value.message.startswith("Dr. X: ")
        assert _owners(storage, s1, s2) == [x.id, y.id]

    def test_preconditions(self, storage):
        x = _user(storage, "Dr. X")
        y = _user(storage, "Dr. Y")
        s1 = _book(storage, x, 5)
        s2 = _book(storage, x, 6)
        s3 = _book(storage, y, 7)

        with pytest.raises(ConflictError, match="same user"):
            scheduling.swap_schedules(storage, s1.id, s2.id, now_fn=_now)
        with pytest.raises(NotFoundError):
            scheduling.swap_schedules(storage, s1.id, "missing", now_fn=_now)

        users.update_user(storage, y.id, UserUpdate(is_active=False))
        with pytest.raises(ConflictError, match="not an active user"):
            scheduling.swap_schedules(storage, s1.id, s3.id, now_fn=_now)
        assert _owners(storage, s1, s2, s3) == [x.id, x.id, y.id]


class TestStoreBackstop:
    def test_insert_refuses_second_physician(self, storage):
        x = _user(storage, "Dr. X")
        y = _user(storage, "Dr. Y")
        _book(storage, x, 5)
        rogue = Schedule(
            id="rogue", month=3, year=2025, day=5, user_id=y.id, created_at=NOW
        )

        with pytest.raises(UniqueConstraintViolation):
            storage.insert_schedule(rogue)
        assert storage.get_schedule("rogue") is None

    def test_owner_update_is_all_or_nothing(self, storage):
        x = _user(storage, "Dr. X")
        y = _user(storage, "Dr. Y")
        z = _user(storage, "Learner Z", role=UserRole.LEARNER)
        s1 = _book(storage, x, 5)
        s2 = _book(storage, y, 6)
        _book(storage, z, 5)
        storage.update_user(y.id, {"role": UserRole.LEARNER})

        # y (learner) onto day 5 clashes with z (learner) on day 5
        with pytest.raises(UniqueConstraintViolation):
            storage.update_schedule_owners({s2.id: x.id, s1.id: y.id})
        assert _owners(storage, s1, s2) == [x.id, y.id]

        with pytest.raises(KeyError):
            storage.update_schedule_owners({s1.id: y.id, "missing": x.id})
        assert _owners(storage, s1, s2) == [x.id, y.id]

    def test_writes_for_missing_owner_are_refused(self, storage):
        x = _user(storage, "Dr. X")
        gone = _user(storage, "Dr. Gone")
        booked = _book(storage, x, 5)
        storage.delete_user(gone.id)
        orphan = Schedule(
            id="orphan", month=3, year=2025, day=6, user_id=gone.id, created_at=NOW
        )

        with pytest.raises(UnknownOwnerViolation):
            storage.insert_schedule(orphan)
        assert storage.get_schedule("orphan") is None

        with pytest.raises(UnknownOwnerViolation):
            storage.update_schedule_owners({booked.id: gone.id})
        assert _owners(storage, booked) == [x.id]
