import logging

from oncall.errors import ConflictError, NotFoundError
from oncall.models import User
from oncall.scheduling import NowFn
from oncall.schemas import UserCreate, UserUpdate
from oncall.storage import ScheduleStorage, new_id

logger = logging.getLogger(__name__)

DUPLICATE_NAME = "A user with this name already exists"


def create_user(storage: ScheduleStorage, data: UserCreate, *, now_fn: NowFn) -> User:
    with storage.db.locked():
        if storage.get_user_by_name(data.name) is not None:
            raise ConflictError(DUPLICATE_NAME)
        user = storage.put_user(
            User(id=new_id(), created_at=now_fn(), **data.model_dump())
        )

    logger.info("Created %s %s (%s)", user.role, user.name, user.id)
    return user


def update_user(storage: ScheduleStorage, user_id: str, data: UserUpdate) -> User:
    changes = data.model_dump(exclude_unset=True)
    # null means "leave as is" for every user field
    changes = {k: v for k, v in changes.items() if v is not None}

    with storage.db.locked():
        existing = storage.get_user(user_id)
        if existing is None:
            raise NotFoundError("User not found")

        new_name = changes.get("name")
        if new_name is not None and new_name != existing.name:
            if storage.get_user_by_name(new_name) is not None:
                raise ConflictError(DUPLICATE_NAME)

        user = storage.update_user(user_id, changes)

    logger.info("Updated user %s: %s", user_id, sorted(changes))
    return user


def delete_user(storage: ScheduleStorage, user_id: str) -> None:
    with storage.db.locked():
        if storage.get_user(user_id) is None:
            raise NotFoundError("User not found")
        if storage.list_schedules(user_id=user_id):
            raise ConflictError(
                "Cannot delete user with existing scheduled shifts. "
                "Please remove all shifts first."
            )
        storage.delete_user(user_id)

    logger.info("Deleted user %s", user_id)
