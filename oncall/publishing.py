"""
Monthly publish state and public share tokens.

A month becomes publicly readable only when its settings row is published
*and* the caller presents that month's current token. Replacing the token
makes the old one stop resolving.
"""

import logging
import secrets

from oncall.errors import ConflictError
from oncall.models import MonthlySettings
from oncall.scheduling import NowFn
from oncall.schemas import MonthlySettingsUpdate, PublicSchedule
from oncall.storage import ScheduleStorage, new_id

logger = logging.getLogger(__name__)


def get_settings(
    storage: ScheduleStorage, month: int, year: int
) -> MonthlySettings | None:
    return storage.get_settings(month, year)


def update_settings(
    storage: ScheduleStorage, update: MonthlySettingsUpdate, *, now_fn: NowFn
) -> MonthlySettings:
    """
    Upsert the settings row for `update.month`/`update.year`.

    Only fields present in the request are applied; an explicit
    `public_share_token=None` revokes the link.
    """
    changes = update.model_dump(
        include={"is_published", "public_share_token"}, exclude_unset=True
    )
    if changes.get("is_published") is None:
        changes.pop("is_published", None)
    token = changes.get("public_share_token")

    with storage.db.locked():
        if token is not None:
            holder = storage.get_settings_by_token(token)
            if holder is not None and (holder.month, holder.year) != (
                update.month,
                update.year,
            ):
                raise ConflictError("This share token is already in use")

        existing = storage.get_settings(update.month, update.year)
        if existing is None:
            settings = MonthlySettings(
                id=new_id(),
                month=update.month,
                year=update.year,
                is_published=changes.get("is_published") or False,
                public_share_token=token,
                created_at=now_fn(),
            )
        else:
            settings = existing.model_copy(update=changes)
        storage.put_settings(settings)

    logger.info(
        "Settings for %s-%02d: published=%s, token %s",
        settings.year,
        settings.month,
        settings.is_published,
        "set" if settings.public_share_token else "unset",
    )
    return settings


def generate_token(
    storage: ScheduleStorage,
    month: int,
    year: int,
    *,
    token_bytes: int,
    now_fn: NowFn,
) -> tuple[str, MonthlySettings]:
    """
    Attach a fresh random token to the month, replacing any previous one.
    Publish state is left as it is.
    """
    with storage.db.locked():
        token = secrets.token_urlsafe(token_bytes)
        while storage.get_settings_by_token(token) is not None:
            token = secrets.token_urlsafe(token_bytes)

        settings = update_settings(
            storage,
            MonthlySettingsUpdate(month=month, year=year, public_share_token=token),
            now_fn=now_fn,
        )
    return token, settings


def resolve_public_token(storage: ScheduleStorage, token: str) -> PublicSchedule | None:
    settings = storage.get_settings_by_token(token)
    if settings is None or not settings.is_published:
        return None

    return PublicSchedule(
        schedules=storage.list_schedules_for_month(settings.month, settings.year),
        users=storage.list_users(),
        settings=settings,
    )
