import logging
from datetime import UTC, datetime

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import UUID4

from oncall import publishing, scheduling, users
from oncall.colors import user_color
from oncall.config import Settings, get_settings
from oncall.errors import IntegrityError, SchedulingError
from oncall.models import MonthlySettings, Schedule, ShiftTrade, User
from oncall.schemas import (
    GeneratedToken,
    MessageResponse,
    MonthYear,
    MonthlySettingsUpdate,
    PublicSchedule,
    ReassignRequest,
    ScheduleCreate,
    SwapRequest,
    UserCreate,
    UserUpdate,
)
from oncall.storage import ScheduleStorage
from oncall.validator import ScheduleCandidate

logger = logging.getLogger(__name__)

router = APIRouter()


def _storage(request: Request) -> ScheduleStorage:
    return request.app.state.storage


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


# users


@router.get("/api/users", response_model=list[User])
async def list_users(request: Request) -> list[User]:
    return _storage(request).list_users()


@router.get("/api/users/colors")
async def list_user_colors(request: Request) -> dict[str, str]:
    return {u.id: user_color(u.id, u.role) for u in _storage(request).list_users()}


@router.get("/api/users/{user_id}", response_model=User)
async def get_user(user_id: UUID4, request: Request) -> User:
    user = _storage(request).get_user(str(user_id))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/api/users", response_model=User, status_code=201)
async def create_user(data: UserCreate, request: Request) -> User:
    return users.create_user(
        _storage(request), data, now_fn=request.app.state.now_fn
    )


@router.put("/api/users/{user_id}", response_model=User)
async def update_user(user_id: UUID4, data: UserUpdate, request: Request) -> User:
    return users.update_user(_storage(request), str(user_id), data)


@router.delete("/api/users/{user_id}", response_model=MessageResponse)
async def delete_user(user_id: UUID4, request: Request) -> MessageResponse:
    users.delete_user(_storage(request), str(user_id))
    return MessageResponse(message="User deleted successfully")


# schedules


@router.get("/api/schedules", response_model=list[Schedule])
async def list_schedules(
    request: Request,
    month: int = Query(ge=1, le=12),
    year: int = Query(ge=2020, le=2100),
) -> list[Schedule]:
    return _storage(request).list_schedules_for_month(month, year)


@router.post("/api/schedules", response_model=Schedule, status_code=201)
async def create_schedule(data: ScheduleCreate, request: Request) -> Schedule:
    candidate = ScheduleCandidate(
        month=data.month,
        year=data.year,
        day=data.day,
        user_id=str(data.user_id),
        status=data.status,
    )
    return scheduling.create_schedule(
        _storage(request), candidate, now_fn=request.app.state.now_fn
    )


@router.post("/api/schedules/reassign", response_model=Schedule)
async def reassign_schedule(data: ReassignRequest, request: Request) -> Schedule:
    return scheduling.reassign_schedule(
        _storage(request),
        str(data.schedule_id),
        str(data.to_user_id),
        now_fn=request.app.state.now_fn,
    )


@router.post("/api/schedules/swap", response_model=list[Schedule])
async def swap_schedules(data: SwapRequest, request: Request) -> list[Schedule]:
    return scheduling.swap_schedules(
        _storage(request),
        str(data.schedule_id_a),
        str(data.schedule_id_b),
        now_fn=request.app.state.now_fn,
    )


@router.delete("/api/schedules/{schedule_id}", response_model=MessageResponse)
async def delete_schedule(schedule_id: UUID4, request: Request) -> MessageResponse:
    scheduling.delete_schedule(_storage(request), str(schedule_id))
    return MessageResponse(message="Schedule deleted successfully")


@router.get("/api/trades", response_model=list[ShiftTrade])
async def list_trades(
    request: Request,
    month: int = Query(ge=1, le=12),
    year: int = Query(ge=2020, le=2100),
) -> list[ShiftTrade]:
    return _storage(request).list_trades(month=month, year=year)


# publishing


@router.get("/api/monthly-settings", response_model=MonthlySettings | None)
async def get_monthly_settings(
    request: Request,
    month: int = Query(ge=1, le=12),
    year: int = Query(ge=2020, le=2100),
) -> MonthlySettings | None:
    return publishing.get_settings(_storage(request), month, year)


@router.put("/api/monthly-settings", response_model=MonthlySettings)
async def update_monthly_settings(
    data: MonthlySettingsUpdate, request: Request
) -> MonthlySettings:
    return publishing.update_settings(
        _storage(request), data, now_fn=request.app.state.now_fn
    )


@router.post("/api/monthly-settings/generate-token", response_model=GeneratedToken)
async def generate_share_token(data: MonthYear, request: Request) -> GeneratedToken:
    settings: Settings = request.app.state.settings
    token, monthly = publishing.generate_token(
        _storage(request),
        data.month,
        data.year,
        token_bytes=settings.public_token_bytes,
        now_fn=request.app.state.now_fn,
    )
    return GeneratedToken(
        token=token,
        share_url=f"{settings.public_base_url.rstrip('/')}/{token}",
        settings=monthly,
    )


@router.get("/api/public/{token}", response_model=PublicSchedule)
async def get_public_schedule(token: str, request: Request) -> PublicSchedule:
    public = publishing.resolve_public_token(_storage(request), token)
    if public is None:
        raise HTTPException(
            status_code=404, detail="Schedule not found or not published"
        )
    return public


async def _scheduling_error_handler(
    request: Request, exc: SchedulingError
) -> JSONResponse:
    if isinstance(exc, IntegrityError):
        logger.error("Integrity failure on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    logger.info("Rejected input on %s: %s", request.url.path, errors)
    return JSONResponse(
        status_code=400, content={"detail": "Validation failed", "errors": errors}
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    if settings is None:
        settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.storage = ScheduleStorage()
    app.state.now_fn = lambda: datetime.now(UTC)

    app.add_exception_handler(SchedulingError, _scheduling_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.include_router(router)
    return app
