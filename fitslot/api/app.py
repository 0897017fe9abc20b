"""FastAPI facade over the booking engine.

Thin layer: identity comes from a bearer JWT issued elsewhere, payment
confirmations arrive on a signed webhook, and every endpoint delegates to the
services in ``fitslot.app.services``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from functools import wraps
from typing import AsyncIterator, Optional

import jwt
from aiogram import Bot
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from fitslot.app.core.db import Database
from fitslot.app.core.notifications import LoggingPromotionSender, PromotionSender, TelegramPromotionSender
from fitslot.app.domain.errors import BookingError, NotFoundError
from fitslot.app.domain.models import BookingStatus, Role
from fitslot.app.services.booking_services import (
    BookingAdmissionController,
    BookingResult,
    CancellationHandler,
    check_in_booking,
    get_studio_schedule,
    list_user_bookings,
    process_booking_cancellation,
    process_booking_request,
)
from fitslot.app.services.payment_services import PaymentCallbackReconciler, PaymentConfirmedEvent
from fitslot.app.services.repositories import UserRepo
from fitslot.app.services.slot_services import AvailabilityCalculator
from fitslot.app.services.yield_services import YieldScanner
from fitslot.config import SETTINGS, engine_kwargs

logger = logging.getLogger(__name__)

STAFF_ROLES = frozenset({Role.COACH, Role.FRANCHISE_OWNER, Role.SUPER_ADMIN})
ADMIN_ROLES = frozenset({Role.FRANCHISE_OWNER, Role.SUPER_ADMIN})
DROP_IN_EVENT_TYPE = "DROP_IN"


class Principal(BaseModel):
    user_id: int
    role: Role = Role.MEMBER


class SlotOut(BaseModel):
    start: datetime
    end: datetime
    capacity: int
    booked_count: int
    available_spots: int
    is_full: bool


class SlotsResponse(BaseModel):
    studio_id: int
    target_date: date
    slots: list[SlotOut]


class BookingRequest(BaseModel):
    studio_id: int
    start_time: datetime
    program: str = Field(..., max_length=120)


class CancelRequest(BaseModel):
    booking_id: int


class CheckInRequest(BaseModel):
    booking_id: int
    studio_id: Optional[int] = None


class BookingResponse(BaseModel):
    ok: bool
    booking_id: Optional[int] = None
    status: Optional[str] = None
    error: Optional[str] = None


class BookingItemOut(BaseModel):
    id: int
    studio_id: int
    status: str
    starts_at: datetime
    ends_at: datetime
    program_used: Optional[str] = None
    can_cancel: bool = False


class ScheduleItemOut(BaseModel):
    booking_id: int
    user_id: int
    member_name: Optional[str] = None
    status: str
    starts_at: datetime
    ends_at: datetime
    program_used: Optional[str] = None


class YieldResponse(BaseModel):
    ok: bool
    studio_id: int
    target_date: date
    empty_slots_found: int
    targets: int
    promotions_sent: int


class PaymentWebhookPayload(BaseModel):
    type: str
    user_id: Optional[int] = None
    studio_id: Optional[int] = None
    start_time: Optional[datetime] = None
    payment_reference: Optional[str] = Field(default=None, max_length=128)


class PaymentWebhookResponse(BaseModel):
    ok: bool
    ignored: bool = False
    booking_id: Optional[int] = None
    created: bool = False
    oversold: bool = False
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Error handling helpers
# ---------------------------------------------------------------------------

def _normalize_error_code(val: str | Exception | None, default: str) -> str:
    """Return a safe error code for frontend without leaking exception text."""
    if val is None:
        return default
    code = (val.code if isinstance(val, BookingError) else str(val)).strip().lower()
    if not code:
        return default
    if not all(ch.isalnum() or ch in {"_", "-"} for ch in code):
        return default
    return code[:64]


def booking_error_handler(default_error: str):
    """Decorator to de-duplicate try/except in booking endpoints.

    - Passes through FastAPI `HTTPException` untouched.
    - Converts business `ValueError` to a BookingResponse with its code.
    - Logs unexpected exceptions and returns a unified error code.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except HTTPException:
                raise
            except ValueError as exc:
                return BookingResponse(ok=False, error=_normalize_error_code(exc, default_error))
            except Exception as exc:  # noqa: BLE001 (API boundary)
                logger.exception("%s failed: %s", func.__name__, exc)
                return BookingResponse(ok=False, error=default_error)

        return wrapper

    return decorator


def _response_from_result(res: BookingResult) -> BookingResponse:
    return BookingResponse(
        ok=bool(res.get("ok")),
        booking_id=res.get("booking_id"),
        status=res.get("status"),
        error=res.get("error"),
    )


# ---------------------------------------------------------------------------
# Security helpers
# ---------------------------------------------------------------------------

def issue_jwt(user_id: int, role: Role | str = Role.MEMBER, *, ttl_seconds: int | None = None) -> str:
    role_value = role.value if isinstance(role, Role) else str(role)
    payload = {
        "sub": str(user_id),
        "role": role_value,
        "exp": datetime.now(UTC) + timedelta(seconds=ttl_seconds or int(SETTINGS["jwt_ttl_seconds"])),
    }
    return jwt.encode(payload, SETTINGS["jwt_secret"], algorithm=SETTINGS["jwt_algorithm"])


def _decode_token(token: str) -> Principal:
    try:
        data = jwt.decode(token, SETTINGS["jwt_secret"], algorithms=[SETTINGS["jwt_algorithm"]])
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="token_expired") from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from exc

    try:
        user_id = int(data.get("sub"))
        role = Role(str(data.get("role") or Role.MEMBER.value).upper())
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token_claims") from exc
    return Principal(user_id=user_id, role=role)


async def get_current_principal(authorization: str | None = Header(default=None)) -> Principal:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_authorization")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_authorization_header")
    return _decode_token(token)


async def require_staff(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role not in ADMIN_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return principal


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA256 hex digest of the raw body, compared in constant time."""
    if not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def get_db(request: Request) -> Database:
    return request.app.state.db


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    db: Database | None = None,
    *,
    admission: BookingAdmissionController | None = None,
    sender: PromotionSender | None = None,
) -> FastAPI:
    """Build the API. Components not passed in are created from SETTINGS at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned_db: Database | None = None
        bot: Bot | None = None
        if getattr(app.state, "db", None) is None:
            owned_db = Database(str(SETTINGS["database_url"]), **engine_kwargs())
            _install_components(app, owned_db, None)
        if getattr(app.state, "sender", None) is None:
            if SETTINGS.get("bot_token"):
                bot = Bot(token=SETTINGS["bot_token"])
                app.state.sender = TelegramPromotionSender(bot, SETTINGS["public_url"])
            else:
                app.state.sender = LoggingPromotionSender(SETTINGS["public_url"])
        try:
            yield
        finally:
            if bot is not None:
                await bot.session.close()
            if owned_db is not None:
                await owned_db.dispose()

    app = FastAPI(title="fitslot", lifespan=lifespan)
    if db is not None:
        _install_components(app, db, admission)
    app.state.sender = sender

    @app.get("/api/studios/{studio_id}/slots", response_model=SlotsResponse)
    async def studio_slots(
        request: Request,
        studio_id: int,
        day: date = Query(..., alias="date"),
        principal: Principal = Depends(get_current_principal),
    ) -> SlotsResponse:
        try:
            slots = await request.app.state.availability.get_day_availability(studio_id, day)
        except NotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.code) from exc
        return SlotsResponse(
            studio_id=studio_id,
            target_date=day,
            slots=[
                SlotOut(
                    start=s.start,
                    end=s.end,
                    capacity=s.capacity,
                    booked_count=s.booked_count,
                    available_spots=s.available_spots,
                    is_full=s.is_full,
                )
                for s in slots
            ],
        )

    @app.post("/api/book", response_model=BookingResponse)
    @booking_error_handler("booking_failed")
    async def create_booking(
        request: Request,
        payload: BookingRequest,
        principal: Principal = Depends(get_current_principal),
    ) -> BookingResponse:
        res = await process_booking_request(
            request.app.state.admission,
            principal.user_id,
            payload.studio_id,
            payload.start_time,
            payload.program,
        )
        return _response_from_result(res)

    @app.post("/api/cancel", response_model=BookingResponse)
    @booking_error_handler("cancel_failed")
    async def cancel_booking(
        request: Request,
        payload: CancelRequest,
        principal: Principal = Depends(get_current_principal),
    ) -> BookingResponse:
        res = await process_booking_cancellation(
            request.app.state.cancellation, principal.user_id, payload.booking_id
        )
        return _response_from_result(res)

    @app.get("/api/bookings", response_model=list[BookingItemOut])
    async def my_bookings(
        db: Database = Depends(get_db),
        principal: Principal = Depends(get_current_principal),
    ) -> list[BookingItemOut]:
        bookings = await list_user_bookings(db, principal.user_id)
        now = datetime.now(UTC)
        return [
            BookingItemOut(
                id=b.id,
                studio_id=b.studio_id,
                status=b.status.value,
                starts_at=b.starts_at,
                ends_at=b.ends_at,
                program_used=b.program_used,
                can_cancel=b.status is BookingStatus.CONFIRMED and b.starts_at > now,
            )
            for b in bookings
        ]

    @app.get("/api/studios/{studio_id}/schedule", response_model=list[ScheduleItemOut])
    async def studio_schedule(
        studio_id: int,
        day: date = Query(..., alias="date"),
        db: Database = Depends(get_db),
        principal: Principal = Depends(require_staff),
    ) -> list[ScheduleItemOut]:
        try:
            rows = await get_studio_schedule(db, studio_id, day)
        except NotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.code) from exc
        return [
            ScheduleItemOut(
                booking_id=b.id,
                user_id=u.id,
                member_name=" ".join(p for p in (u.first_name, u.last_name) if p) or None,
                status=b.status.value,
                starts_at=b.starts_at,
                ends_at=b.ends_at,
                program_used=b.program_used,
            )
            for b, u in rows
        ]

    @app.post("/api/check_in", response_model=BookingResponse)
    @booking_error_handler("check_in_failed")
    async def check_in(
        payload: CheckInRequest,
        db: Database = Depends(get_db),
        principal: Principal = Depends(require_staff),
    ) -> BookingResponse:
        booking = await check_in_booking(db, payload.booking_id, studio_id=payload.studio_id)
        return BookingResponse(ok=True, booking_id=booking.id, status=booking.status.value)

    @app.post("/api/admin/yield", response_model=YieldResponse)
    async def trigger_yield(
        request: Request,
        day: Optional[date] = Query(default=None, alias="date"),
        principal: Principal = Depends(require_admin),
    ) -> YieldResponse:
        db: Database = request.app.state.db
        async with db.session() as session:
            admin = await UserRepo.get(session, principal.user_id)
        if admin is None or admin.home_studio_id is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no_home_studio")
        try:
            result = await request.app.state.yield_scanner.scan(admin.home_studio_id, day)
        except NotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.code) from exc
        sent = await request.app.state.sender.send(result) if result.targets else 0
        return YieldResponse(
            ok=True,
            studio_id=result.studio_id,
            target_date=result.target_date,
            empty_slots_found=result.empty_slots_found,
            targets=len(result.targets),
            promotions_sent=sent,
        )

    @app.post("/api/webhooks/payment", response_model=PaymentWebhookResponse)
    async def payment_webhook(
        request: Request,
        x_signature: str | None = Header(default=None, alias="X-Signature"),
    ) -> PaymentWebhookResponse:
        secret = SETTINGS.get("payment_webhook_secret")
        if not secret:
            logger.error("Payment webhook called but PAYMENT_WEBHOOK_SECRET is not set")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="webhook_not_configured")
        body = await request.body()
        if not verify_signature(body, x_signature, secret):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_signature")
        try:
            payload = PaymentWebhookPayload.model_validate(json.loads(body))
        except (json.JSONDecodeError, PydanticValidationError) as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_payload") from exc

        if payload.type.upper() != DROP_IN_EVENT_TYPE:
            return PaymentWebhookResponse(ok=True, ignored=True)
        if not (payload.user_id and payload.studio_id and payload.start_time and payload.payment_reference):
            logger.error("Missing DROP_IN fields in payment callback: %s", payload.model_dump())
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing_fields")

        event = PaymentConfirmedEvent(
            user_id=payload.user_id,
            studio_id=payload.studio_id,
            start_time=payload.start_time,
            payment_reference=payload.payment_reference,
        )
        try:
            outcome = await request.app.state.reconciler.reconcile(event)
        except BookingError as exc:
            logger.warning("Payment %s rejected: %s", payload.payment_reference, exc.code)
            return PaymentWebhookResponse(ok=False, error=exc.code)
        return PaymentWebhookResponse(
            ok=outcome.ok,
            booking_id=outcome.booking_id,
            created=outcome.created,
            oversold=outcome.oversold,
            error=outcome.error,
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def _install_components(app: FastAPI, db: Database, admission: BookingAdmissionController | None) -> None:
    availability = AvailabilityCalculator(db)
    app.state.db = db
    app.state.availability = availability
    app.state.admission = admission or BookingAdmissionController(db)
    app.state.cancellation = CancellationHandler(db)
    app.state.yield_scanner = YieldScanner(db, availability)
    app.state.reconciler = PaymentCallbackReconciler(db)


def get_app() -> FastAPI:
    """Exported factory for uvicorn (``uvicorn --factory fitslot.api.app:get_app``)."""
    return create_app()


__all__ = [
    "create_app",
    "get_app",
    "issue_jwt",
    "verify_signature",
    "booking_error_handler",
    "Principal",
]
