"""FastAPI routes for the user directory, presence and call history."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_directory, get_engine
from api.schemas import (
    CallRecordResponse,
    CreateUserRequest,
    CreateUserResponse,
    OnlineResponse,
    PreferencesRequest,
    RechargeRequest,
    UserResponse,
)
from calls.errors import CallError

if TYPE_CHECKING:  # pragma: no cover
    from calls.engine import CallEngine
    from db.models import User
    from db.repository import UserDirectory

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        phone=user.phone,
        name=user.name,
        avatar=user.avatar or "",
        gender=user.gender or "",
        language=user.language or "",
        location=user.location or "",
        coins=user.coins,
    )


def _http_error(exc: CallError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/users", response_model=CreateUserResponse)
async def create_user(
    payload: CreateUserRequest,
    directory: UserDirectory = Depends(get_directory),
) -> CreateUserResponse:
    try:
        user = await directory.create_user(payload.phone.strip(), payload.name.strip(), avatar=payload.avatar)
    except CallError as exc:
        raise _http_error(exc) from exc
    LOGGER.info("Created user %s", user.phone)
    return CreateUserResponse(phone=user.phone, name=user.name, token=user.token)


@router.get("/users/{phone}", response_model=UserResponse)
async def get_user(
    phone: str,
    directory: UserDirectory = Depends(get_directory),
) -> UserResponse:
    try:
        user = await directory.get_user(phone)
    except CallError as exc:
        raise _http_error(exc) from exc
    return _user_response(user)


@router.put("/users/{phone}/preferences", response_model=UserResponse)
async def update_preferences(
    phone: str,
    payload: PreferencesRequest,
    directory: UserDirectory = Depends(get_directory),
) -> UserResponse:
    try:
        user = await directory.update_preferences(
            phone,
            gender=payload.gender,
            language=payload.language,
            location=payload.location,
        )
    except CallError as exc:
        raise _http_error(exc) from exc
    return _user_response(user)


@router.post("/users/{phone}/recharge", response_model=UserResponse)
async def recharge(
    phone: str,
    payload: RechargeRequest,
    directory: UserDirectory = Depends(get_directory),
) -> UserResponse:
    try:
        await directory.apply_billing_delta(phone, payload.amount)
        user = await directory.get_user(phone)
    except CallError as exc:
        raise _http_error(exc) from exc
    LOGGER.info("Recharged %s by %d", phone, payload.amount)
    return _user_response(user)


@router.get("/users/{phone}/history", response_model=list[CallRecordResponse])
async def get_history(
    phone: str,
    directory: UserDirectory = Depends(get_directory),
) -> list[CallRecordResponse]:
    try:
        records = await directory.list_history(phone)
    except CallError as exc:
        raise _http_error(exc) from exc
    return [
        CallRecordResponse(
            session_id=record.session_id,
            a_phone=record.a_phone,
            b_phone=record.b_phone,
            mode=record.mode,
            duration_ms=record.duration_ms,
            ended_at=record.ended_at,
        )
        for record in records
    ]


@router.get("/online", response_model=OnlineResponse)
async def online(engine: CallEngine = Depends(get_engine)) -> OnlineResponse:
    return OnlineResponse(users=await engine.snapshot())
