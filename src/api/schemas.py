"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from calls.schemas import PresenceEntry


class CreateUserRequest(BaseModel):
    phone: str = Field(min_length=3, max_length=32)
    name: str = Field(min_length=1, max_length=128)
    avatar: str = ""


class CreateUserResponse(BaseModel):
    phone: str
    name: str
    token: str = Field(description="Opaque credential for the WebSocket `authenticate` event.")


class PreferencesRequest(BaseModel):
    gender: str = ""
    language: str = ""
    location: str = ""


class RechargeRequest(BaseModel):
    amount: int = Field(gt=0)


class UserResponse(BaseModel):
    phone: str
    name: str
    avatar: str
    gender: str
    language: str
    location: str
    coins: int


class CallRecordResponse(BaseModel):
    session_id: str
    a_phone: str
    b_phone: str
    mode: str
    duration_ms: int
    ended_at: datetime


class OnlineResponse(BaseModel):
    users: list[PresenceEntry]
