"""Pydantic schemas shared by the engine and the transport layer."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

CallMode = Literal["audio", "video"]
CALL_MODES: tuple[str, ...] = ("audio", "video")

Role = Literal["offerer", "answerer"]


class Availability(str, Enum):
    FREE = "free"
    RINGING = "ringing"
    IN_CALL = "in-call"


class Profile(BaseModel):
    """Directory view of a user, as seen by the engine."""

    identity: str
    name: str
    avatar: str = ""
    gender: str = ""
    language: str = ""
    location: str = ""

    def public(self) -> dict[str, Any]:
        """Fields safe to show to the other party of a call."""

        return {
            "identity": self.identity,
            "name": self.name,
            "avatar": self.avatar,
            "language": self.language,
            "location": self.location,
        }


class PresenceEntry(BaseModel):
    identity: str
    name: str
    avatar: str
    gender: str
    language: str
    location: str
    availability: Availability
    free: bool


class BillingEvent(BaseModel):
    """Settlement of one accepted call."""

    session_id: str
    duration_ms: int = Field(ge=0)
    blocks: int = Field(ge=0)
    payer: str | None = None
    payee: str | None = None
    payer_delta: int = 0
    payee_delta: int = 0

    def delta_for(self, identity: str) -> int:
        delta = 0
        if identity == self.payer:
            delta += self.payer_delta
        if identity == self.payee:
            delta += self.payee_delta
        return delta


class ClientFrame(BaseModel):
    """Inbound WebSocket frame."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event")
    @classmethod
    def event_not_empty(cls, value: str) -> str:
        event = value.strip()
        if not event:
            raise ValueError("Event may not be empty.")
        return event
