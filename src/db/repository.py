"""SQL-backed user directory.

Implements the `calls.directory.Directory` protocol for the engine, plus the
profile CRUD used by the REST routes.
"""

from __future__ import annotations

import uuid

from sqlalchemy import desc, or_, select, update
from sqlalchemy.exc import IntegrityError, NoResultFound

from calls.errors import UnknownUser, UserAlreadyExists
from calls.schemas import Profile
from config.settings import get_settings
from db.base import AsyncSessionFactory
from db.models import CallRecord, User


def _profile_from_user(user: User) -> Profile:
    return Profile(
        identity=user.phone,
        name=user.name,
        avatar=user.avatar or "",
        gender=user.gender or "",
        language=user.language or "",
        location=user.location or "",
    )


class UserDirectory:
    """Async repository encapsulating directory storage operations."""

    def __init__(self, session_factory=AsyncSessionFactory) -> None:
        self._session_factory = session_factory

    async def _get_user(self, session, phone: str) -> User:
        query = select(User).where(User.phone == phone)
        result = await session.execute(query)
        try:
            return result.scalar_one()
        except NoResultFound as exc:
            raise UnknownUser(f"User not found: {phone}") from exc

    async def create_user(self, phone: str, name: str, *, avatar: str = "") -> User:
        async with self._session_factory() as session:
            user = User(
                phone=phone,
                name=name,
                token=uuid.uuid4().hex,
                avatar=avatar,
                coins=get_settings().starting_coins,
            )
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise UserAlreadyExists() from exc
            await session.refresh(user)
            return user

    async def get_user(self, phone: str) -> User:
        async with self._session_factory() as session:
            return await self._get_user(session, phone)

    async def update_preferences(
        self,
        phone: str,
        *,
        gender: str = "",
        language: str = "",
        location: str = "",
    ) -> User:
        async with self._session_factory() as session:
            user = await self._get_user(session, phone)
            user.gender = gender.strip()
            user.language = language.strip()
            user.location = location.strip()
            await session.commit()
            await session.refresh(user)
            return user

    async def list_history(self, phone: str, *, limit: int = 50) -> list[CallRecord]:
        async with self._session_factory() as session:
            await self._get_user(session, phone)
            query = (
                select(CallRecord)
                .where(or_(CallRecord.a_phone == phone, CallRecord.b_phone == phone))
                .order_by(desc(CallRecord.ended_at), desc(CallRecord.id))
                .limit(limit)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    # Directory protocol

    async def lookup_by_credential(self, credential: str) -> str | None:
        async with self._session_factory() as session:
            query = select(User.phone).where(or_(User.token == credential, User.phone == credential))
            result = await session.execute(query)
            return result.scalars().first()

    async def get_profile(self, identity: str) -> Profile | None:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.phone == identity))
            user = result.scalar_one_or_none()
            return _profile_from_user(user) if user else None

    async def get_balance(self, identity: str) -> int:
        async with self._session_factory() as session:
            user = await self._get_user(session, identity)
            return user.coins

    async def apply_billing_delta(self, identity: str, delta: int) -> int:
        async with self._session_factory() as session:
            await self._get_user(session, identity)
            await session.execute(
                update(User).where(User.phone == identity).values(coins=User.coins + delta)
            )
            await session.commit()
            user = await self._get_user(session, identity)
            await session.refresh(user)
            return user.coins

    async def record_history(
        self,
        session_id: str,
        a: str,
        b: str,
        mode: str,
        duration_ms: int,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                CallRecord(
                    session_id=session_id,
                    a_phone=a,
                    b_phone=b,
                    mode=mode,
                    duration_ms=duration_ms,
                )
            )
            await session.commit()
