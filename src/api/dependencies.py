"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:  # pragma: no cover
    from calls.engine import CallEngine
    from db.repository import UserDirectory


@lru_cache(maxsize=1)
def _directory_factory() -> UserDirectory:
    # Lazy import so the SQL engine is only created once settings are final.
    from db.repository import UserDirectory

    return UserDirectory()


def get_directory() -> UserDirectory:
    return _directory_factory()


def get_engine(request: Request) -> CallEngine:
    return request.app.state.engine
