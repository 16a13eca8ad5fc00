"""
deps.py - FastAPI dependencies.

The Runtime is built once per application (see main.create_app) and kept
on app.state; sessions come from the runtime's session factory so tests
can point the whole API at a throwaway database.
"""

from collections.abc import Generator

import redis
from fastapi import Request
from sqlalchemy.orm import Session as DBSession

from securewatch.core.redis import get_redis_client
from securewatch.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_session(request: Request) -> Generator[DBSession, None, None]:
    db = get_runtime(request).session_factory()
    try:
        yield db
    finally:
        db.close()


def get_redis() -> redis.Redis:
    return get_redis_client()
