"""Database engine, sessions and ORM models."""

from .connection import (
    close_sqlalchemy_engine,
    get_async_database_url,
    get_session,
    init_sqlalchemy_engine,
)

__all__ = [
    "close_sqlalchemy_engine",
    "get_async_database_url",
    "get_session",
    "init_sqlalchemy_engine",
]
