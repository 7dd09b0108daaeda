"""
Task-local session context.

transaction() publishes its session here so that every repository call in
the same asyncio task joins it; outside a transaction the context is empty
and get_session() opens a short-lived session per operation. Read and write
sessions are tracked separately, and @readonly pins a whole call chain (the
due and past-due scans, transaction listings) to the read side.
"""

from contextvars import ContextVar, Token
from functools import wraps
from typing import Optional, Callable, TypeVar, ParamSpec

from sqlalchemy.ext.asyncio import AsyncSession


_write_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "db_write_session", default=None
)
_read_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "db_read_session", default=None
)
_force_readonly: ContextVar[bool] = ContextVar("db_force_readonly", default=False)


def _slot(readonly: bool) -> ContextVar[Optional[AsyncSession]]:
    return _read_session if readonly else _write_session


def is_readonly_forced() -> bool:
    return _force_readonly.get()


def get_current_session(readonly: bool = False) -> Optional[AsyncSession]:
    """
    Session of the enclosing transaction(), or None.

    A forced-readonly context always answers from the read side.
    """
    return _slot(readonly or is_readonly_forced()).get()


def set_current_session(session: AsyncSession, readonly: bool = False) -> Token:
    return _slot(readonly).set(session)


def reset_current_session(token: Token, readonly: bool = False) -> None:
    _slot(readonly).reset(token)


P = ParamSpec("P")
T = TypeVar("T")


def readonly(func: Callable[P, T]) -> Callable[P, T]:
    """Run an async function with every session it opens forced readonly."""

    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        token = _force_readonly.set(True)
        try:
            return await func(*args, **kwargs)
        finally:
            _force_readonly.reset(token)

    return wrapper
