"""Transaction coordinator with ordered after-commit and after-abort continuations."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

from cosa.connection import Connection
from cosa.connection import connection as default_connection
from cosa.utils import maybe_await

logger = logging.getLogger(__name__)

Continuation = Callable[[], Awaitable[Any] | Any]


class Session:
    """Wraps one native database session.

    Model saves and removes performed with ``session=`` push deferred hooks
    here. They run serially, in push order, after the native commit or abort.
    A failing continuation never stops the rest; failures are collected and
    returned.
    """

    def __init__(self, native: Any) -> None:
        self._native = native
        self._after_commits: list[Continuation] = []
        self._after_aborts: list[Continuation] = []

    @property
    def native(self) -> Any:
        return self._native

    @property
    def after_commits(self) -> list[Continuation]:
        return self._after_commits

    @property
    def after_aborts(self) -> list[Continuation]:
        return self._after_aborts

    @property
    def in_transaction(self) -> bool:
        return bool(getattr(self._native, "in_transaction", False))

    def register_after_commit(self, continuation: Continuation) -> None:
        self._after_commits.append(continuation)

    def register_after_abort(self, continuation: Continuation) -> None:
        self._after_aborts.append(continuation)

    async def start_transaction(self) -> None:
        await maybe_await(self._native.start_transaction())

    async def commit_transaction(self) -> list[Exception]:
        """Commit, end the native session, then run the after-commit queue."""

        await self._native.commit_transaction()
        await maybe_await(self._native.end_session())
        return await self._drain(self._after_commits, "commit")

    async def abort_transaction(self) -> list[Exception]:
        """Abort, end the native session, then run the after-abort queue."""

        await self._native.abort_transaction()
        await maybe_await(self._native.end_session())
        return await self._drain(self._after_aborts, "abort")

    async def _drain(self, continuations: list[Continuation], phase: str) -> list[Exception]:
        errors: list[Exception] = []
        pending = list(continuations)
        continuations.clear()
        for continuation in pending:
            try:
                await maybe_await(continuation())
            except Exception as exc:
                logger.warning("After-%s continuation failed: %s", phase, exc, exc_info=exc)
                errors.append(exc)
        return errors

    async def __aenter__(self) -> Session:
        if not self.in_transaction:
            await self.start_transaction()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self.in_transaction:
            return
        if exc_type is not None:
            await self.abort_transaction()
        else:
            await self.commit_transaction()


async def create_session(connection: Connection | None = None) -> Session:
    """Open a session on ``connection``, connecting first when needed."""

    database = await (connection or default_connection).get_database()
    native = await database.start_session()
    logger.debug("Started session on %s", database.name)
    return Session(native)


__all__ = ["Continuation", "Session", "create_session"]
