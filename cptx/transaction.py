"""
Transaction controller.

``Transactor.begin`` checks a connection out of the primary pool, wraps it in a
``TransactionHandle`` and rebinds the caller's ``ContextRef`` to a child context
carrying that handle. Every query executed with the rebound context (or any
context derived from it) runs inside the transaction until the handle is
terminated by exactly one ``commit()`` or ``rollback()``.

Nothing here commits on the caller's behalf. Use the handle as a context
manager so an exit without an explicit commit always rolls back:

    ref = ContextRef(ctx)
    with transactor.begin(ref) as tx:
        accounts.debit(ref.context, ...)
        accounts.credit(ref.context, ...)
        tx.commit()
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Tuple

from psycopg import Connection, Cursor
from psycopg_pool import ConnectionPool

from cptx.context import Context, bind_transaction
from cptx.errors import TransactionDone
from cptx.infrastructure.db_factory import (
    apply_statement_timeout,
    current_statement_timeout,
    restore_statement_timeout,
)
from cptx.utils.logging import get_logger

log = get_logger(__name__)


class ContextRef:
    """Caller-held reference to a context; ``Transactor.begin`` replaces its value."""

    __slots__ = ("context",)

    def __init__(self, context: Context) -> None:
        self.context = context

    def __repr__(self) -> str:
        return f"ContextRef({self.context!r})"


class TransactionHandle:
    """
    One live transaction on a connection checked out of the primary pool.

    The handle is exclusively owned by the code that called ``begin`` and must
    not be shared between threads. Once terminated, every further ``commit``,
    ``rollback`` or query raises ``TransactionDone``.
    """

    def __init__(self, pool: ConnectionPool, conn: Connection) -> None:
        self._pool = pool
        self._conn: Optional[Connection] = conn
        self._lock = threading.Lock()
        # statement_timeout in effect before the first deadline-bound statement.
        self._saved_timeout: Optional[str] = None

    @property
    def done(self) -> bool:
        return self._conn is None

    @property
    def connection(self) -> Connection:
        """The connection statements of this transaction run on."""
        conn = self._conn
        if conn is None:
            raise TransactionDone()
        return conn

    def bound_statement(self, cur: Cursor[Any], timeout_seconds: Optional[float]) -> None:
        """
        Bound the next statement of this transaction by ``timeout_seconds``.

        A timeout set with ``set_config(..., true)`` lasts until the transaction
        ends, so a statement without a deadline gets back the value that was in
        effect before the first bounded one.
        """
        if timeout_seconds is not None:
            if self._saved_timeout is None:
                self._saved_timeout = current_statement_timeout(cur)
            apply_statement_timeout(cur, timeout_seconds)
        elif self._saved_timeout is not None:
            restore_statement_timeout(cur, self._saved_timeout)
            self._saved_timeout = None

    def commit(self) -> None:
        self._terminate(commit=True)

    def rollback(self) -> None:
        self._terminate(commit=False)

    def _terminate(self, commit: bool) -> None:
        with self._lock:
            conn = self._conn
            if conn is None:
                raise TransactionDone()
            self._conn = None
        try:
            if commit:
                conn.commit()
            else:
                conn.rollback()
            log.debug("Transaction %s", "committed" if commit else "rolled back")
        finally:
            self._pool.putconn(conn)

    def __enter__(self) -> "TransactionHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.done:
            self.rollback()

    def __repr__(self) -> str:
        state = "done" if self.done else "active"
        return f"<TransactionHandle {state} at 0x{id(self):x}>"


class Transactor:
    """Opens transactions against the primary pool."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def begin(self, ref: ContextRef) -> TransactionHandle:
        """
        Open a transaction and bind it into ``ref``.

        Parameters
        ----------
        ref : ContextRef
            On success ``ref.context`` is replaced by a child context carrying
            the new handle. On failure it is left untouched.

        Returns
        -------
        TransactionHandle
            Handle bound to exactly this transaction.

        Raises
        ------
        ContextDone
            If the context is already cancelled or past its deadline.
        psycopg.Error
            If no live connection could be checked out (``PoolTimeout``
            included). The pool checks each connection before handing it out,
            so a dead backend fails here rather than at the first statement.
        """
        ctx = ref.context
        ctx.check()
        conn = self._pool.getconn(timeout=ctx.remaining())
        handle = TransactionHandle(self._pool, conn)
        ref.context = bind_transaction(ctx, handle)
        log.debug("Transaction started")
        return handle

    @contextmanager
    def transaction(self, ctx: Context) -> Iterator[Tuple[Context, TransactionHandle]]:
        """
        Scoped form of ``begin``.

        Yields the transaction-bound context and its handle. The caller commits
        explicitly; leaving the block any other way rolls back.
        """
        ref = ContextRef(ctx)
        with self.begin(ref) as handle:
            yield ref.context, handle


__all__ = ["ContextRef", "TransactionHandle", "Transactor"]
