"""
Transaction-aware query executor for the primary database.

Each operation takes a ``Context``, a query with ``:name`` placeholders and a
parameter mapping. The context decides where the statement runs:

- a context carrying a transaction runs the statement on that transaction;
- a context without one runs it on a connection checked out of the primary
  pool, committed as soon as the statement finishes.

The ``*_must_tx`` variants refuse the second case and raise
``MissingTransaction`` before anything is rewritten or sent, so storage
functions can declare that a statement is only meaningful inside a
caller-managed transaction.

Row-returning operations scan exactly one row. Scanning happens after the
statement has executed: a ``ScanError`` inside a transaction leaves the
statement's side effects pending until the caller commits or rolls back.

A context deadline bounds each statement through ``statement_timeout``.
Cancelling the context while a statement runs asks the server to cancel it,
and psycopg raises ``QueryCanceled``.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence, Tuple, Type, Union

import psycopg
from psycopg import Connection, Cursor
from psycopg_pool import ConnectionPool

from cptx.context import Context, lookup_transaction
from cptx.domain.models import ExecResult
from cptx.errors import MissingTransaction, NoRows, ScanError
from cptx.infrastructure.db_factory import apply_statement_timeout
from cptx.rewriter import BindStyle, Params, prepare
from cptx.transaction import TransactionHandle
from cptx.utils.logging import get_logger

log = get_logger(__name__)


class Target:
    """
    Output slot filled by position when a row is scanned.

    Parameters
    ----------
    kind : type or tuple of types, optional
        Expected Python type of the column value. ``None`` accepts anything.
    nullable : bool
        Whether SQL NULL may be scanned into this slot when ``kind`` is set.
    """

    __slots__ = ("kind", "nullable", "value", "filled")

    def __init__(
        self,
        kind: Union[Type[Any], Tuple[Type[Any], ...], None] = None,
        nullable: bool = False,
    ) -> None:
        self.kind = kind
        self.nullable = nullable
        self.value: Any = None
        self.filled = False

    def assign(self, value: Any, column: str = "?") -> None:
        if self.kind is not None:
            if value is None:
                if not self.nullable:
                    raise ScanError(f"column {column!r}: cannot scan NULL into non-nullable target")
            elif not isinstance(value, self.kind):
                raise ScanError(
                    f"column {column!r}: cannot scan {type(value).__name__} into {self.kind!r}"
                )
        self.value = value
        self.filled = True

    def __repr__(self) -> str:
        return f"Target(kind={self.kind!r}, value={self.value!r})"


def _scan_one(
    columns: Optional[Sequence[str]], rows: Sequence[Sequence[Any]], targets: Sequence[Target]
) -> Tuple[Any, ...]:
    if columns is None:
        raise ScanError("statement did not return rows")
    if not rows:
        raise NoRows()
    if len(rows) > 1:
        raise ScanError("expected exactly one row, got more")
    row = tuple(rows[0])
    if targets:
        if len(targets) != len(row):
            raise ScanError(f"expected {len(row)} destination arguments, not {len(targets)}")
        for target, column, value in zip(targets, columns, row):
            target.assign(value, column)
    return row


def _canceller(conn: Connection) -> Callable[[], None]:
    """Callback asking the server to cancel whatever ``conn`` is running."""

    def cancel() -> None:
        try:
            conn.cancel_safe()
        except psycopg.Error as err:
            log.warning("Could not cancel running statement: %s", err)

    return cancel


class PrimaryDB:
    """
    Query executor bound to the primary pool.

    Parameters
    ----------
    pool : ConnectionPool
        Primary (writable) pool used when the context carries no transaction.
    bind_style : BindStyle
        Placeholder syntax the rewritten query is adapted to.
    """

    def __init__(self, pool: ConnectionPool, bind_style: BindStyle = BindStyle.FORMAT) -> None:
        self._pool = pool
        self._bind_style = BindStyle(bind_style)

    @property
    def pool(self) -> ConnectionPool:
        """The raw primary pool, outside any transaction propagation."""
        return self._pool

    def _must_tx(self, ctx: Context) -> TransactionHandle:
        handle = lookup_transaction(ctx)
        if handle is None:
            raise MissingTransaction()
        return handle

    def _run(
        self,
        cur: Cursor[Any],
        ctx: Context,
        query: str,
        args: list,
        handle: Optional[TransactionHandle],
    ) -> None:
        if handle is None:
            apply_statement_timeout(cur, ctx.remaining())
        else:
            handle.bound_statement(cur, ctx.remaining())
        with ctx.on_cancel(_canceller(cur.connection)):
            cur.execute(query, args)

    def _exec(
        self,
        conn: Connection,
        ctx: Context,
        query: str,
        args: list,
        handle: Optional[TransactionHandle] = None,
    ) -> ExecResult:
        with conn.cursor() as cur:
            self._run(cur, ctx, query, args, handle)
            return ExecResult(rowcount=cur.rowcount, status=cur.statusmessage)

    def _fetch(
        self,
        conn: Connection,
        ctx: Context,
        query: str,
        args: list,
        handle: Optional[TransactionHandle] = None,
    ) -> Tuple[Optional[List[str]], List[Any]]:
        # At most two rows are pulled: enough to tell "one" from "more than one".
        with conn.cursor() as cur:
            self._run(cur, ctx, query, args, handle)
            if cur.description is None:
                return None, []
            return [column.name for column in cur.description], cur.fetchmany(2)

    def execute_must_tx(self, ctx: Context, query: str, params: Params = None) -> ExecResult:
        """
        Execute a statement on the context's transaction.

        Raises
        ------
        MissingTransaction
            If ``ctx`` carries no transaction; nothing is sent.
        RewriteError
            If ``query`` and ``params`` do not pair up; nothing is sent.
        """
        handle = self._must_tx(ctx)
        sql, args = prepare(query, params, self._bind_style)
        ctx.check()
        return self._exec(handle.connection, ctx, sql, args, handle)

    def execute(self, ctx: Context, query: str, params: Params = None) -> ExecResult:
        """Execute a statement, joining the context's transaction when it has one."""
        handle = lookup_transaction(ctx)
        sql, args = prepare(query, params, self._bind_style)
        ctx.check()
        if handle is not None:
            return self._exec(handle.connection, ctx, sql, args, handle)
        with self._pool.connection(timeout=ctx.remaining()) as conn:
            return self._exec(conn, ctx, sql, args)

    def query_row_must_tx(
        self, ctx: Context, query: str, params: Params = None, *targets: Target
    ) -> Tuple[Any, ...]:
        """
        Run a query on the context's transaction and scan its single row.

        Returns the row as a tuple; when ``targets`` are given they are filled
        by position as well.

        Raises
        ------
        MissingTransaction
            If ``ctx`` carries no transaction; nothing is sent.
        ScanError
            If the result is not exactly one row matching ``targets``. The
            statement has already executed within the transaction.
        """
        handle = self._must_tx(ctx)
        sql, args = prepare(query, params, self._bind_style)
        ctx.check()
        columns, rows = self._fetch(handle.connection, ctx, sql, args, handle)
        return _scan_one(columns, rows, targets)

    def query_row(
        self, ctx: Context, query: str, params: Params = None, *targets: Target
    ) -> Tuple[Any, ...]:
        """Run a query, joining the context's transaction when it has one, and scan its single row."""
        handle = lookup_transaction(ctx)
        sql, args = prepare(query, params, self._bind_style)
        ctx.check()
        if handle is not None:
            columns, rows = self._fetch(handle.connection, ctx, sql, args, handle)
        else:
            # Scanned after checkin: the statement is committed whether or not the scan succeeds.
            with self._pool.connection(timeout=ctx.remaining()) as conn:
                columns, rows = self._fetch(conn, ctx, sql, args)
        return _scan_one(columns, rows, targets)


__all__ = ["PrimaryDB", "Target"]
