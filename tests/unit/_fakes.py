"""
In-memory stand-ins for psycopg pools, connections and cursors.

Every statement sent through a fake connection is recorded in the owning
pool's ``log`` as ``(connection_name, query, args)`` so tests can assert where
(and whether) a statement ran. Results are scripted per pool with
``FakeResult`` entries consumed in order.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

import psycopg
import psycopg.errors

SET_CONFIG_PREFIX = "SELECT set_config('statement_timeout'"
CURRENT_SETTING_QUERY = "SELECT current_setting('statement_timeout')"
SERVER_TIMEOUT = "0"
BLOCK_LIMIT_SECONDS = 5.0


class FakeColumn:
    def __init__(self, name: str) -> None:
        self.name = name


class FakeResult:
    def __init__(
        self,
        rows: Optional[Sequence[Tuple[Any, ...]]] = None,
        columns: Optional[Sequence[str]] = None,
        rowcount: int = 1,
        status: str = "INSERT 0 1",
        error: Optional[BaseException] = None,
        block: bool = False,
    ) -> None:
        self.rows = list(rows or [])
        self.columns = columns
        self.rowcount = rowcount
        self.status = status
        self.error = error
        # Blocks until the connection is cancelled, then raises QueryCanceled.
        self.block = block


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self.connection = conn
        self.description: Optional[List[FakeColumn]] = None
        self.rowcount = -1
        self.statusmessage: Optional[str] = None
        self._rows: List[Tuple[Any, ...]] = []

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb

    def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> "FakeCursor":
        self._conn.pool.log.append(
            (self._conn.name, query, list(params) if params is not None else None)
        )
        if self._conn.broken:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        if query.startswith(SET_CONFIG_PREFIX):
            self.description = [FakeColumn("set_config")]
            self._rows = [(params[0],)] if params else []
            return self
        if query == CURRENT_SETTING_QUERY:
            self.description = [FakeColumn("current_setting")]
            self._rows = [(SERVER_TIMEOUT,)]
            return self
        result = self._conn.pool.results.pop(0) if self._conn.pool.results else FakeResult()
        if result.error is not None:
            raise result.error
        if result.block:
            self._conn.cancelled.wait(BLOCK_LIMIT_SECONDS)
            raise psycopg.errors.QueryCanceled("canceling statement due to user request")
        self.description = (
            [FakeColumn(name) for name in result.columns] if result.columns is not None else None
        )
        self._rows = list(result.rows)
        self.rowcount = result.rowcount
        self.statusmessage = result.status
        return self

    def fetchone(self) -> Optional[Tuple[Any, ...]]:
        rows = self.fetchmany(1)
        return rows[0] if rows else None

    def fetchmany(self, size: int = 1) -> List[Tuple[Any, ...]]:
        batch, self._rows = self._rows[:size], self._rows[size:]
        return batch


class FakeConnection:
    def __init__(self, pool: "FakePool", name: str) -> None:
        self.pool = pool
        self.name = name
        self.commits = 0
        self.rollbacks = 0
        self.broken = False
        self.cancelled = threading.Event()
        self.cancel_calls = 0

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> FakeCursor:
        return self.cursor().execute(query, params)

    def commit(self) -> None:
        if self.broken:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        self.commits += 1

    def rollback(self) -> None:
        if self.broken:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        self.rollbacks += 1

    def cancel_safe(self) -> None:
        self.cancel_calls += 1
        self.cancelled.set()


class FakePool:
    """
    Pool double mimicking ``psycopg_pool.ConnectionPool``.

    ``connection()`` hands out the shared "pool" connection and commits on a
    clean exit, rolling back otherwise. ``getconn()`` hands out a fresh
    connection named "tx1", "tx2", ... for transactions.
    """

    def __init__(self, results: Optional[Sequence[FakeResult]] = None) -> None:
        self.results: List[FakeResult] = list(results or [])
        self.log: List[Tuple[str, str, Optional[List[Any]]]] = []
        self.conn = FakeConnection(self, "pool")
        self.checkout_timeouts: List[Optional[float]] = []
        self.given: List[FakeConnection] = []
        self.returned: List[FakeConnection] = []
        self.getconn_error: Optional[BaseException] = None
        self.closed = False

    @contextmanager
    def connection(self, timeout: Optional[float] = None) -> Iterator[FakeConnection]:
        self.checkout_timeouts.append(timeout)
        try:
            yield self.conn
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    def getconn(self, timeout: Optional[float] = None) -> FakeConnection:
        self.checkout_timeouts.append(timeout)
        if self.getconn_error is not None:
            raise self.getconn_error
        conn = FakeConnection(self, f"tx{len(self.given) + 1}")
        self.given.append(conn)
        return conn

    def putconn(self, conn: FakeConnection) -> None:
        self.returned.append(conn)

    def close(self) -> None:
        self.closed = True

    def statements(self, name: Optional[str] = None) -> List[str]:
        """Queries sent, excluding statement_timeout handling, optionally for one connection."""
        return [
            query
            for conn_name, query, _ in self.log
            if not _is_timeout_query(query) and (name is None or conn_name == name)
        ]


def _is_timeout_query(query: str) -> bool:
    return query.startswith(SET_CONFIG_PREFIX) or query == CURRENT_SETTING_QUERY
