"""
Connection provider for the cptx data layer.

Opens the primary (writable) and replica (read-only) psycopg connection pools,
verifies both with a liveness probe and hands them out as one ``ConnectionSet``.
An unreachable endpoint is a startup failure: it is logged at CRITICAL and
raised as ``StartupUnreachable`` so the process never runs half-open.

Both pools check a connection on every checkout, so a dead backend is
replaced before it is handed out.

The set is closed automatically on interpreter exit via an atexit hook.
"""

from __future__ import annotations

import atexit
import threading
from typing import Any, Optional

import psycopg
from psycopg.conninfo import conninfo_to_dict, make_conninfo
from psycopg_pool import ConnectionPool

from cptx.config import get_settings
from cptx.errors import StartupUnreachable
from cptx.utils.logging import get_logger

log = get_logger(__name__)

PLATFORM = "postgres"
MAIN = "main"
REPLICA = "replica"


class ConnectionSet:
    """
    The two process-wide pools plus the diagnostics label they were opened for.

    Attributes
    ----------
    primary : ConnectionPool
        Writable endpoint; the only pool transactions are opened against.
    replica : ConnectionPool
        Read-only endpoint; not wired into transaction propagation.
    domain : str
        Free-text label used only in log entries.
    """

    def __init__(self, primary: ConnectionPool, replica: ConnectionPool, domain: str) -> None:
        self._primary = primary
        self._replica = replica
        self._domain = domain
        self._lock = threading.Lock()
        self._closed = False

    @property
    def primary(self) -> ConnectionPool:
        return self._primary

    @property
    def replica(self) -> ConnectionPool:
        return self._replica

    @property
    def domain(self) -> str:
        return self._domain

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """
        Close both pools. Idempotent.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._primary.close()
            finally:
                self._replica.close()


def redact_dsn(dsn: str) -> str:
    """Return ``dsn`` in key=value form with the password masked, for logging."""
    try:
        params = conninfo_to_dict(dsn)
    except psycopg.Error:
        return "<unparseable>"
    if "password" in params:
        params["password"] = "***"
    return make_conninfo(**params)


def apply_statement_timeout(cur: psycopg.Cursor[Any], timeout_seconds: Optional[float]) -> None:
    """
    Bound the statements that follow on this transaction by ``timeout_seconds``.

    The setting is transaction-local, so it never leaks into other checkouts of
    the pooled connection. ``None`` leaves the server default untouched.
    """
    if timeout_seconds is None:
        return
    timeout_ms = max(1, int(timeout_seconds * 1000))
    cur.execute("SELECT set_config('statement_timeout', %s, true)", (str(timeout_ms),))


def current_statement_timeout(cur: psycopg.Cursor[Any]) -> str:
    """The ``statement_timeout`` in effect for the next statement on this connection."""
    cur.execute("SELECT current_setting('statement_timeout')")
    row = cur.fetchone()
    return str(row[0])


def restore_statement_timeout(cur: psycopg.Cursor[Any], value: str) -> None:
    """Put back a value read with ``current_statement_timeout`` for the rest of the transaction."""
    cur.execute("SELECT set_config('statement_timeout', %s, true)", (value,))


def _open_pool(
    dsn: str,
    connection_type: str,
    domain: str,
    min_size: int,
    max_size: int,
    timeout: float,
) -> ConnectionPool:
    fields = {
        "platform": PLATFORM,
        "domain": domain,
        "type": connection_type,
        "connection": redact_dsn(dsn) if dsn else "",
    }
    if not dsn or not dsn.strip():
        log.critical("Empty connection string", extra=fields)
        raise StartupUnreachable(
            f"{connection_type} connection string is empty", connection_type, domain
        )

    pool: Optional[ConnectionPool] = None
    try:
        conninfo_to_dict(dsn)
        pool = ConnectionPool(
            conninfo=dsn,
            min_size=min_size,
            max_size=max_size,
            name=f"{domain}-{connection_type}",
            check=ConnectionPool.check_connection,
            open=False,
        )
        pool.open(wait=True, timeout=timeout)
        # Liveness probe: a pool that opened may still hand out a dead backend.
        with pool.connection(timeout=timeout) as conn:
            conn.execute("SELECT 1")
    except psycopg.Error as err:
        log.critical("Connection to %s failed: %s", connection_type, err, extra=fields)
        if pool is not None:
            pool.close()
        raise StartupUnreachable(
            f"could not open {connection_type} connection: {err}", connection_type, domain
        ) from err
    return pool


def open_connections(
    primary_dsn: str,
    replica_dsn: str,
    domain: str,
    min_size: Optional[int] = None,
    max_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> ConnectionSet:
    """
    Open and probe the primary and replica pools.

    Parameters
    ----------
    primary_dsn : str
        Connection string of the writable endpoint.
    replica_dsn : str
        Connection string of the read-only endpoint. Deployments without a
        replica pass the primary string here explicitly.
    domain : str
        Diagnostics label attached to every log entry.
    min_size, max_size : int, optional
        Pool bounds; default to the settings.
    timeout : float, optional
        Seconds to wait for each pool to open and answer the probe.

    Returns
    -------
    ConnectionSet
        Both pools, open and verified.

    Raises
    ------
    StartupUnreachable
        If either connection string is empty or invalid, or either endpoint
        cannot be reached. No pool is left open in that case.
    """
    settings = get_settings()
    min_size = settings.pool_min_size if min_size is None else min_size
    max_size = settings.pool_max_size if max_size is None else max_size
    timeout = settings.connect_timeout_seconds if timeout is None else timeout

    log_fields = {"platform": PLATFORM, "domain": domain}
    log.info("Connecting to PostgreSQL", extra=log_fields)

    log.info("Opening connection to main", extra=log_fields)
    primary = _open_pool(primary_dsn, MAIN, domain, min_size, max_size, timeout)

    log.info("Opening connection to replica", extra=log_fields)
    try:
        replica = _open_pool(replica_dsn, REPLICA, domain, min_size, max_size, timeout)
    except StartupUnreachable:
        primary.close()
        raise

    connections = ConnectionSet(primary=primary, replica=replica, domain=domain)
    atexit.register(connections.close)
    return connections


__all__ = [
    "ConnectionSet",
    "apply_statement_timeout",
    "current_statement_timeout",
    "open_connections",
    "redact_dsn",
    "restore_statement_timeout",
]
