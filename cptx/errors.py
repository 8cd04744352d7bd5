"""
Error kinds raised by the cptx data layer.

Driver failures (constraint violations, lost connections, statement timeouts)
are never wrapped: they propagate as the psycopg exception the driver raised.
"""

from __future__ import annotations

import psycopg


class CptxError(Exception):
    """Base class for errors raised by cptx itself."""


class StartupUnreachable(CptxError):
    """
    A primary or replica pool could not be opened or failed its liveness probe.

    Attributes
    ----------
    connection_type : str
        Either "main" or "replica".
    domain : str
        Diagnostics label of the connection set being opened.
    """

    def __init__(self, message: str, connection_type: str, domain: str) -> None:
        super().__init__(message)
        self.connection_type = connection_type
        self.domain = domain


class MissingTransaction(CptxError):
    """A transaction-mandatory operation ran on a context with no transaction."""

    def __init__(self, message: str = "transaction is not found inside the context") -> None:
        super().__init__(message)


class RewriteError(CptxError, ValueError):
    """Named query and parameters do not pair up."""


class ScanError(CptxError):
    """The executed statement's result could not be scanned into the targets."""


class NoRows(ScanError):
    """The statement returned no rows where exactly one was expected."""

    def __init__(self, message: str = "no rows in result set") -> None:
        super().__init__(message)


class ContextDone(CptxError):
    """The context was finished before the statement could be sent."""


class ContextCancelled(ContextDone):
    def __init__(self, message: str = "context cancelled") -> None:
        super().__init__(message)


class DeadlineExceeded(ContextDone):
    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class TransactionDone(psycopg.InterfaceError):
    """Commit, Rollback or a query was issued on an already terminated transaction."""

    def __init__(
        self, message: str = "transaction has already been committed or rolled back"
    ) -> None:
        super().__init__(message)


__all__ = [
    "CptxError",
    "StartupUnreachable",
    "MissingTransaction",
    "RewriteError",
    "ScanError",
    "NoRows",
    "ContextDone",
    "ContextCancelled",
    "DeadlineExceeded",
    "TransactionDone",
]
