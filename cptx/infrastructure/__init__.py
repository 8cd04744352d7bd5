"""
Infrastructure package for the cptx data layer.

Centralizes database connectivity concerns (pool creation, liveness probing,
statement timeouts). Keep this layer focused on I/O and resource management,
decoupled from transaction propagation logic.
"""

from cptx.infrastructure.db_factory import (
    ConnectionSet,
    apply_statement_timeout,
    open_connections,
    redact_dsn,
)

__all__ = [
    "ConnectionSet",
    "apply_statement_timeout",
    "open_connections",
    "redact_dsn",
]
