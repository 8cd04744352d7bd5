"""
cptx - context-propagated transactions for PostgreSQL primary/replica setups.

Call sites issue named-parameter queries with a request-scoped ``Context``.
A transaction opened once by ``Transactor.begin`` rides along in that context,
and every query made with it (or with any context derived from it) joins the
transaction:

- ``PrimaryDB.execute`` / ``query_row`` join an ambient transaction if present
  and otherwise run directly on the primary pool;
- ``PrimaryDB.execute_must_tx`` / ``query_row_must_tx`` refuse to run without
  one, raising ``MissingTransaction``.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from cptx.config import Settings, get_settings
from cptx.context import Context, background, bind_transaction, lookup_transaction
from cptx.database import Database
from cptx.domain.models import ExecResult
from cptx.errors import (
    ContextCancelled,
    ContextDone,
    CptxError,
    DeadlineExceeded,
    MissingTransaction,
    NoRows,
    RewriteError,
    ScanError,
    StartupUnreachable,
    TransactionDone,
)
from cptx.executor import PrimaryDB, Target
from cptx.infrastructure.db_factory import ConnectionSet, open_connections
from cptx.rewriter import BindStyle, adapt_placeholders, prepare, rewrite
from cptx.transaction import ContextRef, TransactionHandle, Transactor
from cptx.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Context carrier
    "Context",
    "background",
    "bind_transaction",
    "lookup_transaction",
    # Connections
    "ConnectionSet",
    "Database",
    "open_connections",
    # Transactions
    "ContextRef",
    "TransactionHandle",
    "Transactor",
    # Execution
    "ExecResult",
    "PrimaryDB",
    "Target",
    # Rewriting
    "BindStyle",
    "adapt_placeholders",
    "prepare",
    "rewrite",
    # Errors
    "CptxError",
    "ContextCancelled",
    "ContextDone",
    "DeadlineExceeded",
    "MissingTransaction",
    "NoRows",
    "RewriteError",
    "ScanError",
    "StartupUnreachable",
    "TransactionDone",
    # Logging
    "configure_logging",
    "get_logger",
]
