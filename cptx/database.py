"""
Entry point wiring the connection provider, query executor and transaction
controller together.

Usage:
    from cptx import Database, background

    db = Database.open()  # PRIMARY_DSN / REPLICA_DSN / DB_DOMAIN from settings
    with db.transactor.transaction(background()) as (ctx, tx):
        db.main.execute_must_tx(ctx, "UPDATE accounts SET balance = balance - :n WHERE id = :id",
                                {"n": 10, "id": 1})
        tx.commit()
"""

from __future__ import annotations

from typing import Optional, Union

from psycopg_pool import ConnectionPool

from cptx.config import get_settings
from cptx.executor import PrimaryDB
from cptx.infrastructure.db_factory import ConnectionSet, open_connections
from cptx.rewriter import BindStyle
from cptx.transaction import Transactor


class Database:
    """
    Primary and replica access for one domain.

    Attributes
    ----------
    main : PrimaryDB
        Transaction-aware executor over the primary pool.
    replica : ConnectionPool
        Raw replica pool. Reads from it never see an in-flight transaction.
    transactor : Transactor
        Opens transactions against the primary pool.
    """

    def __init__(
        self,
        connections: ConnectionSet,
        bind_style: Union[BindStyle, str] = BindStyle.FORMAT,
    ) -> None:
        self._connections = connections
        self._main = PrimaryDB(connections.primary, bind_style=BindStyle(bind_style))
        self._transactor = Transactor(connections.primary)

    @classmethod
    def open(
        cls,
        primary_dsn: Optional[str] = None,
        replica_dsn: Optional[str] = None,
        domain: Optional[str] = None,
    ) -> "Database":
        """
        Open both pools, falling back to the settings for any argument left out.

        Raises
        ------
        StartupUnreachable
            If either endpoint is missing or unreachable.
        """
        settings = get_settings()
        connections = open_connections(
            primary_dsn if primary_dsn is not None else settings.primary_dsn,
            replica_dsn if replica_dsn is not None else settings.replica_dsn,
            domain if domain is not None else settings.domain,
        )
        return cls(connections, bind_style=settings.bind_style)

    @property
    def main(self) -> PrimaryDB:
        return self._main

    @property
    def replica(self) -> ConnectionPool:
        return self._connections.replica

    @property
    def transactor(self) -> Transactor:
        return self._transactor

    @property
    def domain(self) -> str:
        return self._connections.domain

    def close(self) -> None:
        self._connections.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["Database"]
