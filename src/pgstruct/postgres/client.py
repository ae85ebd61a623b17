from typing import Any, Optional

import psycopg
from psycopg.rows import dict_row


class PostgresClient:
    """Thin wrapper around a psycopg connection for simple SQL execution.

    The connection runs in autocommit mode, so every DDL statement commits on
    its own and a failure leaves earlier statements applied.
    """

    def __init__(self, dsn: str, connect_timeout: int = 10) -> None:
        self._dsn = dsn
        self._connect_timeout = connect_timeout
        self._conn: Optional[psycopg.Connection] = None

    def connect(self) -> None:
        """Open the connection. Must be called before execute/fetchall."""
        if self._conn is not None:
            raise RuntimeError("Already connected. Call close() before reconnecting.")

        self._conn = psycopg.connect(
            self._dsn,
            autocommit=True,
            row_factory=dict_row,
            connect_timeout=self._connect_timeout,
        )

    def execute(self, sql_statement: str, params: Optional[Any] = None) -> None:
        if self._conn is None:
            raise RuntimeError("Not connected. Call connect() first.")
        with self._conn.cursor() as cur:
            cur.execute(sql_statement, params)

    def fetchall(
        self, sql_statement: str, params: Optional[Any] = None
    ) -> list[dict[str, Any]]:
        if self._conn is None:
            raise RuntimeError("Not connected. Call connect() first.")
        with self._conn.cursor() as cur:
            cur.execute(sql_statement, params)
            return list(cur.fetchall())

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "PostgresClient":
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()
