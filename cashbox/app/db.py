from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence

from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .logs import json_log


@dataclass(frozen=True)
class InsertResult:
    generated_id: int


@dataclass(frozen=True)
class UpdateResult:
    rows_affected: int

    @property
    def matched(self) -> bool:
        return self.rows_affected > 0


class Session:
    """
    One transactional unit of work over a pooled connection.

    Statements run sequentially on a single cursor. INSERTs must end with
    `RETURNING id` so the generated identifier can be handed back.
    """

    def __init__(self, conn):
        self._conn = conn

    def insert(self, sql: str, params: Sequence[Any]) -> InsertResult:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        if not row:
            raise RuntimeError("insert returned no generated id")
        return InsertResult(generated_id=row["id"])

    def update(self, sql: str, params: Sequence[Any]) -> UpdateResult:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            return UpdateResult(rows_affected=max(cur.rowcount, 0))

    def fetch_one(self, sql: str, params: Sequence[Any]) -> Optional[dict]:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    def fetch_all(self, sql: str, params: Sequence[Any]) -> list:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchall()


class Database:
    """Owns the connection pool; created once at startup and closed at shutdown."""

    def __init__(self, conninfo: str, *, min_size: int = 1, max_size: int = 10):
        # Keep row_factory=dict_row so rows read like mappings everywhere.
        self._pool = ConnectionPool(
            conninfo=conninfo,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row},
            open=False,
        )

    def open(self, wait: bool = False) -> None:
        self._pool.open(wait=wait)

    def close(self) -> None:
        self._pool.close()

    @contextmanager
    def session(self) -> Iterator[Session]:
        # Commit on success, roll back on any exception, always return the
        # connection to the pool.
        with self._pool.connection() as conn:
            try:
                yield Session(conn)
            except BaseException:
                _rollback_quietly(conn)
                raise
            conn.commit()

    def ping(self) -> bool:
        with self.session() as s:
            row = s.fetch_one("SELECT 1 AS ok", ())
        return bool(row and row["ok"] == 1)


def _rollback_quietly(conn) -> None:
    try:
        conn.rollback()
    except Exception as exc:
        # The original error is what the caller needs to see.
        json_log("error", "session.rollback_failed", error=str(exc))
