import os
import sqlite3
from contextlib import contextmanager
from typing import Optional

from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from ..workers.kinds import SYNC_PENDING, SYNC_SENT, SYNC_STATUSES, EntityKind, NestedSpec

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "sqlite_schema.sql")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _fetch_all(cur, sql: str, params: tuple):
    cur.execute(sql, params)
    return [dict(r) for r in cur.fetchall()]


class LocalStore:
    """
    Query/update surface over the local database used by the replication engine.

    Every method takes an open cursor so callers decide the transaction scope
    (`with store.transaction() as cur:`). Table and column names come from
    EntityKind descriptors, never from request input.
    """

    param = "?"

    @contextmanager
    def transaction(self):
        raise NotImplementedError

    def close(self) -> None:
        pass

    def _in(self, column: str, values) -> tuple[str, tuple]:
        values = list(values)
        marks = ",".join([self.param] * len(values))
        return f"{column} IN ({marks})", tuple(values)

    def find_pending(self, cur, kind: EntityKind, limit: int) -> list[dict]:
        p = self.param
        where = [f"t.sync_status = {p}"]
        params: list = [SYNC_PENDING]
        # Already-sent owners still qualify while they carry pending tracked sub-records.
        for n in kind.tracked_nested:
            where.append(
                f"EXISTS (SELECT 1 FROM {n.table} n WHERE n.{n.owner_column} = t.id AND n.sync_status = {p})"
            )
            params.append(SYNC_PENDING)
        sql = f"""
            SELECT t.* FROM {kind.table} t
            WHERE {" OR ".join(where)}
            ORDER BY t.created_at ASC, t.id ASC
            LIMIT {p}
        """
        params.append(int(limit))
        return _fetch_all(cur, sql, tuple(params))

    def find_nested(self, cur, nested: NestedSpec, owner_ids: list[str]) -> list[dict]:
        if not owner_ids:
            return []
        clause, params = self._in(nested.owner_column, owner_ids)
        sql = f"SELECT * FROM {nested.table} WHERE {clause}"
        if nested.pending_only:
            sql += f" AND sync_status = {self.param}"
            params = params + (SYNC_PENDING,)
        sql += f" ORDER BY {nested.owner_column}, {nested.order_by} ASC, id ASC"
        return _fetch_all(cur, sql, params)

    def _find_by_ids(self, cur, table: str, fields: tuple, ids: list[str]) -> list[dict]:
        cols = ", ".join(fields) or "*"
        clause, params = self._in("id", ids)
        return _fetch_all(cur, f"SELECT {cols} FROM {table} WHERE {clause}", params)

    def find_parents(self, cur, kind: EntityKind, parent_ids: list[str]) -> list[dict]:
        parent = kind.depends_on
        if parent is None or not parent_ids:
            return []
        return self._find_by_ids(cur, parent.table, kind.parent_fields, parent_ids)

    def find_refs(self, cur, nested: NestedSpec, ref_ids: list[str]) -> list[dict]:
        if not nested.ref_table or not ref_ids:
            return []
        return self._find_by_ids(cur, nested.ref_table, nested.ref_fields, ref_ids)

    def update_status(self, cur, kind: EntityKind, ids: list[str], status: str) -> int:
        return self._advance(cur, kind.table, "id", ids, status)

    def update_nested_status(self, cur, nested: NestedSpec, owner_ids: list[str], status: str, ids=None) -> int:
        return self._advance(cur, nested.table, nested.owner_column, owner_ids, status, ids=ids)

    def _advance(self, cur, table: str, column: str, keys: list[str], status: str, ids=None) -> int:
        # Status only ever moves forward: pending -> sent. Rows already sent are left untouched.
        if status != SYNC_SENT:
            raise ValueError(f"unsupported status transition: -> {status}")
        if not keys:
            return 0
        clause, params = self._in(column, keys)
        if ids is not None:
            # Narrow to the sub-records that were actually in the transmitted payload.
            if not ids:
                return 0
            id_clause, id_params = self._in("id", ids)
            clause = f"{clause} AND {id_clause}"
            params = params + id_params
        cur.execute(
            f"UPDATE {table} SET sync_status = {self.param} WHERE {clause} AND sync_status = {self.param}",
            (SYNC_SENT,) + params + (SYNC_PENDING,),
        )
        return max(0, int(cur.rowcount or 0))

    def count_by_status(self, cur, kind: EntityKind, status: str) -> int:
        if status not in SYNC_STATUSES:
            raise ValueError(f"invalid sync status: {status}")
        cur.execute(f"SELECT COUNT(1) AS n FROM {kind.table} WHERE sync_status = {self.param}", (status,))
        row = cur.fetchone()
        if not row:
            return 0
        return int(dict(row)["n"])


class SqliteStore(LocalStore):
    param = "?"

    def __init__(self, path: str, timeout_s: float = 5.0):
        self.path = path
        self.timeout_s = timeout_s

    def connect(self):
        # Autocommit mode; transactions are explicit so a multi-query read sees one snapshot.
        conn = sqlite3.connect(self.path, timeout=self.timeout_s, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self):
        conn = self.connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            try:
                yield cur
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()


class PostgresStore(LocalStore):
    param = "%s"

    def __init__(self, url: str, pool: Optional[ConnectionPool] = None):
        self.url = url
        # Note: we keep row_factory=dict_row so rows read the same as SQLite rows.
        self._pool = pool or ConnectionPool(
            conninfo=url,
            min_size=_env_int("DB_POOL_MIN_SIZE", 1),
            max_size=_env_int("DB_POOL_MAX_SIZE", 4),
            kwargs={"row_factory": dict_row},
            open=True,
        )

    def _in(self, column: str, values) -> tuple[str, tuple]:
        return f"{column}::text = ANY(%s)", ([str(v) for v in values],)

    @contextmanager
    def transaction(self):
        with self._pool.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    yield cur

    def close(self) -> None:
        self._pool.close()


def open_store(url: str) -> LocalStore:
    raw = (url or "").strip()
    if raw.startswith(("postgresql://", "postgres://")):
        return PostgresStore(raw)
    if raw.startswith("sqlite:///"):
        raw = raw[len("sqlite:///"):]
    return SqliteStore(raw or "pos.sqlite")


def init_db(path: str) -> None:
    if not os.path.exists(SCHEMA_PATH):
        raise RuntimeError(f"Missing schema file: {SCHEMA_PATH}")
    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
        schema = f.read()
    conn = sqlite3.connect(path)
    try:
        conn.executescript(schema)
        conn.commit()
    finally:
        conn.close()
