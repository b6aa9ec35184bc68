from contextlib import contextmanager

from replicator.app.db import PostgresStore, SqliteStore, open_store
from replicator.workers.kinds import SALES, build_products_kind

PRODUCTS = build_products_kind()


class _DummyCursor:
    def __init__(self, rows=None, rowcount=0):
        self._rows = rows or []
        self.rowcount = rowcount
        self.executed: list[tuple[str, tuple]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params):
        self.executed.append((" ".join(sql.split()), tuple(params)))

    def fetchall(self):
        return self._rows

    def fetchone(self):
        return self._rows[0] if self._rows else None


class _DummyConn:
    def __init__(self, cursor):
        self._cursor = cursor

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    @contextmanager
    def transaction(self):
        yield

    def cursor(self):
        return self._cursor


class _DummyPool:
    def __init__(self, cursor):
        self._conn = _DummyConn(cursor)
        self.closed = False

    @contextmanager
    def connection(self):
        yield self._conn

    def close(self):
        self.closed = True


def _store(cursor):
    return PostgresStore("postgresql://edge/pos", pool=_DummyPool(cursor))


def test_find_pending_uses_server_side_placeholders_and_ordering():
    cur = _DummyCursor(rows=[{"id": "p-1", "sync_status": "pending"}])
    store = _store(cur)
    with store.transaction() as c:
        rows = store.find_pending(c, PRODUCTS, 10)

    assert rows == [{"id": "p-1", "sync_status": "pending"}]
    sql, params = cur.executed[0]
    assert "FROM products t" in sql
    assert "EXISTS (SELECT 1 FROM product_presentations n WHERE n.product_id = t.id AND n.sync_status = %s)" in sql
    assert "ORDER BY t.created_at ASC, t.id ASC LIMIT %s" in sql
    assert "?" not in sql
    assert params == ("pending", "pending", "pending", 10)


def test_updates_use_any_array_and_only_advance_pending_rows():
    cur = _DummyCursor(rowcount=2)
    store = _store(cur)
    with store.transaction() as c:
        n = store.update_status(c, SALES, ["s-1", "s-2"], "sent")

    assert n == 2
    sql, params = cur.executed[0]
    assert sql == "UPDATE sales SET sync_status = %s WHERE id::text = ANY(%s) AND sync_status = %s"
    assert params == ("sent", ["s-1", "s-2"], "pending")


def test_nested_update_is_scoped_by_owner_and_transmitted_ids():
    cur = _DummyCursor(rowcount=1)
    store = _store(cur)
    presentations = PRODUCTS.nested[0]
    with store.transaction() as c:
        store.update_nested_status(c, presentations, ["p-1"], "sent", ids=["pr-9"])

    sql, params = cur.executed[0]
    assert "product_id::text = ANY(%s) AND id::text = ANY(%s)" in sql
    assert params == ("sent", ["p-1"], ["pr-9"], "pending")


def test_count_reads_dict_rows():
    cur = _DummyCursor(rows=[{"n": 7}])
    store = _store(cur)
    with store.transaction() as c:
        assert store.count_by_status(c, SALES, "pending") == 7
    assert cur.executed[0] == ("SELECT COUNT(1) AS n FROM sales WHERE sync_status = %s", ("pending",))


def test_status_never_moves_backwards():
    store = _store(_DummyCursor())
    try:
        with store.transaction() as c:
            store.update_status(c, SALES, ["s-1"], "pending")
        assert False, "expected ValueError"
    except ValueError:
        pass


def test_close_closes_the_pool():
    pool = _DummyPool(_DummyCursor())
    PostgresStore("postgresql://edge/pos", pool=pool).close()
    assert pool.closed is True


def test_open_store_picks_backend_from_url(tmp_path):
    path = str(tmp_path / "station.sqlite")
    assert isinstance(open_store(path), SqliteStore)
    assert open_store(f"sqlite:///{path}").path == path
