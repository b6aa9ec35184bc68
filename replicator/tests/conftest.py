import io
import itertools
import os
import sqlite3
import sys
import urllib.error
from datetime import datetime, timedelta

import pytest


# Allow running pytest from either the repo root or from within `replicator/`.
# Tests import `replicator.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from replicator.app.db import SqliteStore, init_db  # noqa: E402


class _Resp:
    def __init__(self, status: int, body: bytes):
        self.status = status
        self._body = body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def read(self):
        return self._body

    def getcode(self):
        return self.status


class FakeOpener:
    """
    Stand-in for urllib.request.urlopen. Each call consumes the next outcome:
    an int status (JSON body), a (status, body_bytes) tuple, or an exception.
    The last outcome repeats once the list is exhausted.
    """

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def __call__(self, req, timeout=None):
        self.requests.append((req, timeout))
        out = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(out, BaseException):
            raise out
        if isinstance(out, tuple):
            status, body = out
        else:
            status, body = out, b'{"ok": true}'
        if status >= 400:
            raise urllib.error.HTTPError(req.full_url, status, "error", {}, io.BytesIO(b"boom"))
        return _Resp(status, body)


class FakeProbe:
    def __init__(self, online=True):
        self.online = online
        self.calls = 0

    def is_reachable(self):
        self.calls += 1
        return self.online


class Seed:
    def __init__(self, path: str):
        self.path = path
        self._ids = itertools.count(1)
        self._base = datetime(2026, 1, 1, 8, 0, 0)

    def _ts(self, n: int) -> str:
        return (self._base + timedelta(seconds=n)).isoformat()

    def _insert(self, table: str, row: dict):
        cols = ",".join(row)
        marks = ",".join("?" for _ in row)
        conn = sqlite3.connect(self.path)
        try:
            conn.execute(f"INSERT INTO {table} ({cols}) VALUES ({marks})", tuple(row.values()))
            conn.commit()
        finally:
            conn.close()
        return row["id"]

    def _next(self, prefix: str):
        n = next(self._ids)
        return f"{prefix}-{n:04d}", self._ts(n)

    def sale(self, total=10.0, status="pending", lines=1, product_id="p-x", **extra):
        sid, ts = self._next("sale")
        self._insert("sales", {"id": sid, "total": total, "created_at": ts, "sync_status": status, **extra})
        for i in range(lines):
            lid, lts = self._next("line")
            self._insert(
                "sale_details",
                {"id": lid, "sale_id": sid, "product_id": product_id, "quantity": 1, "unit_price": total, "subtotal": total, "created_at": lts},
            )
        return sid

    def category(self, name="Drinks", status="pending"):
        cid, ts = self._next("cat")
        return self._insert("categories", {"id": cid, "name": name, "created_at": ts, "sync_status": status})

    def product(self, category_id=None, name="Cola", status="pending", **extra):
        pid, ts = self._next("prod")
        row = {"id": pid, "name": name, "category_id": category_id, "price": 1.5, "created_at": ts, "sync_status": status}
        row.update(extra)
        return self._insert("products", row)

    def presentation(self, product_id, name="Unit", status="pending"):
        rid, ts = self._next("pres")
        return self._insert(
            "product_presentations",
            {"id": rid, "product_id": product_id, "name": name, "created_at": ts, "sync_status": status},
        )

    def inventory(self, product_id, stock=5, status="pending"):
        rid, ts = self._next("inv")
        return self._insert(
            "inventory",
            {"id": rid, "product_id": product_id, "current_stock": stock, "created_at": ts, "sync_status": status},
        )

    def kit_item(self, kit_id, product_id, order=0):
        rid, ts = self._next("kit")
        return self._insert(
            "kit_items",
            {"id": rid, "kit_id": kit_id, "product_id": product_id, "display_order": order, "created_at": ts},
        )

    def status_of(self, table: str, rid: str) -> str:
        conn = sqlite3.connect(self.path)
        try:
            row = conn.execute(f"SELECT sync_status FROM {table} WHERE id = ?", (rid,)).fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def statuses(self, table: str) -> dict:
        conn = sqlite3.connect(self.path)
        try:
            return {r[0]: r[1] for r in conn.execute(f"SELECT id, sync_status FROM {table}").fetchall()}
        finally:
            conn.close()


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "pos.sqlite")
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    return SqliteStore(db_path)


@pytest.fixture
def seed(db_path):
    return Seed(db_path)


@pytest.fixture
def make_opener():
    return FakeOpener


@pytest.fixture
def make_probe():
    return FakeProbe
