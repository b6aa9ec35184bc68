from dataclasses import dataclass, field
from typing import Optional

from .kinds import SYNC_SENT, EntityKind


@dataclass
class CommitResult:
    records: int = 0
    nested: dict = field(default_factory=dict)


def transmitted_nested_ids(kind: EntityKind, batch: list[dict]) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for n in kind.tracked_nested:
        ids: list[str] = []
        for rec in batch:
            rows = rec.get(n.name)
            if rows is None:
                continue
            for r in rows if n.many else [rows]:
                if r and r.get("id"):
                    ids.append(str(r["id"]))
        out[n.name] = ids
    return out


def mark_sent(store, kind: EntityKind, ids: list[str], nested_ids: Optional[dict] = None) -> CommitResult:
    """
    Flip exactly the acknowledged ids (and their pending tracked sub-records) to sent.

    One transaction per batch: either the owners and their sub-records all move,
    or nothing does. Rows that are already sent are not matched, so replaying a
    commit is a no-op. When `nested_ids` is given, sub-records are further narrowed
    to the ones that were in the payload (rows added after selection stay pending).
    """
    ids = [str(i) for i in ids if i]
    out = CommitResult()
    if not ids:
        return out
    with store.transaction() as cur:
        out.records = store.update_status(cur, kind, ids, SYNC_SENT)
        for n in kind.tracked_nested:
            only = None if nested_ids is None else list(nested_ids.get(n.name) or [])
            out.nested[n.name] = store.update_nested_status(cur, n, ids, SYNC_SENT, ids=only)
    return out
