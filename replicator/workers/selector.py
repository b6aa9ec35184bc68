from .kinds import EntityKind

FORCE_LIMIT_CEILING = 1000


class InvalidLimitError(ValueError):
    pass


def validate_limit(limit, ceiling: int = FORCE_LIMIT_CEILING) -> int:
    # bool is an int subclass; reject it explicitly.
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidLimitError(f"limit must be an integer between 1 and {ceiling}")
    if limit < 1 or limit > ceiling:
        raise InvalidLimitError(f"limit must be between 1 and {ceiling} (got {limit})")
    return limit


def _attach(
    records: list[dict],
    kind: EntityKind,
    nested_rows: dict[str, list[dict]],
    parents: dict[str, dict],
    refs: dict[str, dict[str, dict]],
):
    by_owner: dict[str, dict[str, list[dict]]] = {}
    for n in kind.nested:
        grouped: dict[str, list[dict]] = {}
        for r in nested_rows.get(n.name, []):
            if n.ref_key:
                ref_id = r.get(n.ref_column)
                r[n.ref_key] = refs.get(n.name, {}).get(str(ref_id)) if ref_id else None
            grouped.setdefault(str(r.get(n.owner_column)), []).append(r)
        by_owner[n.name] = grouped

    for rec in records:
        rid = str(rec.get("id"))
        for n in kind.nested:
            rows = by_owner[n.name].get(rid, [])
            rec[n.name] = rows if n.many else (rows[0] if rows else None)
        if kind.parent_key:
            parent_id = rec.get(kind.parent_column)
            rec[kind.parent_key] = parents.get(str(parent_id)) if parent_id else None


def select_pending(store, kind: EntityKind, limit: int, ceiling: int = FORCE_LIMIT_CEILING) -> list[dict]:
    """
    Oldest-first pending records of one kind with their sub-records attached.

    Read-only: one transaction for the owner rows, their nested rows, and the
    parent and reference summaries, so the batch is a consistent snapshot even
    while the till keeps writing new sales.
    """
    limit = validate_limit(limit, ceiling)
    with store.transaction() as cur:
        records = store.find_pending(cur, kind, limit)
        if not records:
            return []
        ids = [str(r["id"]) for r in records]
        nested_rows = {n.name: store.find_nested(cur, n, ids) for n in kind.nested}
        refs: dict[str, dict[str, dict]] = {}
        for n in kind.nested:
            if n.ref_table:
                ref_ids = sorted({str(r[n.ref_column]) for r in nested_rows[n.name] if r.get(n.ref_column)})
                refs[n.name] = {str(x["id"]): x for x in store.find_refs(cur, n, ref_ids)}
        parents: dict[str, dict] = {}
        if kind.depends_on is not None and kind.parent_column:
            parent_ids = sorted({str(r[kind.parent_column]) for r in records if r.get(kind.parent_column)})
            parents = {str(p["id"]): p for p in store.find_parents(cur, kind, parent_ids)}
    _attach(records, kind, nested_rows, parents, refs)
    return records
