"""
Entity kinds replicated from the station database to the remote authority.

A kind is a plain descriptor: which local table holds the records, where the
remote bulk-ingest endpoint lives, which kind (if any) must be processed as an
earlier phase, and which sub-records travel embedded in each payload.
"""

from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Optional

SYNC_PENDING = "pending"
SYNC_SENT = "sent"
SYNC_STATUSES = (SYNC_PENDING, SYNC_SENT)


@dataclass(frozen=True)
class NestedSpec:
    name: str
    table: str
    owner_column: str
    # Tracked sub-records carry their own sync_status and are marked sent with their owner.
    tracks_status: bool = False
    # Embed only rows that are still pending (otherwise every row is embedded).
    pending_only: bool = False
    many: bool = True
    order_by: str = "created_at"
    # Summary of a referenced row embedded in each sub-record, e.g. detail["product"].
    ref_column: Optional[str] = None
    ref_table: Optional[str] = None
    ref_key: Optional[str] = None
    ref_fields: tuple = ()


def _strip_local_fields(row: dict) -> dict:
    return {k: v for k, v in row.items() if k != "sync_status"}


def _default_serialize(record: dict) -> dict:
    return _strip_local_fields(record)


@dataclass(frozen=True)
class EntityKind:
    name: str
    table: str
    endpoint: str
    probe_path: str
    depends_on: Optional["EntityKind"] = None
    parent_column: Optional[str] = None
    # Embedded parent summary, e.g. product["category"] = {"id": ..., "name": ...}.
    parent_key: Optional[str] = None
    parent_fields: tuple = ()
    nested: tuple = ()
    serialize: Callable[[dict], dict] = field(default=_default_serialize, compare=False)

    @property
    def tracked_nested(self) -> list[NestedSpec]:
        return [n for n in self.nested if n.tracks_status]

    def phases(self) -> list["EntityKind"]:
        """Kinds to process in one cycle, prerequisites first."""
        out: list[EntityKind] = []
        if self.depends_on is not None:
            out.extend(self.depends_on.phases())
        out.append(self)
        return out


def _bool(v: Any) -> Optional[bool]:
    if v is None:
        return None
    return bool(v)


def serialize_sale(record: dict) -> dict:
    out = _strip_local_fields(record)
    out["details"] = [_strip_local_fields(d) for d in (record.get("details") or [])]
    return out


def serialize_product(record: dict, default_branch: str = "Main Branch") -> dict:
    branch = record.get("branch") or default_branch
    inv = record.get("inventory")
    return {
        "id": record.get("id"),
        "code": record.get("code"),
        "name": record.get("name"),
        "status": record.get("status"),
        "sale_type": record.get("sale_type"),
        "price": record.get("price"),
        "cost": record.get("cost"),
        "description": record.get("description"),
        "icon": record.get("icon"),
        "category_id": record.get("category_id"),
        "track_inventory": _bool(record.get("track_inventory")),
        "is_kit": _bool(record.get("is_kit")),
        "branch": branch,
        "created_at": record.get("created_at"),
        "category": record.get("category"),
        "presentations": [
            {
                "id": p.get("id"),
                "name": p.get("name"),
                "quantity": p.get("quantity"),
                "unit_price": p.get("unit_price"),
                "is_default": _bool(p.get("is_default")),
                "branch": p.get("branch") or branch,
            }
            for p in (record.get("presentations") or [])
        ],
        "inventory": (
            {
                "id": inv.get("id"),
                "current_stock": inv.get("current_stock"),
                "min_stock": inv.get("min_stock"),
                "max_stock": inv.get("max_stock"),
                "track_inventory": _bool(inv.get("track_inventory")),
                "branch": inv.get("branch") or branch,
            }
            if inv
            else None
        ),
        "kit_items": [
            {
                "product_id": k.get("product_id"),
                "presentation_id": k.get("presentation_id"),
                "quantity": k.get("quantity"),
                "display_order": k.get("display_order"),
            }
            for k in (record.get("kit_items") or [])
        ],
    }


SALES = EntityKind(
    name="sales",
    table="sales",
    endpoint="/api/sales/bulk",
    probe_path="/api/sales",
    nested=(
        NestedSpec(
            name="details",
            table="sale_details",
            owner_column="sale_id",
            ref_column="product_id",
            ref_table="products",
            ref_key="product",
            ref_fields=("id", "name", "code"),
        ),
    ),
    serialize=serialize_sale,
)

CATEGORIES = EntityKind(
    name="categories",
    table="categories",
    endpoint="/api/products/categories/bulk",
    probe_path="/api/products",
)


def build_products_kind(default_branch: str = "Main Branch") -> EntityKind:
    return EntityKind(
        name="products",
        table="products",
        endpoint="/api/products/bulk",
        probe_path="/api/products",
        depends_on=CATEGORIES,
        parent_column="category_id",
        parent_key="category",
        parent_fields=("id", "name", "description", "show_in_pos"),
        nested=(
            NestedSpec(name="presentations", table="product_presentations", owner_column="product_id", tracks_status=True, pending_only=True),
            NestedSpec(name="inventory", table="inventory", owner_column="product_id", tracks_status=True, many=False),
            NestedSpec(name="kit_items", table="kit_items", owner_column="kit_id", order_by="display_order"),
        ),
        serialize=partial(serialize_product, default_branch=default_branch),
    )
