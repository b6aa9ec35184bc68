from ..app.config import Settings
from ..app.logs import json_log
from .connectivity import ConnectivityProbe
from .coordinator import ReplicationEngine
from .kinds import SALES, build_products_kind
from .scheduler import SyncScheduler
from .transmitter import Transmitter

ENGINE_NAMES = ("sales", "catalog")


def _auth_headers(settings: Settings) -> dict:
    return {
        "X-Edge-Sync-Key": settings.edge_sync_key,
        "X-Edge-Node-Id": settings.edge_node_id,
    }


def build_engine(name: str, settings: Settings, store) -> ReplicationEngine:
    if name == "sales":
        kind = SALES
        timeout_s = settings.sales_send_timeout_seconds
        batch_size = settings.sales_batch_size
        slow_s = settings.sales_slow_cycle_seconds
    elif name == "catalog":
        kind = build_products_kind(settings.default_branch)
        timeout_s = settings.catalog_send_timeout_seconds
        batch_size = settings.catalog_batch_size
        slow_s = settings.catalog_slow_cycle_seconds
    else:
        raise ValueError(f"unknown sync engine: {name}")

    ceiling = max(1, settings.force_limit_max)
    if not 1 <= batch_size <= ceiling:
        clamped = min(max(1, batch_size), ceiling)
        json_log("warning", "sync.config.batch_size_clamped", engine=name, configured=batch_size, used=clamped)
        batch_size = clamped

    probe = ConnectivityProbe(
        settings.remote_api_url,
        fallback_path=kind.probe_path,
        timeout_s=settings.probe_timeout_seconds,
    )
    transmitter = Transmitter(
        settings.remote_api_url,
        timeout_s=timeout_s,
        max_retries=settings.max_retries,
        initial_retry_delay_s=settings.initial_retry_delay_seconds,
        headers=_auth_headers(settings),
    )
    return ReplicationEngine(
        name,
        kind,
        store,
        probe,
        transmitter,
        batch_size=batch_size,
        parent_batch_size=settings.category_batch_size,
        limit_ceiling=ceiling,
        slow_cycle_s=slow_s,
    )


def build_scheduler(name: str, settings: Settings, store) -> SyncScheduler:
    engine = build_engine(name, settings, store)
    if name == "sales":
        return SyncScheduler(engine, settings.sales_interval_minutes * 60, settings.sales_startup_delay_seconds)
    return SyncScheduler(engine, settings.catalog_interval_minutes * 60, settings.catalog_startup_delay_seconds)


class SyncServices:
    """The engines of one station, keyed by name ("sales", "catalog")."""

    def __init__(self, schedulers: dict):
        self.schedulers = schedulers

    @classmethod
    def from_settings(cls, settings: Settings, store, names=ENGINE_NAMES) -> "SyncServices":
        return cls({n: build_scheduler(n, settings, store) for n in names})

    def get(self, name: str):
        return self.schedulers.get(name)

    def start_all(self) -> None:
        for sched in self.schedulers.values():
            sched.start()

    def stop_all(self, timeout=None) -> None:
        for sched in self.schedulers.values():
            sched.stop(timeout)
