import os
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _truthy(raw: Optional[str], default: bool = False) -> bool:
    if raw is None or not str(raw).strip():
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Remote authority (cloud). Empty means "always offline": the station keeps
        # recording locally and nothing is ever transmitted.
        self.remote_api_url = (os.getenv("REMOTE_API_URL") or "").strip().rstrip("/")
        # Either a SQLite file path (station) or a postgresql:// URL (edge node).
        self.local_db_url = (os.getenv("LOCAL_DB_URL") or "").strip() or "pos.sqlite"
        self.sync_enabled = _truthy(os.getenv("SYNC_ENABLED"), default=True)

        self.edge_sync_key = (os.getenv("EDGE_SYNC_KEY") or "").strip()
        self.edge_node_id = (os.getenv("EDGE_SYNC_NODE_ID") or "").strip()
        self.default_branch = (os.getenv("DEFAULT_BRANCH") or "").strip() or "Main Branch"

        self.sales_interval_minutes = _env_float("SALES_SYNC_INTERVAL_MINUTES", 5)
        self.catalog_interval_minutes = _env_float("CATALOG_SYNC_INTERVAL_MINUTES", 10)
        self.sales_startup_delay_seconds = _env_float("SALES_STARTUP_DELAY_SECONDS", 5)
        self.catalog_startup_delay_seconds = _env_float("CATALOG_STARTUP_DELAY_SECONDS", 10)

        self.sales_batch_size = _env_int("SALES_BATCH_SIZE", 3)
        self.catalog_batch_size = _env_int("CATALOG_BATCH_SIZE", 10)
        # Categories are a prerequisite step for products, so they use their own fixed
        # batch size regardless of what a forced sync asks for.
        self.category_batch_size = _env_int("CATEGORY_BATCH_SIZE", 10)
        self.force_limit_max = _env_int("SYNC_FORCE_LIMIT_MAX", 1000)

        self.max_retries = max(0, _env_int("SYNC_MAX_RETRIES", 3))
        self.initial_retry_delay_seconds = _env_float("SYNC_INITIAL_RETRY_DELAY_SECONDS", 1)
        self.probe_timeout_seconds = _env_float("SYNC_PROBE_TIMEOUT_SECONDS", 2)
        self.sales_send_timeout_seconds = _env_float("SALES_SEND_TIMEOUT_SECONDS", 30)
        self.catalog_send_timeout_seconds = _env_float("CATALOG_SEND_TIMEOUT_SECONDS", 60)
        self.sales_slow_cycle_seconds = _env_float("SALES_SLOW_CYCLE_SECONDS", 5)
        self.catalog_slow_cycle_seconds = _env_float("CATALOG_SLOW_CYCLE_SECONDS", 10)


settings = Settings()
