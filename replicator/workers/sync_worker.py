#!/usr/bin/env python3
"""
Long-running replication worker.

Runs the sales and/or catalog replication engines in the foreground, without the
HTTP control surface. Useful on stations where the POS UI talks to the database
directly, and for ops (`--once` to push whatever is pending right now).
"""

import argparse
import json
import os
import sys

from ..app.config import Settings
from ..app.db import SqliteStore, init_db, open_store
from ..app.logs import json_log
from .engines import ENGINE_NAMES, SyncServices


def main(argv=None):
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=os.environ.get("LOCAL_DB_URL"), help="SQLite path or postgresql:// URL")
    parser.add_argument("--remote", default=os.environ.get("REMOTE_API_URL"), help="Remote authority base URL")
    parser.add_argument("--engine", choices=[*ENGINE_NAMES, "all"], default="all")
    parser.add_argument("--limit", type=int, default=None, help="Batch limit for --once runs (default: engine batch size)")
    parser.add_argument("--once", action="store_true", help="Run a single cycle per engine and exit")
    parser.add_argument("--init-db", action="store_true", help="Initialize the local SQLite schema and exit")
    args = parser.parse_args(argv)

    settings = Settings()
    if args.db:
        settings.local_db_url = args.db
    if args.remote:
        settings.remote_api_url = args.remote.strip().rstrip("/")

    store = open_store(settings.local_db_url)
    if isinstance(store, SqliteStore):
        init_db(store.path)
        if args.init_db:
            print("ok")
            return 0
    elif args.init_db:
        print("--init-db only applies to SQLite stores", file=sys.stderr)
        return 2

    names = ENGINE_NAMES if args.engine == "all" else (args.engine,)
    services = SyncServices.from_settings(settings, store, names=names)
    try:
        if args.once:
            failed = False
            for name in names:
                res = services.get(name).force_now(args.limit)
                print(json.dumps({"engine": name, **res}, default=str))
                failed = failed or not res["success"]
            return 1 if failed else 0

        services.start_all()
        json_log("info", "worker.started", engines=list(names), remote=settings.remote_api_url or None)
        for sched in services.schedulers.values():
            # Daemon threads; block here until interrupted.
            while sched.running:
                sched.join(1.0)
        return 0
    except KeyboardInterrupt:
        return 0
    finally:
        services.stop_all(timeout=30)
        store.close()


if __name__ == "__main__":
    sys.exit(main())
