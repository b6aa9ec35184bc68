"""
Replication cycle coordinator.

One ReplicationEngine per replicated root kind (sales, catalog). A cycle is:
probe -> for each phase (prerequisite kinds first): select -> transmit -> commit.
Only one cycle per engine runs at a time; a second caller gets a "skipped"
result immediately instead of waiting. Cycle state lives on the instance and is
never persisted: a restart begins with zero failures and no last-sync time.
"""

import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ..app.logs import json_log
from .committer import mark_sent, transmitted_nested_ids
from .kinds import SYNC_PENDING, SYNC_SENT, EntityKind
from .selector import FORCE_LIMIT_CEILING, InvalidLimitError, select_pending, validate_limit
from .transmitter import TransmissionError

# Warning threshold only; the engine keeps cycling and the station keeps selling offline.
DEGRADED_AFTER_FAILURES = 5
# Failure details are logged for the first few consecutive failures, then only the summary.
DETAILED_FAILURE_LOGS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PhaseResult:
    kind: str
    selected: int = 0
    sent: int = 0
    ok: bool = True
    attempts: int = 0
    error: Optional[str] = None


@dataclass
class CycleResult:
    # ok | partial | failed | offline | skipped | invalid
    status: str
    success: bool
    count: int = 0
    remaining: Optional[int] = None
    message: str = ""
    phases: list = field(default_factory=list)
    elapsed_s: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


class ReplicationEngine:
    def __init__(
        self,
        name: str,
        kind: EntityKind,
        store,
        probe,
        transmitter,
        batch_size: int = 10,
        parent_batch_size: int = 10,
        limit_ceiling: int = FORCE_LIMIT_CEILING,
        slow_cycle_s: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.name = name
        self.kind = kind
        self.store = store
        self.probe = probe
        self.transmitter = transmitter
        self.batch_size = batch_size
        self.parent_batch_size = parent_batch_size
        self.limit_ceiling = limit_ceiling
        self.slow_cycle_s = slow_cycle_s
        self.clock = clock
        self.now = now

        self._lock = threading.Lock()
        self.state = "idle"
        self.is_syncing = False
        self.last_sync_time: Optional[datetime] = None
        self.consecutive_failures = 0
        self.last_result: Optional[CycleResult] = None

    def run_cycle(self, limit: Optional[int] = None) -> CycleResult:
        try:
            limit = validate_limit(self.batch_size if limit is None else limit, self.limit_ceiling)
        except InvalidLimitError as ex:
            json_log("warning", "sync.cycle.invalid", engine=self.name, limit=limit, error=str(ex))
            return CycleResult(status="invalid", success=False, message=str(ex))

        if not self._lock.acquire(blocking=False):
            json_log("info", "sync.cycle.skipped", engine=self.name)
            return CycleResult(status="skipped", success=False, message="sync already in progress")

        self.is_syncing = True
        started = self.clock()
        result: Optional[CycleResult] = None
        try:
            json_log("info", "sync.cycle.start", engine=self.name, limit=limit)
            try:
                result = self._run(limit)
            except Exception as ex:
                self.consecutive_failures += 1
                json_log("error", "sync.cycle.error", engine=self.name, error=str(ex))
                result = CycleResult(status="failed", success=False, message=str(ex) or "sync failed")
            return result
        finally:
            elapsed = self.clock() - started
            if result is not None:
                result.elapsed_s = round(elapsed, 3)
                self.last_result = result
            self.state = "idle"
            self.is_syncing = False
            self._lock.release()
            if elapsed > self.slow_cycle_s:
                json_log("warning", "sync.cycle.slow", engine=self.name, elapsed_s=round(elapsed, 3), threshold_s=self.slow_cycle_s)

    def _run(self, limit: int) -> CycleResult:
        self.state = "probing"
        if not self.probe.is_reachable():
            self.consecutive_failures += 1
            json_log("info", "sync.offline", engine=self.name, consecutive_failures=self.consecutive_failures)
            if self.consecutive_failures >= DEGRADED_AFTER_FAILURES:
                json_log("warning", "sync.offline.degraded", engine=self.name, consecutive_failures=self.consecutive_failures)
            return CycleResult(status="offline", success=False, message="remote unreachable; working offline")

        phases: list[PhaseResult] = []
        for kind in self.kind.phases():
            # Prerequisite kinds use the fixed internal batch size; only the root kind honors the caller's limit.
            phase_limit = limit if kind is self.kind else self.parent_batch_size
            phases.append(self._run_phase(kind, phase_limit))

        count = sum(p.sent for p in phases)
        remaining = self._remaining()
        failed = [p for p in phases if not p.ok]
        if len(failed) < len(phases):
            self.last_sync_time = self.now()
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1

        if not failed:
            status = "ok"
            if count:
                message = f"{count} record(s) synced. {remaining} pending."
            else:
                message = "No pending records."
        elif len(failed) < len(phases):
            status = "partial"
            message = f"{count} record(s) synced. " + "; ".join(f"{p.kind} failed: {p.error}" for p in failed)
        else:
            status = "failed"
            message = "; ".join(f"{p.kind} failed: {p.error}" for p in failed)

        json_log(
            "info" if not failed else "warning",
            "sync.cycle.done",
            engine=self.name,
            status=status,
            count=count,
            remaining=remaining,
        )
        return CycleResult(
            status=status,
            success=status != "failed",
            count=count,
            remaining=remaining,
            message=message,
            phases=[asdict(p) for p in phases],
        )

    def _run_phase(self, kind: EntityKind, limit: int) -> PhaseResult:
        res = PhaseResult(kind=kind.name)
        try:
            self.state = "selecting"
            batch = select_pending(self.store, kind, limit, ceiling=max(self.limit_ceiling, limit))
            res.selected = len(batch)
            if not batch:
                json_log("info", "sync.phase.empty", engine=self.name, kind=kind.name)
                return res

            self.state = "transmitting"
            sent = self.transmitter.send(kind, batch)
            res.attempts = sent.attempts

            self.state = "committing"
            committed = mark_sent(
                self.store,
                kind,
                [rec["id"] for rec in batch],
                nested_ids=transmitted_nested_ids(kind, batch),
            )
            res.sent = sent.transmitted_count
            json_log(
                "info",
                "sync.phase.sent",
                engine=self.name,
                kind=kind.name,
                count=res.sent,
                committed=committed.records,
                nested=committed.nested,
                attempts=res.attempts,
            )
        except TransmissionError as ex:
            res.ok = False
            res.error = str(ex)
            res.attempts = ex.attempts
            self._log_phase_error(kind, ex, status_code=ex.status_code, attempts=ex.attempts)
        except Exception as ex:
            # Local store failure: the batch commit is one transaction, so nothing was half-applied.
            res.ok = False
            res.error = str(ex) or ex.__class__.__name__
            self._log_phase_error(kind, ex)
        return res

    def _log_phase_error(self, kind: EntityKind, ex: Exception, **detail):
        fields = {"engine": self.name, "kind": kind.name, "error": str(ex)}
        if self.consecutive_failures < DETAILED_FAILURE_LOGS:
            fields.update({k: v for k, v in detail.items() if v is not None})
            fields["error_type"] = ex.__class__.__name__
        json_log("error", "sync.phase.error", **fields)

    def _remaining(self) -> Optional[int]:
        try:
            with self.store.transaction() as cur:
                return sum(self.store.count_by_status(cur, k, SYNC_PENDING) for k in self.kind.phases())
        except Exception as ex:
            json_log("warning", "sync.remaining.error", engine=self.name, error=str(ex))
            return None

    def stats(self) -> dict:
        kinds = {}
        with self.store.transaction() as cur:
            for k in self.kind.phases():
                kinds[k.name] = {
                    "pending": self.store.count_by_status(cur, k, SYNC_PENDING),
                    "synced": self.store.count_by_status(cur, k, SYNC_SENT),
                }
        return {
            "engine": self.name,
            "pending": sum(v["pending"] for v in kinds.values()),
            "synced": sum(v["synced"] for v in kinds.values()),
            "kinds": kinds,
            "online": self.probe.is_reachable(),
            "last_sync": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "is_syncing": self.is_syncing,
            "state": self.state,
            "consecutive_failures": self.consecutive_failures,
            "degraded": self.consecutive_failures >= DEGRADED_AFTER_FAILURES,
            "last_result": self.last_result.as_dict() if self.last_result else None,
        }
