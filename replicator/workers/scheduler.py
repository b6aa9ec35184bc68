import threading
from typing import Optional

from ..app.logs import json_log


class SyncScheduler:
    """
    Drives one ReplicationEngine: once after a short startup grace delay, then every
    `interval_s`. The loop runs on a daemon thread and waits on a stop event, so
    stop() wakes it immediately and returns once any in-flight cycle has finished.
    """

    def __init__(self, engine, interval_s: float, grace_s: float = 10.0):
        self.engine = engine
        self.interval_s = max(0.01, float(interval_s))
        self.grace_s = max(0.0, float(grace_s))
        self._stop: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._guard = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _tick(self):
        try:
            self.engine.run_cycle()
        except Exception as ex:
            # run_cycle reports failures as results; this only guards the loop itself.
            json_log("error", "sync.scheduler.tick_error", engine=self.engine.name, error=str(ex))

    def _loop(self, stop: threading.Event):
        # Each loop owns its stop event, so a loop abandoned by a timed-out stop()
        # exits after its in-flight cycle even if start() is called again meanwhile.
        if stop.wait(self.grace_s):
            return
        self._tick()
        while not stop.wait(self.interval_s):
            self._tick()

    def start(self) -> bool:
        with self._guard:
            if self.running:
                json_log("warning", "sync.scheduler.already_running", engine=self.engine.name)
                return False
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self._loop, args=(self._stop,), name=f"sync-{self.engine.name}", daemon=True
            )
            self._thread.start()
        json_log(
            "info",
            "sync.scheduler.started",
            engine=self.engine.name,
            interval_s=self.interval_s,
            grace_s=self.grace_s,
        )
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._guard:
            thread, stop = self._thread, self._stop
            self._thread, self._stop = None, None
            if stop is not None:
                stop.set()
        if thread is None:
            return
        thread.join(timeout)
        if thread.is_alive():
            json_log("warning", "sync.scheduler.stop_timeout", engine=self.engine.name, timeout_s=timeout)
            return
        json_log("info", "sync.scheduler.stopped", engine=self.engine.name)

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def force_now(self, limit: Optional[int] = None) -> dict:
        json_log("info", "sync.force", engine=self.engine.name, limit=limit)
        res = self.engine.run_cycle(limit)
        return {
            "success": res.success,
            "status": res.status,
            "count": res.count,
            "remaining": res.remaining,
            "message": res.message,
            "phases": res.phases,
        }

    def stats(self) -> dict:
        out = self.engine.stats()
        out["loop_running"] = self.running
        out["interval_s"] = self.interval_s
        return out
