"""
Bulk transmission of one batch to the remote authority.

One POST per kind per phase, JSON array body. A 2xx with an empty or JSON body is
the only acceptance. Any other outcome (non-2xx status, network error, timeout,
dropped connection, malformed 2xx body) is retried with exponential backoff
before surfacing as a TransmissionError. A missing remote URL is the one failure
that is not retried. Local state is never touched here.
"""

import http.client
import json
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Callable, Optional

from ..app.logs import json_log
from .kinds import EntityKind

MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0


class TransmissionError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, attempts: int = 0, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts
        self.retryable = retryable


@dataclass
class SendResult:
    accepted: bool
    transmitted_count: int
    attempts: int
    status_code: Optional[int] = None


class Transmitter:
    def __init__(
        self,
        base_url: str,
        timeout_s: float = 30.0,
        max_retries: int = MAX_RETRIES,
        initial_retry_delay_s: float = INITIAL_RETRY_DELAY,
        headers: Optional[dict] = None,
        opener: Callable = urllib.request.urlopen,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max(0, int(max_retries))
        self.initial_retry_delay_s = float(initial_retry_delay_s)
        self.headers = {k: v for k, v in (headers or {}).items() if v}
        self.opener = opener
        self.sleep = sleep

    def retry_delay(self, attempt: int) -> float:
        """Delay after failed attempt `attempt` (1-based): 1, 2, 4, ... times the initial delay."""
        return self.initial_retry_delay_s * (2 ** (attempt - 1))

    def _post_once(self, url: str, data: bytes):
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json", **self.headers},
            method="POST",
        )
        try:
            with self.opener(req, timeout=self.timeout_s) as resp:
                status = getattr(resp, "status", None) or resp.getcode()
                raw = resp.read() if resp else b""
        except urllib.error.HTTPError as ex:
            # Remote answered with a non-2xx status. Capture the body if possible.
            try:
                body = ex.read().decode("utf-8")
            except Exception:
                body = ""
            msg = f"http {ex.code} {getattr(ex, 'reason', '') or ''}".strip()
            if body:
                msg = f"{msg}: {body[:1000]}"
            raise TransmissionError(msg, status_code=ex.code) from ex
        except (urllib.error.URLError, http.client.HTTPException, TimeoutError, OSError) as ex:
            raise TransmissionError(f"network error: {getattr(ex, 'reason', None) or ex}") from ex

        if status is None or not (200 <= int(status) < 300):
            raise TransmissionError(f"unexpected status: {status}", status_code=status)
        text = (raw or b"").decode("utf-8", errors="replace").strip()
        if not text:
            return status
        try:
            json.loads(text)
        except ValueError as ex:
            raise TransmissionError(f"malformed response body (http {status})", status_code=status) from ex
        return status

    def send(self, kind: EntityKind, batch: list[dict]) -> SendResult:
        if not batch:
            return SendResult(accepted=True, transmitted_count=0, attempts=0)
        if not self.base_url:
            raise TransmissionError("remote api url not configured", retryable=False)

        payload = [kind.serialize(rec) for rec in batch]
        data = json.dumps(payload, default=str).encode("utf-8")
        url = f"{self.base_url}{kind.endpoint}"

        attempt = 0
        while True:
            attempt += 1
            try:
                status = self._post_once(url, data)
                return SendResult(accepted=True, transmitted_count=len(batch), attempts=attempt, status_code=status)
            except TransmissionError as ex:
                ex.attempts = attempt
                if not ex.retryable or attempt > self.max_retries:
                    raise
                delay = self.retry_delay(attempt)
                json_log(
                    "warning",
                    "sync.send.retry",
                    kind=kind.name,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    delay_s=delay,
                    error=str(ex),
                )
                self.sleep(delay)
