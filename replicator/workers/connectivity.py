import urllib.error
import urllib.request
from typing import Callable, Optional

PROBE_TIMEOUT = 2.0


class ConnectivityProbe:
    """
    Cheap reachability check against the remote authority.

    GET /health with a short timeout; any answer below 500 means the server is
    there. If that fails, one HEAD against a known API path must succeed
    (2xx/3xx) before the remote counts as reachable. Never raises.
    """

    def __init__(
        self,
        base_url: str,
        fallback_path: Optional[str] = None,
        timeout_s: float = PROBE_TIMEOUT,
        opener: Callable = urllib.request.urlopen,
    ):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.fallback_path = fallback_path
        self.timeout_s = max(0.2, float(timeout_s or PROBE_TIMEOUT))
        self.opener = opener

    def _status(self, url: str, method: str) -> Optional[int]:
        req = urllib.request.Request(url, method=method)
        try:
            with self.opener(req, timeout=self.timeout_s) as resp:
                return getattr(resp, "status", None) or resp.getcode()
        except urllib.error.HTTPError as ex:
            return ex.code
        except Exception:
            return None

    def is_reachable(self) -> bool:
        if not self.base_url:
            return False
        status = self._status(f"{self.base_url}/health", "GET")
        if status is not None and status < 500:
            return True
        if not self.fallback_path:
            return False
        status = self._status(f"{self.base_url}{self.fallback_path}", "HEAD")
        return status is not None and 200 <= status < 400
