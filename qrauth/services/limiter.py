import threading
import time
from fastapi import HTTPException, Request
from qrauth.core.config import settings


class RateLimiter:
    def __init__(self, window_seconds: int = 60):
        """
        Sliding-window limiter on session creation, keyed by client IP
        """
        self.window_seconds = window_seconds
        self._requests: dict[str, list[float]] = {}  # IP -> [timestamp1, timestamp2...]
        self._lock = threading.Lock()

    def check(self, request: Request):
        """
        Raises 429 once a client IP exceeds MAX_REQUESTS_PER_MINUTE
        """
        if not settings.RATE_LIMIT_ENABLED:
            return

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()

        with self._lock:
            # Filter out requests older than the window
            recent = [t for t in self._requests.get(client_ip, []) if now - t < self.window_seconds]

            if len(recent) >= settings.MAX_REQUESTS_PER_MINUTE:
                self._requests[client_ip] = recent
                raise HTTPException(status_code=429, detail="Too many login attempts. Please wait.")

            recent.append(now)
            self._requests[client_ip] = recent

    def reset(self):
        with self._lock:
            self._requests.clear()


limiter = RateLimiter()
