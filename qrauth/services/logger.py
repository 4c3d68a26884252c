import csv
import os
import threading
import time
from qrauth.core.config import settings

HEADER = ["timestamp", "event_type", "session_id", "outcome", "latency_ms"]
_write_lock = threading.Lock()


def log_event(event_type: str, session_id: str, outcome: str, latency_ms: int = 0, path: str | None = None):
    """Appends one row to the CSV event log. No-op when no log file is configured."""
    path = path if path is not None else settings.EVENT_LOG_FILE
    if not path:
        return

    with _write_lock:
        new_file = not os.path.exists(path)
        with open(path, "a", newline="") as f:
            writer = csv.writer(f)
            if new_file:
                writer.writerow(HEADER)
            writer.writerow([time.time(), event_type, session_id, outcome, latency_ms])
