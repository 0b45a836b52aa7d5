from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class AuditLogger:
    """
    JSON line audit logger.

    Each call appends one JSON object per line.
    Values that json cannot encode natively, such as UUIDs, are written as strings.
    """

    path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def log(self, event: dict[str, Any]) -> None:
        payload = dict(event)
        payload["ts_unix"] = int(time.time())
        line = json.dumps(payload, sort_keys=True, default=str)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
