"""Notification recorder — append-only JSONL log of one run's notifications."""

from __future__ import annotations

import json
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from tether.notifications import Notification


class NotificationRecorder:
    """Appends every notification it receives to a JSONL file.

    Usable directly as a notification sink.  Thread-safe: writes are
    serialized through a ``threading.Lock``.  Crash-safe: the file is
    flushed after every line.
    """

    def __init__(self, records_dir: Path, conversation_id: str) -> None:
        records_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._seq = 0
        self._closed = False

        date_str = datetime.now(tz=UTC).strftime("%Y-%m-%d")
        run_id = uuid.uuid4().hex[:12]
        self._path = records_dir / f"{date_str}_{conversation_id}_{run_id}.jsonl"
        self._fh: IO[str] | None = self._path.open("a", encoding="utf-8")

    @property
    def path(self) -> Path:
        return self._path

    @property
    def count(self) -> int:
        """Number of notifications recorded so far."""
        return self._seq

    def __call__(self, notification: Notification) -> None:
        self.record(notification)

    def record(self, notification: Notification) -> None:
        """Write *notification* stamped with ``ts`` and ``seq``.

        Silently drops notifications after the recorder has been closed.
        """
        with self._lock:
            if self._closed or self._fh is None:
                return
            payload = {
                "ts": _iso_now(),
                "seq": self._seq,
                **notification.model_dump(mode="json", by_alias=True),
            }
            self._seq += 1
            self._fh.write(json.dumps(payload) + "\n")
            self._fh.flush()

    def close(self) -> None:
        """Close the file.  Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._fh is not None:
                self._fh.close()
                self._fh = None


def _iso_now() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds")
