"""Incremental decoder for newline-delimited JSON on a byte stream."""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

#: Characters of a rejected line included in the log message.
_LOG_PREVIEW_CHARS = 200


class JsonlDecoder:
    """Reassembles byte chunks into lines and parses each as one JSON object.

    Chunk boundaries may fall anywhere, including inside a multi-byte UTF-8
    sequence.  Lines that are not valid JSON objects are dropped.
    """

    def __init__(self, label: str = "stdout") -> None:
        self._label = label
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Partial line retained for the next chunk."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        """Consume *chunk* and return every event completed by it."""
        self._buffer += self._text.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        events: list[dict[str, Any]] = []
        for line in lines:
            event = self._parse(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[dict[str, Any]]:
        """Give the buffered partial line one final parse attempt."""
        self._buffer += self._text.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        event = self._parse(line)
        return [event] if event is not None else []

    def _parse(self, line: str) -> dict[str, Any] | None:
        line = line.strip()
        if not line:
            return None
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.warning(
                "malformed JSON on %s: %s", self._label, line[:_LOG_PREVIEW_CHARS]
            )
            return None
        if not isinstance(event, dict):
            logger.warning(
                "non-object JSON on %s: %s", self._label, line[:_LOG_PREVIEW_CHARS]
            )
            return None
        return event
