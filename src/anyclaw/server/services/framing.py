"""Newline-delimited JSON framing for the app-server stdio transport."""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

MAX_LINE_BYTES = 50 * 1024 * 1024
_PREVIEW_CHARS = 200


def encode_message(message: dict[str, Any]) -> bytes:
    """Serialize one JSON-RPC message as a compact UTF-8 line."""
    return (json.dumps(message, separators=(",", ":")) + "\n").encode("utf-8")


class LineFramer:
    """Splits a raw byte stream into JSON objects, one per line.

    Lines that are not valid JSON objects are logged and dropped so that a
    single bad line never takes down the reader.
    """

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES):
        self.max_line_bytes = max_line_bytes
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        """Append a chunk and return every complete message it finished."""
        self._buffer.extend(chunk)
        messages: list[dict[str, Any]] = []

        while True:
            newline_index = self._buffer.find(b"\n")
            if newline_index == -1:
                break
            line = bytes(self._buffer[:newline_index])
            del self._buffer[: newline_index + 1]
            message = self._parse_line(line)
            if message is not None:
                messages.append(message)

        if len(self._buffer) > self.max_line_bytes:
            logger.warning(
                "Dropping %d buffered bytes without a line break (limit %d)",
                len(self._buffer),
                self.max_line_bytes,
            )
            self._buffer.clear()

        return messages

    def flush(self) -> list[dict[str, Any]]:
        """Parse whatever is left in the buffer as a final line (stream EOF)."""
        if not self._buffer:
            return []
        line = bytes(self._buffer)
        self._buffer.clear()
        message = self._parse_line(line)
        return [message] if message is not None else []

    def reset(self) -> None:
        """Discard any partially received line."""
        self._buffer.clear()

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def _parse_line(self, line: bytes) -> dict[str, Any] | None:
        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Dropping malformed JSON line: %s", text[:_PREVIEW_CHARS])
            return None
        if not isinstance(message, dict):
            logger.warning("Dropping non-object JSON line: %s", text[:_PREVIEW_CHARS])
            return None
        return message
