"""Relaying of ffmpeg diagnostic output for rollrec."""

from __future__ import annotations

import logging
import threading
from typing import IO, Callable

READ_SIZE = 4096

_DELIMITERS = (ord("\r"), ord("\n"))


class LineSplitter:
    """Splits a byte stream into lines at either '\\r' or '\\n'.

    ffmpeg rewrites its progress line in place with carriage returns, so a
    plain newline scan would hold back every update until the next newline.
    Empty lines are dropped.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[str]:
        lines = []
        for byte in data:
            if byte in _DELIMITERS:
                if self._buffer:
                    lines.append(self._take())
                continue
            self._buffer.append(byte)
        return lines

    def flush(self) -> str | None:
        """Return the buffered partial line, if any."""
        if not self._buffer:
            return None
        return self._take()

    def _take(self) -> str:
        line = self._buffer.decode("utf-8", errors="replace")
        self._buffer.clear()
        return line


class StreamRelay:
    """Forwards ffmpeg stderr, line by line, to the log on a background thread."""

    def __init__(
        self,
        stream: IO[bytes],
        on_line: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.stream = stream
        self.done = threading.Event()
        self.logger = logger or logging.getLogger("rollrec.ffmpeg")
        self._on_line = on_line
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="stream-relay", daemon=True)
        self._thread.start()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait until the stream has been drained. Returns False on timeout."""
        return self.done.wait(timeout)

    def run(self) -> None:
        splitter = LineSplitter()
        try:
            read = getattr(self.stream, "read1", None) or self.stream.read
            while True:
                try:
                    chunk = read(READ_SIZE)
                except (OSError, ValueError) as e:
                    self.logger.error("Error reading ffmpeg output: %s", e)
                    break
                if not chunk:
                    break
                for line in splitter.feed(chunk):
                    self._emit(line)

            rest = splitter.flush()
            if rest is not None:
                self._emit(rest)
        finally:
            self.done.set()

    def _emit(self, line: str) -> None:
        self.logger.info("%s", line)
        if self._on_line is not None:
            self._on_line(line)
