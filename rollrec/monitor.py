"""Output file size monitoring for rollrec."""

from __future__ import annotations

import logging
import os
import threading
from typing import TYPE_CHECKING, Callable

from .paths import format_file_size

if TYPE_CHECKING:
    from pathlib import Path

# Check interval in seconds
CHECK_INTERVAL = 5.0


class SizeMonitor:
    """Polls an attempt's output file and fires once when it reaches the limit.

    The callback runs on the monitor thread at most once. The monitor exits
    after firing or when stop() is called, whichever comes first.
    """

    def __init__(
        self,
        path: Path,
        max_size_bytes: int,
        on_limit: Callable[[], None],
        interval: float = CHECK_INTERVAL,
    ) -> None:
        self.path = path
        self.max_size_bytes = max_size_bytes
        self.interval = interval
        self._on_limit = on_limit
        self._stop = threading.Event()
        self._fired = False
        self._thread: threading.Thread | None = None
        self.logger = logging.getLogger("rollrec.monitor")

    @property
    def fired(self) -> bool:
        return self._fired

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="size-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def check_once(self) -> bool:
        """Check the file size once. Returns True if the limit has been reached."""
        try:
            size = os.stat(self.path).st_size
        except OSError as e:
            self.logger.warning("Could not check file size: %s", e)
            return False

        if size < self.max_size_bytes:
            return False

        self.logger.info(
            "File %s exceeded size limit of %s (current size: %s), "
            "gracefully stopping and starting new recording",
            self.path,
            format_file_size(self.max_size_bytes),
            format_file_size(size),
        )
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            if self.check_once():
                self._fired = True
                self._on_limit()
                return
