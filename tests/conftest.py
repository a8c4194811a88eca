"""Shared fixtures and fakes for rollrec tests."""

from __future__ import annotations

import io
import itertools
import logging
import subprocess
import threading
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from rollrec.detect import CapabilityProber
from rollrec.supervisor import SessionSupervisor
from rollrec.types import Codec, Preset, RecorderConfig, Target, Vendor


class FakeStdin:
    """Records what the supervisor writes to ffmpeg's stdin."""

    def __init__(self, process: FakeProcess) -> None:
        self.process = process
        self.writes: list[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> int:
        if self.process.broken_pipe:
            raise BrokenPipeError("ffmpeg is gone")
        self.writes.append(data)
        self.process.on_stop_command()
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Stand-in for subprocess.Popen running ffmpeg.

    By default it exits with 255 as soon as it receives 'q' on stdin, like
    ffmpeg does after finalizing the output file.
    """

    def __init__(
        self,
        args: list[str],
        *,
        stderr: bytes = b"",
        exit_code: int = 255,
        exit_delay: float = 0.0,
        exits_on_quit: bool = True,
        exit_immediately: bool = False,
        broken_pipe: bool = False,
        exit_after: float | None = None,
        on_quit=None,
    ) -> None:
        self.args = args
        self.stdin = FakeStdin(self)
        self.stderr = io.BytesIO(stderr)
        self.exit_code = exit_code
        self.exit_delay = exit_delay
        self.exits_on_quit = exits_on_quit
        self.broken_pipe = broken_pipe
        self.returncode: int | None = None
        self.signals: list[str] = []
        self.wait_timeouts: list[float | None] = []
        self._on_quit = on_quit
        self._exited = threading.Event()
        if exit_immediately:
            self._exit()
        elif exit_after is not None:
            threading.Timer(exit_after, self._exit).start()

    def on_stop_command(self) -> None:
        if self._on_quit is not None:
            self._on_quit()
        if not self.exits_on_quit:
            return
        if self.exit_delay:
            threading.Timer(self.exit_delay, self._exit).start()
        else:
            self._exit()

    def _exit(self) -> None:
        if not self._exited.is_set():
            self.returncode = self.exit_code
            self._exited.set()

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int:
        self.wait_timeouts.append(timeout)
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        assert self.returncode is not None
        return self.returncode

    def kill(self) -> None:
        self.signals.append("kill")
        self._exit()

    def terminate(self) -> None:
        self.signals.append("terminate")
        self._exit()

    def send_signal(self, sig: int) -> None:
        self.signals.append(f"signal {sig}")


class FakeSpawner:
    """Callable replacing subprocess.Popen; builds processes with a factory."""

    def __init__(self, factory) -> None:
        self.factory = factory
        self.calls: list[tuple[list[str], dict]] = []
        self.processes: list[FakeProcess] = []

    def __call__(self, argv: list[str], **kwargs) -> FakeProcess:
        self.calls.append((argv, kwargs))
        process = self.factory(len(self.processes), argv)
        self.processes.append(process)
        return process


class FakeProber(CapabilityProber):
    platform = "linux"

    def __init__(self, accelerators: frozenset[Vendor] = frozenset()) -> None:
        super().__init__(Path("ffmpeg"), Path("."))
        self.accelerators = accelerators

    def list_targets(self) -> list[Target]:
        return [Target(":0.0", "Primary display", recommended=True)]

    def detect_accelerators(self) -> frozenset[Vendor]:
        return self.accelerators

    def default_target(self) -> str:
        return ":0.0"


def make_config(outdir: Path, **overrides) -> RecorderConfig:
    values = {
        "outdir": outdir,
        "max_size_bytes": 10,
        "fps": 5,
        "bitrate_kbps": 700,
        "preset": Preset.MEDIUM,
        "codec": Codec.HEVC,
        "ffmpeg_bin": Path("/usr/bin/ffmpeg"),
    }
    values.update(overrides)
    return RecorderConfig(**values)


def make_clock():
    """Clock that advances one second per call so attempt names never collide."""
    start = datetime(2026, 1, 1, 12, 0, 0)
    counter = itertools.count()
    return lambda: start + timedelta(seconds=next(counter))


@pytest.fixture
def config(tmp_path: Path) -> RecorderConfig:
    return make_config(tmp_path / "output")


@pytest.fixture
def make_supervisor():
    def _make(config: RecorderConfig, spawner: FakeSpawner, **kwargs) -> SessionSupervisor:
        options = {
            "spawn": spawner,
            "clock": make_clock(),
            "grace_period": 1.0,
            "check_interval": 0.01,
            "restart_delay": 0.0,
            "wait_poll": 0.01,
            "handle_signals": False,
        }
        options.update(kwargs)
        return SessionSupervisor(config, FakeProber(), **options)

    return _make


@pytest.fixture(autouse=True)
def reset_rollrec_logger():
    """Undo handler and propagation changes made by setup_logging."""
    yield
    logger = logging.getLogger("rollrec")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
