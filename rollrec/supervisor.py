"""Recording session supervision for rollrec."""

from __future__ import annotations

import logging
import queue
import signal
import subprocess
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from subprocess import PIPE
from typing import TYPE_CHECKING, Any, Callable

from .command import build_launch_spec
from .detect import choose_encoder
from .log import close_attempt_log, format_elapsed_time, log_command, log_process_result, open_attempt_log
from .monitor import CHECK_INTERVAL, SizeMonitor
from .paths import AttemptPaths, build_attempt_paths, ensure_output_dir, format_file_size
from .relay import StreamRelay
from .types import SupervisorState

if TYPE_CHECKING:
    from pathlib import Path

    from .detect import CapabilityProber
    from .types import LaunchSpec, ProcessProtocol, RecorderConfig

logger = logging.getLogger("rollrec.supervisor")

# Seconds ffmpeg gets to finalize the file before a warning is logged
GRACEFUL_TIMEOUT = 10.0
# Pause before replacing an ffmpeg that exited on its own
RESTART_DELAY = 1.0
# Granularity of the supervisor's wait loop
WAIT_POLL = 0.25
HISTORY_LIMIT = 100

# ffmpeg's 'q' keypress: finish writing the container and exit
STOP_COMMAND = b"q\n"

# ffmpeg returns these on normal completion or after a commanded stop
EXPECTED_EXIT_CODES = frozenset({0, 1, 255})

_TRANSITIONS = {
    SupervisorState.IDLE: {SupervisorState.STARTING, SupervisorState.ENDED},
    SupervisorState.STARTING: {SupervisorState.RUNNING, SupervisorState.ENDED},
    SupervisorState.RUNNING: {SupervisorState.SHUTTING_DOWN},
    SupervisorState.SHUTTING_DOWN: {SupervisorState.ENDED},
    SupervisorState.ENDED: {SupervisorState.STARTING},
}


class AttemptSetupError(Exception):
    """Raised when a recording attempt cannot be started."""


class Trigger(str, Enum):
    """Why a recording attempt ended."""

    SIZE_LIMIT = "size_limit"
    STOP = "stop"
    EXITED = "exited"


class SessionStatus(str, Enum):
    """Terminal status of a recording session."""

    STOPPED = "stopped"
    SETUP_FAILED = "setup_failed"


def is_expected_exit_code(code: int) -> bool:
    """Return True if an ffmpeg exit code is a normal termination outcome."""
    return code in EXPECTED_EXIT_CODES


@dataclass(frozen=True)
class AttemptRecord:
    """Audit entry for a finished recording attempt."""

    index: int
    started_at: datetime
    video: Path
    log: Path
    exit_code: int | None
    trigger: Trigger | None


@dataclass(eq=False)
class Attempt:
    """One ffmpeg capture process and the resources it owns."""

    index: int
    started_at: datetime
    paths: AttemptPaths
    state: SupervisorState = SupervisorState.STARTING
    process: ProcessProtocol | None = None
    launch: LaunchSpec | None = None
    log_handler: logging.Handler | None = None
    monitor: SizeMonitor | None = None
    relay: StreamRelay | None = None
    events: queue.Queue[Trigger] = field(default_factory=queue.Queue)
    exit_code: int | None = None
    trigger: Trigger | None = None
    started_monotonic: float = field(default_factory=time.monotonic)

    def record(self) -> AttemptRecord:
        return AttemptRecord(
            index=self.index,
            started_at=self.started_at,
            video=self.paths.video,
            log=self.paths.log,
            exit_code=self.exit_code,
            trigger=self.trigger,
        )


@dataclass(frozen=True)
class SessionResult:
    """Outcome of SessionSupervisor.run()."""

    status: SessionStatus
    attempts: int
    history: tuple[AttemptRecord, ...]


class SessionSupervisor:
    """Runs ffmpeg attempts back to back until the operator stops the session.

    An attempt ends when its output reaches the size limit, when ffmpeg exits
    on its own, or when a stop is requested. Size-limit and self-exit start a
    new attempt; a stop ends the session. ffmpeg is only ever asked to quit
    through its stdin and is never killed, so the output file is finalized.
    """

    def __init__(
        self,
        config: RecorderConfig,
        prober: CapabilityProber,
        *,
        spawn: Callable[..., ProcessProtocol] = subprocess.Popen,
        clock: Callable[[], datetime] = datetime.now,
        grace_period: float = GRACEFUL_TIMEOUT,
        check_interval: float = CHECK_INTERVAL,
        restart_delay: float = RESTART_DELAY,
        wait_poll: float = WAIT_POLL,
        on_line: Callable[[str], None] | None = None,
        handle_signals: bool = True,
    ) -> None:
        self.config = config
        self.prober = prober
        self.grace_period = grace_period
        self.check_interval = check_interval
        self.restart_delay = restart_delay
        self.wait_poll = wait_poll

        self._spawn = spawn
        self._clock = clock
        self._on_line = on_line
        self._handle_signals = handle_signals

        self._state = SupervisorState.IDLE
        self._attempt: Attempt | None = None
        self._attempts_started = 0
        self._history: deque[AttemptRecord] = deque(maxlen=HISTORY_LIMIT)
        self._stop_requested = False

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def history(self) -> tuple[AttemptRecord, ...]:
        return tuple(self._history)

    def request_stop(self, reason: str = "stop request") -> None:
        """Ask the session to end. Only the first request has any effect."""
        if self._stop_requested:
            logger.debug("Ignoring %s, shutdown already in progress", reason)
            return
        self._stop_requested = True
        logger.info("Received %s, stopping recording...", reason)

    def run(self) -> SessionResult:
        """Record until stopped. Blocks the calling thread."""
        previous = self._install_signal_handlers()
        try:
            status = self._run()
        finally:
            self._restore_signal_handlers(previous)

        return SessionResult(
            status=status,
            attempts=self._attempts_started,
            history=self.history,
        )

    def launch_spec_for(self, output_path: Path) -> LaunchSpec:
        """Probe the host and build the ffmpeg command for an output file."""
        accelerators = self.prober.detect_accelerators()
        encoder = choose_encoder(self.config.codec, self.prober.platform, accelerators)
        target = self.config.display or self.prober.default_target()
        if accelerators:
            logger.info(
                "Detected GPU(s): %s",
                ", ".join(sorted(vendor.value for vendor in accelerators)),
            )
        logger.info("Selected encoder %s for target %s", encoder, target)

        spec = build_launch_spec(
            self.config.ffmpeg_bin,
            encoder,
            target,
            self.config,
            output_path,
            self.prober.platform,
        )
        logger.debug(
            "GOP size %d, bitrate %s, maxrate %s, bufsize %s",
            spec.gop_size,
            spec.bitrate,
            spec.maxrate,
            spec.bufsize,
        )
        return spec

    def _run(self) -> SessionStatus:
        while True:
            if self._stop_requested:
                if self._state is SupervisorState.IDLE:
                    self._transition(SupervisorState.ENDED)
                logger.info("Recording complete")
                return SessionStatus.STOPPED

            attempt = self._start_attempt()
            if attempt is None:
                return SessionStatus.SETUP_FAILED

            trigger = self._await_trigger(attempt)
            self._shutdown(attempt, trigger)

            if trigger is Trigger.EXITED:
                self._pause(self.restart_delay)

    def _start_attempt(self) -> Attempt | None:
        self._transition(SupervisorState.STARTING)
        attempt: Attempt | None = None
        try:
            attempt = self._prepare_attempt()
            self._launch(attempt)
        except AttemptSetupError as e:
            logger.error("%s", e)
            if attempt is not None and attempt.log_handler is not None:
                close_attempt_log(attempt.log_handler)
            self._attempt = None
            self._transition(SupervisorState.ENDED)
            return None

        self._transition(SupervisorState.RUNNING)
        return attempt

    def _prepare_attempt(self) -> Attempt:
        outdir = self.config.outdir
        try:
            ensure_output_dir(outdir)
        except OSError as e:
            raise AttemptSetupError(f"Error creating output directory {outdir}: {e}") from e

        now = self._clock()
        attempt = Attempt(
            index=self._attempts_started + 1,
            started_at=now,
            paths=build_attempt_paths(outdir, now),
        )
        paths = attempt.paths
        self._attempt = attempt

        try:
            attempt.log_handler = open_attempt_log(paths.log)
        except OSError as e:
            raise AttemptSetupError(f"Could not create log file {paths.log}: {e}") from e

        logger.info("Starting screen recording to %s", paths.video)
        logger.info(
            "Recording settings: fps=%d bitrate=%d kbit/s max size=%s codec=%s preset=%s",
            self.config.fps,
            self.config.bitrate_kbps,
            format_file_size(self.config.max_size_bytes),
            self.config.codec.value,
            self.config.preset.value,
        )
        return attempt

    def _launch(self, attempt: Attempt) -> None:
        attempt.launch = self.launch_spec_for(attempt.paths.video)
        log_command(logger, attempt.launch.argv)

        kwargs: dict[str, Any] = {"stdin": PIPE, "stderr": PIPE, "stdout": None}
        # Keep the terminal's Ctrl+C away from ffmpeg; it is stopped through stdin
        if sys.platform.startswith("win"):
            kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            kwargs["start_new_session"] = True

        try:
            process = self._spawn(list(attempt.launch.argv), **kwargs)
        except OSError as e:
            raise AttemptSetupError(f"Failed to start ffmpeg: {e}") from e

        if process.stdin is None or process.stderr is None:
            process.kill()
            process.wait()
            raise AttemptSetupError("Failed to open pipes to ffmpeg")

        attempt.process = process
        self._attempts_started += 1

        events = attempt.events
        attempt.monitor = SizeMonitor(
            attempt.launch.output_path,
            self.config.max_size_bytes,
            on_limit=lambda: events.put(Trigger.SIZE_LIMIT),
            interval=self.check_interval,
        )
        attempt.relay = StreamRelay(process.stderr, on_line=self._on_line)
        attempt.relay.start()
        attempt.monitor.start()

    def _await_trigger(self, attempt: Attempt) -> Trigger:
        """Wait for the first of: stop request, ffmpeg exit, size limit."""
        assert attempt.process is not None
        while True:
            if self._stop_requested:
                return Trigger.STOP
            if attempt.process.poll() is not None:
                return Trigger.EXITED
            try:
                return attempt.events.get(timeout=self.wait_poll)
            except queue.Empty:
                continue

    def _shutdown(self, attempt: Attempt, trigger: Trigger) -> None:
        assert attempt.process is not None
        self._transition(SupervisorState.SHUTTING_DOWN)
        attempt.trigger = trigger

        if trigger is Trigger.EXITED:
            logger.warning("ffmpeg exited on its own, starting a new recording")
            code = attempt.process.wait()
        elif attempt.process.poll() is not None:
            code = attempt.process.wait()
        else:
            self._send_stop_command(attempt)
            code = self._wait_for_exit(attempt)

        self._teardown(attempt, code)

    def _send_stop_command(self, attempt: Attempt) -> None:
        assert attempt.process is not None and attempt.process.stdin is not None
        logger.info("Sending 'q' command to ffmpeg for graceful shutdown")
        try:
            attempt.process.stdin.write(STOP_COMMAND)
            attempt.process.stdin.flush()
        except OSError as e:
            logger.error("Failed to send 'q' command: %s", e)
        logger.info("Waiting for ffmpeg to finalize the video file...")

    def _wait_for_exit(self, attempt: Attempt) -> int:
        assert attempt.process is not None
        try:
            code = attempt.process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            # Killing ffmpeg would leave the file unfinalized, so keep waiting
            logger.warning("Graceful shutdown timed out after %g seconds", self.grace_period)
            logger.info("Still waiting for ffmpeg to finish writing %s", attempt.paths.video)
            return attempt.process.wait()

        logger.info("ffmpeg terminated gracefully")
        return code

    def _teardown(self, attempt: Attempt, code: int) -> None:
        assert attempt.process is not None
        attempt.exit_code = code
        log_process_result(logger, "ffmpeg", code, expected=is_expected_exit_code(code))

        if attempt.monitor is not None:
            attempt.monitor.stop()
            attempt.monitor.join()
        if attempt.relay is not None:
            attempt.relay.wait()

        for stream in (attempt.process.stdin, attempt.process.stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError as e:
                logger.debug("Error closing ffmpeg pipe: %s", e)

        elapsed = int(time.monotonic() - attempt.started_monotonic)
        logger.info(
            "Recording %d ended after %s (%s)",
            attempt.index,
            format_elapsed_time(elapsed),
            attempt.trigger.value if attempt.trigger else "unknown",
        )
        self._transition(SupervisorState.ENDED)
        self._history.append(attempt.record())

        if attempt.log_handler is not None:
            close_attempt_log(attempt.log_handler)
            attempt.log_handler = None
        self._attempt = None

    def _pause(self, seconds: float) -> None:
        """Sleep, returning early if a stop is requested."""
        deadline = time.monotonic() + seconds
        while not self._stop_requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(remaining, self.wait_poll))

    def _transition(self, new: SupervisorState) -> None:
        if new not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal supervisor transition {self._state.value} -> {new.value}")
        logger.debug("Supervisor state %s -> %s", self._state.value, new.value)
        self._state = new
        if self._attempt is not None:
            self._attempt.state = new

    def _install_signal_handlers(self) -> dict[int, Any]:
        if not self._handle_signals or threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, self._signal_handler)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: dict[int, Any]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def _signal_handler(self, signum: int, _frame: Any) -> None:
        """Handle SIGINT/SIGTERM for graceful shutdown."""
        self.request_stop(f"signal {signal.Signals(signum).name}")
