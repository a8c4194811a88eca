"""Type definitions for rollrec."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Protocol


class Codec(str, Enum):
    """Video codec family."""

    H264 = "h264"
    HEVC = "hevc"


class Preset(str, Enum):
    """Encoder presets, fastest/lowest quality first."""

    ULTRAFAST = "ultrafast"
    SUPERFAST = "superfast"
    VERYFAST = "veryfast"
    FASTER = "faster"
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"
    SLOWER = "slower"


class Vendor(str, Enum):
    """GPU vendor classes with a hardware encoder ffmpeg knows about."""

    NVIDIA = "nvidia"
    INTEL = "intel"
    AMD = "amd"


class SupervisorState(str, Enum):
    """Lifecycle states of the session supervisor."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    ENDED = "ended"


@dataclass(frozen=True)
class RecorderConfig:
    """Configuration for a recording session. Built once at startup."""

    outdir: Path
    max_size_bytes: int
    fps: int
    bitrate_kbps: int
    preset: Preset
    codec: Codec
    ffmpeg_bin: Path
    display: str | None = None


@dataclass(frozen=True)
class Target:
    """A capture target (display, screen device or window)."""

    id: str
    name: str
    recommended: bool = False


@dataclass(frozen=True)
class LaunchSpec:
    """Everything needed to spawn one ffmpeg capture process."""

    argv: tuple[str, ...]
    encoder: str
    target: str
    gop_size: int
    bitrate: str
    maxrate: str
    bufsize: str

    @property
    def output_path(self) -> Path:
        return Path(self.argv[-1])


class ProcessProtocol(Protocol):
    """Protocol for subprocess-like objects."""

    stdin: IO[bytes] | None
    stderr: IO[bytes] | None

    def poll(self) -> int | None:
        """Return the exit code if the process has exited, else None."""
        ...

    def wait(self, timeout: float | None = None) -> int:
        """Wait for process to complete and return exit code."""
        ...

    def kill(self) -> None:
        """Kill the process."""
        ...

    @property
    def returncode(self) -> int | None:
        """Return code of the process, None if still running."""
        ...
