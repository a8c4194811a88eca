"""Binary detection and capability probing for rollrec."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from .types import Codec, Target, Vendor

logger = logging.getLogger("rollrec.detect")

PROBE_TIMEOUT = 10

Runner = Callable[..., "subprocess.CompletedProcess[str]"]

_AVF_DEVICE_RE = re.compile(r"\[([0-9]+)\] (.*)")


class BinaryNotFoundError(Exception):
    """Raised when a required binary cannot be found."""


def find_ffmpeg(custom_path: str | None = None) -> Path:
    """Find the ffmpeg binary.

    Args:
        custom_path: Optional custom path to ffmpeg

    Returns:
        Path to the ffmpeg binary

    Raises:
        BinaryNotFoundError: If ffmpeg cannot be found
    """
    if custom_path:
        path = Path(custom_path)
        if not path.exists():
            raise BinaryNotFoundError(f"ffmpeg not found at: {custom_path}")
        if not _is_executable(path):
            raise BinaryNotFoundError(f"ffmpeg is not executable: {custom_path}")
        return path

    ffmpeg_path = shutil.which("ffmpeg")
    if ffmpeg_path:
        return Path(ffmpeg_path)

    raise BinaryNotFoundError(
        "ffmpeg is not installed or not in PATH. "
        "Install it or specify its location with --ffmpeg-bin",
    )


def check_ffmpeg_version(ffmpeg_path: Path, runner: Runner = subprocess.run) -> str:
    """Check that ffmpeg runs and return its version line.

    Raises:
        BinaryNotFoundError: If ffmpeg is not working
    """
    try:
        result = runner(
            [str(ffmpeg_path), "-version"],
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise BinaryNotFoundError(f"ffmpeg version check timed out: {e}") from e
    except OSError as e:
        raise BinaryNotFoundError(f"ffmpeg not found: {e}") from e

    if result.returncode != 0:
        raise BinaryNotFoundError(f"ffmpeg failed to run: {result.stderr}")

    lines = result.stdout.split("\n")
    return next((line for line in lines if line.startswith("ffmpeg version")), "")


def choose_encoder(codec: Codec, platform: str, accelerators: frozenset[Vendor]) -> str:
    """Pick the ffmpeg video encoder for a codec and the detected hardware.

    macOS always uses VideoToolbox. Elsewhere NVIDIA wins over Intel, Intel
    over AMD, and software encoding is the fallback.
    """
    family = "h264" if codec is Codec.H264 else "hevc"

    if platform == "darwin":
        return f"{family}_videotoolbox"

    for vendor, suffix in ((Vendor.NVIDIA, "nvenc"), (Vendor.INTEL, "qsv"), (Vendor.AMD, "amf")):
        if vendor in accelerators:
            return f"{family}_{suffix}"

    return "libx264" if codec is Codec.H264 else "libx265"


class CapabilityProber(ABC):
    """Queries the host for capture targets and hardware acceleration.

    Probing never raises: any failure degrades to no acceleration and the
    primary target.
    """

    platform = ""

    def __init__(self, ffmpeg_bin: Path, outdir: Path, runner: Runner = subprocess.run) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.outdir = outdir
        self._runner = runner

    @abstractmethod
    def list_targets(self) -> list[Target]:
        """Return the capture targets this platform offers."""

    def detect_accelerators(self) -> frozenset[Vendor]:
        return frozenset()

    @abstractmethod
    def default_target(self) -> str:
        """Return the target used when none is configured."""

    def _output(self, cmd: list[str]) -> str | None:
        """Run a query command and return its stdout, or None on failure."""
        try:
            result = self._runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=PROBE_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("Probe command %s failed: %s", cmd[0], e)
            return None
        if result.returncode != 0:
            return None
        return result.stdout

    def _succeeds(self, cmd: list[str]) -> bool:
        return self._output(cmd) is not None


class LinuxProber(CapabilityProber):
    """X11 capture via x11grab; GPUs found with nvidia-smi and lspci."""

    platform = "linux"

    def list_targets(self) -> list[Target]:
        return [
            Target(":0.0", "Primary display", recommended=True),
            Target(":0.0+1920,0", "Second monitor (adjust offset as needed)"),
        ]

    def default_target(self) -> str:
        return ":0.0"

    def detect_accelerators(self) -> frozenset[Vendor]:
        found: set[Vendor] = set()
        pci = self._output(["lspci"]) or ""

        if self._succeeds(["nvidia-smi"]) or "NVIDIA" in pci:
            found.add(Vendor.NVIDIA)
        if "Intel Corporation" in pci and ("VGA" in pci or "Graphics" in pci):
            found.add(Vendor.INTEL)
        if "AMD" in pci or "ATI" in pci or "Radeon" in pci:
            found.add(Vendor.AMD)

        return frozenset(found)


class WindowsProber(CapabilityProber):
    """Desktop capture via gdigrab; GPUs found with wmic."""

    platform = "win32"

    def list_targets(self) -> list[Target]:
        return [
            Target("desktop", "Full desktop (all screens)", recommended=True),
            Target("title=Window Title", "Specific window by title"),
        ]

    def default_target(self) -> str:
        # Window titles are saved so the operator can pick a title= target
        windows_file = self.outdir / "windows_list.txt"
        listing = self._output([
            "powershell",
            "-Command",
            'Get-Process | Where-Object {$_.MainWindowTitle -ne ""} '
            "| Select-Object MainWindowTitle | Format-Table -AutoSize",
        ])
        if listing is not None:
            try:
                self.outdir.mkdir(parents=True, exist_ok=True)
                windows_file.write_text(listing, encoding="utf-8")
                logger.info("Available windows saved to %s", windows_file)
            except OSError as e:
                logger.warning("Could not save window list: %s", e)
        return "desktop"

    def detect_accelerators(self) -> frozenset[Vendor]:
        names = self._output(["wmic", "path", "win32_VideoController", "get", "name"]) or ""
        found: set[Vendor] = set()

        if "NVIDIA" in names:
            found.add(Vendor.NVIDIA)
        if "Intel" in names and "Graphics" in names:
            found.add(Vendor.INTEL)
        if "AMD" in names or "Radeon" in names:
            found.add(Vendor.AMD)

        return frozenset(found)


class MacOSProber(CapabilityProber):
    """AVFoundation capture; devices enumerated by ffmpeg itself."""

    platform = "darwin"

    fallback_index = "2"

    def list_targets(self) -> list[Target]:
        text = self._device_listing()
        if text is None:
            return []
        return parse_avfoundation_devices(text)

    def default_target(self) -> str:
        index = self.fallback_index
        text = self._device_listing()
        if text is None:
            logger.warning("Could not list AVFoundation devices, defaulting to %s:none", index)
            return f"{index}:none"

        for target in parse_avfoundation_devices(text):
            if "capture screen" in target.name.lower():
                index = target.id
                logger.info("Selected main display device %s (%s)", target.id, target.name)
                break
        return f"{index}:none"

    def _device_listing(self) -> str | None:
        """Run the AVFoundation device listing and save it for inspection.

        ffmpeg exits non-zero here because no input is opened, and it writes
        the listing to stderr, so the return code is ignored.
        """
        cmd = [str(self.ffmpeg_bin), "-f", "avfoundation", "-list_devices", "true", "-i", ""]
        try:
            result = self._runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=PROBE_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Could not run ffmpeg for device list: %s", e)
            return None

        text = (result.stdout or "") + (result.stderr or "")
        device_file = self.outdir / "avfoundation_devices.txt"
        try:
            self.outdir.mkdir(parents=True, exist_ok=True)
            device_file.write_text(text, encoding="utf-8")
        except OSError as e:
            logger.warning("Could not save device list: %s", e)
        return text


def parse_avfoundation_devices(text: str) -> list[Target]:
    """Parse video devices from ffmpeg's AVFoundation device listing."""
    targets: list[Target] = []
    in_video = False

    for line in text.splitlines():
        if "AVFoundation video devices" in line:
            in_video = True
            continue
        if not in_video:
            continue
        if "AVFoundation audio devices" in line:
            break
        match = _AVF_DEVICE_RE.search(line)
        if match:
            index, name = match.group(1), match.group(2).strip()
            lowered = name.lower()
            recommended = any(word in lowered for word in ("screen", "display", "capture"))
            targets.append(Target(index, name, recommended=recommended))

    return targets


def select_prober(
    ffmpeg_bin: Path,
    outdir: Path,
    platform: str | None = None,
    runner: Runner = subprocess.run,
) -> CapabilityProber:
    """Choose the prober implementation for a platform (default: this host)."""
    platform = platform or sys.platform
    if platform == "darwin":
        cls: type[CapabilityProber] = MacOSProber
    elif platform.startswith("win"):
        cls = WindowsProber
    else:
        cls = LinuxProber
    return cls(ffmpeg_bin, outdir, runner=runner)


def _is_executable(path: Path) -> bool:
    """Check if a file is executable.

    Args:
        path: Path to check

    Returns:
        True if file is executable
    """
    try:
        return path.is_file() and path.stat().st_mode & 0o111 != 0
    except OSError:
        return False
