"""ffmpeg command construction for rollrec."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .types import LaunchSpec

if TYPE_CHECKING:
    from pathlib import Path

    from .types import RecorderConfig


def build_launch_spec(
    ffmpeg_bin: Path,
    encoder: str,
    target: str,
    config: RecorderConfig,
    output_path: Path,
    platform: str,
) -> LaunchSpec:
    """Build the ffmpeg invocation for one recording attempt.

    GOP size is two seconds of frames. Max rate and buffer size are two and
    three times the target bitrate. Audio is always disabled.

    Args:
        ffmpeg_bin: ffmpeg executable
        encoder: Video encoder name (e.g. 'hevc_nvenc')
        target: Capture source for the platform's grab device
        config: Session configuration (fps, bitrate, preset)
        output_path: Video file to write
        platform: sys.platform style name selecting the grab device

    Returns:
        The launch specification
    """
    fps = str(config.fps)
    gop_size = config.fps * 2
    bitrate = f"{config.bitrate_kbps}k"
    maxrate = f"{config.bitrate_kbps * 2}k"
    bufsize = f"{config.bitrate_kbps * 3}k"
    rate_args = ["-b:v", bitrate, "-maxrate", maxrate, "-bufsize", bufsize]

    if platform == "darwin":
        args = [
            "-f", "avfoundation",
            "-framerate", fps,
            "-pix_fmt", "uyvy422",
            "-i", target,
            "-c:v", encoder,
            "-r", fps,
            "-g", str(gop_size),
            *rate_args,
            "-pix_fmt", "yuv420p",
            "-profile:v", "main",
        ]
    elif platform.startswith("win"):
        args = [
            "-f", "gdigrab",
            "-framerate", fps,
            "-i", target,
            "-c:v", encoder,
            "-r", fps,
            "-g", str(gop_size),
            "-pix_fmt", "yuv420p",
            "-preset", config.preset.value,
            *rate_args,
            "-profile:v", "main",
        ]
        if "264" in encoder:
            args += ["-level", "4.1"]
            if "nvenc" in encoder:
                args += ["-rc:v", "vbr_hq"]
        elif "amf" not in encoder and "qsv" not in encoder:
            args += ["-tag:v", "hvc1"]
    else:
        args = [
            "-f", "x11grab",
            "-framerate", fps,
            "-i", target,
            "-c:v", encoder,
            "-r", fps,
            "-g", str(gop_size),
            "-pix_fmt", "yuv420p",
            *rate_args,
            "-profile:v", "main",
        ]

    argv = (str(ffmpeg_bin), *args, "-an", str(output_path))
    return LaunchSpec(
        argv=argv,
        encoder=encoder,
        target=target,
        gop_size=gop_size,
        bitrate=bitrate,
        maxrate=maxrate,
        bufsize=bufsize,
    )
