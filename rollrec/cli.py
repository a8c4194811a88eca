"""Command-line interface for rollrec."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from . import __version__
from .detect import (
    BinaryNotFoundError,
    CapabilityProber,
    check_ffmpeg_version,
    find_ffmpeg,
    select_prober,
)
from .log import setup_logging
from .paths import SizeParseError, build_attempt_paths, format_file_size, parse_size
from .supervisor import SessionStatus, SessionSupervisor
from .types import Codec, Preset, RecorderConfig

app = typer.Typer(
    name="rollrec",
    help="Screen recorder that rolls over to a new file when the output gets too large",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"rollrec {__version__}")
        raise typer.Exit()


@app.command()
def main(
    size: Annotated[
        str,
        typer.Option("--size", help="Maximum file size; plain numbers are MB, or use K/M/G suffixes"),
    ] = "1024",
    display: Annotated[
        str | None,
        typer.Option("--display", help="Display ID to record (default: auto-detect)"),
    ] = None,
    list_displays: Annotated[
        bool,
        typer.Option("--list", help="List available displays and exit"),
    ] = False,
    fps: Annotated[
        int,
        typer.Option("--fps", min=1, help="Frames per second for recording"),
    ] = 5,
    h264: Annotated[
        bool,
        typer.Option("--h264", help="Use H.264 instead of H.265/HEVC (better compatibility)"),
    ] = False,
    preset: Annotated[
        Preset,
        typer.Option("--preset", case_sensitive=False, help="Encoding preset"),
    ] = Preset.MEDIUM,
    bitrate: Annotated[
        int,
        typer.Option("--bitrate", min=1, help="Video bitrate in kbit/s"),
    ] = 700,
    outdir: Annotated[
        Path,
        typer.Option(
            "--outdir",
            help="Output directory for recordings and logs",
            file_okay=False,
            dir_okay=True,
        ),
    ] = Path("./output"),
    ffmpeg_bin: Annotated[
        str | None,
        typer.Option("--ffmpeg-bin", help="Path to ffmpeg binary (default: 'ffmpeg' on PATH)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Show detailed logs"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Print the ffmpeg command without recording"),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, help="Show version and exit"),
    ] = None,
) -> None:
    """Record the screen with ffmpeg, starting a new file at the size limit.

    Recording continues until Ctrl+C (or SIGTERM), at which point ffmpeg is
    asked to finalize the current file before the program exits.

    Examples:
        rollrec --size 2G
        rollrec --h264 --fps 10 --bitrate 1500
        rollrec --list
    """
    logger = setup_logging(verbose=verbose)

    if list_displays:
        try:
            list_ffmpeg = find_ffmpeg(ffmpeg_bin)
        except BinaryNotFoundError as e:
            # Only the macOS listing needs ffmpeg; it degrades to a fallback target
            logger.debug("Listing displays without ffmpeg: %s", e)
            list_ffmpeg = Path(ffmpeg_bin or "ffmpeg")
        _print_targets(select_prober(list_ffmpeg, outdir))
        return

    try:
        max_size_bytes = parse_size(size)
    except SizeParseError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e

    try:
        ffmpeg_path = find_ffmpeg(ffmpeg_bin)
        logger.debug("Found %s", check_ffmpeg_version(ffmpeg_path))
    except BinaryNotFoundError as e:
        logger.error("Error: %s", e)
        raise typer.Exit(1) from e

    config = RecorderConfig(
        outdir=outdir,
        max_size_bytes=max_size_bytes,
        fps=fps,
        bitrate_kbps=bitrate,
        preset=preset,
        codec=Codec.H264 if h264 else Codec.HEVC,
        ffmpeg_bin=ffmpeg_path,
        display=display,
    )
    prober = select_prober(ffmpeg_path, outdir)
    supervisor = SessionSupervisor(config, prober)

    if dry_run:
        _print_dry_run(supervisor, config)
        return

    logger.info("Recording with maximum file size of %s", format_file_size(config.max_size_bytes))
    logger.info("Recording at %d frames per second", config.fps)
    logger.info("Video bitrate: %d kbit/s", config.bitrate_kbps)
    if config.codec is Codec.H264:
        logger.info("Using H.264 codec for better compatibility")
    else:
        logger.info("Using H.265/HEVC codec for better compression")
    logger.info("Encoding preset: %s", config.preset.value)
    if config.display:
        logger.info("Using manually specified display: %s", config.display)
    else:
        _print_targets(prober)
    logger.info("Press Ctrl+C to stop recording gracefully")

    result = supervisor.run()
    logger.debug("Session ended after %d recording(s)", result.attempts)

    if result.status is SessionStatus.SETUP_FAILED:
        logger.error("Recording could not be started")
        raise typer.Exit(1)


def _print_targets(prober: CapabilityProber) -> None:
    """Print the capture targets the --display option accepts."""
    targets = prober.list_targets()
    typer.echo("")
    typer.echo("Available displays for recording:")
    typer.echo("--------------------------------")
    if not targets:
        typer.echo("  (none found)")
    for target in targets:
        if target.recommended:
            typer.echo(f"  * {target.id}: {target.name} (recommended for screen recording)")
        else:
            typer.echo(f"  - {target.id}: {target.name}")
    typer.echo("--------------------------------")
    example = next((t.id for t in targets if t.recommended), targets[0].id if targets else "")
    if example:
        typer.echo(f"To select a specific display, use the --display option (e.g., --display '{example}')")
    typer.echo("")


def _print_dry_run(supervisor: SessionSupervisor, config: RecorderConfig) -> None:
    """Print the command the first recording would run."""
    paths = build_attempt_paths(config.outdir)
    spec = supervisor.launch_spec_for(paths.video)

    typer.echo("Dry run mode - command that would be executed:")
    typer.echo("")
    typer.echo(f"Output file: {spec.output_path}")
    typer.echo(f"Log file: {paths.log}")
    typer.echo(f"Rollover at: {format_file_size(config.max_size_bytes)}")
    typer.echo("")
    typer.echo("ffmpeg command:")
    typer.echo(f"  {' '.join(spec.argv)}")


if __name__ == "__main__":
    app()
