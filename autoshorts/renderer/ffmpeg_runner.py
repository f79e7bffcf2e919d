"""
Subprocess boundary for the ffmpeg and ffprobe binaries.

Nothing here knows about runs, timelines or assets: the assembler hands in a
finished argv and gets back either nothing (ffmpeg) or a float (ffprobe).
Every child runs in its own session so a timeout can take down the whole
process group, including any helpers ffmpeg forks.

Encodes are serialised by the caller; this module holds no lock.
"""
from __future__ import annotations

import logging
import os
import re
import signal
import subprocess

logger = logging.getLogger(__name__)

# mov_text muxing plus the scale/pad/concat filters the assembly graph uses.
FFMPEG_MIN_VERSION = "6.0"

_STDERR_TAIL_CHARS = 3000
_VERSION_RE = re.compile(r"^ffmpeg version n?(\S+)")
_INSTALL_HINT = f"install ffmpeg >= {FFMPEG_MIN_VERSION} (it ships ffprobe)"


class FFmpegError(Exception):
    """ffmpeg or ffprobe ran but reported failure."""

    def __init__(self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class FFmpegNotFound(Exception):
    """The binary could not be executed at all."""


def _summarise(cmd: list[str], limit: int = 8) -> str:
    head = " ".join(str(part) for part in cmd[:limit])
    return head + (" ..." if len(cmd) > limit else "")


def _kill_group(process: subprocess.Popen) -> None:
    try:
        os.killpg(os.getpgid(process.pid), signal.SIGKILL)
    except ProcessLookupError:
        return
    except OSError as exc:
        logger.warning("killpg failed for pid %d (%s); killing the leader only", process.pid, exc)
        process.kill()


def _spawn(cmd: list[str], timeout: float) -> tuple[int, str, str]:
    """Run *cmd* in a fresh session; return (returncode, stdout, stderr)."""
    try:
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
    except FileNotFoundError as exc:
        raise FFmpegNotFound(f"{cmd[0]} is not on PATH; {_INSTALL_HINT}") from exc

    try:
        stdout, stderr = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(process)
        process.communicate()
        raise TimeoutError(f"{cmd[0]} killed after {timeout}s: {_summarise(cmd, 6)}")
    return process.returncode, stdout, stderr


def get_ffmpeg_version() -> str:
    """Version token from ``ffmpeg -version``, e.g. ``"6.1.1-3ubuntu5"``."""
    try:
        code, stdout, stderr = _spawn(["ffmpeg", "-version"], timeout=10)
    except TimeoutError as exc:
        raise FFmpegNotFound(f"ffmpeg -version did not answer: {exc}") from exc
    if code != 0:
        raise FFmpegNotFound(f"ffmpeg -version exited {code}: {stderr.strip()[-200:]}")

    banner = stdout.splitlines()[0] if stdout else ""
    match = _VERSION_RE.match(banner)
    return match.group(1) if match else banner


def _version_tuple(version: str) -> tuple[int, ...]:
    numbers = re.match(r"(\d+)\.(\d+)", version)
    if not numbers:
        return ()
    return int(numbers.group(1)), int(numbers.group(2))


def validate_ffmpeg() -> str:
    """
    Confirm ffmpeg is usable and return its version.

    An old version only logs a warning; git snapshots without a dotted
    version are accepted as-is.
    """
    version = get_ffmpeg_version()
    found = _version_tuple(version)
    if found and found < _version_tuple(FFMPEG_MIN_VERSION):
        logger.warning(
            "ffmpeg %s is older than %s; subtitle muxing may differ",
            version,
            FFMPEG_MIN_VERSION,
        )
    return version


def run_ffmpeg(cmd: list[str], timeout: int = 600) -> None:
    """
    Execute a complete ffmpeg argv and wait for it.

    Raises FFmpegNotFound when the binary is missing, TimeoutError after
    *timeout* seconds (the process group is killed first), and FFmpegError
    on a non-zero exit with the stderr tail attached.
    """
    logger.debug("ffmpeg: %s", _summarise(cmd, 10))
    code, _, stderr = _spawn(cmd, timeout)
    if code != 0:
        tail = stderr[-_STDERR_TAIL_CHARS:]
        raise FFmpegError(f"ffmpeg exited {code}: {_summarise(cmd)}\n{tail}", stderr=tail)
    logger.debug("ffmpeg finished")


def probe_duration(path: str, timeout: int = 30) -> float:
    """Container duration of *path* in seconds, as reported by ffprobe."""
    cmd = [
        "ffprobe", "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    code, stdout, stderr = _spawn(cmd, timeout)
    if code != 0:
        raise FFmpegError(f"ffprobe exited {code} on {path}", stderr=stderr[-_STDERR_TAIL_CHARS:])

    raw = stdout.strip()
    try:
        return float(raw)
    except ValueError:
        raise FFmpegError(f"ffprobe gave no duration for {path} (got {raw!r})") from None
