"""FFmpeg runner with process isolation, cancellation and timeout enforcement.

This module runs ffmpeg as a child process and guarantees it is gone when the
call returns, whether it exited on its own, timed out, or was cancelled by the
worker shutting down.

Key Features:
- Process isolation with subprocess.Popen
- Optional global timeout (the queue's redelivery is the default deadline)
- Cancellation via a shared threading.Event
- Process tree cleanup with psutil
- Bounded stderr capture for failure messages
- Error classification (permanent vs transient)
"""

import logging
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import IO, Deque, List, Optional

import psutil

logger = logging.getLogger(__name__)

# HLS output naming is part of the public key layout
PLAYLIST_NAME = "playlist.m3u8"
SEGMENT_PATTERN = "segment%03d.ts"


class FfmpegErrorType(Enum):
    """FFmpeg error classification."""
    PERMANENT = "permanent"     # Bad input, unsupported codec
    TRANSIENT = "transient"     # I/O stall, resource exhaustion
    TIMEOUT = "timeout"         # Global timeout exceeded
    CANCELLED = "cancelled"     # Worker shutdown


@dataclass
class FfmpegResult:
    """Result of FFmpeg execution."""
    success: bool
    returncode: int
    stderr: str
    duration_s: float
    command: List[str]
    error_type: Optional[FfmpegErrorType] = None

    @property
    def stderr_tail(self) -> str:
        return self.stderr.strip()


class FfmpegRunner:
    """FFmpeg orchestration with timeout, cancellation and zombie prevention.

    Example:
        >>> runner = FfmpegRunner(global_timeout_s=3600)
        >>> result = runner.segment_hls("input.mp4", "out/hls")
        >>> if not result.success:
        ...     print(result.error_type, result.stderr_tail)
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        global_timeout_s: Optional[int] = None,
        kill_grace_period_s: int = 5,
        ffmpeg_loglevel: str = "error",
        stderr_tail_lines: int = 20,
        poll_interval_s: float = 0.5,
    ):
        """Initialize FFmpeg runner.

        Args:
            ffmpeg_path: Executable to run (None = binary shipped by imageio-ffmpeg)
            global_timeout_s: Maximum duration for any operation (None = no limit)
            kill_grace_period_s: Grace period between SIGTERM and SIGKILL
            ffmpeg_loglevel: FFmpeg log level (error, warning, info, verbose)
            stderr_tail_lines: Number of trailing stderr lines kept
            poll_interval_s: How often cancellation and timeout are checked
        """
        self.ffmpeg_path = ffmpeg_path
        self.global_timeout_s = global_timeout_s
        self.kill_grace_period_s = kill_grace_period_s
        self.ffmpeg_loglevel = ffmpeg_loglevel
        self.stderr_tail_lines = stderr_tail_lines
        self.poll_interval_s = poll_interval_s

    def segment_hls(
        self,
        input_path: str,
        output_dir: str,
        video_codec: str = "libx264",
        audio_codec: str = "aac",
        segment_duration_s: int = 10,
        cancel_event: Optional[threading.Event] = None,
    ) -> FfmpegResult:
        """Encode input into a VOD HLS playlist with numbered .ts segments.

        Produces output_dir/playlist.m3u8 and output_dir/segment000.ts, ...
        """
        cmd = [
            self.get_ffmpeg_exe(),
            "-y",
            "-i", input_path,
            "-codec:v", video_codec,
            "-codec:a", audio_codec,
            "-hls_time", str(segment_duration_s),
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", f"{output_dir}/{SEGMENT_PATTERN}",
            "-loglevel", self.ffmpeg_loglevel,
            f"{output_dir}/{PLAYLIST_NAME}",
        ]
        return self.run(cmd, cancel_event=cancel_event)

    def extract_frame(
        self,
        input_path: str,
        output_path: str,
        timestamp: str = "00:00:01.000",
        cancel_event: Optional[threading.Event] = None,
    ) -> FfmpegResult:
        """Write a single frame at timestamp as an image."""
        cmd = [
            self.get_ffmpeg_exe(),
            "-y",
            "-i", input_path,
            "-ss", timestamp,
            "-vframes", "1",
            "-loglevel", self.ffmpeg_loglevel,
            output_path,
        ]
        return self.run(cmd, cancel_event=cancel_event)

    def run(
        self,
        cmd: List[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> FfmpegResult:
        """Execute a command, enforcing timeout and cancellation.

        The child is always reaped before returning.
        """
        start_time = time.monotonic()
        deadline = start_time + self.global_timeout_s if self.global_timeout_s else None
        stderr_lines: Deque[str] = deque(maxlen=self.stderr_tail_lines)

        logger.debug("Running: %s", " ".join(cmd))
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
        )
        reader = threading.Thread(
            target=self._drain_stderr, args=(process.stderr, stderr_lines), daemon=True
        )
        reader.start()

        error_type = None
        try:
            while True:
                try:
                    returncode = process.wait(timeout=self.poll_interval_s)
                    break
                except subprocess.TimeoutExpired:
                    pass

                if cancel_event is not None and cancel_event.is_set():
                    error_type = FfmpegErrorType.CANCELLED
                    break
                if deadline is not None and time.monotonic() > deadline:
                    error_type = FfmpegErrorType.TIMEOUT
                    break

            if error_type is not None:
                logger.warning("Stopping ffmpeg (pid %s): %s", process.pid, error_type.value)
                self._kill_process_tree(process)
                returncode = -1
        except BaseException:
            self._kill_process_tree(process)
            raise
        finally:
            reader.join(timeout=2)

        stderr = "".join(stderr_lines)
        if error_type is None and returncode != 0:
            error_type = self._classify_error(stderr)

        return FfmpegResult(
            success=(returncode == 0),
            returncode=returncode,
            stderr=stderr,
            duration_s=time.monotonic() - start_time,
            command=cmd,
            error_type=error_type,
        )

    @staticmethod
    def _drain_stderr(stream: IO[str], sink: Deque[str]) -> None:
        # Keeps the pipe from filling up on verbose encodes
        for line in stream:
            sink.append(line)
        stream.close()

    def _kill_process_tree(self, process: subprocess.Popen) -> None:
        """Kill ffmpeg and all children.

        Kill sequence:
        1. SIGTERM to the process and its children
        2. Wait grace period
        3. SIGKILL survivors
        """
        try:
            parent = psutil.Process(process.pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            procs = []

        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(procs, timeout=self.kill_grace_period_s)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        process.wait()

    @staticmethod
    def _classify_error(stderr: str) -> FfmpegErrorType:
        """Classify FFmpeg error from its stderr."""
        stderr_lower = stderr.lower()

        permanent_patterns = [
            "no such file or directory",
            "invalid data found",
            "invalid argument",
            "permission denied",
            "unsupported codec",
            "invalid codec",
            "moov atom not found",
            "end of file",
            "corrupt",
        ]
        for pattern in permanent_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.PERMANENT

        return FfmpegErrorType.TRANSIENT

    def get_ffmpeg_exe(self) -> str:
        """Get FFmpeg executable path."""
        if self.ffmpeg_path:
            return self.ffmpeg_path
        import imageio_ffmpeg
        return imageio_ffmpeg.get_ffmpeg_exe()


def check_ffmpeg(ffmpeg_path: Optional[str] = None) -> bool:
    """Verify ffmpeg is installed and runnable."""
    try:
        exe = FfmpegRunner(ffmpeg_path=ffmpeg_path).get_ffmpeg_exe()
        subprocess.run(
            [exe, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
        return True
    except (FileNotFoundError, subprocess.CalledProcessError, OSError, RuntimeError):
        return False
