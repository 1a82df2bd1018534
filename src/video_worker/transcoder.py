"""Transcode capability: HLS playlist and thumbnail from a local source file.

Two implementations share one interface:
- FfmpegTranscoder shells out to ffmpeg through FfmpegRunner.
- PlaceholderTranscoder writes deterministic stand-in files without any tool,
  for smoke runs and pipeline tests.
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .exceptions import TranscodeError, TranscodeInputMissingError
from .ffmpeg_runner import PLAYLIST_NAME, FfmpegErrorType, FfmpegRunner
from .models import TranscodeConfig

logger = logging.getLogger(__name__)

VIDEO_CODEC = "libx264"
AUDIO_CODEC = "aac"
SEGMENT_DURATION_S = 10
THUMBNAIL_TIMESTAMP = "00:00:01.000"


class TranscodeCapability(ABC):
    """Produces streaming outputs from a local video file."""

    @abstractmethod
    def to_hls(
        self,
        input_path: Path,
        output_dir: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """Write playlist.m3u8 and segmentNNN.ts into output_dir.

        Returns:
            Path of the playlist

        Raises:
            TranscodeInputMissingError: input_path does not exist
            TranscodeError: Tool failed
        """
        pass

    @abstractmethod
    def thumbnail(
        self,
        input_path: Path,
        output_path: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """Write a single still frame taken at the 1 second mark.

        Raises:
            TranscodeInputMissingError: input_path does not exist
            TranscodeError: Tool failed
        """
        pass

    @staticmethod
    def _require_input(input_path: Path) -> None:
        if not Path(input_path).is_file():
            raise TranscodeInputMissingError(str(input_path))


class FfmpegTranscoder(TranscodeCapability):
    """Transcoder backed by the ffmpeg binary."""

    tool = "ffmpeg"

    def __init__(self, runner: FfmpegRunner):
        self.runner = runner

    @classmethod
    def from_config(cls, config: TranscodeConfig) -> "FfmpegTranscoder":
        return cls(
            FfmpegRunner(
                ffmpeg_path=config.ffmpeg_path,
                global_timeout_s=config.global_timeout_s,
                kill_grace_period_s=config.kill_grace_period_s,
                ffmpeg_loglevel=config.ffmpeg_loglevel,
                stderr_tail_lines=config.stderr_tail_lines,
            )
        )

    def to_hls(self, input_path, output_dir, cancel_event=None):
        self._require_input(input_path)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        result = self.runner.segment_hls(
            str(input_path),
            str(output_dir),
            video_codec=VIDEO_CODEC,
            audio_codec=AUDIO_CODEC,
            segment_duration_s=SEGMENT_DURATION_S,
            cancel_event=cancel_event,
        )
        if not result.success:
            raise self._failure("HLS conversion", result)

        playlist = output_dir / PLAYLIST_NAME
        logger.info("HLS conversion completed: %s (%.1fs)", playlist, result.duration_s)
        return playlist

    def thumbnail(self, input_path, output_path, cancel_event=None):
        self._require_input(input_path)
        output_path = Path(output_path)

        result = self.runner.extract_frame(
            str(input_path),
            str(output_path),
            timestamp=THUMBNAIL_TIMESTAMP,
            cancel_event=cancel_event,
        )
        if not result.success:
            # A half-written image must not be mistaken for a thumbnail
            output_path.unlink(missing_ok=True)
            raise self._failure("thumbnail generation", result)

        logger.info("Thumbnail generated: %s", output_path)
        return output_path

    def _failure(self, operation, result) -> TranscodeError:
        if result.error_type == FfmpegErrorType.CANCELLED:
            reason = "cancelled"
        elif result.error_type == FfmpegErrorType.TIMEOUT:
            reason = "timed out"
        else:
            reason = f"exit status {result.returncode}"

        message = f"{self.tool} {operation} failed ({reason})"
        if result.stderr_tail:
            message += f": {result.stderr_tail}"
        return TranscodeError(
            message,
            tool=self.tool,
            operation=operation,
            returncode=result.returncode,
            stderr=result.stderr,
        )


class PlaceholderTranscoder(TranscodeCapability):
    """Writes fixed placeholder outputs instead of running a tool.

    Output is a valid VOD playlist referencing segment_count segments whose
    bytes are derived from the input file name, so repeated runs produce
    identical files.
    """

    def __init__(self, segment_count: int = 1):
        if segment_count < 1:
            raise ValueError("segment_count must be at least 1")
        self.segment_count = segment_count

    def to_hls(self, input_path, output_dir, cancel_event=None):
        self._require_input(input_path)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            f"#EXT-X-TARGETDURATION:{SEGMENT_DURATION_S}",
            "#EXT-X-MEDIA-SEQUENCE:0",
            "#EXT-X-PLAYLIST-TYPE:VOD",
        ]
        for index in range(self.segment_count):
            name = f"segment{index:03d}.ts"
            (output_dir / name).write_bytes(
                f"placeholder {Path(input_path).name} {index}\n".encode()
            )
            lines.extend([f"#EXTINF:{SEGMENT_DURATION_S:.6f},", name])
        lines.append("#EXT-X-ENDLIST")

        playlist = output_dir / PLAYLIST_NAME
        playlist.write_text("\n".join(lines) + "\n")
        return playlist

    def thumbnail(self, input_path, output_path, cancel_event=None):
        self._require_input(input_path)
        output_path = Path(output_path)
        output_path.write_bytes(b"\xff\xd8placeholder\xff\xd9")
        return output_path


def build_transcoder(config: TranscodeConfig) -> TranscodeCapability:
    """Select the transcoder backend named in config."""
    if config.backend == "placeholder":
        logger.warning("Using placeholder transcoder: outputs are not real video")
        return PlaceholderTranscoder()
    return FfmpegTranscoder.from_config(config)
