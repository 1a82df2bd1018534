"""Video processing pipeline: download, transcode, upload, report.

One call to VideoPipeline.process_video handles one job descriptor. Steps run
in a fixed order through a single step runner; every step is either fatal
(failure marks the attempt FAILED and aborts) or best-effort (failure is logged
and processing continues).

Status progression written to the status store:
    PROCESSING 10 → PROCESSING 25 → PROCESSING 70 → PROCESSING 80 → COMPLETED 100
    any fatal step → FAILED with the step's progress snapshot

Status-write failures are logged and never change the outcome, so a video that
was processed successfully is not reprocessed because bookkeeping failed.
"""

import logging
import re
import shutil
import tempfile
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .exceptions import JobCancelledError, JobFailedError
from .ffmpeg_runner import PLAYLIST_NAME
from .queue.backends import ObjectStore, StatusRecorder
from .queue.models import JobDescriptor, JobResult, ProcessingStatus
from .transcoder import TranscodeCapability

logger = logging.getLogger(__name__)

COMPLETED_MESSAGE = "Video processing completed successfully"
THUMBNAIL_CONTENT_TYPE = "image/jpeg"
START_PROGRESS = 10

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def hls_prefix(video_id: str) -> str:
    return f"videos/{video_id}/hls/"


def thumbnail_key(video_id: str) -> str:
    return f"videos/{video_id}/thumbnail.jpg"


class StepOutcome(str, Enum):
    """Result of running one pipeline step."""

    SUCCEEDED = "succeeded"
    FATAL = "fatal"
    SOFT_FAILED = "soft_failed"
    SKIPPED = "skipped"


@dataclass
class JobContext:
    """Mutable state shared by the steps of one invocation."""

    descriptor: JobDescriptor
    workdir: Path
    cancel_event: Optional[threading.Event] = None
    thumbnail_generated: bool = False
    uploaded_keys: List[str] = field(default_factory=list)
    playlist_url: Optional[str] = None

    @property
    def input_path(self) -> Path:
        return self.workdir / "input.mp4"

    @property
    def hls_dir(self) -> Path:
        return self.workdir / "hls"

    @property
    def thumbnail_path(self) -> Path:
        return self.workdir / "thumbnail.jpg"

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass(frozen=True)
class Step:
    """Declarative pipeline step.

    Attributes:
        name: Identifier used in logs and JobResult.soft_failures
        run: Does the work, raises on failure
        fatal: Failure aborts the job and records FAILED
        entry_progress: PROCESSING progress written before running, if any
        failure_progress: Progress recorded with FAILED (fatal steps only)
        failure_message: Prefix of the FAILED status message
        when: Predicate; the step is skipped when it returns False
    """

    name: str
    run: Callable[[JobContext], None]
    fatal: bool = True
    entry_progress: Optional[int] = None
    failure_progress: int = 0
    failure_message: str = ""
    when: Optional[Callable[[JobContext], bool]] = None


@dataclass
class StepReport:
    name: str
    outcome: StepOutcome
    error: Optional[str] = None
    exception: Optional[BaseException] = None


class VideoPipeline:
    """Processes job descriptors with injected collaborators."""

    def __init__(
        self,
        store: ObjectStore,
        recorder: StatusRecorder,
        transcoder: TranscodeCapability,
        work_root: Optional[str] = None,
    ):
        self.store = store
        self.recorder = recorder
        self.transcoder = transcoder
        self.work_root = Path(work_root or tempfile.gettempdir())

    def steps(self) -> List[Step]:
        return [
            Step(
                name="create_workdir",
                run=self._create_workdir,
                failure_progress=0,
                failure_message="Failed to create temp directory",
            ),
            Step(
                name="download",
                run=self._download,
                failure_progress=10,
                failure_message="Failed to download video",
            ),
            Step(
                name="create_output_dir",
                run=self._create_output_dir,
                entry_progress=25,
                failure_progress=25,
                failure_message="Failed to create output directory",
            ),
            Step(
                name="transcode",
                run=self._transcode,
                failure_progress=40,
                failure_message="Failed to convert to HLS",
            ),
            Step(
                name="thumbnail",
                run=self._thumbnail,
                fatal=False,
                entry_progress=70,
            ),
            Step(
                name="upload_hls",
                run=self._upload_hls,
                entry_progress=80,
                failure_progress=80,
                failure_message="Failed to upload HLS files",
            ),
            Step(
                name="upload_thumbnail",
                run=self._upload_thumbnail,
                fatal=False,
                when=lambda ctx: ctx.thumbnail_generated,
            ),
            Step(
                name="update_video_url",
                run=self._update_video_url,
                fatal=False,
            ),
        ]

    def workdir_for(self, descriptor: JobDescriptor) -> Path:
        """Working directory of one processing attempt."""
        safe_id = _UNSAFE_PATH_CHARS.sub("_", descriptor.processing_id)
        return self.work_root / f"video_{safe_id}"

    def process_video(
        self,
        descriptor: JobDescriptor,
        cancel_event: Optional[threading.Event] = None,
    ) -> JobResult:
        """Run every step for one descriptor.

        Returns:
            JobResult with status COMPLETED

        Raises:
            JobFailedError: A fatal step failed (FAILED already recorded)
            JobCancelledError: cancel_event was set before processing finished
        """
        start_time = time.monotonic()
        logger.info(
            "Processing video: %s (ProcessingID: %s) for user: %s",
            descriptor.video_id, descriptor.processing_id, descriptor.uploader_id,
        )
        self._record(descriptor, ProcessingStatus.PROCESSING, START_PROGRESS)

        ctx = JobContext(
            descriptor=descriptor,
            workdir=self.workdir_for(descriptor),
            cancel_event=cancel_event,
        )
        reports = []
        try:
            for step in self.steps():
                report = self._run_step(step, ctx)
                reports.append(report)
                if report.outcome == StepOutcome.FATAL:
                    self._fail(step, report, ctx)
        finally:
            self._remove_workdir(ctx.workdir)

        self._record(descriptor, ProcessingStatus.COMPLETED, 100, COMPLETED_MESSAGE)
        logger.info("Video processing completed for: %s", descriptor.video_id)

        return JobResult(
            processing_id=descriptor.processing_id,
            video_id=descriptor.video_id,
            status=ProcessingStatus.COMPLETED,
            playlist_url=ctx.playlist_url,
            uploaded_keys=ctx.uploaded_keys,
            soft_failures=[r.name for r in reports if r.outcome == StepOutcome.SOFT_FAILED],
            duration_s=time.monotonic() - start_time,
        )

    def _run_step(self, step: Step, ctx: JobContext) -> StepReport:
        descriptor = ctx.descriptor
        if ctx.cancelled:
            raise JobCancelledError(
                f"processing {descriptor.processing_id} cancelled before {step.name}"
            )

        if step.when is not None and not step.when(ctx):
            logger.debug("Skipping step %s for %s", step.name, descriptor.video_id)
            return StepReport(step.name, StepOutcome.SKIPPED)

        if step.entry_progress is not None:
            self._record(descriptor, ProcessingStatus.PROCESSING, step.entry_progress)

        try:
            step.run(ctx)
        except JobCancelledError:
            raise
        except Exception as e:
            if ctx.cancelled:
                raise JobCancelledError(
                    f"processing {descriptor.processing_id} cancelled during {step.name}"
                ) from e

            if not step.fatal:
                logger.warning("Step %s failed (non-fatal) for %s: %s", step.name,
                               descriptor.video_id, e)
                return StepReport(step.name, StepOutcome.SOFT_FAILED, str(e))

            logger.error("Step %s failed for %s: %s", step.name, descriptor.video_id, e)
            return StepReport(step.name, StepOutcome.FATAL, str(e), exception=e)

        return StepReport(step.name, StepOutcome.SUCCEEDED)

    def _fail(self, step: Step, report: StepReport, ctx: JobContext) -> None:
        """Record FAILED with the step's progress snapshot and abort."""
        message = f"{step.failure_message}: {report.error}"
        self._record(ctx.descriptor, ProcessingStatus.FAILED, step.failure_progress, message)
        raise JobFailedError(step.name, message, step.failure_progress) from report.exception

    def _record(
        self,
        descriptor: JobDescriptor,
        status: ProcessingStatus,
        progress: int,
        message: Optional[str] = None,
    ) -> None:
        try:
            self.recorder.update_processing_status(
                descriptor.processing_id, descriptor.video_id, status, progress, message
            )
        except Exception:
            logger.exception(
                "Failed to update status to %s (%d%%) for %s",
                status.value, progress, descriptor.processing_id,
            )

    @staticmethod
    def _remove_workdir(workdir: Path) -> None:
        try:
            shutil.rmtree(workdir)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("Failed to remove working directory %s", workdir)

    # Step bodies

    def _create_workdir(self, ctx: JobContext) -> None:
        if ctx.workdir.exists():
            # Left behind by a crashed attempt with the same processing id
            shutil.rmtree(ctx.workdir)
        ctx.workdir.mkdir(parents=True)

    def _download(self, ctx: JobContext) -> None:
        self.store.get(ctx.descriptor.video_key, ctx.input_path, cancel_event=ctx.cancel_event)

    def _create_output_dir(self, ctx: JobContext) -> None:
        ctx.hls_dir.mkdir()

    def _transcode(self, ctx: JobContext) -> None:
        self.transcoder.to_hls(ctx.input_path, ctx.hls_dir, cancel_event=ctx.cancel_event)

    def _thumbnail(self, ctx: JobContext) -> None:
        self.transcoder.thumbnail(
            ctx.input_path, ctx.thumbnail_path, cancel_event=ctx.cancel_event
        )
        ctx.thumbnail_generated = ctx.thumbnail_path.is_file()

    def _upload_hls(self, ctx: JobContext) -> None:
        keys = self.store.upload_tree(
            ctx.hls_dir, hls_prefix(ctx.descriptor.video_id), cancel_event=ctx.cancel_event
        )
        ctx.uploaded_keys.extend(keys)

    def _upload_thumbnail(self, ctx: JobContext) -> None:
        key = thumbnail_key(ctx.descriptor.video_id)
        self.store.put(ctx.thumbnail_path, key, THUMBNAIL_CONTENT_TYPE)
        ctx.uploaded_keys.append(key)

    def _update_video_url(self, ctx: JobContext) -> None:
        video_id = ctx.descriptor.video_id
        ctx.playlist_url = self.store.public_url(hls_prefix(video_id) + PLAYLIST_NAME)
        self.recorder.update_video_public_url(video_id, ctx.playlist_url)
