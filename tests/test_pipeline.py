"""Tests for the job pipeline state machine and failure isolation."""

import threading

import pytest

from fakes import FailingTranscoder, FakeStatusRecorder
from video_worker.exceptions import JobCancelledError, JobFailedError
from video_worker.pipeline import COMPLETED_MESSAGE, JobContext, StepOutcome, VideoPipeline
from video_worker.queue.models import JobDescriptor, ProcessingStatus

PROCESSING = ProcessingStatus.PROCESSING
COMPLETED = ProcessingStatus.COMPLETED
FAILED = ProcessingStatus.FAILED


class TestSuccessfulRun:
    """End-to-end runs against in-memory collaborators."""

    def test_end_to_end_scenario(self, pipeline, store, recorder, descriptor):
        """v1/p1 produces playlist, first segment, thumbnail and a COMPLETED record."""
        result = pipeline.process_video(descriptor)

        assert result.status == "COMPLETED"
        assert "videos/v1/hls/playlist.m3u8" in store.objects
        assert "videos/v1/hls/segment000.ts" in store.objects
        assert "videos/v1/thumbnail.jpg" in store.objects

        record = recorder.records["p1"]
        assert record["id"] == "p1"
        assert record["video_id"] == "v1"
        assert record["status"] == "COMPLETED"
        assert record["progress"] == 100
        assert record["message"] == COMPLETED_MESSAGE

    def test_status_progression(self, pipeline, recorder, descriptor):
        """Status writes follow 10 → 25 → 70 → 80 → 100."""
        pipeline.process_video(descriptor)

        assert recorder.statuses() == [
            (PROCESSING, 10),
            (PROCESSING, 25),
            (PROCESSING, 70),
            (PROCESSING, 80),
            (COMPLETED, 100),
        ]

    def test_exactly_one_completed_write(self, pipeline, recorder, descriptor):
        pipeline.process_video(descriptor)

        completed = [w for w in recorder.writes if w["status"] == COMPLETED]
        assert len(completed) == 1
        assert completed[0]["progress"] == 100

    def test_content_types_of_uploads(self, pipeline, store, descriptor):
        pipeline.process_video(descriptor)

        assert store.content_type("videos/v1/hls/playlist.m3u8") == "application/x-mpegURL"
        assert store.content_type("videos/v1/hls/segment000.ts") == "video/MP2T"
        assert store.content_type("videos/v1/thumbnail.jpg") == "image/jpeg"

    def test_video_record_gets_playlist_url(self, pipeline, recorder, descriptor):
        result = pipeline.process_video(descriptor)

        expected = "https://bucket.account.r2.cloudflarestorage.com/videos/v1/hls/playlist.m3u8"
        assert recorder.videos["v1"]["video_url"] == expected
        assert result.playlist_url == expected

    def test_result_lists_uploaded_keys(self, pipeline, descriptor):
        result = pipeline.process_video(descriptor)

        assert result.uploaded_keys == [
            "videos/v1/hls/playlist.m3u8",
            "videos/v1/hls/segment000.ts",
            "videos/v1/hls/segment001.ts",
            "videos/v1/thumbnail.jpg",
        ]
        assert result.soft_failures == []


class TestFatalFailures:
    """Fatal steps record FAILED with a progress snapshot and abort."""

    def test_download_failure(self, pipeline, store, recorder, descriptor):
        store.fail_get = True

        with pytest.raises(JobFailedError) as exc_info:
            pipeline.process_video(descriptor)

        assert exc_info.value.step == "download"
        assert exc_info.value.progress == 10
        last = recorder.writes[-1]
        assert last["status"] == FAILED
        assert last["progress"] == 10
        assert last["message"].startswith("Failed to download video:")

    def test_missing_source_object(self, pipeline, store, recorder):
        descriptor = JobDescriptor(
            video_id="v2", video_key="uploads/missing.mp4", processing_id="p2", uploader_id="u1"
        )

        with pytest.raises(JobFailedError):
            pipeline.process_video(descriptor)

        assert recorder.statuses() == [(PROCESSING, 10), (FAILED, 10)]

    def test_transcode_failure_uploads_nothing(self, store, recorder, work_root, descriptor):
        """A failed transcode records FAILED/40 and writes no outputs."""
        pipeline = VideoPipeline(
            store, recorder, FailingTranscoder(fail_hls=True), work_root=str(work_root)
        )

        with pytest.raises(JobFailedError) as exc_info:
            pipeline.process_video(descriptor)

        assert exc_info.value.progress == 40
        assert recorder.statuses()[-1] == (FAILED, 40)
        assert "Failed to convert to HLS" in recorder.writes[-1]["message"]
        assert store.put_calls == []
        assert list(store.objects) == ["uploads/v1.mp4"]

    def test_upload_failure(self, pipeline, store, recorder, descriptor):
        store.fail_put_keys.add("videos/v1/hls/segment001.ts")

        with pytest.raises(JobFailedError) as exc_info:
            pipeline.process_video(descriptor)

        assert exc_info.value.step == "upload_hls"
        assert recorder.statuses()[-1] == (FAILED, 80)
        # Objects before the failing one stay written
        assert "videos/v1/hls/playlist.m3u8" in store.objects
        assert "videos/v1/thumbnail.jpg" not in store.objects

    def test_workdir_creation_failure(self, store, recorder, transcoder, tmp_path, descriptor):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        pipeline = VideoPipeline(store, recorder, transcoder, work_root=str(blocker))

        with pytest.raises(JobFailedError) as exc_info:
            pipeline.process_video(descriptor)

        assert exc_info.value.step == "create_workdir"
        assert recorder.statuses()[-1] == (FAILED, 0)

    def test_output_dir_creation_failure(self, pipeline, store, recorder, descriptor):
        """The HLS directory is created after download and fails at 25."""
        fetch = store.get

        def get(key, local_path, cancel_event=None):
            fetch(key, local_path)
            # A file where the HLS directory should go
            (local_path.parent / "hls").write_text("in the way")

        store.get = get

        with pytest.raises(JobFailedError) as exc_info:
            pipeline.process_video(descriptor)

        assert exc_info.value.step == "create_output_dir"
        assert recorder.statuses() == [(PROCESSING, 10), (PROCESSING, 25), (FAILED, 25)]
        assert recorder.writes[-1]["message"].startswith("Failed to create output directory:")
        assert not pipeline.workdir_for(descriptor).exists()

    def test_no_completed_write_after_failure(self, pipeline, store, recorder, descriptor):
        store.fail_get = True

        with pytest.raises(JobFailedError):
            pipeline.process_video(descriptor)

        assert all(w["status"] != COMPLETED for w in recorder.writes)


class TestBestEffortSteps:
    """Best-effort failures never change the terminal status."""

    def test_thumbnail_failure_still_completes(self, store, recorder, work_root, descriptor):
        """HLS outputs are uploaded even without a thumbnail."""
        pipeline = VideoPipeline(
            store, recorder, FailingTranscoder(fail_thumbnail=True), work_root=str(work_root)
        )

        result = pipeline.process_video(descriptor)

        assert result.status == "COMPLETED"
        assert result.soft_failures == ["thumbnail"]
        assert "videos/v1/thumbnail.jpg" not in store.objects
        assert "videos/v1/thumbnail.jpg" not in store.put_calls
        assert "videos/v1/hls/playlist.m3u8" in store.objects
        assert "videos/v1/hls/segment000.ts" in store.objects
        assert "videos/v1/hls/segment001.ts" in store.objects
        assert recorder.statuses()[-1] == (COMPLETED, 100)

    def test_thumbnail_upload_failure_still_completes(self, pipeline, store, recorder, descriptor):
        store.fail_put_keys.add("videos/v1/thumbnail.jpg")

        result = pipeline.process_video(descriptor)

        assert result.soft_failures == ["upload_thumbnail"]
        assert recorder.statuses()[-1] == (COMPLETED, 100)

    def test_missing_video_record_still_completes(self, store, transcoder, work_root, descriptor):
        """A video document that does not exist only loses its URL update."""
        recorder = FakeStatusRecorder(videos=[])
        pipeline = VideoPipeline(store, recorder, transcoder, work_root=str(work_root))

        result = pipeline.process_video(descriptor)

        assert result.soft_failures == ["update_video_url"]
        assert recorder.records["p1"]["status"] == "COMPLETED"

    def test_status_write_failures_are_not_escalated(self, pipeline, recorder, descriptor):
        recorder.fail_status_writes = True

        result = pipeline.process_video(descriptor)

        assert result.status == "COMPLETED"
        assert recorder.statuses()[-1] == (COMPLETED, 100)

    def test_status_write_failure_does_not_mask_fatal_error(
        self, pipeline, store, recorder, descriptor
    ):
        recorder.fail_status_writes = True
        store.fail_get = True

        with pytest.raises(JobFailedError):
            pipeline.process_video(descriptor)


class TestWorkingDirectory:
    """The working directory never survives an invocation."""

    def test_removed_after_success(self, pipeline, transcoder, descriptor):
        pipeline.process_video(descriptor)

        workdir = pipeline.workdir_for(descriptor)
        assert transcoder.seen_workdirs == [workdir]
        assert not workdir.exists()

    def test_removed_after_fatal_failure(self, store, recorder, work_root, descriptor):
        """Nothing is left under the work root after a failed transcode."""
        pipeline = VideoPipeline(
            store, recorder, FailingTranscoder(fail_hls=True), work_root=str(work_root)
        )

        with pytest.raises(JobFailedError):
            pipeline.process_video(descriptor)

        assert not pipeline.workdir_for(descriptor).exists()
        assert list(work_root.iterdir()) == []

    def test_removed_after_unexpected_exception(self, pipeline, recorder, descriptor):
        class Interrupted(BaseException):
            pass

        def explode(*args, **kwargs):
            raise Interrupted

        pipeline.store.upload_tree = explode

        with pytest.raises(Interrupted):
            pipeline.process_video(descriptor)

        assert not pipeline.workdir_for(descriptor).exists()

    def test_stale_workdir_is_replaced(self, pipeline, descriptor):
        workdir = pipeline.workdir_for(descriptor)
        (workdir / "hls").mkdir(parents=True)
        (workdir / "hls" / "segment999.ts").write_bytes(b"stale")

        result = pipeline.process_video(descriptor)

        assert "videos/v1/hls/segment999.ts" not in result.uploaded_keys
        assert not workdir.exists()

    def test_keyed_by_processing_id(self, pipeline, work_root):
        first = JobDescriptor(videoId="v1", videoKey="k", processingId="p1", uploaderId="u")
        second = JobDescriptor(videoId="v1", videoKey="k", processingId="p2", uploaderId="u")

        assert pipeline.workdir_for(first) != pipeline.workdir_for(second)
        assert pipeline.workdir_for(first).parent == work_root

    def test_unsafe_processing_id_stays_under_root(self, pipeline, work_root):
        hostile = JobDescriptor(
            videoId="v1", videoKey="k", processingId="../../etc", uploaderId="u"
        )

        workdir = pipeline.workdir_for(hostile)

        assert workdir.parent == work_root
        assert "/" not in workdir.name


class TestCancellation:
    """A set cancel event stops the job without recording FAILED."""

    def test_cancelled_before_start(self, pipeline, store, recorder, descriptor):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(JobCancelledError):
            pipeline.process_video(descriptor, cancel_event=cancel)

        assert recorder.statuses() == [(PROCESSING, 10)]
        assert store.put_calls == []
        assert not pipeline.workdir_for(descriptor).exists()

    def test_cancelled_during_download(self, pipeline, store, recorder, descriptor):
        """The cancel event reaches the download and aborts it."""
        cancel = threading.Event()

        def get(key, local_path, cancel_event=None):
            assert cancel_event is cancel
            cancel.set()
            raise JobCancelledError(f"download of {key} cancelled")

        store.get = get

        with pytest.raises(JobCancelledError):
            pipeline.process_video(descriptor, cancel_event=cancel)

        assert recorder.statuses() == [(PROCESSING, 10)]
        assert not pipeline.workdir_for(descriptor).exists()

    def test_cancelled_during_transcode(self, store, recorder, work_root, descriptor):
        """A process killed on cancel does not record FAILED."""
        cancel = threading.Event()

        class CancellingTranscoder(FailingTranscoder):
            def to_hls(self, input_path, output_dir, cancel_event=None):
                cancel.set()
                raise RuntimeError("ffmpeg killed")

        pipeline = VideoPipeline(store, recorder, CancellingTranscoder(), work_root=str(work_root))

        with pytest.raises(JobCancelledError):
            pipeline.process_video(descriptor, cancel_event=cancel)

        assert all(w["status"] != FAILED for w in recorder.writes)
        assert not pipeline.workdir_for(descriptor).exists()


class TestStepRunner:
    """The step table drives the state machine."""

    def test_step_order_and_kinds(self, pipeline):
        steps = pipeline.steps()

        assert [s.name for s in steps] == [
            "create_workdir",
            "download",
            "create_output_dir",
            "transcode",
            "thumbnail",
            "upload_hls",
            "upload_thumbnail",
            "update_video_url",
        ]
        assert [s.fatal for s in steps] == [True, True, True, True, False, True, False, False]

    def test_skipped_step_reports_skipped(self, pipeline, descriptor, work_root):
        """upload_thumbnail is skipped when no thumbnail was generated."""
        ctx = JobContext(descriptor=descriptor, workdir=work_root / "x")
        upload_thumbnail = next(s for s in pipeline.steps() if s.name == "upload_thumbnail")

        report = pipeline._run_step(upload_thumbnail, ctx)

        assert report.outcome == StepOutcome.SKIPPED
