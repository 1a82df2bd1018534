"""Shared fixtures for pipeline and listener tests."""

import shutil
import threading

import pytest

from fakes import FailingTranscoder, FakeObjectStore, FakeStatusRecorder
from video_worker.pipeline import VideoPipeline
from video_worker.queue.models import JobDescriptor


@pytest.fixture
def descriptor():
    return JobDescriptor(
        video_id="v1", video_key="uploads/v1.mp4", processing_id="p1", uploader_id="u1"
    )


@pytest.fixture
def store():
    return FakeObjectStore({"uploads/v1.mp4": b"\x00\x00\x00\x18ftypmp42 source video"})


@pytest.fixture
def recorder():
    return FakeStatusRecorder(videos=["v1"])


@pytest.fixture
def transcoder():
    return FailingTranscoder()


@pytest.fixture
def work_root(tmp_path):
    root = tmp_path / "work"
    root.mkdir()
    yield root
    shutil.rmtree(root, ignore_errors=True)


@pytest.fixture
def pipeline(store, recorder, transcoder, work_root):
    return VideoPipeline(store, recorder, transcoder, work_root=str(work_root))


@pytest.fixture
def stop_event():
    return threading.Event()
