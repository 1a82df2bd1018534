"""Process wiring: builds collaborators from config and runs the worker."""

import logging
import signal
import threading
from typing import Optional, Union

from .config import validate_required
from .health import start_health_server
from .models import WorkerConfig
from .pipeline import VideoPipeline
from .queue.listener import QueueListener
from .queue.models import JobDescriptor, JobResult, ProcessingStatusRecord
from .queue.pubsub_backend import PubSubSubscription
from .status import FirestoreStatusRecorder
from .storage import R2ObjectStore
from .transcoder import build_transcoder

logger = logging.getLogger(__name__)


def build_pipeline(config: WorkerConfig) -> VideoPipeline:
    """Construct the pipeline with real R2, Firestore and transcoder clients."""
    return VideoPipeline(
        store=R2ObjectStore.from_config(config.storage),
        recorder=FirestoreStatusRecorder.from_config(config.gcp),
        transcoder=build_transcoder(config.transcode),
        work_root=config.worker.work_root,
    )


def install_signal_handlers(stop_event: threading.Event) -> None:
    """SIGINT/SIGTERM stop pulling and cancel the in-flight job."""

    def _handle(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_worker(config: WorkerConfig) -> None:
    """Start the health endpoint and block consuming the subscription.

    Raises:
        ConfigError: Required settings missing
        PushSubscriptionError: Subscription delivers by push
    """
    validate_required(config)
    logger.info(
        "Starting video worker - Project: %s, Subscription: %s, R2 Account: %s, R2 Bucket: %s",
        config.gcp.project_id,
        config.pubsub.subscription_id,
        config.storage.account_id,
        config.storage.bucket_name,
    )

    if config.health.enabled:
        start_health_server(config.health.host, config.health.port)

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    pipeline = build_pipeline(config)
    subscription = PubSubSubscription.from_config(config.gcp, config.pubsub)
    listener = QueueListener(subscription, pipeline, stop_event=stop_event)
    try:
        listener.start()
    finally:
        subscription.close()
        pipeline.recorder.close()
        logger.info("Video worker stopped")


def process_once(config: WorkerConfig, payload: Union[bytes, str]) -> JobResult:
    """Run the pipeline for a single descriptor outside the queue.

    Raises:
        ConfigError: Required settings missing
        DescriptorError: Payload is not a valid descriptor
        JobFailedError: A fatal step failed
    """
    validate_required(config, require_subscription=False)
    descriptor = JobDescriptor.parse_message(payload)

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    pipeline = build_pipeline(config)
    try:
        return pipeline.process_video(descriptor, cancel_event=stop_event)
    finally:
        pipeline.recorder.close()


def fetch_status(config: WorkerConfig, processing_id: str) -> Optional[ProcessingStatusRecord]:
    """Read one processing status record."""
    recorder = FirestoreStatusRecorder.from_config(config.gcp)
    try:
        return recorder.get_processing_status(processing_id)
    finally:
        recorder.close()
