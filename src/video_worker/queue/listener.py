"""Queue listener: deserialize, process, acknowledge.

Delivery is at-least-once. A message is acked only after the pipeline
succeeds; every other outcome is nacked so the transport can redeliver it or
dead-letter it.
"""

import logging
import threading
from typing import Optional

from ..exceptions import (
    DescriptorError,
    JobCancelledError,
    JobFailedError,
    PushSubscriptionError,
)
from ..pipeline import VideoPipeline
from .backends import InboundMessage, Subscription
from .models import JobDescriptor

logger = logging.getLogger(__name__)


class QueueListener:
    """Pulls job descriptors from a subscription and feeds the pipeline."""

    def __init__(
        self,
        subscription: Subscription,
        pipeline: VideoPipeline,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            subscription: Pull subscription to consume
            pipeline: Processes one descriptor per message
            stop_event: Stops pulling and cancels the in-flight job when set
        """
        self.subscription = subscription
        self.pipeline = pipeline
        self.stop_event = stop_event or threading.Event()

    def start(self) -> None:
        """Verify the subscription and block receiving messages.

        Raises:
            PushSubscriptionError: Subscription delivers by push
        """
        self.check_pull_delivery()
        logger.info("Starting to receive messages from subscription: %s", self.subscription.name)
        self.subscription.receive(self.handle_message, stop_event=self.stop_event)

    def stop(self) -> None:
        self.stop_event.set()

    def check_pull_delivery(self) -> None:
        endpoint = self.subscription.push_endpoint()
        if endpoint:
            raise PushSubscriptionError(self.subscription.name, endpoint)

    def handle_message(self, message: InboundMessage) -> bool:
        """Process one message. Returns True if it was acked."""
        logger.info(
            "Received message - ID: %s, Data length: %d", message.message_id, len(message.data)
        )

        try:
            descriptor = JobDescriptor.parse_message(message.data)
        except DescriptorError as e:
            logger.error("Failed to parse message %s: %s", message.message_id, e)
            logger.debug("Message data: %r", message.data)
            message.nack()
            return False

        logger.info("Processing video message: %s", descriptor.model_dump())
        try:
            result = self.pipeline.process_video(descriptor, cancel_event=self.stop_event)
        except (JobFailedError, JobCancelledError) as e:
            logger.error(
                "Failed to process video %s (message %s): %s",
                descriptor.video_id, message.message_id, e,
            )
            message.nack()
            return False
        except Exception:
            logger.exception(
                "Unexpected error processing video %s (message %s)",
                descriptor.video_id, message.message_id,
            )
            message.nack()
            return False

        message.ack()
        logger.info(
            "Successfully processed video: %s (message %s) in %.1fs",
            descriptor.video_id, message.message_id, result.duration_s,
        )
        if result.soft_failures:
            logger.warning(
                "Video %s completed with non-fatal failures: %s",
                descriptor.video_id, ", ".join(result.soft_failures),
            )
        return True
