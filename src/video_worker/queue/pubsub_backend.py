"""Google Cloud Pub/Sub pull subscription.

Streaming pull is limited to one outstanding message and one callback thread,
so the worker handles exactly one job at a time. Scaling out means running more
worker instances against the same subscription.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from google.cloud import pubsub_v1
from google.cloud.pubsub_v1.subscriber.scheduler import ThreadScheduler

from ..models import GCPConfig, PubSubConfig
from .backends import InboundMessage, Subscription

logger = logging.getLogger(__name__)


class PubSubMessage(InboundMessage):
    """Adapter over google.cloud.pubsub_v1.subscriber.message.Message."""

    def __init__(self, message):
        self._message = message
        self.message_id = message.message_id
        self.data = message.data

    def ack(self) -> None:
        self._message.ack()

    def nack(self) -> None:
        self._message.nack()


class PubSubSubscription(Subscription):
    """Pull subscription delivering one message at a time."""

    def __init__(
        self,
        client,
        project_id: str,
        subscription_id: str,
        max_messages: int = 1,
        poll_interval_s: float = 1.0,
    ):
        self._client = client
        self._max_messages = max_messages
        self._poll_interval_s = poll_interval_s
        self.name = client.subscription_path(project_id, subscription_id)

    @classmethod
    def from_config(cls, gcp: GCPConfig, pubsub: PubSubConfig) -> "PubSubSubscription":
        if gcp.credentials_path:
            client = pubsub_v1.SubscriberClient.from_service_account_file(gcp.credentials_path)
        else:
            client = pubsub_v1.SubscriberClient()
        return cls(client, gcp.project_id, pubsub.subscription_id)

    def push_endpoint(self) -> str:
        subscription = self._client.get_subscription(request={"subscription": self.name})
        logger.info(
            "Subscription config - Topic: %s, Push endpoint: %r",
            subscription.topic, subscription.push_config.push_endpoint,
        )
        return subscription.push_config.push_endpoint

    def receive(
        self,
        callback: Callable[[InboundMessage], None],
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        flow_control = pubsub_v1.types.FlowControl(max_messages=self._max_messages)
        scheduler = ThreadScheduler(executor=ThreadPoolExecutor(max_workers=1))

        future = self._client.subscribe(
            self.name,
            callback=lambda message: callback(PubSubMessage(message)),
            flow_control=flow_control,
            scheduler=scheduler,
            await_callbacks_on_shutdown=True,
        )

        while True:
            if stop_event is not None and stop_event.is_set():
                logger.info("Stopping streaming pull on %s", self.name)
                future.cancel()
                future.result()
                return
            try:
                future.result(timeout=self._poll_interval_s)
                return
            except FutureTimeoutError:
                continue

    def close(self) -> None:
        self._client.close()
