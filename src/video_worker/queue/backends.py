"""Abstract base classes for the pipeline's collaborators.

The pipeline and listener only depend on these interfaces. Concrete clients
(R2 over boto3, Firestore, Pub/Sub) are constructed once at startup and
injected, so tests can substitute in-memory fakes.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional

if TYPE_CHECKING:
    from .models import ProcessingStatus, ProcessingStatusRecord


class ObjectStore(ABC):
    """Object storage interface (byte-for-byte transfer, no transformation)."""

    @abstractmethod
    def get(
        self,
        key: str,
        local_path: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Download object to a local file.

        Args:
            key: Object key in the bucket
            local_path: Destination file (overwritten)
            cancel_event: Aborts the transfer when set

        Raises:
            JobCancelledError: cancel_event was set mid-transfer
            ObjectNotFoundError: Object does not exist
            StorageError: Transfer failed or was interrupted
        """
        pass

    @abstractmethod
    def put(self, local_path: Path, key: str, content_type: str) -> None:
        """Upload a local file, overwriting any object at key.

        Raises:
            StorageError: Transfer failed or was interrupted
        """
        pass

    @abstractmethod
    def upload_tree(
        self,
        root: Path,
        prefix: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """Upload every file under root to prefix + relative path.

        Args:
            root: Local directory to walk
            prefix: Key prefix, joined verbatim with the POSIX relative path
            cancel_event: Stops the walk between files when set

        Returns:
            Keys written, in upload order

        Implementation notes:
        - First failing file aborts the remainder of the walk
        - Objects written before the failure are left in place
        """
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Public URL for an object key."""
        pass


class StatusRecorder(ABC):
    """Processing status and video record bookkeeping."""

    @abstractmethod
    def update_processing_status(
        self,
        processing_id: str,
        video_id: str,
        status: "ProcessingStatus",
        progress: int,
        message: Optional[str] = None,
    ) -> None:
        """Upsert the processing status record.

        Implementation notes:
        - First write for a processing id creates the record only if status
          is PROCESSING; created_at is set then and never again
        - Later writes merge, preserving video_id and created_at
        - updated_at is set on every write

        Raises:
            StatusWriteError: Store rejected the write
        """
        pass

    @abstractmethod
    def get_processing_status(self, processing_id: str) -> Optional["ProcessingStatusRecord"]:
        """Read a processing status record, None if it does not exist."""
        pass

    @abstractmethod
    def update_video_public_url(self, video_id: str, url: str) -> None:
        """Set video_url on an existing video record.

        Raises:
            StatusWriteError: Record missing or store rejected the write
        """
        pass

    def close(self) -> None:
        """Release client resources."""


class Subscription(ABC):
    """Pull subscription delivering one message at a time."""

    name: str

    @abstractmethod
    def push_endpoint(self) -> str:
        """Configured push endpoint, empty string for pull subscriptions."""
        pass

    @abstractmethod
    def receive(
        self,
        callback: Callable[["InboundMessage"], None],
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """Block, invoking callback for each delivered message.

        Returns when stop_event is set or the stream ends.
        """
        pass


class InboundMessage(ABC):
    """Single delivered message with ack/nack."""

    message_id: str
    data: bytes

    @abstractmethod
    def ack(self) -> None:
        pass

    @abstractmethod
    def nack(self) -> None:
        pass
