"""
Status bookkeeping in Firestore.

Processing status documents live in `video_processing/{processing_id}`; the
worker also sets `video_url` on `videos/{video_id}`, a document owned by the
upload service.

Dependencies: google-cloud-firestore
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from google.api_core.exceptions import GoogleAPICallError, NotFound, RetryError
from google.cloud import firestore

from .exceptions import StatusStoreError, StatusWriteError
from .models import GCPConfig
from .queue.backends import StatusRecorder
from .queue.models import ProcessingStatus, ProcessingStatusRecord

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FirestoreStatusRecorder(StatusRecorder):
    """Status recorder backed by a Firestore client."""

    def __init__(
        self,
        client,
        processing_collection: str = "video_processing",
        videos_collection: str = "videos",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._processing_collection = processing_collection
        self._videos_collection = videos_collection
        self._clock = clock

    @classmethod
    def from_config(cls, config: GCPConfig) -> "FirestoreStatusRecorder":
        if config.credentials_path:
            client = firestore.Client.from_service_account_json(
                config.credentials_path, project=config.project_id
            )
        else:
            client = firestore.Client(project=config.project_id)
        return cls(
            client,
            processing_collection=config.processing_collection,
            videos_collection=config.videos_collection,
        )

    def close(self) -> None:
        self._client.close()

    def update_processing_status(
        self,
        processing_id: str,
        video_id: str,
        status: ProcessingStatus,
        progress: int,
        message: Optional[str] = None,
    ) -> None:
        status = ProcessingStatus(status)
        doc_ref = self._client.collection(self._processing_collection).document(processing_id)
        now = self._clock()

        try:
            snapshot = doc_ref.get()
            existing = snapshot.to_dict() if snapshot.exists else None

            if existing is None and status == ProcessingStatus.PROCESSING:
                data: Dict[str, Any] = {
                    "id": processing_id,
                    "video_id": video_id,
                    "status": status.value,
                    "progress": progress,
                    "created_at": now,
                    "updated_at": now,
                }
                if message is not None:
                    data["message"] = message
                doc_ref.set(data)
                logger.info(
                    "Created processing status document for %s: %s (%d%%)",
                    processing_id, status.value, progress,
                )
                return

            data = {
                "status": status.value,
                "progress": progress,
                "updated_at": now,
            }
            if message is not None:
                data["message"] = message

            if existing is not None:
                data["id"] = existing.get("id", processing_id)
                data["video_id"] = existing.get("video_id") or video_id
                if "created_at" in existing:
                    data["created_at"] = existing["created_at"]
            else:
                data["id"] = processing_id
                data["video_id"] = video_id

            doc_ref.set(data, merge=True)
        except (GoogleAPICallError, RetryError) as e:
            raise StatusWriteError(
                f"failed to update processing status for {processing_id}: {e}"
            ) from e

        logger.info(
            "Updated processing status for %s: %s (%d%%)", processing_id, status.value, progress
        )

    def get_processing_status(self, processing_id: str) -> Optional[ProcessingStatusRecord]:
        doc_ref = self._client.collection(self._processing_collection).document(processing_id)
        try:
            snapshot = doc_ref.get()
        except (GoogleAPICallError, RetryError) as e:
            raise StatusStoreError(
                f"failed to read processing status for {processing_id}: {e}"
            ) from e

        if not snapshot.exists:
            return None
        data = snapshot.to_dict()
        data.setdefault("id", processing_id)
        return ProcessingStatusRecord.model_validate(data)

    def update_video_public_url(self, video_id: str, url: str) -> None:
        doc_ref = self._client.collection(self._videos_collection).document(video_id)
        try:
            doc_ref.update({"video_url": url, "updated_at": self._clock()})
        except NotFound as e:
            raise StatusWriteError(f"video record {video_id} does not exist") from e
        except (GoogleAPICallError, RetryError) as e:
            raise StatusWriteError(f"failed to update video URL for {video_id}: {e}") from e

        logger.info("Updated video %s with HLS URL: %s", video_id, url)
