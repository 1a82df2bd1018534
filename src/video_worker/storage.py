"""
Object storage client for Cloudflare R2 (S3-compatible).

Transfers stream through boto3's managed transfer layer, so large videos are
never fully buffered in memory.

Dependencies: boto3
"""

import logging
import os
import threading
from pathlib import Path
from typing import List, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import JobCancelledError, ObjectNotFoundError, StorageError
from .models import StorageConfig
from .queue.backends import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
CONTENT_TYPES = {
    ".m3u8": "application/x-mpegURL",
    ".ts": "video/MP2T",
}


def content_type_for(path) -> str:
    """MIME type for an HLS output file, by extension."""
    return CONTENT_TYPES.get(Path(path).suffix, DEFAULT_CONTENT_TYPE)


def iter_files(root: Path) -> List[Path]:
    """All regular files under root, in a stable order."""
    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            files.append(Path(dirpath) / name)
    return files


def _cancel_callback(key: str, cancel_event: threading.Event):
    """Progress callback that aborts a managed transfer once cancel_event is set.

    boto3 invokes it from its transfer threads after each chunk; the raised
    error fails the transfer future and surfaces from download_file.
    """

    def callback(bytes_transferred: int) -> None:
        if cancel_event.is_set():
            raise JobCancelledError(f"download of {key} cancelled")

    return callback


class R2ObjectStore(ObjectStore):
    """Bucket-scoped object store on R2."""

    def __init__(
        self,
        bucket: str,
        account_id: str,
        client=None,
        storage_host: str = "r2.cloudflarestorage.com",
    ) -> None:
        """
        Args:
            bucket: Bucket holding uploads and outputs
            account_id: R2 account id (part of endpoint and public URLs)
            client: boto3 S3 client (tests pass a mock)
            storage_host: Host suffix shared by the endpoint and public URLs
        """
        self._bucket = bucket
        self._account_id = account_id
        self._storage_host = storage_host
        self._s3_client = client

    @classmethod
    def from_config(cls, config: StorageConfig) -> "R2ObjectStore":
        client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
        )
        return cls(
            bucket=config.bucket_name,
            account_id=config.account_id,
            client=client,
            storage_host=config.storage_host,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    def get(
        self,
        key: str,
        local_path: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        logger.info("Downloading from R2: %s to %s", key, local_path)
        kwargs = {}
        if cancel_event is not None:
            kwargs["Callback"] = _cancel_callback(key, cancel_event)
        try:
            self._s3_client.download_file(self._bucket, key, str(local_path), **kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey"):
                raise ObjectNotFoundError(f"object not found: {key}") from e
            raise StorageError(f"failed to get object {key}: {e}") from e
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"failed to get object {key}: {e}") from e
        logger.info("Successfully downloaded from R2: %s", local_path)

    def put(self, local_path: Path, key: str, content_type: str) -> None:
        logger.info("Uploading to R2: %s as %s", local_path, key)
        try:
            self._s3_client.upload_file(
                str(local_path),
                self._bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (ClientError, BotoCoreError, S3UploadFailedError, OSError) as e:
            raise StorageError(f"failed to upload {key}: {e}") from e
        logger.info("Successfully uploaded to R2: %s", key)

    def upload_tree(
        self,
        root: Path,
        prefix: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        root = Path(root)
        uploaded = []
        for path in iter_files(root):
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(f"upload of {root} cancelled after {len(uploaded)} files")

            rel_path = path.relative_to(root).as_posix()
            key = prefix + rel_path
            try:
                self.put(path, key, content_type_for(path))
            except StorageError as e:
                raise StorageError(f"failed to upload {rel_path}: {e}") from e
            uploaded.append(key)
        return uploaded

    def public_url(self, key: str) -> str:
        return f"https://{self._bucket}.{self._account_id}.{self._storage_host}/{key}"
