"""Pydantic models for job queue data structures.

This module defines the job descriptor received from the subscription, the
processing status record kept in the document store, and the result returned
by the pipeline.
"""

import json
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..exceptions import DescriptorError


class ProcessingStatus(str, Enum):
    """Processing states, forward-progressing only.

    State transitions:
        uploaded   → processing  (pipeline start, progress 10)
        processing → processing  (step entry, progress 25/70/80)
        processing → completed   (all fatal steps succeeded, progress 100)
        processing → failed      (fatal step failed)
    """

    UPLOADED = "UPLOADED"  # Written by the uploader, never by the worker
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def _required_id(snake: str, camel: str, description: str):
    return Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices(camel, snake),
        serialization_alias=camel,
        description=description,
    )


class JobDescriptor(BaseModel):
    """Immutable job specification delivered by the queue.

    Accepts both camelCase and snake_case field names on the wire.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    video_id: str = _required_id("video_id", "videoId", "Video document id")
    video_key: str = _required_id("video_key", "videoKey", "Object key of the source upload")
    processing_id: str = _required_id(
        "processing_id", "processingId", "Identifier of this processing attempt"
    )
    uploader_id: str = _required_id("uploader_id", "uploaderId", "Uploading user id")
    title: str = Field(default="", description="Video title")
    is_private: bool = Field(
        default=False, validation_alias=AliasChoices("isPrivate", "is_private")
    )
    is_adult: bool = Field(default=False, validation_alias=AliasChoices("isAdult", "is_adult"))
    is_external_cutout: bool = Field(
        default=False, validation_alias=AliasChoices("isExternalCutout", "is_external_cutout")
    )

    @field_validator("title", mode="before")
    @classmethod
    def null_title_is_empty(cls, v):
        """Treat an explicit null title as absent."""
        return "" if v is None else v

    @field_validator("is_private", "is_adult", "is_external_cutout", mode="before")
    @classmethod
    def null_flag_is_false(cls, v):
        """Treat an explicit null flag as unset."""
        return False if v is None else v

    @classmethod
    def parse_message(cls, data: Union[bytes, str]) -> "JobDescriptor":
        """Deserialize a raw message payload.

        Raises:
            DescriptorError: Payload is not JSON, not an object, or misses a
                required field.
        """
        try:
            payload = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DescriptorError(f"message is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise DescriptorError(
                f"message must be a JSON object, got {type(payload).__name__}"
            )

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise DescriptorError(f"invalid job descriptor: {e}") from e


class ProcessingStatusRecord(BaseModel):
    """Processing status document, keyed by processing id."""

    id: str = Field(..., description="Processing id")
    video_id: Optional[str] = Field(default=None, description="Back-reference to the video")
    status: ProcessingStatus = Field(..., description="Current status")
    progress: int = Field(default=0, ge=0, le=100, description="Percent complete")
    message: Optional[str] = Field(default=None, description="Latest status message")
    created_at: Optional[datetime] = Field(default=None, description="First PROCESSING write")
    updated_at: Optional[datetime] = Field(default=None, description="Last write")

    model_config = ConfigDict(use_enum_values=True)


class JobResult(BaseModel):
    """Processing outcome returned by the pipeline."""

    processing_id: str = Field(..., description="Processing id")
    video_id: str = Field(..., description="Video id")
    status: ProcessingStatus = Field(..., description="Final status")
    playlist_url: Optional[str] = Field(default=None, description="Public HLS playlist URL")
    uploaded_keys: List[str] = Field(default_factory=list, description="Object keys written")
    soft_failures: List[str] = Field(
        default_factory=list, description="Best-effort steps that failed"
    )
    duration_s: float = Field(default=0.0, ge=0.0, description="Processing time in seconds")

    model_config = ConfigDict(use_enum_values=True)
