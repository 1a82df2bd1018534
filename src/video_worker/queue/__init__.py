"""Job queue: descriptor models, collaborator interfaces and the listener."""

from .backends import InboundMessage, ObjectStore, StatusRecorder, Subscription
from .models import JobDescriptor, JobResult, ProcessingStatus, ProcessingStatusRecord

__all__ = [
    "InboundMessage",
    "ObjectStore",
    "StatusRecorder",
    "Subscription",
    "JobDescriptor",
    "JobResult",
    "ProcessingStatus",
    "ProcessingStatusRecord",
]
