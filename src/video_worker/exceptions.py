"""Exception hierarchy for the video worker.

Errors fall into four groups that drive the ack/nack decision:

- Startup errors (ConfigError, PushSubscriptionError): fatal, the process exits.
- DescriptorError: the message payload is unusable, it is nacked and no status
  is written.
- Step errors (StorageError, TranscodeError): raised by collaborators and turned
  into JobFailedError by the pipeline when the step is fatal.
- StatusWriteError: logged by the pipeline, never escalated.
"""

from typing import Optional


class WorkerError(Exception):
    """Base class for all worker errors."""


class ConfigError(WorkerError):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class DescriptorError(WorkerError):
    """Message payload is not a valid job descriptor."""


class PushSubscriptionError(WorkerError):
    """Subscription is configured for push delivery but the worker pulls."""

    def __init__(self, subscription: str, endpoint: str):
        super().__init__(
            f"subscription {subscription} is configured for Push delivery "
            f"(endpoint: {endpoint}), not Pull"
        )
        self.subscription = subscription
        self.endpoint = endpoint


class StorageError(WorkerError):
    """Object store transfer failed."""


class ObjectNotFoundError(StorageError):
    """Requested object does not exist in the bucket."""


class TranscodeError(WorkerError):
    """External media tool exited with a failure."""

    def __init__(
        self,
        message: str,
        tool: str = "ffmpeg",
        operation: str = "",
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.tool = tool
        self.operation = operation
        self.returncode = returncode
        self.stderr = stderr


class TranscodeInputMissingError(WorkerError):
    """Input file handed to the transcoder does not exist."""

    def __init__(self, path: str):
        super().__init__(f"input file does not exist: {path}")
        self.path = path


class StatusStoreError(WorkerError):
    """Status store request failed."""


class StatusWriteError(StatusStoreError):
    """Write to the status store failed."""


class JobFailedError(WorkerError):
    """A fatal pipeline step failed and the attempt was marked FAILED."""

    def __init__(self, step: str, message: str, progress: int):
        super().__init__(message)
        self.step = step
        self.progress = progress


class JobCancelledError(WorkerError):
    """Processing was cancelled before it finished."""
