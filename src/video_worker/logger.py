"""Logging configuration for the worker process."""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Send timestamped log lines to stdout at the given level."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Reduce noise from verbose third-party libraries
    for name in ("urllib3", "botocore", "boto3", "s3transfer", "google", "grpc"):
        logging.getLogger(name).setLevel(logging.WARNING)
