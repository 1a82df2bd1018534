"""HLS transcoding worker for Pub/Sub job descriptors."""

__version__ = "0.1.0"
