"""Pydantic models for configuration and data validation."""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class GCPConfig(BaseModel):
    """Google Cloud project settings (Pub/Sub and Firestore)."""

    project_id: str = Field(default="", description="Google Cloud project id")
    credentials_path: Optional[str] = Field(
        default=None, description="Service account JSON file (None = ambient credentials)"
    )
    processing_collection: str = Field(
        default="video_processing", description="Firestore collection for status records"
    )
    videos_collection: str = Field(
        default="videos", description="Firestore collection for video records"
    )


class PubSubConfig(BaseModel):
    """Subscription settings."""

    subscription_id: str = Field(default="", description="Pull subscription id")


class StorageConfig(BaseModel):
    """S3-compatible object storage (Cloudflare R2) settings."""

    account_id: str = Field(default="", description="R2 account id")
    access_key_id: str = Field(default="", description="R2 access key id")
    secret_access_key: str = Field(default="", description="R2 secret access key")
    bucket_name: str = Field(default="", description="Bucket holding uploads and outputs")
    storage_host: str = Field(
        default="r2.cloudflarestorage.com", description="Host suffix for endpoint and public URLs"
    )
    region: str = Field(default="auto", description="Signing region")

    @property
    def endpoint_url(self) -> str:
        return f"https://{self.account_id}.{self.storage_host}"


class TranscodeConfig(BaseModel):
    """External tool settings."""

    backend: Literal["ffmpeg", "placeholder"] = Field(
        default="ffmpeg", description="ffmpeg, or placeholder output for smoke runs"
    )
    ffmpeg_path: Optional[str] = Field(
        default=None, description="ffmpeg executable (None = imageio-ffmpeg binary)"
    )
    global_timeout_s: Optional[int] = Field(
        default=None,
        gt=0,
        description="Kill ffmpeg after N seconds (None = rely on queue redelivery)",
    )
    kill_grace_period_s: int = Field(
        default=5, gt=0, description="Grace period between SIGTERM and SIGKILL"
    )
    ffmpeg_loglevel: str = Field(
        default="error", description="FFmpeg log level: error, warning, info, verbose"
    )
    stderr_tail_lines: int = Field(
        default=20, gt=0, description="Lines of stderr kept on failure"
    )


class WorkerSettings(BaseModel):
    """Local processing settings."""

    work_root: Optional[str] = Field(
        default=None, description="Parent of per-job working directories (None = system temp)"
    )


class HealthConfig(BaseModel):
    """Liveness endpoint."""

    enabled: bool = Field(default=True, description="Serve the health endpoint")
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, gt=0, lt=65536, description="Bind port")


class LoggingConfig(BaseModel):
    """Log output."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Root log level"
    )


class WorkerConfig(BaseModel):
    """Complete application configuration with validation."""

    gcp: GCPConfig = Field(default_factory=GCPConfig)
    pubsub: PubSubConfig = Field(default_factory=PubSubConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    transcode: TranscodeConfig = Field(default_factory=TranscodeConfig)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "WorkerConfig":
        """Create config from nested dict (YAML)."""
        return cls(**data)

    def merge_cli_overrides(self, cli_args: dict) -> "WorkerConfig":
        """Apply CLI overrides and return new config instance."""
        config_dict = self.model_dump()

        if cli_args.get("port") is not None:
            config_dict["health"]["port"] = cli_args["port"]
        if cli_args.get("no_health"):
            config_dict["health"]["enabled"] = False
        if cli_args.get("log_level") is not None:
            config_dict["logging"]["level"] = cli_args["log_level"]
        if cli_args.get("work_dir") is not None:
            config_dict["worker"]["work_root"] = cli_args["work_dir"]
        if cli_args.get("backend") is not None:
            config_dict["transcode"]["backend"] = cli_args["backend"]

        return WorkerConfig.from_dict(config_dict)
