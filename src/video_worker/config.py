import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import WorkerConfig

DEFAULT_CONFIG_PATH = Path("config/default.yaml")
LOCAL_CONFIG_PATH = Path("config/local.yaml")

# Environment variable -> dotted config path
ENV_VARS = {
    "GOOGLE_CLOUD_PROJECT_ID": "gcp.project_id",
    "GOOGLE_APPLICATION_CREDENTIALS": "gcp.credentials_path",
    "PUBSUB_SUBSCRIPTION_ID": "pubsub.subscription_id",
    "R2_ACCOUNT_ID": "storage.account_id",
    "R2_ACCESS_KEY_ID": "storage.access_key_id",
    "R2_SECRET_ACCESS_KEY": "storage.secret_access_key",
    "R2_BUCKET_NAME": "storage.bucket_name",
    "PORT": "health.port",
    "WORK_DIR": "worker.work_root",
    "FFMPEG_PATH": "transcode.ffmpeg_path",
    "LOG_LEVEL": "logging.level",
}

REQUIRED_ENV_VARS = [
    "GOOGLE_CLOUD_PROJECT_ID",
    "PUBSUB_SUBSCRIPTION_ID",
    "R2_ACCOUNT_ID",
    "R2_ACCESS_KEY_ID",
    "R2_SECRET_ACCESS_KEY",
    "R2_BUCKET_NAME",
]


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file, returning empty dict if not found."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def merge_dicts(base: Dict, override: Dict) -> Dict:
    """Recursive merge of two dictionaries."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def load_env_file(path: Union[str, Path]) -> None:
    """Load KEY=value pairs into os.environ without overriding set variables."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"environment file not found: {path}")
    load_dotenv(path, override=False)


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Translate recognized environment variables into a nested config dict.

    Empty values are ignored so they count as missing.
    """
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for var, dotted in ENV_VARS.items():
        value = environ.get(var)
        if not value:
            continue
        section, key = dotted.split(".")
        overrides.setdefault(section, {})[key] = value
    return overrides


def resolve_config(
    cli_args: Optional[Dict[str, Any]] = None,
    config_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> WorkerConfig:
    """
    Resolve config: Default < Local < --config file < Environment < CLI
    Returns validated Pydantic WorkerConfig model.

    Raises:
        ConfigError: A layer holds a value the model rejects.
    """
    cli_args = cli_args or {}

    config_data = load_yaml(DEFAULT_CONFIG_PATH)
    config_data = merge_dicts(config_data, load_yaml(LOCAL_CONFIG_PATH))

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"config file not found: {config_path}")
        config_data = merge_dicts(config_data, load_yaml(config_path))

    config_data = merge_dicts(config_data, env_overrides(environ))

    try:
        config = WorkerConfig.from_dict(config_data)
        return config.merge_cli_overrides(cli_args)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e


def validate_required(config: WorkerConfig, require_subscription: bool = True) -> WorkerConfig:
    """Fail fast if any setting needed to talk to the cloud services is missing.

    Args:
        config: Resolved configuration
        require_subscription: False for one-off runs that never pull messages

    Raises:
        ConfigError: Lists every missing environment variable.
    """
    missing = []
    for var in REQUIRED_ENV_VARS:
        if var == "PUBSUB_SUBSCRIPTION_ID" and not require_subscription:
            continue
        section, key = ENV_VARS[var].split(".")
        if not getattr(getattr(config, section), key):
            missing.append(var)

    if missing:
        raise ConfigError(
            f"missing required configuration: {', '.join(missing)}", missing=missing
        )
    return config
