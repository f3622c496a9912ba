import os
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from core.classify import DEFAULT_FILE_EXTENSIONS

logger = logging.getLogger("pruner_config")

CONFIG_FILE = "pruner_config.json"

DEFAULT_CONFIG = {
    # Listing engine
    "page_window": 3,
    "max_page_attempts": 3,
    "retry_base_delay": 1.0,
    "max_pages": 10000,
    "cursor_delay": 0.025,
    "coalesce_cursor_probe": False,
    # Batch deletes
    "batch_concurrency": 10,
    "batch_delay": 0.05,
    # Folder classification
    "verify_concurrency": 4,
    "file_extensions": list(DEFAULT_FILE_EXTENSIONS),
    # Safety
    "protected_prefixes": [],
    # Sync tool
    "rclone_binary": "rclone",
    "rclone_timeout": 600,
    # Credentials
    "default_env": "dev",
    "environments": {},
}

# Environment variable -> credential field
ENV_OVERRIDES = {
    "R2_ACCOUNT_ID": "account_id",
    "R2_BUCKET": "bucket",
    "CLOUDFLARE_API_TOKEN": "api_token",
    "R2_ACCESS_KEY_ID": "access_key_id",
    "R2_SECRET_ACCESS_KEY": "secret_access_key",
    "RCLONE_REMOTE": "remote_name",
    "R2_ENDPOINT": "endpoint",
}


def load_config(path=None):
    """
    Load configuration from pruner_config.json (or `path`), merged over
    the defaults. A missing default file means defaults; an explicit path
    that does not exist is an error.
    """
    explicit = path is not None
    config_path = path or os.path.join(os.path.dirname(os.path.abspath(__file__)), CONFIG_FILE)

    if not os.path.exists(config_path):
        if explicit:
            raise MissingCredentialsError(f"Config file not found: {config_path}")
        logger.debug("No config file found, using defaults")
        return dict(DEFAULT_CONFIG)

    try:
        with open(config_path, 'r') as f:
            config = json.load(f)
    except (OSError, ValueError) as e:
        raise MissingCredentialsError(f"Could not load {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise MissingCredentialsError(f"{config_path} must contain a JSON object")

    logger.info(f"Loaded configuration from {config_path}")
    return {**DEFAULT_CONFIG, **config}


@dataclass
class StoreCredentials:
    account_id: str
    bucket: str
    api_token: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    remote_name: Optional[str] = None
    endpoint: Optional[str] = None

    @property
    def resolved_endpoint(self) -> str:
        return self.endpoint or f"https://{self.account_id}.r2.cloudflarestorage.com"

    @property
    def has_api_token(self) -> bool:
        return bool(self.api_token)


def load_credentials(env: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> StoreCredentials:
    """
    Credentials for the named environment; environment variables (and .env)
    override the config file values.
    """
    load_dotenv()
    config = config if config is not None else load_config()

    env = env or config.get("default_env") or "dev"
    environments = config.get("environments") or {}
    values = dict(environments.get(env) or {})
    if env not in environments:
        logger.debug(f"Environment '{env}' not in config, using environment variables only")

    for var, key in ENV_OVERRIDES.items():
        value = os.getenv(var)
        if value:
            values[key] = value

    missing = [key for key in ("account_id", "bucket") if not values.get(key)]
    if missing:
        raise MissingCredentialsError(
            f"Missing {', '.join(missing)} for environment '{env}'. "
            f"Set them in {CONFIG_FILE} or via R2_ACCOUNT_ID / R2_BUCKET."
        )

    known = {k: values.get(k) for k in StoreCredentials.__dataclass_fields__}
    return StoreCredentials(**known)


class MissingCredentialsError(Exception):
    pass
