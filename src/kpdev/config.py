"""
kpdev Project Configuration.

Settings are read from the project's `.kpdev/config.json`, then from
`KPDEV_*` environment variables and the project's `.env` file.
The config file wins over the environment, the environment over `.env`.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_DIR = ".kpdev"
CONFIG_FILE = "config.json"
ENV_FILE = ".env"


class ConfigError(Exception):
    """Raised when the project configuration cannot be loaded."""
    pass


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_to_file: bool = False
    log_file: str = ".kpdev/kpdev.log"
    rotation_size_mb: int = 10
    rotation_backup_count: int = 5
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class AuthConfig(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class ProdEnvConfig(BaseModel):
    """A named kintone environment that production packages are deployed to."""

    name: str
    domain: str
    auth: AuthConfig = Field(default_factory=AuthConfig)


class KintoneConfig(BaseModel):
    # `dev` (the hot-reload environment) is not read by kpdev
    prod: list[ProdEnvConfig] = Field(default_factory=list)


class TargetsConfig(BaseModel):
    """Which device surfaces the plugin runs on."""

    desktop: bool = True
    mobile: bool = False


class DeployConfig(BaseModel):
    # Bound on every HTTP call made while deploying.
    timeout_seconds: float = 30.0


class ProjectSettings(BaseSettings):
    """
    Settings for a single plugin project.

    `username` / `password` map to KPDEV_USERNAME / KPDEV_PASSWORD and are
    the shared credentials for deploy targets that have none of their own.
    """

    logging: LoggingConfig = LoggingConfig()
    kintone: KintoneConfig = Field(default_factory=KintoneConfig)
    targets: TargetsConfig = Field(default_factory=TargetsConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)

    username: Optional[str] = None
    password: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="KPDEV_",
        env_nested_delimiter="__",
        # config.json also carries dev-server and scaffolding settings
        extra="ignore",
    )


def get_config_dir(project_dir: Path) -> Path:
    return Path(project_dir) / CONFIG_DIR


def get_config_path(project_dir: Path) -> Path:
    return get_config_dir(project_dir) / CONFIG_FILE


def load_settings(project_dir: Path) -> ProjectSettings:
    """
    Load the settings for the project rooted at `project_dir`.

    The parsed config file is passed as init data, which pydantic-settings
    gives the highest priority; environment variables and `.env` only fill
    in what the file leaves unset.

    Raises:
        ConfigError: If the config file is missing, unreadable or invalid.
    """
    project_dir = Path(project_dir)
    config_path = get_config_path(project_dir)

    if not config_path.is_file():
        raise ConfigError(
            f"Config file not found: {config_path}"
        )

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a JSON object")

    try:
        settings = ProjectSettings(_env_file=project_dir / ENV_FILE, **data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{e}") from e

    logger.debug(f"Loaded settings from {config_path}")
    return settings


def load_environment(project_dir: Path) -> dict[str, str]:
    """
    Return the process environment layered over the project's `.env` file.

    Used for lookups that have no settings field, such as per-environment
    deploy credentials (KPDEV_PROD_<NAME>_USERNAME).
    """
    env_path = Path(project_dir) / ENV_FILE
    merged: dict[str, str] = {}
    if env_path.is_file():
        merged.update(
            {k: v for k, v in dotenv_values(env_path).items() if v is not None}
        )
    merged.update(os.environ)
    return merged
