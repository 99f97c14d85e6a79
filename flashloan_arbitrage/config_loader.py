"""
Configuration loading for the arbitrage pipeline.

Reads the YAML file once at startup, validates it against the pydantic
schema and resolves secrets from the environment (optionally seeded from
a .env file). Every failure surfaces as ConfigurationError.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from .config_schema import BotConfig, validate_bot_config
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}",
            {"config_file": str(config_path)},
        )

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in {config_path}: {e}", {"config_file": str(config_path)}
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read config {config_path}: {e}",
            {"config_file": str(config_path)},
        ) from e

    if config_dict is None:
        raise ConfigurationError(
            f"Empty configuration file: {config_path}", {"config_file": str(config_path)}
        )
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"Configuration root must be a mapping: {config_path}",
            {"config_file": str(config_path)},
        )

    return config_dict


def load_bot_config(
    config_path: Union[str, Path], env_file: Optional[Union[str, Path]] = None
) -> BotConfig:
    """
    Load, validate and return the pipeline configuration.

    Args:
        config_path: Path to the YAML configuration file
        env_file: Optional .env file; defaults to searching from the working directory

    Returns:
        Validated BotConfig

    Raises:
        ConfigurationError: If the file is missing, unparsable or fails validation
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    config_dict = load_yaml_config(config_path)
    try:
        config = validate_bot_config(config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration in {config_path}",
            {"config_file": str(config_path), "errors": e.errors()},
        ) from e

    logger.info(
        f"Loaded config {config_path}: {len(config.chains)} chains, "
        f"{len(config.pairs)} pairs, {len(config.triangles)} triangles, "
        f"{len(config.cross_chain)} cross-chain tokens"
    )
    return config


def resolve_secret(env_name: str) -> str:
    """
    Read a secret from the environment.

    The value is never logged; only the variable name appears in errors.
    """
    value = os.getenv(env_name)
    if not value:
        raise ConfigurationError(
            f"Environment variable {env_name} is not set", {"env": env_name}
        )
    return value
