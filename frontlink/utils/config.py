"""
Configuration loading utility for frontlink.

This module loads and validates the YAML configuration file. Running without
a configuration file is allowed; every setting has a default.
"""

import yaml
from pathlib import Path
import logging
from pydantic import ValidationError
import sys
from typing import Optional

from .config_models import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "frontlink.yaml"
DEFAULT_STORE_DIR = Path(".config") / "frontlink"
DEFAULT_STORE_NAME = "frontlink.db"


def default_store_path() -> Path:
    """The store location used when neither the config nor the CLI names one."""
    return Path.home() / DEFAULT_STORE_DIR / DEFAULT_STORE_NAME


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Loads and validates a YAML configuration file.

    If `config_path` is None, `frontlink.yaml` in the working directory is used
    when it exists, otherwise the built-in defaults. An explicitly named file
    that is missing, unreadable or invalid is logged and terminates the program.

    Args:
        config_path (Optional[str]): The path to the YAML configuration file.

    Returns:
        AppConfig: The validated configuration.
    """
    if config_path is None:
        path = Path(DEFAULT_CONFIG_FILE)
        if not path.is_file():
            logger.debug("No configuration file found, using defaults.")
            return AppConfig()
    else:
        path = Path(config_path)
        if not path.is_file():
            logger.error(f"Configuration file not found or is not a file: '{path}'")
            sys.exit(1)

    logger.debug(f"Attempting to load and validate configuration from: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.error(f"Configuration file must contain a mapping: '{path}'")
            sys.exit(1)

        config = AppConfig.model_validate(data)

        logger.info(f"Successfully loaded and validated configuration from: '{path}'")
        return config

    except (yaml.YAMLError, IOError) as e:
        logger.error(f"Error reading or parsing YAML file '{path}': {e}", exc_info=True)
        sys.exit(1)
    except ValidationError as e:
        logger.error(f"Configuration validation failed:\n{e}")
        sys.exit(1)


def resolve_store_path(config: AppConfig, db_path: Optional[str] = None) -> Path:
    """CLI flag first, then the config file, then the default location."""
    if db_path:
        return Path(db_path).expanduser()
    if config.store.path:
        return Path(config.store.path).expanduser()
    return default_store_path()
