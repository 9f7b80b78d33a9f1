"""Configuration loader for the storage console."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from core.config_models import ConsoleConfig

LOGGER = logging.getLogger(__name__)


def load_config(
    config_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> ConsoleConfig:
    """Load console configuration from YAML and environment variables.

    A missing ``config.yaml`` is not an error: a fresh install starts with the
    local backend only and the remote endpoint can be configured later.
    """

    base_path = Path(__file__).resolve().parents[1]
    if config_path is None:
        config_path = base_path / "config.yaml"
    if env_path is None:
        default_env = base_path / ".env"
        if default_env.exists():
            env_path = default_env

    load_dotenv(dotenv_path=env_path, override=False)

    config_path = Path(config_path)
    if not config_path.exists():
        LOGGER.info("No config file at %s, using defaults", config_path)
        return ConsoleConfig()

    with open(config_path, "r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping at the top level")
    return ConsoleConfig.from_dict(data)


__all__ = ["load_config"]
