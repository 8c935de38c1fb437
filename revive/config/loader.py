import logging
from pathlib import Path
from typing import Optional
import yaml
from pydantic import ValidationError
from revive.config.models import AppConfig

logger = logging.getLogger(__name__)

def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.
    Returns defaults if the file doesn't exist; raises ValueError on invalid content.
    """
    if config_path is None or not Path(config_path).exists():
        if config_path is not None:
            logger.warning(f"Config file not found at {config_path}, using defaults.")
        return AppConfig()

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping at the top level")

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e
