import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError

# Load params from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# Paths are relative to the hook's working directory (the bare repo for server hooks).
DEFAULT_DENYLIST_PATH = "denylist"
DEFAULT_CACHE_PATH = "denylist.db"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_LOG_FORMAT = "text"
DEFAULT_FORMATTER_TIMEOUT = 5.0

DEFAULT_CONFIG_PATH = "pushgate.yaml"

_ENV_KEYS = {
    "denylist_path": "PUSHGATE_DENYLIST_PATH",
    "cache_path": "PUSHGATE_CACHE_PATH",
    "template_path": "PUSHGATE_TEMPLATE_PATH",
    "annotation_formatter": "PUSHGATE_ANNOTATION_FORMATTER",
    "formatter_timeout": "PUSHGATE_FORMATTER_TIMEOUT",
    "git_binary": "PUSHGATE_GIT_BINARY",
    "git_dir": "PUSHGATE_GIT_DIR",
    "log_level": "PUSHGATE_LOG_LEVEL",
    "log_format": "PUSHGATE_LOG_FORMAT",
}


class HookSettings(BaseModel):
    """Resolved configuration for one hook run."""
    model_config = ConfigDict(extra="forbid")

    denylist_path: str = DEFAULT_DENYLIST_PATH
    cache_path: str = DEFAULT_CACHE_PATH
    template_path: Optional[str] = None
    annotation_formatter: Optional[str] = None
    formatter_timeout: float = DEFAULT_FORMATTER_TIMEOUT
    git_binary: str = "git"
    git_dir: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_LOG_FORMAT


def _env_settings() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for field_name, env_name in _ENV_KEYS.items():
        raw = os.getenv(env_name)
        if raw is not None and str(raw).strip():
            values[field_name] = str(raw).strip()
    return values


def _file_settings(config_path: Optional[str]) -> Dict[str, Any]:
    """
    Read the optional YAML config. Best-effort: a broken file is reported and
    ignored rather than failing the push.
    """
    if not config_path or not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to load config %s: %s", config_path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: expected a mapping, got %s", config_path, type(data).__name__)
        return {}
    section = data.get("pushgate", data)
    if not isinstance(section, dict):
        return {}
    known = set(HookSettings.model_fields)
    unknown = sorted(set(section) - known)
    if unknown:
        logger.warning("Ignoring unknown keys in %s: %s", config_path, ", ".join(unknown))
    return {k: v for k, v in section.items() if k in known and v is not None}


def load_settings(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> HookSettings:
    """
    Resolve settings: defaults < environment < YAML file < explicit overrides
    (CLI flags). Overrides that are None are ignored.
    """
    merged: Dict[str, Any] = {}
    merged.update(_env_settings())
    if config_path is None:
        config_path = os.getenv("PUSHGATE_CONFIG", DEFAULT_CONFIG_PATH)
    merged.update(_file_settings(config_path))
    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})
    try:
        return HookSettings(**merged)
    except ValidationError as e:
        raise ValueError(f"Invalid pushgate configuration: {e}") from e
