"""Configuration module for loading advisor settings and API credentials."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Environment variable names for every external collaborator credential
API_KEY_VARS = {
    "serper": "SERPER_API_KEY",
    "huggingface": "HUGGINGFACE_API_KEY",
    "alpha_vantage": "ALPHA_VANTAGE_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

DEFAULT_TIMEOUT_SECONDS = 15.0


def load_config(config_path: Optional[str | Path] = None) -> Dict[str, Any]:
    """
    Read the advisor settings from YAML.

    Args:
        config_path (Optional[str | Path]): Settings file. When omitted, ``ADVISOR_CONFIG``
            is consulted, then ``config.yaml`` in the working directory.

    Returns:
        Dict[str, Any]: Top-level sections keyed by stage name.

    Raises:
        FileNotFoundError: The file does not exist.
        ValueError: The file is empty or its top level is not a mapping.
    """
    path = Path(config_path or os.getenv("ADVISOR_CONFIG", "config.yaml"))
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found at {path}")

    settings = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not settings:
        raise ValueError(f"Configuration file {path} is empty or invalid.")
    if not isinstance(settings, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping of sections.")

    return settings


def get_api_key(service: str) -> Optional[str]:
    """Return the API key for ``service`` from the environment, or None if unset/blank."""
    var = API_KEY_VARS.get(service)
    if var is None:
        raise KeyError(f"Unknown service for API key lookup: {service}")
    value = os.getenv(var, "").strip()
    return value or None


def section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a config section as a dict (empty when absent)."""
    return config.get(name) or {}


def timeout_for(config: Dict[str, Any], name: str) -> float:
    """Return ``<name>.timeout_seconds`` as float, falling back to the default."""
    return float(section(config, name).get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
