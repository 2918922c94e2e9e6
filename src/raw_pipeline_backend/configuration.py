"""
Layered configuration for the processing pipeline.

Defaults ship with the package in ``config/config.yaml``. Environment
variables (optionally loaded from a local ``.env``) are merged on top, and
callers may pass an explicit override dictionary, which wins over both.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "config.yaml"

# Environment variable -> (dotted config path, cast).
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "LOG_LEVEL": ("log_level", str),
    "ADMIN_TABLE": ("tables.admin", str),
    "GALLERIES_TABLE": ("tables.galleries", str),
    "MEDIA_BUCKET": ("storage.bucket", str),
    "IMAGEN_API_KEY": ("editor.api_key", str),
    "IMAGEN_BASE_URL": ("editor.base_url", str),
    "IMAGEN_PROFILE_ID": ("editor.raw_profile_id", str),
    "IMAGEN_RAW_PROFILE_ID": ("editor.raw_profile_id", str),
    "IMAGEN_JPG_PROFILE_ID": ("editor.jpg_profile_id", str),
    "IMAGEN_REQUEST_TIMEOUT": ("editor.request_timeout", float),
    "UPLOAD_BATCH_SIZE": ("orchestrator.upload_batch_size", int),
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def _environment_overrides() -> Dict[str, Any]:
    """Collect overrides from the environment as a nested mapping."""
    overrides: Dict[str, Any] = {}
    # Later entries win, so IMAGEN_RAW_PROFILE_ID beats IMAGEN_PROFILE_ID.
    for env_name, (path, cast) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is None or not value.strip():
            continue
        section, _, leaf = path.rpartition(".")
        target = overrides
        if section:
            target = overrides.setdefault(section, {})
        target[leaf] = cast(value.strip())
    return overrides


def make_settings(overrides: Optional[Dict[str, Any]] = None, use_env: bool = True) -> DictConfig:
    base = OmegaConf.create(OmegaConf.to_container(_load_default_config(), resolve=False))
    OmegaConf.set_struct(base, True)

    layers = [base]
    if use_env:
        layers.append(OmegaConf.create(_environment_overrides()))
    if overrides:
        layers.append(OmegaConf.create(overrides))
    return DictConfig(OmegaConf.merge(*layers))


@lru_cache(maxsize=1)
def get_settings() -> DictConfig:
    load_dotenv()
    return make_settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Install a root handler once; later calls only adjust the level."""
    resolved = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel(getattr(logging, resolved, logging.INFO))
