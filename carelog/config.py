"""
carelog/config.py
Project config. Persists to carelog_config.json in the project root;
missing keys fall back to DEFAULT_CONFIG.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "carelog_config.json"

SIGNING_SECRET_ENV = "CARELOG_SIGNING_SECRET"

DEFAULT_CONFIG = {
    "store_path": "carelog.db",
    "store_backend": "sqlite",
    "model": "qwen2.5:7b",
    "ollama_host": "http://localhost:11434",
    "sample_limit": 400,
    "timeout_sec": 300,
    "strict_merge": False,
}


def _config_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path.cwd()
    return root / CONFIG_FILE_NAME


def load_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load config from carelog_config.json. Returns defaults if missing or unreadable."""
    path = _config_path(project_root)
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return {**DEFAULT_CONFIG, **data}
            logger.warning(f"Config at {path} is not an object — using defaults")
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Config load failed: {e}")
    return dict(DEFAULT_CONFIG)


def save_config(config: Dict[str, Any], project_root: Optional[Path] = None) -> Path:
    """Persist config to carelog_config.json."""
    path = _config_path(project_root)
    path.write_text(json.dumps(config, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def resolve_store_path(config: Dict[str, Any], project_root: Optional[Path] = None) -> Path:
    """store_path relative to the project root unless absolute."""
    path = Path(config.get("store_path") or DEFAULT_CONFIG["store_path"])
    if not path.is_absolute():
        path = (project_root or Path.cwd()) / path
    return path


def signing_secret() -> Optional[str]:
    """Archive signing secret from the environment. Never logged."""
    return os.environ.get(SIGNING_SECRET_ENV) or None
