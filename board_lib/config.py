from __future__ import annotations
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("data/config/storage_config.yml")

DEFAULT_META_KEYS = [
    "wb_boards",
    "wb_folders",
    "wb_view_settings",
    "wb_expanded_folders",
    "wb_custom_covers",
]


class StorageConfig(BaseModel):
    metadata_db_path: str = "data/wb_storage_meta.sqlite3"
    log_level: str = "WARNING"
    content_prefix: str = "wb_content_"
    board_index_key: str = "wb_boards"
    meta_keys: List[str] = Field(default_factory=lambda: list(DEFAULT_META_KEYS))
    mirror_max_bytes: Optional[int] = None
    fallback_max_bytes: Optional[int] = None


def load_config(path: Optional[str | Path] = None) -> StorageConfig:
    """Load `StorageConfig` from YAML.

    A missing file yields the defaults. A file that does not parse, or does
    not hold a mapping of valid settings, raises `ValueError`.
    """
    cfg_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not cfg_path.exists():
        logger.debug("No storage config at %s; using defaults", cfg_path)
        return StorageConfig()
    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError("invalid config format: parse error") from e
    if not isinstance(data, dict):
        raise ValueError("invalid config format: expected mapping")
    try:
        return StorageConfig(**data)
    except ValidationError as e:
        raise ValueError(f"invalid config values: {e}") from e
