"""Application-root factory for the storage manager.

`create_manager(config)` composes the metadata store, key registry, platform
and manager. Nothing is created at import time, so tests and the UI shell can
each build isolated instances:

    from board_lib.main import create_manager
    from board_lib.config import load_config

    manager = create_manager(load_config(), picker=ask_user_for_folder)
    await manager.init()
"""
from __future__ import annotations
from pathlib import Path
from typing import Callable, Optional

from board_lib.config import StorageConfig
from board_lib.logging_config import configure_logging
from board_lib.storage import KeyRegistry, LocalPlatform, MetadataStore, StorageManager
from board_lib.storage.directory import DirectoryPlatform
from board_lib.storage.mirror import Mirror


def create_manager(
    config: Optional[StorageConfig] = None,
    platform: Optional[DirectoryPlatform] = None,
    picker: Optional[Callable[[], Optional[str | Path]]] = None,
    config_path: Optional[Path] = None,
) -> StorageManager:
    config = config or StorageConfig()
    logger = configure_logging(config_path, default_level=config.log_level)

    metadata = MetadataStore(config.metadata_db_path, max_bytes=config.fallback_max_bytes)
    registry = KeyRegistry(content_prefix=config.content_prefix, meta_keys=config.meta_keys)
    platform = platform or LocalPlatform(picker)

    manager = StorageManager(
        platform,
        metadata,
        registry,
        meta_keys=config.meta_keys,
        index_key=config.board_index_key,
        mirror=Mirror(max_bytes=config.mirror_max_bytes),
    )
    logger.info("Storage manager created (metadata store: %s)", config.metadata_db_path)
    return manager
