from __future__ import annotations
import logging
from pathlib import Path
import yaml
from typing import Optional

from board_lib.config import DEFAULT_CONFIG_PATH


def configure_logging(config_path: Optional[Path] = None, default_level: str = "WARNING") -> logging.Logger:
    """Configure root logging for the storage layer.

    The level comes from `log_level` in the storage YAML config and falls
    back to `default_level` when the file is absent or unreadable. Returns a module
    logger for the caller.
    """
    level = getattr(logging, default_level.upper(), logging.WARNING)

    cfg_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if cfg_path.exists():
        try:
            with cfg_path.open('r', encoding='utf-8') as _f:
                _cfg = yaml.safe_load(_f) or {}
                _lvl = _cfg.get('log_level')
                if _lvl:
                    level = getattr(logging, str(_lvl).upper())
        except Exception:
            level = getattr(logging, default_level.upper(), logging.WARNING)

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s [%(name)s]: %(message)s')
    logger = logging.getLogger(__name__)
    logger.info("Log level set to %s", logging.getLevelName(level))
    return logger
