from __future__ import annotations
import logging
import os

# Small logger so modules can do: from defi_core.utils import get_logger
def get_logger(name: str = "defi_core"):
    lvl = os.getenv("LOG_LEVEL", "INFO").upper()
    logger = logging.getLogger(name)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=getattr(logging, lvl, logging.INFO),
                            format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return logger

log = get_logger()

# Some callers import:  from defi_core.utils import load_config
from .env_tools import load_config, load_env_once, env_flag  # noqa: E402

__all__ = ["get_logger", "log", "load_config", "load_env_once", "env_flag"]
