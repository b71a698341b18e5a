import logging
import sys
from typing import Dict, Optional

_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
_DATEFMT = '%Y-%m-%d %H:%M:%S'

_default_level = "INFO"
_configured: Dict[str, logging.Logger] = {}


def set_default_level(level: str) -> None:
    """Re-level every logger created so far and those created later."""
    global _default_level
    _default_level = level.upper()
    log_level = getattr(logging, _default_level)
    for logger in _configured.values():
        logger.setLevel(log_level)
        for handler in logger.handlers:
            handler.setLevel(log_level)


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    log_level = getattr(logging, (level or _default_level).upper())
    logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    _configured[name] = logger
    return logger
