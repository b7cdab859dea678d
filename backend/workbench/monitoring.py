# workbench/monitoring.py
"""
Structured logging for the workbench core.

Env vars (see workbench.config):
- LOG_LEVEL (default: INFO)
- LOG_AS_JSON (default: true)
"""

import logging

from pythonjsonlogger.json import JsonFormatter

from . import config


def setup_logger(name: str = "api-workbench", level=None) -> logging.Logger:
    if level is None:
        level = logging.getLevelName(config.LOG_LEVEL.upper())
        # unknown names come back as the string "Level <name>"
        if not isinstance(level, int):
            level = logging.INFO
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if config.LOG_AS_JSON:
            handler.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logger.addHandler(handler)
    return logger


logger = setup_logger()
