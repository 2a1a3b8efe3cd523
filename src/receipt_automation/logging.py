import logging
import os
from typing import List, Optional, Tuple, Union


ROOT_NAME = "receipt_automation"
FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATEFMT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _coerce_level(value: Optional[Union[str, int]]) -> int:
    if isinstance(value, bool):
        return logging.INFO
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    return logging.INFO


def _build_handlers(level: int) -> Tuple[List[logging.Handler], Optional[str]]:
    """Console handler plus the optional LOG_FILE handler (append mode)."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    problem = None
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as exc:
            problem = f"LOG_FILE {log_file!r} could not be opened ({exc}); logging to console only"
    formatter = logging.Formatter(fmt=FORMAT, datefmt=DATEFMT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers, problem


def get_logger(name: str) -> logging.Logger:
    """Return the module logger ``receipt_automation.<name>``.

    - Level from LOG_LEVEL (default INFO); LOG_FILE adds a file handler.
    - Configured once per name and never propagates to the root logger, so
      uvicorn or pytest logging setups do not duplicate lines.
    """
    qualified = name if name == ROOT_NAME or name.startswith(ROOT_NAME + ".") else f"{ROOT_NAME}.{name}"
    logger = logging.getLogger(qualified)
    if getattr(logger, "_receipt_configured", False):
        return logger

    level = _coerce_level(os.environ.get("LOG_LEVEL", "INFO"))
    logger.setLevel(level)
    handlers, problem = _build_handlers(level)
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False
    setattr(logger, "_receipt_configured", True)
    if problem:
        logger.warning(problem)
    return logger


def set_level(level: Union[str, int]) -> int:
    """Apply a level to every receipt_automation logger configured so far."""
    lvl = _coerce_level(level)
    for logger in list(logging.root.manager.loggerDict.values()):
        if not isinstance(logger, logging.Logger) or not getattr(logger, "_receipt_configured", False):
            continue
        logger.setLevel(lvl)
        for handler in logger.handlers:
            handler.setLevel(lvl)
    return lvl
