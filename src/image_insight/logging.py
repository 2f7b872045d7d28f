import logging
import os
from typing import Optional, Union


ROOT_NAME = "image_insight"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(value: Union[str, int, None]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


def configure_logging(
    level: Union[str, int, None] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """(Re)configure the package root logger.

    ``level`` and ``log_file`` fall back to LOG_LEVEL / LOG_FILE. Calling it
    again replaces the handlers installed by a previous call, so the CLI can
    apply ``--log-level`` after modules have already created their loggers.
    """
    root = logging.getLogger(ROOT_NAME)
    resolved = _coerce_level(level if level is not None else os.environ.get("LOG_LEVEL", "INFO"))
    path = log_file if log_file is not None else os.environ.get("LOG_FILE")

    for handler in [h for h in root.handlers if getattr(h, "_insight_handler", False)]:
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)
    handlers = [logging.StreamHandler()]
    file_error = None
    if path:
        try:
            handlers.append(logging.FileHandler(path, encoding="utf-8"))
        except OSError as exc:
            file_error = exc
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, "_insight_handler", True)
        root.addHandler(handler)

    root.setLevel(resolved)
    # Package records stop here; the host application's root logger is untouched
    root.propagate = False
    setattr(root, "_insight_configured", True)
    if file_error is not None:
        root.warning(f"LOG_FILE {path!r} could not be opened ({file_error}); continuing without file logging")
    return root


def get_logger(name: str) -> logging.Logger:
    """Return ``image_insight.<name>``; the first call configures the package root."""
    root = logging.getLogger(ROOT_NAME)
    if not getattr(root, "_insight_configured", False):
        configure_logging()
    return logging.getLogger(f"{ROOT_NAME}.{name}")
