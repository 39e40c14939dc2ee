"""Logging for faceid.

All modules log under the ``faceid`` namespace. The root handler is configured
once at import; ``FACEID_LOG_LEVEL`` (e.g. ``DEBUG``) overrides the INFO default
and ``set_level`` changes it at runtime.
"""

import logging
import os

from contextlib import contextmanager
from typing import Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
ROOT_LOGGER = "faceid"

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def _parse_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def set_level(level: Union[int, str]) -> int:
    """Set the level of every faceid logger (and the CLI entry script)."""
    value = _parse_level(level)
    logging.getLogger(ROOT_LOGGER).setLevel(value)
    logging.getLogger("face_recognizer").setLevel(value)
    return value


def get_logger(name: str) -> logging.Logger:
    # The CLI script lives outside the package; keep it under the same switch.
    if name == "__main__":
        name = "face_recognizer"
    return logging.getLogger(name)


@contextmanager
def suppress_fds():
    """Redirect FD 1 and 2 to /dev/null while a native runtime initialises.

    ONNX Runtime and InsightFace print straight to the process descriptors,
    bypassing sys.stdout/sys.stderr and the logging module.
    """
    devnull = os.open(os.devnull, os.O_RDWR)
    saved = (os.dup(1), os.dup(2))
    try:
        os.dup2(devnull, 1)
        os.dup2(devnull, 2)
        yield
    finally:
        for fd, old in zip((1, 2), saved):
            os.dup2(old, fd)
            os.close(old)
        os.close(devnull)


if os.environ.get("FACEID_LOG_LEVEL"):
    try:
        set_level(os.environ["FACEID_LOG_LEVEL"])
    except ValueError as e:
        logging.getLogger(ROOT_LOGGER).warning(f"Ignoring FACEID_LOG_LEVEL: {e}")
