from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Send records at ``level`` and above to stderr.

    The root logger itself is opened up to DEBUG so that the process log
    file can capture engine output the console does not show.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    console = _find_console_handler(root)
    if console is None:
        console = logging.StreamHandler()
        console.set_name("console")
        root.addHandler(console)
    console.setLevel(_coerce_level(level))
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))


@contextmanager
def process_log(prefix: str = "restic-backup-") -> Iterator[Path]:
    """Attach a temporary trace file for the duration of one run.

    Every record, including DEBUG output from restic, is appended to the
    file. The handler is detached and the file deleted on exit, whether the
    run completed or was cut short.
    """
    fd, raw_path = tempfile.mkstemp(prefix=prefix, suffix=".log")
    os.close(fd)
    path = Path(raw_path)

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    try:
        yield path
    finally:
        root.removeHandler(handler)
        handler.close()
        path.unlink(missing_ok=True)


def _find_console_handler(root: logging.Logger) -> Optional[logging.Handler]:
    for handler in root.handlers:
        if handler.get_name() == "console":
            return handler
    return None


def _coerce_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO
