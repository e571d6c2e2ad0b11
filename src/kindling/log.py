"""Logging setup and daemon log reading.

The CLI logs warnings to stderr; the daemon logs to ``kindling.log``
in the state directory.  ``kindling log tail`` and ``kindling log view``
read that file back.
"""

from __future__ import annotations

import logging
import sys
import time
from collections import deque
from collections.abc import Callable, Iterator
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_FOLLOW_INTERVAL = 0.5


def configure_logging(*, verbose: bool = False, log_path: Path | None = None) -> None:
    """Install a single handler on the ``kindling`` logger.

    With *log_path* the handler appends to that file, otherwise it
    writes to stderr.  *verbose* lowers the level to DEBUG.  Calling
    again replaces the previous handler.
    """
    root = logging.getLogger("kindling")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    handler: logging.Handler
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        level = logging.DEBUG if verbose else logging.INFO
    else:
        handler = logging.StreamHandler(sys.stderr)
        level = logging.DEBUG if verbose else logging.WARNING
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False


def tail_lines(path: Path, count: int = 20) -> list[str]:
    """Return the last *count* lines of *path* (without newlines)."""
    if not path.exists():
        return []
    with path.open(encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]


def follow(
    path: Path,
    *,
    interval: float = _FOLLOW_INTERVAL,
    should_stop: Callable[[], bool] = lambda: False,
) -> Iterator[str]:
    """Yield lines appended to *path* after the call, like ``tail -f``.

    Reopens the file when it shrinks (truncated or rotated).  Stops
    when *should_stop* returns true.
    """
    position = path.stat().st_size if path.exists() else 0
    pending = b""
    while not should_stop():
        size = path.stat().st_size if path.exists() else 0
        if size < position:
            position = 0
            pending = b""
        if size > position:
            with path.open("rb") as f:
                f.seek(position)
                chunk = f.read()
                position = f.tell()
            *complete, pending = (pending + chunk).split(b"\n")
            for line in complete:
                yield line.decode("utf-8", errors="replace")
            continue
        time.sleep(interval)
