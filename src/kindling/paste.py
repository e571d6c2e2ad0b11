"""Paste content sources for ``kindling paste``.

``--from`` selects where the paste comes from:

- ``clip``: the system clipboard
- ``sel``: the X11/Wayland primary selection
- ``stdin``: standard input, verbatim
- ``file``: the file named by the argument
- ``arg``: the argument text itself
- ``auto``: file if the argument names one, else the argument, else
  piped stdin, else the clipboard
"""

from __future__ import annotations

import shutil
import subprocess
import sys
from enum import StrEnum
from pathlib import Path
from typing import TextIO

from kindling.errors import PasteError


class PasteSource(StrEnum):
    CLIP = "clip"
    SEL = "sel"
    STDIN = "stdin"
    FILE = "file"
    ARG = "arg"
    AUTO = "auto"


# First available command wins.
CLIPBOARD_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("pbpaste",),
    ("wl-paste", "--no-newline"),
    ("xclip", "-selection", "clipboard", "-o"),
    ("xsel", "--clipboard", "--output"),
)
SELECTION_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("wl-paste", "--primary", "--no-newline"),
    ("xclip", "-selection", "primary", "-o"),
    ("xsel", "--primary", "--output"),
)


def _run_first_available(commands: tuple[tuple[str, ...], ...], what: str) -> str:
    for command in commands:
        exe = shutil.which(command[0])
        if exe is None:
            continue
        result = subprocess.run(  # noqa: S603
            [exe, *command[1:]],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            msg = f"{command[0]} failed reading the {what}: {result.stderr.strip()}"
            raise PasteError(msg)
        return result.stdout
    tools = ", ".join(c[0] for c in commands)
    msg = f"Cannot read the {what}: none of {tools} is installed"
    raise PasteError(msg)


def read_clipboard() -> str:
    return _run_first_available(CLIPBOARD_COMMANDS, "clipboard")


def read_selection() -> str:
    return _run_first_available(SELECTION_COMMANDS, "selection")


def resolve_source(
    source: PasteSource, value: str | None, stdin: TextIO
) -> PasteSource:
    """Resolve ``auto`` to a concrete source."""
    if source is not PasteSource.AUTO:
        return source
    if value is not None:
        if Path(value).expanduser().is_file():
            return PasteSource.FILE
        return PasteSource.ARG
    if not stdin.isatty():
        return PasteSource.STDIN
    return PasteSource.CLIP


def read_paste(
    source: PasteSource, value: str | None = None, *, stdin: TextIO | None = None
) -> str:
    """Read paste content from *source*.

    Content is returned verbatim.  Raises
    :class:`~kindling.errors.PasteError` when the source is unusable
    or yields nothing but whitespace.
    """
    stream = stdin if stdin is not None else sys.stdin
    resolved = resolve_source(source, value, stream)

    if resolved is PasteSource.STDIN:
        content = stream.read()
    elif resolved is PasteSource.FILE:
        if value is None:
            raise PasteError("--from file requires a filename")
        path = Path(value).expanduser()
        try:
            content = path.read_text()
        except OSError as exc:
            msg = f"Cannot read {path}: {exc.strerror or exc}"
            raise PasteError(msg) from exc
    elif resolved is PasteSource.ARG:
        if value is None:
            raise PasteError("--from arg requires text")
        content = value
    elif resolved is PasteSource.SEL:
        content = read_selection()
    else:
        content = read_clipboard()

    if not content.strip():
        msg = f"Nothing to paste from {resolved.value}"
        raise PasteError(msg)
    return content
