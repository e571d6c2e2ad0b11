"""Background daemon: poll rooms, dispatch events.

Lifecycle::

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED

``STARTING`` takes exclusive ownership of the pid file (failing if a
live daemon already holds it), installs signal handlers, and primes
each room's cursor so history is not replayed.  ``RUNNING`` polls every
room once per interval and feeds new events into the session's
dispatcher.  SIGTERM, SIGINT, or SIGHUP request a stop, which takes
effect between poll cycles.  ``STOPPING`` closes the session and
releases the pid file, so the file disappears only after the loop has
finished.

A failed poll is logged and the room is skipped for an exponentially
growing delay, capped at ``max_backoff``.  Rate-limit responses use the
server's ``Retry-After`` instead.  One success resets the count.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from kindling.errors import (
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonNotRunningError,
    KindlingError,
    RateLimitError,
)
from kindling.session import Room, Session

logger = logging.getLogger(__name__)

_STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)
_STARTUP_TIMEOUT = 5.0
_STOP_TIMEOUT = 10.0
_WAIT_INTERVAL = 0.1


class DaemonState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def pid_alive(pid: int) -> bool:
    """Check whether a process with *pid* exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class PidFile:
    """Exclusive pid file.

    :meth:`acquire` creates the file with ``O_EXCL``.  An existing file
    that names a dead process (or holds garbage) is stale and replaced.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> int | None:
        """The pid stored in the file, or ``None`` if absent or unreadable."""
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def live_pid(self) -> int | None:
        """The stored pid if that process is alive, else ``None``."""
        pid = self.read()
        if pid is not None and pid_alive(pid):
            return pid
        return None

    def acquire(self) -> None:
        """Write our pid, or raise :class:`DaemonAlreadyRunningError`."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        me = os.getpid()
        for _ in range(3):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                live = self.live_pid()
                if live == me:
                    return
                if live is not None:
                    raise DaemonAlreadyRunningError(live) from None
                logger.info("Removing stale pid file %s", self.path)
                self.path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(f"{me}\n")
            return
        msg = f"Could not acquire pid file {self.path}"
        raise DaemonError(msg)

    def release(self) -> None:
        """Remove the file if it still names this process."""
        if self.read() == os.getpid():
            self.path.unlink(missing_ok=True)


@dataclass
class _RoomPoll:
    """Per-room polling state."""

    cursor: int | None = None
    primed: bool = False
    failures: int = 0
    retry_at: float = 0.0


class Daemon:
    """Single-loop poller feeding a session's dispatcher."""

    def __init__(
        self,
        session: Session,
        pid_file: PidFile,
        *,
        interval: float = 5.0,
        max_backoff: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.pid_file = pid_file
        self.interval = interval
        self.max_backoff = max_backoff
        self.state = DaemonState.STOPPED
        self._clock = clock
        self._stop = asyncio.Event()
        self._polls: dict[str, _RoomPoll] = {
            room.key: _RoomPoll() for room in session.rooms()
        }

    def request_stop(self) -> None:
        """Ask the loop to finish after the current cycle."""
        if not self._stop.is_set():
            logger.info("Stop requested")
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> None:
        """Run until a stop is requested.  Owns the pid file throughout."""
        self.state = DaemonState.STARTING
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        try:
            # The session is closed on every exit, including a failed acquire.
            self.pid_file.acquire()
            installed = self._install_signal_handlers(loop)
            logger.info(
                "Daemon started (pid %d) watching %d room(s)",
                os.getpid(),
                len(self._polls),
            )
            self.state = DaemonState.RUNNING
            while not self._stop.is_set():
                await self.poll_once()
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                except TimeoutError:
                    pass
        finally:
            self.state = DaemonState.STOPPING
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.session.close()
            self.pid_file.release()
            self.state = DaemonState.STOPPED
            logger.info("Daemon stopped")

    def _install_signal_handlers(
        self, loop: asyncio.AbstractEventLoop
    ) -> list[signal.Signals]:
        installed: list[signal.Signals] = []
        for sig in _STOP_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError, ValueError):
                continue
            installed.append(sig)
        return installed

    async def poll_once(self) -> int:
        """Poll every room that is not backing off.  Returns events dispatched."""
        dispatched = 0
        for room in self.session.rooms():
            if self._stop.is_set():
                break
            dispatched += await self._poll_room(room)
        return dispatched

    async def _poll_room(self, room: Room) -> int:
        poll = self._polls.setdefault(room.key, _RoomPoll())
        if self._clock() < poll.retry_at:
            return 0
        client = room.account.client
        try:
            if not poll.primed:
                await client.join_room(room.name)
            events, cursor = await client.poll_events(room.name, poll.cursor)
        except KindlingError as exc:
            self._record_failure(room, poll, exc)
            return 0

        if poll.failures:
            logger.info(
                "Polling %s recovered after %d failure(s)", room.key, poll.failures
            )
        poll.failures = 0
        poll.retry_at = 0.0
        poll.cursor = cursor
        if not poll.primed:
            poll.primed = True
            logger.info("Watching %s from message %s", room.key, cursor)
            return 0

        for event in events:
            self.session.dispatcher.dispatch(event)
        return len(events)

    def backoff_delay(self, failures: int) -> float:
        """Delay before retrying after *failures* consecutive failures."""
        return min(self.interval * 2 ** max(failures - 1, 0), self.max_backoff)

    def _record_failure(self, room: Room, poll: _RoomPoll, exc: KindlingError) -> None:
        poll.failures += 1
        delay = self.backoff_delay(poll.failures)
        if isinstance(exc, RateLimitError) and exc.retry_after is not None:
            delay = exc.retry_after
        poll.retry_at = self._clock() + delay
        logger.warning(
            "Polling %s failed (attempt %d): %s; retrying in %.0fs",
            room.key,
            poll.failures,
            exc,
            delay,
        )


# Process control ------------------------------------------------------------


def start_detached(
    pid_path: Path,
    log_path: Path,
    *,
    config_path: Path | None = None,
    verbose: bool = False,
    timeout: float = _STARTUP_TIMEOUT,
) -> int:
    """Launch ``kindling start --no-detach`` in a new session.

    Output goes to *log_path*.  Waits up to *timeout* seconds for the
    child to claim the pid file and returns its pid.
    """
    pid_file = PidFile(pid_path)
    live = pid_file.live_pid()
    if live is not None:
        raise DaemonAlreadyRunningError(live)

    command = [sys.executable, "-m", "kindling"]
    if config_path is not None:
        command += ["--config", str(config_path)]
    if verbose:
        command.append("--verbose")
    command += ["start", "--no-detach"]

    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a") as log_handle:
        proc = subprocess.Popen(  # noqa: S603
            command,
            stdin=subprocess.DEVNULL,
            stdout=log_handle,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pid_file.read() == proc.pid:
            return proc.pid
        if proc.poll() is not None:
            msg = (
                f"Daemon exited during startup (status {proc.returncode}); "
                f"see {log_path}"
            )
            raise DaemonError(msg)
        time.sleep(_WAIT_INTERVAL)
    return proc.pid


def stop_daemon(pid_file: PidFile, *, timeout: float = _STOP_TIMEOUT) -> int:
    """Signal the running daemon and wait for it to release the pid file.

    Returns the stopped daemon's pid.  A stale pid file is removed and
    reported as :class:`DaemonNotRunningError`.
    """
    pid = pid_file.read()
    if pid is None or not pid_alive(pid):
        if pid_file.path.exists():
            logger.info("Removing stale pid file %s", pid_file.path)
            pid_file.path.unlink(missing_ok=True)
        raise DaemonNotRunningError

    os.kill(pid, signal.SIGTERM)
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not pid_file.path.exists():
            return pid
        if not pid_alive(pid):
            # Died without cleaning up.
            pid_file.path.unlink(missing_ok=True)
            return pid
        time.sleep(_WAIT_INTERVAL)
    msg = f"Daemon (pid {pid}) did not stop within {timeout:.0f}s"
    raise DaemonError(msg)
