"""Host-local advisory lock backed by a pid file."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class LoopLock(Protocol):
    """Mutual exclusion used by the supervisor between iterations."""

    def acquire(self) -> bool:
        """Take the lock if free; return whether it is now held."""

    def release(self) -> None:
        """Drop the lock unconditionally."""


def is_process_running(pid: int) -> bool:
    """Return whether ``pid`` refers to a live process on this host."""

    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, but owned by another user.
        return True
    return True


class PidFileLock:
    """Lock whose record is the owner's decimal pid.

    A record naming a dead or unparseable pid is stale and is cleared on the
    next ``acquire``. The read-check-write sequence is not atomic; the lock
    serializes one operator's local invocations and nothing more.
    """

    def __init__(self, path: Path, *, pid: int | None = None) -> None:
        self.path = path
        self.pid = pid if pid is not None else os.getpid()

    def holder_pid(self) -> int | None:
        """Pid recorded in the lock file, or ``None`` if absent/unreadable."""

        try:
            raw = self.path.read_text("utf-8").strip()
        except (OSError, UnicodeDecodeError):
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def is_held(self) -> bool:
        holder = self.holder_pid()
        return holder is not None and is_process_running(holder)

    def acquire(self) -> bool:
        if self.path.exists():
            holder = self.holder_pid()
            if holder is not None and is_process_running(holder):
                return False
            logger.warning(
                "Removing stale lock file %s (PID %s no longer running)",
                self.path,
                holder if holder is not None else "unknown",
            )
            self.path.unlink(missing_ok=True)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{self.pid}\n", "utf-8")
        return True

    def release(self) -> None:
        self.path.unlink(missing_ok=True)
