"""Guard against two orchestrators sharing one Telegram session.

Two processes on the same session file would both receive every update,
publish duplicate drafts and fight over the SQLite session. The lock is a
``fcntl.flock`` (``msvcrt.locking`` on Windows) on ``<session>.lock`` held for
the lifetime of the returned context manager.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)


class InstanceAlreadyRunning(RuntimeError):
    """Raised when another orchestrator holds the lock for this session."""


def lock_path_for(session_file: str | Path) -> Path:
    session = Path(session_file)
    return session.with_name(session.name + ".lock")


@contextmanager
def acquire_instance_lock(session_file: str | Path) -> Generator[Path, None, None]:
    """Hold the session lock; raises :class:`InstanceAlreadyRunning` if taken."""
    lock_path = lock_path_for(session_file)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
    try:
        _try_lock(fd, lock_path)
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.info("[LOCK] Instance lock acquired: %s (pid=%s)", lock_path, os.getpid())
        yield lock_path
    finally:
        _unlock(fd)
        os.close(fd)
    logger.info("[LOCK] Instance lock released.")


def _try_lock(fd: int, lock_path: Path) -> None:
    try:
        if sys.platform == "win32":
            import msvcrt
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        else:
            import fcntl
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        owner = "unknown"
        try:
            owner = lock_path.read_text().strip() or owner
        except OSError:
            pass
        raise InstanceAlreadyRunning(
            f"Another orchestrator is already using this session (pid={owner}). Lock file: {lock_path}"
        ) from None


def _unlock(fd: int) -> None:
    try:
        if sys.platform == "win32":
            import msvcrt
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
        else:
            import fcntl
            fcntl.flock(fd, fcntl.LOCK_UN)
    except OSError:
        logger.debug("[LOCK] Unlock failed", exc_info=True)
