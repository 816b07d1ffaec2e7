"""
Advisory file lock for cross-process coordination.

Provides a LockManager class that manages:
- Exclusive creation of a sentinel lock file (create-if-absent)
- Bounded polling until the lock is free or a deadline passes
- Reclamation of stale or corrupt locks left by crashed processes
- Re-entrant holds within one manager and thread

The lock file content is JSON used for diagnostics only:

    {"version": "1.0", "operation": "backup", "pid": 4242,
     "created": "2024-01-20T10:30:00+00:00", "hostname": "laptop"}
"""

from __future__ import annotations

import json
import logging
import os
import socket
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_VERSION = "1.0"

# Lock file name inside the configuration directory
LOCK_FILE_NAME = ".backup-lock"

# Owner-only permissions for the sentinel
LOCK_FILE_MODE = 0o600

# Defaults (seconds)
DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRY_INTERVAL = 0.1
DEFAULT_MAX_RETRIES = 300
DEFAULT_STALE_AFTER = 300.0


class LockError(Exception):
    """Base exception for lock-related errors."""

    pass


class LockTimeoutError(LockError):
    """
    Raised when a lock cannot be acquired in time.

    Attributes:
        lock_path: Path of the contended lock file
        holder: Lock record of the current holder, if it could be read
    """

    def __init__(self, lock_path: Path, holder: Lock | None, reason: str):
        self.lock_path = lock_path
        self.holder = holder
        if holder is not None:
            message = (
                f"Locked by '{holder.operation}' (PID {holder.pid}) "
                f"since {holder.created.isoformat()}; {reason}"
            )
        else:
            message = f"Could not acquire lock {lock_path}; {reason}"
        super().__init__(message)


class StaleLockError(LockError):
    """Raised internally when an existing lock is stale or unreadable."""

    pass


@dataclass
class Lock:
    """
    Lock record stored in the sentinel file.

    Attributes:
        operation: Name of the operation holding the lock
        pid: Process ID of the holder
        created: When the lock was acquired (timezone-aware UTC)
        hostname: Host of the holder
        version: Record schema version
    """

    operation: str
    pid: int = field(default_factory=os.getpid)
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    hostname: str = field(default_factory=socket.gethostname)
    version: str = LOCK_VERSION

    def age(self, now: datetime | None = None) -> float:
        """Seconds since the lock was created."""
        now = now or datetime.now(timezone.utc)
        return (now - self.created).total_seconds()

    def is_stale(self, threshold: float, now: datetime | None = None) -> bool:
        """
        Whether the lock is older than threshold seconds.

        A record dated more than threshold seconds in the future is stale too.
        """
        return abs(self.age(now)) > threshold

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "operation": self.operation,
            "pid": self.pid,
            "created": self.created.isoformat(),
            "hostname": self.hostname,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Lock:
        """
        Parse a lock record.

        Raises:
            StaleLockError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise StaleLockError(f"Lock record must be an object, got {data!r}")

        try:
            operation = data["operation"]
            pid = data["pid"]
            created = datetime.fromisoformat(data["created"])
        except (KeyError, TypeError, ValueError) as e:
            raise StaleLockError(f"Malformed lock record: {e}") from e

        if not isinstance(operation, str) or not isinstance(pid, int):
            raise StaleLockError("Malformed lock record: bad operation or pid")

        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)

        return cls(
            operation=operation,
            pid=pid,
            created=created,
            hostname=str(data.get("hostname", "")),
            version=str(data.get("version", LOCK_VERSION)),
        )


class LockManager:
    """
    Manager for the advisory sentinel-file lock.

    Usage:
        locks = LockManager(stale_after=300)

        # Context manager
        with locks.hold(config_dir / ".backup-lock", "backup"):
            ...

        # Callable form
        result = locks.with_lock(lock_path, do_work, operation="restore")

    Attributes:
        timeout: Default seconds to wait in acquire()
        retry_interval: Default seconds between attempts
        max_retries: Default maximum number of attempts
        stale_after: Age in seconds after which an existing lock is reclaimed
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        stale_after: float = DEFAULT_STALE_AFTER,
    ):
        self.timeout = timeout
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self.stale_after = stale_after

        # path -> [owning thread id, hold depth]
        self._held: dict[Path, list[int]] = {}
        self._guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Any) -> LockManager:
        """Create a manager from a LockSettings instance."""
        return cls(
            timeout=settings.timeout,
            retry_interval=settings.retry_interval,
            max_retries=settings.max_retries,
            stale_after=settings.stale_after,
        )

    def acquire(
        self,
        lock_path: Path | str,
        operation: str = "unknown",
        timeout: float | None = None,
        retry_interval: float | None = None,
        max_retries: int | None = None,
    ) -> Lock:
        """
        Acquire the lock, polling until it is free.

        Args:
            lock_path: Path of the sentinel file
            operation: Name recorded in the lock for diagnostics
            timeout: Seconds to keep trying (default: manager setting)
            retry_interval: Seconds between attempts (default: manager setting)
            max_retries: Maximum attempts (default: manager setting)

        Returns:
            The Lock record written (or the held record on re-entry).

        Raises:
            LockTimeoutError: If the deadline or retry budget is exhausted.
            LockError: If the lock file cannot be created for another reason.
        """
        lock_path = Path(lock_path)
        timeout = self.timeout if timeout is None else timeout
        if retry_interval is None:
            retry_interval = self.retry_interval
        max_retries = self.max_retries if max_retries is None else max_retries

        reentered = self._reenter(lock_path)
        if reentered is not None:
            return reentered

        start = time.monotonic()
        attempts = 0
        holder: Lock | None = None

        while attempts < max_retries:
            attempts += 1
            lock = Lock(operation=operation)

            if self._try_create(lock_path, lock):
                with self._guard:
                    self._held[lock_path] = [threading.get_ident(), 1]
                logger.debug(
                    f"Acquired lock {lock_path} for '{operation}' "
                    f"after {attempts} attempt(s)"
                )
                return lock

            try:
                holder = self._read_existing(lock_path)
            except StaleLockError as e:
                logger.warning(f"Removing stale lock {lock_path}: {e}")
                self._unlink(lock_path)
                holder = None
                continue

            if holder is None:
                # Released between our create attempt and the read
                continue

            if time.monotonic() - start >= timeout:
                raise LockTimeoutError(
                    lock_path, holder, f"timed out after {timeout:g}s"
                )

            time.sleep(retry_interval)

        raise LockTimeoutError(
            lock_path, holder, f"gave up after {max_retries} attempts"
        )

    def release(self, lock_path: Path | str) -> None:
        """
        Release the lock.

        Removing a lock that does not exist is not an error. Re-entrant
        holds only remove the file when the outermost hold is released.

        Raises:
            LockError: If the lock file exists but cannot be removed.
        """
        lock_path = Path(lock_path)

        with self._guard:
            entry = self._held.get(lock_path)
            if entry is not None and entry[0] == threading.get_ident():
                entry[1] -= 1
                if entry[1] > 0:
                    return
                del self._held[lock_path]

        try:
            lock_path.unlink()
            logger.debug(f"Released lock {lock_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LockError(f"Failed to remove lock file {lock_path}: {e}") from e

    @contextmanager
    def hold(
        self,
        lock_path: Path | str,
        operation: str = "unknown",
        **options: Any,
    ) -> Iterator[Lock]:
        """
        Hold the lock for the duration of a with-block.

        Args:
            lock_path: Path of the sentinel file
            operation: Name recorded in the lock
            **options: timeout, retry_interval, max_retries overrides
        """
        lock = self.acquire(lock_path, operation, **options)
        try:
            yield lock
        finally:
            self.release(lock_path)

    def with_lock(
        self,
        lock_path: Path | str,
        func: Callable[[], T],
        operation: str = "unknown",
        **options: Any,
    ) -> T:
        """
        Run func while holding the lock and return its result.

        The lock is released whether func returns or raises.
        """
        with self.hold(lock_path, operation, **options):
            return func()

    def read_lock(self, lock_path: Path | str) -> Lock | None:
        """
        Read the current lock record for display.

        Returns:
            The Lock, or None if no lock file exists.

        Raises:
            StaleLockError: If the lock file exists but cannot be parsed.
        """
        return self._read_existing(Path(lock_path))

    def is_locked(self, lock_path: Path | str) -> bool:
        """Whether a lock file currently exists."""
        return Path(lock_path).exists()

    def is_held(self, lock_path: Path | str) -> bool:
        """Whether this manager currently holds the lock."""
        with self._guard:
            return Path(lock_path) in self._held

    def held_locks(self) -> list[Path]:
        """Paths of all locks currently held by this manager."""
        with self._guard:
            return list(self._held)

    def break_lock(self, lock_path: Path | str) -> bool:
        """
        Remove the lock file whoever holds it.

        For manual recovery when a holder is known to be gone but the
        lock is not yet old enough to count as stale.

        Returns:
            True if a lock file was removed.
        """
        lock_path = Path(lock_path)
        with self._guard:
            self._held.pop(lock_path, None)

        if not lock_path.exists():
            return False
        self._unlink(lock_path)
        logger.warning(f"Lock {lock_path} removed manually")
        return True

    def release_all(self) -> None:
        """
        Release every lock held by this manager.

        Intended for clean process exit; individual failures are logged.
        """
        with self._guard:
            paths = list(self._held)
            self._held.clear()

        for path in paths:
            try:
                path.unlink()
                logger.debug(f"Released lock {path} on shutdown")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to release lock {path}: {e}")

    def _reenter(self, lock_path: Path) -> Lock | None:
        with self._guard:
            entry = self._held.get(lock_path)
            if entry is None or entry[0] != threading.get_ident():
                return None
            entry[1] += 1

        logger.debug(f"Re-entered lock {lock_path} (depth {entry[1]})")
        try:
            lock = self._read_existing(lock_path)
        except StaleLockError:
            lock = None
        return lock or Lock(operation="unknown")

    def _try_create(self, lock_path: Path, lock: Lock) -> bool:
        """Atomically create the sentinel. Returns False if it already exists."""
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(
                lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, LOCK_FILE_MODE
            )
        except FileExistsError:
            return False
        except OSError as e:
            raise LockError(f"Failed to create lock file {lock_path}: {e}") from e

        # One write call so readers never see a partial record
        try:
            os.write(fd, json.dumps(lock.to_dict()).encode("utf-8"))
        finally:
            os.close(fd)
        return True

    def _read_existing(self, lock_path: Path) -> Lock | None:
        """
        Read and vet an existing lock.

        Returns:
            The holder's Lock, or None if the file vanished.

        Raises:
            StaleLockError: If the record is unreadable or too old.
        """
        try:
            content = lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StaleLockError(f"Unreadable lock file: {e}") from e

        if not content.strip():
            # Holder may be between create and write; only stale if old
            try:
                mtime = lock_path.stat().st_mtime
            except FileNotFoundError:
                return None
            if time.time() - mtime > self.stale_after:
                raise StaleLockError("Empty lock file")
            return Lock(
                operation="unknown",
                pid=0,
                created=datetime.fromtimestamp(mtime, timezone.utc),
            )

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StaleLockError(f"Corrupt lock file: {e}") from e

        lock = Lock.from_dict(data)
        if lock.is_stale(self.stale_after):
            age = lock.age()
            when = f"{age:.0f}s old" if age >= 0 else f"dated {-age:.0f}s ahead"
            raise StaleLockError(
                f"'{lock.operation}' lock from PID {lock.pid} is {when}"
            )
        return lock

    def _unlink(self, lock_path: Path) -> None:
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LockError(f"Failed to remove lock {lock_path}: {e}") from e
