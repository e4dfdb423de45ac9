"""Marker-file resource locks shared by concurrently running executors.

Each resource (normally a workspace file path) maps to one marker file in the
lock directory.  A marker is claimed with ``O_CREAT | O_EXCL``, so exactly one
claimant wins across threads and processes on the same filesystem.  Markers
older than the staleness horizon belong to crashed holders and are reclaimed.
"""

from __future__ import annotations

import json
import logging
import os
import re
import socket
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from nyx.orchestrator.errors import LockAcquisitionFailed, LockReleaseFailed

logger = logging.getLogger(__name__)

_ESCAPED_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def _escape_char(match: re.Match[str]) -> str:
    char = match.group(0)
    if char == "_":
        return "__"
    return f"_{ord(char):x}_"


@dataclass(slots=True)
class HeldLock:
    """Lock claimed by this manager instance."""

    resource: str
    path: Path
    token: str
    acquired_at: float


class LockManager:
    """Acquire and release per-resource locks with bounded retry."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        lock_dir: Path,
        workspace_root: Path,
        stale_seconds: float = 15.0,
        retries: int = 5,
        backoff_factor: float = 1.2,
        min_timeout_seconds: float = 0.2,
        max_timeout_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.lock_dir = Path(lock_dir)
        self.workspace_root = Path(workspace_root).resolve()
        self.stale_seconds = stale_seconds
        self.retries = retries
        self.backoff_factor = backoff_factor
        self.min_timeout_seconds = min_timeout_seconds
        self.max_timeout_seconds = max_timeout_seconds
        self._sleep = sleep
        self._clock = clock
        self._held: dict[str, HeldLock] = {}
        self._mutex = threading.Lock()
        self.ensure_lock_dir()
        logger.info("LockManager initialized (lock_dir=%s).", self.lock_dir)

    def ensure_lock_dir(self) -> None:
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def lockfile_path(self, resource: str) -> Path:
        """Map a resource path to its filesystem-safe marker path.

        The escaping is reversible, so distinct resources never share a marker:
        ``_`` becomes ``__`` and any other unsafe character becomes ``_<hex>_``.
        """

        resolved = (self.workspace_root / resource).resolve()
        relative = os.path.relpath(resolved, self.workspace_root)
        return self.lock_dir / f"{_ESCAPED_CHARS.sub(_escape_char, relative)}.lock"

    def acquire(self, resource: str) -> None:
        """Claim the lock for `resource` or raise `LockAcquisitionFailed`."""

        path = self.lockfile_path(resource)
        logger.debug("Attempting to acquire lock for: %s (-> %s)", resource, path)
        self.ensure_lock_dir()
        token = uuid4().hex

        for attempt in range(self.retries + 1):
            if self._try_claim(path, token):
                with self._mutex:
                    self._held[path.name] = HeldLock(
                        resource=resource,
                        path=path,
                        token=token,
                        acquired_at=self._clock(),
                    )
                logger.info("Lock acquired for: %s", resource)
                return
            if attempt < self.retries:
                self._sleep(self._backoff_delay(attempt))

        logger.error(
            "Failed to acquire lock for %s after %d attempts.",
            resource,
            self.retries + 1,
        )
        raise LockAcquisitionFailed(resource)

    def release(self, resource: str) -> None:
        """Release a lock held by this instance; unknown locks only warn."""

        path = self.lockfile_path(resource)
        with self._mutex:
            held = self._held.pop(path.name, None)
        if held is None:
            logger.warning(
                "Attempted to release lock for %s, but no active lock found.",
                resource,
            )
            return

        try:
            if self._marker_token(path) != held.token:
                logger.warning(
                    "Lock for %s was reclaimed as stale before release; leaving marker.",
                    resource,
                )
                return
            path.unlink()
        except OSError as error:
            logger.error("Failed to release lock for %s: %s", resource, error)
            raise LockReleaseFailed(resource) from error
        logger.info("Lock released for: %s", resource)

    @contextmanager
    def hold(self, resource: str) -> Iterator[HeldLock]:
        """Hold the lock for the duration of the block, releasing on any exit."""

        self.acquire(resource)
        try:
            with self._mutex:
                held = self._held[self.lockfile_path(resource).name]
            yield held
        finally:
            self.release(resource)

    def held_resources(self) -> list[str]:
        with self._mutex:
            return [held.resource for held in self._held.values()]

    def cleanup_locks(self) -> list[Path]:
        """Remove abandoned markers and leftover tombstones."""

        logger.info("Cleaning up any potentially stale locks...")
        self.ensure_lock_dir()
        removed: list[Path] = []
        for marker in sorted(self.lock_dir.glob("*.lock")):
            try:
                age = self._clock() - marker.stat().st_mtime
            except FileNotFoundError:
                continue
            if age <= self.stale_seconds:
                continue
            marker.unlink(missing_ok=True)
            removed.append(marker)
        for tombstone in self.lock_dir.glob("*.stale"):
            tombstone.unlink(missing_ok=True)
        for guard in self.lock_dir.glob("*.reclaim"):
            try:
                if self._clock() - guard.stat().st_mtime > self.stale_seconds:
                    guard.unlink(missing_ok=True)
            except FileNotFoundError:
                continue
        return removed

    def _try_claim(self, path: Path, token: str) -> bool:
        if self._create_marker(path, token):
            return True
        if self._reclaim_if_stale(path):
            return self._create_marker(path, token)
        return False

    def _create_marker(self, path: Path, token: str) -> bool:
        try:
            fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(
                {
                    "token": token,
                    "pid": os.getpid(),
                    "host": socket.gethostname(),
                    "acquired_at": self._clock(),
                },
                handle,
            )
        return True

    def _reclaim_if_stale(self, path: Path) -> bool:
        try:
            age = self._clock() - path.stat().st_mtime
        except FileNotFoundError:
            return True
        if age <= self.stale_seconds:
            return False

        guard = path.with_name(f"{path.name}.reclaim")
        if not self._claim_reclaim_guard(guard):
            return False
        try:
            return self._reclaim_marker(path)
        finally:
            guard.unlink(missing_ok=True)

    def _claim_reclaim_guard(self, guard: Path) -> bool:
        """Serialize reclaimers of one marker; a crashed reclaimer's guard expires."""

        for _ in range(2):
            try:
                os.close(os.open(str(guard), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644))
            except FileExistsError:
                try:
                    guard_age = self._clock() - guard.stat().st_mtime
                except FileNotFoundError:
                    continue
                if guard_age <= self.stale_seconds:
                    return False
                logger.warning("Removing abandoned reclaim guard %s.", guard.name)
                guard.unlink(missing_ok=True)
                continue
            return True
        return False

    def _reclaim_marker(self, path: Path) -> bool:
        # Re-check under the guard: another reclaimer may have replaced the marker.
        try:
            age = self._clock() - path.stat().st_mtime
        except FileNotFoundError:
            return True
        if age <= self.stale_seconds:
            return False

        tombstone = path.with_name(f"{path.name}.{uuid4().hex}.stale")
        try:
            path.rename(tombstone)
        except FileNotFoundError:
            return True
        if self._clock() - tombstone.stat().st_mtime <= self.stale_seconds:
            # Grabbed a marker claimed after the age check; put it back.
            try:
                os.link(tombstone, path)
            except FileExistsError:
                # The tombstone is a live holder's marker; `locks cleanup` removes it.
                logger.error(
                    "Could not restore fresh lock marker %s; kept it as %s.",
                    path.name,
                    tombstone.name,
                )
                return False
            tombstone.unlink(missing_ok=True)
            return False
        tombstone.unlink(missing_ok=True)
        logger.warning("Reclaimed stale lock %s (age %.1fs).", path.name, age)
        return True

    def _marker_token(self, path: Path) -> str | None:
        try:
            payload = json.loads(path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        token = payload.get("token")
        return token if isinstance(token, str) else None

    def _backoff_delay(self, attempt: int) -> float:
        delay = self.min_timeout_seconds * (self.backoff_factor**attempt)
        if self.max_timeout_seconds is not None:
            delay = min(delay, self.max_timeout_seconds)
        return delay
