from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import allure
import pytest

from nyx.orchestrator.errors import LockAcquisitionFailed, LockReleaseFailed
from nyx.orchestrator.locks import LockManager

pytestmark = [
    allure.epic("Scheduler"),
    allure.feature("Resource Locks"),
]


def test_lockfile_path_normalizes_workspace_relative_names(lock_manager: LockManager) -> None:
    path = lock_manager.lockfile_path("src/app main.py")

    assert path.parent == lock_manager.lock_dir
    assert path.name == "src_2f_app_20_main.py.lock"
    assert lock_manager.lockfile_path(str(lock_manager.workspace_root / "src/app main.py")) == path


def test_acquire_and_release_manage_marker_file(lock_manager: LockManager) -> None:
    lock_manager.acquire("notes.md")
    marker = lock_manager.lockfile_path("notes.md")

    assert marker.exists()
    assert lock_manager.held_resources() == ["notes.md"]

    lock_manager.release("notes.md")

    assert not marker.exists()
    assert lock_manager.held_resources() == []


def test_same_resource_is_mutually_exclusive(tmp_path: Path, lock_manager: LockManager) -> None:
    other = LockManager(
        lock_dir=lock_manager.lock_dir,
        workspace_root=lock_manager.workspace_root,
        retries=3,
        min_timeout_seconds=0.0,
        sleep=lambda _seconds: None,
    )
    lock_manager.acquire("shared.txt")

    with pytest.raises(LockAcquisitionFailed, match="shared.txt"):
        other.acquire("shared.txt")

    lock_manager.release("shared.txt")
    other.acquire("shared.txt")
    other.release("shared.txt")


def test_acquire_is_not_reentrant(lock_manager: LockManager) -> None:
    lock_manager.acquire("a.txt")

    with pytest.raises(LockAcquisitionFailed):
        lock_manager.acquire("a.txt")


def test_disjoint_resources_do_not_block(lock_manager: LockManager) -> None:
    lock_manager.acquire("a.txt")
    lock_manager.acquire("b.txt")

    assert sorted(lock_manager.held_resources()) == ["a.txt", "b.txt"]


def test_resources_with_similar_names_get_distinct_markers(lock_manager: LockManager) -> None:
    names = ["a/b.txt", "a_b.txt", "a-b.txt", "a b.txt", "x/y/z", "x_y/z"]

    markers = {lock_manager.lockfile_path(name) for name in names}

    assert len(markers) == len(names)


def test_nested_path_lock_does_not_block_flattened_name(lock_manager: LockManager) -> None:
    lock_manager.retries = 0
    lock_manager.acquire("a/b.txt")
    lock_manager.acquire("a_b.txt")

    assert sorted(lock_manager.held_resources()) == ["a/b.txt", "a_b.txt"]


def test_acquire_backs_off_exponentially_before_failing(tmp_path: Path) -> None:
    delays: list[float] = []
    manager = LockManager(
        lock_dir=tmp_path / "locks",
        workspace_root=tmp_path,
        retries=3,
        backoff_factor=2.0,
        min_timeout_seconds=0.1,
        max_timeout_seconds=0.3,
        sleep=delays.append,
    )
    manager.lockfile_path("busy").touch()

    with pytest.raises(LockAcquisitionFailed):
        manager.acquire("busy")

    assert delays == pytest.approx([0.1, 0.2, 0.3])


def test_stale_marker_is_reclaimed(lock_manager: LockManager) -> None:
    marker = lock_manager.lockfile_path("crashed.txt")
    marker.write_text("{}", "utf-8")
    old = time.time() - lock_manager.stale_seconds - 5
    os.utime(marker, (old, old))

    lock_manager.acquire("crashed.txt")

    assert lock_manager.held_resources() == ["crashed.txt"]
    assert not list(lock_manager.lock_dir.glob("*.stale"))


def test_fresh_marker_is_not_reclaimed(lock_manager: LockManager) -> None:
    lock_manager.lockfile_path("busy.txt").write_text("{}", "utf-8")

    with pytest.raises(LockAcquisitionFailed):
        lock_manager.acquire("busy.txt")
    assert lock_manager.lockfile_path("busy.txt").exists()


def _stale_marker(manager: LockManager, resource: str) -> tuple[Path, float]:
    marker = manager.lockfile_path(resource)
    marker.write_text('{"token": "original"}', "utf-8")
    old = time.time() - manager.stale_seconds - 5
    os.utime(marker, (old, old))
    return marker, old


def _racing_manager(tmp_path: Path, marker_mtime: float) -> LockManager:
    # The marker looks stale on both age checks, then fresh once it is renamed.
    now = time.time()
    ticks = iter([now, now, marker_mtime + 1.0])
    return LockManager(
        lock_dir=tmp_path / "workspace" / ".nyx-locks",
        workspace_root=tmp_path / "workspace",
        retries=0,
        clock=lambda: next(ticks, now),
    )


def test_marker_refreshed_during_reclaim_is_put_back(
    tmp_path: Path,
    lock_manager: LockManager,
) -> None:
    marker, old = _stale_marker(lock_manager, "contested.txt")
    reclaimer = _racing_manager(tmp_path, old)

    with pytest.raises(LockAcquisitionFailed):
        reclaimer.acquire("contested.txt")

    assert '"original"' in marker.read_text("utf-8")
    assert not list(reclaimer.lock_dir.glob("*.stale"))
    assert not list(reclaimer.lock_dir.glob("*.reclaim"))


def test_failed_restore_keeps_tombstone_and_logs_error(
    tmp_path: Path,
    lock_manager: LockManager,
    monkeypatch,
    caplog,
) -> None:
    marker, old = _stale_marker(lock_manager, "contested.txt")
    reclaimer = _racing_manager(tmp_path, old)

    def _claimed_meanwhile(source, target):
        Path(target).write_text('{"token": "claimant"}', "utf-8")
        raise FileExistsError(target)

    monkeypatch.setattr(os, "link", _claimed_meanwhile)
    with caplog.at_level("ERROR"), pytest.raises(LockAcquisitionFailed):
        reclaimer.acquire("contested.txt")

    tombstones = list(reclaimer.lock_dir.glob("*.stale"))
    assert len(tombstones) == 1
    assert '"original"' in tombstones[0].read_text("utf-8")
    assert '"claimant"' in marker.read_text("utf-8")
    assert "Could not restore fresh lock marker" in caplog.text


def test_active_reclaim_guard_defers_reclaim(lock_manager: LockManager) -> None:
    marker, _old = _stale_marker(lock_manager, "crashed.txt")
    marker.with_name(f"{marker.name}.reclaim").touch()

    with pytest.raises(LockAcquisitionFailed):
        lock_manager.acquire("crashed.txt")

    assert marker.exists()


def test_abandoned_reclaim_guard_is_removed(lock_manager: LockManager) -> None:
    marker, old = _stale_marker(lock_manager, "crashed.txt")
    guard = marker.with_name(f"{marker.name}.reclaim")
    guard.touch()
    os.utime(guard, (old, old))

    lock_manager.acquire("crashed.txt")

    assert lock_manager.held_resources() == ["crashed.txt"]
    assert not guard.exists()


def test_release_of_unknown_lock_only_warns(lock_manager: LockManager, caplog) -> None:
    with caplog.at_level("WARNING"):
        lock_manager.release("never-acquired.txt")

    assert "no active lock found" in caplog.text


def test_release_leaves_marker_reclaimed_by_someone_else(lock_manager: LockManager) -> None:
    lock_manager.acquire("taken.txt")
    marker = lock_manager.lockfile_path("taken.txt")
    marker.write_text('{"token": "someone-else"}', "utf-8")

    lock_manager.release("taken.txt")

    assert marker.exists()
    assert lock_manager.held_resources() == []


def test_release_failure_raises_and_drops_record(
    lock_manager: LockManager,
    monkeypatch,
) -> None:
    lock_manager.acquire("stuck.txt")

    def _fail_unlink(self, missing_ok=False):
        raise PermissionError("read-only")

    monkeypatch.setattr(Path, "unlink", _fail_unlink)
    with pytest.raises(LockReleaseFailed, match="stuck.txt"):
        lock_manager.release("stuck.txt")
    assert lock_manager.held_resources() == []


def test_hold_releases_on_exception(lock_manager: LockManager) -> None:
    with pytest.raises(ValueError), lock_manager.hold("report.txt") as held:
        assert held.path.exists()
        raise ValueError("boom")

    assert not lock_manager.lockfile_path("report.txt").exists()
    assert lock_manager.held_resources() == []


def test_hold_serializes_threads_on_same_resource(tmp_path: Path) -> None:
    workspace = tmp_path / "ws"
    manager = LockManager(
        lock_dir=workspace / ".nyx-locks",
        workspace_root=workspace,
        retries=200,
        min_timeout_seconds=0.005,
        backoff_factor=1.0,
    )
    inside = 0
    overlaps: list[int] = []
    counter_lock = threading.Lock()

    def _worker(index: int) -> None:
        nonlocal inside
        other = LockManager(
            lock_dir=manager.lock_dir,
            workspace_root=workspace,
            retries=200,
            min_timeout_seconds=0.005,
            backoff_factor=1.0,
        )
        with other.hold("shared.txt"):
            with counter_lock:
                inside += 1
                overlaps.append(inside)
            time.sleep(0.01)
            with counter_lock:
                inside -= 1

    threads = [threading.Thread(target=_worker, args=(index,)) for index in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == [1, 1, 1, 1]


def test_cleanup_locks_removes_only_stale_markers(lock_manager: LockManager) -> None:
    stale = lock_manager.lockfile_path("old.txt")
    fresh = lock_manager.lockfile_path("new.txt")
    stale.write_text("{}", "utf-8")
    fresh.write_text("{}", "utf-8")
    old = time.time() - lock_manager.stale_seconds - 5
    os.utime(stale, (old, old))
    (lock_manager.lock_dir / "x.lock.abc.stale").write_text("", "utf-8")
    abandoned_guard = lock_manager.lock_dir / "y.lock.reclaim"
    active_guard = lock_manager.lock_dir / "z.lock.reclaim"
    abandoned_guard.touch()
    active_guard.touch()
    os.utime(abandoned_guard, (old, old))

    removed = lock_manager.cleanup_locks()

    assert removed == [stale]
    assert fresh.exists()
    assert not list(lock_manager.lock_dir.glob("*.stale"))
    assert not abandoned_guard.exists()
    assert active_guard.exists()
