"""
Tests for the per-entity lock registry.
"""

import threading

import pytest

from settlement_kernel.db.locking import EntityLockRegistry
from settlement_kernel.exceptions import ConflictError


def test_rejects_non_positive_timeout():
    with pytest.raises(ValueError):
        EntityLockRegistry(timeout_seconds=0)


def test_entries_released_after_use():
    locks = EntityLockRegistry()
    with locks.hold("Deed", "d-1"):
        assert locks.active_count() == 1
    assert locks.active_count() == 0


def test_distinct_entities_do_not_block():
    locks = EntityLockRegistry(timeout_seconds=0.5)
    with locks.hold("Deed", "d-1"):
        with locks.hold("Deed", "d-2"):
            with locks.hold("Bill", "d-1"):
                assert locks.active_count() == 3


@pytest.mark.slow_locks
def test_timeout_raises_conflict(captured_logs):
    locks = EntityLockRegistry(timeout_seconds=5.0)
    held = threading.Event()
    release = threading.Event()

    def holder():
        with locks.hold("Deed", "d-1"):
            held.set()
            release.wait(5)

    thread = threading.Thread(target=holder)
    thread.start()
    try:
        held.wait(5)
        with pytest.raises(ConflictError) as exc_info:
            with locks.hold("Deed", "d-1", timeout=0.05):
                pass
        assert exc_info.value.entity_type == "Deed"
    finally:
        release.set()
        thread.join(5)
    assert locks.active_count() == 0
    assert any(r["message"] == "entity_lock_timeout" for r in captured_logs())


def test_serializes_critical_sections():
    locks = EntityLockRegistry()
    counter = {"value": 0}

    def bump():
        for _ in range(200):
            with locks.hold("Bill", "b-1"):
                current = counter["value"]
                counter["value"] = current + 1

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert counter["value"] == 800
