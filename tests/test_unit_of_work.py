"""
Tests for the unit of work and its per-account locking
"""

import threading
import pytest

from bank_ledger.storage import InMemoryStorage, StorageError
from bank_ledger.unit_of_work import StorageUnitOfWork


class RecordingStorage(InMemoryStorage):
    """In-memory storage that records transaction boundaries"""

    def __init__(self):
        super().__init__()
        self.events = []

    def begin_transaction(self):
        self.events.append("begin")
        super().begin_transaction()

    def commit(self):
        self.events.append("commit")
        super().commit()

    def rollback(self):
        self.events.append("rollback")
        super().rollback()


class TestStorageUnitOfWork:
    """Test scope boundaries"""

    def setup_method(self):
        self.storage = RecordingStorage()
        self.uow = StorageUnitOfWork(self.storage, lock_timeout=0.1)

    def test_atomic_commits(self):
        with self.uow.atomic("A1"):
            assert self.uow.active
            self.storage.save("t", "r", {"value": "1"})

        assert not self.uow.active
        assert self.storage.events == ["begin", "commit"]
        assert self.storage.load("t", "r") == {"value": "1"}

    def test_atomic_rolls_back_on_exception(self):
        with pytest.raises(ValueError):
            with self.uow.atomic("A1"):
                self.storage.save("t", "r", {"value": "1"})
                raise ValueError("fail")

        assert not self.uow.active
        assert self.storage.events == ["begin", "rollback"]
        assert self.storage.load("t", "r") is None

    def test_atomic_rolls_back_on_base_exception(self):
        with pytest.raises(KeyboardInterrupt):
            with self.uow.atomic("A1"):
                self.storage.save("t", "r", {"value": "1"})
                raise KeyboardInterrupt()

        assert self.storage.events == ["begin", "rollback"]
        assert self.storage.load("t", "r") is None

    def test_explicit_boundaries(self):
        self.uow.begin_transaction("A1", "A2")
        self.storage.save("t", "r", {"value": "1"})
        self.uow.rollback()

        assert self.storage.load("t", "r") is None
        assert not self.uow.active

    def test_nested_scope_rejected(self):
        with self.uow.atomic("A1"):
            with pytest.raises(StorageError, match="already active"):
                self.uow.begin_transaction("A2")

    def test_commit_without_scope(self):
        with pytest.raises(StorageError, match="No active unit of work"):
            self.uow.commit()

    def test_rollback_without_scope_is_noop(self):
        self.uow.rollback()
        assert self.storage.events == []


class TestAccountLocks:
    """Test per-account lock acquisition"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.uow = StorageUnitOfWork(self.storage, lock_timeout=0.05)

    def _hold(self, *account_numbers):
        """Hold a scope on another thread until the returned event is set"""
        started = threading.Event()
        release = threading.Event()

        def holder():
            with self.uow.atomic(*account_numbers):
                started.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        started.wait(5)
        return release, thread

    def test_lock_timeout_raises_storage_error(self):
        release, thread = self._hold("A1")
        try:
            with pytest.raises(StorageError, match="account A1"):
                self.uow.begin_transaction("A1")
            assert not self.uow.active
        finally:
            release.set()
            thread.join(5)

    def test_failed_begin_releases_acquired_locks(self):
        """Test that locks taken before a timeout are given back"""
        release, thread = self._hold("B2")
        try:
            # A1 is acquired first, then B2 times out
            with pytest.raises(StorageError):
                self.uow.begin_transaction("B2", "A1")
        finally:
            release.set()
            thread.join(5)

        assert self.uow._account_locks == {}
        with self.uow.atomic("A1"):
            assert self.uow.active

    def test_duplicate_account_numbers_lock_once(self):
        with self.uow.atomic("A1", "A1"):
            assert self.uow.active

    def test_locks_released_after_scope(self):
        with self.uow.atomic("A1", "A2"):
            pass

        assert self.uow._account_locks == {}
        with self.uow.atomic("A2", "A1"):
            assert self.uow.active

    def test_lock_order_independent_of_arguments(self):
        """Test that opposite argument orders serialize instead of deadlocking"""
        uow = StorageUnitOfWork(self.storage, lock_timeout=5.0)
        finished = []

        def worker(first, second):
            for _ in range(50):
                with uow.atomic(first, second):
                    pass
            finished.append((first, second))

        threads = [
            threading.Thread(target=worker, args=("A1", "A2")),
            threading.Thread(target=worker, args=("A2", "A1")),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert len(finished) == 2


class TestLockRegistry:
    """Test that account locks only live while a scope needs them"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.uow = StorageUnitOfWork(self.storage, lock_timeout=0.05)

    def test_entries_exist_only_during_scope(self):
        with self.uow.atomic("A2", "A1"):
            assert sorted(self.uow._account_locks) == ["A1", "A2"]

        assert self.uow._account_locks == {}

    def test_rolled_back_scopes_leave_no_entries(self):
        for i in range(100):
            with pytest.raises(ValueError):
                with self.uow.atomic(f"ghost-{i}"):
                    raise ValueError("fail")

        assert self.uow._account_locks == {}

    def test_waiter_shares_entry_and_timeout_leaves_holder_only(self):
        started = threading.Event()
        release = threading.Event()

        def holder():
            with self.uow.atomic("A1"):
                started.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        started.wait(5)
        try:
            with pytest.raises(StorageError):
                self.uow.begin_transaction("A1")
            assert self.uow._account_locks["A1"].users == 1
        finally:
            release.set()
            thread.join(5)

        assert self.uow._account_locks == {}

    def test_registry_bounded_under_contention(self):
        uow = StorageUnitOfWork(self.storage, lock_timeout=5.0)
        sizes = []

        def worker(offset):
            for i in range(50):
                with uow.atomic(f"A{(i + offset) % 3}", f"A{(i + offset + 1) % 3}"):
                    sizes.append(len(uow._account_locks))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert len(sizes) == 200
        assert max(sizes) <= 3
        assert uow._account_locks == {}
