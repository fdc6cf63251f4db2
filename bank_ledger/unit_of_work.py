"""
Unit of Work Module

Demarcates an atomic scope spanning balance writes and statement appends.
All writes issued between begin_transaction() and commit() apply together
or not at all.

StorageUnitOfWork serializes work per account: the scope takes a lock on
every account it touches, in ascending account-number order, and holds it
until commit or rollback. Two operations on the same account can therefore
never both read the pre-update balance, and transfers in opposite
directions cannot deadlock.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, List, Optional
import threading

from .logging_config import get_logger
from .storage import StorageInterface, StorageError


class UnitOfWork(ABC):
    """Contract for an atomic scope over the ledger stores"""

    @abstractmethod
    def begin_transaction(self, *account_numbers: str) -> None:
        """Open a scope, locking the given accounts for its duration"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Apply every write made in the scope and close it"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard every write made in the scope and close it"""
        pass

    @contextmanager
    def atomic(self, *account_numbers: str):
        """
        Context manager for atomic operations

        Commits on normal exit. Any exception, including cancellation
        (KeyboardInterrupt, SystemExit, task cancellation), rolls back.
        """
        self.begin_transaction(*account_numbers)
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()


class _AccountLock:
    """Lock of one account plus the number of scopes holding or waiting on it"""

    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class StorageUnitOfWork(UnitOfWork):
    """
    Unit of work over a StorageInterface transaction with per-account locks

    Account locks live in the registry only while some scope holds or waits
    on them, so the registry stays bounded by the number of in-flight scopes.
    """

    def __init__(self, storage: StorageInterface, lock_timeout: Optional[float] = None):
        self.storage = storage
        self.lock_timeout = lock_timeout
        self.logger = get_logger("bank_ledger.unit_of_work")
        self._account_locks: Dict[str, _AccountLock] = {}
        self._registry_lock = threading.Lock()
        self._local = threading.local()

    @property
    def active(self) -> bool:
        """Whether the calling thread has an open scope"""
        return self._held_accounts() is not None

    def _held_accounts(self) -> Optional[List[str]]:
        return getattr(self._local, 'held', None)

    def _checkout(self, account_number: str) -> _AccountLock:
        with self._registry_lock:
            entry = self._account_locks.get(account_number)
            if entry is None:
                entry = _AccountLock()
                self._account_locks[account_number] = entry
            entry.users += 1
            return entry

    def _checkin(self, account_number: str, release: bool) -> None:
        with self._registry_lock:
            entry = self._account_locks[account_number]
            if release:
                entry.lock.release()
            entry.users -= 1
            if entry.users == 0:
                del self._account_locks[account_number]

    def _acquire(self, account_number: str) -> None:
        entry = self._checkout(account_number)
        timeout = -1 if self.lock_timeout is None else self.lock_timeout
        try:
            acquired = entry.lock.acquire(timeout=timeout)
        except BaseException:
            self._checkin(account_number, release=False)
            raise

        if not acquired:
            self._checkin(account_number, release=False)
            raise StorageError(
                f"Timed out after {self.lock_timeout}s waiting for lock on account {account_number}"
            )

    def _release(self, account_numbers: List[str]) -> None:
        for account_number in reversed(account_numbers):
            self._checkin(account_number, release=True)

    def begin_transaction(self, *account_numbers: str) -> None:
        if self.active:
            raise StorageError("A unit of work is already active on this thread")

        held: List[str] = []
        try:
            # Total order by account number, independent of argument position
            for account_number in sorted(set(account_numbers)):
                self._acquire(account_number)
                held.append(account_number)
            self.storage.begin_transaction()
        except BaseException:
            self._release(held)
            raise

        self._local.held = held
        self.logger.debug(f"Unit of work started for accounts {held}")

    def commit(self) -> None:
        held = self._held_accounts()
        if held is None:
            raise StorageError("No active unit of work to commit")

        try:
            self.storage.commit()
        finally:
            self._local.held = None
            self._release(held)

    def rollback(self) -> None:
        held = self._held_accounts()
        if held is None:
            return

        try:
            self.storage.rollback()
        finally:
            self._local.held = None
            self._release(held)
        self.logger.debug("Unit of work rolled back")
