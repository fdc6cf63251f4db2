"""
Statement Store Module

Append-only per-account statement entries. Each entry records one balance
change and the balance that resulted from it. Entries are never modified
or deleted once saved.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List
import uuid

from .storage import StorageInterface


@dataclass(frozen=True)
class StatementEntry:
    """
    One immutable balance-affecting event on an account

    ``amount`` is signed: positive for credits, negative for debits.
    ``sequence`` increases by one per entry on the same account and breaks
    ties between entries recorded at the same instant.
    """
    id: str
    account_number: str
    sequence: int
    timestamp: datetime
    description: str
    amount: Decimal
    resulting_balance: Decimal

    @property
    def sort_key(self):
        return (self.timestamp, self.sequence)


class StatementStore(ABC):
    """Contract for appending and reading statement entries"""

    @abstractmethod
    def save(
        self,
        account_number: str,
        timestamp: datetime,
        description: str,
        amount: Decimal,
        resulting_balance: Decimal
    ) -> StatementEntry:
        """
        Append an entry to an account's statement

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def get(self, account_number: str) -> List[StatementEntry]:
        """All entries of an account, in no particular order"""
        pass


class StatementRepository(StatementStore):
    """StatementStore backed by a StorageInterface table"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "statement_entries"
        self.sequence_table = "statement_sequences"

    def save(
        self,
        account_number: str,
        timestamp: datetime,
        description: str,
        amount: Decimal,
        resulting_balance: Decimal
    ) -> StatementEntry:
        sequence = self._next_sequence(account_number)

        entry = StatementEntry(
            id=str(uuid.uuid4()),
            account_number=account_number,
            sequence=sequence,
            timestamp=timestamp,
            description=description,
            amount=amount,
            resulting_balance=resulting_balance
        )
        self.storage.save(self.table_name, entry.id, self._entry_to_dict(entry))
        return entry

    def get(self, account_number: str) -> List[StatementEntry]:
        records = self.storage.find(self.table_name, {'account_number': account_number})
        return [self._entry_from_dict(data) for data in records]

    def _next_sequence(self, account_number: str) -> int:
        """Advance the per-account counter; callers hold the account lock"""
        counter = self.storage.load(self.sequence_table, account_number)
        sequence = (counter['last_sequence'] if counter else 0) + 1
        self.storage.save(self.sequence_table, account_number, {
            'account_number': account_number,
            'last_sequence': sequence
        })
        return sequence

    def _entry_to_dict(self, entry: StatementEntry) -> Dict:
        """Convert StatementEntry to dictionary for storage"""
        return {
            'id': entry.id,
            'account_number': entry.account_number,
            'sequence': entry.sequence,
            'timestamp': entry.timestamp.isoformat(),
            'description': entry.description,
            'amount': str(entry.amount),
            'resulting_balance': str(entry.resulting_balance)
        }

    def _entry_from_dict(self, data: Dict) -> StatementEntry:
        """Convert dictionary to StatementEntry"""
        return StatementEntry(
            id=data['id'],
            account_number=data['account_number'],
            sequence=int(data['sequence']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            description=data['description'],
            amount=Decimal(data['amount']),
            resulting_balance=Decimal(data['resulting_balance'])
        )
