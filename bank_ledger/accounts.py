"""
Account Ledger Store Module

Holds current balances keyed by account number. The transaction engine
only reaches balances through the AccountStore contract; AccountRepository
implements it on top of a StorageInterface backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from .money import ZERO
from .storage import StorageInterface, StorageError


@dataclass(frozen=True)
class Account:
    """Account number with its current balance"""
    account_number: str
    balance: Decimal


class AccountStore(ABC):
    """Contract for reading and updating account balances"""

    @abstractmethod
    def get_balance(self, account_number: str) -> Optional[Decimal]:
        """Current balance, or None when the account does not exist"""
        pass

    @abstractmethod
    def update_balance(self, account_number: str, new_balance: Decimal) -> None:
        """
        Replace the balance of an existing account

        Raises:
            StorageError: If the account does not exist or the write fails
        """
        pass

    @abstractmethod
    def get_accounts(self) -> List[Account]:
        """All accounts, in no particular order"""
        pass

    @abstractmethod
    def create_account(self, account_number: str, initial_balance: Decimal = ZERO) -> Account:
        """
        Provision a new account

        Raises:
            StorageError: If the account number is already taken
        """
        pass


class AccountRepository(AccountStore):
    """AccountStore backed by a StorageInterface table"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "accounts"

    def get_balance(self, account_number: str) -> Optional[Decimal]:
        data = self.storage.load(self.table_name, account_number)
        if data is None:
            return None
        return Decimal(data['balance'])

    def update_balance(self, account_number: str, new_balance: Decimal) -> None:
        data = self.storage.load(self.table_name, account_number)
        if data is None:
            raise StorageError(f"Account {account_number} does not exist")

        data['balance'] = str(new_balance)
        data['updated_at'] = datetime.now(timezone.utc).isoformat()
        self.storage.save(self.table_name, account_number, data)

    def get_accounts(self) -> List[Account]:
        return [self._account_from_dict(data) for data in self.storage.load_all(self.table_name)]

    def create_account(self, account_number: str, initial_balance: Decimal = ZERO) -> Account:
        if self.storage.exists(self.table_name, account_number):
            raise StorageError(f"Account {account_number} already exists")

        account = Account(account_number=account_number, balance=Decimal(initial_balance))
        self.storage.save(self.table_name, account_number, self._account_to_dict(account))
        return account

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        now = datetime.now(timezone.utc).isoformat()
        return {
            'account_number': account.account_number,
            'balance': str(account.balance),
            'created_at': now,
            'updated_at': now
        }

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        return Account(
            account_number=data['account_number'],
            balance=Decimal(data['balance'])
        )
