"""
Transaction Engine Module

Orchestrates withdrawals, deposits and transfers: validates the request,
locks the touched accounts in one unit of work, applies the current fees,
writes the new balances and appends the matching statement entries.
Every balance change is reconstructible from the statement trail, and
balance arithmetic never rounds: a result that does not fit the Decimal
precision fails the operation before anything is committed.

Public operations never raise for ledger failures. They return a
TransactionResult holding either the success value or a classified
LedgerError; the unit of work has already been rolled back by then.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, List, Optional

from .accounts import Account, AccountStore
from .errors import (
    LedgerError, EmptyResultError, ErrorKind, EMPTY_STATEMENT_MESSAGE,
    SOURCE_NOT_FOUND_MESSAGE, AccountNotFoundError,
    invalid_argument_error, operation_error, classify_exception
)
from .fees import FeePolicy
from .logging_config import get_logger, log_action
from .money import ZERO, exact_arithmetic, to_amount, quantize_amount
from .statements import StatementEntry, StatementStore
from .unit_of_work import UnitOfWork


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of an engine operation: a value or a classified error"""
    value: Any = None
    error: Optional[LedgerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    def unwrap(self) -> Any:
        """Return the value, raising the error if the operation failed"""
        if self.error is not None:
            raise self.error
        return self.value


class TransactionEngine:
    """
    Ledger transaction engine

    Holds no mutable state of its own; all state lives behind the store
    contracts it is given.
    """

    def __init__(
        self,
        accounts: AccountStore,
        statements: StatementStore,
        unit_of_work: UnitOfWork,
        fee_policy: FeePolicy,
        amount_precision: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.accounts = accounts
        self.statements = statements
        self.unit_of_work = unit_of_work
        self.fee_policy = fee_policy
        self.amount_precision = amount_precision
        self.clock = clock
        self.logger = get_logger("bank_ledger.engine")

    # Public operations

    def withdraw(self, account_number: str, amount: Any) -> TransactionResult:
        """Withdraw ``amount`` plus the withdrawal fee; value is the updated Account"""
        return self._execute(
            "withdraw", f"account:{account_number}",
            lambda: self._withdraw(account_number, to_amount(amount))
        )

    def deposit(self, account_number: str, amount: Any) -> TransactionResult:
        """Deposit ``amount`` minus the percentage deposit fee; value is None"""
        return self._execute(
            "deposit", f"account:{account_number}",
            lambda: self._deposit(account_number, to_amount(amount))
        )

    def transfer(self, from_account: str, to_account: str, amount: Any) -> TransactionResult:
        """Move ``amount`` between accounts, charging the transfer fee to the source; value is None"""
        return self._execute(
            "transfer", f"account:{from_account}->{to_account}",
            lambda: self._transfer(from_account, to_account, to_amount(amount))
        )

    def get_statement(self, account_number: str) -> TransactionResult:
        """Statement entries of an account ordered by timestamp"""
        return self._execute(
            "get_statement", f"account:{account_number}",
            lambda: self._get_statement(account_number)
        )

    def get_accounts(self) -> TransactionResult:
        """All accounts ordered by account number"""
        return self._execute(
            "get_accounts", "accounts",
            lambda: sorted(self.accounts.get_accounts(), key=lambda acc: acc.account_number)
        )

    # Operation bodies; these raise LedgerError and rely on atomic() for rollback

    def _withdraw(self, account_number: str, amount: Optional[Decimal]) -> Account:
        self._validate(account_number, None, amount)

        with exact_arithmetic(), self.unit_of_work.atomic(account_number):
            balance = self.accounts.get_balance(account_number)
            withdrawal_fee = self.fee_policy.current_fees().withdrawal_fee

            self._check(operation_error(balance, ZERO, amount + withdrawal_fee))

            after_withdrawal = balance - amount
            updated_balance = after_withdrawal - withdrawal_fee

            self.accounts.update_balance(account_number, updated_balance)
            self._record(account_number, "Withdrawal", -amount, after_withdrawal)
            self._record(account_number, "Withdrawal fee", ZERO - withdrawal_fee, updated_balance)

        return Account(account_number=account_number, balance=updated_balance)

    def _deposit(self, account_number: str, amount: Optional[Decimal]) -> None:
        self._validate(account_number, None, amount)

        with exact_arithmetic(), self.unit_of_work.atomic(account_number):
            balance = self.accounts.get_balance(account_number)
            if balance is None:
                raise AccountNotFoundError(SOURCE_NOT_FOUND_MESSAGE)

            deposit_fee_rate = self.fee_policy.current_fees().deposit_fee_rate
            fee = amount * deposit_fee_rate
            if self.amount_precision is not None:
                fee = quantize_amount(fee, self.amount_precision)

            after_deposit = balance + amount
            updated_balance = after_deposit - fee

            self.accounts.update_balance(account_number, updated_balance)
            self._record(account_number, "Deposit", amount, after_deposit)
            self._record(account_number, "Deposit fee", ZERO - fee, updated_balance)

    def _transfer(self, from_account: str, to_account: str, amount: Optional[Decimal]) -> None:
        self._validate(from_account, to_account, amount)

        with exact_arithmetic(), self.unit_of_work.atomic(from_account, to_account):
            source_balance = self.accounts.get_balance(from_account)
            destination_balance = self.accounts.get_balance(to_account)
            transfer_fee = self.fee_policy.current_fees().transfer_fee

            self._check(operation_error(source_balance, destination_balance, amount + transfer_fee))

            after_transfer = source_balance - amount
            source_updated = after_transfer - transfer_fee
            destination_updated = destination_balance + amount

            self.accounts.update_balance(from_account, source_updated)
            self.accounts.update_balance(to_account, destination_updated)
            self._record(from_account, f"Transfer (to account {to_account})", -amount, after_transfer)
            self._record(from_account, "Transfer fee", ZERO - transfer_fee, source_updated)
            self._record(to_account, f"Transfer (from account {from_account})",
                         amount, destination_updated)

    def _get_statement(self, account_number: str) -> List[StatementEntry]:
        self._validate(account_number, None, Decimal('1'))

        if self.accounts.get_balance(account_number) is None:
            raise AccountNotFoundError(SOURCE_NOT_FOUND_MESSAGE)

        entries = self.statements.get(account_number)
        if not entries:
            raise EmptyResultError(EMPTY_STATEMENT_MESSAGE)

        return sorted(entries, key=lambda entry: entry.sort_key)

    # Helpers

    def _validate(self, from_account: str, to_account: Optional[str], amount: Optional[Decimal]) -> None:
        self._check(invalid_argument_error(from_account, to_account, amount))

    @staticmethod
    def _check(error: Optional[LedgerError]) -> None:
        if error is not None:
            raise error

    def _record(self, account_number: str, description: str, amount: Decimal, resulting_balance: Decimal) -> None:
        self.statements.save(account_number, self.clock(), description, amount, resulting_balance)

    def _execute(self, action: str, resource: str, operation: Callable[[], Any]) -> TransactionResult:
        """Run an operation body and turn its outcome into a TransactionResult"""
        try:
            value = operation()
        except LedgerError as e:
            self._log_failure(action, resource, e, e)
            return TransactionResult(error=e)
        except Exception as e:
            error = classify_exception(e)
            self._log_failure(action, resource, error, e)
            return TransactionResult(error=error)

        log_action(self.logger, "info", f"{action} completed", action=action, resource=resource)
        return TransactionResult(value=value)

    def _log_failure(self, action: str, resource: str, error: LedgerError, cause: BaseException) -> None:
        extra = {"error_kind": error.kind.value, "error_message": error.message}
        if error.kind.is_client_error:
            log_action(self.logger, "warning", f"{action} rejected: {error.message}",
                       action=action, resource=resource, extra=extra)
        else:
            extra["detail"] = str(cause)
            log_action(self.logger, "error", f"{action} failed: {error.kind.value}",
                       action=action, resource=resource, extra=extra, exc_info=cause)
