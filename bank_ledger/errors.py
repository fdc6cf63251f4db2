"""
Error Classification Module

Maps validation and state failures to a stable taxonomy. Every failure
condition produces the same error kind and message regardless of which
operation detected it, so callers and logs can rely on them.
"""

from decimal import Decimal, Inexact
from enum import Enum
from typing import Any, Optional
import sqlite3

from .storage import StorageError


class ErrorKind(Enum):
    """Kinds of ledger failures"""
    INVALID_ARGUMENT = "invalid_argument"          # Rejected before touching any store
    ACCOUNT_NOT_FOUND = "account_not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    EMPTY_RESULT = "empty_result"
    CONFIGURATION_ERROR = "configuration_error"
    STORE_FAILURE = "store_failure"
    UNEXPECTED = "unexpected"

    @property
    def is_client_error(self) -> bool:
        """True when the failure is caused by the request rather than the server"""
        return self in _CLIENT_ERROR_KINDS


_CLIENT_ERROR_KINDS = frozenset({
    ErrorKind.INVALID_ARGUMENT,
    ErrorKind.ACCOUNT_NOT_FOUND,
    ErrorKind.INSUFFICIENT_FUNDS,
    ErrorKind.EMPTY_RESULT,
})


# Fixed messages
EMPTY_ACCOUNT_MESSAGE = "Account number cannot be null or empty."
EQUAL_ACCOUNTS_MESSAGE = "Source and destination accounts cannot be equal."
NON_POSITIVE_AMOUNT_MESSAGE = "Amount must be greater than zero"
INEXACT_AMOUNT_MESSAGE = "Amount must be an exact decimal value."
PRECISION_EXCEEDED_MESSAGE = "Amount cannot be applied without rounding the balance."
SOURCE_NOT_FOUND_MESSAGE = "Source account inexistent."
DESTINATION_NOT_FOUND_MESSAGE = "Destination account inexistent."
INSUFFICIENT_FUNDS_MESSAGE = "Insufficient funds."
EMPTY_STATEMENT_MESSAGE = "No statement entries found for account."
STORE_FAILURE_MESSAGE = "A storage error occurred."
UNEXPECTED_MESSAGE = "An unexpected error occurred."


class LedgerError(Exception):
    """Base class for classified ledger failures"""

    kind = ErrorKind.UNEXPECTED

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __eq__(self, other) -> bool:
        if not isinstance(other, LedgerError):
            return NotImplemented
        return self.kind == other.kind and self.message == other.message

    def __hash__(self) -> int:
        return hash((self.kind, self.message))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class InvalidArgumentError(LedgerError):
    kind = ErrorKind.INVALID_ARGUMENT


class AccountNotFoundError(LedgerError):
    kind = ErrorKind.ACCOUNT_NOT_FOUND


class InsufficientFundsError(LedgerError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class EmptyResultError(LedgerError):
    kind = ErrorKind.EMPTY_RESULT


class ConfigurationError(LedgerError):
    kind = ErrorKind.CONFIGURATION_ERROR


class StoreFailureError(LedgerError):
    kind = ErrorKind.STORE_FAILURE


class UnexpectedError(LedgerError):
    kind = ErrorKind.UNEXPECTED


def invalid_argument_error(
    from_account: Optional[str],
    to_account: Optional[str],
    amount: Any
) -> Optional[InvalidArgumentError]:
    """
    Check request arguments and build the error for the first violated rule

    Rules are checked in a fixed order: empty account, equal accounts,
    then amount. Single-account operations pass None as ``to_account``.

    Returns:
        InvalidArgumentError, or None when the arguments are valid
    """
    if not from_account or (to_account is not None and not to_account):
        return InvalidArgumentError(EMPTY_ACCOUNT_MESSAGE)

    if to_account is not None and from_account == to_account:
        return InvalidArgumentError(EQUAL_ACCOUNTS_MESSAGE)

    if not isinstance(amount, Decimal) or not amount.is_finite():
        return InvalidArgumentError(INEXACT_AMOUNT_MESSAGE)

    if amount <= 0:
        return InvalidArgumentError(NON_POSITIVE_AMOUNT_MESSAGE)

    return None


def operation_error(
    source_balance: Optional[Decimal],
    destination_balance: Optional[Decimal],
    minimum_balance_required: Decimal
) -> Optional[LedgerError]:
    """
    Check balances read inside a scope and build the matching error

    Single-account operations pass Decimal('0') as ``destination_balance``.

    Returns:
        AccountNotFoundError, InsufficientFundsError, or None
    """
    if source_balance is None:
        return AccountNotFoundError(SOURCE_NOT_FOUND_MESSAGE)

    if destination_balance is None:
        return AccountNotFoundError(DESTINATION_NOT_FOUND_MESSAGE)

    if source_balance < minimum_balance_required:
        return InsufficientFundsError(INSUFFICIENT_FUNDS_MESSAGE)

    return None


def classify_exception(exc: BaseException) -> LedgerError:
    """Map any exception onto the ledger error taxonomy"""
    if isinstance(exc, LedgerError):
        return exc

    # Raised by exact_arithmetic() when a balance result would need rounding
    if isinstance(exc, Inexact):
        return InvalidArgumentError(PRECISION_EXCEEDED_MESSAGE)

    if isinstance(exc, (StorageError, sqlite3.Error)):
        return StoreFailureError(STORE_FAILURE_MESSAGE)

    return UnexpectedError(UNEXPECTED_MESSAGE)
