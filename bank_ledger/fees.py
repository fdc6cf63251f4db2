"""
Fee Policy Module

Resolves the fee values applied by the transaction engine. Values are read
from configuration on every call so operators can adjust fees without a
restart; a missing or malformed value is a configuration error, never a
silent default.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Mapping, Optional

from .config import (
    LedgerSettings, WITHDRAWAL_FEE_KEY, DEPOSIT_PERCENTAGE_FEE_KEY, TRANSFER_FEE_KEY
)
from .errors import ConfigurationError
from .money import ZERO, parse_decimal


FeeSource = Callable[[], Mapping[str, Optional[str]]]


@dataclass(frozen=True)
class FeeSchedule:
    """Fee values in effect for one operation"""
    withdrawal_fee: Decimal   # Flat amount
    deposit_fee_rate: Decimal  # Fraction of the deposited amount
    transfer_fee: Decimal     # Flat amount

    def __post_init__(self):
        if self.withdrawal_fee < ZERO:
            raise ConfigurationError(f"{WITHDRAWAL_FEE_KEY} must not be negative")

        if not ZERO <= self.deposit_fee_rate < Decimal('1'):
            raise ConfigurationError(f"{DEPOSIT_PERCENTAGE_FEE_KEY} must be in [0, 1)")

        if self.transfer_fee < ZERO:
            raise ConfigurationError(f"{TRANSFER_FEE_KEY} must not be negative")


class FeePolicy(ABC):
    """Source of the current fee values"""

    @abstractmethod
    def current_fees(self) -> FeeSchedule:
        """Return the fee values in effect right now"""
        pass


class StaticFeePolicy(FeePolicy):
    """Fee policy with a fixed schedule"""

    def __init__(self, schedule: FeeSchedule):
        self.schedule = schedule

    def current_fees(self) -> FeeSchedule:
        return self.schedule


def settings_fee_source() -> Mapping[str, Optional[str]]:
    """Read fee values from a freshly loaded settings instance"""
    return LedgerSettings().fee_values()


class ConfiguredFeePolicy(FeePolicy):
    """
    Fee policy backed by a key-value configuration source

    The source is queried on every call; nothing is cached.
    """

    def __init__(self, source: FeeSource = settings_fee_source):
        self.source = source

    def current_fees(self) -> FeeSchedule:
        values = self.source()
        return FeeSchedule(
            withdrawal_fee=self._read(values, WITHDRAWAL_FEE_KEY),
            deposit_fee_rate=self._read(values, DEPOSIT_PERCENTAGE_FEE_KEY),
            transfer_fee=self._read(values, TRANSFER_FEE_KEY)
        )

    @staticmethod
    def _read(values: Mapping[str, Optional[str]], key: str) -> Decimal:
        raw = values.get(key)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            raise ConfigurationError(f"Fee value {key} is not configured")

        try:
            return parse_decimal(raw)
        except ValueError as e:
            raise ConfigurationError(f"Fee value {key} is not a decimal: {raw!r}") from e
