"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Dict, Optional


# Keys of the fee configuration source
WITHDRAWAL_FEE_KEY = "WithdrawalFee"
DEPOSIT_PERCENTAGE_FEE_KEY = "DepositPercentageFee"
TRANSFER_FEE_KEY = "TransferFee"


class LedgerSettings(BaseSettings):
    """Bank ledger configuration"""

    # Storage configuration
    database_url: str = "memory://"  # memory://, sqlite://, sqlite:///path/to/ledger.db
    lock_timeout_seconds: float = 10.0

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Monetary configuration
    amount_precision: Optional[int] = None  # Round derived fees to this many places; None keeps them exact

    # Fee configuration, kept as raw strings and parsed per operation
    withdrawal_fee: Optional[str] = None
    deposit_percentage_fee: Optional[str] = None
    transfer_fee: Optional[str] = None

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False

    def fee_values(self) -> Dict[str, Optional[str]]:
        """Fee values keyed by their configuration names"""
        return {
            WITHDRAWAL_FEE_KEY: self.withdrawal_fee,
            DEPOSIT_PERCENTAGE_FEE_KEY: self.deposit_percentage_fee,
            TRANSFER_FEE_KEY: self.transfer_fee,
        }


# Global configuration instance
config = LedgerSettings()


def get_config() -> LedgerSettings:
    """Get global configuration instance"""
    return config
