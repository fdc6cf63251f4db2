"""
Tests for fee resolution and Decimal helpers
"""

import pytest
from decimal import Decimal, Inexact

from bank_ledger.errors import ConfigurationError
from bank_ledger.fees import ConfiguredFeePolicy, FeeSchedule, StaticFeePolicy
from bank_ledger.money import exact_arithmetic, parse_decimal, to_amount, quantize_amount


VALID_VALUES = {
    "WithdrawalFee": "1",
    "DepositPercentageFee": "0.02",
    "TransferFee": "1.50",
}


class TestFeeSchedule:
    """Test range checks on fee values"""

    def test_valid_schedule(self):
        schedule = FeeSchedule(Decimal('0'), Decimal('0.99'), Decimal('0'))
        assert schedule.deposit_fee_rate == Decimal('0.99')

    @pytest.mark.parametrize("withdrawal, rate, transfer", [
        (Decimal('-1'), Decimal('0'), Decimal('0')),
        (Decimal('0'), Decimal('1'), Decimal('0')),
        (Decimal('0'), Decimal('-0.01'), Decimal('0')),
        (Decimal('0'), Decimal('0'), Decimal('-0.5')),
    ])
    def test_out_of_range_values(self, withdrawal, rate, transfer):
        with pytest.raises(ConfigurationError):
            FeeSchedule(withdrawal, rate, transfer)


class TestConfiguredFeePolicy:
    """Test fee values read from a configuration source"""

    def test_reads_all_values(self):
        policy = ConfiguredFeePolicy(lambda: VALID_VALUES)

        fees = policy.current_fees()

        assert fees == FeeSchedule(Decimal('1'), Decimal('0.02'), Decimal('1.50'))

    def test_reads_fresh_on_every_call(self):
        values = dict(VALID_VALUES)
        calls = []

        def source():
            calls.append(1)
            return values

        policy = ConfiguredFeePolicy(source)
        assert policy.current_fees().withdrawal_fee == Decimal('1')

        values["WithdrawalFee"] = "3"
        assert policy.current_fees().withdrawal_fee == Decimal('3')
        assert len(calls) == 2

    @pytest.mark.parametrize("key", ["WithdrawalFee", "DepositPercentageFee", "TransferFee"])
    def test_missing_value(self, key):
        values = {k: v for k, v in VALID_VALUES.items() if k != key}

        with pytest.raises(ConfigurationError, match=key):
            ConfiguredFeePolicy(lambda: values).current_fees()

    @pytest.mark.parametrize("raw", ["", "   ", "1,5", "1.000,00", "abc", "NaN", "Infinity", "1_000", "1e3", "2E-2"])
    def test_unparseable_value(self, raw):
        values = dict(VALID_VALUES, TransferFee=raw)

        with pytest.raises(ConfigurationError):
            ConfiguredFeePolicy(lambda: values).current_fees()

    def test_default_source_reads_environment(self, monkeypatch):
        monkeypatch.setenv("LEDGER_WITHDRAWAL_FEE", "2")
        monkeypatch.setenv("LEDGER_DEPOSIT_PERCENTAGE_FEE", "0.01")
        monkeypatch.setenv("LEDGER_TRANSFER_FEE", "0.75")
        policy = ConfiguredFeePolicy()

        assert policy.current_fees() == FeeSchedule(Decimal('2'), Decimal('0.01'), Decimal('0.75'))

        monkeypatch.setenv("LEDGER_WITHDRAWAL_FEE", "5")
        assert policy.current_fees().withdrawal_fee == Decimal('5')

    def test_default_source_missing_environment(self, monkeypatch):
        for name in ("LEDGER_WITHDRAWAL_FEE", "LEDGER_DEPOSIT_PERCENTAGE_FEE", "LEDGER_TRANSFER_FEE"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(ConfigurationError):
            ConfiguredFeePolicy().current_fees()


class TestStaticFeePolicy:
    def test_returns_fixed_schedule(self):
        schedule = FeeSchedule(Decimal('1'), Decimal('0'), Decimal('2'))
        assert StaticFeePolicy(schedule).current_fees() is schedule


class TestMoney:
    """Test Decimal parsing and rounding helpers"""

    @pytest.mark.parametrize("text, expected", [
        ("1", Decimal('1')),
        ("0.02", Decimal('0.02')),
        (" 12.50 ", Decimal('12.50')),
        ("-3", Decimal('-3')),
        (".5", Decimal('0.5')),
    ])
    def test_parse_decimal(self, text, expected):
        assert parse_decimal(text) == expected

    @pytest.mark.parametrize("text", ["", "1,5", "1 000", "nan", "+", "0x10", "1e2", "5E-1"])
    def test_parse_decimal_rejects(self, text):
        with pytest.raises(ValueError):
            parse_decimal(text)

    def test_to_amount(self):
        assert to_amount(Decimal('5.25')) == Decimal('5.25')
        assert to_amount(7) == Decimal('7')
        assert to_amount("7.10") == Decimal('7.10')
        assert to_amount(7.1) is None
        assert to_amount(True) is None
        assert to_amount(None) is None
        assert to_amount("seven") is None
        assert to_amount(Decimal('sNaN')) is None

    def test_quantize_amount_rounds_half_up(self):
        assert quantize_amount(Decimal('0.005'), 2) == Decimal('0.01')
        assert quantize_amount(Decimal('0.0049'), 2) == Decimal('0.00')
        assert quantize_amount(Decimal('2.5'), 0) == Decimal('3')

    def test_exact_arithmetic_traps_rounding(self):
        with exact_arithmetic():
            assert Decimal(10 ** 27) - Decimal('1') == Decimal(10 ** 27 - 1)
            with pytest.raises(Inexact):
                Decimal(10 ** 28) - Decimal('0.5')
            # Explicit rounding stays available inside the exact context
            assert quantize_amount(Decimal('0.005'), 2) == Decimal('0.01')
