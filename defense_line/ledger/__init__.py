"""Ledger — учёт депозитов stable и pro-rata volatile долей."""

from .ledger import AccountRecord, ConversionAllocation, Ledger

__all__ = [
    "AccountRecord",
    "ConversionAllocation",
    "Ledger",
]
