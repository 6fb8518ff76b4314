"""
Contract Validation Module

Модуль для валидации JSON контрактов query surface Defense Line.
"""

from .validators import (
    AccountSnapshotValidator,
    ContractValidator,
    DefenseLineStatusValidator,
    PriceReadingValidator,
    SchemaLoader,
    validate_account_snapshot,
    validate_defense_line_status,
    validate_price_reading,
)

__all__ = [
    # Classes
    "SchemaLoader",
    "ContractValidator",
    "DefenseLineStatusValidator",
    "AccountSnapshotValidator",
    "PriceReadingValidator",
    # Functions
    "validate_defense_line_status",
    "validate_account_snapshot",
    "validate_price_reading",
]
