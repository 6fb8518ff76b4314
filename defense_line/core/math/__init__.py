"""
Core math modules для Defense Line

Целочисленная fixed-point арифметика с гарантией отсутствия переполнения.
"""

from defense_line.core.math.fixed_point import (
    # Constants
    BPS_DENOMINATOR,
    UINT256_MAX,
    # Validation
    require_uint,
    # Checked operations
    apply_bps,
    checked_add,
    checked_mul,
    checked_sub,
    mul_div,
    rescale,
)

__all__ = [
    # Constants
    "BPS_DENOMINATOR",
    "UINT256_MAX",
    # Validation
    "require_uint",
    # Checked operations
    "apply_bps",
    "checked_add",
    "checked_mul",
    "checked_sub",
    "mul_div",
    "rescale",
]
