"""
Fixed-Point Arithmetic — целочисленная арифметика с проверкой переполнения

Все суммы протокола — целые minor units (USDC 6, ETH 18, oracle price 8).
Float в бухгалтерии запрещён: только int и операции из этого модуля.

КРИТИЧЕСКИЕ ИНВАРИАНТЫ:
1. Результат любой операции лежит в [0, UINT256_MAX], иначе FixedPointOverflow
2. Деление всегда floor (округление в пользу протокола)
3. Деление на ноль никогда не происходит (ValueError до вычисления)
"""

from typing import Final

from defense_line.core.errors import FixedPointOverflow

# =============================================================================
# ДИАПАЗОН
# =============================================================================

# Верхняя граница значения (совместимость с uint256 on-chain представлением)
UINT256_MAX: Final[int] = 2**256 - 1

# Знаменатель для basis points (8000 / 10000 = 80%)
BPS_DENOMINATOR: Final[int] = 10_000


# =============================================================================
# ПРОВЕРКИ
# =============================================================================


def require_uint(value: int, name: str = "value") -> int:
    """
    Проверка, что значение — неотрицательный int в диапазоне uint256.

    bool отклоняется явно (bool — подкласс int в Python).

    Raises:
        TypeError: Если value не int
        FixedPointOverflow: Если value вне [0, UINT256_MAX]
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise FixedPointOverflow(f"{name}={value} outside uint256 range")
    return value


# =============================================================================
# ОПЕРАЦИИ
# =============================================================================


def checked_add(a: int, b: int) -> int:
    """Сложение с проверкой переполнения."""
    result = require_uint(a, "a") + require_uint(b, "b")
    if result > UINT256_MAX:
        raise FixedPointOverflow(f"addition overflow: {a} + {b}")
    return result


def checked_sub(a: int, b: int) -> int:
    """Вычитание без ухода в минус."""
    require_uint(a, "a")
    require_uint(b, "b")
    if b > a:
        raise FixedPointOverflow(f"subtraction underflow: {a} - {b}")
    return a - b


def checked_mul(a: int, b: int) -> int:
    """Умножение с проверкой переполнения."""
    result = require_uint(a, "a") * require_uint(b, "b")
    if result > UINT256_MAX:
        raise FixedPointOverflow(f"multiplication overflow: {a} * {b}")
    return result


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    floor(a * b / denominator) с проверкой переполнения промежуточного произведения.

    Используется для pro-rata долей и конверсии по цене.

    Args:
        a: Первый множитель
        b: Второй множитель
        denominator: Делитель (> 0)

    Returns:
        Целая часть частного (остаток отбрасывается — dust)

    Raises:
        ValueError: Если denominator == 0
        FixedPointOverflow: Если a * b вне uint256

    Examples:
        >>> mul_div(100, 300, 1000)
        30
        >>> mul_div(100, 1, 3)
        33
    """
    require_uint(denominator, "denominator")
    if denominator == 0:
        raise ValueError("mul_div denominator must be positive")
    return checked_mul(a, b) // denominator


def apply_bps(value: int, bps: int) -> int:
    """value * bps / 10000 (floor)."""
    if bps > BPS_DENOMINATOR:
        raise ValueError(f"bps must be <= {BPS_DENOMINATOR}, got {bps}")
    return mul_div(value, bps, BPS_DENOMINATOR)


def rescale(value: int, from_decimals: int, to_decimals: int) -> int:
    """
    Перевод fixed-point значения между точностями.

    Уменьшение точности отбрасывает младшие разряды (floor).

    Examples:
        >>> rescale(160000000000, 8, 8)
        160000000000
        >>> rescale(1600_000000, 6, 8)
        160000000000
        >>> rescale(1600_000000000000000000, 18, 8)
        160000000000
    """
    require_uint(value, "value")
    if from_decimals < 0 or to_decimals < 0:
        raise ValueError("decimals must be non-negative")
    if to_decimals >= from_decimals:
        return checked_mul(value, 10 ** (to_decimals - from_decimals))
    return value // 10 ** (from_decimals - to_decimals)
