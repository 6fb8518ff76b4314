"""
Units — Централизованный модуль конверсии единиц

Единственный допустимый способ преобразований между:
- stable minor units (USDC, 6 decimals)
- volatile minor units (ETH, 18 decimals)
- oracle price (USD за 1 ETH, 8 decimals)

ЗАПРЕЩЕНО смешивать точности без явного конвертера из этого модуля.
"""

from decimal import Decimal
from typing import Final

from defense_line.core.math.fixed_point import apply_bps, mul_div, require_uint


# =============================================================================
# ТОЧНОСТИ АКТИВОВ
# =============================================================================
STABLE_DECIMALS: Final[int] = 6
VOLATILE_DECIMALS: Final[int] = 18
PRICE_DECIMALS: Final[int] = 8

# Defense ratio по умолчанию: 8000 / 10000 = 80% от reference price
DEFAULT_DEFENSE_RATIO_BPS: Final[int] = 8000


# =============================================================================
# БАЗОВЫЕ КОНВЕРТЕРЫ
# =============================================================================


def defense_line_price(reference_price: int, defense_ratio_bps: int) -> int:
    """
    Цена defense line: reference_price * defense_ratio.

    Args:
        reference_price: Reference price (PRICE_DECIMALS)
        defense_ratio_bps: Доля в basis points (8000 = 80%)

    Returns:
        Цена defense line (PRICE_DECIMALS, floor)

    Raises:
        ValueError: Если результат равен нулю
    """
    line = apply_bps(reference_price, defense_ratio_bps)
    if line == 0:
        raise ValueError(
            f"defense line price is zero for reference={reference_price}, "
            f"ratio_bps={defense_ratio_bps}"
        )
    return line


def stable_to_volatile(
    stable_amount: int,
    price: int,
    stable_decimals: int = STABLE_DECIMALS,
    volatile_decimals: int = VOLATILE_DECIMALS,
    price_decimals: int = PRICE_DECIMALS,
) -> int:
    """
    Конверсия: stable → volatile по цене price.

    volatile = stable * 10^(volatile_dec - stable_dec + price_dec) / price

    Пример: 1000 USDC при 1600 USD/ETH → 0.625 ETH
        stable_to_volatile(1_000_000_000, 160_000_000_000) == 625_000_000_000_000_000

    Args:
        stable_amount: Сумма stable (minor units)
        price: Цена volatile в stable (price_decimals)

    Returns:
        Количество volatile (minor units, floor)

    Raises:
        ValueError: Если price <= 0
    """
    require_uint(stable_amount, "stable_amount")
    if require_uint(price, "price") == 0:
        raise ValueError("price must be positive")

    scale_exp = volatile_decimals - stable_decimals + price_decimals
    if scale_exp >= 0:
        return mul_div(stable_amount, 10**scale_exp, price)
    return stable_amount // (price * 10 ** (-scale_exp))


def volatile_to_stable(
    volatile_amount: int,
    price: int,
    stable_decimals: int = STABLE_DECIMALS,
    volatile_decimals: int = VOLATILE_DECIMALS,
    price_decimals: int = PRICE_DECIMALS,
) -> int:
    """
    Конверсия: volatile → stable по цене price (обратная к stable_to_volatile).

    Используется для отчётности (стоимость кредита по текущей цене).
    """
    scale_exp = volatile_decimals - stable_decimals + price_decimals
    return mul_div(volatile_amount, price, 10**scale_exp)


def pro_rata_share(total: int, part: int, whole: int) -> int:
    """
    Доля total пропорционально part / whole (floor).

    Сумма долей по всем part никогда не превышает total.

    Args:
        total: Распределяемая величина
        part: Вклад участника
        whole: Сумма всех вкладов (> 0)
    """
    if part > whole:
        raise ValueError(f"part {part} exceeds whole {whole}")
    return mul_div(total, part, whole)


# =============================================================================
# ОТОБРАЖЕНИЕ
# =============================================================================


def to_decimal(amount: int, decimals: int) -> Decimal:
    """
    Minor units → Decimal для отображения (без потери точности).

    Examples:
        >>> to_decimal(1_500_000, 6)
        Decimal('1.500000')
    """
    return Decimal(amount).scaleb(-decimals).quantize(Decimal(1).scaleb(-decimals))


def from_decimal(value: Decimal | str | int, decimals: int) -> int:
    """
    Decimal/строка → minor units. Дробная часть сверх точности запрещена.

    Raises:
        ValueError: Если значение отрицательное или не представимо точно
    """
    d = Decimal(value)
    scaled = d.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{value} has more than {decimals} decimal places")
    if scaled < 0:
        raise ValueError(f"{value} is negative")
    return int(scaled)
