"""
PriceReading — Показание ценового оракула

Immutable Pydantic модель, представляющая одно показание reference-актива
(ETH/USD). Совместимость с JSON Schema (contracts/schema/price_reading.json).

Модель НЕ отклоняет price <= 0: такое показание — валидный объект, который
движок классифицирует как INVALID ("no signal"), а не как исключение.
"""

from typing import Optional

from pydantic import BaseModel, Field

from defense_line.core.math.fixed_point import rescale


class PriceReading(BaseModel):
    """
    Показание оракула.

    price — fixed-point целое с точностью decimals (Chainlink ETH/USD: 8).
    observed_at_ms — момент наблюдения (UTC, миллисекунды).
    round_id — идентификатор раунда фида (nullable, для round-based фидов).
    """

    price: int = Field(..., strict=True, description="Цена (fixed-point, может быть <= 0)")
    decimals: int = Field(..., strict=True, ge=0, le=36, description="Точность price")
    observed_at_ms: int = Field(
        ..., strict=True, ge=0, description="Timestamp наблюдения (UTC, миллисекунды)"
    )
    round_id: Optional[int] = Field(
        None, ge=0, description="Идентификатор раунда (nullable)"
    )

    model_config = {"frozen": True}

    def age_ms(self, now_ms: int) -> int:
        """Возраст показания относительно now_ms (отрицательный — из будущего)."""
        return now_ms - self.observed_at_ms

    def normalized_price(self, target_decimals: int) -> int:
        """
        Цена в точности target_decimals (floor при понижении точности).

        Для price <= 0 возвращает 0 (такие показания невалидны).
        """
        if self.price <= 0:
            return 0
        return rescale(self.price, self.decimals, target_decimals)
