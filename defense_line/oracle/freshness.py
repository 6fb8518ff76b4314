"""
Reading Assessment — классификация показаний оракула

Проверяет:
- Stale reading: now - observed_at > staleness window
- Future reading: observed_at > now + future tolerance
- Invalid price: price <= 0 (или 0 после нормализации точности)

Stale/invalid показание — это "no signal", а не ошибка: движок остаётся в
MONITORING и ждёт следующего показания.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from defense_line.core.config import DefenseConfig
from defense_line.core.domain.price_reading import PriceReading
from defense_line.core.errors import InvalidOracleReading, StaleOracleData


class ReadingVerdict(str, Enum):
    """Вердикт по показанию оракула."""

    VALID = "VALID"
    STALE = "STALE"
    INVALID = "INVALID"


@dataclass(frozen=True)
class ReadingAssessment:
    """Результат оценки показания."""

    verdict: ReadingVerdict
    normalized_price: int  # в config.price_decimals, 0 если INVALID
    age_ms: int
    error_code: str  # "" если VALID
    details: str

    @property
    def is_valid(self) -> bool:
        return self.verdict == ReadingVerdict.VALID


def assess_reading(
    reading: PriceReading,
    now_ms: int,
    config: DefenseConfig,
    last_accepted: Optional[PriceReading] = None,
) -> ReadingAssessment:
    """
    Оценка показания оракула.

    Порядок проверок:
    1. price <= 0 → INVALID
    2. Нормализованная цена == 0 → INVALID
    3. observed_at в будущем сверх допуска → INVALID
    4. Возраст > staleness window → STALE
    5. round_id меньше последнего принятого И observed_at не новее его → STALE
       (повтор старого раунда; перезапущенный фид со свежим observed_at принимается)

    Args:
        reading: Показание
        now_ms: Текущее время (UTC, миллисекунды)
        config: Конфигурация движка
        last_accepted: Последнее принятое показание (nullable)
    """
    age_ms = reading.age_ms(now_ms)

    if reading.price <= 0:
        return _rejected(
            ReadingVerdict.INVALID,
            InvalidOracleReading.code,
            age_ms,
            f"non-positive price {reading.price}",
        )

    normalized = reading.normalized_price(config.price_decimals)
    if normalized == 0:
        return _rejected(
            ReadingVerdict.INVALID,
            InvalidOracleReading.code,
            age_ms,
            f"price {reading.price} with decimals={reading.decimals} "
            f"rounds to zero at {config.price_decimals} decimals",
        )

    if -age_ms > config.future_tolerance_ms:
        return _rejected(
            ReadingVerdict.INVALID,
            InvalidOracleReading.code,
            age_ms,
            f"observed_at {reading.observed_at_ms} is {-age_ms}ms in the future",
        )

    if age_ms > config.staleness_window_ms:
        return _rejected(
            ReadingVerdict.STALE,
            StaleOracleData.code,
            age_ms,
            f"reading age {age_ms}ms exceeds window {config.staleness_window_ms}ms",
        )

    if (
        last_accepted is not None
        and last_accepted.round_id is not None
        and reading.round_id is not None
        and reading.round_id < last_accepted.round_id
        and reading.observed_at_ms <= last_accepted.observed_at_ms
    ):
        return _rejected(
            ReadingVerdict.STALE,
            StaleOracleData.code,
            age_ms,
            f"round {reading.round_id} older than last accepted round {last_accepted.round_id}",
        )

    return ReadingAssessment(
        verdict=ReadingVerdict.VALID,
        normalized_price=normalized,
        age_ms=age_ms,
        error_code="",
        details=f"price={normalized} age={age_ms}ms",
    )


def _rejected(
    verdict: ReadingVerdict, error_code: str, age_ms: int, details: str
) -> ReadingAssessment:
    return ReadingAssessment(
        verdict=verdict,
        normalized_price=0,
        age_ms=age_ms,
        error_code=error_code,
        details=details,
    )
