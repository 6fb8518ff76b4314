"""
Price Oracle Adapter — контракт между движком и ценовым фидом

read_price() → PriceReading(price, decimals, observed_at_ms, round_id)

Адаптер НЕ делает retries и НЕ кэширует: когда и как часто читать фид —
решает внешний poller, который на каждом свежем показании вызывает
DefenseEngine.evaluate_trigger().

Реализации:
- StaticPriceOracle: цена задаётся вручную (операторы, тесты)
- RoundDataOracleAdapter: round-based фид (latestRoundData + decimals)
"""

import threading
import time
from typing import Callable, Optional, Protocol, Tuple

from defense_line.core.domain.price_reading import PriceReading
from defense_line.core.domain.units import PRICE_DECIMALS

# (round_id, answer, started_at_sec, updated_at_sec, answered_in_round)
RoundData = Tuple[int, int, int, int, int]


def utc_now_ms() -> int:
    """Текущее время UTC в миллисекундах."""
    return int(time.time() * 1000)


class PriceOracleAdapter(Protocol):
    """Источник цены reference-актива."""

    def read_price(self) -> PriceReading:
        ...


class StaticPriceOracle:
    """
    Оракул с вручную заданной ценой.

    Каждый set_price() фиксирует новый раунд с observed_at = clock().
    """

    def __init__(
        self,
        price: int,
        decimals: int = PRICE_DECIMALS,
        observed_at_ms: Optional[int] = None,
        clock: Callable[[], int] = utc_now_ms,
    ):
        self._clock = clock
        self._lock = threading.Lock()
        self._decimals = decimals
        self._round_id = 1
        self._price = price
        self._observed_at_ms = clock() if observed_at_ms is None else observed_at_ms

    def set_price(self, price: int, observed_at_ms: Optional[int] = None) -> None:
        with self._lock:
            self._price = price
            self._observed_at_ms = self._clock() if observed_at_ms is None else observed_at_ms
            self._round_id += 1

    def read_price(self) -> PriceReading:
        with self._lock:
            return PriceReading(
                price=self._price,
                decimals=self._decimals,
                observed_at_ms=self._observed_at_ms,
                round_id=self._round_id,
            )


class RoundDataOracleAdapter:
    """
    Адаптер round-based фида (формат latestRoundData).

    Транспорт (RPC-вызов контракта) передаётся снаружи в виде callable,
    адаптер только нормализует ответ:
    - updated_at (секунды) → observed_at_ms
    - answered_in_round < round_id → неполный раунд, price обнуляется
      (движок классифицирует показание как INVALID)
    """

    def __init__(
        self,
        latest_round_data: Callable[[], RoundData],
        decimals: int | Callable[[], int] = PRICE_DECIMALS,
    ):
        self._latest_round_data = latest_round_data
        self._decimals = decimals

    def read_price(self) -> PriceReading:
        round_id, answer, _started_at, updated_at, answered_in_round = self._latest_round_data()
        decimals = self._decimals() if callable(self._decimals) else self._decimals

        price = int(answer)
        if answered_in_round < round_id or updated_at <= 0:
            price = 0

        return PriceReading(
            price=price,
            decimals=int(decimals),
            observed_at_ms=max(int(updated_at), 0) * 1000,
            round_id=int(round_id),
        )
