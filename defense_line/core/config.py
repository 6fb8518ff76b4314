"""
DefenseConfig — Конфигурация движка Defense Line

Immutable Pydantic модель. Все константы, которые не заданы исходным протоколом
явно (staleness window, future tolerance), вынесены сюда с документированными
значениями по умолчанию.

Переопределение через окружение: DefenseConfig.from_env() читает переменные
с префиксом DEFENSE_LINE_ (например, DEFENSE_LINE_STALENESS_WINDOW_SEC=600).
"""

import os
import re
from typing import Mapping

from pydantic import BaseModel, Field, field_validator

from defense_line.core.domain.units import (
    DEFAULT_DEFENSE_RATIO_BPS,
    PRICE_DECIMALS,
    STABLE_DECIMALS,
    VOLATILE_DECIMALS,
)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-f]{40}$")

# Адрес владельца по умолчанию (deployer), переопределяется в конфигурации
DEFAULT_OWNER = "0x" + "0" * 39 + "1"


def normalize_address(address: str) -> str:
    """Приведение адреса к каноническому виду (lowercase 0x + 40 hex)."""
    if not isinstance(address, str):
        raise ValueError(f"address must be str, got {type(address).__name__}")
    normalized = address.strip().lower()
    if not ADDRESS_PATTERN.match(normalized):
        raise ValueError(f"invalid address: {address!r}")
    return normalized


class DefenseConfig(BaseModel):
    """
    Конфигурация Defense Engine.

    Значения по умолчанию:
    - defense_ratio_bps = 8000 (defense line = 80% от reference price)
    - staleness_window_sec = 3600 (heartbeat ETH/USD фида — 1 час)
    - future_tolerance_sec = 60 (допуск на расхождение часов)
    """

    defense_ratio_bps: int = Field(
        DEFAULT_DEFENSE_RATIO_BPS,
        ge=1,
        le=10_000,
        description="Defense ratio в basis points (8000 = 80%)",
    )
    staleness_window_sec: int = Field(
        3600, gt=0, description="Максимальный возраст показания оракула (секунды)"
    )
    future_tolerance_sec: int = Field(
        60, ge=0, description="Допуск на observed_at в будущем (секунды)"
    )
    price_decimals: int = Field(PRICE_DECIMALS, ge=0, le=36)
    stable_decimals: int = Field(STABLE_DECIMALS, ge=0, le=36)
    volatile_decimals: int = Field(VOLATILE_DECIMALS, ge=0, le=36)
    owner: str = Field(DEFAULT_OWNER, description="Привилегированный адрес (admin)")

    model_config = {"frozen": True}

    @field_validator("owner")
    @classmethod
    def validate_owner(cls, v: str) -> str:
        return normalize_address(v)

    @property
    def staleness_window_ms(self) -> int:
        return self.staleness_window_sec * 1000

    @property
    def future_tolerance_ms(self) -> int:
        return self.future_tolerance_sec * 1000

    @classmethod
    def from_env(
        cls,
        prefix: str = "DEFENSE_LINE_",
        environ: Mapping[str, str] | None = None,
    ) -> "DefenseConfig":
        """
        Загрузка конфигурации из переменных окружения.

        Args:
            prefix: Префикс переменных
            environ: Источник (default: os.environ)

        Returns:
            DefenseConfig с переопределёнными полями

        Raises:
            pydantic.ValidationError: Если значения некорректны
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, str] = {}
        for name in cls.model_fields:
            raw = env.get(f"{prefix}{name.upper()}")
            if raw is not None:
                overrides[name] = raw.strip()
        return cls(**overrides)
