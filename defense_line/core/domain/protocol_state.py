"""
ProtocolState — Состояние протокола Defense Line

Два представления:
- ProtocolState: изменяемый dataclass, единственный владелец — DefenseEngine
- AccountSnapshot / DefenseLineStatus / ProtocolSnapshot: immutable Pydantic
  снапшоты для query surface (совместимы с contracts/schema/*.json)

ИНВАРИАНТЫ:
- is_executed ⇒ is_triggered
- total_volatile_held > 0 ⇒ is_executed
- dust_volatile <= total_volatile_held
- retained_dust_volatile >= dust_volatile (накопительно по эпохам)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from defense_line.core.errors import InvariantViolation


# =============================================================================
# ENUMS
# =============================================================================


class EngineState(str, Enum):
    """
    Состояние Defense Engine.

    Переходы только вперёд: MONITORING → TRIGGERED → EXECUTED.
    Возврат в MONITORING — только административный re-arm (новая эпоха).
    """

    MONITORING = "MONITORING"
    TRIGGERED = "TRIGGERED"
    EXECUTED = "EXECUTED"


class TriggerSource(str, Enum):
    """Источник перехода в TRIGGERED."""

    ORACLE = "ORACLE"
    EMERGENCY_STOP = "EMERGENCY_STOP"


# =============================================================================
# MUTABLE STATE (owned by DefenseEngine)
# =============================================================================


@dataclass
class ProtocolState:
    """Глобальное состояние протокола (одна эпоха мониторинга)."""

    reference_price: int
    defense_ratio_bps: int
    defense_line_price: int

    epoch: int = 1
    is_triggered: bool = False
    is_executed: bool = False
    trigger_ts_utc_ms: Optional[int] = None
    execution_ts_utc_ms: Optional[int] = None
    trigger_source: Optional[TriggerSource] = None
    trigger_price: Optional[int] = None

    # Итоги конверсии (immutable после EXECUTED)
    total_volatile_held: int = 0
    total_stable_converted: int = 0
    dust_volatile: int = 0

    # Dust всех исполненных эпох (переносится при rearm)
    retained_dust_volatile: int = 0

    @property
    def engine_state(self) -> EngineState:
        if self.is_executed:
            return EngineState.EXECUTED
        if self.is_triggered:
            return EngineState.TRIGGERED
        return EngineState.MONITORING

    def check_invariants(self) -> None:
        """
        Проверка структурных инвариантов.

        Raises:
            InvariantViolation: Если инвариант нарушен
        """
        if self.is_executed and not self.is_triggered:
            raise InvariantViolation("is_executed without is_triggered")
        if self.total_volatile_held != 0 and not self.is_executed:
            raise InvariantViolation("total_volatile_held set before execution")
        if self.dust_volatile > self.total_volatile_held:
            raise InvariantViolation("dust exceeds held volatile")
        if self.retained_dust_volatile < self.dust_volatile:
            raise InvariantViolation("retained dust below current epoch dust")


# =============================================================================
# QUERY SNAPSHOTS
# =============================================================================


class AccountSnapshot(BaseModel):
    """
    Снапшот счёта депозитора.

    stable_deposited — USDC minor units (6 decimals)
    volatile_credited — ETH minor units (18 decimals)
    """

    address: str = Field(..., pattern="^0x[0-9a-f]{40}$", description="Адрес кошелька")
    stable_deposited: int = Field(..., ge=0, description="Депонированный stable")
    volatile_credited: int = Field(..., ge=0, description="Начисленный volatile")
    stable_converted: int = Field(0, ge=0, description="Stable, израсходованный конверсиями")
    volatile_withdrawn: int = Field(0, ge=0, description="Выведенный volatile (накопительно)")
    first_deposit_ts_utc_ms: Optional[int] = Field(
        None, ge=0, description="Время первого депозита (nullable)"
    )

    model_config = {"frozen": True}


class DefenseLineStatus(BaseModel):
    """
    Статус defense line (аналог getDefenseLineStatus).

    Минимальная query surface для внешних слоёв (backend, dashboard).
    """

    state: EngineState = Field(..., description="Состояние движка")
    epoch: int = Field(..., ge=1, description="Номер эпохи мониторинга")
    is_triggered: bool
    is_executed: bool
    reference_price: int = Field(..., gt=0, description="Reference price (8 decimals)")
    defense_ratio_bps: int = Field(..., ge=1, le=10_000)
    defense_line_price: int = Field(..., gt=0, description="Defense line (8 decimals)")
    trigger_ts_utc_ms: Optional[int] = Field(None, ge=0)
    execution_ts_utc_ms: Optional[int] = Field(None, ge=0)
    trigger_source: Optional[TriggerSource] = None
    trigger_price: Optional[int] = Field(None, gt=0)

    model_config = {"frozen": True}


class ProtocolSnapshot(BaseModel):
    """
    Полный снапшот протокола: статус + итоги + счета.
    """

    status: DefenseLineStatus
    total_stable_deposited: int = Field(..., ge=0)
    total_volatile_held: int = Field(..., ge=0)
    total_volatile_credited: int = Field(..., ge=0, description="Сумма невыведенных долей")
    dust_volatile: int = Field(..., ge=0, description="Остаток округления (протокол)")
    retained_dust_volatile: int = Field(
        0, ge=0, description="Dust протокола, накопленный по всем эпохам"
    )
    depositor_count: int = Field(..., ge=0)
    accounts: list[AccountSnapshot] = Field(default_factory=list)

    model_config = {"frozen": True}
