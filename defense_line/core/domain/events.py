"""
Events — Журнал событий протокола

Аналог on-chain событий (Deposited, DefenseLineTriggered, ...): каждое
изменение состояния движка фиксируется одной записью ProtocolEvent.
Журнал append-only, читается внешними слоями (backend, индексатор).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EventType(str, Enum):
    """Тип события протокола."""

    DEPOSITED = "Deposited"
    DEFENSE_LINE_TRIGGERED = "DefenseLineTriggered"
    CONVERSION_EXECUTED = "ConversionExecuted"
    WITHDRAWN = "Withdrawn"
    EMERGENCY_STOP = "EmergencyStop"
    REARMED = "Rearmed"


@dataclass(frozen=True)
class ProtocolEvent:
    """Одно событие протокола."""

    sequence: int  # монотонный номер (с 1)
    event_type: EventType
    epoch: int
    ts_utc_ms: int
    account: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
