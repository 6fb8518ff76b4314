"""
Domain models and value objects.

Contains fundamental domain entities: units, PriceReading, ProtocolState,
query snapshots and protocol events.
"""

from defense_line.core.domain.events import EventType, ProtocolEvent
from defense_line.core.domain.price_reading import PriceReading
from defense_line.core.domain.protocol_state import (
    AccountSnapshot,
    DefenseLineStatus,
    EngineState,
    ProtocolSnapshot,
    ProtocolState,
    TriggerSource,
)
from defense_line.core.domain.units import (
    DEFAULT_DEFENSE_RATIO_BPS,
    PRICE_DECIMALS,
    STABLE_DECIMALS,
    VOLATILE_DECIMALS,
    defense_line_price,
    from_decimal,
    pro_rata_share,
    stable_to_volatile,
    to_decimal,
    volatile_to_stable,
)

__all__ = [
    # Units module
    "STABLE_DECIMALS",
    "VOLATILE_DECIMALS",
    "PRICE_DECIMALS",
    "DEFAULT_DEFENSE_RATIO_BPS",
    "defense_line_price",
    "stable_to_volatile",
    "volatile_to_stable",
    "pro_rata_share",
    "to_decimal",
    "from_decimal",
    # Oracle reading
    "PriceReading",
    # Protocol state
    "EngineState",
    "TriggerSource",
    "ProtocolState",
    "AccountSnapshot",
    "DefenseLineStatus",
    "ProtocolSnapshot",
    # Events
    "EventType",
    "ProtocolEvent",
]
