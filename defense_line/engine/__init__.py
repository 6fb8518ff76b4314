"""Defense Engine — state machine MONITORING → TRIGGERED → EXECUTED.

- Trigger по свежему показанию оракула (price <= defense line)
- One-shot атомарная конверсия stable пула с pro-rata начислением
- Административные emergency_stop / force_execute / rearm
"""

from .state_machine import (
    DefenseEngine,
    ExecutionResult,
    TriggerEvaluation,
    TriggerOutcome,
)

__all__ = [
    "DefenseEngine",
    "ExecutionResult",
    "TriggerEvaluation",
    "TriggerOutcome",
]
