"""Entry Points — ProtocolGateway (validation layer)

Тонкий слой между внешними вызывающими (backend, dashboard, poller) и
DefenseEngine:
- Валидация формы запроса (адрес, тип суммы) до обращения к движку
- Каждая команда атомарна: либо полностью применена, либо полностью отклонена
- Все DefenseLineError возвращаются как типизированный CommandResult
  (accepted=False, error_code=...); непредвиденные исключения пробрасываются

Порядок проверок для каждой команды:
1. Формат caller/amount → INVALID_ADDRESS / INVALID_AMOUNT
2. Команда движка (state gating, ledger, привилегии)
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from defense_line.core.config import normalize_address
from defense_line.core.domain.price_reading import PriceReading
from defense_line.core.errors import DefenseLineError, InvalidAddress, InvalidAmount
from defense_line.engine.state_machine import DefenseEngine, TriggerEvaluation
from defense_line.oracle.adapter import PriceOracleAdapter


@dataclass(frozen=True)
class CommandResult:
    """Результат команды для вызывающей стороны."""

    command: str
    accepted: bool
    error_code: str  # "" если accepted

    # Данные результата (snapshot счёта, сумма вывода, статус, ...)
    value: Any = None

    details: str = ""
    caller: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


class ProtocolGateway:
    """Command surface Defense Line.

    deposit(caller, amount)       — caller-scoped
    withdraw(caller)              — caller-scoped, весь volatile
    evaluate_trigger(reading)     — внешний poller на каждом свежем показании
    poll(adapter)                 — чтение адаптера + evaluate_trigger
    execute_conversion()
    emergency_stop(caller)        — privileged
    force_execute(caller)         — privileged
    rearm(caller, reference_price) — privileged
    """

    def __init__(self, engine: DefenseEngine):
        self.engine = engine

    def deposit(self, caller: str, amount: int) -> CommandResult:
        def run() -> Any:
            self._require_amount(amount)
            return self.engine.deposit(caller, amount)

        return self._dispatch("deposit", run, caller=caller)

    def withdraw(self, caller: str) -> CommandResult:
        return self._dispatch("withdraw", lambda: self.engine.withdraw(caller), caller=caller)

    def evaluate_trigger(self, reading: PriceReading) -> CommandResult:
        """Оценка trigger. "No signal" — accepted=True с error_code из оценки."""
        evaluation = self.engine.evaluate_trigger(reading)
        return self._from_evaluation(evaluation)

    def poll(self, adapter: PriceOracleAdapter) -> CommandResult:
        evaluation = self.engine.evaluate_from_adapter(adapter)
        return self._from_evaluation(evaluation)

    def execute_conversion(self) -> CommandResult:
        return self._dispatch("execute_conversion", self.engine.execute_conversion)

    def emergency_stop(self, caller: str) -> CommandResult:
        return self._dispatch(
            "emergency_stop", lambda: self.engine.emergency_stop(caller), caller=caller
        )

    def force_execute(self, caller: str) -> CommandResult:
        return self._dispatch(
            "force_execute", lambda: self.engine.force_execute(caller), caller=caller
        )

    def rearm(self, caller: str, reference_price: int) -> CommandResult:
        def run() -> Any:
            self._require_amount(reference_price, name="reference_price")
            return self.engine.rearm(caller, reference_price)

        return self._dispatch("rearm", run, caller=caller)

    # -------------------------------------------------------------------------

    def _dispatch(
        self, command: str, run: Callable[[], Any], caller: Optional[str] = None
    ) -> CommandResult:
        try:
            if caller is not None:
                caller = self._require_address(caller)
            value = run()
        except DefenseLineError as e:
            return CommandResult(
                command=command,
                accepted=False,
                error_code=e.code,
                details=e.message,
                caller=caller,
            )
        return CommandResult(
            command=command,
            accepted=True,
            error_code="",
            value=value,
            details="OK",
            caller=caller,
        )

    @staticmethod
    def _from_evaluation(evaluation: TriggerEvaluation) -> CommandResult:
        return CommandResult(
            command="evaluate_trigger",
            accepted=True,
            error_code=evaluation.error_code,
            value=evaluation,
            details=evaluation.details,
            extra={
                "outcome": evaluation.outcome.value,
                "transition_occurred": evaluation.transition_occurred,
            },
        )

    @staticmethod
    def _require_address(caller: str) -> str:
        try:
            return normalize_address(caller)
        except ValueError as e:
            raise InvalidAddress(str(e)) from e

    @staticmethod
    def _require_amount(amount: Any, name: str = "amount") -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount(f"{name} must be int minor units, got {type(amount).__name__}")
        if amount <= 0:
            raise InvalidAmount(f"{name} must be positive, got {amount}")
