"""Defense Engine — state machine Defense Line.

Состояния: MONITORING → TRIGGERED → EXECUTED (только вперёд).
- MONITORING → TRIGGERED: свежее валидное показание оракула с price <= defense line,
  либо привилегированный emergency_stop
- TRIGGERED → EXECUTED: one-shot конверсия всего stable пула по цене defense line
  с pro-rata начислением volatile долей
- EXECUTED → MONITORING: только административный rearm (новая эпоха)

Конкурентность:
- Все команды и запросы сериализованы одним RLock (single-writer)
- Конверсия атомарна: при любом исключении (включая прерывание) состояние
  откатывается к снапшоту до исполнения
"""

import logging
import threading
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from defense_line.core.config import DefenseConfig, normalize_address
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
from defense_line.core.domain.units import defense_line_price, stable_to_volatile
from defense_line.core.errors import (
    AlreadyExecuted,
    AlreadyTriggered,
    EngineFrozen,
    InvalidAddress,
    InvalidAmount,
    InvariantViolation,
    NotTriggeredYet,
    NothingToWithdraw,
    OracleReadFailed,
    PendingWithdrawals,
    Unauthorized,
)
from defense_line.core.math import checked_add
from defense_line.ledger.ledger import Ledger
from defense_line.oracle.adapter import PriceOracleAdapter, utc_now_ms
from defense_line.oracle.freshness import ReadingVerdict, assess_reading

logger = logging.getLogger(__name__)


class TriggerOutcome(str, Enum):
    """Исход оценки trigger-условия."""

    TRIGGERED = "TRIGGERED"
    ABOVE_LINE = "ABOVE_LINE"
    ALREADY_TRIGGERED = "ALREADY_TRIGGERED"
    NO_SIGNAL_STALE = "NO_SIGNAL_STALE"
    NO_SIGNAL_INVALID = "NO_SIGNAL_INVALID"
    NO_SIGNAL_READ_FAILED = "NO_SIGNAL_READ_FAILED"


@dataclass(frozen=True)
class TriggerEvaluation:
    """Результат evaluate_trigger."""

    new_state: EngineState
    previous_state: EngineState
    transition_occurred: bool
    outcome: TriggerOutcome

    price: int  # нормализованная цена, 0 если показание отклонено
    defense_line_price: int
    error_code: str  # STALE_ORACLE_DATA / INVALID_ORACLE_READING / ... или ""

    details: str

    @property
    def is_no_signal(self) -> bool:
        return self.outcome in (
            TriggerOutcome.NO_SIGNAL_STALE,
            TriggerOutcome.NO_SIGNAL_INVALID,
            TriggerOutcome.NO_SIGNAL_READ_FAILED,
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Результат конверсии TRIGGERED → EXECUTED."""

    epoch: int
    conversion_price: int
    total_stable_converted: int
    total_volatile_held: int
    volatile_distributed: int
    dust_volatile: int
    accounts_credited: int
    execution_ts_utc_ms: int


class DefenseEngine:
    """Defense Engine — единственный владелец Ledger и ProtocolState.

    Команды:
    - deposit / withdraw (caller-scoped)
    - evaluate_trigger / evaluate_from_adapter (внешний poller)
    - execute_conversion
    - emergency_stop / force_execute / rearm (только owner)

    Запросы: status, account, snapshot, current_price, depositor_count, events
    """

    def __init__(
        self,
        reference_price: int,
        config: Optional[DefenseConfig] = None,
        clock: Callable[[], int] = utc_now_ms,
    ):
        """
        Args:
            reference_price: reference price volatile-актива (config.price_decimals)
            config: конфигурация (default DefenseConfig())
            clock: источник времени UTC в миллисекундах
        """
        self.config = config or DefenseConfig()
        self._clock = clock
        self._lock = threading.RLock()

        self._state = self._new_state(reference_price, epoch=1)
        self._ledger = Ledger(epoch=1)
        self._events: list[ProtocolEvent] = []
        self._last_reading: Optional[PriceReading] = None
        self._last_price: Optional[int] = None

        logger.info(
            f"DefenseEngine armed: reference={reference_price}, "
            f"ratio_bps={self.config.defense_ratio_bps}, "
            f"defense_line={self._state.defense_line_price}"
        )

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def deposit(self, account: str, amount: int) -> AccountSnapshot:
        """Депозит stable (только в MONITORING).

        Raises:
            InvalidAddress, InvalidAmount, EngineFrozen
        """
        address = self._normalize(account)
        with self._lock:
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidAmount(f"deposit amount must be a positive int, got {amount!r}")
            if self._state.engine_state != EngineState.MONITORING:
                raise EngineFrozen(
                    f"deposits closed: engine is {self._state.engine_state.value}"
                )

            now = self._clock()
            record = self._ledger.credit_deposit(address, amount, ts_utc_ms=now)
            self._emit(EventType.DEPOSITED, now, account=address, amount=amount)
            logger.info(
                f"Deposit: {address} +{amount} "
                f"(account={record.stable_deposited}, "
                f"total={self._ledger.total_stable_deposited})"
            )
            return record.to_snapshot()

    def withdraw(self, account: str) -> int:
        """Вывод всей volatile доли (только в EXECUTED).

        Returns:
            Выведенная сумма volatile (minor units)

        Raises:
            InvalidAddress, NothingToWithdraw
        """
        address = self._normalize(account)
        with self._lock:
            if not self._state.is_executed:
                raise NothingToWithdraw(
                    f"nothing to withdraw: conversion not executed "
                    f"(engine is {self._state.engine_state.value})"
                )
            amount = self._ledger.debit_withdrawal(address)
            self._emit(EventType.WITHDRAWN, self._clock(), account=address, amount=amount)
            logger.info(f"Withdraw: {address} -{amount} volatile")
            return amount

    def evaluate_trigger(
        self, reading: PriceReading, now_ms: Optional[int] = None
    ) -> TriggerEvaluation:
        """Оценка trigger-условия по показанию оракула.

        Stale/invalid показание — "no signal": состояние не меняется, исключение
        не выбрасывается, код ошибки возвращается в результате.
        """
        with self._lock:
            now = self._clock() if now_ms is None else now_ms
            previous = self._state.engine_state
            line = self._state.defense_line_price

            assessment = assess_reading(
                reading, now, self.config, last_accepted=self._last_reading
            )

            if not assessment.is_valid:
                outcome = (
                    TriggerOutcome.NO_SIGNAL_STALE
                    if assessment.verdict == ReadingVerdict.STALE
                    else TriggerOutcome.NO_SIGNAL_INVALID
                )
                logger.warning(f"Oracle reading rejected ({assessment.error_code}): {assessment.details}")
                return TriggerEvaluation(
                    new_state=previous,
                    previous_state=previous,
                    transition_occurred=False,
                    outcome=outcome,
                    price=0,
                    defense_line_price=line,
                    error_code=assessment.error_code,
                    details=assessment.details,
                )

            price = assessment.normalized_price
            self._last_reading = reading
            self._last_price = price

            if previous != EngineState.MONITORING:
                return TriggerEvaluation(
                    new_state=previous,
                    previous_state=previous,
                    transition_occurred=False,
                    outcome=TriggerOutcome.ALREADY_TRIGGERED,
                    price=price,
                    defense_line_price=line,
                    error_code="",
                    details=f"Engine already {previous.value}, evaluation is a no-op",
                )

            if price > line:
                return TriggerEvaluation(
                    new_state=previous,
                    previous_state=previous,
                    transition_occurred=False,
                    outcome=TriggerOutcome.ABOVE_LINE,
                    price=price,
                    defense_line_price=line,
                    error_code="",
                    details=f"price={price} above defense_line={line}",
                )

            self._trigger(now, TriggerSource.ORACLE, trigger_price=price)
            return TriggerEvaluation(
                new_state=EngineState.TRIGGERED,
                previous_state=previous,
                transition_occurred=True,
                outcome=TriggerOutcome.TRIGGERED,
                price=price,
                defense_line_price=line,
                error_code="",
                details=f"price={price} <= defense_line={line}",
            )

    def evaluate_from_adapter(
        self, adapter: PriceOracleAdapter, now_ms: Optional[int] = None
    ) -> TriggerEvaluation:
        """Чтение адаптера + evaluate_trigger. Сбой чтения — "no signal"."""
        try:
            reading = adapter.read_price()
        except Exception as e:
            with self._lock:
                state = self._state.engine_state
                line = self._state.defense_line_price
            logger.warning(f"Oracle read failed: {type(e).__name__}: {e}")
            return TriggerEvaluation(
                new_state=state,
                previous_state=state,
                transition_occurred=False,
                outcome=TriggerOutcome.NO_SIGNAL_READ_FAILED,
                price=0,
                defense_line_price=line,
                error_code=OracleReadFailed.code,
                details=f"{type(e).__name__}: {e}",
            )
        return self.evaluate_trigger(reading, now_ms=now_ms)

    def execute_conversion(self) -> ExecutionResult:
        """One-shot конверсия TRIGGERED → EXECUTED.

        Raises:
            NotTriggeredYet: движок в MONITORING
            AlreadyExecuted: конверсия уже выполнена
        """
        with self._lock:
            state = self._state.engine_state
            if state == EngineState.MONITORING:
                raise NotTriggeredYet("conversion requires TRIGGERED state")
            if state == EngineState.EXECUTED:
                raise AlreadyExecuted(
                    f"conversion already executed at {self._state.execution_ts_utc_ms}"
                )
            with self._atomic("execute_conversion"):
                return self._execute()

    def emergency_stop(self, caller: str) -> DefenseLineStatus:
        """Принудительный переход в TRIGGERED без ценового условия (только owner).

        Конверсию не исполняет: нужен отдельный execute_conversion.

        Raises:
            Unauthorized, AlreadyTriggered
        """
        with self._lock:
            self._require_owner(caller, "emergency_stop")
            if self._state.is_triggered:
                raise AlreadyTriggered(
                    f"engine already {self._state.engine_state.value}"
                )
            now = self._clock()
            self._trigger(now, TriggerSource.EMERGENCY_STOP, trigger_price=None)
            return self._status()

    def force_execute(self, caller: str) -> ExecutionResult:
        """emergency_stop (если нужно) + конверсия одной неделимой операцией.

        Raises:
            Unauthorized, AlreadyExecuted
        """
        with self._lock:
            self._require_owner(caller, "force_execute")
            if self._state.is_executed:
                raise AlreadyExecuted(
                    f"conversion already executed at {self._state.execution_ts_utc_ms}"
                )
            with self._atomic("force_execute"):
                if not self._state.is_triggered:
                    self._trigger(self._clock(), TriggerSource.EMERGENCY_STOP, trigger_price=None)
                return self._execute()

    def rearm(self, caller: str, reference_price: int) -> DefenseLineStatus:
        """Административный re-arm.

        - MONITORING: новый reference price, пересчёт defense line
        - TRIGGERED: запрещено (активный цикл)
        - EXECUTED: новая эпоха мониторинга, если все доли выведены

        Raises:
            Unauthorized, InvalidAmount, AlreadyTriggered, PendingWithdrawals
        """
        with self._lock:
            self._require_owner(caller, "rearm")
            state = self._state.engine_state

            if state == EngineState.TRIGGERED:
                raise AlreadyTriggered("cannot rearm during an active trigger cycle")

            if state == EngineState.EXECUTED:
                outstanding = self._ledger.sum_volatile_credited()
                if outstanding > 0:
                    raise PendingWithdrawals(
                        f"{outstanding} volatile still credited to depositors"
                    )

            previous_state = self._state
            new_state = self._new_state(reference_price, epoch=previous_state.epoch)
            new_state.retained_dust_volatile = previous_state.retained_dust_volatile
            now = self._clock()
            with self._atomic("rearm"):
                if state == EngineState.EXECUTED:
                    new_state.epoch = previous_state.epoch + 1
                    self._ledger.open_epoch(new_state.epoch)
                self._state = new_state
                self._emit(
                    EventType.REARMED,
                    now,
                    reference_price=new_state.reference_price,
                    defense_line_price=new_state.defense_line_price,
                    previous_epoch=previous_state.epoch,
                    previous_total_volatile_held=previous_state.total_volatile_held,
                    previous_dust_volatile=previous_state.dust_volatile,
                    retained_dust_volatile=new_state.retained_dust_volatile,
                )
            # Показания прошлой эпохи не ограничивают раунды нового фида
            self._last_reading = None

            logger.info(
                f"Rearmed: epoch={new_state.epoch}, reference={new_state.reference_price}, "
                f"defense_line={new_state.defense_line_price}"
            )
            return self._status()

    # =========================================================================
    # QUERIES
    # =========================================================================

    @property
    def state(self) -> EngineState:
        with self._lock:
            return self._state.engine_state

    @property
    def defense_line_price(self) -> int:
        with self._lock:
            return self._state.defense_line_price

    @property
    def total_stable_deposited(self) -> int:
        with self._lock:
            return self._ledger.total_stable_deposited

    @property
    def total_volatile_held(self) -> int:
        with self._lock:
            return self._state.total_volatile_held

    def status(self) -> DefenseLineStatus:
        with self._lock:
            return self._status()

    def account(self, account: str) -> AccountSnapshot:
        """Снапшот счёта (нулевой для неизвестного адреса)."""
        address = self._normalize(account)
        with self._lock:
            record = self._ledger.get_account(address)
            if record is None:
                return AccountSnapshot(address=address, stable_deposited=0, volatile_credited=0)
            return record.to_snapshot()

    def snapshot(self) -> ProtocolSnapshot:
        with self._lock:
            accounts = [r.to_snapshot() for r in self._ledger.accounts()]
            return ProtocolSnapshot(
                status=self._status(),
                total_stable_deposited=self._ledger.total_stable_deposited,
                total_volatile_held=self._state.total_volatile_held,
                total_volatile_credited=sum(a.volatile_credited for a in accounts),
                dust_volatile=self._state.dust_volatile,
                retained_dust_volatile=self._state.retained_dust_volatile,
                depositor_count=len(accounts),
                accounts=accounts,
            )

    def current_price(self) -> Optional[int]:
        """Последняя принятая (валидная) цена оракула, None если не было."""
        with self._lock:
            return self._last_price

    def depositor_count(self) -> int:
        with self._lock:
            return self._ledger.depositor_count

    def events(self, since_sequence: int = 0) -> list[ProtocolEvent]:
        with self._lock:
            return [e for e in self._events if e.sequence > since_sequence]

    def check_invariants(self) -> None:
        """Проверка инвариантов ledger + state.

        Raises:
            InvariantViolation: Если инвариант нарушен
        """
        with self._lock:
            self._state.check_invariants()
            if self._ledger.total_stable_deposited != self._ledger.sum_stable_deposited():
                raise InvariantViolation("total_stable_deposited != sum(stable_deposited)")
            if self._ledger.sum_volatile_credited() > self._state.total_volatile_held:
                raise InvariantViolation("sum(volatile_credited) exceeds total_volatile_held")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _new_state(self, reference_price: int, epoch: int) -> ProtocolState:
        if isinstance(reference_price, bool) or not isinstance(reference_price, int) or reference_price <= 0:
            raise InvalidAmount(f"reference price must be a positive int, got {reference_price!r}")
        ratio = self.config.defense_ratio_bps
        try:
            line = defense_line_price(reference_price, ratio)
        except ValueError as e:
            raise InvalidAmount(str(e)) from e
        return ProtocolState(
            reference_price=reference_price,
            defense_ratio_bps=ratio,
            defense_line_price=line,
            epoch=epoch,
        )

    def _trigger(self, now: int, source: TriggerSource, trigger_price: Optional[int]) -> None:
        self._state.is_triggered = True
        self._state.trigger_ts_utc_ms = now
        self._state.trigger_source = source
        self._state.trigger_price = trigger_price

        event_type = (
            EventType.DEFENSE_LINE_TRIGGERED
            if source == TriggerSource.ORACLE
            else EventType.EMERGENCY_STOP
        )
        self._emit(
            event_type,
            now,
            defense_price=self._state.defense_line_price,
            current_price=trigger_price,
        )
        logger.info(
            f"Defense line TRIGGERED ({source.value}): "
            f"defense_line={self._state.defense_line_price}, price={trigger_price}"
        )

    def _execute(self) -> ExecutionResult:
        """Конверсия; вызывается под lock и внутри _atomic."""
        now = self._clock()
        price = self._state.defense_line_price
        epoch = self._state.epoch
        total_stable = self._ledger.total_stable_deposited

        total_volatile = stable_to_volatile(
            total_stable,
            price,
            stable_decimals=self.config.stable_decimals,
            volatile_decimals=self.config.volatile_decimals,
            price_decimals=self.config.price_decimals,
        )
        allocation = self._ledger.distribute_conversion(total_volatile, epoch)

        self._state.total_volatile_held = total_volatile
        self._state.total_stable_converted = total_stable
        self._state.dust_volatile = allocation.dust
        self._state.retained_dust_volatile = checked_add(
            self._state.retained_dust_volatile, allocation.dust
        )
        self._state.is_executed = True
        self._state.execution_ts_utc_ms = now
        self.check_invariants()

        self._emit(
            EventType.CONVERSION_EXECUTED,
            now,
            conversion_price=price,
            total_stable_converted=total_stable,
            total_volatile_held=total_volatile,
            dust_volatile=allocation.dust,
        )
        logger.info(
            f"Conversion EXECUTED: epoch={epoch}, stable={total_stable} -> "
            f"volatile={total_volatile} @ {price}, accounts={len(allocation.shares)}, "
            f"dust={allocation.dust}"
        )
        return ExecutionResult(
            epoch=epoch,
            conversion_price=price,
            total_stable_converted=total_stable,
            total_volatile_held=total_volatile,
            volatile_distributed=allocation.distributed,
            dust_volatile=allocation.dust,
            accounts_credited=len(allocation.shares),
            execution_ts_utc_ms=now,
        )

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        """Всё-или-ничего: при любом исключении откат ledger, state и журнала."""
        ledger_snapshot = self._ledger.checkpoint()
        state_snapshot = deepcopy(self._state)
        events_len = len(self._events)
        try:
            yield
        except BaseException as e:
            self._ledger.restore(ledger_snapshot)
            self._state = state_snapshot
            del self._events[events_len:]
            logger.error(f"{operation} rolled back: {type(e).__name__}: {e}")
            raise

    def _require_owner(self, caller: str, operation: str) -> None:
        if self._normalize(caller) != self.config.owner:
            logger.warning(f"Unauthorized {operation} attempt by {caller}")
            raise Unauthorized(f"{operation} is restricted to the owner")

    def _normalize(self, address: str) -> str:
        try:
            return normalize_address(address)
        except ValueError as e:
            raise InvalidAddress(str(e)) from e

    def _emit(
        self,
        event_type: EventType,
        ts_utc_ms: int,
        account: Optional[str] = None,
        **payload: Any,
    ) -> None:
        self._events.append(
            ProtocolEvent(
                sequence=len(self._events) + 1,
                event_type=event_type,
                epoch=self._state.epoch,
                ts_utc_ms=ts_utc_ms,
                account=account,
                payload=payload,
            )
        )

    def _status(self) -> DefenseLineStatus:
        s = self._state
        return DefenseLineStatus(
            state=s.engine_state,
            epoch=s.epoch,
            is_triggered=s.is_triggered,
            is_executed=s.is_executed,
            reference_price=s.reference_price,
            defense_ratio_bps=s.defense_ratio_bps,
            defense_line_price=s.defense_line_price,
            trigger_ts_utc_ms=s.trigger_ts_utc_ms,
            execution_ts_utc_ms=s.execution_ts_utc_ms,
            trigger_source=s.trigger_source,
            trigger_price=s.trigger_price,
        )
