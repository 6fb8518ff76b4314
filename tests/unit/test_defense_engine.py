"""Тесты для Defense Engine state machine.

Coverage:
- Trigger condition (свежее показание, stale, invalid, idempotent)
- One-shot конверсия и pro-rata начисление
- Gating депозитов и выводов по состоянию
- emergency_stop / force_execute / rearm
- Атомарный откат конверсии
- Query surface и журнал событий
"""

import pytest

from defense_line.core.domain.events import EventType
from defense_line.core.domain.price_reading import PriceReading
from defense_line.core.domain.protocol_state import EngineState, TriggerSource
from defense_line.core.errors import (
    AlreadyExecuted,
    AlreadyTriggered,
    EngineFrozen,
    InvalidAddress,
    InvalidAmount,
    InvariantViolation,
    NotTriggeredYet,
    NothingToWithdraw,
    PendingWithdrawals,
    Unauthorized,
)
from defense_line.engine import DefenseEngine, TriggerOutcome
from defense_line.oracle import StaticPriceOracle
from tests.helpers import (
    ALICE,
    BOB,
    CAROL,
    DEFENSE_LINE,
    OWNER,
    REFERENCE_PRICE,
    USD_PRICE,
    USDC,
)


def reading(price_usd: int, observed_at_ms: int, round_id=None) -> PriceReading:
    return PriceReading(
        price=price_usd * USD_PRICE,
        decimals=8,
        observed_at_ms=observed_at_ms,
        round_id=round_id,
    )


def trigger(engine, clock) -> None:
    result = engine.evaluate_trigger(reading(1500, clock()))
    assert result.outcome == TriggerOutcome.TRIGGERED


class TestInitialState:
    """Тесты начального состояния."""

    def test_starts_monitoring(self, engine):
        status = engine.status()

        assert status.state == EngineState.MONITORING
        assert status.epoch == 1
        assert not status.is_triggered
        assert not status.is_executed
        assert status.trigger_ts_utc_ms is None
        assert status.execution_ts_utc_ms is None

    def test_defense_line_price(self, engine):
        assert engine.defense_line_price == DEFENSE_LINE
        assert engine.status().reference_price == REFERENCE_PRICE
        assert engine.status().defense_ratio_bps == 8000

    @pytest.mark.parametrize("reference", [0, -1, 1.5, True])
    def test_invalid_reference_price(self, config, clock, reference):
        with pytest.raises(InvalidAmount):
            DefenseEngine(reference_price=reference, config=config, clock=clock)


class TestTriggerCondition:
    """Тесты trigger-условия."""

    def test_price_below_line_triggers(self, engine, clock):
        """defense line 1600, цена 1500 (свежая) → TRIGGERED."""
        result = engine.evaluate_trigger(reading(1500, clock()))

        assert result.transition_occurred
        assert result.outcome == TriggerOutcome.TRIGGERED
        assert result.new_state == EngineState.TRIGGERED
        assert result.previous_state == EngineState.MONITORING
        assert engine.state == EngineState.TRIGGERED

        status = engine.status()
        assert status.trigger_ts_utc_ms == clock()
        assert status.trigger_source == TriggerSource.ORACLE
        assert status.trigger_price == 1500 * USD_PRICE

    def test_price_at_line_triggers(self, engine, clock):
        result = engine.evaluate_trigger(reading(1600, clock()))

        assert result.outcome == TriggerOutcome.TRIGGERED

    def test_price_above_line_stays_monitoring(self, engine, clock):
        """Цена 1700 → MONITORING."""
        result = engine.evaluate_trigger(reading(1700, clock()))

        assert not result.transition_occurred
        assert result.outcome == TriggerOutcome.ABOVE_LINE
        assert engine.state == EngineState.MONITORING

    def test_stale_reading_ignored_regardless_of_price(self, engine, clock):
        """Показание вне staleness window → MONITORING даже при цене 1."""
        stale_at = clock() - 3601 * 1000
        result = engine.evaluate_trigger(reading(1, stale_at))

        assert result.outcome == TriggerOutcome.NO_SIGNAL_STALE
        assert result.error_code == "STALE_ORACLE_DATA"
        assert result.is_no_signal
        assert engine.state == EngineState.MONITORING

    def test_reading_at_window_edge_accepted(self, engine, clock):
        result = engine.evaluate_trigger(reading(1500, clock() - 3600 * 1000))

        assert result.outcome == TriggerOutcome.TRIGGERED

    @pytest.mark.parametrize("price", [0, -1500])
    def test_non_positive_price_is_no_signal(self, engine, clock, price):
        bad = PriceReading(price=price, decimals=8, observed_at_ms=clock())

        result = engine.evaluate_trigger(bad)

        assert result.outcome == TriggerOutcome.NO_SIGNAL_INVALID
        assert result.error_code == "INVALID_ORACLE_READING"
        assert engine.state == EngineState.MONITORING

    def test_future_reading_is_no_signal(self, engine, clock):
        result = engine.evaluate_trigger(reading(1500, clock() + 120 * 1000))

        assert result.outcome == TriggerOutcome.NO_SIGNAL_INVALID
        assert engine.state == EngineState.MONITORING

    def test_other_precision_normalized(self, engine, clock):
        """1500 USD с точностью 18 → нормализуется к 8 decimals."""
        r = PriceReading(price=1500 * 10**18, decimals=18, observed_at_ms=clock())

        result = engine.evaluate_trigger(r)

        assert result.outcome == TriggerOutcome.TRIGGERED
        assert result.price == 1500 * USD_PRICE

    def test_trigger_is_idempotent(self, engine, clock):
        trigger(engine, clock)
        first_ts = engine.status().trigger_ts_utc_ms
        clock.advance(60)

        result = engine.evaluate_trigger(reading(1400, clock()))

        assert not result.transition_occurred
        assert result.outcome == TriggerOutcome.ALREADY_TRIGGERED
        assert engine.status().trigger_ts_utc_ms == first_ts
        assert engine.status().trigger_price == 1500 * USD_PRICE

    def test_older_round_is_stale(self, engine, clock):
        engine.evaluate_trigger(reading(1700, clock(), round_id=10))

        result = engine.evaluate_trigger(reading(1500, clock(), round_id=9))

        assert result.outcome == TriggerOutcome.NO_SIGNAL_STALE
        assert engine.state == EngineState.MONITORING

    def test_current_price_tracks_accepted_readings(self, engine, clock):
        assert engine.current_price() is None

        engine.evaluate_trigger(reading(1700, clock()))
        engine.evaluate_trigger(reading(1, clock() - 10**8))  # stale, не принимается

        assert engine.current_price() == 1700 * USD_PRICE


class TestEvaluateFromAdapter:
    """Тесты чтения адаптера."""

    def test_adapter_reading_triggers(self, engine, clock):
        oracle = StaticPriceOracle(1500 * USD_PRICE, clock=clock)

        result = engine.evaluate_from_adapter(oracle)

        assert result.outcome == TriggerOutcome.TRIGGERED

    def test_adapter_failure_is_no_signal(self, engine):
        class BrokenOracle:
            def read_price(self):
                raise ConnectionError("feed unavailable")

        result = engine.evaluate_from_adapter(BrokenOracle())

        assert result.outcome == TriggerOutcome.NO_SIGNAL_READ_FAILED
        assert result.error_code == "ORACLE_READ_FAILED"
        assert "feed unavailable" in result.details
        assert engine.state == EngineState.MONITORING

    def test_restarted_feed_fresh_reading_triggers(self, engine, clock):
        """Новый фид начинает с round 1: свежее показание ниже линии срабатывает."""
        feed = StaticPriceOracle(1900 * USD_PRICE, clock=clock)
        for _ in range(5):
            feed.set_price(1900 * USD_PRICE)
        assert engine.evaluate_from_adapter(feed).outcome == TriggerOutcome.ABOVE_LINE

        clock.advance(10)
        restarted = StaticPriceOracle(1500 * USD_PRICE, clock=clock)
        result = engine.evaluate_from_adapter(restarted)

        assert result.outcome == TriggerOutcome.TRIGGERED
        assert engine.state == EngineState.TRIGGERED

    def test_replayed_older_round_is_stale(self, engine, clock):
        engine.evaluate_trigger(reading(1900, clock(), round_id=6))

        result = engine.evaluate_trigger(reading(1500, clock() - 1000, round_id=5))

        assert result.outcome == TriggerOutcome.NO_SIGNAL_STALE
        assert engine.state == EngineState.MONITORING


class TestDepositGating:
    """Тесты депозитов по состоянию."""

    def test_deposit_in_monitoring(self, engine):
        snapshot = engine.deposit(ALICE, 300 * USDC)

        assert snapshot.stable_deposited == 300 * USDC
        assert engine.total_stable_deposited == 300 * USDC
        assert engine.depositor_count() == 1

    def test_address_normalized(self, engine):
        engine.deposit(ALICE.upper().replace("0X", "0x"), 100)

        assert engine.account(ALICE).stable_deposited == 100

    def test_invalid_address(self, engine):
        with pytest.raises(InvalidAddress):
            engine.deposit("not-an-address", 100)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount(self, engine, amount):
        with pytest.raises(InvalidAmount):
            engine.deposit(ALICE, amount)

        assert engine.total_stable_deposited == 0

    def test_deposit_after_trigger_frozen(self, engine, clock):
        engine.deposit(ALICE, 300)
        trigger(engine, clock)

        with pytest.raises(EngineFrozen):
            engine.deposit(ALICE, 100)

        assert engine.account(ALICE).stable_deposited == 300
        assert engine.total_stable_deposited == 300
        assert engine.state == EngineState.TRIGGERED

    def test_deposit_after_execution_frozen(self, engine, clock):
        engine.deposit(ALICE, 300)
        trigger(engine, clock)
        engine.execute_conversion()
        before = engine.snapshot()

        with pytest.raises(EngineFrozen):
            engine.deposit(BOB, 100)

        assert engine.snapshot() == before


class TestExecuteConversion:
    """Тесты one-shot конверсии."""

    def test_execute_requires_trigger(self, engine):
        engine.deposit(ALICE, 300)

        with pytest.raises(NotTriggeredYet):
            engine.execute_conversion()

        assert engine.state == EngineState.MONITORING

    def test_conversion_at_defense_line(self, engine, clock):
        """1000 USDC по 1600 → 0.625 ETH, доли 30% / 70%."""
        engine.deposit(ALICE, 300 * USDC)
        engine.deposit(BOB, 700 * USDC)
        trigger(engine, clock)
        clock.advance(30)

        result = engine.execute_conversion()

        assert result.conversion_price == DEFENSE_LINE
        assert result.total_stable_converted == 1000 * USDC
        assert result.total_volatile_held == 625 * 10**15
        assert result.accounts_credited == 2
        assert engine.account(ALICE).volatile_credited == 1875 * 10**14
        assert engine.account(BOB).volatile_credited == 4375 * 10**14
        assert result.dust_volatile == 0

        status = engine.status()
        assert status.state == EngineState.EXECUTED
        assert status.execution_ts_utc_ms == clock()
        assert engine.total_stable_deposited == 0
        assert engine.total_volatile_held == 625 * 10**15

    def test_execute_twice_rejected_without_changes(self, engine, clock):
        engine.deposit(ALICE, 300 * USDC)
        engine.deposit(BOB, 700 * USDC)
        trigger(engine, clock)
        engine.execute_conversion()
        before = engine.snapshot()

        with pytest.raises(AlreadyExecuted):
            engine.execute_conversion()

        assert engine.snapshot() == before

    def test_sum_credited_never_exceeds_held(self, engine, clock):
        for i, amount in enumerate([1, 3, 7, 11, 999_999]):
            engine.deposit("0x" + f"{i + 1:040x}", amount)
        trigger(engine, clock)

        engine.execute_conversion()
        snap = engine.snapshot()

        assert snap.total_volatile_credited <= snap.total_volatile_held
        assert snap.total_volatile_credited + snap.dust_volatile == snap.total_volatile_held
        engine.check_invariants()

    def test_execute_with_empty_pool(self, engine, clock):
        trigger(engine, clock)

        result = engine.execute_conversion()

        assert result.total_volatile_held == 0
        assert engine.state == EngineState.EXECUTED


class TestAtomicRollback:
    """Тесты атомарности конверсии."""

    def test_failure_mid_distribution_rolls_back(self, engine, clock, monkeypatch):
        engine.deposit(ALICE, 300 * USDC)
        engine.deposit(BOB, 700 * USDC)
        trigger(engine, clock)
        before = engine.snapshot()
        events_before = len(engine.events())

        ledger = engine._ledger
        original = ledger.record_conversion_share
        calls = []

        def failing_share(account, amount, epoch):
            calls.append(account)
            if len(calls) == 2:
                raise KeyboardInterrupt("interrupted mid-loop")
            original(account, amount, epoch)

        monkeypatch.setattr(ledger, "record_conversion_share", failing_share)

        with pytest.raises(KeyboardInterrupt):
            engine.execute_conversion()

        assert engine.snapshot() == before
        assert engine.state == EngineState.TRIGGERED
        assert engine.total_volatile_held == 0
        assert len(engine.events()) == events_before

    def test_retry_after_rollback_succeeds(self, engine, clock, monkeypatch):
        engine.deposit(ALICE, 300 * USDC)
        trigger(engine, clock)

        def boom(total_volatile, epoch):
            raise RuntimeError("boom")

        with monkeypatch.context() as m:
            m.setattr(engine._ledger, "distribute_conversion", boom)
            with pytest.raises(RuntimeError):
                engine.execute_conversion()

        result = engine.execute_conversion()

        assert result.accounts_credited == 1
        assert engine.account(ALICE).volatile_credited == result.total_volatile_held

    def test_invariant_violation_rolls_back(self, engine, clock, monkeypatch):
        engine.deposit(ALICE, 300 * USDC)
        trigger(engine, clock)
        before = engine.snapshot()

        with monkeypatch.context() as m:
            m.setattr(engine._ledger, "sum_volatile_credited", lambda: 10**30)
            with pytest.raises(InvariantViolation):
                engine.execute_conversion()

        assert engine.snapshot() == before
        assert engine.state == EngineState.TRIGGERED
        assert engine.total_volatile_held == 0


class TestWithdraw:
    """Тесты вывода."""

    def test_withdraw_before_execution(self, engine, clock):
        engine.deposit(ALICE, 300)
        trigger(engine, clock)

        with pytest.raises(NothingToWithdraw):
            engine.withdraw(ALICE)

        assert engine.account(ALICE).stable_deposited == 300

    def test_withdraw_and_second_withdraw_rejected(self, engine, clock):
        engine.deposit(ALICE, 300 * USDC)
        engine.deposit(BOB, 700 * USDC)
        trigger(engine, clock)
        engine.execute_conversion()

        amount = engine.withdraw(ALICE)

        assert amount == 1875 * 10**14
        assert engine.account(ALICE).volatile_credited == 0
        assert engine.account(ALICE).volatile_withdrawn == amount

        with pytest.raises(NothingToWithdraw):
            engine.withdraw(ALICE)

        assert engine.account(BOB).volatile_credited == 4375 * 10**14

    def test_non_depositor_cannot_withdraw(self, engine, clock):
        engine.deposit(ALICE, 300)
        trigger(engine, clock)
        engine.execute_conversion()

        with pytest.raises(NothingToWithdraw):
            engine.withdraw(CAROL)


class TestEmergencyStop:
    """Тесты административного emergency_stop."""

    def test_owner_forces_trigger(self, engine, clock):
        status = engine.emergency_stop(OWNER)

        assert status.state == EngineState.TRIGGERED
        assert status.trigger_source == TriggerSource.EMERGENCY_STOP
        assert status.trigger_price is None
        assert not status.is_executed

    def test_non_owner_rejected(self, engine):
        with pytest.raises(Unauthorized):
            engine.emergency_stop(ALICE)

        assert engine.state == EngineState.MONITORING

    def test_deposit_after_emergency_stop(self, engine):
        engine.emergency_stop(OWNER)

        with pytest.raises(EngineFrozen):
            engine.deposit(ALICE, 100)

    def test_already_triggered(self, engine, clock):
        trigger(engine, clock)

        with pytest.raises(AlreadyTriggered):
            engine.emergency_stop(OWNER)

    def test_execution_still_explicit(self, engine):
        engine.deposit(ALICE, 300 * USDC)
        engine.emergency_stop(OWNER)

        assert engine.account(ALICE).volatile_credited == 0

        engine.execute_conversion()

        assert engine.account(ALICE).volatile_credited > 0


class TestForceExecute:
    """Тесты force_execute."""

    def test_from_monitoring(self, engine):
        engine.deposit(ALICE, 1000 * USDC)

        result = engine.force_execute(OWNER)

        assert result.total_volatile_held == 625 * 10**15
        status = engine.status()
        assert status.state == EngineState.EXECUTED
        assert status.trigger_source == TriggerSource.EMERGENCY_STOP

    def test_from_triggered(self, engine, clock):
        engine.deposit(ALICE, 1000 * USDC)
        trigger(engine, clock)

        engine.force_execute(OWNER)

        assert engine.status().trigger_source == TriggerSource.ORACLE
        assert engine.state == EngineState.EXECUTED

    def test_non_owner_rejected(self, engine):
        with pytest.raises(Unauthorized):
            engine.force_execute(BOB)

        assert engine.state == EngineState.MONITORING

    def test_already_executed(self, engine):
        engine.force_execute(OWNER)

        with pytest.raises(AlreadyExecuted):
            engine.force_execute(OWNER)


class TestRearm:
    """Тесты административного re-arm."""

    def test_rearm_in_monitoring_recomputes_line(self, engine):
        engine.deposit(ALICE, 100)

        status = engine.rearm(OWNER, 3000 * USD_PRICE)

        assert status.defense_line_price == 2400 * USD_PRICE
        assert status.epoch == 1
        assert engine.total_stable_deposited == 100

    def test_rearm_during_trigger_rejected(self, engine, clock):
        trigger(engine, clock)

        with pytest.raises(AlreadyTriggered):
            engine.rearm(OWNER, 3000 * USD_PRICE)

        assert engine.defense_line_price == DEFENSE_LINE

    def test_rearm_with_pending_withdrawals(self, engine, clock):
        engine.deposit(ALICE, 300 * USDC)
        trigger(engine, clock)
        engine.execute_conversion()

        with pytest.raises(PendingWithdrawals):
            engine.rearm(OWNER, 1500 * USD_PRICE)

        assert engine.state == EngineState.EXECUTED

    def test_rearm_after_all_withdrawn_opens_epoch(self, engine, clock):
        engine.deposit(ALICE, 300 * USDC)
        trigger(engine, clock)
        engine.execute_conversion()
        engine.withdraw(ALICE)

        status = engine.rearm(OWNER, 1500 * USD_PRICE)

        assert status.state == EngineState.MONITORING
        assert status.epoch == 2
        assert status.defense_line_price == 1200 * USD_PRICE
        assert status.trigger_ts_utc_ms is None
        assert engine.total_volatile_held == 0

        engine.deposit(ALICE, 50 * USDC)
        assert engine.account(ALICE).stable_deposited == 50 * USDC
        engine.check_invariants()

    def test_second_epoch_conversion(self, engine, clock):
        engine.deposit(ALICE, 300 * USDC)
        trigger(engine, clock)
        engine.execute_conversion()
        engine.withdraw(ALICE)
        engine.rearm(OWNER, 2000 * USD_PRICE)

        engine.deposit(BOB, 1000 * USDC)
        clock.advance(60)
        trigger(engine, clock)
        result = engine.execute_conversion()

        assert result.epoch == 2
        assert engine.account(BOB).volatile_credited == 625 * 10**15
        assert engine.account(ALICE).volatile_credited == 0

    def test_rearm_clears_round_memory(self, engine, clock):
        engine.evaluate_trigger(reading(2500, clock(), round_id=6))
        engine.rearm(OWNER, 3000 * USD_PRICE)

        result = engine.evaluate_trigger(reading(2000, clock(), round_id=1))

        assert result.outcome == TriggerOutcome.TRIGGERED

    def test_rearm_keeps_previous_epoch_dust_traceable(self, engine, clock):
        engine.rearm(OWNER, 2002 * USD_PRICE)  # defense line 1601.6 USD
        for account in (ALICE, BOB, CAROL):
            engine.deposit(account, 1)
        trigger(engine, clock)
        result = engine.execute_conversion()
        assert result.dust_volatile == 1
        for account in (ALICE, BOB, CAROL):
            engine.withdraw(account)

        engine.rearm(OWNER, REFERENCE_PRICE)

        event = engine.events()[-1]
        assert event.event_type == EventType.REARMED
        assert event.epoch == 2
        assert event.payload["previous_epoch"] == 1
        assert event.payload["previous_total_volatile_held"] == result.total_volatile_held
        assert event.payload["previous_dust_volatile"] == 1
        assert event.payload["retained_dust_volatile"] == 1

        snap = engine.snapshot()
        assert snap.dust_volatile == 0
        assert snap.retained_dust_volatile == 1
        engine.check_invariants()

    def test_non_owner_rejected(self, engine):
        with pytest.raises(Unauthorized):
            engine.rearm(ALICE, 3000 * USD_PRICE)

    def test_invalid_reference(self, engine):
        with pytest.raises(InvalidAmount):
            engine.rearm(OWNER, 0)


class TestQueriesAndEvents:
    """Тесты query surface и журнала событий."""

    def test_unknown_account_is_zero(self, engine):
        snapshot = engine.account(CAROL)

        assert snapshot.stable_deposited == 0
        assert snapshot.volatile_credited == 0

    def test_event_log_full_cycle(self, engine, clock):
        engine.deposit(ALICE, 300 * USDC)
        trigger(engine, clock)
        engine.execute_conversion()
        engine.withdraw(ALICE)

        types = [e.event_type for e in engine.events()]

        assert types == [
            EventType.DEPOSITED,
            EventType.DEFENSE_LINE_TRIGGERED,
            EventType.CONVERSION_EXECUTED,
            EventType.WITHDRAWN,
        ]
        assert [e.sequence for e in engine.events()] == [1, 2, 3, 4]

    def test_events_since_sequence(self, engine):
        engine.deposit(ALICE, 1)
        engine.deposit(BOB, 2)

        events = engine.events(since_sequence=1)

        assert len(events) == 1
        assert events[0].account == BOB
        assert events[0].payload == {"amount": 2}

    def test_triggered_event_payload(self, engine, clock):
        trigger(engine, clock)

        event = engine.events()[-1]

        assert event.payload == {
            "defense_price": DEFENSE_LINE,
            "current_price": 1500 * USD_PRICE,
        }

    def test_snapshot_totals(self, engine):
        engine.deposit(ALICE, 300)
        engine.deposit(BOB, 700)
        engine.deposit(ALICE, 100)

        snap = engine.snapshot()

        assert snap.total_stable_deposited == 1100
        assert sum(a.stable_deposited for a in snap.accounts) == 1100
        assert snap.depositor_count == 2
