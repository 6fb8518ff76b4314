"""
Errors — Таксономия ошибок Defense Line

Каждая ошибка имеет стабильный `code`, который возвращается вызывающей стороне
в CommandResult (entrypoints) и пишется в лог.

StaleOracleData / InvalidOracleReading НЕ являются hard failure:
движок понижает их до "no signal" и остаётся в MONITORING.
"""


class DefenseLineError(Exception):
    """Базовая ошибка протокола (все типизированные отказы наследуют её)."""

    code: str = "DEFENSE_LINE_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


# =============================================================================
# LEDGER / ENTRY POINT ERRORS
# =============================================================================


class InvalidAmount(DefenseLineError):
    """Сумма депозита <= 0 (или не целое число minor units)."""

    code = "INVALID_AMOUNT"


class InvalidAddress(DefenseLineError):
    """Адрес кошелька не в формате 0x + 40 hex."""

    code = "INVALID_ADDRESS"


class EngineFrozen(DefenseLineError):
    """Депозит после TRIGGERED/EXECUTED — приём депозитов закрыт."""

    code = "ENGINE_FROZEN"


class NothingToWithdraw(DefenseLineError):
    """Вывод при нулевом volatile_credited."""

    code = "NOTHING_TO_WITHDRAW"


# =============================================================================
# STATE MACHINE ERRORS
# =============================================================================


class AlreadyTriggered(DefenseLineError):
    """Переход в TRIGGERED запрошен, когда движок уже за этим состоянием."""

    code = "ALREADY_TRIGGERED"


class AlreadyExecuted(DefenseLineError):
    """Повторная конверсия (или повторное начисление доли) в той же эпохе."""

    code = "ALREADY_EXECUTED"


class NotTriggeredYet(DefenseLineError):
    """Операция требует TRIGGERED/EXECUTED, а движок ещё в MONITORING."""

    code = "NOT_TRIGGERED_YET"


class PendingWithdrawals(DefenseLineError):
    """Re-arm после EXECUTED, пока у депозиторов остаются невыведенные доли."""

    code = "PENDING_WITHDRAWALS"


class Unauthorized(DefenseLineError):
    """Непривилегированный вызов административной операции."""

    code = "UNAUTHORIZED"


# =============================================================================
# ORACLE ERRORS (downgraded to "no signal")
# =============================================================================


class StaleOracleData(DefenseLineError):
    """Показание оракула старше staleness window."""

    code = "STALE_ORACLE_DATA"


class InvalidOracleReading(DefenseLineError):
    """Показание оракула с price <= 0 или некорректными метаданными."""

    code = "INVALID_ORACLE_READING"


class OracleReadFailed(DefenseLineError):
    """Адаптер оракула выбросил исключение при чтении."""

    code = "ORACLE_READ_FAILED"


# =============================================================================
# ARITHMETIC
# =============================================================================


class FixedPointOverflow(DefenseLineError):
    """Результат fixed-point операции вне диапазона uint256."""

    code = "FIXED_POINT_OVERFLOW"


# =============================================================================
# INTERNAL CONSISTENCY
# =============================================================================


class InvariantViolation(DefenseLineError):
    """Нарушен инвариант ledger/state (операция откатывается)."""

    code = "INVARIANT_VIOLATION"
