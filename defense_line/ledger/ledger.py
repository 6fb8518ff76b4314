"""
Ledger — Бухгалтерия депозиторов Defense Line

Авторитетный учёт балансов:
- stable_deposited (USDC minor units) по каждому счёту + total_stable_deposited
- volatile_credited (ETH minor units) — pro-rata доля после конверсии

КРИТИЧЕСКИЕ ИНВАРИАНТЫ:
1. Ни один баланс не уходит в минус
2. total_stable_deposited == sum(stable_deposited) в любой момент
3. sum(volatile_credited) <= распределённый total_volatile (остаток — dust)
4. Доля начисляется ровно один раз на счёт за эпоху конверсии
5. Счета никогда не удаляются (нулевые балансы остаются для аудита)

Ledger мутируется только DefenseEngine (под его lock).
"""

import logging
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from defense_line.core.domain.protocol_state import AccountSnapshot
from defense_line.core.domain.units import pro_rata_share
from defense_line.core.errors import (
    AlreadyExecuted,
    EngineFrozen,
    InvalidAmount,
    InvariantViolation,
    NothingToWithdraw,
)
from defense_line.core.math.fixed_point import checked_add, checked_sub

logger = logging.getLogger(__name__)


# =============================================================================
# RECORDS
# =============================================================================


@dataclass
class AccountRecord:
    """Счёт депозитора (ключ — нормализованный адрес)."""

    address: str
    stable_deposited: int = 0
    volatile_credited: int = 0

    # Аудит
    stable_converted: int = 0
    volatile_withdrawn: int = 0
    first_deposit_ts_utc_ms: Optional[int] = None
    last_credited_epoch: int = 0

    def to_snapshot(self) -> AccountSnapshot:
        return AccountSnapshot(
            address=self.address,
            stable_deposited=self.stable_deposited,
            volatile_credited=self.volatile_credited,
            stable_converted=self.stable_converted,
            volatile_withdrawn=self.volatile_withdrawn,
            first_deposit_ts_utc_ms=self.first_deposit_ts_utc_ms,
        )


@dataclass(frozen=True)
class ConversionAllocation:
    """Результат pro-rata распределения одной конверсии."""

    epoch: int
    total_volatile: int
    total_stable: int
    shares: dict[str, int]
    dust: int

    @property
    def distributed(self) -> int:
        return self.total_volatile - self.dust


# =============================================================================
# LEDGER
# =============================================================================


class Ledger:
    """
    Плоская таблица счетов (arena, упорядочена по первому депозиту) + итоги.

    Операции:
    - credit_deposit: депозит stable
    - record_conversion_share: начисление volatile доли (1 раз за эпоху)
    - debit_withdrawal: вывод всей volatile доли
    - distribute_conversion: pro-rata распределение по всем счетам
    """

    def __init__(self, epoch: int = 1):
        self._accounts: dict[str, AccountRecord] = {}
        self.total_stable_deposited: int = 0
        self._epoch = epoch
        self._frozen = False

    # -------------------------------------------------------------------------
    # STATE
    # -------------------------------------------------------------------------

    @property
    def frozen(self) -> bool:
        """True после конверсии: депозиты закрыты до новой эпохи."""
        return self._frozen

    @property
    def epoch(self) -> int:
        return self._epoch

    def open_epoch(self, epoch: int) -> None:
        """
        Открытие новой эпохи мониторинга (administrative re-arm).

        Требует нулевого stable пула (он израсходован конверсией).
        """
        if epoch <= self._epoch:
            raise ValueError(f"epoch must increase: {self._epoch} -> {epoch}")
        if self.total_stable_deposited != 0:
            raise ValueError("cannot open epoch with non-empty stable pool")
        self._epoch = epoch
        self._frozen = False

    # -------------------------------------------------------------------------
    # OPERATIONS
    # -------------------------------------------------------------------------

    def credit_deposit(
        self, account: str, amount: int, ts_utc_ms: Optional[int] = None
    ) -> AccountRecord:
        """
        Депозит stable на счёт.

        Args:
            account: Нормализованный адрес
            amount: Сумма (minor units, > 0)
            ts_utc_ms: Время депозита (для аудита первого депозита)

        Returns:
            Обновлённый AccountRecord

        Raises:
            InvalidAmount: amount <= 0 или не int
            EngineFrozen: конверсия уже выполнена
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(f"deposit amount must be a positive int, got {amount!r}")
        if self._frozen:
            raise EngineFrozen("deposits are closed: conversion already executed")

        new_total = checked_add(self.total_stable_deposited, amount)
        record = self._accounts.get(account)
        if record is None:
            record = AccountRecord(address=account, first_deposit_ts_utc_ms=ts_utc_ms)
            self._accounts[account] = record
            logger.debug(f"Ledger: new account {account}")

        record.stable_deposited = checked_add(record.stable_deposited, amount)
        self.total_stable_deposited = new_total
        return record

    def record_conversion_share(self, account: str, volatile_amount: int, epoch: int) -> None:
        """
        Начисление volatile доли за конверсию эпохи epoch.

        Raises:
            KeyError: Счёт не существует
            AlreadyExecuted: Доля за эту эпоху уже начислена
        """
        record = self._accounts[account]
        if record.last_credited_epoch >= epoch:
            raise AlreadyExecuted(
                f"conversion share for {account} already recorded in epoch {epoch}"
            )
        record.volatile_credited = checked_add(record.volatile_credited, volatile_amount)
        record.last_credited_epoch = epoch

    def debit_withdrawal(self, account: str) -> int:
        """
        Вывод всей volatile доли (all-or-nothing).

        Returns:
            Выведенная сумма (volatile minor units)

        Raises:
            NothingToWithdraw: volatile_credited == 0 или счёта нет
        """
        record = self._accounts.get(account)
        if record is None or record.volatile_credited == 0:
            raise NothingToWithdraw(f"nothing to withdraw for {account}")

        amount = record.volatile_credited
        record.volatile_credited = 0
        record.volatile_withdrawn = checked_add(record.volatile_withdrawn, amount)
        return amount

    def distribute_conversion(self, total_volatile: int, epoch: int) -> ConversionAllocation:
        """
        Pro-rata распределение total_volatile по всем счетам с stable_deposited > 0.

        Двухфазно: сначала все доли вычисляются в staging-таблицу, затем
        применяются. Остаток целочисленного деления (dust) не распределяется.
        После распределения stable пул израсходован, ledger заморожен.

        Raises:
            AlreadyExecuted: Эпоха уже распределена
        """
        if self._frozen:
            raise AlreadyExecuted(f"conversion already distributed in epoch {self._epoch}")

        total_stable = self.total_stable_deposited

        # Фаза 1: staging
        shares: dict[str, int] = {}
        if total_stable > 0:
            for address, record in self._accounts.items():
                if record.stable_deposited > 0:
                    shares[address] = pro_rata_share(
                        total_volatile, record.stable_deposited, total_stable
                    )

        distributed = sum(shares.values())
        if distributed > total_volatile:
            raise InvariantViolation(
                f"pro-rata shares {distributed} exceed converted volatile {total_volatile}"
            )
        dust = total_volatile - distributed

        # Фаза 2: commit
        for address, share in shares.items():
            self.record_conversion_share(address, share, epoch)
            record = self._accounts[address]
            record.stable_converted = checked_add(record.stable_converted, record.stable_deposited)
            record.stable_deposited = 0
        self.total_stable_deposited = checked_sub(total_stable, total_stable)
        self._frozen = True

        logger.debug(
            f"Ledger: distributed {distributed} volatile across {len(shares)} accounts, "
            f"dust={dust}"
        )
        return ConversionAllocation(
            epoch=epoch,
            total_volatile=total_volatile,
            total_stable=total_stable,
            shares=shares,
            dust=dust,
        )

    # -------------------------------------------------------------------------
    # QUERIES
    # -------------------------------------------------------------------------

    def get_account(self, account: str) -> Optional[AccountRecord]:
        return self._accounts.get(account)

    def accounts(self) -> Iterator[AccountRecord]:
        return iter(self._accounts.values())

    @property
    def depositor_count(self) -> int:
        return len(self._accounts)

    def sum_stable_deposited(self) -> int:
        return sum(r.stable_deposited for r in self._accounts.values())

    def sum_volatile_credited(self) -> int:
        return sum(r.volatile_credited for r in self._accounts.values())

    # -------------------------------------------------------------------------
    # CHECKPOINT / ROLLBACK
    # -------------------------------------------------------------------------

    def checkpoint(self) -> dict[str, Any]:
        """Снапшот внутреннего состояния для отката."""
        return deepcopy(self.__dict__)

    def restore(self, snapshot: dict[str, Any]) -> None:
        """Полный откат к снапшоту checkpoint()."""
        self.__dict__.clear()
        self.__dict__.update(deepcopy(snapshot))
