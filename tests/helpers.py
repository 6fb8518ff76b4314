"""Общие константы и утилиты тестов Defense Line."""

OWNER = "0x" + "0" * 39 + "1"
ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
CAROL = "0x" + "c" * 40

USDC = 10**6
ETH = 10**18
USD_PRICE = 10**8

REFERENCE_PRICE = 2000 * USD_PRICE  # → defense line 1600 USD при 80%
DEFENSE_LINE = 1600 * USD_PRICE

T0_MS = 1_700_000_000_000


class FakeClock:
    """Управляемые часы (UTC, миллисекунды)."""

    def __init__(self, now_ms: int = T0_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)
