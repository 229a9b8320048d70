"""Running-balance fold over ordered ledger lines (pure, zero I/O)."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from bakery_kernel.db.types import ZERO


@dataclass(frozen=True)
class LedgerLine:
    debit: Decimal
    credit: Decimal


def fold_running_balances(
    lines: Iterable[LedgerLine],
    starting_balance: Decimal = ZERO,
) -> list[Decimal]:
    """running_balance_i = running_balance_{i-1} + debit_i - credit_i."""
    balances: list[Decimal] = []
    balance = starting_balance
    for line in lines:
        balance = balance + line.debit - line.credit
        balances.append(balance)
    return balances


def first_divergence(
    stored: Sequence[Decimal],
    expected: Sequence[Decimal],
) -> int | None:
    """Index of the first stored balance that disagrees with the fold."""
    for index, (have, want) in enumerate(zip(stored, expected)):
        if have != want:
            return index
    if len(stored) != len(expected):
        return min(len(stored), len(expected))
    return None
