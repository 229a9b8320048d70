"""Named kernel invariants, referenced by log records and consistency reports."""

from enum import Enum


class KernelInvariant(str, Enum):
    """Rules that must hold after every committed operation."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """quantity_on_hand never drops below zero."""

    WEIGHTED_AVERAGE = "weighted_average"
    """average_cost equals the weighted-average replay of the stock log."""

    STOCK_REPLAY = "stock_replay"
    """quantity_on_hand equals opening quantity plus the signed log sum."""

    RUNNING_BALANCE = "running_balance"
    """Each running_balance equals the previous one plus debit minus credit."""

    CURRENT_BALANCE = "current_balance"
    """current_balance equals the last running_balance (zero when empty)."""

    DAY_LOCK = "day_lock"
    """No log mutation is dated inside a closed day of the same scope."""

    ALL_OR_NOTHING = "all_or_nothing"
    """A production run deducts every ingredient or none of them."""
