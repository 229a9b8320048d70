"""Unit tests for the running-balance fold."""

from decimal import Decimal

from bakery_kernel.domain.running_balance import (
    LedgerLine,
    first_divergence,
    fold_running_balances,
)


def line(debit: str = "0", credit: str = "0") -> LedgerLine:
    return LedgerLine(Decimal(debit), Decimal(credit))


class TestFold:
    def test_debit_then_credit(self):
        assert fold_running_balances([line("100"), line(credit="40")]) == [
            Decimal("100"),
            Decimal("60"),
        ]

    def test_empty(self):
        assert fold_running_balances([]) == []

    def test_starting_balance(self):
        assert fold_running_balances([line(credit="10")], Decimal("25")) == [Decimal("15")]

    def test_balance_may_go_negative(self):
        assert fold_running_balances([line(credit="40")]) == [Decimal("-40")]

    def test_accepts_generator(self):
        balances = fold_running_balances(line(str(n)) for n in range(1, 4))
        assert balances == [Decimal("1"), Decimal("3"), Decimal("6")]


class TestFirstDivergence:
    def test_identical(self):
        values = [Decimal("1"), Decimal("2")]
        assert first_divergence(values, list(values)) is None

    def test_numeric_equality_ignores_scale(self):
        assert first_divergence([Decimal("1.00")], [Decimal("1")]) is None

    def test_mismatch_index(self):
        assert first_divergence(
            [Decimal("1"), Decimal("9"), Decimal("3")],
            [Decimal("1"), Decimal("2"), Decimal("3")],
        ) == 1

    def test_length_mismatch(self):
        assert first_divergence([Decimal("1")], [Decimal("1"), Decimal("2")]) == 1
