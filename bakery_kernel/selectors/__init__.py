"""Read-only query selectors."""

from bakery_kernel.selectors.ledger_selector import LedgerSelector
from bakery_kernel.selectors.stock_selector import StockSelector

__all__ = ["LedgerSelector", "StockSelector"]
