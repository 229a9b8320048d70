"""
Bakery Kernel - inventory costing and ledger consistency core.

A library boundary for bakery operations with:
- Weighted-average costing per stock item
- All-or-nothing recipe consumption
- Running-balance ledgers for customers and parties
- Day close / reopen audit control
- Consistency verification and quarantine of corrupted records
"""

__version__ = "0.1.0"
