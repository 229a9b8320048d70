"""
Module: bakery_kernel.models.sequence
Responsibility: Named monotonic counters backing stock and ledger
    transaction sequence numbers.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from bakery_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Counter table for sequence allocation.

    Each named sequence has a single row that is locked and incremented
    atomically by SequenceService.next_value().
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
