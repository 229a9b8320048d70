"""
Declarative bases for the bakery kernel tables.

Architecture position:
    Kernel > DB.  Every model imports from here; this module imports only
    db/types.py.

Column conventions (via type_annotation_map):
    - ``Mapped[Decimal]`` is a DecimalString, exact decimal text.  Stock
      quantities, average costs and ledger amounts never touch float.
    - ``Mapped[UUID]`` is a UUIDString.
    - ``Mapped[datetime]`` is timezone-aware; timestamps come from the
      injected clock, never from the database.
    - ``Mapped[int]`` is a BigInteger so log sequences cannot overflow.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from bakery_kernel.db.types import DecimalString, UUIDString


class Base(DeclarativeBase):
    """Base for every table: uuid4 primary key plus the column conventions."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: DecimalString(),
        UUID: UUIDString(),
        datetime: DateTime(timezone=True),
        date: Date(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Base for records that are edited after creation (items, entities,
    ledger rows, day locks).

    created_by_id is the actor that created the row and is required;
    services stamp updated_by_id on every later change.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[str] = mapped_column(String(100))
    updated_by_id: Mapped[str | None] = mapped_column(String(100))
