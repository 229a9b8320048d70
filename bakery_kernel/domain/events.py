"""
Domain events and the injected event sink.

Responsibility:
    Defines the events the kernel announces (low stock, rejected
    consumption, day close/reopen) and the sink they are handed to.
    Notification delivery (SMS, e-mail, toasts) is the subscribers' business,
    not the kernel's.

Architecture position:
    Kernel > Domain.  The orchestrator collects events while a transaction
    runs and publishes them only after it commits; rejection events are
    published after the rollback.

Failure modes:
    - A failing subscriber is logged with its traceback and does not undo
      the committed mutation or stop delivery to other subscribers.
"""

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Protocol
from uuid import UUID

from bakery_kernel.logging_config import get_logger

logger = get_logger("domain.events")


@dataclass(frozen=True)
class DomainEvent:
    occurred_at: datetime

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        payload = {"event_type": self.event_type}
        for key, value in asdict(self).items():
            if isinstance(value, (Decimal, UUID)):
                value = str(value)
            elif isinstance(value, (date, datetime)):
                value = value.isoformat()
            payload[key] = value
        return payload


@dataclass(frozen=True)
class LowStockDetected(DomainEvent):
    item_id: UUID
    item_code: str
    quantity_on_hand: Decimal
    min_level: Decimal


@dataclass(frozen=True)
class InsufficientStockRejected(DomainEvent):
    item_id: UUID
    required: Decimal
    available: Decimal
    operation: str


@dataclass(frozen=True)
class DayClosed(DomainEvent):
    lock_date: date
    scope: str
    closed_by: str
    snapshot_item_count: int | None = None
    snapshot_total_value: Decimal | None = None


@dataclass(frozen=True)
class DayReopened(DomainEvent):
    lock_date: date
    scope: str
    reopened_by: str


EventHandler = Callable[[DomainEvent], None]


class EventSink(Protocol):
    """Anything the orchestrator can hand committed events to."""

    def publish(self, event: DomainEvent) -> None:
        ...


class EventBus:
    """Synchronous in-process fan-out to subscribers, by event type."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(
        self,
        handler: EventHandler,
        event_type: type[DomainEvent] = DomainEvent,
    ) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: DomainEvent) -> None:
        for event_type, handlers in list(self._handlers.items()):
            if not isinstance(event, event_type):
                continue
            for handler in list(handlers):
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "event_handler_failed",
                        extra={
                            "event_type": event.event_type,
                            "handler": getattr(handler, "__qualname__", repr(handler)),
                        },
                    )


@dataclass
class InMemoryEventSink:
    """Records every published event in order."""

    events: list[DomainEvent] = field(default_factory=list)

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[DomainEvent]) -> list[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()
