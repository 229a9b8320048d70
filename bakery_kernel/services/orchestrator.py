"""
OperationsOrchestrator -- the library boundary of the bakery kernel.

Responsibility:
    Every externally visible operation enters here.  For each call the
    orchestrator:

        1. binds a correlation id, actor id and operation name to the log
           context
        2. takes the in-process locks for every record and business day the
           operation touches (sorted, bounded by lock_timeout_seconds)
        3. opens one database transaction (session_scope) and runs the
           services inside it
        4. commits, releases the locks, then publishes collected events
        5. retries the whole unit on ConcurrencyConflictError only
        6. quarantines the record when a ConsistencyError surfaces

Architecture position:
    Kernel > Services -- the outermost kernel layer.  HTTP handlers, batch
    jobs and tests call this class; nothing inside the kernel calls it.

Invariants enforced:
    - Locks are acquired before the transaction starts and released after
      commit or rollback.
    - Item state and its log entry commit together or not at all,
      including on cancellation (session_scope rolls back on BaseException).
    - Events are published only after a successful commit; rejection
      events only after the rollback.

Failure modes:
    - Every typed BakeryKernelError propagates unchanged to the caller.
    - ConcurrencyConflictError only after max_conflict_retries retries.
    - ConsistencyError is logged at CRITICAL, the record is quarantined and
      the error re-raised.
"""

import time
from datetime import date
from typing import Any, Callable, Iterable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from bakery_kernel.config import KernelConfig
from bakery_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from bakery_kernel.domain.clock import Clock, SystemClock
from bakery_kernel.domain.dtos import (
    AdjustmentResult,
    ConsistencyReport,
    ConsistencyViolation,
    ConsumptionResult,
    DayLockInfo,
    EntityBalance,
    ItemState,
    LedgerMutationResult,
    LedgerTransactionRecord,
    ProductionResult,
    PurchaseResult,
    StockTransactionRecord,
    StockValuation,
)
from bakery_kernel.domain.events import (
    DayClosed,
    DayReopened,
    DomainEvent,
    EventBus,
    EventSink,
    InsufficientStockRejected,
)
from bakery_kernel.domain.recipe import IngredientRequirement, RecipeProvider
from bakery_kernel.exceptions import (
    BakeryKernelError,
    ConcurrencyConflictError,
    ConsistencyError,
    InsufficientStockError,
    LedgerTransactionNotFoundError,
    RecordQuarantinedError,
    ValidationError,
)
from bakery_kernel.logging_config import (
    LogContext,
    configure_logging,
    elapsed_ms,
    get_logger,
)
from bakery_kernel.models.day_lock import DayLockScope
from bakery_kernel.models.ledger import LedgerTransaction
from bakery_kernel.selectors.ledger_selector import LedgerSelector
from bakery_kernel.selectors.stock_selector import StockSelector
from bakery_kernel.services.consistency_checker import (
    LEDGER_ENTITY,
    STOCK_ITEM,
    ConsistencyChecker,
)
from bakery_kernel.services.costing_engine import CostingEngine, parse_positive
from bakery_kernel.services.day_close_service import DayCloseService, validate_scope
from bakery_kernel.services.ledger_service import LedgerService
from bakery_kernel.services.lock_registry import (
    LockKey,
    RowLockRegistry,
    day_key,
    entity_key,
    item_key,
)
from bakery_kernel.services.recipe_consumption import (
    RecipeConsumptionCoordinator,
    resolve_requirements,
)
from bakery_kernel.services.retry_service import ConflictRetryService

logger = get_logger("services.orchestrator")

T = TypeVar("T")


def as_uuid(value: UUID | str, field: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}: {value!r}", field=field) from exc


class _UnitOfWork:
    """Services bound to one session for the duration of one attempt."""

    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: KernelConfig,
        recipes: RecipeProvider | None,
    ):
        self.session = session
        self.costing = CostingEngine(
            session,
            clock,
            cost_decimal_places=config.cost_decimal_places,
            display_decimal_places=config.display_decimal_places,
        )
        self.production = RecipeConsumptionCoordinator(
            session, self.costing, recipes, clock
        )
        self.ledger = LedgerService(session, clock)
        self.days = DayCloseService(session, clock)
        self.checker = ConsistencyChecker(
            session, clock, cost_decimal_places=config.cost_decimal_places
        )
        self.stock = StockSelector(session, config.display_decimal_places)
        self.ledgers = LedgerSelector(session)
        self.events: list[DomainEvent] = []

    def collected_events(self) -> list[DomainEvent]:
        return [*self.costing.pending_events, *self.events]


class OperationsOrchestrator:
    """
    Transaction, lock, retry and event boundary around the kernel services.

    Usage:
        orchestrator = create_orchestrator(load_config("bakery.yaml"))
        flour = orchestrator.register_item("FLOUR", "Flour", "kg", actor_id="u1")
        orchestrator.record_purchase(flour.item_id, "10", "2.00", actor_id="u1")
    """

    def __init__(
        self,
        config: KernelConfig | None = None,
        *,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        event_sink: EventSink | None = None,
        recipes: RecipeProvider | None = None,
        lock_registry: RowLockRegistry | None = None,
    ):
        self._config = config or KernelConfig()
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._events: EventSink = event_sink if event_sink is not None else EventBus()
        self._recipes = recipes
        self._locks = (
            lock_registry
            if lock_registry is not None
            else RowLockRegistry(self._config.lock_timeout_seconds)
        )
        self._retry = ConflictRetryService(
            max_retries=self._config.max_conflict_retries,
            backoff_seconds=self._config.retry_backoff_seconds,
        )

    @property
    def config(self) -> KernelConfig:
        return self._config

    @property
    def events(self) -> EventSink:
        return self._events

    # ------------------------------------------------------------------
    # Execution core
    # ------------------------------------------------------------------

    def _uow(self, session: Session) -> _UnitOfWork:
        return _UnitOfWork(session, self._clock, self._config, self._recipes)

    def _publish(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            self._events.publish(event)

    def _attempt(
        self,
        keys: Callable[[], Iterable[LockKey]],
        work: Callable[[_UnitOfWork], T],
    ) -> T:
        with self._locks.hold(keys()):
            with session_scope(self._session_factory) as session:
                uow = self._uow(session)
                result = work(uow)
                events = uow.collected_events()
        self._publish(events)
        return result

    def _run(
        self,
        operation: str,
        work: Callable[[_UnitOfWork], T],
        *,
        actor_id: str | None = None,
        keys: Callable[[], Iterable[LockKey]] = lambda: (),
        record_id: object = None,
    ) -> T:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=actor_id,
            operation=operation,
            record_id=str(record_id) if record_id is not None else None,
        ):
            logger.debug("operation_started")
            t0 = time.monotonic()
            try:
                result = self._retry.run(operation, lambda: self._attempt(keys, work))
            except InsufficientStockError as exc:
                self._publish(self._rejection_events(exc, operation))
                logger.warning(
                    "operation_rejected",
                    extra={
                        "error_code": exc.code,
                        "duration_ms": elapsed_ms(t0),
                    },
                )
                raise
            except RecordQuarantinedError as exc:
                logger.warning("operation_rejected", extra={"error_code": exc.code})
                raise
            except ConsistencyError as exc:
                logger.critical(
                    "consistency_violation_detected",
                    extra={
                        "resource_type": exc.resource_type,
                        "resource_id": exc.resource_id,
                        "detail": exc.detail,
                    },
                )
                self._quarantine(exc.resource_type, exc.resource_id, exc.detail)
                raise
            except BakeryKernelError as exc:
                logger.warning(
                    "operation_rejected",
                    extra={
                        "error_code": exc.code,
                        "duration_ms": elapsed_ms(t0),
                    },
                )
                raise
            except Exception:
                logger.error(
                    "operation_failed",
                    extra={"duration_ms": elapsed_ms(t0)},
                    exc_info=True,
                )
                raise
            logger.info(
                "operation_completed",
                extra={"duration_ms": elapsed_ms(t0)},
            )
            return result

    def _read(self, work: Callable[[_UnitOfWork], T]) -> T:
        with session_scope(self._session_factory) as session:
            return work(self._uow(session))

    def _rejection_events(
        self, exc: InsufficientStockError, operation: str
    ) -> list[DomainEvent]:
        now = self._clock.now()
        return [
            InsufficientStockRejected(
                occurred_at=now,
                item_id=as_uuid(item_id, "item_id"),
                required=required,
                available=available,
                operation=operation,
            )
            for item_id, required, available in exc.shortages
        ]

    def _quarantine(self, resource_type: str, resource_id: str, reason: str) -> None:
        """Persist the quarantine flag in its own transaction."""
        if resource_type not in (STOCK_ITEM, LEDGER_ENTITY):
            return
        record_id = as_uuid(resource_id)
        key = item_key(record_id) if resource_type == STOCK_ITEM else entity_key(record_id)
        with self._locks.hold([key]):
            with session_scope(self._session_factory) as session:
                self._uow(session).checker.quarantine(resource_type, record_id, reason)

    def _business_date(self, business_date: date | None) -> date:
        return business_date or self._clock.today()

    # ------------------------------------------------------------------
    # Stock items
    # ------------------------------------------------------------------

    def register_item(
        self,
        code: str,
        name: str,
        unit: str,
        *,
        actor_id: str,
        opening_quantity="0",
        opening_cost="0",
        min_level="0",
        supplier: str | None = None,
    ) -> ItemState:
        return self._run(
            "register_item",
            lambda uow: uow.costing.register_item(
                code,
                name,
                unit,
                actor_id=actor_id,
                opening_quantity=opening_quantity,
                opening_cost=opening_cost,
                min_level=min_level,
                supplier=supplier,
            ),
            actor_id=actor_id,
            record_id=code,
        )

    def deactivate_item(self, item_id: UUID | str, *, actor_id: str) -> ItemState:
        item_uuid = as_uuid(item_id, "item_id")
        return self._run(
            "deactivate_item",
            lambda uow: uow.costing.deactivate_item(item_uuid, actor_id=actor_id),
            actor_id=actor_id,
            keys=lambda: [item_key(item_uuid)],
            record_id=item_uuid,
        )

    def record_purchase(
        self,
        item_id: UUID | str,
        quantity,
        unit_cost,
        *,
        actor_id: str,
        business_date: date | None = None,
        supplier: str | None = None,
        reference: str | None = None,
        reason: str | None = None,
    ) -> PurchaseResult:
        item_uuid = as_uuid(item_id, "item_id")
        on_date = self._business_date(business_date)
        return self._run(
            "record_purchase",
            lambda uow: uow.costing.record_purchase(
                item_uuid,
                quantity,
                unit_cost,
                actor_id=actor_id,
                business_date=on_date,
                supplier=supplier,
                reference=reference,
                reason=reason,
            ),
            actor_id=actor_id,
            keys=lambda: [item_key(item_uuid), day_key(DayLockScope.STOCK.value, on_date)],
            record_id=item_uuid,
        )

    def record_consumption(
        self,
        item_id: UUID | str,
        quantity,
        *,
        actor_id: str,
        business_date: date | None = None,
        reason: str | None = None,
        reference: str | None = None,
    ) -> ConsumptionResult:
        item_uuid = as_uuid(item_id, "item_id")
        on_date = self._business_date(business_date)
        return self._run(
            "record_consumption",
            lambda uow: uow.costing.record_consumption(
                item_uuid,
                quantity,
                actor_id=actor_id,
                business_date=on_date,
                reason=reason,
                reference=reference,
            ),
            actor_id=actor_id,
            keys=lambda: [item_key(item_uuid), day_key(DayLockScope.STOCK.value, on_date)],
            record_id=item_uuid,
        )

    def record_adjustment(
        self,
        item_id: UUID | str,
        signed_quantity,
        reason: str,
        *,
        actor_id: str,
        business_date: date | None = None,
        reference: str | None = None,
    ) -> AdjustmentResult:
        item_uuid = as_uuid(item_id, "item_id")
        on_date = self._business_date(business_date)
        return self._run(
            "record_adjustment",
            lambda uow: uow.costing.record_adjustment(
                item_uuid,
                signed_quantity,
                reason,
                actor_id=actor_id,
                business_date=on_date,
                reference=reference,
            ),
            actor_id=actor_id,
            keys=lambda: [item_key(item_uuid), day_key(DayLockScope.STOCK.value, on_date)],
            record_id=item_uuid,
        )

    def record_production(
        self,
        product_id: str,
        produced_quantity,
        ingredient_requirements: Iterable[IngredientRequirement] | None = None,
        *,
        actor_id: str,
        business_date: date | None = None,
        batch_id: str | None = None,
    ) -> ProductionResult:
        """
        Deduct every ingredient of a production run, or none of them.

        When ``ingredient_requirements`` is None the recipe is read from the
        injected RecipeProvider.  Locks on all ingredient items are held
        across validation and application.  Quantity and recipe are checked
        inside the operation scope, so a rejection is logged like any other.
        """
        given = None if ingredient_requirements is None else tuple(ingredient_requirements)
        on_date = self._business_date(business_date)
        plan: dict[str, Any] = {}

        def keys() -> list[LockKey]:
            quantity = parse_positive(produced_quantity, "produced_quantity")
            if given is not None:
                lines = given
            elif self._recipes is not None:
                lines = tuple(self._recipes.get_ingredients(product_id))
            else:
                lines = ()
            required = resolve_requirements(product_id, quantity, lines, None)
            plan.update(quantity=quantity, lines=lines)
            return [
                *(item_key(item_id) for item_id in required),
                day_key(DayLockScope.STOCK.value, on_date),
            ]

        return self._run(
            "record_production",
            lambda uow: uow.production.record_production(
                product_id,
                plan["quantity"],
                plan["lines"],
                actor_id=actor_id,
                business_date=on_date,
                batch_id=batch_id,
            ),
            actor_id=actor_id,
            keys=keys,
            record_id=product_id,
        )

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def register_entity(
        self,
        kind: str,
        name: str,
        *,
        actor_id: str,
        opening_balance="0",
        opening_date: date | None = None,
    ) -> EntityBalance:
        on_date = self._business_date(opening_date)
        return self._run(
            "register_entity",
            lambda uow: uow.ledger.register_entity(
                kind,
                name,
                actor_id=actor_id,
                opening_balance=opening_balance,
                opening_date=on_date,
            ),
            actor_id=actor_id,
            keys=lambda: [day_key(DayLockScope.LEDGER.value, on_date)],
            record_id=name,
        )

    def deactivate_entity(self, entity_id: UUID | str, *, actor_id: str) -> EntityBalance:
        entity_uuid = as_uuid(entity_id, "entity_id")
        return self._run(
            "deactivate_entity",
            lambda uow: uow.ledger.deactivate_entity(entity_uuid, actor_id=actor_id),
            actor_id=actor_id,
            keys=lambda: [entity_key(entity_uuid)],
            record_id=entity_uuid,
        )

    def append_ledger_transaction(
        self,
        entity_id: UUID | str,
        transaction_date: date,
        debit="0",
        credit="0",
        kind: str = "adjustment",
        *,
        actor_id: str,
        description: str | None = None,
        reference: str | None = None,
        related_order_id: str | None = None,
        related_purchase_id: str | None = None,
        payment_method: str | None = None,
    ) -> LedgerMutationResult:
        entity_uuid = as_uuid(entity_id, "entity_id")
        return self._run(
            "append_ledger_transaction",
            lambda uow: uow.ledger.append(
                entity_uuid,
                transaction_date,
                debit,
                credit,
                kind,
                actor_id=actor_id,
                description=description,
                reference=reference,
                related_order_id=related_order_id,
                related_purchase_id=related_purchase_id,
                payment_method=payment_method,
            ),
            actor_id=actor_id,
            keys=lambda: [
                entity_key(entity_uuid),
                day_key(DayLockScope.LEDGER.value, transaction_date),
            ],
            record_id=entity_uuid,
        )

    def _locate_ledger_transaction(self, transaction_id: UUID) -> tuple[UUID, date]:
        def locate(uow: _UnitOfWork) -> tuple[UUID, date]:
            txn = uow.session.get(LedgerTransaction, transaction_id)
            if txn is None:
                raise LedgerTransactionNotFoundError(str(transaction_id))
            return txn.entity_id, txn.transaction_date

        return self._read(locate)

    def _ledger_mutation(
        self,
        operation: str,
        transaction_id: UUID,
        actor_id: str,
        mutate: Callable[[_UnitOfWork], LedgerMutationResult],
        extra_dates: tuple[date, ...] = (),
    ) -> LedgerMutationResult:
        """
        Run an update/delete under the entity lock and the day locks of
        every date it touches.  The row is located before locking and
        re-checked inside the transaction; a row moved meanwhile is a
        retryable conflict.
        """
        located: dict[str, tuple[UUID, date]] = {}

        def keys() -> list[LockKey]:
            entity_id, txn_date = self._locate_ledger_transaction(transaction_id)
            located["at"] = (entity_id, txn_date)
            return [
                entity_key(entity_id),
                *(
                    day_key(DayLockScope.LEDGER.value, d)
                    for d in {txn_date, *extra_dates}
                ),
            ]

        def work(uow: _UnitOfWork) -> LedgerMutationResult:
            txn = uow.session.get(LedgerTransaction, transaction_id)
            if txn is None:
                raise LedgerTransactionNotFoundError(str(transaction_id))
            if (txn.entity_id, txn.transaction_date) != located["at"]:
                raise ConcurrencyConflictError(
                    "ledger_transaction", str(transaction_id), reason="moved concurrently"
                )
            return mutate(uow)

        return self._run(
            operation, work, actor_id=actor_id, keys=keys, record_id=transaction_id
        )

    def update_ledger_transaction(
        self,
        transaction_id: UUID | str,
        *,
        actor_id: str,
        debit=None,
        credit=None,
        transaction_date: date | None = None,
        description: str | None = None,
        reference: str | None = None,
        payment_method: str | None = None,
    ) -> LedgerMutationResult:
        txn_uuid = as_uuid(transaction_id, "transaction_id")
        return self._ledger_mutation(
            "update_ledger_transaction",
            txn_uuid,
            actor_id,
            lambda uow: uow.ledger.update(
                txn_uuid,
                actor_id=actor_id,
                debit=debit,
                credit=credit,
                transaction_date=transaction_date,
                description=description,
                reference=reference,
                payment_method=payment_method,
            ),
            extra_dates=(transaction_date,) if transaction_date else (),
        )

    def delete_ledger_transaction(
        self, transaction_id: UUID | str, *, actor_id: str
    ) -> LedgerMutationResult:
        txn_uuid = as_uuid(transaction_id, "transaction_id")
        return self._ledger_mutation(
            "delete_ledger_transaction",
            txn_uuid,
            actor_id,
            lambda uow: uow.ledger.delete(txn_uuid, actor_id=actor_id),
        )

    def recalculate(self, entity_id: UUID | str, *, actor_id: str = "system"):
        """Full running-balance replay for one entity; returns the balance."""
        entity_uuid = as_uuid(entity_id, "entity_id")
        return self._run(
            "recalculate",
            lambda uow: uow.ledger.recalculate(entity_uuid),
            actor_id=actor_id,
            keys=lambda: [entity_key(entity_uuid)],
            record_id=entity_uuid,
        )

    # ------------------------------------------------------------------
    # Day close
    # ------------------------------------------------------------------

    def close_day(
        self, lock_date: date, scope: str, *, closed_by: str
    ) -> DayLockInfo:
        scope_value = validate_scope(scope)

        def work(uow: _UnitOfWork) -> DayLockInfo:
            info = uow.days.close_day(lock_date, scope_value, closed_by)
            uow.events.append(
                DayClosed(
                    occurred_at=info.closed_at or self._clock.now(),
                    lock_date=lock_date,
                    scope=scope_value,
                    closed_by=closed_by,
                    snapshot_item_count=info.snapshot_item_count,
                    snapshot_total_value=info.snapshot_total_value,
                )
            )
            return info

        return self._run(
            "close_day",
            work,
            actor_id=closed_by,
            keys=lambda: [day_key(scope_value, lock_date)],
            record_id=f"{scope_value}:{lock_date}",
        )

    def reopen_day(
        self, lock_date: date, scope: str, *, reopened_by: str
    ) -> DayLockInfo:
        scope_value = validate_scope(scope)

        def work(uow: _UnitOfWork) -> DayLockInfo:
            info = uow.days.reopen_day(lock_date, scope_value, reopened_by)
            uow.events.append(
                DayReopened(
                    occurred_at=info.reopened_at or self._clock.now(),
                    lock_date=lock_date,
                    scope=scope_value,
                    reopened_by=reopened_by,
                )
            )
            return info

        return self._run(
            "reopen_day",
            work,
            actor_id=reopened_by,
            keys=lambda: [day_key(scope_value, lock_date)],
            record_id=f"{scope_value}:{lock_date}",
        )

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    def _verify(
        self,
        operation: str,
        resource_type: str,
        record_id: UUID,
        key: LockKey,
        check: Callable[[_UnitOfWork], list[ConsistencyViolation]],
    ) -> list[ConsistencyViolation]:
        """Check one record under its lock; quarantine it in the same commit."""

        def work(uow: _UnitOfWork) -> list[ConsistencyViolation]:
            violations = check(uow)
            if violations:
                uow.checker.quarantine(
                    resource_type,
                    record_id,
                    "; ".join(v.detail for v in violations),
                )
            return violations

        violations = self._run(operation, work, keys=lambda: [key], record_id=record_id)
        for v in violations:
            logger.critical(
                "consistency_violation_detected",
                extra={
                    "resource_type": v.resource_type,
                    "resource_id": str(v.resource_id),
                    "invariant": v.invariant,
                    "detail": v.detail,
                },
            )
        return violations

    def verify_item(self, item_id: UUID | str) -> None:
        """
        Replay the item's stock log and compare with its live state.

        Raises:
            ConsistencyError: on the first violation; the item is
                quarantined before the error is raised.
        """
        item_uuid = as_uuid(item_id, "item_id")
        violations = self._verify(
            "verify_item",
            STOCK_ITEM,
            item_uuid,
            item_key(item_uuid),
            lambda uow: uow.checker.check_item(item_uuid),
        )
        if violations:
            raise ConsistencyError(STOCK_ITEM, str(item_uuid), violations[0].detail)

    def verify_entity(self, entity_id: UUID | str) -> None:
        """
        Replay the entity's ledger and compare with stored balances.

        Raises:
            ConsistencyError: on the first violation; the entity is
                quarantined before the error is raised.
        """
        entity_uuid = as_uuid(entity_id, "entity_id")
        violations = self._verify(
            "verify_entity",
            LEDGER_ENTITY,
            entity_uuid,
            entity_key(entity_uuid),
            lambda uow: uow.checker.check_entity(entity_uuid),
        )
        if violations:
            raise ConsistencyError(LEDGER_ENTITY, str(entity_uuid), violations[0].detail)

    def verify_all(self) -> ConsistencyReport:
        """
        Verify every item and entity, each under its own lock.

        Inconsistent records are quarantined; the report lists every
        violation found.  Does not raise for violations.
        """
        item_ids, entity_ids = self._read(
            lambda uow: (uow.checker.all_item_ids(), uow.checker.all_entity_ids())
        )
        violations: list[ConsistencyViolation] = []
        for item_id in item_ids:
            violations.extend(
                self._verify(
                    "verify_item",
                    STOCK_ITEM,
                    item_id,
                    item_key(item_id),
                    lambda uow, i=item_id: uow.checker.check_item(i),
                )
            )
        for entity_id in entity_ids:
            violations.extend(
                self._verify(
                    "verify_entity",
                    LEDGER_ENTITY,
                    entity_id,
                    entity_key(entity_id),
                    lambda uow, e=entity_id: uow.checker.check_entity(e),
                )
            )
        report = ConsistencyReport(
            checked_items=len(item_ids),
            checked_entities=len(entity_ids),
            violations=tuple(violations),
        )
        logger.info(
            "consistency_check_completed",
            extra={
                "checked_items": report.checked_items,
                "checked_entities": report.checked_entities,
                "violation_count": len(report.violations),
            },
        )
        return report

    def release_quarantine(
        self, resource_type: str, resource_id: UUID | str, *, actor_id: str
    ) -> bool:
        """Out-of-band release after the record has been repaired."""
        record_uuid = as_uuid(resource_id, "resource_id")
        if resource_type == STOCK_ITEM:
            key = item_key(record_uuid)
        elif resource_type == LEDGER_ENTITY:
            key = entity_key(record_uuid)
        else:
            raise ValidationError(
                f"Unknown resource type: {resource_type!r}", field="resource_type"
            )
        return self._run(
            "release_quarantine",
            lambda uow: uow.checker.release_quarantine(
                resource_type, record_uuid, actor_id=actor_id
            ),
            actor_id=actor_id,
            keys=lambda: [key],
            record_id=record_uuid,
        )

    # ------------------------------------------------------------------
    # Read queries
    # ------------------------------------------------------------------

    def get_item_state(self, item_id: UUID | str) -> ItemState:
        item_uuid = as_uuid(item_id, "item_id")
        return self._read(lambda uow: uow.stock.get_item_state(item_uuid))

    def get_transaction_history(
        self,
        item_id: UUID | str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[StockTransactionRecord]:
        item_uuid = as_uuid(item_id, "item_id")
        return self._read(
            lambda uow: uow.stock.get_transaction_history(item_uuid, start_date, end_date)
        )

    def list_items(self, include_inactive: bool = False) -> list[ItemState]:
        return self._read(lambda uow: uow.stock.list_items(include_inactive))

    def find_item_by_code(self, code: str) -> ItemState | None:
        return self._read(lambda uow: uow.stock.get_item_by_code(code))

    def list_low_stock_items(self) -> list[ItemState]:
        return self._read(lambda uow: uow.stock.list_low_stock_items())

    def get_stock_valuation(self) -> StockValuation:
        return self._read(lambda uow: uow.stock.get_stock_valuation())

    def list_entities(self, kind: str | None = None) -> list[EntityBalance]:
        return self._read(lambda uow: uow.ledgers.list_entities(kind))

    def get_entity_balance(self, entity_id: UUID | str) -> EntityBalance:
        entity_uuid = as_uuid(entity_id, "entity_id")
        return self._read(lambda uow: uow.ledgers.get_entity_balance(entity_uuid))

    def get_ledger_history(
        self,
        entity_id: UUID | str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[LedgerTransactionRecord]:
        entity_uuid = as_uuid(entity_id, "entity_id")
        return self._read(
            lambda uow: uow.ledgers.get_ledger_history(entity_uuid, start_date, end_date)
        )

    def get_day_lock(self, lock_date: date, scope: str) -> DayLockInfo:
        return self._read(lambda uow: uow.days.get_day_lock(lock_date, scope))


def create_orchestrator(
    config: KernelConfig,
    *,
    clock: Clock | None = None,
    event_sink: EventSink | None = None,
    recipes: RecipeProvider | None = None,
) -> OperationsOrchestrator:
    """
    Initialize logging, the engine and the schema from ``config`` and
    return a ready orchestrator.
    """
    configure_logging(level=config.log_level.upper())
    init_engine_from_url(config.database_url, echo=config.echo_sql)
    create_tables()
    return OperationsOrchestrator(
        config,
        session_factory=get_session_factory(),
        clock=clock,
        event_sink=event_sink,
        recipes=recipes,
    )
