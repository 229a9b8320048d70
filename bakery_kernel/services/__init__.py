"""Services for the bakery kernel (write side)."""

from bakery_kernel.services.consistency_checker import ConsistencyChecker
from bakery_kernel.services.costing_engine import CostingEngine
from bakery_kernel.services.day_close_service import DayCloseService
from bakery_kernel.services.ledger_service import LedgerService
from bakery_kernel.services.lock_registry import RowLockRegistry
from bakery_kernel.services.orchestrator import OperationsOrchestrator, create_orchestrator
from bakery_kernel.services.recipe_consumption import RecipeConsumptionCoordinator
from bakery_kernel.services.retry_service import ConflictRetryService
from bakery_kernel.services.running_balance_service import RunningBalanceRecalculator
from bakery_kernel.services.sequence_service import SequenceService

__all__ = [
    "ConflictRetryService",
    "ConsistencyChecker",
    "CostingEngine",
    "DayCloseService",
    "LedgerService",
    "OperationsOrchestrator",
    "RecipeConsumptionCoordinator",
    "RowLockRegistry",
    "RunningBalanceRecalculator",
    "SequenceService",
    "create_orchestrator",
]
