"""Services for the royalty kernel (write side)."""

from royalty_kernel.services.auditor_service import AuditorService, AuditTrace
from royalty_kernel.services.calculation_service import CalculationService
from royalty_kernel.services.deadline import OperationDeadline
from royalty_kernel.services.revenue_collector import RevenueCollector
from royalty_kernel.services.rollback_service import RollbackService
from royalty_kernel.services.run_lifecycle_service import RunLifecycleService
from royalty_kernel.services.run_lock_service import RunLease, RunLockService, run_lock_key
from royalty_kernel.services.sequence_service import SequenceService
from royalty_kernel.services.statement_builder import StatementBuilder
from royalty_kernel.services.statement_service import AdjustmentType, StatementService
from royalty_kernel.services.validation_reporter import ValidationReporter

__all__ = [
    "AdjustmentType",
    "AuditorService",
    "AuditTrace",
    "CalculationService",
    "OperationDeadline",
    "RevenueCollector",
    "RollbackService",
    "RunLease",
    "RunLifecycleService",
    "RunLockService",
    "SequenceService",
    "StatementBuilder",
    "StatementService",
    "ValidationReporter",
    "run_lock_key",
]
