"""Plan building, statement emission and execution modules."""

from pgstruct.plan.builder import Plan, PlanBuilder, PlanPhase
from pgstruct.plan.emitter import Statement, StatementEmitter
from pgstruct.plan.runner import (
    ExecutionReport,
    Executor,
    InMemoryExecutor,
    PlanRunner,
    SqlExecutor,
    StatementResult,
)

__all__ = [
    "Plan",
    "PlanBuilder",
    "PlanPhase",
    "Statement",
    "StatementEmitter",
    "ExecutionReport",
    "Executor",
    "InMemoryExecutor",
    "PlanRunner",
    "SqlExecutor",
    "StatementResult",
]
