"""Exception classes for pgstruct."""

from typing import TYPE_CHECKING, Any, Iterable, Optional

if TYPE_CHECKING:
    from pgstruct.types import QualifiedName

__all__ = [
    "PgStructError",
    "SchemaLoadError",
    "MalformedModel",
    "IntrospectionError",
    "DiffError",
    "IncomparableTypes",
    "PlanError",
    "UnresolvableDependencyCycle",
    "ExecutionFailed",
    "RenderError",
    "ConfigError",
]


class PgStructError(Exception):
    """Base exception for pgstruct."""


class SchemaLoadError(PgStructError):
    """Error loading schema definition files."""


class MalformedModel(PgStructError):
    """A structural invariant was violated while building a schema snapshot."""

    def __init__(self, problems: Iterable[str]):
        self.problems = list(problems)
        super().__init__(
            "Malformed schema model:\n  - " + "\n  - ".join(self.problems)
        )


class IntrospectionError(PgStructError):
    """Error introspecting database schema."""


class DiffError(PgStructError):
    """Error computing schema diff."""


class IncomparableTypes(DiffError):
    """Two column type descriptors cannot be classified for comparison."""

    def __init__(self, column: "QualifiedName", desired: Any, current: Any):
        self.column = column
        self.desired = desired
        self.current = current
        super().__init__(
            f"Cannot compare types of column {column}: "
            f"desired {desired}, current {current}"
        )


class PlanError(PgStructError):
    """Error building an execution plan."""


class UnresolvableDependencyCycle(PlanError):
    """The change operations contain a dependency cycle that cannot be broken."""

    def __init__(self, participants: Iterable[str]):
        self.participants = list(participants)
        super().__init__(
            "Unresolvable dependency cycle between: " + ", ".join(self.participants)
        )


class ExecutionFailed(PgStructError):
    """A statement failed while applying a plan.

    ``last_applied_index`` is the ordinal of the last statement that was
    applied successfully (-1 if none).
    """

    def __init__(
        self,
        statement_index: int,
        reason: str,
        last_applied_index: int,
        statement: Any = None,
        message: Optional[str] = None,
    ):
        self.statement_index = statement_index
        self.reason = reason
        self.last_applied_index = last_applied_index
        self.statement = statement
        self.message = message
        super().__init__(f"Statement #{statement_index} failed: {reason}")


class RenderError(PgStructError):
    """Error rendering a statement descriptor to DDL text."""


class ConfigError(PgStructError):
    """Error in configuration."""
