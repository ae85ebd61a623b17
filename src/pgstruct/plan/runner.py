"""Plan runner: apply statement descriptors through an executor."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Protocol, Sequence, runtime_checkable

from pgstruct.exceptions import ExecutionFailed, PgStructError
from pgstruct.plan.emitter import Statement
from pgstruct.schema.codegen import DdlRenderer
from pgstruct.schema.datatypes import parse_type
from pgstruct.schema.loader import (
    parse_column_dict,
    parse_constraint_dict,
    parse_index_dict,
    parse_table_dict,
)
from pgstruct.schema.models import ConstraintKind, Schema, SchemaModel, Table
from pgstruct.types import ChangeKind, QualifiedName

__all__ = [
    "StatementResult",
    "Executor",
    "ExecutionReport",
    "PlanRunner",
    "SqlExecutor",
    "InMemoryExecutor",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatementResult:
    """Outcome of one statement: applied, or failed with a reason."""

    ok: bool
    reason: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def applied(cls, message: Optional[str] = None) -> StatementResult:
        return cls(ok=True, message=message)

    @classmethod
    def failed(cls, reason: str, message: Optional[str] = None) -> StatementResult:
        return cls(ok=False, reason=reason, message=message)


@runtime_checkable
class Executor(Protocol):
    """Applies one statement against a target and reports the outcome.

    Implementations must not raise for statement-level failures; they return
    ``StatementResult.failed`` instead. Retry policy, if any, lives here too.
    """

    def execute(self, statement: Statement) -> StatementResult: ...


@dataclass(frozen=True)
class ExecutionReport:
    """How far a run got.

    ``last_applied_index`` is the position of the last statement applied
    successfully, or -1 if none was.
    """

    total: int
    last_applied_index: int = -1
    applied: tuple[Statement, ...] = ()
    cancelled: bool = False
    dry_run: bool = False

    @property
    def completed(self) -> bool:
        return not self.cancelled and len(self.applied) == self.total


class PlanRunner:
    """
    Applies statements strictly in order, stopping at the first failure.

    Cancellation is checked before each statement; a statement that has
    started always runs to completion.
    """

    def __init__(self, executor: Executor) -> None:
        self._executor = executor

    def apply(
        self,
        statements: Sequence[Statement],
        cancel_event: Optional[threading.Event] = None,
        dry_run: bool = False,
    ) -> ExecutionReport:
        """
        Apply statements in the given order.

        Args:
            statements: Emitted statement descriptors, in plan order.
            cancel_event: When set, the run stops before the next statement.
            dry_run: If True, log what would be executed but don't execute.

        Raises:
            ExecutionFailed: If the executor reports a failure. Carries the
                failing position and the last applied position.
        """
        total = len(statements)
        if not statements:
            logger.info("Target is up to date. No pending statements.")
            return ExecutionReport(total=0, dry_run=dry_run)

        last_applied = -1
        applied: list[Statement] = []

        for index, statement in enumerate(statements):
            label = statement.describe()

            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    f"Cancelled before {label}; last applied index {last_applied}"
                )
                return ExecutionReport(
                    total=total,
                    last_applied_index=last_applied,
                    applied=tuple(applied),
                    cancelled=True,
                    dry_run=dry_run,
                )

            if dry_run:
                logger.info(f"[DRY RUN] Would apply {label}")
                continue

            logger.info(f"Applying {label}...")
            result = self._executor.execute(statement)
            if not result.ok:
                logger.error(f"Failed {label}: {result.reason}")
                raise ExecutionFailed(
                    statement_index=index,
                    reason=result.reason or "unknown error",
                    last_applied_index=last_applied,
                    statement=statement,
                    message=result.message,
                )

            last_applied = index
            applied.append(statement)
            logger.info(f"Applied {label}")

        return ExecutionReport(
            total=total,
            last_applied_index=last_applied,
            applied=tuple(applied),
            dry_run=dry_run,
        )


class SqlExecutor:
    """Render each statement to DDL and run it through a SQL client.

    The client needs an ``execute(sql)`` method; any exception it raises is
    reported as a failed result.
    """

    def __init__(self, client: Any, renderer: Optional[DdlRenderer] = None) -> None:
        self._client = client
        self._renderer = renderer or DdlRenderer()

    def execute(self, statement: Statement) -> StatementResult:
        sql = self._renderer.render(statement)
        try:
            self._client.execute(sql)
        except Exception as exc:
            return StatementResult.failed(str(exc), message=sql)
        return StatementResult.applied()


TableEdit = Callable[[Table, QualifiedName, dict], Table]


class InMemoryExecutor:
    """Apply statements to a schema snapshot instead of a database.

    Every statement produces a new snapshot; ``model`` is the latest one.
    Used for dry runs and to check that a plan converges.
    """

    def __init__(self, model: SchemaModel) -> None:
        self.model = model

    def execute(self, statement: Statement) -> StatementResult:
        try:
            self.model = self._apply(self.model, statement)
        except (PgStructError, KeyError, ValueError) as exc:
            return StatementResult.failed(str(exc))
        return StatementResult.applied()

    def _apply(self, model: SchemaModel, statement: Statement) -> SchemaModel:
        target, payload = statement.target, statement.payload
        verb = statement.verb

        if verb is ChangeKind.CREATE_SCHEMA:
            if model.get_schema(target.schema) is not None:
                raise ValueError(f"Schema {target.schema} already exists")
            return SchemaModel(schemas=model.schemas + (Schema(name=target.schema),))

        if verb is ChangeKind.DROP_SCHEMA:
            schema = _require_schema(model, target.schema)
            if schema.tables:
                raise ValueError(f"Schema {target.schema} is not empty")
            return SchemaModel(
                schemas=tuple(s for s in model.schemas if s.name != target.schema)
            )

        if verb is ChangeKind.CREATE_TABLE:
            table = parse_table_dict(dict(payload["table"], schema=target.schema))
            schema = _require_schema(model, target.schema)
            if schema.get_table(table.name) is not None:
                raise ValueError(f"Table {target} already exists")
            return _replace_schema(model, replace(schema, tables=schema.tables + (table,)))

        if verb is ChangeKind.DROP_TABLE:
            schema = _require_schema(model, target.schema)
            _require_table(model, target)
            tables = tuple(t for t in schema.tables if t.name != target.table)
            return _replace_schema(model, replace(schema, tables=tables))

        if verb in (ChangeKind.SET_COMMENT, ChangeKind.CLEAR_COMMENT):
            return self._apply_comment(model, target, payload)

        edit = self._table_edits().get(verb)
        if edit is None:
            raise ValueError(f"Cannot apply {verb.value}")
        table = _require_table(model, target.table_name)
        return _replace_table(model, edit(table, target, payload))

    def _table_edits(self) -> dict[ChangeKind, TableEdit]:
        return {
            ChangeKind.ADD_COLUMN: _add_column,
            ChangeKind.DROP_COLUMN: _drop_column,
            ChangeKind.ALTER_COLUMN_TYPE: _alter_column_type,
            ChangeKind.ALTER_COLUMN_NULLABILITY: _alter_column_nullability,
            ChangeKind.ALTER_COLUMN_DEFAULT: _alter_column_default,
            ChangeKind.ADD_CONSTRAINT: _add_constraint,
            ChangeKind.DROP_CONSTRAINT: _drop_constraint,
            ChangeKind.ADD_INDEX: _add_index,
            ChangeKind.DROP_INDEX: _drop_index,
        }

    def _apply_comment(
        self, model: SchemaModel, target: QualifiedName, payload: dict
    ) -> SchemaModel:
        owner_kind, text = payload["owner_kind"], payload.get("text")
        if owner_kind == "schema":
            schema = _require_schema(model, target.schema)
            return _replace_schema(model, replace(schema, comment=text))
        table = _require_table(model, target.table_name)
        if owner_kind == "table":
            return _replace_table(model, replace(table, comment=text))
        column = _require_column(table, target.member)
        columns = tuple(
            replace(c, comment=text) if c.name == column.name else c
            for c in table.columns
        )
        return _replace_table(model, replace(table, columns=columns))


def _require_schema(model: SchemaModel, name: str) -> Schema:
    schema = model.get_schema(name)
    if schema is None:
        raise ValueError(f"Schema {name} does not exist")
    return schema


def _require_table(model: SchemaModel, name: QualifiedName) -> Table:
    table = model.get_table(name)
    if table is None:
        raise ValueError(f"Table {name} does not exist")
    return table


def _require_column(table: Table, name: Optional[str]):
    column = table.get_column(name) if name else None
    if column is None:
        raise ValueError(f"Column {table.qualified_name}.{name} does not exist")
    return column


def _replace_schema(model: SchemaModel, schema: Schema) -> SchemaModel:
    return SchemaModel(
        schemas=tuple(schema if s.name == schema.name else s for s in model.schemas)
    )


def _replace_table(model: SchemaModel, table: Table) -> SchemaModel:
    schema = _require_schema(model, table.schema)
    tables = tuple(table if t.name == table.name else t for t in schema.tables)
    return _replace_schema(model, replace(schema, tables=tables))


def _set_columns(table: Table, names: Sequence[str], **changes: Any) -> Table:
    columns = tuple(
        replace(c, **changes) if c.name in names else c for c in table.columns
    )
    return replace(table, columns=columns)


def _add_column(table: Table, target: QualifiedName, payload: dict) -> Table:
    column = parse_column_dict(payload["column"])
    if table.get_column(column.name) is not None:
        raise ValueError(f"Column {target} already exists")
    ordinal = max((c.ordinal for c in table.columns), default=0) + 1
    return replace(table, columns=table.columns + (replace(column, ordinal=ordinal),))


def _drop_column(table: Table, target: QualifiedName, payload: dict) -> Table:
    """Drop a column with the indexes and constraints that use it."""
    name = _require_column(table, payload["column"]).name
    return replace(
        table,
        columns=tuple(c for c in table.columns if c.name != name),
        constraints=tuple(c for c in table.constraints if not c.references_column(name)),
        indexes=tuple(ix for ix in table.indexes if not ix.references_column(name)),
    )


def _alter_column_type(table: Table, target: QualifiedName, payload: dict) -> Table:
    column = _require_column(table, payload["column"])
    return _set_columns(table, [column.name], type=parse_type(payload["to_type"]))


def _alter_column_nullability(
    table: Table, target: QualifiedName, payload: dict
) -> Table:
    column = _require_column(table, payload["column"])
    return _set_columns(table, [column.name], nullable=bool(payload["nullable"]))


def _alter_column_default(table: Table, target: QualifiedName, payload: dict) -> Table:
    column = _require_column(table, payload["column"])
    return _set_columns(table, [column.name], default=payload["default"])


def _add_constraint(table: Table, target: QualifiedName, payload: dict) -> Table:
    constraint = parse_constraint_dict(
        payload["constraint"], default_schema=target.schema
    )
    if table.get_constraint(constraint.name) is not None:
        raise ValueError(f"Constraint {target} already exists")
    table = replace(table, constraints=table.constraints + (constraint,))
    if constraint.kind in (ConstraintKind.PRIMARY_KEY, ConstraintKind.NOT_NULL):
        table = _set_columns(table, constraint.columns, nullable=False)
    return table


def _drop_constraint(table: Table, target: QualifiedName, payload: dict) -> Table:
    constraint = table.get_constraint(payload["name"])
    if constraint is None:
        raise ValueError(f"Constraint {target} does not exist")
    table = replace(
        table,
        constraints=tuple(c for c in table.constraints if c.name != constraint.name),
    )
    if constraint.kind is ConstraintKind.NOT_NULL:
        table = _set_columns(table, constraint.columns, nullable=True)
    return table


def _add_index(table: Table, target: QualifiedName, payload: dict) -> Table:
    index = parse_index_dict(payload["index"])
    if table.get_index(index.name) is not None:
        raise ValueError(f"Index {target} already exists")
    return replace(table, indexes=table.indexes + (index,))


def _drop_index(table: Table, target: QualifiedName, payload: dict) -> Table:
    if table.get_index(payload["name"]) is None:
        raise ValueError(f"Index {target} does not exist")
    return replace(
        table, indexes=tuple(ix for ix in table.indexes if ix.name != payload["name"])
    )
