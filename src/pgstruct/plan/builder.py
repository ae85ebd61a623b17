"""Order change operations into a phased, dependency-safe plan."""

import logging
from dataclasses import dataclass
from itertools import groupby
from typing import Iterator, Optional, Sequence, Union

from pgstruct.plan.graph import DependencyGraph
from pgstruct.schema.diff import ChangeOp
from pgstruct.schema.models import (
    Constraint,
    ConstraintKind,
    Index,
    SchemaModel,
    Table,
)
from pgstruct.types import CHANGE_KIND_ORDER, ChangeKind, Phase, QualifiedName

logger = logging.getLogger(__name__)

# Drops run in reverse creation order.
_DROP_RANK = {
    "foreign_key": 0,
    ChangeKind.DROP_CONSTRAINT: 1,
    ChangeKind.DROP_INDEX: 2,
    ChangeKind.DROP_COLUMN: 3,
    ChangeKind.DROP_TABLE: 4,
    ChangeKind.DROP_SCHEMA: 5,
}

_MEMBER_ADDS = (
    ChangeKind.ADD_COLUMN,
    ChangeKind.ADD_CONSTRAINT,
    ChangeKind.ADD_INDEX,
    ChangeKind.SET_COMMENT,
    ChangeKind.CLEAR_COMMENT,
)

_COMMENT_KINDS = (ChangeKind.SET_COMMENT, ChangeKind.CLEAR_COMMENT)


def phase_of(op: ChangeOp) -> Phase:
    """The execution phase an operation belongs to."""
    if op.kind.is_drop:
        return Phase.DROPS
    if op.kind is ChangeKind.CREATE_SCHEMA:
        return Phase.SCHEMAS
    if op.kind is ChangeKind.CREATE_TABLE:
        return Phase.TABLES
    if op.kind is ChangeKind.ADD_CONSTRAINT:
        return Phase.FOREIGN_KEYS if op.is_foreign_key else Phase.CONSTRAINTS
    return Phase.COLUMNS


def _priority(op: ChangeOp) -> tuple:
    phase = phase_of(op)
    if phase is Phase.DROPS:
        rank = _DROP_RANK["foreign_key" if op.is_foreign_key else op.kind]
    else:
        rank = CHANGE_KIND_ORDER[op.kind]
    return (phase, rank, op.target.sort_key)


def _is_deferred(op: ChangeOp) -> bool:
    return op.kind is ChangeKind.ADD_CONSTRAINT and op.is_foreign_key


@dataclass(frozen=True)
class PlanPhase:
    """Operations of one phase, in execution order."""

    phase: Phase
    ops: tuple[ChangeOp, ...]


@dataclass(frozen=True)
class Plan:
    """Fully ordered, phase-partitioned sequence of change operations."""

    phases: tuple[PlanPhase, ...] = ()

    @property
    def ops(self) -> tuple[ChangeOp, ...]:
        return tuple(op for phase in self.phases for op in phase.ops)

    @property
    def is_empty(self) -> bool:
        return not self.phases

    @property
    def destructive_ops(self) -> list[ChangeOp]:
        return [op for op in self.ops if op.is_destructive]

    def __len__(self) -> int:
        return sum(len(phase.ops) for phase in self.phases)

    def __iter__(self) -> Iterator[ChangeOp]:
        return iter(self.ops)


class PlanBuilder:
    """Sort change operations so no statement violates a PostgreSQL dependency.

    ``desired`` and ``current`` are the snapshots the operations were diffed
    from; they are needed to find objects that depend on a column whose type
    changes.

    Foreign key additions are kept out of the dependency graph and appended as
    a final phase, which breaks every creation cycle between tables.
    """

    def __init__(self, desired: SchemaModel, current: SchemaModel):
        self.desired = desired
        self.current = current

    def build(self, ops: Sequence[ChangeOp]) -> Plan:
        """Order operations into a plan.

        Raises:
            UnresolvableDependencyCycle: If the non-deferred operations still
                contain a cycle.
        """
        ops, extra_edges = self._expand_type_changes(list(ops))

        graph: DependencyGraph[int] = DependencyGraph(
            i for i, op in enumerate(ops) if not _is_deferred(op)
        )
        for before, after in extra_edges + self._dependency_edges(ops):
            if before in graph and after in graph:
                graph.add_edge(before, after)

        ordered = [
            ops[i]
            for i in graph.order(
                key=lambda i: _priority(ops[i]), label=lambda i: ops[i].describe()
            )
        ]
        deferred = sorted(
            (op for op in ops if _is_deferred(op)), key=lambda op: op.target.sort_key
        )

        phases = tuple(
            PlanPhase(phase=phase, ops=tuple(group))
            for phase, group in groupby(ordered + deferred, key=phase_of)
        )
        return Plan(phases=phases)

    def _expand_type_changes(
        self, ops: list[ChangeOp]
    ) -> tuple[list[ChangeOp], list[tuple[int, int]]]:
        """Drop and re-add indexes and constraints around column type changes."""
        positions = {(op.kind, op.target): i for i, op in enumerate(ops)}
        edges: list[tuple[int, int]] = []

        for alter_index in range(len(ops)):
            op = ops[alter_index]
            if op.kind is not ChangeKind.ALTER_COLUMN_TYPE:
                continue
            table = self.current.get_table(op.table)
            if table is None:
                continue

            for owner, obj in self._dependents(table, op.details["column"]):
                target = QualifiedName(owner.schema, owner.name, obj.name)
                if isinstance(obj, Index):
                    drop_kind, add_kind, key = (
                        ChangeKind.DROP_INDEX,
                        ChangeKind.ADD_INDEX,
                        "index",
                    )
                else:
                    drop_kind, add_kind, key = (
                        ChangeKind.DROP_CONSTRAINT,
                        ChangeKind.ADD_CONSTRAINT,
                        "constraint",
                    )

                drop_index = positions.get((drop_kind, target))
                add_index = positions.get((add_kind, target))
                if drop_index is None:
                    logger.debug(f"Rebuilding {target} around type change of {op.target}")
                    ops.append(ChangeOp(drop_kind, target, {key: obj}))
                    drop_index = len(ops) - 1
                    positions[(drop_kind, target)] = drop_index
                    ops.append(
                        ChangeOp(add_kind, target, {key: self._desired_version(owner, obj)})
                    )
                    add_index = len(ops) - 1
                    positions[(add_kind, target)] = add_index

                edges.append((drop_index, alter_index))
                if add_index is not None:
                    edges.append((alter_index, add_index))

        return ops, edges

    def _dependents(
        self, table: Table, column: str
    ) -> list[tuple[Table, Union[Constraint, Index]]]:
        """Current indexes and constraints that must not exist while ``column`` changes type."""
        found: dict[tuple, tuple[Table, Union[Constraint, Index]]] = {}
        for index in table.indexes:
            if index.references_column(column):
                found[("index", table.sort_key, index.name)] = (table, index)
        for constraint in table.constraints:
            if constraint.kind is ConstraintKind.NOT_NULL:
                continue
            if constraint.references_column(column):
                found[("constraint", table.sort_key, constraint.name)] = (table, constraint)
        for owner, fk in self.current.referencing_foreign_keys(table.qualified_name):
            if column in fk.referenced_columns:
                found[("constraint", owner.sort_key, fk.name)] = (owner, fk)
        return [found[k] for k in sorted(found)]

    def _desired_version(
        self, owner: Table, obj: Union[Constraint, Index]
    ) -> Union[Constraint, Index]:
        desired_table = self.desired.get_table(owner.qualified_name)
        replacement: Optional[Union[Constraint, Index]] = None
        if desired_table is not None:
            if isinstance(obj, Index):
                replacement = desired_table.get_index(obj.name)
            else:
                replacement = desired_table.get_constraint(obj.name)
        return replacement or obj

    def _dependency_edges(self, ops: list[ChangeOp]) -> list[tuple[int, int]]:
        edges: list[tuple[int, int]] = []
        for i, before in enumerate(ops):
            for j, after in enumerate(ops):
                if i != j and _must_precede(before, after):
                    edges.append((i, j))
        return edges


def _must_precede(before: ChangeOp, after: ChangeOp) -> bool:
    """True if ``before`` has to run before ``after``."""
    kind = before.kind

    if kind is ChangeKind.CREATE_SCHEMA:
        return (
            not after.kind.is_drop
            and after.kind is not ChangeKind.CREATE_SCHEMA
            and after.target.schema == before.target.schema
        )

    if kind is ChangeKind.CREATE_TABLE:
        return (
            after.kind in _MEMBER_ADDS
            and after.target.table is not None
            and after.table == before.target
        )

    if kind is ChangeKind.ADD_COLUMN:
        return _touches_column(after, before.table, before.target.member)

    if kind is ChangeKind.ALTER_COLUMN_TYPE:
        return after.kind in (
            ChangeKind.ADD_INDEX,
            ChangeKind.ADD_CONSTRAINT,
        ) and _touches_column(after, before.table, before.target.member)

    if kind is ChangeKind.DROP_TABLE:
        return (
            after.kind is ChangeKind.DROP_SCHEMA
            and after.target.schema == before.target.schema
        )

    if kind in (ChangeKind.DROP_INDEX, ChangeKind.DROP_CONSTRAINT):
        if _replaces(before, after):
            return True
        if after.kind is ChangeKind.DROP_COLUMN and after.table == before.table:
            obj = before.index or before.constraint
            if obj is not None and obj.references_column(after.target.member):
                return True
        if after.kind is ChangeKind.ALTER_COLUMN_TYPE and after.table == before.table:
            obj = before.index or before.constraint
            if obj is not None and obj.references_column(after.target.member):
                return True
        if kind is ChangeKind.DROP_CONSTRAINT:
            if before.is_foreign_key:
                return _blocked_by_foreign_key(before.table, before.constraint, after)
            if _frees_nullability(before, after):
                return True

    return False


def _touches_column(op: ChangeOp, table: QualifiedName, column: Optional[str]) -> bool:
    """True if an add/comment operation on ``table`` uses ``column``."""
    if column is None or op.target.table is None or op.table != table:
        return False
    if op.kind is ChangeKind.ADD_INDEX:
        return op.index.references_column(column)
    if op.kind is ChangeKind.ADD_CONSTRAINT:
        return op.constraint.references_column(column)
    if op.kind in _COMMENT_KINDS:
        return op.target.member == column
    return False


def _namespace_key(op: ChangeOp) -> Optional[tuple]:
    """Name an index or constraint occupies.

    Indexes and index-backed constraints share the schema-wide relation
    namespace; other constraint names are scoped to their table.
    """
    if op.index is not None:
        return ("relation", op.target.schema, op.target.member)
    if op.constraint is not None:
        if op.constraint.kind.owns_index:
            return ("relation", op.target.schema, op.target.member)
        return ("constraint", op.target.schema, op.target.table, op.target.member)
    return None


def _replaces(drop: ChangeOp, add: ChangeOp) -> bool:
    if add.kind not in (ChangeKind.ADD_INDEX, ChangeKind.ADD_CONSTRAINT):
        return False
    key = _namespace_key(drop)
    return key is not None and key == _namespace_key(add)


def _frees_nullability(drop: ChangeOp, after: ChangeOp) -> bool:
    """A primary key must be gone before its columns can become nullable."""
    constraint = drop.constraint
    return (
        constraint is not None
        and constraint.kind is ConstraintKind.PRIMARY_KEY
        and after.kind is ChangeKind.ALTER_COLUMN_NULLABILITY
        and after.table == drop.table
        and after.target.member in constraint.columns
        and after.details.get("to_nullable") is True
    )


def _blocked_by_foreign_key(
    table: QualifiedName, fk: Constraint, after: ChangeOp
) -> bool:
    """Drops that must wait until the foreign key ``fk`` on ``table`` is gone."""
    referenced = fk.references
    if after.kind is ChangeKind.DROP_TABLE:
        return after.target in (table, referenced)

    if after.kind is ChangeKind.DROP_COLUMN:
        column = after.target.member
        return (after.table == table and column in fk.columns) or (
            after.table == referenced and column in fk.referenced_columns
        )

    if after.table != referenced:
        return False
    wanted = set(fk.referenced_columns)
    if after.kind is ChangeKind.DROP_CONSTRAINT:
        key = after.constraint
        return (
            key is not None
            and key.kind in (ConstraintKind.PRIMARY_KEY, ConstraintKind.UNIQUE)
            and set(key.columns) == wanted
        )
    if after.kind is ChangeKind.DROP_INDEX:
        index = after.index
        return index is not None and index.unique and set(index.columns) == wanted
    return False
