"""Compare schema snapshots and generate change operations."""

from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Optional, TypeVar

from pgstruct.exceptions import IncomparableTypes
from pgstruct.schema.models import (
    Column,
    Constraint,
    Index,
    Schema,
    SchemaModel,
    Table,
)
from pgstruct.types import CHANGE_KIND_ORDER, ChangeKind, QualifiedName

_Member = TypeVar("_Member", Constraint, Index)


@dataclass(frozen=True)
class ChangeOp:
    """A single structural change between two snapshots.

    ``details`` holds the model objects and scalars the change needs; its
    keys depend on ``kind``.
    """

    kind: ChangeKind
    target: QualifiedName
    details: Mapping[str, Any] = field(default_factory=dict)
    is_destructive: bool = False

    @property
    def table(self) -> QualifiedName:
        return self.target.table_name

    @property
    def constraint(self) -> Optional[Constraint]:
        return self.details.get("constraint")

    @property
    def index(self) -> Optional[Index]:
        return self.details.get("index")

    @property
    def is_foreign_key(self) -> bool:
        constraint = self.constraint
        return constraint is not None and constraint.is_foreign_key

    @property
    def sort_key(self) -> tuple:
        return (CHANGE_KIND_ORDER[self.kind], self.target.sort_key)

    def describe(self) -> str:
        return f"{self.kind.value}: {self.target}"


class SchemaDiffer:
    """Compare a desired snapshot with the current one and list the changes.

    The result turns ``current`` into ``desired``. It is sorted by change kind
    and then by qualified name, so identical inputs always give identical
    output.
    """

    def diff(self, desired: SchemaModel, current: SchemaModel) -> list[ChangeOp]:
        """Compare desired (source) to current (target) and return changes."""
        changes: list[ChangeOp] = []

        desired_schemas = desired.schema_names()
        current_schemas = current.schema_names()

        for name in desired_schemas - current_schemas:
            changes.extend(self._create_schema(desired.get_schema(name)))

        for name in current_schemas - desired_schemas:
            changes.extend(self._drop_schema(current.get_schema(name)))

        for name in desired_schemas & current_schemas:
            changes.extend(
                self._diff_schema(desired.get_schema(name), current.get_schema(name))
            )

        return sorted(changes, key=lambda c: c.sort_key)

    def _create_schema(self, schema: Schema) -> list[ChangeOp]:
        target = QualifiedName(schema.name)
        changes = [ChangeOp(ChangeKind.CREATE_SCHEMA, target)]
        if schema.comment is not None:
            changes.append(_set_comment(target, "schema", schema.comment, None))
        for table in schema.tables:
            changes.extend(self._create_table(table))
        return changes

    def _drop_schema(self, schema: Schema) -> list[ChangeOp]:
        changes: list[ChangeOp] = []
        for table in schema.tables:
            changes.extend(self._drop_table(table))
        changes.append(
            ChangeOp(
                ChangeKind.DROP_SCHEMA,
                QualifiedName(schema.name),
                is_destructive=True,
            )
        )
        return changes

    def _diff_schema(self, desired: Schema, current: Schema) -> list[ChangeOp]:
        changes: list[ChangeOp] = []
        changes.extend(
            _diff_comment(
                QualifiedName(desired.name), "schema", desired.comment, current.comment
            )
        )

        desired_tables = desired.table_names()
        current_tables = current.table_names()

        for name in desired_tables - current_tables:
            changes.extend(self._create_table(desired.get_table(name)))

        for name in current_tables - desired_tables:
            changes.extend(self._drop_table(current.get_table(name)))

        for name in desired_tables & current_tables:
            changes.extend(
                self._diff_table(desired.get_table(name), current.get_table(name))
            )

        return changes

    def _create_table(self, table: Table) -> list[ChangeOp]:
        """CREATE TABLE with columns and non-FK constraints; everything else split out.

        Foreign keys, indexes and comments become their own operations so the
        plan builder can defer and order them independently.
        """
        target = table.qualified_name
        bare = replace(
            table,
            columns=tuple(replace(c, comment=None) for c in table.columns),
            constraints=tuple(c for c in table.constraints if not c.is_foreign_key),
            indexes=(),
            comment=None,
        )
        changes = [ChangeOp(ChangeKind.CREATE_TABLE, target, {"table": bare})]

        for fk in table.foreign_keys:
            changes.append(_add_constraint(target, fk))
        for index in table.indexes:
            changes.append(_add_index(target, index))
        if table.comment is not None:
            changes.append(_set_comment(target, "table", table.comment, None))
        for col in table.columns:
            if col.comment is not None:
                changes.append(
                    _set_comment(_member(target, col.name), "column", col.comment, None)
                )
        return changes

    def _drop_table(self, table: Table) -> list[ChangeOp]:
        """DROP TABLE, preceded by drops of its foreign keys to other tables.

        Owned columns, indexes and other constraints go away with the table.
        """
        target = table.qualified_name
        changes = [
            _drop_constraint(target, fk)
            for fk in table.foreign_keys
            if fk.references != target
        ]
        changes.append(
            ChangeOp(
                ChangeKind.DROP_TABLE,
                target,
                {"table": table},
                is_destructive=True,
            )
        )
        return changes

    def _diff_table(self, desired: Table, current: Table) -> list[ChangeOp]:
        """Compare two versions of the same table and return changes."""
        changes: list[ChangeOp] = []
        target = desired.qualified_name

        changes.extend(self._diff_columns(desired, current))

        added, dropped = _match_members(desired.constraints, current.constraints)
        changes.extend(_add_constraint(target, c) for c in added)
        changes.extend(_drop_constraint(target, c) for c in dropped)

        added, dropped = _match_members(desired.indexes, current.indexes)
        changes.extend(_add_index(target, ix) for ix in added)
        changes.extend(
            ChangeOp(
                ChangeKind.DROP_INDEX, _member(target, ix.name), {"index": ix}
            )
            for ix in dropped
        )

        changes.extend(_diff_comment(target, "table", desired.comment, current.comment))
        return changes

    def _diff_columns(self, desired: Table, current: Table) -> list[ChangeOp]:
        """Compare columns between tables."""
        changes: list[ChangeOp] = []
        target = desired.qualified_name

        desired_cols = desired.column_names()
        current_cols = current.column_names()

        for col_name in desired_cols - current_cols:
            col = desired.get_column(col_name)
            changes.append(
                ChangeOp(
                    ChangeKind.ADD_COLUMN,
                    _member(target, col_name),
                    {"column": replace(col, comment=None)},
                )
            )
            if col.comment is not None:
                changes.append(
                    _set_comment(_member(target, col_name), "column", col.comment, None)
                )

        for col_name in current_cols - desired_cols:
            changes.append(
                ChangeOp(
                    ChangeKind.DROP_COLUMN,
                    _member(target, col_name),
                    {"column": current.get_column(col_name)},
                    is_destructive=True,
                )
            )

        for col_name in desired_cols & current_cols:
            changes.extend(
                self._diff_column(
                    _member(target, col_name),
                    desired.get_column(col_name),
                    current.get_column(col_name),
                )
            )

        return changes

    def _diff_column(
        self, target: QualifiedName, desired: Column, current: Column
    ) -> list[ChangeOp]:
        """Compare two columns; type, nullability and default are separate changes."""
        changes: list[ChangeOp] = []

        if desired.type != current.type:
            if not (desired.type.is_classified and current.type.is_classified):
                raise IncomparableTypes(target, desired.type, current.type)
            changes.append(
                ChangeOp(
                    ChangeKind.ALTER_COLUMN_TYPE,
                    target,
                    {
                        "column": desired.name,
                        "from_type": current.type,
                        "to_type": desired.type,
                    },
                )
            )

        if desired.nullable != current.nullable:
            changes.append(
                ChangeOp(
                    ChangeKind.ALTER_COLUMN_NULLABILITY,
                    target,
                    {
                        "column": desired.name,
                        "from_nullable": current.nullable,
                        "to_nullable": desired.nullable,
                    },
                )
            )

        if desired.default != current.default:
            changes.append(
                ChangeOp(
                    ChangeKind.ALTER_COLUMN_DEFAULT,
                    target,
                    {
                        "column": desired.name,
                        "from_default": current.default,
                        "to_default": desired.default,
                    },
                )
            )

        changes.extend(_diff_comment(target, "column", desired.comment, current.comment))
        return changes


def _match_members(
    desired: Iterable[_Member], current: Iterable[_Member]
) -> tuple[list[_Member], list[_Member]]:
    """Pair constraints or indexes structurally and return (added, dropped).

    Same name and same content is unchanged. Different names with identical
    content are also unchanged; renames are never emitted. Same name with
    different content is a drop plus an add. A current name that a desired
    member claims is never paired by content with another desired member.
    """
    desired = sorted(desired, key=lambda m: m.name)
    current_by_name = {m.name: m for m in current}
    claimed = {m.name for m in desired if m.name in current_by_name}
    unmatched_desired: list[_Member] = []
    matched_current: set[str] = set()

    for member in desired:
        existing = current_by_name.get(member.name)
        if existing is not None and existing.signature == member.signature:
            matched_current.add(existing.name)
        else:
            unmatched_desired.append(member)

    by_signature: dict[tuple, list[_Member]] = defaultdict(list)
    for name in sorted(current_by_name):
        if name not in matched_current and name not in claimed:
            by_signature[current_by_name[name].signature].append(current_by_name[name])

    added: list[_Member] = []
    for member in unmatched_desired:
        pool = by_signature.get(member.signature)
        if pool:
            matched_current.add(pool.pop(0).name)
        else:
            added.append(member)

    dropped = [
        current_by_name[name]
        for name in sorted(current_by_name)
        if name not in matched_current
    ]
    return added, dropped


def _member(table: QualifiedName, name: str) -> QualifiedName:
    return QualifiedName(table.schema, table.table, name)


def _add_constraint(table: QualifiedName, constraint: Constraint) -> ChangeOp:
    return ChangeOp(
        ChangeKind.ADD_CONSTRAINT,
        _member(table, constraint.name),
        {"constraint": constraint},
    )


def _drop_constraint(table: QualifiedName, constraint: Constraint) -> ChangeOp:
    return ChangeOp(
        ChangeKind.DROP_CONSTRAINT,
        _member(table, constraint.name),
        {"constraint": constraint},
    )


def _add_index(table: QualifiedName, index: Index) -> ChangeOp:
    return ChangeOp(ChangeKind.ADD_INDEX, _member(table, index.name), {"index": index})


def _set_comment(
    owner: QualifiedName, owner_kind: str, text: str, previous: Optional[str]
) -> ChangeOp:
    return ChangeOp(
        ChangeKind.SET_COMMENT,
        owner,
        {"owner_kind": owner_kind, "text": text, "previous": previous},
    )


def _diff_comment(
    owner: QualifiedName,
    owner_kind: str,
    desired: Optional[str],
    current: Optional[str],
) -> list[ChangeOp]:
    """Compare comments; ``None`` (no comment) and ``""`` are different."""
    if desired == current:
        return []
    if desired is None:
        return [
            ChangeOp(
                ChangeKind.CLEAR_COMMENT,
                owner,
                {"owner_kind": owner_kind, "previous": current},
            )
        ]
    return [_set_comment(owner, owner_kind, desired, current)]

