"""Schema representation classes.

Every entity is an immutable snapshot. Lookups by name are built once at
construction time and structural invariants are checked there as well, so a
model that exists is a model the differ can trust.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Mapping, Optional, Union

from pgstruct.exceptions import MalformedModel
from pgstruct.schema.datatypes import TypeDescriptor, parse_type
from pgstruct.types import QualifiedName

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


class ConstraintKind(Enum):
    """Kinds of table constraints."""

    PRIMARY_KEY = "primary_key"
    UNIQUE = "unique"
    NOT_NULL = "not_null"
    CHECK = "check"
    FOREIGN_KEY = "foreign_key"
    EXCLUSION = "exclusion"

    @property
    def owns_index(self) -> bool:
        """True if PostgreSQL backs the constraint with an index of the same name."""
        return self in (
            ConstraintKind.PRIMARY_KEY,
            ConstraintKind.UNIQUE,
            ConstraintKind.EXCLUSION,
        )


class ReferentialAction(Enum):
    """ON DELETE / ON UPDATE actions of a foreign key."""

    NO_ACTION = "NO ACTION"
    RESTRICT = "RESTRICT"
    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"

    @classmethod
    def parse(cls, value: Union[str, "ReferentialAction", None]) -> "ReferentialAction":
        if value is None:
            return cls.NO_ACTION
        if isinstance(value, cls):
            return value
        normalized = " ".join(str(value).replace("_", " ").upper().split())
        return cls(normalized)


def _as_tuple(values: Optional[Iterable]) -> tuple:
    if values is None:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(values)


def references_identifier(text: Optional[str], identifier: str) -> bool:
    """Check whether an opaque SQL expression mentions an identifier."""
    if not text:
        return False
    pattern = rf'(?<![A-Za-z0-9_$])"?{re.escape(identifier)}"?(?![A-Za-z0-9_$])'
    return re.search(pattern, text) is not None


@dataclass(frozen=True)
class Column:
    """Column definition."""

    name: str
    type: TypeDescriptor
    nullable: bool = True
    default: Optional[str] = None
    ordinal: int = 0
    comment: Optional[str] = None

    def __post_init__(self) -> None:
        """Accept type text and normalize it to a descriptor."""
        if isinstance(self.type, str):
            object.__setattr__(self, "type", parse_type(self.type))

    @property
    def sort_key(self) -> str:
        return self.name

    def same_definition(self, other: "Column") -> bool:
        """Compare type, nullability and default, ignoring position and comment."""
        return (
            self.type == other.type
            and self.nullable == other.nullable
            and self.default == other.default
        )


@dataclass(frozen=True)
class ExclusionElement:
    """One ``column WITH operator`` element of an exclusion constraint."""

    column: str
    operator: str


@dataclass(frozen=True)
class Constraint:
    """Table constraint.

    Kind-specific payload: ``expression`` for check constraints;
    ``references``/``referenced_columns``/``on_delete``/``on_update`` for
    foreign keys; ``using``/``elements`` for exclusion constraints.
    """

    name: str
    kind: ConstraintKind
    columns: tuple[str, ...] = ()
    expression: Optional[str] = None
    references: Optional[QualifiedName] = None
    referenced_columns: tuple[str, ...] = ()
    on_delete: ReferentialAction = ReferentialAction.NO_ACTION
    on_update: ReferentialAction = ReferentialAction.NO_ACTION
    using: Optional[str] = None
    elements: tuple[ExclusionElement, ...] = ()
    deferrable: bool = False
    initially_deferred: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.kind, str):
            object.__setattr__(self, "kind", ConstraintKind(self.kind))
        if isinstance(self.references, str):
            object.__setattr__(self, "references", QualifiedName.parse(self.references))
        object.__setattr__(self, "columns", _as_tuple(self.columns))
        object.__setattr__(
            self, "referenced_columns", _as_tuple(self.referenced_columns)
        )
        object.__setattr__(self, "on_delete", ReferentialAction.parse(self.on_delete))
        object.__setattr__(self, "on_update", ReferentialAction.parse(self.on_update))
        elements = tuple(
            e if isinstance(e, ExclusionElement) else ExclusionElement(*e)
            for e in _as_tuple(self.elements)
        )
        object.__setattr__(self, "elements", elements)
        if self.kind is ConstraintKind.EXCLUSION:
            if self.using:
                object.__setattr__(self, "using", self.using.lower())
            object.__setattr__(
                self,
                "columns",
                tuple(e.column for e in elements if _IDENTIFIER_RE.match(e.column)),
            )

    @property
    def is_foreign_key(self) -> bool:
        return self.kind is ConstraintKind.FOREIGN_KEY

    @property
    def sort_key(self) -> str:
        return self.name

    @property
    def signature(self) -> tuple:
        """Structural content of the constraint, without its name."""
        return (
            self.kind,
            self.columns,
            self.expression,
            self.references,
            self.referenced_columns,
            self.on_delete,
            self.on_update,
            self.using,
            self.elements,
            self.deferrable,
            self.initially_deferred,
        )

    def references_column(self, column: str) -> bool:
        """True if the constraint's own definition depends on ``column``."""
        if column in self.columns:
            return True
        if any(e.column == column for e in self.elements):
            return True
        return references_identifier(self.expression, column)


@dataclass(frozen=True)
class Index:
    """Index definition: an ordered column list or a single expression."""

    name: str
    columns: tuple[str, ...] = ()
    expression: Optional[str] = None
    method: str = "btree"
    unique: bool = False
    where: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", _as_tuple(self.columns))
        object.__setattr__(self, "method", (self.method or "btree").lower())

    @property
    def sort_key(self) -> str:
        return self.name

    @property
    def signature(self) -> tuple:
        """Structural content of the index, without its name."""
        return (self.method, self.columns, self.expression, self.unique, self.where)

    def references_column(self, column: str) -> bool:
        if column in self.columns:
            return True
        return references_identifier(self.expression, column) or (
            references_identifier(self.where, column)
        )


@dataclass(frozen=True)
class Table:
    """Table definition.

    Column order is kept for CREATE TABLE but is not significant for
    comparison.
    """

    schema: str
    name: str
    columns: tuple[Column, ...] = ()
    constraints: tuple[Constraint, ...] = ()
    indexes: tuple[Index, ...] = ()
    comment: Optional[str] = None
    _columns: dict[str, Column] = field(init=False, repr=False, compare=False)
    _constraints: dict[str, Constraint] = field(
        init=False, repr=False, compare=False
    )
    _indexes: dict[str, Index] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        columns = tuple(
            col if col.ordinal else replace(col, ordinal=position)
            for position, col in enumerate(_as_tuple(self.columns), start=1)
        )
        object.__setattr__(self, "columns", columns)
        object.__setattr__(self, "constraints", _as_tuple(self.constraints))
        object.__setattr__(self, "indexes", _as_tuple(self.indexes))

        problems: list[str] = []
        object.__setattr__(
            self, "_columns", self._index_by_name(columns, "column", problems)
        )
        object.__setattr__(
            self,
            "_constraints",
            self._index_by_name(self.constraints, "constraint", problems),
        )
        object.__setattr__(
            self, "_indexes", self._index_by_name(self.indexes, "index", problems)
        )
        problems.extend(self._check_members())
        if problems:
            raise MalformedModel(problems)

    def _index_by_name(self, items: tuple, kind: str, problems: list[str]) -> dict:
        by_name: dict = {}
        for item in items:
            if item.name in by_name:
                problems.append(
                    f"Duplicate {kind} name '{item.name}' in table {self.qualified_name}"
                )
            by_name[item.name] = item
        return by_name

    def _check_members(self) -> list[str]:
        problems = []
        for constraint in self.constraints:
            label = f"Constraint '{constraint.name}' on {self.qualified_name}"
            for col in constraint.columns:
                if col not in self._columns:
                    problems.append(f"{label} names missing column '{col}'")
            if constraint.kind is ConstraintKind.CHECK and not constraint.expression:
                problems.append(f"{label} has no check expression")
            if constraint.kind is ConstraintKind.EXCLUSION and not constraint.elements:
                problems.append(f"{label} has no exclusion elements")
            if constraint.kind in (
                ConstraintKind.PRIMARY_KEY,
                ConstraintKind.UNIQUE,
                ConstraintKind.NOT_NULL,
            ) and not constraint.columns:
                problems.append(f"{label} has no columns")
            if constraint.is_foreign_key:
                if constraint.references is None:
                    problems.append(f"{label} has no referenced table")
                elif len(constraint.columns) != len(constraint.referenced_columns):
                    problems.append(
                        f"{label} has {len(constraint.columns)} column(s) but "
                        f"references {len(constraint.referenced_columns)}"
                    )
        for index in self.indexes:
            label = f"Index '{index.name}' on {self.qualified_name}"
            if bool(index.columns) == bool(index.expression):
                problems.append(f"{label} must have either columns or an expression")
            for col in index.columns:
                if col not in self._columns:
                    problems.append(f"{label} names missing column '{col}'")
        return problems

    @property
    def qualified_name(self) -> QualifiedName:
        return QualifiedName(self.schema, self.name)

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.schema, self.name)

    def get_column(self, name: str) -> Optional[Column]:
        """Get a column by name."""
        return self._columns.get(name)

    def get_constraint(self, name: str) -> Optional[Constraint]:
        return self._constraints.get(name)

    def get_index(self, name: str) -> Optional[Index]:
        return self._indexes.get(name)

    def column_names(self) -> set[str]:
        return set(self._columns)

    @property
    def foreign_keys(self) -> tuple[Constraint, ...]:
        return tuple(c for c in self.constraints if c.is_foreign_key)

    @property
    def referenced_tables(self) -> set[QualifiedName]:
        """Tables this table points at through foreign keys."""
        return {c.references for c in self.foreign_keys if c.references is not None}


@dataclass(frozen=True)
class Schema:
    """A PostgreSQL schema (namespace) and its tables."""

    name: str
    tables: tuple[Table, ...] = ()
    comment: Optional[str] = None
    _tables: dict[str, Table] = field(init=False, repr=False, compare=False)
    _indexes: dict[str, tuple[Table, Index]] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        items = self.tables.values() if isinstance(self.tables, Mapping) else self.tables
        tables = tuple(sorted(_as_tuple(items), key=lambda t: t.name))
        object.__setattr__(self, "tables", tables)

        problems: list[str] = []
        by_name: dict[str, Table] = {}
        indexes: dict[str, tuple[Table, Index]] = {}
        for table in tables:
            if table.schema != self.name:
                problems.append(
                    f"Table {table.qualified_name} placed in schema '{self.name}'"
                )
            if table.name in by_name:
                problems.append(f"Duplicate table name '{table.name}' in schema '{self.name}'")
            by_name[table.name] = table
            for index in table.indexes:
                if index.name in indexes:
                    other = indexes[index.name][0]
                    problems.append(
                        f"Duplicate index name '{index.name}' in schema '{self.name}' "
                        f"(tables {other.name} and {table.name})"
                    )
                indexes[index.name] = (table, index)
        if problems:
            raise MalformedModel(problems)
        object.__setattr__(self, "_tables", by_name)
        object.__setattr__(self, "_indexes", indexes)

    @property
    def sort_key(self) -> str:
        return self.name

    def get_table(self, name: str) -> Optional[Table]:
        """Get a table by name."""
        return self._tables.get(name)

    def table_names(self) -> set[str]:
        """Get all table names."""
        return set(self._tables)

    def get_index(self, name: str) -> Optional[Index]:
        """Get an index by name; index names are unique within a schema."""
        entry = self._indexes.get(name)
        return entry[1] if entry else None


@dataclass(frozen=True)
class SchemaModel:
    """Point-in-time snapshot of the structure of one database."""

    schemas: tuple[Schema, ...] = ()
    _schemas: dict[str, Schema] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        items = (
            self.schemas.values() if isinstance(self.schemas, Mapping) else self.schemas
        )
        schemas = tuple(sorted(_as_tuple(items), key=lambda s: s.name))
        object.__setattr__(self, "schemas", schemas)

        problems: list[str] = []
        by_name: dict[str, Schema] = {}
        for schema in schemas:
            if schema.name in by_name:
                problems.append(f"Duplicate schema name '{schema.name}'")
            by_name[schema.name] = schema
        object.__setattr__(self, "_schemas", by_name)

        problems.extend(self._check_foreign_keys())
        if problems:
            raise MalformedModel(problems)

    def _check_foreign_keys(self) -> list[str]:
        problems = []
        for table in self.tables():
            for fk in table.foreign_keys:
                if fk.references is None:
                    continue
                label = f"Foreign key '{fk.name}' on {table.qualified_name}"
                referenced = self.get_table(fk.references)
                if referenced is None:
                    problems.append(f"{label} references missing table {fk.references}")
                    continue
                for col in fk.referenced_columns:
                    if referenced.get_column(col) is None:
                        problems.append(
                            f"{label} references missing column {fk.references}.{col}"
                        )
        return problems

    @classmethod
    def empty(cls) -> "SchemaModel":
        return cls(schemas=())

    def get_schema(self, name: str) -> Optional[Schema]:
        return self._schemas.get(name)

    def schema_names(self) -> set[str]:
        return set(self._schemas)

    def get_table(self, name: QualifiedName) -> Optional[Table]:
        """Get a table by qualified name."""
        schema = self._schemas.get(name.schema)
        if schema is None or name.table is None:
            return None
        return schema.get_table(name.table)

    def tables(self) -> list[Table]:
        """All tables of all schemas, ordered by qualified name."""
        return [table for schema in self.schemas for table in schema.tables]

    def referencing_foreign_keys(
        self, table: QualifiedName
    ) -> list[tuple[Table, Constraint]]:
        """Foreign keys anywhere in the snapshot that point at ``table``."""
        return [
            (owner, fk)
            for owner in self.tables()
            for fk in owner.foreign_keys
            if fk.references == table
        ]
