"""Core type definitions for pgstruct."""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional, TypeAlias

SchemaName: TypeAlias = str
TableName: TypeAlias = str
ColumnName: TypeAlias = str

__all__ = [
    "SchemaName",
    "TableName",
    "ColumnName",
    "QualifiedName",
    "ChangeKind",
    "Phase",
    "CHANGE_KIND_ORDER",
]


@dataclass(frozen=True)
class QualifiedName:
    """Schema-qualified identifier of a schema, table, or table member.

    ``member`` names a column, constraint, or index of ``table``.
    """

    schema: SchemaName
    table: Optional[TableName] = None
    member: Optional[str] = None

    @property
    def table_name(self) -> "QualifiedName":
        """The qualified name of the owning table (or schema)."""
        return QualifiedName(self.schema, self.table)

    @property
    def sort_key(self) -> tuple[str, str, str]:
        return (self.schema, self.table or "", self.member or "")

    @classmethod
    def parse(cls, text: str, default_schema: str = "public") -> "QualifiedName":
        """Parse ``table`` or ``schema.table`` into a table-level name."""
        parts = [p.strip().strip('"') for p in text.split(".")]
        if len(parts) == 1:
            return cls(default_schema, parts[0])
        if len(parts) == 2:
            return cls(parts[0], parts[1])
        return cls(parts[0], parts[1], parts[2])

    def __str__(self) -> str:
        return ".".join(p for p in (self.schema, self.table, self.member) if p)


class ChangeKind(Enum):
    """Types of structural changes the differ can produce."""

    CREATE_SCHEMA = "create_schema"
    DROP_SCHEMA = "drop_schema"
    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    ADD_COLUMN = "add_column"
    DROP_COLUMN = "drop_column"
    ALTER_COLUMN_TYPE = "alter_column_type"
    ALTER_COLUMN_NULLABILITY = "alter_column_nullability"
    ALTER_COLUMN_DEFAULT = "alter_column_default"
    ADD_CONSTRAINT = "add_constraint"
    DROP_CONSTRAINT = "drop_constraint"
    ADD_INDEX = "add_index"
    DROP_INDEX = "drop_index"
    SET_COMMENT = "set_comment"
    CLEAR_COMMENT = "clear_comment"

    @property
    def is_drop(self) -> bool:
        return self in _DROP_KINDS


_DROP_KINDS = frozenset(
    {
        ChangeKind.DROP_SCHEMA,
        ChangeKind.DROP_TABLE,
        ChangeKind.DROP_COLUMN,
        ChangeKind.DROP_CONSTRAINT,
        ChangeKind.DROP_INDEX,
    }
)

CHANGE_KIND_ORDER: dict[ChangeKind, int] = {
    kind: position for position, kind in enumerate(ChangeKind)
}


class Phase(IntEnum):
    """Execution phases of a plan, in run order."""

    DROPS = 0
    SCHEMAS = 1
    TABLES = 2
    COLUMNS = 3
    CONSTRAINTS = 4
    FOREIGN_KEYS = 5
