"""Schema model, loading, introspection and diffing modules."""

from pgstruct.schema.datatypes import TypeCategory, TypeDescriptor, parse_type
from pgstruct.schema.diff import ChangeOp, SchemaDiffer
from pgstruct.schema.models import (
    Column,
    Constraint,
    ConstraintKind,
    ExclusionElement,
    Index,
    ReferentialAction,
    Schema,
    SchemaModel,
    Table,
)

__all__ = [
    "ChangeOp",
    "Column",
    "Constraint",
    "ConstraintKind",
    "ExclusionElement",
    "Index",
    "ReferentialAction",
    "Schema",
    "SchemaDiffer",
    "SchemaModel",
    "Table",
    "TypeCategory",
    "TypeDescriptor",
    "parse_type",
]
