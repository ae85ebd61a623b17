"""Load schema definitions from YAML files."""

from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import yaml

from pgstruct.exceptions import SchemaLoadError
from pgstruct.schema.datatypes import parse_type
from pgstruct.schema.models import (
    Column,
    Constraint,
    ConstraintKind,
    ExclusionElement,
    Index,
    Schema,
    SchemaModel,
    Table,
)
from pgstruct.types import QualifiedName

VALID_SCHEMA_FIELDS = {"schema", "name", "comment", "tables"}

VALID_TABLE_FIELDS = {
    "table",
    "schema",
    "columns",
    "constraints",
    "indexes",
    "comment",
}

VALID_COLUMN_FIELDS = {
    "name",
    "type",
    "nullable",
    "default",
    "comment",
    "primary_key",
    "unique",
    "check",
    "references",
}

VALID_CONSTRAINT_FIELDS = {
    "name",
    "kind",
    "columns",
    "expression",
    "references",
    "referenced_columns",
    "on_delete",
    "on_update",
    "using",
    "elements",
    "deferrable",
    "initially_deferred",
}

VALID_INDEX_FIELDS = {"name", "columns", "expression", "method", "unique", "where"}

SERIAL_TYPES = {
    "smallserial": "smallint",
    "serial": "integer",
    "bigserial": "bigint",
}


def load_schema_model(path: Path) -> SchemaModel:
    """Load a schema snapshot from a YAML file or a directory of YAML files.

    Raises:
        SchemaLoadError: If the files cannot be read or contain unknown fields.
        MalformedModel: If the definitions violate a model invariant.
    """
    if path.is_file():
        return _load_single_file(path)
    elif path.is_dir():
        return _load_directory(path)
    else:
        raise SchemaLoadError(f"Schema path does not exist: {path}")


def _load_directory(directory: Path) -> SchemaModel:
    """Load a snapshot from a directory with one schema document per file."""
    schemas: dict[str, Schema] = {}
    for yaml_file in sorted(directory.glob("*.yaml")):
        data = _read_yaml(yaml_file)
        for schema in _parse_documents(data):
            if schema.name in schemas:
                raise SchemaLoadError(
                    f"Duplicate schema name '{schema.name}' found in directory"
                )
            schemas[schema.name] = schema
    return SchemaModel(schemas=tuple(schemas.values()))


def _load_single_file(file_path: Path) -> SchemaModel:
    """Load a snapshot from a single YAML file."""
    data = _read_yaml(file_path)
    schemas = _parse_documents(data)
    names = [s.name for s in schemas]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise SchemaLoadError(f"Duplicate schema name '{duplicates[0]}' in file")
    return SchemaModel(schemas=tuple(schemas))


def _read_yaml(file_path: Path) -> dict:
    try:
        with open(file_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise SchemaLoadError(f"Invalid YAML in {file_path}: {e}") from e
    if data is None:
        raise SchemaLoadError(f"Empty YAML file: {file_path}")
    if not isinstance(data, dict):
        raise SchemaLoadError(f"Expected a mapping at the top of {file_path}")
    return data


def _parse_documents(data: dict) -> list[Schema]:
    if "schemas" in data:
        extra = set(data) - {"schemas"}
        if extra:
            raise SchemaLoadError(
                f"Unknown top-level field(s): {', '.join(sorted(extra))}"
            )
        return [parse_schema_dict(s) for s in data.get("schemas") or []]
    return [parse_schema_dict(data)]


def parse_schema_dict(data: dict) -> Schema:
    """Parse a schema document: a name, an optional comment, and its tables."""
    _check_fields(data, VALID_SCHEMA_FIELDS, "schema definition")
    name = data.get("name") or data.get("schema")
    if not name:
        raise SchemaLoadError("Schema definition missing 'name' field")

    tables = []
    for table_data in data.get("tables") or []:
        table_data = dict(table_data)
        table_data.setdefault("schema", name)
        tables.append(parse_table_dict(table_data))

    return Schema(name=name, tables=tuple(tables), comment=data.get("comment"))


def parse_table_dict(data: dict) -> Table:
    """Parse a table definition from a dictionary."""
    _check_fields(data, VALID_TABLE_FIELDS, "table definition")

    name = data.get("table")
    if not name:
        raise SchemaLoadError("Table definition missing 'table' field")
    schema = data.get("schema") or "public"

    columns: list[Column] = []
    constraints: list[Constraint] = []
    for position, col_data in enumerate(data.get("columns") or [], start=1):
        column, implied = _parse_column_with_shorthands(schema, name, col_data)
        columns.append(replace(column, ordinal=column.ordinal or position))
        constraints.extend(implied)

    for cc_data in data.get("constraints") or []:
        constraints.append(parse_constraint_dict(cc_data, default_schema=schema))

    # PostgreSQL marks primary key and NOT NULL constraint columns as not null.
    required = {
        col
        for c in constraints
        if c.kind in (ConstraintKind.PRIMARY_KEY, ConstraintKind.NOT_NULL)
        for col in c.columns
    }
    columns = [
        replace(c, nullable=False) if c.name in required else c for c in columns
    ]

    indexes = [parse_index_dict(ix) for ix in data.get("indexes") or []]

    return Table(
        schema=schema,
        name=name,
        columns=tuple(columns),
        constraints=tuple(constraints),
        indexes=tuple(indexes),
        comment=data.get("comment"),
    )


def parse_column_dict(data: dict) -> Column:
    """Parse a column definition, without constraint shorthands."""
    _check_fields(data, VALID_COLUMN_FIELDS, "column definition")

    name = data.get("name")
    if not name:
        raise SchemaLoadError("Column definition missing 'name' field")

    col_type = data.get("type")
    if not col_type:
        raise SchemaLoadError(f"Column '{name}' missing 'type' field")

    try:
        descriptor = parse_type(str(col_type))
    except ValueError as e:
        raise SchemaLoadError(f"Column '{name}' has invalid type: {e}") from e

    return Column(
        name=name,
        type=descriptor,
        nullable=data.get("nullable", True),
        default=_optional_str(data.get("default")),
        comment=data.get("comment"),
    )


def _parse_column_with_shorthands(
    schema: str, table: str, data: dict
) -> tuple[Column, list[Constraint]]:
    """Parse a column and the table constraints implied by its shorthands.

    Serial pseudo-types become the integer type plus the sequence default the
    server reports once the table exists. Constraint names follow
    PostgreSQL's default naming so they match what introspection returns.
    """
    column = parse_column_dict(data)
    implied: list[Constraint] = []

    base = SERIAL_TYPES.get(column.type.name)
    if base is not None:
        sequence = f"{table}_{column.name}_seq"
        if schema != "public":
            sequence = f"{schema}.{sequence}"
        column = replace(
            column,
            type=parse_type(base),
            nullable=False,
            default=f"nextval('{sequence}'::regclass)",
        )

    if data.get("primary_key"):
        implied.append(
            Constraint(
                name=f"{table}_pkey",
                kind=ConstraintKind.PRIMARY_KEY,
                columns=(column.name,),
            )
        )
    if data.get("unique"):
        implied.append(
            Constraint(
                name=f"{table}_{column.name}_key",
                kind=ConstraintKind.UNIQUE,
                columns=(column.name,),
            )
        )
    if data.get("check"):
        implied.append(
            Constraint(
                name=f"{table}_{column.name}_check",
                kind=ConstraintKind.CHECK,
                columns=(column.name,),
                expression=str(data["check"]),
            )
        )
    if ref := data.get("references"):
        if isinstance(ref, str):
            ref = {"table": ref}
        target = QualifiedName.parse(ref.get("table", ""), default_schema=schema)
        implied.append(
            Constraint(
                name=f"{table}_{column.name}_fkey",
                kind=ConstraintKind.FOREIGN_KEY,
                columns=(column.name,),
                references=target,
                referenced_columns=(ref.get("column", "id"),),
                on_delete=ref.get("on_delete"),
                on_update=ref.get("on_update"),
            )
        )
    return column, implied


def parse_constraint_dict(data: dict, default_schema: str = "public") -> Constraint:
    """Parse a table constraint from a dictionary."""
    _check_fields(data, VALID_CONSTRAINT_FIELDS, "constraint definition")

    name = data.get("name")
    if not name:
        raise SchemaLoadError("Constraint definition missing 'name' field")

    try:
        kind = ConstraintKind(data.get("kind"))
    except ValueError as e:
        raise SchemaLoadError(
            f"Constraint '{name}' has invalid kind: {data.get('kind')!r}"
        ) from e

    references: Optional[QualifiedName] = None
    if data.get("references"):
        references = QualifiedName.parse(
            str(data["references"]), default_schema=default_schema
        )

    elements = []
    for element in data.get("elements") or []:
        if isinstance(element, dict):
            elements.append(ExclusionElement(element["column"], element["operator"]))
        else:
            elements.append(ExclusionElement(*element))

    try:
        return Constraint(
            name=name,
            kind=kind,
            columns=tuple(data.get("columns") or ()),
            expression=_optional_str(data.get("expression")),
            references=references,
            referenced_columns=tuple(data.get("referenced_columns") or ()),
            on_delete=data.get("on_delete"),
            on_update=data.get("on_update"),
            using=data.get("using"),
            elements=tuple(elements),
            deferrable=bool(data.get("deferrable", False)),
            initially_deferred=bool(data.get("initially_deferred", False)),
        )
    except ValueError as e:
        raise SchemaLoadError(f"Constraint '{name}' is invalid: {e}") from e


def parse_index_dict(data: dict) -> Index:
    """Parse an index definition from a dictionary."""
    _check_fields(data, VALID_INDEX_FIELDS, "index definition")

    name = data.get("name")
    if not name:
        raise SchemaLoadError("Index definition missing 'name' field")

    return Index(
        name=name,
        columns=tuple(data.get("columns") or ()),
        expression=_optional_str(data.get("expression")),
        method=data.get("method", "btree"),
        unique=bool(data.get("unique", False)),
        where=_optional_str(data.get("where")),
    )


def _check_fields(data: Any, valid: set[str], what: str) -> None:
    if not isinstance(data, dict):
        raise SchemaLoadError(f"Expected a mapping for {what}, got {type(data).__name__}")
    unknown_fields = set(data.keys()) - valid
    if unknown_fields:
        raise SchemaLoadError(
            f"Unknown field(s) in {what}: {', '.join(sorted(unknown_fields))}"
        )


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)
