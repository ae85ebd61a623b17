"""Export schema models to plain data and YAML files.

The dictionaries produced here use the loader's format, so
``parse_table_dict(table_to_dict(t)) == t`` for any table.
"""

from pathlib import Path
from typing import Any

import yaml

from pgstruct.schema.models import (
    Column,
    Constraint,
    ConstraintKind,
    Index,
    ReferentialAction,
    Schema,
    SchemaModel,
    Table,
)


def table_to_dict(table: Table) -> dict[str, Any]:
    """Convert a Table model to a dictionary suitable for YAML export."""
    data: dict[str, Any] = {"table": table.name, "schema": table.schema}

    if table.comment is not None:
        data["comment"] = table.comment

    data["columns"] = [column_to_dict(col) for col in table.columns]

    if table.constraints:
        data["constraints"] = [constraint_to_dict(c) for c in table.constraints]

    if table.indexes:
        data["indexes"] = [index_to_dict(ix) for ix in table.indexes]

    return data


def column_to_dict(col: Column) -> dict[str, Any]:
    """Convert a Column model to a dictionary."""
    data: dict[str, Any] = {"name": col.name, "type": col.type.render()}

    if not col.nullable:
        data["nullable"] = False

    if col.default is not None:
        data["default"] = col.default

    if col.comment is not None:
        data["comment"] = col.comment

    return data


def constraint_to_dict(constraint: Constraint) -> dict[str, Any]:
    """Convert a Constraint model to a dictionary."""
    data: dict[str, Any] = {
        "name": constraint.name,
        "kind": constraint.kind.value,
    }

    if constraint.kind is ConstraintKind.EXCLUSION:
        data["using"] = constraint.using or "gist"
        data["elements"] = [
            {"column": e.column, "operator": e.operator} for e in constraint.elements
        ]
    elif constraint.columns:
        data["columns"] = list(constraint.columns)

    if constraint.expression is not None:
        data["expression"] = constraint.expression

    if constraint.is_foreign_key and constraint.references is not None:
        data["references"] = str(constraint.references)
        data["referenced_columns"] = list(constraint.referenced_columns)
        if constraint.on_delete is not ReferentialAction.NO_ACTION:
            data["on_delete"] = constraint.on_delete.value
        if constraint.on_update is not ReferentialAction.NO_ACTION:
            data["on_update"] = constraint.on_update.value

    if constraint.deferrable:
        data["deferrable"] = True
    if constraint.initially_deferred:
        data["initially_deferred"] = True

    return data


def index_to_dict(index: Index) -> dict[str, Any]:
    """Convert an Index model to a dictionary."""
    data: dict[str, Any] = {"name": index.name}

    if index.method != "btree":
        data["method"] = index.method

    if index.expression is not None:
        data["expression"] = index.expression
    else:
        data["columns"] = list(index.columns)

    if index.unique:
        data["unique"] = True

    if index.where is not None:
        data["where"] = index.where

    return data


def schema_to_dict(schema: Schema) -> dict[str, Any]:
    data: dict[str, Any] = {"name": schema.name}
    if schema.comment is not None:
        data["comment"] = schema.comment
    tables = []
    for table in schema.tables:
        table_data = table_to_dict(table)
        del table_data["schema"]
        tables.append(table_data)
    data["tables"] = tables
    return data


def export_model_yaml(model: SchemaModel) -> str:
    """Export a whole snapshot to a single YAML document."""
    data = {"schemas": [schema_to_dict(s) for s in model.schemas]}
    return yaml.dump(
        data, default_flow_style=False, sort_keys=False, allow_unicode=True
    )


def export_model_to_directory(model: SchemaModel, output_dir: Path) -> list[Path]:
    """Export each schema of a snapshot to its own YAML file.

    Returns list of created file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    created_files = []

    for schema in model.schemas:
        file_path = output_dir / f"{schema.name}.yaml"
        yaml_content = yaml.dump(
            schema_to_dict(schema),
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
        file_path.write_text(yaml_content)
        created_files.append(file_path)

    return created_files
