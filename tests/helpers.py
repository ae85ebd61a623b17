"""Shared test helpers for pgstruct tests."""

from typing import Optional
from unittest.mock import MagicMock

from pgstruct.config import Config
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

_CONTYPE = {
    ConstraintKind.PRIMARY_KEY: "p",
    ConstraintKind.UNIQUE: "u",
    ConstraintKind.CHECK: "c",
    ConstraintKind.FOREIGN_KEY: "f",
    ConstraintKind.EXCLUSION: "x",
    ConstraintKind.NOT_NULL: "n",
}

_ACTION_CODE = {
    ReferentialAction.NO_ACTION: "a",
    ReferentialAction.RESTRICT: "r",
    ReferentialAction.CASCADE: "c",
    ReferentialAction.SET_NULL: "n",
    ReferentialAction.SET_DEFAULT: "d",
}


def make_test_config(
    target_dsn: Optional[str] = "postgresql://localhost/test",
    schemas: Optional[list[str]] = None,
    **kwargs,
) -> Config:
    """Create a Config for tests with sensible defaults."""
    return Config(target_dsn=target_dsn, schemas=list(schemas or []), **kwargs)


def make_table(
    name: str,
    columns: Optional[list[Column]] = None,
    schema: str = "public",
    **kwargs,
) -> Table:
    """Helper to create a Table with a single ``id`` column by default."""
    if columns is None:
        columns = [Column(name="id", type="integer", nullable=False)]
    return Table(schema=schema, name=name, columns=tuple(columns), **kwargs)


def make_model(*tables: Table, comments: Optional[dict[str, str]] = None) -> SchemaModel:
    """Helper to create a SchemaModel, grouping tables by schema.

    ``comments`` maps schema names to schema comments; schemas named there
    exist even without tables.
    """
    comments = comments or {}
    names = sorted({t.schema for t in tables} | set(comments))
    return SchemaModel(
        schemas=tuple(
            Schema(
                name=name,
                tables=tuple(t for t in tables if t.schema == name),
                comment=comments.get(name),
            )
            for name in names
        )
    )


def build_catalog_rows_from_model(model: SchemaModel) -> dict[str, list[dict]]:
    """Build the catalog query results a database holding ``model`` returns.

    Returns a dict with ``schemas``, ``tables``, ``columns``, ``constraints``
    and ``indexes`` row lists. Non-null columns also get the default-named
    NOT NULL constraint rows that newer servers report.
    """
    rows: dict[str, list[dict]] = {
        "schemas": [],
        "tables": [],
        "columns": [],
        "constraints": [],
        "indexes": [],
    }

    for schema in model.schemas:
        rows["schemas"].append({"schema_name": schema.name, "comment": schema.comment})
        for table in schema.tables:
            key = {"schema_name": schema.name, "table_name": table.name}
            rows["tables"].append({**key, "comment": table.comment})

            for col in table.columns:
                rows["columns"].append(
                    {
                        **key,
                        "column_name": col.name,
                        "ordinal": col.ordinal,
                        "data_type": col.type.render(),
                        "not_null": not col.nullable,
                        "column_default": col.default,
                        "comment": col.comment,
                    }
                )

            explicit_not_null = {
                col
                for c in table.constraints
                if c.kind is ConstraintKind.NOT_NULL
                for col in c.columns
            }
            for col in table.columns:
                if not col.nullable and col.name not in explicit_not_null:
                    rows["constraints"].append(
                        _constraint_row(
                            key,
                            Constraint(
                                name=f"{table.name}_{col.name}_not_null",
                                kind=ConstraintKind.NOT_NULL,
                                columns=(col.name,),
                            ),
                        )
                    )
            for constraint in table.constraints:
                rows["constraints"].append(_constraint_row(key, constraint))

            for index in table.indexes:
                rows["indexes"].append(_index_row(key, index))

    return rows


def _constraint_row(key: dict, constraint: Constraint) -> dict:
    row = {
        **key,
        "constraint_name": constraint.name,
        "constraint_type": _CONTYPE[constraint.kind],
        "columns": list(constraint.columns),
        "ref_schema": None,
        "ref_table": None,
        "ref_columns": [],
        "on_delete": " ",
        "on_update": " ",
        "deferrable": constraint.deferrable,
        "initially_deferred": constraint.initially_deferred,
        "check_expression": None,
        "definition": None,
        "index_method": None,
    }
    if constraint.kind is ConstraintKind.CHECK:
        row["check_expression"] = constraint.expression
    elif constraint.is_foreign_key:
        row["ref_schema"] = constraint.references.schema
        row["ref_table"] = constraint.references.table
        row["ref_columns"] = list(constraint.referenced_columns)
        row["on_delete"] = _ACTION_CODE[constraint.on_delete]
        row["on_update"] = _ACTION_CODE[constraint.on_update]
    elif constraint.kind is ConstraintKind.EXCLUSION:
        elements = ", ".join(f"{e.column} WITH {e.operator}" for e in constraint.elements)
        using = constraint.using or "gist"
        row["definition"] = f"EXCLUDE USING {using} ({elements})"
        row["index_method"] = using
    return row


def _index_row(key: dict, index: Index) -> dict:
    return {
        **key,
        "index_name": index.name,
        "method": index.method,
        "is_unique": index.unique,
        "has_expression": index.expression is not None,
        "keys": [index.expression] if index.expression else list(index.columns),
        "predicate": index.where,
    }


def make_mock_client(rows: Optional[dict[str, list[dict]]] = None) -> MagicMock:
    """Create a mock SQL client answering the introspection queries.

    Args:
        rows: Catalog rows by query, as built by build_catalog_rows_from_model.
            Rows are filtered by the ``schemas`` query parameter when given.
    """
    client = MagicMock()
    rows = rows or {}

    def fetchall_side_effect(sql: str, params: Optional[dict] = None):
        if "FROM pg_index i" in sql:
            category = "indexes"
        elif "FROM pg_attribute a" in sql:
            category = "columns"
        elif "FROM pg_constraint con" in sql:
            category = "constraints"
        elif "FROM pg_class c" in sql:
            category = "tables"
        elif "FROM pg_namespace n" in sql:
            category = "schemas"
        else:
            return []

        result = rows.get(category, [])
        if params and params.get("schemas"):
            wanted = set(params["schemas"])
            result = [r for r in result if r["schema_name"] in wanted]
        return [dict(r) for r in result]

    client.fetchall.side_effect = fetchall_side_effect
    return client


def strip_timestamp_line(sql: str) -> list[str]:
    """Strip the '-- Generated:' timestamp line for comparison.

    Returns list of lines with trailing whitespace stripped.
    """
    return [
        line.rstrip()
        for line in sql.splitlines()
        if not line.startswith("-- Generated:")
    ]
