"""Schema introspection from the PostgreSQL system catalogs."""

import logging
import re
from collections import defaultdict
from typing import Any, Optional, Protocol, Sequence

from pgstruct.exceptions import IntrospectionError
from pgstruct.schema.datatypes import parse_type
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
from pgstruct.types import QualifiedName

logger = logging.getLogger(__name__)


class SQLClient(Protocol):
    """Protocol for SQL client used by introspector."""

    def fetchall(self, sql: str, params: Optional[dict] = None) -> list: ...


_SYSTEM_SCHEMA_FILTER = (
    "n.nspname NOT IN ('pg_catalog', 'information_schema', 'pg_toast') "
    "AND n.nspname NOT LIKE 'pg\\_temp\\_%' AND n.nspname NOT LIKE 'pg\\_toast\\_temp\\_%'"
)

_SCHEMAS_SQL = """
    SELECT n.nspname AS schema_name,
           obj_description(n.oid, 'pg_namespace') AS comment
    FROM pg_namespace n
    WHERE {schema_filter}
    ORDER BY n.nspname
"""

_TABLES_SQL = """
    SELECT n.nspname AS schema_name,
           c.relname AS table_name,
           obj_description(c.oid, 'pg_class') AS comment
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('r', 'p')
      AND NOT c.relispartition
      AND {schema_filter}
    ORDER BY n.nspname, c.relname
"""

_COLUMNS_SQL = """
    SELECT n.nspname AS schema_name,
           c.relname AS table_name,
           a.attname AS column_name,
           a.attnum AS ordinal,
           format_type(a.atttypid, a.atttypmod) AS data_type,
           a.attnotnull AS not_null,
           pg_get_expr(d.adbin, d.adrelid) AS column_default,
           col_description(c.oid, a.attnum) AS comment
    FROM pg_attribute a
    JOIN pg_class c ON c.oid = a.attrelid
    JOIN pg_namespace n ON n.oid = c.relnamespace
    LEFT JOIN pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum
    WHERE a.attnum > 0
      AND NOT a.attisdropped
      AND c.relkind IN ('r', 'p')
      AND NOT c.relispartition
      AND {schema_filter}
    ORDER BY n.nspname, c.relname, a.attnum
"""

_CONSTRAINTS_SQL = """
    SELECT n.nspname AS schema_name,
           c.relname AS table_name,
           con.conname AS constraint_name,
           con.contype AS constraint_type,
           ARRAY(
               SELECT a.attname
               FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
               JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
               ORDER BY k.ord
           ) AS columns,
           rn.nspname AS ref_schema,
           rc.relname AS ref_table,
           ARRAY(
               SELECT a.attname
               FROM unnest(con.confkey) WITH ORDINALITY AS k(attnum, ord)
               JOIN pg_attribute a ON a.attrelid = con.confrelid AND a.attnum = k.attnum
               ORDER BY k.ord
           ) AS ref_columns,
           con.confdeltype AS on_delete,
           con.confupdtype AS on_update,
           con.condeferrable AS deferrable,
           con.condeferred AS initially_deferred,
           pg_get_expr(con.conbin, con.conrelid) AS check_expression,
           pg_get_constraintdef(con.oid) AS definition,
           am.amname AS index_method
    FROM pg_constraint con
    JOIN pg_class c ON c.oid = con.conrelid
    JOIN pg_namespace n ON n.oid = c.relnamespace
    LEFT JOIN pg_class rc ON rc.oid = con.confrelid
    LEFT JOIN pg_namespace rn ON rn.oid = rc.relnamespace
    LEFT JOIN pg_class ic ON ic.oid = con.conindid AND con.contype = 'x'
    LEFT JOIN pg_am am ON am.oid = ic.relam
    WHERE con.contype IN ('p', 'u', 'c', 'f', 'x', 'n')
      AND c.relkind IN ('r', 'p')
      AND NOT c.relispartition
      AND {schema_filter}
    ORDER BY n.nspname, c.relname, con.conname
"""

# Indexes that back a primary key, unique or exclusion constraint are part of
# that constraint and are not reported separately.
_INDEXES_SQL = """
    SELECT n.nspname AS schema_name,
           c.relname AS table_name,
           ic.relname AS index_name,
           am.amname AS method,
           i.indisunique AS is_unique,
           i.indexprs IS NOT NULL AS has_expression,
           ARRAY(
               SELECT pg_get_indexdef(i.indexrelid, k, true)
               FROM generate_series(1, i.indnkeyatts) AS k
               ORDER BY k
           ) AS keys,
           pg_get_expr(i.indpred, i.indrelid) AS predicate
    FROM pg_index i
    JOIN pg_class ic ON ic.oid = i.indexrelid
    JOIN pg_class c ON c.oid = i.indrelid
    JOIN pg_namespace n ON n.oid = c.relnamespace
    JOIN pg_am am ON am.oid = ic.relam
    WHERE c.relkind IN ('r', 'p')
      AND NOT c.relispartition
      AND NOT EXISTS (
          SELECT 1 FROM pg_constraint con
          WHERE con.conindid = i.indexrelid
            AND con.conrelid = i.indrelid
            AND con.contype IN ('p', 'u', 'x')
      )
      AND {schema_filter}
    ORDER BY n.nspname, c.relname, ic.relname
"""

_CONSTRAINT_KINDS = {
    "p": ConstraintKind.PRIMARY_KEY,
    "u": ConstraintKind.UNIQUE,
    "c": ConstraintKind.CHECK,
    "f": ConstraintKind.FOREIGN_KEY,
    "x": ConstraintKind.EXCLUSION,
    "n": ConstraintKind.NOT_NULL,
}

_FK_ACTIONS = {
    "a": ReferentialAction.NO_ACTION,
    "r": ReferentialAction.RESTRICT,
    "c": ReferentialAction.CASCADE,
    "n": ReferentialAction.SET_NULL,
    "d": ReferentialAction.SET_DEFAULT,
}

_EXCLUDE_RE = re.compile(r"^EXCLUDE\s+USING\s+(\w+)\s*\(", re.IGNORECASE)


def _split_top_level(text: str) -> list[str]:
    """Split on commas that are not nested in parentheses or quotes."""
    parts, depth, quoted, current = [], 0, False, []
    for char in text:
        if char == "'":
            quoted = not quoted
        elif not quoted and char == "(":
            depth += 1
        elif not quoted and char == ")":
            depth -= 1
        elif not quoted and char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if "".join(current).strip():
        parts.append("".join(current).strip())
    return parts


def parse_exclusion_definition(definition: str) -> tuple[str, list[ExclusionElement]]:
    """Parse ``pg_get_constraintdef`` output of an exclusion constraint.

    ``EXCLUDE USING gist (room WITH =, during WITH &&)`` gives
    ``("gist", [ExclusionElement("room", "="), ExclusionElement("during", "&&")])``.
    """
    match = _EXCLUDE_RE.match(definition.strip())
    if not match:
        raise IntrospectionError(f"Cannot parse exclusion constraint: {definition}")

    body_start = match.end()
    depth, end = 1, body_start
    while end < len(definition) and depth:
        if definition[end] == "(":
            depth += 1
        elif definition[end] == ")":
            depth -= 1
        end += 1
    body = definition[body_start : end - 1]

    elements = []
    for part in _split_top_level(body):
        column, sep, operator = part.rpartition(" WITH ")
        if not sep:
            raise IntrospectionError(f"Cannot parse exclusion element: {part}")
        elements.append(ExclusionElement(_unquote(column.strip()), operator.strip()))
    return match.group(1).lower(), elements


def _unquote(name: str) -> str:
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return name[1:-1].replace('""', '"')
    return name


class SchemaIntrospector:
    """Build a schema snapshot from a live PostgreSQL database.

    Reads ``pg_catalog`` only; the result is a plain immutable snapshot with
    no handle back to the connection.
    """

    def __init__(self, client: SQLClient, schemas: Sequence[str] = ()) -> None:
        self._client = client
        self._schemas = list(schemas)

    def introspect(self) -> SchemaModel:
        """Introspect every requested schema (all user schemas if none given)."""
        schema_rows = self._fetch(_SCHEMAS_SQL)
        table_rows = self._fetch(_TABLES_SQL)

        columns: dict[tuple, list[Column]] = defaultdict(list)
        for row in self._fetch(_COLUMNS_SQL):
            columns[_table_key(row)].append(self._column_from_row(row))

        constraints: dict[tuple, list[Constraint]] = defaultdict(list)
        for row in self._fetch(_CONSTRAINTS_SQL):
            constraint = self._constraint_from_row(row)
            if constraint is not None:
                constraints[_table_key(row)].append(constraint)

        indexes: dict[tuple, list[Index]] = defaultdict(list)
        for row in self._fetch(_INDEXES_SQL):
            indexes[_table_key(row)].append(self._index_from_row(row))

        tables: dict[str, list[Table]] = defaultdict(list)
        for row in table_rows:
            key = _table_key(row)
            tables[row["schema_name"]].append(
                Table(
                    schema=row["schema_name"],
                    name=row["table_name"],
                    columns=tuple(columns.get(key, ())),
                    constraints=tuple(constraints.get(key, ())),
                    indexes=tuple(indexes.get(key, ())),
                    comment=row.get("comment"),
                )
            )

        schemas = [
            Schema(
                name=row["schema_name"],
                tables=tuple(tables.get(row["schema_name"], ())),
                comment=row.get("comment"),
            )
            for row in schema_rows
        ]
        logger.debug(
            f"Introspected {len(schemas)} schema(s), {len(table_rows)} table(s)"
        )
        return SchemaModel(schemas=tuple(schemas))

    def _fetch(self, template: str) -> list:
        if self._schemas:
            sql = template.format(schema_filter="n.nspname = ANY(%(schemas)s)")
            params: Optional[dict] = {"schemas": self._schemas}
        else:
            sql = template.format(schema_filter=_SYSTEM_SCHEMA_FILTER)
            params = None
        try:
            return self._client.fetchall(sql, params)
        except Exception as e:
            raise IntrospectionError(f"Catalog query failed: {e}") from e

    def _column_from_row(self, row: Any) -> Column:
        return Column(
            name=row["column_name"],
            type=parse_type(row["data_type"]),
            nullable=not row["not_null"],
            default=row.get("column_default"),
            ordinal=row["ordinal"],
            comment=row.get("comment"),
        )

    def _constraint_from_row(self, row: Any) -> Optional[Constraint]:
        kind = _CONSTRAINT_KINDS[row["constraint_type"]]
        name = row["constraint_name"]
        columns = tuple(row.get("columns") or ())

        if kind is ConstraintKind.NOT_NULL:
            # Column nullability already covers the constraints PostgreSQL
            # creates implicitly; only explicitly named ones are reported.
            if len(columns) == 1 and name == f"{row['table_name']}_{columns[0]}_not_null":
                return None
            return Constraint(name=name, kind=kind, columns=columns)

        if kind is ConstraintKind.CHECK:
            return Constraint(
                name=name,
                kind=kind,
                columns=columns,
                expression=row.get("check_expression"),
            )

        if kind is ConstraintKind.FOREIGN_KEY:
            return Constraint(
                name=name,
                kind=kind,
                columns=columns,
                references=QualifiedName(row["ref_schema"], row["ref_table"]),
                referenced_columns=tuple(row.get("ref_columns") or ()),
                on_delete=_FK_ACTIONS.get(row.get("on_delete"), ReferentialAction.NO_ACTION),
                on_update=_FK_ACTIONS.get(row.get("on_update"), ReferentialAction.NO_ACTION),
                deferrable=bool(row.get("deferrable")),
                initially_deferred=bool(row.get("initially_deferred")),
            )

        if kind is ConstraintKind.EXCLUSION:
            using, elements = parse_exclusion_definition(row["definition"])
            return Constraint(
                name=name,
                kind=kind,
                using=row.get("index_method") or using,
                elements=tuple(elements),
                deferrable=bool(row.get("deferrable")),
                initially_deferred=bool(row.get("initially_deferred")),
            )

        return Constraint(
            name=name,
            kind=kind,
            columns=columns,
            deferrable=bool(row.get("deferrable")),
            initially_deferred=bool(row.get("initially_deferred")),
        )

    def _index_from_row(self, row: Any) -> Index:
        keys = list(row.get("keys") or ())
        if row.get("has_expression"):
            columns: tuple[str, ...] = ()
            expression: Optional[str] = ", ".join(keys)
        else:
            columns = tuple(_unquote(k) for k in keys)
            expression = None
        return Index(
            name=row["index_name"],
            columns=columns,
            expression=expression,
            method=row["method"],
            unique=bool(row["is_unique"]),
            where=row.get("predicate"),
        )


def _table_key(row: Any) -> tuple[str, str]:
    return (row["schema_name"], row["table_name"])
