"""Render statement descriptors as PostgreSQL DDL."""

import re
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Sequence

from pgstruct.exceptions import RenderError
from pgstruct.types import ChangeKind, QualifiedName

if TYPE_CHECKING:
    from pgstruct.plan.emitter import Statement

_PLAIN_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_$]*$")

# Reserved keywords that cannot be used as bare column or table names.
_RESERVED = {
    "all", "analyse", "analyze", "and", "any", "array", "as", "asc",
    "asymmetric", "both", "case", "cast", "check", "collate", "column",
    "constraint", "create", "current_catalog", "current_date", "current_role",
    "current_time", "current_timestamp", "current_user", "default",
    "deferrable", "desc", "distinct", "do", "else", "end", "except", "false",
    "fetch", "for", "foreign", "from", "grant", "group", "having", "in",
    "initially", "intersect", "into", "lateral", "leading", "limit",
    "localtime", "localtimestamp", "not", "null", "offset", "on", "only", "or",
    "order", "placing", "primary", "references", "returning", "select",
    "session_user", "some", "symmetric", "system_user", "table", "then", "to",
    "trailing", "true", "union", "unique", "user", "using", "variadic", "when",
    "where", "window", "with",
}  # fmt: skip

_SERIAL_FOR = {"smallint": "smallserial", "integer": "serial", "bigint": "bigserial"}


def quote_ident(name: str) -> str:
    """Quote an identifier only when PostgreSQL requires it."""
    if _PLAIN_IDENTIFIER.match(name) and name not in _RESERVED:
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Render a string literal, escaping single quotes."""
    return "'" + value.replace("'", "''") + "'"


def _columns(names: Sequence[str]) -> str:
    return ", ".join(quote_ident(n) for n in names)


class DdlRenderer:
    """Render statement descriptors to PostgreSQL DDL text."""

    def render(self, statement: "Statement") -> str:
        """Render a single statement."""
        renderers = {
            ChangeKind.CREATE_SCHEMA: self._render_create_schema,
            ChangeKind.DROP_SCHEMA: self._render_drop_schema,
            ChangeKind.CREATE_TABLE: self._render_create_table,
            ChangeKind.DROP_TABLE: self._render_drop_table,
            ChangeKind.ADD_COLUMN: self._render_add_column,
            ChangeKind.DROP_COLUMN: self._render_drop_column,
            ChangeKind.ALTER_COLUMN_TYPE: self._render_alter_type,
            ChangeKind.ALTER_COLUMN_NULLABILITY: self._render_alter_nullability,
            ChangeKind.ALTER_COLUMN_DEFAULT: self._render_alter_default,
            ChangeKind.ADD_CONSTRAINT: self._render_add_constraint,
            ChangeKind.DROP_CONSTRAINT: self._render_drop_constraint,
            ChangeKind.ADD_INDEX: self._render_add_index,
            ChangeKind.DROP_INDEX: self._render_drop_index,
            ChangeKind.SET_COMMENT: self._render_comment,
            ChangeKind.CLEAR_COMMENT: self._render_comment,
        }
        renderer = renderers.get(statement.verb)
        if not renderer:
            raise RenderError(f"No renderer for {statement.verb}")
        try:
            return renderer(statement.target, statement.payload)
        except KeyError as e:
            raise RenderError(
                f"Statement {statement.describe()} is missing payload field {e}"
            ) from e

    def render_script(self, statements: Sequence["Statement"], description: str = "") -> str:
        """Render a whole plan as one SQL script with a header."""
        lines = [
            "-- Migration: Auto-generated",
            f"-- Description: {description}",
            f"-- Generated: {datetime.now().isoformat()}",
            "",
        ]

        destructive = [s for s in statements if s.destructive]
        if destructive:
            lines.append("-- WARNING: This migration contains destructive changes:")
            for s in destructive:
                lines.append(f"--   - {s.verb.value}: {s.target}")
            lines.append("")

        for statement in statements:
            lines.append(f"-- {statement.describe()}")
            lines.append(self.render(statement))
            lines.append("")

        return "\n".join(lines)

    def _table(self, target: QualifiedName) -> str:
        return f"{quote_ident(target.schema)}.{quote_ident(target.table)}"

    def _render_create_schema(self, target: QualifiedName, payload: dict) -> str:
        return f"CREATE SCHEMA {quote_ident(target.schema)};"

    def _render_drop_schema(self, target: QualifiedName, payload: dict) -> str:
        return f"DROP SCHEMA {quote_ident(target.schema)};"

    def _render_create_table(self, target: QualifiedName, payload: dict) -> str:
        table = payload["table"]
        definitions = [
            f"    {self._column_definition(target, col)}" for col in table["columns"]
        ]
        for constraint in table.get("constraints") or []:
            definitions.append(
                f"    CONSTRAINT {quote_ident(constraint['name'])} "
                f"{self._constraint_body(target, constraint)}"
            )
        body = ",\n".join(definitions)
        return f"CREATE TABLE {self._table(target)} (\n{body}\n);"

    def _render_drop_table(self, target: QualifiedName, payload: dict) -> str:
        return f"DROP TABLE {self._table(target)};"

    def _render_add_column(self, target: QualifiedName, payload: dict) -> str:
        col_def = self._column_definition(target, payload["column"])
        return f"ALTER TABLE {self._table(target)} ADD COLUMN {col_def};"

    def _render_drop_column(self, target: QualifiedName, payload: dict) -> str:
        column = quote_ident(payload["column"])
        return f"ALTER TABLE {self._table(target)} DROP COLUMN {column};"

    def _render_alter_type(self, target: QualifiedName, payload: dict) -> str:
        column = quote_ident(payload["column"])
        to_type = payload["to_type"]
        return (
            f"ALTER TABLE {self._table(target)} ALTER COLUMN {column} "
            f"TYPE {to_type} USING {column}::{to_type};"
        )

    def _render_alter_nullability(self, target: QualifiedName, payload: dict) -> str:
        column = quote_ident(payload["column"])
        action = "DROP NOT NULL" if payload["nullable"] else "SET NOT NULL"
        return f"ALTER TABLE {self._table(target)} ALTER COLUMN {column} {action};"

    def _render_alter_default(self, target: QualifiedName, payload: dict) -> str:
        column = quote_ident(payload["column"])
        default = payload["default"]
        if default is None:
            return f"ALTER TABLE {self._table(target)} ALTER COLUMN {column} DROP DEFAULT;"
        return (
            f"ALTER TABLE {self._table(target)} ALTER COLUMN {column} "
            f"SET DEFAULT {default};"
        )

    def _render_add_constraint(self, target: QualifiedName, payload: dict) -> str:
        constraint = payload["constraint"]
        return (
            f"ALTER TABLE {self._table(target)} ADD CONSTRAINT "
            f"{quote_ident(constraint['name'])} {self._constraint_body(target, constraint)};"
        )

    def _render_drop_constraint(self, target: QualifiedName, payload: dict) -> str:
        name = quote_ident(payload["name"])
        return f"ALTER TABLE {self._table(target)} DROP CONSTRAINT {name};"

    def _render_add_index(self, target: QualifiedName, payload: dict) -> str:
        index = payload["index"]
        unique = "UNIQUE " if index.get("unique") else ""
        if index.get("expression"):
            keys = f"({index['expression']})"
        else:
            keys = _columns(index["columns"])
        sql = (
            f"CREATE {unique}INDEX {quote_ident(index['name'])} ON {self._table(target)} "
            f"USING {index.get('method', 'btree')} ({keys})"
        )
        if index.get("where"):
            sql += f" WHERE {index['where']}"
        return sql + ";"

    def _render_drop_index(self, target: QualifiedName, payload: dict) -> str:
        return f"DROP INDEX {quote_ident(target.schema)}.{quote_ident(payload['name'])};"

    def _render_comment(self, target: QualifiedName, payload: dict) -> str:
        owner_kind = payload["owner_kind"]
        if owner_kind == "schema":
            owner = quote_ident(target.schema)
        elif owner_kind == "table":
            owner = self._table(target)
        elif owner_kind == "column":
            owner = f"{self._table(target)}.{quote_ident(target.member)}"
        else:
            raise RenderError(f"Cannot comment on {owner_kind} {target}")
        text = payload.get("text")
        value = "NULL" if text is None else quote_literal(text)
        return f"COMMENT ON {owner_kind.upper()} {owner} IS {value};"

    def _column_definition(self, target: QualifiedName, col: dict[str, Any]) -> str:
        """Column name, type, NOT NULL and DEFAULT.

        A sequence default matching PostgreSQL's serial naming is rendered as
        the serial pseudo-type, so the sequence is created with the column.
        """
        col_type = col["type"]
        default: Optional[str] = col.get("default")
        serial = _SERIAL_FOR.get(col_type)
        if serial and default == _serial_default(target, col["name"]):
            col_type, default = serial, None

        col_def = f"{quote_ident(col['name'])} {col_type}"
        if col.get("nullable", True) is False:
            col_def += " NOT NULL"
        if default is not None:
            col_def += f" DEFAULT {default}"
        return col_def

    def _constraint_body(self, target: QualifiedName, constraint: dict[str, Any]) -> str:
        kind = constraint["kind"]
        columns = constraint.get("columns") or []

        if kind == "primary_key":
            body = f"PRIMARY KEY ({_columns(columns)})"
        elif kind == "unique":
            body = f"UNIQUE ({_columns(columns)})"
        elif kind == "not_null":
            body = f"NOT NULL {_columns(columns)}"
        elif kind == "check":
            body = f"CHECK ({constraint['expression']})"
        elif kind == "foreign_key":
            referenced = QualifiedName.parse(
                constraint["references"], default_schema=target.schema
            )
            body = (
                f"FOREIGN KEY ({_columns(columns)}) REFERENCES {self._table(referenced)} "
                f"({_columns(constraint['referenced_columns'])})"
            )
            if constraint.get("on_delete"):
                body += f" ON DELETE {constraint['on_delete']}"
            if constraint.get("on_update"):
                body += f" ON UPDATE {constraint['on_update']}"
        elif kind == "exclusion":
            elements = ", ".join(
                f"{_element_key(e['column'])} WITH {e['operator']}"
                for e in constraint["elements"]
            )
            body = f"EXCLUDE USING {constraint.get('using') or 'gist'} ({elements})"
        else:
            raise RenderError(f"Unknown constraint kind: {kind}")

        if constraint.get("deferrable"):
            body += " DEFERRABLE"
            if constraint.get("initially_deferred"):
                body += " INITIALLY DEFERRED"
        return body


def _element_key(column: str) -> str:
    """Exclusion elements are column names or parenthesized expressions."""
    if re.match(r"^[A-Za-z_][A-Za-z0-9_$]*$", column):
        return quote_ident(column)
    return column if column.startswith("(") else f"({column})"


def _serial_default(target: QualifiedName, column: str) -> str:
    sequence = f"{target.table}_{column}_seq"
    if target.schema != "public":
        sequence = f"{target.schema}.{sequence}"
    return f"nextval('{sequence}'::regclass)"
