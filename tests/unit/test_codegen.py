"""Tests for DDL rendering."""

import pytest

from pgstruct.exceptions import RenderError
from pgstruct.plan.emitter import Statement
from pgstruct.schema.codegen import DdlRenderer, quote_ident, quote_literal
from pgstruct.types import ChangeKind, Phase, QualifiedName
from tests.helpers import strip_timestamp_line


@pytest.fixture
def renderer() -> DdlRenderer:
    return DdlRenderer()


def statement(
    verb: ChangeKind, target: QualifiedName, payload: dict, **kwargs
) -> Statement:
    return Statement(ordinal=0, target=target, verb=verb, payload=payload, **kwargs)


T = QualifiedName("app", "users")


class TestQuoting:
    """Identifier and literal quoting."""

    def test_plain_identifiers_are_bare(self):
        assert quote_ident("users") == "users"
        assert quote_ident("col_1$") == "col_1$"

    def test_identifiers_needing_quotes(self):
        assert quote_ident("user") == '"user"'
        assert quote_ident("Users") == '"Users"'
        assert quote_ident("my col") == '"my col"'
        assert quote_ident('a"b') == '"a""b"'

    def test_quote_literal(self):
        assert quote_literal("it's") == "'it''s'"


class TestCodegenSchemasAndTables:
    """CREATE/DROP SCHEMA and TABLE."""

    def test_create_and_drop_schema(self, renderer):
        target = QualifiedName("app")
        assert (
            renderer.render(statement(ChangeKind.CREATE_SCHEMA, target, {"name": "app"}))
            == "CREATE SCHEMA app;"
        )
        assert (
            renderer.render(statement(ChangeKind.DROP_SCHEMA, target, {"name": "app"}))
            == "DROP SCHEMA app;"
        )

    def test_create_table(self, renderer):
        payload = {
            "table": {
                "table": "users",
                "schema": "app",
                "columns": [
                    {
                        "name": "id",
                        "type": "integer",
                        "nullable": False,
                        "default": "nextval('app.users_id_seq'::regclass)",
                    },
                    {"name": "email", "type": "varchar(255)", "nullable": False},
                    {"name": "status", "type": "text", "default": "'active'::text"},
                ],
                "constraints": [
                    {"name": "users_pkey", "kind": "primary_key", "columns": ["id"]},
                    {
                        "name": "users_status_check",
                        "kind": "check",
                        "columns": ["status"],
                        "expression": "status <> ''",
                    },
                ],
            }
        }

        sql = renderer.render(statement(ChangeKind.CREATE_TABLE, T, payload))

        assert sql == (
            "CREATE TABLE app.users (\n"
            "    id serial NOT NULL,\n"
            "    email varchar(255) NOT NULL,\n"
            "    status text DEFAULT 'active'::text,\n"
            "    CONSTRAINT users_pkey PRIMARY KEY (id),\n"
            "    CONSTRAINT users_status_check CHECK (status <> '')\n"
            ");"
        )

    def test_serial_in_public_schema(self, renderer):
        target = QualifiedName("public", "t")
        payload = {
            "column": {
                "name": "n",
                "type": "bigint",
                "nullable": False,
                "default": "nextval('t_n_seq'::regclass)",
            }
        }
        assert renderer.render(statement(ChangeKind.ADD_COLUMN, target, payload)) == (
            "ALTER TABLE public.t ADD COLUMN n bigserial NOT NULL;"
        )

    def test_foreign_sequence_default_is_kept(self, renderer):
        payload = {
            "column": {
                "name": "id",
                "type": "integer",
                "default": "nextval('shared_seq'::regclass)",
            }
        }
        assert renderer.render(statement(ChangeKind.ADD_COLUMN, T, payload)) == (
            "ALTER TABLE app.users ADD COLUMN id integer "
            "DEFAULT nextval('shared_seq'::regclass);"
        )

    def test_drop_table(self, renderer):
        sql = renderer.render(statement(ChangeKind.DROP_TABLE, T, {"name": "users"}))
        assert sql == "DROP TABLE app.users;"


class TestCodegenColumns:
    """Column-level statements."""

    def test_drop_column(self, renderer):
        target = QualifiedName("app", "users", "order")
        sql = renderer.render(statement(ChangeKind.DROP_COLUMN, target, {"column": "order"}))
        assert sql == 'ALTER TABLE app.users DROP COLUMN "order";'

    def test_alter_type(self, renderer):
        payload = {"column": "age", "from_type": "integer", "to_type": "bigint"}
        sql = renderer.render(statement(ChangeKind.ALTER_COLUMN_TYPE, T, payload))
        assert sql == (
            "ALTER TABLE app.users ALTER COLUMN age TYPE bigint USING age::bigint;"
        )

    def test_alter_nullability(self, renderer):
        set_sql = renderer.render(
            statement(
                ChangeKind.ALTER_COLUMN_NULLABILITY, T, {"column": "a", "nullable": False}
            )
        )
        drop_sql = renderer.render(
            statement(
                ChangeKind.ALTER_COLUMN_NULLABILITY, T, {"column": "a", "nullable": True}
            )
        )
        assert set_sql == "ALTER TABLE app.users ALTER COLUMN a SET NOT NULL;"
        assert drop_sql == "ALTER TABLE app.users ALTER COLUMN a DROP NOT NULL;"

    def test_alter_default(self, renderer):
        set_sql = renderer.render(
            statement(ChangeKind.ALTER_COLUMN_DEFAULT, T, {"column": "a", "default": "0"})
        )
        drop_sql = renderer.render(
            statement(ChangeKind.ALTER_COLUMN_DEFAULT, T, {"column": "a", "default": None})
        )
        assert set_sql == "ALTER TABLE app.users ALTER COLUMN a SET DEFAULT 0;"
        assert drop_sql == "ALTER TABLE app.users ALTER COLUMN a DROP DEFAULT;"


class TestCodegenConstraints:
    """Constraint bodies."""

    def render_constraint(self, renderer, constraint: dict) -> str:
        return renderer.render(
            statement(ChangeKind.ADD_CONSTRAINT, T, {"constraint": constraint})
        )

    def test_foreign_key(self, renderer):
        sql = self.render_constraint(
            renderer,
            {
                "name": "users_org_fkey",
                "kind": "foreign_key",
                "columns": ["org_id"],
                "references": "public.orgs",
                "referenced_columns": ["id"],
                "on_delete": "CASCADE",
                "deferrable": True,
                "initially_deferred": True,
            },
        )
        assert sql == (
            "ALTER TABLE app.users ADD CONSTRAINT users_org_fkey FOREIGN KEY (org_id) "
            "REFERENCES public.orgs (id) ON DELETE CASCADE DEFERRABLE INITIALLY DEFERRED;"
        )

    def test_foreign_key_unqualified_reference_uses_own_schema(self, renderer):
        sql = self.render_constraint(
            renderer,
            {
                "name": "fk",
                "kind": "foreign_key",
                "columns": ["org_id"],
                "references": "orgs",
                "referenced_columns": ["id"],
            },
        )
        assert "REFERENCES app.orgs (id)" in sql

    def test_unique_and_not_null(self, renderer):
        unique = self.render_constraint(
            renderer, {"name": "u", "kind": "unique", "columns": ["a", "b"]}
        )
        not_null = self.render_constraint(
            renderer, {"name": "nn", "kind": "not_null", "columns": ["a"]}
        )
        assert unique == "ALTER TABLE app.users ADD CONSTRAINT u UNIQUE (a, b);"
        assert not_null == "ALTER TABLE app.users ADD CONSTRAINT nn NOT NULL a;"

    def test_exclusion(self, renderer):
        sql = self.render_constraint(
            renderer,
            {
                "name": "no_overlap",
                "kind": "exclusion",
                "using": "gist",
                "elements": [
                    {"column": "room", "operator": "="},
                    {"column": "tsrange(starts, ends)", "operator": "&&"},
                ],
            },
        )
        assert sql == (
            "ALTER TABLE app.users ADD CONSTRAINT no_overlap "
            "EXCLUDE USING gist (room WITH =, (tsrange(starts, ends)) WITH &&);"
        )

    def test_unknown_constraint_kind(self, renderer):
        with pytest.raises(RenderError, match="Unknown constraint kind"):
            self.render_constraint(renderer, {"name": "x", "kind": "mystery"})

    def test_drop_constraint(self, renderer):
        sql = renderer.render(
            statement(ChangeKind.DROP_CONSTRAINT, T, {"name": "u", "kind": "unique"})
        )
        assert sql == "ALTER TABLE app.users DROP CONSTRAINT u;"


class TestCodegenIndexes:
    """CREATE/DROP INDEX."""

    def test_create_index(self, renderer):
        payload = {"index": {"name": "users_email_key", "columns": ["email"], "unique": True}}
        sql = renderer.render(statement(ChangeKind.ADD_INDEX, T, payload))
        assert sql == "CREATE UNIQUE INDEX users_email_key ON app.users USING btree (email);"

    def test_create_expression_index_with_predicate(self, renderer):
        payload = {
            "index": {
                "name": "users_lower_email",
                "method": "btree",
                "expression": "lower(email)",
                "where": "deleted_at IS NULL",
            }
        }
        sql = renderer.render(statement(ChangeKind.ADD_INDEX, T, payload))
        assert sql == (
            "CREATE INDEX users_lower_email ON app.users USING btree ((lower(email))) "
            "WHERE deleted_at IS NULL;"
        )

    def test_drop_index_is_schema_qualified(self, renderer):
        target = QualifiedName("app", "users", "ix")
        sql = renderer.render(statement(ChangeKind.DROP_INDEX, target, {"name": "ix"}))
        assert sql == "DROP INDEX app.ix;"


class TestCodegenComments:
    """COMMENT ON statements."""

    def test_comments(self, renderer):
        schema_sql = renderer.render(
            statement(
                ChangeKind.SET_COMMENT,
                QualifiedName("app"),
                {"owner_kind": "schema", "text": "Application"},
            )
        )
        column_sql = renderer.render(
            statement(
                ChangeKind.SET_COMMENT,
                QualifiedName("app", "users", "email"),
                {"owner_kind": "column", "text": "User's email"},
            )
        )
        clear_sql = renderer.render(
            statement(ChangeKind.CLEAR_COMMENT, T, {"owner_kind": "table", "text": None})
        )
        assert schema_sql == "COMMENT ON SCHEMA app IS 'Application';"
        assert column_sql == "COMMENT ON COLUMN app.users.email IS 'User''s email';"
        assert clear_sql == "COMMENT ON TABLE app.users IS NULL;"

    def test_unknown_owner_kind(self, renderer):
        with pytest.raises(RenderError, match="Cannot comment on"):
            renderer.render(
                statement(ChangeKind.SET_COMMENT, T, {"owner_kind": "view", "text": "x"})
            )


class TestCodegenErrors:
    """Malformed statements."""

    def test_missing_payload_field(self, renderer):
        with pytest.raises(RenderError, match="missing payload field"):
            renderer.render(statement(ChangeKind.DROP_COLUMN, T, {}))


class TestRenderScript:
    """Whole-plan scripts."""

    def test_script_header_and_statements(self, renderer):
        statements = [
            Statement(0, QualifiedName("app"), ChangeKind.CREATE_SCHEMA, {"name": "app"}),
            Statement(
                1,
                QualifiedName("old"),
                ChangeKind.DROP_SCHEMA,
                {"name": "old"},
                phase=Phase.DROPS,
                destructive=True,
            ),
        ]

        lines = strip_timestamp_line(renderer.render_script(statements, "Initial"))

        assert lines == [
            "-- Migration: Auto-generated",
            "-- Description: Initial",
            "",
            "-- WARNING: This migration contains destructive changes:",
            "--   - drop_schema: old",
            "",
            "-- #0 create_schema: app",
            "CREATE SCHEMA app;",
            "",
            "-- #1 drop_schema: old",
            "DROP SCHEMA old;",
        ]
