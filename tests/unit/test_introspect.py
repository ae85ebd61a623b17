"""Tests for schema introspection."""

from pathlib import Path

import pytest

from pgstruct.exceptions import IntrospectionError
from pgstruct.schema.diff import SchemaDiffer
from pgstruct.schema.introspect import SchemaIntrospector, parse_exclusion_definition
from pgstruct.schema.loader import load_schema_model
from pgstruct.schema.models import ConstraintKind, ExclusionElement, ReferentialAction
from pgstruct.types import QualifiedName
from tests.helpers import build_catalog_rows_from_model, make_mock_client

FIXTURES_PATH = Path(__file__).parent.parent / "fixtures" / "struct_it.yaml"

TABLE_KEY = {"schema_name": "app", "table_name": "t"}


def catalog(**rows: list[dict]) -> dict[str, list[dict]]:
    base = {
        "schemas": [{"schema_name": "app", "comment": None}],
        "tables": [{**TABLE_KEY, "comment": None}],
        "columns": [
            {
                **TABLE_KEY,
                "column_name": "id",
                "ordinal": 1,
                "data_type": "integer",
                "not_null": True,
                "column_default": None,
                "comment": None,
            }
        ],
        "constraints": [],
        "indexes": [],
    }
    base.update(rows)
    return base


def introspect(rows: dict, schemas=("app",)):
    return SchemaIntrospector(make_mock_client(rows), schemas).introspect()


class TestSchemaIntrospector:
    """Catalog rows to snapshot."""

    def test_columns(self):
        model = introspect(
            catalog(
                columns=[
                    {
                        **TABLE_KEY,
                        "column_name": "name",
                        "ordinal": 2,
                        "data_type": "character varying(255)",
                        "not_null": False,
                        "column_default": "'x'::character varying",
                        "comment": "Display name",
                    }
                ]
            )
        )
        col = model.get_table(QualifiedName("app", "t")).get_column("name")
        assert str(col.type) == "varchar(255)"
        assert col.nullable is True
        assert col.default == "'x'::character varying"
        assert col.ordinal == 2
        assert col.comment == "Display name"

    def test_default_named_not_null_constraints_are_skipped(self):
        model = introspect(
            catalog(
                constraints=[
                    {
                        **TABLE_KEY,
                        "constraint_name": "t_id_not_null",
                        "constraint_type": "n",
                        "columns": ["id"],
                    },
                    {
                        **TABLE_KEY,
                        "constraint_name": "id_required",
                        "constraint_type": "n",
                        "columns": ["id"],
                    },
                ]
            )
        )
        table = model.get_table(QualifiedName("app", "t"))
        assert [c.name for c in table.constraints] == ["id_required"]
        assert table.constraints[0].kind is ConstraintKind.NOT_NULL

    def test_foreign_key_row(self):
        model = introspect(
            catalog(
                constraints=[
                    {
                        **TABLE_KEY,
                        "constraint_name": "t_self_fkey",
                        "constraint_type": "f",
                        "columns": ["id"],
                        "ref_schema": "app",
                        "ref_table": "t",
                        "ref_columns": ["id"],
                        "on_delete": "c",
                        "on_update": "a",
                        "deferrable": True,
                        "initially_deferred": False,
                    }
                ]
            )
        )
        fk = model.get_table(QualifiedName("app", "t")).get_constraint("t_self_fkey")
        assert fk.references == QualifiedName("app", "t")
        assert fk.on_delete is ReferentialAction.CASCADE
        assert fk.on_update is ReferentialAction.NO_ACTION
        assert fk.deferrable is True

    def test_exclusion_row(self):
        model = introspect(
            catalog(
                constraints=[
                    {
                        **TABLE_KEY,
                        "constraint_name": "t_excl",
                        "constraint_type": "x",
                        "columns": ["id"],
                        "definition": "EXCLUDE USING gist (id WITH =)",
                        "index_method": "gist",
                    }
                ]
            )
        )
        excl = model.get_table(QualifiedName("app", "t")).get_constraint("t_excl")
        assert excl.using == "gist"
        assert excl.elements == (ExclusionElement("id", "="),)

    def test_expression_index_row(self):
        model = introspect(
            catalog(
                indexes=[
                    {
                        **TABLE_KEY,
                        "index_name": "t_expr_idx",
                        "method": "btree",
                        "is_unique": True,
                        "has_expression": True,
                        "keys": ["(id + 1)"],
                        "predicate": "(id > 0)",
                    }
                ]
            )
        )
        index = model.get_table(QualifiedName("app", "t")).get_index("t_expr_idx")
        assert index.columns == ()
        assert index.expression == "(id + 1)"
        assert index.unique is True
        assert index.where == "(id > 0)"

    def test_schema_filter_is_a_parameter(self):
        client = make_mock_client(catalog())

        SchemaIntrospector(client, ["app"]).introspect()

        for call in client.fetchall.call_args_list:
            sql, params = call.args
            assert "ANY(%(schemas)s)" in sql
            assert params == {"schemas": ["app"]}

    def test_no_filter_excludes_system_schemas(self):
        client = make_mock_client(catalog())

        SchemaIntrospector(client).introspect()

        sql, params = client.fetchall.call_args_list[0].args
        assert "pg_catalog" in sql
        assert params is None

    def test_query_failure_raises_introspection_error(self):
        client = make_mock_client()
        client.fetchall.side_effect = RuntimeError("connection lost")

        with pytest.raises(IntrospectionError, match="connection lost"):
            SchemaIntrospector(client).introspect()

    def test_fixture_round_trip(self):
        """A database built from the fixture introspects back to it."""
        desired = load_schema_model(FIXTURES_PATH)
        client = make_mock_client(build_catalog_rows_from_model(desired))

        current = SchemaIntrospector(client, ["public", "struct_it"]).introspect()

        assert SchemaDiffer().diff(desired, current) == []

    def test_schema_scope_limits_result(self):
        desired = load_schema_model(FIXTURES_PATH)
        rows = build_catalog_rows_from_model(desired)

        model = SchemaIntrospector(make_mock_client(rows), ["public"]).introspect()

        assert model.schema_names() == {"public"}


class TestParseExclusionDefinition:
    """Parsing pg_get_constraintdef output."""

    def test_columns_and_expressions(self):
        using, elements = parse_exclusion_definition(
            'EXCLUDE USING gist ("Room" WITH =, tsrange(starts, ends) WITH &&)'
        )
        assert using == "gist"
        assert elements == [
            ExclusionElement("Room", "="),
            ExclusionElement("tsrange(starts, ends)", "&&"),
        ]

    def test_trailing_clauses_are_ignored(self):
        using, elements = parse_exclusion_definition(
            "EXCLUDE USING GIST (a WITH <>) DEFERRABLE"
        )
        assert using == "gist"
        assert elements == [ExclusionElement("a", "<>")]

    def test_unparseable(self):
        with pytest.raises(IntrospectionError):
            parse_exclusion_definition("CHECK (a > 0)")
