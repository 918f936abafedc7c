# Copyright 2024-present Kensho Technologies, LLC.
from decimal import Decimal
import unittest

from ..compiler import (
    JoinTableRegistry,
    QueryClassification,
    TemplateCompiler,
    classify_query,
    compile_template,
    find_join_table_names,
    represent_argument_as_sql,
)
from ..exceptions import CompileError, UnsupportedTypeError, ValidationError


class ArgumentRepresentationTests(unittest.TestCase):
    def test_literal_representations(self) -> None:
        test_data = [
            (None, "NULL"),
            (True, "true"),
            (False, "false"),
            (0, "0"),
            (-42, "-42"),
            (3.5, "3.5"),
            (1e-05, "0.00001"),
            (1e20, "100000000000000000000"),
            (Decimal("12345678.01234567"), "12345678.01234567"),
            (Decimal("1E+3"), "1000"),
            ("plain", "'plain'"),
            ("O'Brien", "'O''Brien'"),
            ("''", "''''''"),
            ("100% match_", "'100% match_'"),
            ("", "''"),
        ]
        for value, expected in test_data:
            self.assertEqual(expected, represent_argument_as_sql("arg", value))

    def test_non_finite_numbers_are_rejected(self) -> None:
        non_finite_values = (
            float("inf"),
            float("-inf"),
            float("nan"),
            Decimal("Infinity"),
            Decimal("NaN"),
        )
        for value in non_finite_values:
            with self.assertRaises(ValidationError):
                represent_argument_as_sql("arg", value)

    def test_unsupported_types_are_rejected(self) -> None:
        for value in ([1, 2], {"a": 1}, b"bytes", object()):
            with self.assertRaises(UnsupportedTypeError):
                represent_argument_as_sql("arg", value)


class ClassificationTests(unittest.TestCase):
    def test_classification_by_leading_keyword(self) -> None:
        test_data = [
            ("SELECT * FROM users", QueryClassification.READ),
            ("   select id from users", QueryClassification.READ),
            ("\n\tWITH recent AS (SELECT 1) SELECT * FROM recent", QueryClassification.READ),
            ("(SELECT 1) UNION (SELECT 2)", QueryClassification.READ),
            ("-- all users\nSELECT * FROM users", QueryClassification.READ),
            ("INSERT INTO users (id) VALUES (1)", QueryClassification.INSERT),
            ("update users SET name = 'x'", QueryClassification.UPDATE),
            ("Delete FROM users", QueryClassification.DELETE),
        ]
        for template, expected in test_data:
            self.assertEqual(expected, classify_query(template))

    def test_unclassifiable_templates(self) -> None:
        for template in ("", "   ", "DROP TABLE users", "-- only a comment", "$args.query"):
            with self.assertRaises(CompileError):
                classify_query(template)

    def test_only_reads_yield_rows(self) -> None:
        self.assertTrue(QueryClassification.READ.yields_rows)
        self.assertFalse(QueryClassification.INSERT.yields_rows)
        self.assertFalse(QueryClassification.UPDATE.yields_rows)
        self.assertFalse(QueryClassification.DELETE.yields_rows)


class TemplateCompilationTests(unittest.TestCase):
    def test_quoted_string_placeholder(self) -> None:
        result = compile_template(
            "SELECT * FROM user WHERE name = '$args.name'", {"name": "O'Brien"}
        )
        self.assertEqual("SELECT * FROM user WHERE name = 'O''Brien'", result.query)
        self.assertEqual(QueryClassification.READ, result.classification)

    def test_bare_string_placeholder(self) -> None:
        result = compile_template("SELECT * FROM user WHERE name = $args.name", {"name": "O'Brien"})
        self.assertEqual("SELECT * FROM user WHERE name = 'O''Brien'", result.query)

    def test_quoted_placeholder_with_other_values(self) -> None:
        template = "SELECT * FROM t WHERE a = '$args.a' AND b = '$args.b' AND c = '$args.c'"
        result = compile_template(template, {"a": 42, "b": None, "c": True})
        self.assertEqual("SELECT * FROM t WHERE a = '42' AND b = NULL AND c = 'true'", result.query)

    def test_non_finite_argument_produces_no_query(self) -> None:
        with self.assertRaises(ValidationError):
            compile_template(
                "SELECT * FROM user WHERE age = $args.age", {"age": float("inf")}
            )

    def test_invalid_argument_aborts_even_after_valid_ones(self) -> None:
        with self.assertRaises(UnsupportedTypeError):
            compile_template(
                "SELECT * FROM user WHERE name = $args.name AND tags = $args.tags",
                {"name": "valid", "tags": ["a", "b"]},
            )

    def test_every_occurrence_is_replaced(self) -> None:
        template = (
            "SELECT * FROM t WHERE a = $args.x OR b = $args.x OR c = $source.x OR d = $args.x"
        )
        result = compile_template(template, {"x": "v'1"})
        self.assertEqual(
            "SELECT * FROM t WHERE a = 'v''1' OR b = 'v''1' OR c = 'v''1' OR d = 'v''1'",
            result.query,
        )

    def test_argument_names_sharing_a_prefix(self) -> None:
        template = "SELECT * FROM t WHERE id = $args.id AND identifier = $args.identifier"
        for arguments in (
            {"id": 1, "identifier": "abc"},
            {"identifier": "abc", "id": 1},
        ):
            result = compile_template(template, arguments)
            self.assertEqual(
                "SELECT * FROM t WHERE id = 1 AND identifier = 'abc'", result.query
            )

    def test_substituted_values_are_not_substituted_again(self) -> None:
        template = "SELECT * FROM t WHERE a = $args.a AND b = $args.b"
        result = compile_template(template, {"a": "$args.b", "b": "x"})
        self.assertEqual("SELECT * FROM t WHERE a = '$args.b' AND b = 'x'", result.query)

    def test_values_looking_like_macros_are_not_expanded(self) -> None:
        registry = JoinTableRegistry({"user_groups": "prod_user_groups"})
        result = compile_template(
            "SELECT * FROM $join_table(user_groups) WHERE name = $args.name",
            {"name": "$join_table(secret)"},
            registry,
        )
        self.assertEqual(
            "SELECT * FROM prod_user_groups WHERE name = '$join_table(secret)'", result.query
        )

    def test_unused_and_missing_arguments(self) -> None:
        result = compile_template(
            "SELECT * FROM t WHERE a = $args.a AND b = $args.b", {"a": 1, "unused": 2}
        )
        self.assertEqual("SELECT * FROM t WHERE a = 1 AND b = $args.b", result.query)

    def test_compilation_is_deterministic(self) -> None:
        template = "UPDATE users SET name = $args.name, score = $args.score WHERE id = $args.id"
        arguments = {"name": "Ann", "score": Decimal("9.50"), "id": 7}
        results = {compile_template(template, arguments) for _ in range(10)}
        self.assertEqual(1, len(results))
        (result,) = results
        self.assertEqual(
            "UPDATE users SET name = 'Ann', score = 9.50 WHERE id = 7", result.query
        )
        self.assertEqual(QueryClassification.UPDATE, result.classification)

    def test_unknown_join_table(self) -> None:
        registry = JoinTableRegistry.from_names(["user_groups"])
        with self.assertRaises(CompileError) as context:
            compile_template("SELECT * FROM $join_table(group_roles)", {}, registry)
        self.assertIn("group_roles", str(context.exception))

    def test_compiler_bound_to_registry(self) -> None:
        compiler = TemplateCompiler(JoinTableRegistry.with_prefix(["user_groups"], "app_"))
        result = compiler.compile(
            "INSERT INTO $join_table( user_groups ) (user_id, group_name) "
            "VALUES ($args.userId, $args.group)",
            {"userId": 3, "group": "admins"},
        )
        self.assertEqual(
            "INSERT INTO app_user_groups (user_id, group_name) VALUES (3, 'admins')",
            result.query,
        )
        self.assertEqual(QueryClassification.INSERT, result.classification)


class JoinTableTests(unittest.TestCase):
    def test_discovered_names_are_duplicate_free(self) -> None:
        templates = [
            "SELECT * FROM $join_table(a)",
            "SELECT * FROM $join_table(a) JOIN users",
            "INSERT INTO $join_table(a) VALUES (1)",
            "DELETE FROM $join_table(b)",
        ]
        accumulator = set()
        for template in templates:
            find_join_table_names(template, accumulator)
        self.assertEqual({"a", "b"}, accumulator)

    def test_empty_macros_are_not_names(self) -> None:
        self.assertEqual(set(), find_join_table_names("SELECT * FROM $join_table()"))

    def test_registry_is_read_only(self) -> None:
        identifiers = {"a": "table_a"}
        registry = JoinTableRegistry(identifiers)
        identifiers["b"] = "table_b"
        self.assertNotIn("b", registry)
        with self.assertRaises(TypeError):
            registry.identifiers["c"] = "table_c"  # type: ignore
        with self.assertRaises(AttributeError):
            registry.other = 1  # type: ignore
