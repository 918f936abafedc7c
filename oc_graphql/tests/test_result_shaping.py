# Copyright 2024-present Kensho Technologies, LLC.
from datetime import date, datetime
from decimal import Decimal
import json
import unittest

from ..exceptions import EngineError
from ..extraction import extract_schema_metadata
from ..tasks.result_shaping import make_json_safe, shape_rows
from .test_helpers import get_schema_text


class ResultShapingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.user_type = extract_schema_metadata(get_schema_text()).get_type("User")

    def test_rows_with_header(self) -> None:
        rows = [
            ["id", "name", "age", "score", "active", "createdAt", "password_hash"],
            ["1", "Ann", "33", "4.5", "true", "2024-03-01T12:00:00Z", "x"],
            ["2", "", "", "", "false", "", "y"],
        ]
        self.assertEqual(
            [
                {
                    "id": "1",
                    "name": "Ann",
                    "age": 33,
                    "score": 4.5,
                    "active": True,
                    "createdAt": "2024-03-01T12:00:00Z",
                },
                {
                    "id": "2",
                    "name": None,
                    "age": None,
                    "score": None,
                    "active": False,
                    "createdAt": None,
                },
            ],
            shape_rows(rows, self.user_type),
        )

    def test_keyed_records(self) -> None:
        rows = [
            {"id": 1, "age": 33, "active": True, "unknown": "dropped"},
            {"id": "2", "age": "41", "active": "0"},
        ]
        self.assertEqual(
            [
                {"id": "1", "age": 33, "active": True},
                {"id": "2", "age": 41, "active": False},
            ],
            shape_rows(rows, self.user_type),
        )

    def test_unknown_response_type(self) -> None:
        rows = [["count", "note"], ["3", ""]]
        self.assertEqual([{"count": "3", "note": None}], shape_rows(rows))

    def test_empty_results(self) -> None:
        self.assertEqual([], shape_rows([], self.user_type))
        self.assertEqual([], shape_rows([["id", "name"]], self.user_type))

    def test_malformed_rows(self) -> None:
        with self.assertRaises(EngineError):
            shape_rows([["id", "name"], ["1"]], self.user_type)
        with self.assertRaises(EngineError):
            shape_rows([["id"], {"id": "1"}], self.user_type)
        with self.assertRaises(ValueError):
            shape_rows([["age"], ["old"]], self.user_type)
        with self.assertRaises(ValueError):
            shape_rows([["active"], ["maybe"]], self.user_type)

    def test_typed_cells(self) -> None:
        rows = [
            {
                "id": Decimal("7"),
                "name": True,
                "age": Decimal("33"),
                "score": Decimal("4.5"),
                "active": 1,
                "createdAt": datetime(2024, 3, 1, 12, 0, 0),
            }
        ]
        records = shape_rows(rows, self.user_type)
        self.assertEqual(
            [
                {
                    "id": "7",
                    "name": "true",
                    "age": 33,
                    "score": 4.5,
                    "active": True,
                    "createdAt": "2024-03-01T12:00:00",
                }
            ],
            records,
        )
        json.dumps(records)

    def test_typed_cells_of_unknown_response_type(self) -> None:
        rows = [
            {
                "count": Decimal("3"),
                "ratio": Decimal("0.25"),
                "precise": Decimal("0.1000000000000000000001"),
                "day": date(2024, 1, 1),
                "tags": ("a", Decimal("2")),
            }
        ]
        records = shape_rows(rows)
        self.assertEqual(
            [
                {
                    "count": 3,
                    "ratio": 0.25,
                    "precise": "0.1000000000000000000001",
                    "day": "2024-01-01",
                    "tags": ["a", 2],
                }
            ],
            records,
        )
        json.dumps(records)

    def test_make_json_safe(self) -> None:
        self.assertEqual(
            {"a": [1, 2.5, "NaN", None, False], "3": "2024-01-01T00:00:00"},
            make_json_safe(
                {
                    "a": (1, Decimal("2.5"), Decimal("NaN"), None, False),
                    3: datetime(2024, 1, 1),
                }
            ),
        )
        self.assertEqual("b'x'", make_json_safe(b"x"))
