from __future__ import annotations

import sqlite3
import unittest

from mini_dal.core.conditions import C, Condition, ConditionGroup, NotCondition, OrderBy
from mini_dal.core.errors import ContractError
from mini_dal.core.facade import DataAccess
from mini_dal.ports.db_api.database import Database
from mini_dal.ports.db_api.dialects import SQLiteDialect


class ConditionsTests(unittest.TestCase):
    def test_condition_factory_methods(self) -> None:
        samples = [
            ("eq", C.eq("age", 18), "=", False),
            ("ne", C.ne("age", 18), "<>", False),
            ("lt", C.lt("age", 18), "<", False),
            ("le", C.le("age", 18), "<=", False),
            ("gt", C.gt("age", 18), ">", False),
            ("ge", C.ge("age", 18), ">=", False),
            ("like", C.like("email", "%@x.com"), "LIKE", False),
            ("contains", C.contains("email", "x.com"), "LIKE", False),
            ("between", C.between("age", 1, 2), "BETWEEN", False),
            ("is_null", C.is_null("deleted_at"), "IS NULL", True),
            ("is_not_null", C.is_not_null("email"), "IS NOT NULL", True),
            ("in_", C.in_("id", [1, 2]), "IN", False),
            ("not_in", C.not_in("id", [1, 2]), "NOT IN", False),
        ]

        for name, condition, op, unary in samples:
            with self.subTest(name=name):
                self.assertIsInstance(condition, Condition)
                self.assertEqual(condition.op, op)
                self.assertEqual(condition.is_unary, unary)

        self.assertEqual(C.contains("email", "x.com").value, "%x.com%")

    def test_group_factory_methods(self) -> None:
        group_and = C.and_(C.eq("age", 18), C.eq("email", "a@x.com"))
        group_or = C.or_([C.eq("age", 18), C.eq("age", 21)])
        negated = C.not_(C.eq("deleted", True))

        self.assertIsInstance(group_and, ConditionGroup)
        self.assertEqual(group_and.operator, "AND")
        self.assertEqual(len(group_and.items), 2)

        self.assertEqual(group_or.operator, "OR")
        self.assertEqual(len(group_or.items), 2)

        self.assertIsInstance(negated, NotCondition)

    def test_group_factory_validation(self) -> None:
        with self.assertRaises(ContractError):
            C.and_()
        with self.assertRaises(TypeError):
            C.or_(123)  # type: ignore[arg-type]
        with self.assertRaises(TypeError):
            C.not_(123)  # type: ignore[arg-type]

    def test_order_by_defaults(self) -> None:
        order = OrderBy("id")
        self.assertEqual(order.col, "id")
        self.assertFalse(order.desc)


class ConditionFilteringTests(unittest.TestCase):
    def setUp(self) -> None:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        self.dal = DataAccess(Database(conn, SQLiteDialect()))
        self.dal.execute(
            'CREATE TABLE "user" (id INTEGER PRIMARY KEY, age INTEGER, role TEXT, '
            "email TEXT, active INTEGER, deleted_at TEXT)"
        )
        self.assertTrue(
            self.dal.bulk_insert(
                "user",
                [
                    {"id": 1, "age": 18, "role": "admin", "email": "admin@example.com", "active": 1, "deleted_at": None},
                    {"id": 2, "age": 22, "role": "owner", "email": "owner@example.com", "active": 1, "deleted_at": None},
                    {"id": 3, "age": 30, "role": "user", "email": "alice@sample.com", "active": 1, "deleted_at": None},
                    {"id": 4, "age": 41, "role": "user", "email": "bob@example.com", "active": 0, "deleted_at": "2025-01-01"},
                    {"id": 5, "age": None, "role": "auditor", "email": "auditor@example.com", "active": 1, "deleted_at": None},
                ],
            )
        )

    def tearDown(self) -> None:
        self.dal.close()

    def ids(self, where) -> list:  # noqa: ANN001
        result = self.dal.paginate("user", 1, 10, order_by=[OrderBy("id")], where=where)
        return result.column("id")

    def test_filters_match_rows(self) -> None:
        samples = [
            (C.eq("age", 30), [3]),
            (C.ne("role", "user"), [1, 2, 5]),
            (C.lt("age", 22), [1]),
            (C.ge("age", 30), [3, 4]),
            (C.like("email", "%@sample.com"), [3]),
            (C.contains("email", "owner"), [2]),
            (C.is_null("age"), [5]),
            (C.is_not_null("deleted_at"), [4]),
            (C.in_("id", [2, 4, 9]), [2, 4]),
            (C.in_("id", []), []),
            (C.not_in("id", []), [1, 2, 3, 4, 5]),
            (C.between("age", 20, 35), [2, 3]),
        ]
        for where, expected in samples:
            with self.subTest(where=where):
                self.assertEqual(self.ids(where), expected)

    def test_grouped_and_negated_filters(self) -> None:
        admins_or_owners = C.or_(C.eq("role", "admin"), C.eq("role", "owner"))
        self.assertEqual(self.ids([C.eq("active", True), admins_or_owners]), [1, 2])
        self.assertEqual(self.ids(C.not_(C.eq("active", True))), [4])
        self.assertEqual(
            self.ids(C.and_(C.eq("role", "user"), C.or_(C.lt("age", 35), C.is_not_null("deleted_at")))),
            [3, 4],
        )

    def test_order_by_columns(self) -> None:
        result = self.dal.paginate(
            "user",
            1,
            3,
            order_by=[OrderBy("active", desc=True), OrderBy("id", desc=True)],
        )
        self.assertEqual(result.column("id"), [5, 3, 2])


if __name__ == "__main__":
    unittest.main()
