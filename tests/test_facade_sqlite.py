from __future__ import annotations

import os
import sqlite3
import tempfile
import unittest
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from mini_dal import DataAccess
from mini_dal.core.binder import PropertyBag
from mini_dal.core.conditions import C, OrderBy
from mini_dal.core.errors import (
    ContractError,
    DbConnectionError,
    StoreError,
    TransientError,
    UnsupportedOperationError,
)
from mini_dal.core.retry import RetryPolicy
from mini_dal.ports.db_api.database import Database
from mini_dal.ports.db_api.dialects import SQLiteDialect


@dataclass
class User:
    Id: int
    First_Name: str
    Last_Name: str
    Age: int
    Balance: Decimal
    Joined: Optional[date] = None


USERS = [
    User(1, "Ann", "Lee", 30, Decimal("10.5"), date(2024, 1, 15)),
    User(2, "Bob", "Stanton", 25, Decimal("20"), None),
    User(3, "Cara", "Diaz", 41, Decimal("0"), None),
    User(4, "DANA", "Smith", 35, Decimal("5.25"), date(2023, 6, 1)),
    User(5, "Eve", "Ng", 22, Decimal("100"), None),
]

SCHEMA = """
CREATE TABLE Users (
    Id INTEGER PRIMARY KEY,
    First_Name TEXT NOT NULL,
    Last_Name TEXT NOT NULL,
    Age INTEGER NOT NULL,
    Balance NUMERIC NOT NULL,
    Joined TEXT,
    IsDeleted INTEGER NOT NULL DEFAULT 0,
    UpdatedAt TEXT
)
"""


class DataAccessTestCase(unittest.TestCase):
    def setUp(self) -> None:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        self.dal = DataAccess(Database(conn, SQLiteDialect()))
        self.dal.execute(SCHEMA)
        for user in USERS:
            self.assertTrue(self.dal.save("Users", user))

    def tearDown(self) -> None:
        self.dal.close()

    def ids(self, result) -> list:  # noqa: ANN001
        return result.column("Id")


class CrudTests(DataAccessTestCase):
    def test_get_by_id(self) -> None:
        row = self.dal.get_by_id("Users", 1)
        self.assertEqual(row["first_name"], "Ann")
        self.assertEqual(row["Joined"], "2024-01-15")
        self.assertIsNone(self.dal.get_by_id("Users", 99))

    def test_save_accepts_bags_and_mappings(self) -> None:
        bag = PropertyBag({"Id": 6, "First_Name": "Finn", "Last_Name": "Ko"}).with_column("Age", 19)
        self.assertTrue(self.dal.save("Users", bag.with_column("Balance", 1)))
        self.assertTrue(
            self.dal.save("Users", {"Id": 7, "First_Name": "Gus", "Last_Name": "Ma", "Age": 50, "Balance": 0})
        )
        self.assertEqual(self.dal.count("Users"), 7)

    def test_save_duplicate_key_raises(self) -> None:
        with self.assertRaises(StoreError):
            self.dal.save("Users", USERS[0])
        with self.assertRaises(ContractError):
            self.dal.save("Users", {})

    def test_update_sets_non_key_columns(self) -> None:
        self.assertTrue(self.dal.update("Users", {"Id": 2, "Age": 26, "Last_Name": "Stone"}))
        row = self.dal.get_by_id("Users", 2)
        self.assertEqual((row["Age"], row["Last_Name"], row["First_Name"]), (26, "Stone", "Bob"))
        self.assertFalse(self.dal.update("Users", {"Id": 99, "Age": 1}))

    def test_delete_by_record_or_key(self) -> None:
        self.assertTrue(self.dal.delete("Users", USERS[0]))
        self.assertTrue(self.dal.delete("Users", 2))
        self.assertTrue(self.dal.delete("Users", {"id": 3}))
        self.assertFalse(self.dal.delete("Users", 3))
        self.assertEqual(self.ids(self.dal.table_data('SELECT "Id" FROM "Users" ORDER BY "Id"')), [4, 5])


class AggregateTests(DataAccessTestCase):
    def test_count_and_exists(self) -> None:
        self.assertEqual(self.dal.count("Users"), 5)
        self.assertEqual(self.dal.count("Users", "Age > :age", {"age": 30}), 2)
        self.assertEqual(self.dal.count("Users", C.between("Age", 22, 25)), 2)
        self.assertTrue(self.dal.exists("Users", C.eq("First_Name", "Eve")))
        self.assertFalse(self.dal.exists("Users", C.eq("First_Name", "Zed")))

    def test_min_max_sum_average(self) -> None:
        self.assertEqual(self.dal.max("Users", "Age"), 41)
        self.assertEqual(self.dal.min("Users", "Age"), 22)

        total = self.dal.sum("Users", "Balance")
        self.assertIsInstance(total, Decimal)
        self.assertEqual(total, Decimal("135.75"))
        self.assertEqual(self.dal.average("Users", "Age"), Decimal("30.6"))

    def test_empty_sets_sum_and_average_to_zero(self) -> None:
        none = C.gt("Age", 100)
        self.assertEqual(self.dal.sum("Users", "Balance", none), Decimal(0))
        self.assertEqual(self.dal.average("Users", "Balance", none), Decimal(0))
        self.assertIsNone(self.dal.max("Users", "Age", none))

    def test_distinct(self) -> None:
        self.dal.soft_delete("Users", 3)
        result = self.dal.get_distinct("Users", "IsDeleted")
        self.assertEqual(sorted(result.column("IsDeleted")), [0, 1])

    def test_search_is_case_insensitive_on_sqlite(self) -> None:
        result = self.dal.search("Users", ["First_Name", "Last_Name"], "an")
        self.assertEqual(sorted(self.ids(result)), [1, 2, 4])
        self.assertEqual(len(self.dal.search("Users", ["Last_Name"], "zzz")), 0)


class ListingTests(DataAccessTestCase):
    def test_get_top_defaults_to_newest_ids(self) -> None:
        self.assertEqual(self.ids(self.dal.get_top("Users", 3)), [5, 4, 3])
        self.assertEqual(self.ids(self.dal.get_top("Users", 2, [OrderBy("Age")])), [5, 2])

    def test_paginate(self) -> None:
        self.assertEqual(self.ids(self.dal.paginate("Users", 2, 2)), [3, 4])
        self.assertEqual(self.ids(self.dal.paginate("Users", 3, 2)), [5])
        self.assertEqual(len(self.dal.paginate("Users", 9, 2)), 0)
        with self.assertRaises(ContractError):
            self.dal.paginate("Users", 0, 2)
        with self.assertRaises(ContractError):
            self.dal.paginate("Users", 1, 2, order_by=None)

    def test_paginate_with_count(self) -> None:
        self.dal.execute("CREATE TABLE Items (Id INTEGER PRIMARY KEY, Label TEXT)")
        result = self.dal.bulk_insert("Items", [{"Id": n, "Label": f"item {n}"} for n in range(1, 26)])
        self.assertTrue(result)

        rows, total = self.dal.paginate_with_count("Items", 1, 10)
        self.assertEqual(len(rows), 10)
        self.assertEqual(total, 25)

        last = self.dal.paginate_with_count("Items", 3, 10)
        self.assertEqual(self.ids(last.rows), list(range(21, 26)))
        self.assertEqual(last.total_count, 25)

        filtered = self.dal.paginate_with_count("Items", 1, 10, where=C.ge("Id", 11))
        self.assertEqual(filtered.total_count, 15)
        self.assertEqual(self.ids(filtered.rows)[0], 11)

    def test_paginate_with_count_inside_transaction(self) -> None:
        with self.dal.transaction() as tx:
            tx.execute("DELETE FROM Users WHERE Id = 5")
            page = self.dal.paginate_with_count("Users", 1, 10)
            self.assertEqual(page.total_count, 4)
            tx.set_rollback_only()
        self.assertEqual(self.dal.count("Users"), 5)

    def test_join(self) -> None:
        self.dal.execute("CREATE TABLE Orders (OrderId INTEGER PRIMARY KEY, UserId INTEGER, Total INTEGER)")
        self.dal.bulk_insert(
            "Orders",
            [
                {"OrderId": 1, "UserId": 1, "Total": 5},
                {"OrderId": 2, "UserId": 1, "Total": 15},
                {"OrderId": 3, "UserId": 4, "Total": 20},
            ],
        )
        result = self.dal.join(
            "Users",
            "Orders",
            "Users.Id = Orders.UserId",
            columns="Users.First_Name, Orders.Total",
            where=C.gt("Total", 10),
        )
        self.assertEqual(result.columns, ("First_Name", "Total"))
        self.assertEqual(sorted(row["First_Name"] for row in result), ["Ann", "DANA"])

    def test_select_streams_rows(self) -> None:
        with self.dal.select('SELECT "Id" FROM "Users" WHERE "Age" < :age ORDER BY "Id"', {"age": 30}) as rows:
            self.assertEqual([row["Id"] for row in rows], [2, 5])


class AdminTests(DataAccessTestCase):
    def test_clear_table(self) -> None:
        self.assertTrue(self.dal.clear_table("Users"))
        self.assertEqual(self.dal.count("Users"), 0)
        self.assertFalse(self.dal.clear_table("Users"))

    def test_bulk_insert_is_all_or_nothing(self) -> None:
        rows = [
            {"Id": 10, "First_Name": "A", "Last_Name": "B", "Age": 1, "Balance": 0},
            {"Id": 1, "First_Name": "Dup", "Last_Name": "B", "Age": 1, "Balance": 0},
        ]
        result = self.dal.bulk_insert("Users", rows)
        self.assertFalse(result)
        self.assertIsInstance(result.error, StoreError)
        self.assertIsNone(self.dal.get_by_id("Users", 10))

    def test_bulk_insert_rejects_mixed_layouts(self) -> None:
        result = self.dal.bulk_insert(
            "Users",
            [
                {"Id": 10, "First_Name": "A", "Last_Name": "B", "Age": 1, "Balance": 0},
                {"Id": 11, "First_Name": "A", "Last_Name": "B", "Age": 1},
            ],
        )
        self.assertFalse(result)
        self.assertIsInstance(result.error, ContractError)
        self.assertTrue(self.dal.bulk_insert("Users", []))

    def test_backup(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = os.path.join(tmp, "copy.db")
            self.assertTrue(self.dal.backup(target))
            self.assertTrue(os.path.exists(target))

            copy = sqlite3.connect(target)
            try:
                self.assertEqual(copy.execute("SELECT COUNT(*) FROM Users").fetchone()[0], 5)
            finally:
                copy.close()

            again = self.dal.backup(target)
            self.assertFalse(again)
            self.assertIsNotNone(again.reason)

        self.assertFalse(self.dal.backup(os.path.join(tmp, "missing", "dir", "x.db")))

    def test_ping(self) -> None:
        self.assertTrue(self.dal.ping())
        self.dal.close()
        result = self.dal.ping()
        self.assertFalse(result)
        self.assertIsInstance(result.error, DbConnectionError)

    def test_schema_introspection(self) -> None:
        tables = self.dal.get_schema_tables()
        self.assertIn("Users", tables.column("TABLE_NAME"))

        columns = self.dal.get_schema_columns("Users")
        self.assertEqual(columns.column("COLUMN_NAME")[:2], ["Id", "First_Name"])
        self.assertTrue(self.dal.column_exists("Users", "first_name"))
        self.assertFalse(self.dal.column_exists("Users", "Email"))
        self.assertFalse(self.dal.column_exists("Missing", "Id"))

    def test_stored_procedures_are_unsupported_on_sqlite(self) -> None:
        with self.assertRaises(UnsupportedOperationError):
            self.dal.exec_stored_procedure("usp_Purge")
        with self.assertRaises(UnsupportedOperationError):
            self.dal.query_stored_procedure("usp_Find", {"Id": 1})


class HelperTests(DataAccessTestCase):
    def test_upsert_updates_then_inserts(self) -> None:
        self.assertTrue(self.dal.upsert("Users", "Id", {"Id": 1, "First_Name": "Annie", "Last_Name": "Lee", "Age": 31, "Balance": 1}))
        self.assertEqual(self.dal.get_by_id("Users", 1)["First_Name"], "Annie")
        self.assertEqual(self.dal.count("Users"), 5)

        self.assertTrue(self.dal.upsert("Users", "Id", {"Id": 6, "First_Name": "New", "Last_Name": "Row", "Age": 1, "Balance": 0}))
        self.assertEqual(self.dal.count("Users"), 6)

    def test_upsert_needs_no_unique_key(self) -> None:
        self.dal.execute('CREATE TABLE "Codes" ("Code" TEXT, "Name" TEXT)')

        self.assertTrue(self.dal.upsert("Codes", "Code", {"Code": "a", "Name": "x"}))
        self.assertTrue(self.dal.upsert("Codes", "Code", {"Code": "a", "Name": "y"}))
        rows = self.dal.table_data('SELECT * FROM "Codes"').as_dicts()
        self.assertEqual(rows, [{"Code": "a", "Name": "y"}])

        self.assertTrue(self.dal.upsert("Codes", "Code", {"Code": "b"}))
        self.assertFalse(self.dal.upsert("Codes", "Code", {"Code": "b"}))
        self.assertEqual(self.dal.count("Codes"), 2)

    def test_upsert_conflict_clause_needs_unique_key(self) -> None:
        self.dal.execute('CREATE TABLE "Codes" ("Code" TEXT, "Name" TEXT)')
        with self.assertRaises(StoreError):
            self.dal.upsert("Codes", "Code", {"Code": "a", "Name": "x"}, on_conflict=True)

        self.assertTrue(
            self.dal.upsert("Users", "Id", {"Id": 2, "First_Name": "Rob", "Last_Name": "S", "Age": 26, "Balance": 2}, on_conflict=True)
        )
        self.assertEqual(self.dal.get_by_id("Users", 2)["First_Name"], "Rob")

    def test_soft_delete_and_restore_are_idempotent(self) -> None:
        for _ in range(2):
            self.assertTrue(self.dal.soft_delete("Users", 2))
        self.assertEqual(self.dal.get_by_id("Users", 2)["IsDeleted"], 1)

        for _ in range(2):
            self.assertTrue(self.dal.restore("Users", 2))
        self.assertEqual(self.dal.get_by_id("Users", 2)["IsDeleted"], 0)

    def test_soft_delete_and_restore(self) -> None:
        self.assertTrue(self.dal.soft_delete("Users", 2))
        self.assertEqual(self.dal.get_by_id("Users", 2)["IsDeleted"], 1)
        self.assertTrue(self.dal.restore("Users", 2))
        self.assertEqual(self.dal.get_by_id("Users", 2)["IsDeleted"], 0)
        self.assertFalse(self.dal.soft_delete("Users", 99))

    def test_touch_sets_current_timestamp(self) -> None:
        self.assertIsNone(self.dal.get_by_id("Users", 3)["UpdatedAt"])
        self.assertTrue(self.dal.touch("Users", 3))
        self.assertIsNotNone(self.dal.get_by_id("Users", 3)["UpdatedAt"])


class TransactionFacadeTests(DataAccessTestCase):
    def test_batch_commits(self) -> None:
        result = self.dal.execute_transaction(
            self.dal.builder.delete("Users", "Id", 1),
            ('UPDATE "Users" SET "Age" = :age WHERE "Id" = :id', {"age": 99, "id": 2}),
        )
        self.assertTrue(result)
        self.assertEqual(self.dal.count("Users"), 4)
        self.assertEqual(self.dal.max("Users", "Age"), 99)

    def test_failing_batch_rolls_back(self) -> None:
        result = self.dal.execute_transaction(
            [
                'DELETE FROM "Users"',
                'INSERT INTO "Users" ("Id") VALUES (1)',
            ]
        )
        self.assertFalse(result)
        self.assertEqual(self.dal.count("Users"), 5)

    def test_unit_of_work(self) -> None:
        def retire_oldest(tx) -> bool:  # noqa: ANN001
            oldest = tx.scalar('SELECT "Id" FROM "Users" ORDER BY "Age" DESC LIMIT 1')
            return tx.execute('DELETE FROM "Users" WHERE "Id" = :id', {"id": oldest}) == 1

        self.assertTrue(self.dal.execute_transaction(retire_oldest))
        self.assertIsNone(self.dal.get_by_id("Users", 3))
        self.assertFalse(self.dal.execute_transaction(lambda tx: tx.execute('DELETE FROM "Users"') == 0))
        self.assertEqual(self.dal.count("Users"), 4)


class TypedQueryTests(DataAccessTestCase):
    def test_query_single_maps_types(self) -> None:
        user = self.dal.query_single(User, 'SELECT * FROM "Users" WHERE "Id" = :id', {"id": 1})
        self.assertEqual(user, USERS[0])
        self.assertIsInstance(user.Balance, Decimal)
        self.assertEqual(user.Joined, date(2024, 1, 15))
        self.assertIsNone(self.dal.query_single(User, 'SELECT * FROM "Users" WHERE "Id" = 99'))

    def test_query_list(self) -> None:
        users = self.dal.query_list(User, 'SELECT * FROM "Users" ORDER BY "Id"')
        self.assertEqual([user.First_Name for user in users], ["Ann", "Bob", "Cara", "DANA", "Eve"])
        self.assertIsNone(users[1].Joined)


class RetryFacadeTests(DataAccessTestCase):
    def test_execute_with_retry_uses_policy(self) -> None:
        sleeps: list = []
        self.dal.retry_policy = RetryPolicy(max_attempts=2, sleep=sleeps.append)
        attempts: list = []

        def flaky() -> int:
            attempts.append(1)
            if len(attempts) == 1:
                raise TransientError("database is locked")
            return self.dal.count("Users")

        with self.assertLogs("mini_dal.core.retry", level="WARNING"):
            self.assertEqual(self.dal.execute_with_retry(flaky), 5)
        self.assertEqual(sleeps, [0.2])


class LifecycleTests(unittest.TestCase):
    def test_from_url_context_manager(self) -> None:
        with DataAccess.from_url("sqlite://:memory:") as dal:
            self.assertTrue(dal.ping())
            dal.execute("CREATE TABLE t (Id INTEGER PRIMARY KEY)")
            self.assertTrue(dal.save("t", {"Id": 1}))
        self.assertTrue(dal.db.closed)
        dal.close()


if __name__ == "__main__":
    unittest.main()
