#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: testDatabase.py

    Description:
        Integration and unit tests for the SimplePM database layer. Verifies that
        Database, AccountTable and EntryTable work together over an SQLite file
        injected through the connection factory: account lifecycle, read-through
        snapshots, entry ownership in SQL, the version rule on update, orphan
        rejection, and cascading deletes. Includes credential-file validation.
"""


import json
import os
import shutil
import sqlite3
import tempfile
import unittest
from unittest import mock
import psycopg2.extras
from simplepm.database.database_object import Database
from simplepm.database.sync_cache import SyncCache
from simplepm.database.account_table import AccountTable
from simplepm.database.entry_table import EntryTable
from simplepm.database.models import Account, Entry, MasterCredential
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.constants as CONSTANTS


"""
    Build a connection factory for an SQLite file with foreign keys enforced.
"""
def sqlite_factory(path: str):

    def _connect():
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    return _connect


def make_account(login: str = "alice", account_id: str = "acc-1") -> Account:
    return Account(account_id=account_id, login=login, password="hash", salt="c2FsdHNhbHRzYWx0c2FsdA")


def make_entry(entry_id: str, account_id: str = "acc-1", name: str = "mail", version: int = 0) -> Entry:
    return Entry(entry_id=entry_id, account_id=account_id, version=version, name=name, url="https://example.org", login="me", password="opaque")



####################################################################################################
#                                         Database Tests
####################################################################################################


"""
    Exercises low-level Database helper behavior, including credential loading and
    SQL/parameter validation, without depending on the tables.
"""
class TestDatabaseCore(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _write_credentials(self, payload) -> str:
        path = os.path.join(self.tmpdir, "database_credentials.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write(payload if isinstance(payload, str) else json.dumps(payload))
        return path


    """
        A missing credentials file must be rejected with INVALID_PATH.
    """
    def test_missing_credentials_file(self):

        with self.assertRaises(SimplePMError) as ctx:
            Database(credentials_path=os.path.join(self.tmpdir, "nope.json"))

        self.assertEqual(ApplicationCodes.INVALID_PATH, ctx.exception.application_code)


    """
        Credentials that are not JSON must be rejected with MALFORMED_JSON.
    """
    def test_credentials_file_not_json(self):

        path = self._write_credentials("database=simplepm")

        with self.assertRaises(SimplePMError) as ctx:
            Database(credentials_path=path)

        self.assertEqual(ApplicationCodes.MALFORMED_JSON, ctx.exception.application_code)


    """
        Every required credential field must be a non-empty string.
    """
    def test_credentials_missing_password(self):

        path = self._write_credentials({"database": "simplepm", "user": "simplepm"})

        with self.assertRaises(SimplePMError) as ctx:
            Database(credentials_path=path)

        self.assertEqual("password", ctx.exception.field)


    """
        Valid credentials populate the connection parameters (no connection is opened).
    """
    def test_credentials_loaded(self):

        path = self._write_credentials({"database": "simplepm", "user": "pm", "password": "pw", "host": "db", "port": 5433})

        db = Database(credentials_path=path)

        self.assertEqual("simplepm", db._database)
        self.assertEqual("db", db._host)
        self.assertEqual(5433, db._port)


    """
        Unsupported paramstyles and non-callable factories are rejected.
    """
    def test_invalid_constructor_arguments(self):

        with self.assertRaises(SimplePMError):
            Database(connection_factory=lambda: None, paramstyle="named")

        with self.assertRaises(SimplePMError):
            Database(connection_factory="not callable", paramstyle="qmark")


    """
        Statements must be non-empty strings and parameters a tuple.
    """
    def test_statement_validation(self):

        db = Database(connection_factory=sqlite_factory(os.path.join(self.tmpdir, "t.db")), paramstyle="qmark")

        with self.assertRaises(SimplePMError):
            db.execute_statment("   ")

        with self.assertRaises(SimplePMError):
            db.get_row("SELECT 1;", ["not", "a", "tuple"])


    """
        Rows come back as dictionaries and the affected row count is returned.
    """
    def test_rows_as_dicts_and_rowcount(self):

        db = Database(connection_factory=sqlite_factory(os.path.join(self.tmpdir, "t.db")), paramstyle="qmark")

        db.execute_statment("CREATE TABLE kv (k TEXT PRIMARY KEY, v TEXT);")
        self.assertEqual(1, db.execute_statment("INSERT INTO kv (k, v) VALUES (%s, %s);", ("a", "1")))
        self.assertEqual(1, db.execute_statment("INSERT INTO kv (k, v) VALUES (%s, %s);", ("b", "2")))

        self.assertEqual({"k": "a", "v": "1"}, db.get_row("SELECT k, v FROM kv WHERE k = %s;", ("a",)))
        self.assertIsNone(db.get_row("SELECT k, v FROM kv WHERE k = %s;", ("zzz",)))
        self.assertEqual(2, len(db.get_all_matching_rows("SELECT k, v FROM kv;")))
        self.assertEqual(0, db.execute_statment("DELETE FROM kv WHERE k = %s;", ("zzz",)))


    """
        Against PostgreSQL, SELECTs open a RealDictCursor so rows arrive keyed by column.
    """
    def test_postgres_rows_keyed_by_column(self):

        path = self._write_credentials({"database": "simplepm", "user": "pm", "password": "pw"})
        db = Database(credentials_path=path)

        conn = mock.MagicMock()
        cursor = conn.cursor.return_value
        cursor.fetchone.return_value = {"k": "a", "v": "1"}
        cursor.fetchall.return_value = [{"k": "a", "v": "1"}, {"k": "b", "v": "2"}]

        with mock.patch("psycopg2.connect", return_value=conn) as connect:
            self.assertEqual({"k": "a", "v": "1"}, db.get_row("SELECT k, v FROM kv WHERE k = %s;", ("a",)))
            self.assertEqual(["a", "b"], [row["k"] for row in db.get_all_matching_rows("SELECT k, v FROM kv;")])

        self.assertEqual(2, connect.call_count)
        for call in conn.cursor.call_args_list:
            self.assertIs(psycopg2.extras.RealDictCursor, call.kwargs["cursor_factory"])
        cursor.execute.assert_any_call("SELECT k, v FROM kv WHERE k = %s;", ("a",))


    """
        Integrity errors surface as CONSTRAINT_VIOLATION (409); other driver errors as 500.
    """
    def test_error_mapping(self):

        db = Database(connection_factory=sqlite_factory(os.path.join(self.tmpdir, "t.db")), paramstyle="qmark")
        db.execute_statment("CREATE TABLE kv (k TEXT PRIMARY KEY, v TEXT);")
        db.execute_statment("INSERT INTO kv (k, v) VALUES (%s, %s);", ("a", "1"))

        with self.assertRaises(SimplePMError) as ctx:
            db.execute_statment("INSERT INTO kv (k, v) VALUES (%s, %s);", ("a", "2"))
        self.assertEqual(ApplicationCodes.CONSTRAINT_VIOLATION, ctx.exception.application_code)
        self.assertEqual(HTTPCodes.CONFLICT, ctx.exception.http_code)

        with self.assertRaises(SimplePMError) as ctx:
            db.execute_statment("INSERT INTO missing_table (k) VALUES (%s);", ("a",))
        self.assertEqual(ApplicationCodes.INTERNAL_SERVER_ERROR, ctx.exception.application_code)



####################################################################################################
#                                         Table Tests
####################################################################################################


"""
    Base fixture: a fresh SQLite file with both tables and a shared SyncCache.
"""
class TableTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.db = Database(connection_factory=sqlite_factory(os.path.join(self.tmpdir, "simplepm.db")), paramstyle="qmark")
        self.cache = SyncCache()
        self.accounts = AccountTable(self.db, self.cache)
        self.entries = EntryTable(self.db, self.cache)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)



class TestAccountTable(TableTestCase):

    """
        Create then retrieve an account; the read populates the snapshot.
    """
    def test_create_and_retrieve(self):

        self.accounts.create(make_account())

        account = self.accounts.retrieve("alice")

        self.assertEqual("acc-1", account.account_id)
        self.assertIsNone(account.master)
        self.assertEqual(1, self.cache.snapshot_count(CONSTANTS.CACHE_NAMESPACE_ACCOUNTS, "alice"))


    """
        Unknown logins resolve to None and leave no snapshot behind.
    """
    def test_retrieve_unknown_login(self):

        self.assertIsNone(self.accounts.retrieve("nobody"))
        self.assertEqual(0, self.cache.snapshot_count(CONSTANTS.CACHE_NAMESPACE_ACCOUNTS))


    """
        Duplicate logins are rejected with CONSTRAINT_VIOLATION.
    """
    def test_duplicate_login(self):

        self.accounts.create(make_account())

        with self.assertRaises(SimplePMError) as ctx:
            self.accounts.create(make_account(account_id="acc-2"))

        self.assertEqual(ApplicationCodes.CONSTRAINT_VIOLATION, ctx.exception.application_code)


    """
        Writes never touch the cache: a stale snapshot is served until refreshed.
    """
    def test_update_then_refresh(self):

        account = self.accounts.create(make_account())
        self.accounts.retrieve("alice")

        account.master = MasterCredential.hashed("master-hash", "master-salt")
        self.accounts.update(account)

        self.assertIsNone(self.accounts.retrieve("alice").master)

        self.assertTrue(self.accounts.refresh_cache("alice"))
        self.assertEqual("master-hash", self.accounts.retrieve("alice").master.value)


    """
        A pending operation code survives the round trip through the row and the snapshot.
    """
    def test_pending_master_roundtrip(self):

        account = self.accounts.create(make_account())
        account.master = MasterCredential.pending_operation("code-123")
        self.accounts.update(account)
        self.accounts.refresh_cache("alice")

        master = self.accounts.retrieve("alice").master

        self.assertTrue(master.is_pending)
        self.assertEqual("code-123", master.value)
        self.assertFalse(master.is_expired())


    """
        Updating or deleting a missing account is a STORE_INCONSISTENCY.
    """
    def test_unexpected_row_counts(self):

        with self.assertRaises(SimplePMError) as ctx:
            self.accounts.update(make_account())
        self.assertEqual(ApplicationCodes.STORE_INCONSISTENCY, ctx.exception.application_code)

        with self.assertRaises(SimplePMError) as ctx:
            self.accounts.delete("acc-404")
        self.assertEqual(ApplicationCodes.STORE_INCONSISTENCY, ctx.exception.application_code)


    """
        update_login moves the row; the old login stops resolving once invalidated.
    """
    def test_update_login(self):

        self.accounts.create(make_account())
        self.accounts.retrieve("alice")

        self.accounts.update_login("acc-1", "alicia")
        self.accounts.invalidate_cache("alice")

        self.assertIsNone(self.accounts.retrieve("alice"))
        self.assertEqual("acc-1", self.accounts.retrieve("alicia").account_id)


    """
        Logins must be non-empty and bounded.
    """
    def test_invalid_login(self):

        with self.assertRaises(SimplePMError) as ctx:
            self.accounts.retrieve("   ")
        self.assertEqual(ApplicationCodes.INVALID_LOGIN, ctx.exception.application_code)

        with self.assertRaises(SimplePMError) as ctx:
            self.accounts.retrieve("a" * (CONSTANTS._MAX_LOGIN_LEN + 1))
        self.assertEqual(ApplicationCodes.INVALID_LENGTH, ctx.exception.application_code)



class TestEntryTable(TableTestCase):

    def setUp(self):
        super().setUp()
        self.accounts.create(make_account())
        self.accounts.create(make_account(login="bob", account_id="acc-2"))


    """
        Entries of an account are returned keyed by ID; unknown accounts give None.
    """
    def test_create_and_retrieve_all(self):

        self.assertTrue(self.entries.create(make_entry("e1")))
        self.assertTrue(self.entries.create(make_entry("e2", name="bank")))
        self.assertTrue(self.entries.create(make_entry("e3", account_id="acc-2")))

        entry_set = self.entries.retrieve_all("acc-1")

        self.assertEqual({"e1", "e2"}, set(entry_set))
        self.assertEqual("bank", entry_set["e2"].name)
        self.assertEqual({"e3"}, set(self.entries.retrieve_all("acc-2")))
        self.assertIsNone(self.entries.retrieve_all("acc-404"))


    """
        An account without entries has an empty entry set, not None.
    """
    def test_empty_entry_set(self):

        self.assertEqual({}, self.entries.retrieve_all("acc-1"))


    """
        Entries referencing an unknown account are rejected.
    """
    def test_orphan_rejected(self):

        with self.assertRaises(SimplePMError) as ctx:
            self.entries.create(make_entry("e1", account_id="acc-404"))

        self.assertEqual(ApplicationCodes.CONSTRAINT_VIOLATION, ctx.exception.application_code)


    """
        Duplicate entry IDs are rejected.
    """
    def test_duplicate_entry_id(self):

        self.entries.create(make_entry("e1"))

        with self.assertRaises(SimplePMError) as ctx:
            self.entries.create(make_entry("e1"))

        self.assertEqual(ApplicationCodes.CONSTRAINT_VIOLATION, ctx.exception.application_code)


    """
        The stored version becomes the client's version when ahead, else stored + 1.
    """
    def test_update_version_rule(self):

        self.entries.create(make_entry("e1", version=5))

        self.assertTrue(self.entries.update(make_entry("e1", version=9, name="renamed")))
        stored = self.entries.retrieve_by_id("e1")
        self.assertEqual(9, stored.version)
        self.assertEqual("renamed", stored.name)

        self.assertTrue(self.entries.update(make_entry("e1", version=3)))
        self.assertEqual(10, self.entries.retrieve_by_id("e1").version)

        self.assertTrue(self.entries.update(make_entry("e1", version=10)))
        self.assertEqual(11, self.entries.retrieve_by_id("e1").version)


    """
        Updates and deletes are scoped to the owning account in SQL.
    """
    def test_ownership_enforced(self):

        self.entries.create(make_entry("e1"))

        self.assertFalse(self.entries.update(make_entry("e1", account_id="acc-2", name="stolen")))
        self.assertFalse(self.entries.delete("acc-2", "e1"))

        self.assertEqual("mail", self.entries.retrieve_by_id("e1").name)
        self.assertTrue(self.entries.delete("acc-1", "e1"))
        self.assertIsNone(self.entries.retrieve_by_id("e1"))


    """
        Deleting an account removes its entries.
    """
    def test_cascade_delete(self):

        self.entries.create(make_entry("e1"))
        self.entries.create(make_entry("e2"))
        self.entries.create(make_entry("e3", account_id="acc-2"))

        self.accounts.delete("acc-1")
        self.entries.invalidate_cache("acc-1")

        self.assertIsNone(self.entries.retrieve_by_id("e1"))
        self.assertIsNone(self.entries.retrieve_by_id("e2"))
        self.assertIsNotNone(self.entries.retrieve_by_id("e3"))
        self.assertIsNone(self.entries.retrieve_all("acc-1"))


    """
        The entry set is served from its snapshot until refreshed.
    """
    def test_snapshot_until_refresh(self):

        self.entries.create(make_entry("e1"))
        self.assertEqual({"e1"}, set(self.entries.retrieve_all("acc-1")))

        self.entries.create(make_entry("e2"))
        self.assertEqual({"e1"}, set(self.entries.retrieve_all("acc-1")))

        self.assertTrue(self.entries.refresh_cache("acc-1"))
        self.assertEqual({"e1", "e2"}, set(self.entries.retrieve_all("acc-1")))


if __name__ == "__main__":
    unittest.main()
