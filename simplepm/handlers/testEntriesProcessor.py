#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: testEntriesProcessor.py

    Description:
        Integration tests for the three-phase entry synchronization over an
        SQLite-backed store: checklist ordering, update-list resolution and
        ownership checks, and batch commits with partial failures.
"""


import os
import shutil
import sqlite3
import tempfile
import unittest
from simplepm.database.database_object import Database
from simplepm.database.sync_cache import SyncCache
from simplepm.database.account_table import AccountTable
from simplepm.database.entry_table import EntryTable
from simplepm.database.models import Account, Entry
from simplepm.handlers.entries_processor import EntriesProcessor
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
from simplepm.utilities.audit_log import AuditLog
import simplepm.constants as CONSTANTS


def sqlite_factory(path: str):

    def _connect():
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    return _connect


def entry(entry_id: str, account_id: str = "acc-1", name: str = "mail", version: int = 0) -> Entry:
    return Entry(entry_id=entry_id, account_id=account_id, version=version, name=name, url="https://example.org", login="me", password="opaque")



class TestEntriesProcessor(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        db = Database(connection_factory=sqlite_factory(os.path.join(self.tmpdir, "simplepm.db")), paramstyle="qmark")
        cache = SyncCache()
        accounts = AccountTable(db, cache)
        self.entries = EntryTable(db, cache)

        accounts.create(Account(account_id="acc-1", login="alice", password="h", salt="s"))
        accounts.create(Account(account_id="acc-2", login="bob", password="h", salt="s"))

        self.audit_path = os.path.join(self.tmpdir, "audit.log")
        self.processor = EntriesProcessor(self.entries, AuditLog(self.audit_path))


    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)


    ################################################################################################
    # Phase 1
    ################################################################################################

    """
        The checklist is sorted by name; equal names keep a stable relative order.
    """
    def test_checklist_sorted_by_name(self):

        self.entries.create(entry("e1", name="zeta", version=3))
        self.entries.create(entry("e2", name="alpha", version=1))
        self.entries.create(entry("e3", name="mail", version=7))
        self.entries.create(entry("e4", account_id="acc-2", name="aaa"))

        checklist = self.processor.get_checklist("acc-1")

        self.assertEqual([{"id": "e2", "version": 1}, {"id": "e3", "version": 7}, {"id": "e1", "version": 3}], checklist)


    """
        Entries without a name sort first.
    """
    def test_checklist_unnamed_first(self):

        self.entries.create(entry("e1", name="bank"))
        self.entries.create(entry("e2", name=None))

        self.assertEqual(["e2", "e1"], [item["id"] for item in self.processor.get_checklist("acc-1")])


    """
        An account without entries has an empty checklist; an unknown account is NOT_FOUND.
    """
    def test_checklist_empty_and_unknown(self):

        self.assertEqual([], self.processor.get_checklist("acc-1"))

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.get_checklist("acc-404")

        self.assertEqual(ApplicationCodes.NOT_FOUND, ctx.exception.application_code)
        self.assertEqual("account_id", ctx.exception.field)


    ################################################################################################
    # Phase 2
    ################################################################################################

    """
        Requested entries come back in request order; unknown IDs are skipped.
    """
    def test_update_list_order_and_unknown(self):

        self.entries.create(entry("e1", name="a"))
        self.entries.create(entry("e2", name="b"))

        result = self.processor.get_update_list("acc-1", ["e2", "missing", "e1"])

        self.assertEqual(["e2", "e1"], [item.entry_id for item in result])


    """
        Entries written after the snapshot are still found through the backing store.
    """
    def test_update_list_falls_back_to_store(self):

        self.processor.get_checklist("acc-1")
        self.entries.create(entry("late"))

        result = self.processor.get_update_list("acc-1", ["late"])

        self.assertEqual(["late"], [item.entry_id for item in result])


    """
        Asking for another account's entry is Forbidden.
    """
    def test_update_list_foreign_entry(self):

        self.entries.create(entry("theirs", account_id="acc-2"))

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.get_update_list("acc-1", ["theirs"])

        self.assertEqual(ApplicationCodes.PERMISSION_DENIED, ctx.exception.application_code)
        self.assertEqual(HTTPCodes.FORBIDDEN, ctx.exception.http_code)


    """
        Phase 2 does not depend on phase 1 having run on the same instance.
    """
    def test_update_list_without_checklist(self):

        self.entries.create(entry("e1"))

        fresh = EntriesProcessor(self.entries)

        self.assertEqual(["e1"], [item.entry_id for item in fresh.get_update_list("acc-1", ["e1"])])


    ################################################################################################
    # Phase 3
    ################################################################################################

    """
        An empty batch succeeds without touching anything.
    """
    def test_commit_empty(self):

        self.assertTrue(self.processor.try_commit_changes("acc-1", []))


    """
        Create, update and delete all applied; the snapshot reflects the batch.
    """
    def test_commit_all_succeed(self):

        self.entries.create(entry("b", name="old", version=2))
        self.entries.create(entry("c"))
        self.processor.get_checklist("acc-1")

        changes = [
            (entry("a", name="new"), CONSTANTS.SYNC_OPERATION_CREATE),
            (entry("b", name="renamed", version=1), CONSTANTS.SYNC_OPERATION_UPDATE),
            (entry("c"), CONSTANTS.SYNC_OPERATION_DELETE),
        ]

        self.assertTrue(self.processor.try_commit_changes("acc-1", changes))

        entry_set = self.entries.retrieve_all("acc-1")
        self.assertEqual({"a", "b"}, set(entry_set))
        self.assertEqual("renamed", entry_set["b"].name)
        self.assertEqual(3, entry_set["b"].version)


    """
        A missing update target makes the batch partial but does not stop the rest.
    """
    def test_commit_partial(self):

        self.entries.create(entry("c"))

        changes = [
            (entry("a"), CONSTANTS.SYNC_OPERATION_CREATE),
            (entry("b-missing"), CONSTANTS.SYNC_OPERATION_UPDATE),
            (entry("c"), CONSTANTS.SYNC_OPERATION_DELETE),
        ]

        self.assertFalse(self.processor.try_commit_changes("acc-1", changes))

        self.assertEqual({"a"}, set(self.entries.retrieve_all("acc-1")))


    """
        Missing update and delete targets both fail while the create still lands in the checklist.
    """
    def test_commit_partial_missing_targets(self):

        changes = [
            (entry("a"), CONSTANTS.SYNC_OPERATION_CREATE),
            (entry("b-missing"), CONSTANTS.SYNC_OPERATION_UPDATE),
            (entry("c-missing"), CONSTANTS.SYNC_OPERATION_DELETE),
        ]

        self.assertFalse(self.processor.try_commit_changes("acc-1", changes))

        self.assertEqual([{"id": "a", "version": 0}], self.processor.get_checklist("acc-1"))


    """
        Committed entries are copied; the caller's objects keep their owner and ID.
    """
    def test_commit_leaves_submitted_entries_untouched(self):

        foreign = entry("x", account_id="acc-2")
        unnamed = entry("", account_id="acc-2")

        self.assertTrue(self.processor.try_commit_changes("acc-1", [
            (foreign, CONSTANTS.SYNC_OPERATION_CREATE),
            (unnamed, CONSTANTS.SYNC_OPERATION_CREATE),
        ]))

        self.assertEqual(("x", "acc-2"), (foreign.entry_id, foreign.account_id))
        self.assertEqual(("", "acc-2"), (unnamed.entry_id, unnamed.account_id))
        self.assertEqual(2, len(self.entries.retrieve_all("acc-1")))


    """
        Duplicate IDs and foreign entries count as failures, never as exceptions.
    """
    def test_commit_violations_counted(self):

        self.entries.create(entry("dup"))
        self.entries.create(entry("theirs", account_id="acc-2", name="keep"))

        changes = [
            (entry("dup"), CONSTANTS.SYNC_OPERATION_CREATE),
            (entry("theirs", name="stolen"), CONSTANTS.SYNC_OPERATION_UPDATE),
            (entry("theirs"), CONSTANTS.SYNC_OPERATION_DELETE),
            (entry("ok"), CONSTANTS.SYNC_OPERATION_CREATE),
        ]

        self.assertFalse(self.processor.try_commit_changes("acc-1", changes))

        self.assertEqual("keep", self.entries.retrieve_by_id("theirs").name)
        self.assertEqual("acc-2", self.entries.retrieve_by_id("theirs").account_id)
        self.assertIn("ok", self.entries.retrieve_all("acc-1"))

        with open(self.audit_path, encoding="utf-8") as f:
            self.assertIn("sync_item_rejected", f.read())


    """
        Entries submitted for another owner are stored under the caller's account.
    """
    def test_commit_forces_owner(self):

        self.assertTrue(self.processor.try_commit_changes("acc-1", [(entry("x", account_id="acc-2"), CONSTANTS.SYNC_OPERATION_CREATE)]))

        self.assertEqual("acc-1", self.entries.retrieve_by_id("x").account_id)


    """
        Creates without an ID get a fresh one; unknown tags count as failures.
    """
    def test_commit_generated_id_and_unknown_tag(self):

        self.assertFalse(self.processor.try_commit_changes("acc-1", [
            (entry(""), CONSTANTS.SYNC_OPERATION_CREATE),
            (entry("y"), "merge"),
        ]))

        entry_set = self.entries.retrieve_all("acc-1")
        self.assertEqual(1, len(entry_set))
        self.assertEqual(32, len(next(iter(entry_set))))


    """
        Committing for an unknown account cannot refresh its snapshot.
    """
    def test_commit_unknown_account(self):

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.try_commit_changes("acc-404", [(entry("z", account_id="acc-404"), CONSTANTS.SYNC_OPERATION_CREATE)])

        self.assertEqual(ApplicationCodes.CACHE_INCONSISTENCY, ctx.exception.application_code)


if __name__ == "__main__":
    unittest.main()
