#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: testSyncCache.py

    Description:
        Unit tests for the SyncCache snapshot store. A controllable clock drives
        expiry so TTL behavior, coexisting snapshots, invalidation and the
        background purge are checked without sleeping.
"""


import unittest
from datetime import datetime, timezone, timedelta
from simplepm.database.sync_cache import SyncCache
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes


"""
    Manually advanced UTC clock.
"""
class FakeClock:

    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)



class TestSyncCache(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.cache = SyncCache(clock=self.clock)


    """
        A stored value is read back equal, and the snapshot key carries the capture time.
    """
    def test_set_and_get(self):

        snapshot_key = self.cache.set_record("accounts", "alice", {"login": "alice", "n": 1}, 60)

        self.assertTrue(snapshot_key.startswith("alice_20240101_120000"))
        self.assertEqual({"login": "alice", "n": 1}, self.cache.get_record("accounts", "alice"))


    """
        Misses return None; namespaces do not collide.
    """
    def test_miss_and_namespaces(self):

        self.cache.set_record("accounts", "k", {"a": 1}, 60)

        self.assertIsNone(self.cache.get_record("accounts", "other"))
        self.assertIsNone(self.cache.get_record("entries", "k"))


    """
        A snapshot stops being served once its TTL has elapsed.
    """
    def test_expiry(self):

        self.cache.set_record("accounts", "alice", {"v": 1}, 60)

        self.clock.advance(59)
        self.assertEqual({"v": 1}, self.cache.get_record("accounts", "alice"))

        self.clock.advance(1)
        self.assertIsNone(self.cache.get_record("accounts", "alice"))


    """
        The newest snapshot is served while older ones coexist until they expire.
    """
    def test_snapshots_coexist(self):

        self.cache.set_record("entries", "acc", {"v": 1}, 60)
        self.clock.advance(1)
        self.cache.set_record("entries", "acc", {"v": 2}, 60)

        self.assertEqual({"v": 2}, self.cache.get_record("entries", "acc"))
        self.assertEqual(2, self.cache.snapshot_count("entries", "acc"))

        self.clock.advance(59.5)
        self.assertEqual(1, self.cache.cleanup_expired())
        self.assertEqual({"v": 2}, self.cache.get_record("entries", "acc"))


    """
        Invalidation drops every snapshot of a key.
    """
    def test_invalidate(self):

        self.cache.set_record("accounts", "alice", {"v": 1}, 60)
        self.clock.advance(1)
        self.cache.set_record("accounts", "alice", {"v": 2}, 60)

        self.assertEqual(2, self.cache.invalidate("accounts", "alice"))
        self.assertIsNone(self.cache.get_record("accounts", "alice"))
        self.assertEqual(0, self.cache.invalidate("accounts", "alice"))


    """
        cleanup_expired purges across namespaces and keeps live snapshots.
    """
    def test_cleanup_expired(self):

        self.cache.set_record("accounts", "alice", {"v": 1}, 60)
        self.cache.set_record("entries", "acc", {"v": 1}, 1800)

        self.clock.advance(61)

        self.assertEqual(1, self.cache.cleanup_expired())
        self.assertEqual(0, self.cache.snapshot_count("accounts"))
        self.assertEqual(1, self.cache.snapshot_count("entries"))
        self.assertEqual(0, self.cache.cleanup_expired())


    """
        Lists round-trip as lists, and values are copies rather than shared objects.
    """
    def test_values_are_deserialized_copies(self):

        value = {"ids": ["a", "b"]}
        self.cache.set_record("entries", "acc", value, 60)
        value["ids"].append("c")

        first = self.cache.get_record("entries", "acc")
        first["ids"].append("d")

        self.assertEqual({"ids": ["a", "b"]}, self.cache.get_record("entries", "acc"))


    """
        Bad keys, bad TTLs and unserializable values raise CACHE_ERROR.
    """
    def test_invalid_arguments(self):

        with self.assertRaises(SimplePMError) as ctx:
            self.cache.set_record("accounts", "", {"v": 1}, 60)
        self.assertEqual(ApplicationCodes.CACHE_ERROR, ctx.exception.application_code)

        with self.assertRaises(SimplePMError) as ctx:
            self.cache.set_record("accounts", "alice", {"v": 1}, 0)
        self.assertEqual(ApplicationCodes.CACHE_ERROR, ctx.exception.application_code)

        with self.assertRaises(SimplePMError):
            self.cache.set_record("accounts", "alice", {"v": object()}, 60)


if __name__ == "__main__":
    unittest.main()
