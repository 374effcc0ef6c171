#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: sync_cache.py

    Description:
        In-process, time-limited snapshot cache sitting in front of the SimplePM
        account and entry tables. Values are serialized to JSON when written and
        deserialized on every read, so cached and freshly loaded values always
        pass through the same path. Each write creates a new snapshot stored
        under "<key>_<capture timestamp>" with its own expiry; the logical key
        points at the most recent snapshot. Older snapshots for the same key
        may coexist until they expire. The cache is never the source of truth.
        All state is guarded by an internal RLock.
"""


import threading
import typing
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.handlers.sanitization_validation as VALIDATION
import simplepm.constants as CONSTANTS


####################################################################################################
# Snapshot Data Object
####################################################################################################

"""
    One stored snapshot.

    payload      : Compact UTF-8 JSON of the cached value
    captured_at  : UTC datetime of the write
    expires_at   : UTC datetime after which the snapshot is dead
"""
@dataclass
class CacheSnapshot:

    payload: bytes
    captured_at: datetime
    expires_at: datetime


####################################################################################################
# SNAPSHOT STORE
####################################################################################################

class SyncCache:

    """
        Initialize an empty SyncCache.

        @param clock (callable|None): Zero-argument callable returning an aware UTC datetime.
        @ensures Snapshot dictionaries and lock are ready.
    """
    def __init__(self, clock: typing.Optional[typing.Callable[[], datetime]] = None) -> None:

        self._lock = threading.RLock()

        # (namespace, key) -> {snapshot_key: CacheSnapshot}
        self._snapshots: typing.Dict[typing.Tuple[str, str], typing.Dict[str, CacheSnapshot]] = {}

        # (namespace, key) -> snapshot_key of the newest snapshot
        self._latest: typing.Dict[typing.Tuple[str, str], str] = {}

        self._clock = clock or (lambda: datetime.now(timezone.utc))


    def _validate_key(self, namespace: str, key: str) -> typing.Tuple[str, str]:
        VALIDATION.validate_string(namespace, ApplicationCodes.CACHE_ERROR, "namespace")
        VALIDATION.validate_string(key, ApplicationCodes.CACHE_ERROR, "key")
        return namespace, key



    """
        Store a new snapshot of a value and make it the current one for its key.

        @param namespace (str): Cache namespace, e.g. 'accounts' or 'entries'.
        @param key (str): Logical key inside the namespace.
        @param value (dict|list): JSON-serializable value.
        @param ttl_seconds (int): Lifetime of this snapshot.
        @return str: The snapshot key "<key>_<capture timestamp>".
        @ensures The next get_record for this key returns the value until the snapshot expires.
    """
    def set_record(self, namespace: str, key: str, value: typing.Any, ttl_seconds: int) -> str:
        try:
            slot = self._validate_key(namespace, key)

            if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
                raise SimplePMError(ApplicationCodes.CACHE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "ttl_seconds must be a positive integer", "ttl_seconds")

            # Serialize outside the lock
            payload = VALIDATION.encode_value_to_json_bytes(value)

            with self._lock:
                now = self._clock()
                snapshot_key = f"{key}_{now.strftime(CONSTANTS._SNAPSHOT_TIMESTAMP_FORMAT)}"

                snapshot = CacheSnapshot(payload=payload, captured_at=now, expires_at=now + timedelta(seconds=ttl_seconds))

                self._snapshots.setdefault(slot, {})[snapshot_key] = snapshot
                self._latest[slot] = snapshot_key

            return snapshot_key

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.CACHE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to write cache snapshot", "sync_cache")



    """
        Read the current snapshot for a key.

        @param namespace (str): Cache namespace.
        @param key (str): Logical key.
        @return dict|list|None: Deserialized value, or None on a miss or an expired snapshot.
    """
    def get_record(self, namespace: str, key: str) -> typing.Any:
        try:
            slot = self._validate_key(namespace, key)

            with self._lock:
                snapshot_key = self._latest.get(slot)
                if snapshot_key is None:
                    return None

                snapshot = self._snapshots.get(slot, {}).get(snapshot_key)

                # Expired or purged snapshots count as a miss
                if snapshot is None or self._clock() >= snapshot.expires_at:
                    self._latest.pop(slot, None)
                    return None

                payload = snapshot.payload

            return VALIDATION.decode_json_bytes_to_value(payload)

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.CACHE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to read cache snapshot", "sync_cache")



    """
        Drop every snapshot stored for a key.

        @return int: Number of snapshots removed.
    """
    def invalidate(self, namespace: str, key: str) -> int:
        try:
            slot = self._validate_key(namespace, key)

            with self._lock:
                self._latest.pop(slot, None)
                return len(self._snapshots.pop(slot, {}))

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.CACHE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to invalidate cache key", "sync_cache")



    """
        Purge every expired snapshot in every namespace.

        @return int: Number of snapshots removed.
        @ensures Keys left without snapshots lose their pointer.
    """
    def cleanup_expired(self) -> int:
        try:
            removed = 0

            with self._lock:
                now = self._clock()

                # Iterate through a copy of the slots
                for slot in list(self._snapshots.keys()):
                    bucket = self._snapshots[slot]

                    for snapshot_key in [k for k, snap in bucket.items() if now >= snap.expires_at]:
                        del bucket[snapshot_key]
                        removed += 1

                    if not bucket:
                        del self._snapshots[slot]

                    if self._latest.get(slot) not in bucket:
                        self._latest.pop(slot, None)

            return removed

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.CACHE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed during cache cleanup", "sync_cache")



    """
        Count stored snapshots, live or expired.

        @param namespace (str|None): Restrict the count to one namespace.
        @param key (str|None): Restrict the count to one logical key (requires namespace).
        @return int: Number of snapshots.
    """
    def snapshot_count(self, namespace: typing.Optional[str] = None, key: typing.Optional[str] = None) -> int:
        with self._lock:
            return sum(
                len(bucket) for (ns, k), bucket in self._snapshots.items()
                if (namespace is None or ns == namespace) and (key is None or k == key)
            )
