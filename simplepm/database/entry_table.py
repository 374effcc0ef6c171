#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: entry_table.py

    Description:
        Handles SimplePM credential entries. Every entry row belongs to exactly
        one account through a foreign key that rejects orphans and cascades on
        account deletion. Create, update and delete report success only when
        exactly one row was affected, and update/delete are scoped to the
        owning account in SQL. The full entry set of an account is read through
        the SyncCache as one {entry_id: entry} snapshot.
"""


import typing
from simplepm.database.database_object import Database
from simplepm.database.sync_cache import SyncCache
from simplepm.database.models import Entry
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.handlers.sanitization_validation as VALIDATION
import simplepm.constants as CONSTANTS


_ENTRY_COLUMNS = "entry_id, account_id, version, name, url, login, password"



class EntryTable:

    """
        Initialize an EntryTable helper bound to a Database and a SyncCache.

        @param database (Database): Shared Database helper.
        @param cache (SyncCache): Snapshot cache for entry sets.
        @require the accounts table already exists (the foreign key references it)
        @ensures The entries table and its account index exist.
    """
    def __init__(self, database: Database, cache: SyncCache) -> None:

        try:
            if not isinstance(database, Database):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "EntryTable requires a Database instance", "database")

            if not isinstance(cache, SyncCache):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "EntryTable requires a SyncCache instance", "cache")

            self._database: Database = database
            self._cache: SyncCache = cache

            self._ensure_table_exists()

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to initialize EntryTable", "entry_table_init")


    """
        Create the entries table if it does not already exist.

        @ensures entries.account_id references accounts(account_id) with ON DELETE CASCADE.
    """
    def _ensure_table_exists(self) -> None:

        try:
            create_entries_sql = """
                CREATE TABLE IF NOT EXISTS entries (
                    entry_id    VARCHAR(64) PRIMARY KEY,
                    account_id  VARCHAR(64) NOT NULL REFERENCES accounts(account_id) ON DELETE CASCADE,
                    version     INTEGER NOT NULL,
                    name        TEXT,
                    url         TEXT,
                    login       TEXT,
                    password    TEXT
                );
            """

            create_index_sql = """
                CREATE INDEX IF NOT EXISTS entries_account_id_idx
                ON entries (account_id);
            """

            self._database.execute_statment(create_entries_sql)
            self._database.execute_statment(create_index_sql)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to ensure entries table exists", "entries")


    def _validate_entry(self, entry: typing.Any) -> Entry:
        if not isinstance(entry, Entry):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "Expected an Entry", "entry")

        VALIDATION.validate_string(entry.entry_id, ApplicationCodes.INVALID_TYPE, "entry_id")
        VALIDATION.validate_string(entry.account_id, ApplicationCodes.INVALID_TYPE, "account_id")
        return entry


    """
        Insert a new entry.

        @param entry (Entry): Entry with its owning account ID set.
        @return bool: True iff exactly one row was inserted.
        @ensures Duplicate IDs and unknown owners raise CONSTRAINT_VIOLATION.
    """
    def create(self, entry: Entry) -> bool:

        try:
            self._validate_entry(entry)

            record = entry.to_record()

            insert_sql = f"""
                INSERT INTO entries ({_ENTRY_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s);
            """

            affected = self._database.execute_statment(insert_sql, tuple(record[c.strip()] for c in _ENTRY_COLUMNS.split(",")))

            return affected == 1

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to create entry", "create_entry")


    """
        Overwrite an entry owned by the entry's account.

        @param entry (Entry): New field values; entry.version is the client's version.
        @return bool: True iff exactly one row was updated.
        @ensures The stored version becomes the client's version when it is ahead, otherwise stored version + 1.
    """
    def update(self, entry: Entry) -> bool:

        try:
            self._validate_entry(entry)

            update_sql = """
                UPDATE entries
                SET version = CASE WHEN %s > version THEN %s ELSE version + 1 END,
                    name = %s,
                    url = %s,
                    login = %s,
                    password = %s
                WHERE entry_id = %s AND account_id = %s;
            """

            affected = self._database.execute_statment(update_sql, (
                entry.version,
                entry.version,
                entry.name,
                entry.url,
                entry.login,
                entry.password,
                entry.entry_id,
                entry.account_id,
            ))

            return affected == 1

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to update entry", "update_entry")


    """
        Delete an entry owned by an account.

        @param account_id (str): Owning account.
        @param entry_id (str): Entry identifier.
        @return bool: True iff exactly one row was deleted.
    """
    def delete(self, account_id: str, entry_id: str) -> bool:

        try:
            VALIDATION.validate_string(account_id, ApplicationCodes.INVALID_TYPE, "account_id")
            VALIDATION.validate_string(entry_id, ApplicationCodes.INVALID_TYPE, "entry_id")

            delete_sql = """
                DELETE FROM entries
                WHERE entry_id = %s AND account_id = %s;
            """

            affected = self._database.execute_statment(delete_sql, (entry_id, account_id))

            return affected == 1

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to delete entry", "delete_entry")


    """
        Load the full entry set of an account through the cache.

        @param account_id (str): Owning account.
        @return dict[str, Entry]|None: Entries keyed by ID, or None when the account does not exist.
        @ensures On a cache miss a fresh snapshot is written and the value is re-read from the cache.
    """
    def retrieve_all(self, account_id: str) -> typing.Optional[typing.Dict[str, Entry]]:

        try:
            VALIDATION.validate_string(account_id, ApplicationCodes.INVALID_TYPE, "account_id")

            records = self._cache.get_record(CONSTANTS.CACHE_NAMESPACE_ENTRIES, account_id)

            if records is None:
                if not self.refresh_cache(account_id):
                    return None

                records = self._cache.get_record(CONSTANTS.CACHE_NAMESPACE_ENTRIES, account_id)

                if records is None:
                    raise SimplePMError(ApplicationCodes.CACHE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, "Entry snapshot vanished right after refresh", "entries")

            return {entry_id: Entry.from_record(record) for entry_id, record in records.items()}

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to retrieve entries", "retrieve_entries")


    """
        Read one entry by ID straight from the backing store, whoever owns it.

        @param entry_id (str): Entry identifier.
        @return Entry|None: The entry, or None when absent.
    """
    def retrieve_by_id(self, entry_id: str) -> typing.Optional[Entry]:

        try:
            VALIDATION.validate_string(entry_id, ApplicationCodes.INVALID_TYPE, "entry_id")

            select_sql = f"""
                SELECT {_ENTRY_COLUMNS}
                FROM entries
                WHERE entry_id = %s;
            """

            row = self._database.get_row(select_sql, (entry_id,))

            return Entry.from_record(row) if row is not None else None

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to retrieve entry", "retrieve_entry")


    """
        Write a fresh snapshot of an account's entry set.

        @param account_id (str): Owning account.
        @return bool: True when a snapshot was written, False when the account does not exist.
    """
    def refresh_cache(self, account_id: str) -> bool:

        try:
            VALIDATION.validate_string(account_id, ApplicationCodes.INVALID_TYPE, "account_id")

            # An unknown account has no entry set, not an empty one
            owner = self._database.get_row("SELECT account_id FROM accounts WHERE account_id = %s;", (account_id,))

            if owner is None:
                self._cache.invalidate(CONSTANTS.CACHE_NAMESPACE_ENTRIES, account_id)
                return False

            select_sql = f"""
                SELECT {_ENTRY_COLUMNS}
                FROM entries
                WHERE account_id = %s;
            """

            rows = self._database.get_all_matching_rows(select_sql, (account_id,))

            records = {}
            for row in rows:
                entry = Entry.from_record(row)
                records[entry.entry_id] = entry.to_record()

            self._cache.set_record(CONSTANTS.CACHE_NAMESPACE_ENTRIES, account_id, records, CONSTANTS.ENTRIES_CACHE_TTL_SECONDS)
            return True

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.CACHE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to refresh entry snapshot", "entries")


    """
        Drop every snapshot of an account's entry set.

        @param account_id (str): Owning account.
    """
    def invalidate_cache(self, account_id: str) -> None:

        try:
            VALIDATION.validate_string(account_id, ApplicationCodes.INVALID_TYPE, "account_id")
            self._cache.invalidate(CONSTANTS.CACHE_NAMESPACE_ENTRIES, account_id)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.CACHE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to invalidate entry snapshot", "entries")
