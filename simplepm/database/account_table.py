#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: account_table.py

    Description:
        Implements creation, lookup, update and deletion of SimplePM account
        rows. Each row holds the account ID, the unique login, the salted
        password hash and its salt, and the tagged master credential. Reads by
        login go through the SyncCache (read-through on a miss); writes always
        go straight to the backing store and are checked by their affected row
        count. Deleting an account cascades to its entries through the foreign
        key declared by the entries table.
"""

import typing
from simplepm.database.database_object import Database
from simplepm.database.sync_cache import SyncCache
from simplepm.database.models import Account
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.handlers.sanitization_validation as VALIDATION
import simplepm.constants as CONSTANTS


_ACCOUNT_COLUMNS = "account_id, login, password, salt, master_password, master_salt, master_kind, master_issued_at"



class AccountTable:

    """
        Initialize an AccountTable helper bound to a Database and a SyncCache.

        @param db (Database): Shared Database helper used for backing-store access.
        @param cache (SyncCache): Snapshot cache for reads by login.
        @require isinstance(db, Database) and isinstance(cache, SyncCache)
        @ensures The accounts table exists.
    """
    def __init__(self, db: Database, cache: SyncCache) -> None:

        try:
            # Ensure valid collaborators are provided
            if not isinstance(db, Database):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "AccountTable requires a Database instance", "db")

            if not isinstance(cache, SyncCache):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "AccountTable requires a SyncCache instance", "cache")

            self._db: Database = db
            self._cache: SyncCache = cache

            # Ensure required table exists
            self._ensure_table_exists()

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to initialize AccountTable", "account_table_init")


    """
        Create the accounts table if it does not already exist.

        @ensures accounts contains account_id, login, password, salt and the master credential columns.
    """
    def _ensure_table_exists(self) -> None:

        try:
            create_accounts_sql = f"""
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id        VARCHAR(64) PRIMARY KEY,
                    login             VARCHAR({CONSTANTS._MAX_LOGIN_LEN}) UNIQUE NOT NULL,
                    password          TEXT NOT NULL,
                    salt              TEXT NOT NULL,
                    master_password   TEXT,
                    master_salt       TEXT,
                    master_kind       VARCHAR(32),
                    master_issued_at  VARCHAR(32)
                );
            """

            self._db.execute_statment(create_accounts_sql)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to ensure accounts table exists", "accounts")


    def _validate_login(self, login: typing.Any) -> str:
        VALIDATION.validate_string(login, ApplicationCodes.INVALID_LOGIN, "login")
        VALIDATION.validate_max_length(login, CONSTANTS._MAX_LOGIN_LEN, ApplicationCodes.INVALID_LENGTH, "login")
        return login


    """
        Insert a new account row.

        @param account (Account): Fully hashed account record.
        @return Account: The stored record.
        @ensures Duplicate logins raise CONSTRAINT_VIOLATION; any row count other than one raises STORE_INCONSISTENCY.
    """
    def create(self, account: Account) -> Account:

        try:
            if not isinstance(account, Account):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "create expects an Account", "account")

            self._validate_login(account.login)

            record = account.to_record()

            insert_sql = f"""
                INSERT INTO accounts ({_ACCOUNT_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s);
            """

            affected = self._db.execute_statment(insert_sql, tuple(record[c.strip()] for c in _ACCOUNT_COLUMNS.split(",")))

            if affected != 1:
                raise SimplePMError(ApplicationCodes.STORE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, f"Account insert affected {affected} rows", "accounts")

            return account

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to create account record", "create_account")


    """
        Look up an account by login through the cache.

        @param login (str): Account login.
        @return Account|None: The account, or None when no row has this login.
        @ensures On a cache miss a fresh snapshot is written and the value is re-read from the cache.
    """
    def retrieve(self, login: str) -> typing.Optional[Account]:

        try:
            self._validate_login(login)

            record = self._cache.get_record(CONSTANTS.CACHE_NAMESPACE_ACCOUNTS, login)

            if record is None:
                # Nothing to cache for unknown logins
                if not self.refresh_cache(login):
                    return None

                record = self._cache.get_record(CONSTANTS.CACHE_NAMESPACE_ACCOUNTS, login)

                if record is None:
                    raise SimplePMError(ApplicationCodes.CACHE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, "Account snapshot vanished right after refresh", "accounts")

            return Account.from_record(record)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to retrieve account", "retrieve_account")


    """
        Read an account row by login straight from the backing store.

        @param login (str): Account login.
        @return Account|None: The account, or None when absent.
    """
    def _fetch(self, login: str) -> typing.Optional[Account]:

        select_sql = f"""
            SELECT {_ACCOUNT_COLUMNS}
            FROM accounts
            WHERE login = %s;
        """

        row = self._db.get_row(select_sql, (login,))

        return Account.from_record(row) if row is not None else None


    """
        Overwrite the credential columns of an account row.

        @param account (Account): Record carrying the new password, salt and master credential.
        @return Account: The stored record.
        @ensures Any row count other than one raises STORE_INCONSISTENCY; the cache is not touched.
    """
    def update(self, account: Account) -> Account:

        try:
            if not isinstance(account, Account):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "update expects an Account", "account")

            record = account.to_record()

            update_sql = """
                UPDATE accounts
                SET password = %s,
                    salt = %s,
                    master_password = %s,
                    master_salt = %s,
                    master_kind = %s,
                    master_issued_at = %s
                WHERE account_id = %s;
            """

            affected = self._db.execute_statment(update_sql, (
                record["password"],
                record["salt"],
                record["master_password"],
                record["master_salt"],
                record["master_kind"],
                record["master_issued_at"],
                record["account_id"],
            ))

            if affected != 1:
                raise SimplePMError(ApplicationCodes.STORE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, f"Account update affected {affected} rows", "accounts")

            return account

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to update account record", "update_account")


    """
        Change the login of an account row.

        @param account_id (str): Account identifier.
        @param new_login (str): New unique login.
        @ensures A taken login raises CONSTRAINT_VIOLATION; any row count other than one raises STORE_INCONSISTENCY.
    """
    def update_login(self, account_id: str, new_login: str) -> None:

        try:
            VALIDATION.validate_string(account_id, ApplicationCodes.INVALID_TYPE, "account_id")
            self._validate_login(new_login)

            update_sql = """
                UPDATE accounts
                SET login = %s
                WHERE account_id = %s;
            """

            affected = self._db.execute_statment(update_sql, (new_login, account_id))

            if affected != 1:
                raise SimplePMError(ApplicationCodes.STORE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, f"Login update affected {affected} rows", "accounts")

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to update account login", "update_login")


    """
        Delete an account row; owned entries are removed by the cascading foreign key.

        @param account_id (str): Account identifier.
        @return bool: True once exactly one row was removed.
        @ensures Any row count other than one raises STORE_INCONSISTENCY.
    """
    def delete(self, account_id: str) -> bool:

        try:
            VALIDATION.validate_string(account_id, ApplicationCodes.INVALID_TYPE, "account_id")

            delete_sql = """
                DELETE FROM accounts
                WHERE account_id = %s;
            """

            affected = self._db.execute_statment(delete_sql, (account_id,))

            if affected != 1:
                raise SimplePMError(ApplicationCodes.STORE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, f"Account delete affected {affected} rows", "accounts")

            return True

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to delete account record", "delete_account")


    """
        Write a fresh snapshot of the account stored under a login.

        @param login (str): Account login.
        @return bool: True when a snapshot was written, False when no account has this login.
        @ensures Snapshots of unknown logins are dropped.
    """
    def refresh_cache(self, login: str) -> bool:

        try:
            self._validate_login(login)

            account = self._fetch(login)

            if account is None:
                self._cache.invalidate(CONSTANTS.CACHE_NAMESPACE_ACCOUNTS, login)
                return False

            self._cache.set_record(CONSTANTS.CACHE_NAMESPACE_ACCOUNTS, login, account.to_record(), CONSTANTS.ACCOUNT_CACHE_TTL_SECONDS)
            return True

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.CACHE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to refresh account snapshot", "accounts")


    """
        Drop every snapshot stored for a login.

        @param login (str): Account login.
    """
    def invalidate_cache(self, login: str) -> None:

        try:
            self._validate_login(login)
            self._cache.invalidate(CONSTANTS.CACHE_NAMESPACE_ACCOUNTS, login)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.CACHE_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to invalidate account snapshot", "accounts")
