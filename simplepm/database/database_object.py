#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: database_object.py

    Description:
        Provides backing-store connection handling and parameterized SQL
        execution for the SimplePM account and entry tables. Production runs on
        PostgreSQL through psycopg2 with credentials loaded from a JSON file;
        any DB-API 2.0 connection factory can be injected instead. Every
        statement runs on its own connection and transaction, rows are returned
        as plain dictionaries, and integrity violations are surfaced as
        CONSTRAINT_VIOLATION so callers can tell duplicates and orphans apart
        from driver failures.
"""


import os
import typing
import json
import psycopg2
import psycopg2.extras
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes


_DEFAULT_CREDENTIALS_FILE = os.path.join(os.path.dirname(__file__), "database_credentials.json")

# DB-API paramstyles understood by the statement translator
_SUPPORTED_PARAMSTYLES = {"format", "pyformat", "qmark"}



"""
    Provides connection management and query execution methods for SimplePM.

    @ensures Connections use parameterized queries, and all errors are raised upward as SimplePMError instances.
"""
class Database:

    """
        Initialize a Database helper bound to a PostgreSQL credential set or a connection factory.

        @param credentials_path (str|None): Path to the JSON database credential file.
        @param connection_factory (callable|None): Zero-argument callable returning a DB-API connection whose rows are mappings (e.g. sqlite3.Row).
        @param paramstyle (str): Placeholder style of the injected driver ('format' or 'qmark').

        @require credentials_path is None or isinstance(credentials_path, str)
        @require connection_factory is None or callable(connection_factory)

        @ensures Loads and validates database, user, password, host values when no factory is given.
    """
    def __init__(self, credentials_path: typing.Optional[str] = None, connection_factory: typing.Optional[typing.Callable[[], typing.Any]] = None, paramstyle: str = "format") -> None:

        try:
            # Validate paramstyle
            if paramstyle not in _SUPPORTED_PARAMSTYLES:
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, f"Unsupported paramstyle '{paramstyle}'", "paramstyle")

            if connection_factory is not None and not callable(connection_factory):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "connection_factory must be callable", "connection_factory")

            self._connection_factory = connection_factory
            self._paramstyle: str = paramstyle

            # Initialize placeholders
            self._credentials_path: str = credentials_path or _DEFAULT_CREDENTIALS_FILE
            self._database: str = ""
            self._user: str = ""
            self._password: str = ""
            self._host: str = ""
            self._port: typing.Optional[int] = None

            # Load credentials from disk only when psycopg2 opens the connections
            if self._connection_factory is None:
                self._load_database_credentials()

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to initialize Database helper", "database_init")


    """
        Load and validate database credentials from disk.

        @require self._credentials_path is a non-empty string
        @require the file exists and contains a JSON object with database, user, password and optional host, port

        @ensures Populates self._database, self._user, self._password, self._host, and self._port.
    """
    def _load_database_credentials(self) -> None:

        try:
            # Ensure path is a non-empty string
            if not isinstance(self._credentials_path, str) or not self._credentials_path.strip():
                raise SimplePMError(ApplicationCodes.INVALID_PATH, HTTPCodes.INTERNAL_SERVER_ERROR, "Database credentials path must be a non-empty string", "database_credentials_path")

            # Ensure file actually exists
            if not os.path.isfile(self._credentials_path):
                raise SimplePMError(ApplicationCodes.INVALID_PATH, HTTPCodes.INTERNAL_SERVER_ERROR, "Database credentials file not found", "database_credentials_path")

            with open(self._credentials_path, "r", encoding="utf-8") as f:
                raw = f.read()

            try:
                creds = json.loads(raw)
            except Exception:
                raise SimplePMError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.INTERNAL_SERVER_ERROR, "Database credentials file must contain valid JSON", "database_credentials")

            if not isinstance(creds, dict):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "Database credentials JSON must be an object", "database_credentials")

            # Validate every required text field
            for name in ("database", "user", "password"):
                value = creds.get(name)
                if not isinstance(value, str) or not value.strip():
                    raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, f"Missing or invalid '{name}' in credentials file", name)

            host = creds.get("host", "localhost")
            if not isinstance(host, str) or not host.strip():
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "Missing or invalid 'host' in credentials file", "host")

            port = creds.get("port")
            if port is not None and (isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "Invalid 'port' in credentials file", "port")

            # Assign validated fields
            self._database = creds["database"].strip()
            self._user = creds["user"].strip()
            self._password = creds["password"]
            self._host = host.strip()
            self._port = port

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error loading database credentials", "database_credentials")


    """
        Open a new database connection.

        @return connection: A live DB-API connection object.
        @ensures Uses the injected factory when present, psycopg2 otherwise.
    """
    def _get_database_connection(self):

        try:
            if self._connection_factory is not None:
                conn = self._connection_factory()
            else:
                kwargs = {"dbname": self._database, "user": self._user, "password": self._password, "host": self._host}
                if self._port is not None:
                    kwargs["port"] = self._port
                conn = psycopg2.connect(**kwargs)

            # Ensure connection object is valid
            if conn is None:
                raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to create database connection", "database_connection")

            return conn

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Error connecting to database", "database_connection")


    """
        Validate a statement and its parameters and translate placeholders for the driver.

        @param sql (str): SQL statement with %s placeholders.
        @param params (tuple|None): Parameter tuple for the statement.
        @return tuple[str, tuple]: Driver-ready statement and parameters.
    """
    def _prepare(self, sql: str, params: typing.Optional[typing.Tuple[typing.Any, ...]]) -> typing.Tuple[str, typing.Tuple[typing.Any, ...]]:

        # Validate SQL string
        if not isinstance(sql, str) or not sql.strip():
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "SQL must be a non-empty string", "sql")

        # Default params to empty tuple if None
        if params is None:
            params = ()

        # Validate params is a tuple
        if not isinstance(params, tuple):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "params must be a tuple", "params")

        if self._paramstyle == "qmark":
            sql = sql.replace("%s", "?")

        return sql, params


    def _is_integrity_error(self, conn, e: Exception) -> bool:
        integrity_error = getattr(conn, "IntegrityError", None) or psycopg2.IntegrityError
        return isinstance(e, (integrity_error, psycopg2.IntegrityError))


    @staticmethod
    def _close_quietly(*resources) -> None:
        for resource in resources:
            if resource is None:
                continue
            try:
                resource.close()
            except Exception:
                pass


    """
        Open a cursor whose rows are mappings of column name to value.

        @ensures psycopg2 connections use RealDictCursor; injected connections must set a
                 mapping row factory (e.g. sqlite3.Row).
    """
    def _open_dict_cursor(self, conn):
        if self._connection_factory is None:
            return conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        return conn.cursor()


    """
        Execute a non-SELECT SQL statement such as INSERT, UPDATE, DELETE or CREATE.

        @param sql (str): SQL statement with %s placeholders.
        @param params (tuple|None): Parameter tuple for the statement.

        @require isinstance(sql, str) and len(sql.strip()) > 0
        @require params is None or isinstance(params, tuple)

        @return int: Number of rows affected by the SQL operation.

        @ensures Statement is executed in its own transaction and committed on success;
                 integrity violations raise CONSTRAINT_VIOLATION (409).
    """
    def execute_statment(self, sql: str, params: typing.Optional[typing.Tuple[typing.Any, ...]] = None) -> int:

        try:
            sql, params = self._prepare(sql, params)

            # Open a new connection
            conn = self._get_database_connection()
            cur = None

            try:
                cur = conn.cursor()

                # Execute the parameterized statement
                cur.execute(sql, params)

                # Capture the affected row count
                rowcount = cur.rowcount

                conn.commit()

                return rowcount

            except Exception as e:
                conn.rollback()

                # Duplicate keys and orphaned foreign keys
                if self._is_integrity_error(conn, e):
                    raise SimplePMError(ApplicationCodes.CONSTRAINT_VIOLATION, HTTPCodes.CONFLICT, "Constraint violation", "sql_execute")

                raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Database execution error", "sql_execute")

            finally:
                self._close_quietly(cur, conn)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error during SQL execution", "sql_execute_outer")


    """
        Execute a SELECT query that returns a single row.

        @param sql (str): SQL SELECT query with %s placeholders.
        @param params (tuple|None): Parameter tuple.

        @return dict|None: Dictionary row if one exists, otherwise None.

        @ensures Returns the first matching row or None if no rows match.
    """
    def get_row(self, sql: str, params: typing.Optional[typing.Tuple[typing.Any, ...]] = None) -> typing.Optional[dict]:

        try:
            sql, params = self._prepare(sql, params)

            conn = self._get_database_connection()
            cur = None

            try:
                cur = self._open_dict_cursor(conn)
                cur.execute(sql, params)

                row = cur.fetchone()

                # If no row is present, return None
                if row is None:
                    return None

                return dict(row)

            except Exception:
                raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Database fetch_one error", "sql_fetch_one")

            finally:
                self._close_quietly(cur, conn)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error during fetch_one", "sql_fetch_one_outer")


    """
        Execute a SELECT query returning all matching rows.

        @param sql (str): SQL SELECT query.
        @param params (tuple|None): Parameter tuple.

        @return list[dict]: A list of dictionary rows (may be empty).
    """
    def get_all_matching_rows(self, sql: str, params: typing.Optional[typing.Tuple[typing.Any, ...]] = None) -> typing.List[dict]:

        try:
            sql, params = self._prepare(sql, params)

            conn = self._get_database_connection()
            cur = None

            try:
                cur = self._open_dict_cursor(conn)
                cur.execute(sql, params)

                return [dict(row) for row in cur.fetchall()]

            except Exception:
                raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Database fetch_all error", "sql_fetch_all")

            finally:
                self._close_quietly(cur, conn)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error during fetch_all", "sql_fetch_all_outer")
