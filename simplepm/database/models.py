#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: models.py

    Description:
        Plain data records shared by the SimplePM stores, processors and HTTP
        layer: the Account row, its tagged MasterCredential, the Entry row and
        the EntrySyncOperation tags a client attaches to submitted entries.
        Each record converts to and from the flat dictionaries used by the
        backing store and the sync cache.
"""

import typing
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.handlers.sanitization_validation as VALIDATION
import simplepm.constants as CONSTANTS



"""
    Container Class for the client intent tags carried by submitted entries.
"""
@dataclass
class EntrySyncOperation:

    CREATE = CONSTANTS.SYNC_OPERATION_CREATE
    UPDATE = CONSTANTS.SYNC_OPERATION_UPDATE
    DELETE = CONSTANTS.SYNC_OPERATION_DELETE

    """
        Normalize a wire tag into one of the operation constants.

        @param value (Any): Tag as received from the client (case-insensitive).
        @return str: One of CREATE, UPDATE, DELETE.
        @ensures Raises INVALID_SYNC_OPERATION for anything else.
    """
    @staticmethod
    def parse(value: typing.Any) -> str:
        if not isinstance(value, str):
            raise SimplePMError(ApplicationCodes.INVALID_SYNC_OPERATION, HTTPCodes.BAD_REQUEST, "sync_operation must be a string", "sync_operation")

        tag = value.strip().lower()
        VALIDATION.validate_in_set(tag, CONSTANTS._ALLOWED_SYNC_OPERATIONS, ApplicationCodes.INVALID_SYNC_OPERATION, "sync_operation")
        return tag



"""
    Tagged master-password state of an account.

    kind == 'hashed':            value is the salted hash, salt is its salt.
    kind == 'pending_operation': value is a one-time operation code, salt is empty,
                                 issued_at records when the code was handed out.
"""
@dataclass
class MasterCredential:
    kind: str
    value: str
    salt: str = ""
    issued_at: typing.Optional[str] = None

    def __post_init__(self) -> None:
        VALIDATION.validate_in_set(self.kind, CONSTANTS._ALLOWED_MASTER_KINDS, ApplicationCodes.INVALID_TYPE, "master_kind")

    @classmethod
    def hashed(cls, value: str, salt: str) -> "MasterCredential":
        return cls(CONSTANTS.MASTER_KIND_HASHED, value, salt)

    @classmethod
    def pending_operation(cls, code: str, issued_at: typing.Optional[str] = None) -> "MasterCredential":
        return cls(CONSTANTS.MASTER_KIND_PENDING, code, "", issued_at or VALIDATION.get_timestamp_iso8601z())

    @property
    def is_pending(self) -> bool:
        return self.kind == CONSTANTS.MASTER_KIND_PENDING

    """
        Whether a pending operation code is past its lifetime.

        @param now (datetime|None): Reference time, defaults to the current UTC time.
        @return bool: Always False for hashed credentials.
    """
    def is_expired(self, now: typing.Optional[datetime] = None) -> bool:
        if not self.is_pending:
            return False

        # A pending code without an issue time cannot be trusted
        if not self.issued_at:
            return True

        now = now or datetime.now(timezone.utc)
        issued = VALIDATION.parse_timestamp(self.issued_at)
        return now >= issued + timedelta(seconds=CONSTANTS.OPERATION_CODE_TTL_SECONDS)



"""
    One account row.
"""
@dataclass
class Account:
    account_id: str
    login: str
    password: str
    salt: str
    master: typing.Optional[MasterCredential] = None

    """
        Flatten the account into its backing-store / cache columns.

        @return dict: Column name to value; master columns are None when no master is set.
    """
    def to_record(self) -> dict:
        return {
            "account_id": self.account_id,
            "login": self.login,
            "password": self.password,
            "salt": self.salt,
            "master_password": self.master.value if self.master else None,
            "master_salt": self.master.salt if self.master else None,
            "master_kind": self.master.kind if self.master else None,
            "master_issued_at": self.master.issued_at if self.master else None,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Account":
        try:
            master = None
            if record.get("master_kind"):
                master = MasterCredential(record["master_kind"], record.get("master_password") or "", record.get("master_salt") or "", record.get("master_issued_at"))

            return cls(str(record["account_id"]), record["login"], record["password"], record["salt"], master)

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.STORE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, "Malformed account record", "account")



"""
    One credential entry row. Name, url, login and password are opaque to the server.
"""
@dataclass
class Entry:
    entry_id: str
    account_id: str
    version: int = 0
    name: typing.Optional[str] = None
    url: typing.Optional[str] = None
    login: typing.Optional[str] = None
    password: typing.Optional[str] = None
    sync_operation: typing.Optional[str] = field(default=None, compare=False)

    # Key used by the stable name ordering; a missing name sorts first
    def sort_key(self) -> str:
        return self.name or ""

    def to_record(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "account_id": self.account_id,
            "version": self.version,
            "name": self.name,
            "url": self.url,
            "login": self.login,
            "password": self.password,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Entry":
        try:
            return cls(
                entry_id=str(record["entry_id"]),
                account_id=str(record["account_id"]),
                version=int(record["version"]),
                name=record.get("name"),
                url=record.get("url"),
                login=record.get("login"),
                password=record.get("password"),
            )

        except Exception:
            raise SimplePMError(ApplicationCodes.STORE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, "Malformed entry record", "entry")

    """
        Wire form of the entry sent to clients.

        @return dict: {id, account_id, version, name, url, login, password}
    """
    def to_client(self) -> dict:
        return {
            "id": self.entry_id,
            "account_id": self.account_id,
            "version": self.version,
            "name": self.name,
            "url": self.url,
            "login": self.login,
            "password": self.password,
        }

    """
        Build an Entry from a client-submitted JSON object.

        @param payload (dict): {id?, version?, name?, url?, login?, password?, sync_operation}
        @param account_id (str): Account the submission is made for; any client-supplied owner is ignored.
        @return Entry: Entry carrying its parsed sync_operation.
        @ensures Raises INVALID_TYPE / INVALID_SYNC_OPERATION on malformed fields.
    """
    @classmethod
    def from_client(cls, payload: typing.Any, account_id: str) -> "Entry":
        if not isinstance(payload, dict):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Each entry must be a JSON object", "entries")

        operation = EntrySyncOperation.parse(payload.get("sync_operation"))

        entry_id = payload.get("id")
        if entry_id is not None and (not isinstance(entry_id, str) or not entry_id.strip()):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "id must be a non-empty string", "id")

        version = VALIDATION.coerce_to_int(payload.get("version", 0), "version")

        for name in ("name", "url", "login", "password"):
            value = payload.get(name)
            if value is not None and not isinstance(value, str):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, f"{name} must be a string", name)

        return cls(
            entry_id=entry_id.strip() if entry_id else "",
            account_id=account_id,
            version=version,
            name=payload.get("name"),
            url=payload.get("url"),
            login=payload.get("login"),
            password=payload.get("password"),
            sync_operation=operation,
        )
