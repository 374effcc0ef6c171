#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: entries_processor.py

    Description:
        Implements the three-phase entry synchronization protocol between a
        client and the SimplePM entry store:

            1. checklist   : {id, version} pairs of the account's entries, sorted by name
            2. update list : full entries for the IDs the client asked for
            3. commit      : create / update / delete batch, applied item by item

        The processor keeps no state between calls; phase 2 re-resolves every
        ID from the account's entry set and then from the backing store, so
        any processor instance may serve any phase.
"""


import dataclasses
import typing
import uuid
from simplepm.database.entry_table import EntryTable
from simplepm.database.models import Entry
from simplepm.utilities.audit_log import AuditLog
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.handlers.sanitization_validation as VALIDATION
import simplepm.constants as CONSTANTS



class EntriesProcessor:

    """
        Initialize the EntriesProcessor.

        @param entries (EntryTable): Entry store.
        @param audit_log (AuditLog|None): Receives one event per rejected commit item.
    """
    def __init__(self, entries: EntryTable, audit_log: typing.Optional[AuditLog] = None) -> None:

        try:
            if not isinstance(entries, EntryTable):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "EntriesProcessor requires an EntryTable", "entries")

            self._entries: EntryTable = entries
            self._audit_log: typing.Optional[AuditLog] = audit_log

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to initialize EntriesProcessor", "entries_processor_init")


    def _require_entry_set(self, account_id: str) -> typing.Dict[str, Entry]:
        VALIDATION.validate_string(account_id, ApplicationCodes.INVALID_TYPE, "account_id")

        entry_set = self._entries.retrieve_all(account_id)

        if entry_set is None:
            raise SimplePMError(ApplicationCodes.NOT_FOUND, HTTPCodes.NOT_FOUND, CONSTANTS.corrupted_or_missing_message("account ID"), "account_id")

        return entry_set


    """
        Phase 1: list the account's entries as {id, version}.

        @param account_id (str): Owning account.
        @return list[dict]: Checklist sorted by entry name (stable; names are not unique).
        @ensures Unknown accounts raise NOT_FOUND tagged account_id.
    """
    def get_checklist(self, account_id: str) -> typing.List[dict]:

        try:
            entry_set = self._require_entry_set(account_id)

            ordered = sorted(entry_set.values(), key=Entry.sort_key)

            return [{"id": entry.entry_id, "version": entry.version} for entry in ordered]

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error building checklist", "get_checklist")


    """
        Phase 2: resolve the entries the client asked for.

        @param account_id (str): Owning account.
        @param id_list (list[str]): Requested entry IDs.
        @return list[Entry]: Entries in request order; unknown IDs are skipped.
        @ensures An ID owned by another account raises PERMISSION_DENIED.
    """
    def get_update_list(self, account_id: str, id_list: typing.List[str]) -> typing.List[Entry]:

        try:
            if not isinstance(id_list, list):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "id_list must be a list", "id_list")

            entry_set = self._require_entry_set(account_id)

            resolved = []
            for entry_id in id_list:
                VALIDATION.validate_string(entry_id, ApplicationCodes.INVALID_TYPE, "id_list")

                entry = entry_set.get(entry_id)

                # Fall back to the backing store for IDs missing from the snapshot
                if entry is None:
                    entry = self._entries.retrieve_by_id(entry_id)

                if entry is None:
                    continue

                if entry.account_id != account_id:
                    raise SimplePMError(ApplicationCodes.PERMISSION_DENIED, HTTPCodes.FORBIDDEN, "Requested entry belongs to another account", "id_list")

                resolved.append(entry)

            return resolved

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error building update list", "get_update_list")


    """
        Apply one commit item.

        @return bool: True iff exactly one row was affected.
    """
    def _apply(self, account_id: str, entry: Entry, operation: str) -> bool:

        if not isinstance(entry, Entry):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Commit items must carry an Entry", "entries")

        # Ownership is always the caller's account; the submitted entry is left as given
        entry = dataclasses.replace(entry, account_id=account_id)

        if operation == CONSTANTS.SYNC_OPERATION_CREATE:
            if not entry.entry_id:
                entry = dataclasses.replace(entry, entry_id=uuid.uuid4().hex)
            return self._entries.create(entry)

        if operation == CONSTANTS.SYNC_OPERATION_UPDATE:
            if not entry.entry_id:
                return False
            return self._entries.update(entry)

        if operation == CONSTANTS.SYNC_OPERATION_DELETE:
            if not entry.entry_id:
                return False
            return self._entries.delete(account_id, entry.entry_id)

        raise SimplePMError(ApplicationCodes.INVALID_SYNC_OPERATION, HTTPCodes.BAD_REQUEST, "Unknown sync operation", "sync_operation")


    """
        Phase 3: apply a batch of create / update / delete items.

        @param account_id (str): Owning account.
        @param changes (list[tuple[Entry, str]]): (entry, sync operation) pairs, applied in order.
        @return bool: True iff every item affected exactly one row.
        @ensures Failed items are counted, never raised, and never abort the batch;
                 the account's entry snapshot is refreshed after any non-empty batch.
    """
    def try_commit_changes(self, account_id: str, changes: typing.List[typing.Tuple[Entry, str]]) -> bool:

        try:
            VALIDATION.validate_string(account_id, ApplicationCodes.INVALID_TYPE, "account_id")

            if not isinstance(changes, list):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "changes must be a list", "entries")

            if not changes:
                return True

            failures = 0
            for index, item in enumerate(changes):
                try:
                    entry, operation = item
                    if not self._apply(account_id, entry, operation):
                        failures += 1

                except (SimplePMError, TypeError, ValueError) as e:
                    failures += 1
                    if self._audit_log is not None:
                        self._audit_log.event(event="sync_item_rejected", account_id=account_id, index=index,
                                              error_code=getattr(e, "application_code", type(e).__name__))

            try:
                refreshed = self._entries.refresh_cache(account_id)
            except SimplePMError:
                refreshed = False

            if not refreshed:
                raise SimplePMError(ApplicationCodes.CACHE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, "Entries stored but their snapshot could not be refreshed", "entries")

            return failures == 0

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error committing entries", "try_commit_changes")
