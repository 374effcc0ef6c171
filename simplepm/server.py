#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: server.py

    Description:
        Entry point for the SimplePM backend. Configures the Flask application,
        the process RSA key, the credential hasher, the account and entry
        stores with their snapshot cache, audit logging, error handling, and
        the periodic cache cleanup worker. Exposes the /api/v1 routes for key
        discovery, account lifecycle, master-password rotation, and three-phase
        entry synchronization. Normalizes all exceptions through the
        centralized ErrorHandler to maintain consistent packet structures.
"""


import os
import time
import threading
import typing
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

# Import logging module
from simplepm.utilities.audit_log import AuditLog

# Import encryption managers
from simplepm.encryption.RSA_manager import RSAManager
from simplepm.encryption.credential_hasher import CredentialHasher

# Import stores
from simplepm.database.database_object import Database
from simplepm.database.sync_cache import SyncCache
from simplepm.database.account_table import AccountTable
from simplepm.database.entry_table import EntryTable
from simplepm.database.models import Entry

# Import handlers
from simplepm.handlers.account_processor import AccountProcessor
from simplepm.handlers.entries_processor import EntriesProcessor
from simplepm.handlers.error_handler import ErrorHandler
from simplepm.handlers.error_handler import ApplicationCodes, HTTPCodes, SimplePMError
import simplepm.handlers.sanitization_validation as VALIDATION
import simplepm.constants as CONSTANTS


#####################################################################################################################################################################

"""
    Read a required request header.

    @param name (str): Header name.
    @param challenge (str|None): When set, a missing header is a 401 asking for this credential.
    @return str: Header value.
    @ensures A missing or blank header raises 400 (or 401 with a challenge).
"""
def _require_header(name: str, challenge: typing.Optional[str] = None) -> str:

    value = request.headers.get(name)

    if value is None or not value.strip():
        if challenge is not None:
            raise SimplePMError(ApplicationCodes.AUTH_FAILED, HTTPCodes.UNAUTHORIZED, CONSTANTS.required_value_message(challenge), name)
        raise SimplePMError(ApplicationCodes.MISSING_FIELDS, HTTPCodes.BAD_REQUEST, CONSTANTS.corrupted_or_missing_message(name), name)

    return value.strip()


def _optional_header(name: str) -> typing.Optional[str]:
    value = request.headers.get(name)
    return value.strip() if value is not None and value.strip() else None


"""
    Parse the JSON request body strictly.

    @param expected_type (type): dict or list.
    @return dict|list: Parsed body.
"""
def _require_json_body(expected_type: type) -> typing.Any:

    # Require JSON content type
    content_type = request.headers.get("Content-Type", "").lower()
    if "application/json" not in content_type:
        raise SimplePMError(ApplicationCodes.INVALID_CONTENT_TYPE, HTTPCodes.BAD_REQUEST, f"Invalid Content-Type header: {content_type}", "Content-Type")

    # Parse JSON body strictly
    try:
        body = request.get_json(force=True)
    except Exception:
        raise SimplePMError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.BAD_REQUEST, "Failed to parse JSON body", "body")

    # Validate top-level structure
    if not isinstance(body, expected_type):
        raise SimplePMError(ApplicationCodes.INVALID_REQUEST, HTTPCodes.BAD_REQUEST, f"Invalid JSON structure (expected {expected_type.__name__})", "body")

    return body



"""
    Create and configure the full SimplePM Flask application.

    @param database (Database|None): Backing store; built from SIMPLEPM_DATABASE_CREDENTIALS when omitted.
    @param audit_log (AuditLog|None): Shared audit log; built from SIMPLEPM_AUDIT_LOG when omitted.
    @param rsa_manager (RSAManager|None): Process key holder; a fresh key epoch when omitted.
    @param hasher (CredentialHasher|None): Credential hasher; production cost parameters when omitted.
    @param cache (SyncCache|None): Snapshot cache shared by both stores.
    @param start_cleanup_worker (bool): Start the background cache cleanup thread.
    @return Flask: Fully configured Flask application instance.
    @ensures Stores, processors, audit log, error handler and routes are initialized.
"""
def create_app(database: typing.Optional[Database] = None,
               audit_log: typing.Optional[AuditLog] = None,
               rsa_manager: typing.Optional[RSAManager] = None,
               hasher: typing.Optional[CredentialHasher] = None,
               cache: typing.Optional[SyncCache] = None,
               start_cleanup_worker: bool = True) -> Flask:

    app = Flask(__name__)

    # Configure Flask security secret key
    app.config["SECRET_KEY"] = os.environ.get("FLASK_SECRET_KEY", "dev-secret")

    # Enforce a 256 KB payload limit
    app.config["MAX_CONTENT_LENGTH"] = CONSTANTS._MAX_CONTENT_LENGTH


    ################################################################################################
    # Initialize Handlers
    ################################################################################################

    # Instantiate audit log for non-sensitive operational logging
    app.audit_log = audit_log if audit_log is not None else AuditLog()

    # Centralized error handler
    app.error_handler = ErrorHandler(app.audit_log)

    # Process key epoch and credential hasher
    app.rsa_manager = rsa_manager if rsa_manager is not None else RSAManager()
    hasher = hasher if hasher is not None else CredentialHasher()

    # Database with credentials path from the environment
    if database is None:
        database = Database(credentials_path=os.environ.get("SIMPLEPM_DATABASE_CREDENTIALS"))
    app.database = database

    # Snapshot cache shared by both stores
    app.cache = cache if cache is not None else SyncCache()

    # Accounts table must exist before the entries foreign key references it
    account_table = AccountTable(app.database, app.cache)
    entry_table = EntryTable(app.database, app.cache)

    app.account_processor = AccountProcessor(account_table, entry_table, app.rsa_manager, hasher)
    app.entries_processor = EntriesProcessor(entry_table, app.audit_log)


    ################################################################################################
    # Background Cache Cleanup (snapshot TTL enforcement)
    ################################################################################################

    """
        Background daemon that periodically purges expired cache snapshots.

        @require SyncCache must be initialized
        @ensures Expired snapshots are removed and purges logged every CACHE_CLEANUP_INTERVAL_SECONDS without blocking request threads.
    """
    def _cache_cleanup_worker():

        # Loop forever as a daemon worker
        while True:
            try:
                removed = app.cache.cleanup_expired()

                if removed:
                    app.audit_log.event(event="cache_cleanup", context="cleanup_expired", removed=removed)

            except Exception as e:

                # Route unexpected exceptions through centralized error handler
                clean_packet, status = app.error_handler.handle_server_error(e, context="cache_cleanup_worker")

                app.audit_log.event(event="cleanup_exception", context="cleanup_worker", detail=str(clean_packet))

            time.sleep(CONSTANTS.CACHE_CLEANUP_INTERVAL_SECONDS)

    # Daemon mode so it won't block process exit
    if start_cleanup_worker:
        cleanup_thread = threading.Thread(target=_cache_cleanup_worker, daemon=True)
        cleanup_thread.start()



    ################################################################################################
    # ROUTES
    ################################################################################################

    """
        Liveness check.
    """
    @app.get(f"{CONSTANTS.API_PREFIX}/test")
    def test():
        return jsonify({"response_status": CONSTANTS.RESPONSE_STATUS_SUCCESS, "timestamp": VALIDATION.get_timestamp_iso8601z()}), HTTPCodes.OK


    """
        Publish the process RSA public key and its epoch.

        @return flask.Response: {rsa_public_key, key_identifier, key_creation_time}
    """
    @app.get(f"{CONSTANTS.API_PREFIX}/rsa")
    def get_rsa_public_key():
        try:
            return jsonify(app.rsa_manager.get_public_key_data()), HTTPCodes.OK

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="get_rsa_public_key")
            return jsonify(clean_packet), status


    """
        Report whether a login is free.

        @require header encryptedLogin
        @return flask.Response: JSON boolean
    """
    @app.get(f"{CONSTANTS.API_PREFIX}/accounts/login/availability")
    def get_login_availability():
        try:
            encrypted_login = _require_header(CONSTANTS.HEADER_ENCRYPTED_LOGIN)

            available = app.account_processor.is_login_available(encrypted_login)

            return jsonify(available), HTTPCodes.OK

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="get_login_availability")
            return jsonify(clean_packet), status


    """
        Authenticate an account and return its master envelope.

        @require headers encryptedLogin, encryptedPassword
        @return flask.Response: {account_id, master_password, master_salt, master_pending}
    """
    @app.get(f"{CONSTANTS.API_PREFIX}/accounts")
    def get_account():
        try:
            encrypted_login = _require_header(CONSTANTS.HEADER_ENCRYPTED_LOGIN)
            encrypted_password = _require_header(CONSTANTS.HEADER_ENCRYPTED_PASSWORD, challenge="account password")

            envelope = app.account_processor.authenticate(encrypted_login, encrypted_password)

            return jsonify(envelope), HTTPCodes.OK

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="get_account")
            return jsonify(clean_packet), status


    """
        Register a new account.

        @require JSON body {login, password, master_password?}, each encrypted
        @return flask.Response: 201 {account_id}
    """
    @app.post(f"{CONSTANTS.API_PREFIX}/accounts")
    def post_account():
        try:
            encrypted_account = _require_json_body(dict)

            account_id = app.account_processor.register(encrypted_account)

            app.audit_log.event(event="account_registered", account_id=account_id)

            return jsonify({"account_id": account_id}), HTTPCodes.CREATED

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="post_account")
            return jsonify(clean_packet), status


    """
        Rotate the account password and/or login.

        @require headers encryptedCurrentLogin, encryptedCurrentPassword, and at least one of encryptedNewPassword, encryptedNewLogin
        @return flask.Response: 204
        @ensures The password is rotated before the login so both can change in one request.
    """
    @app.patch(f"{CONSTANTS.API_PREFIX}/accounts")
    def patch_account():
        try:
            current_login = _require_header(CONSTANTS.HEADER_ENCRYPTED_CURRENT_LOGIN)
            current_password = _require_header(CONSTANTS.HEADER_ENCRYPTED_CURRENT_PASSWORD, challenge="account password")

            new_login = _optional_header(CONSTANTS.HEADER_ENCRYPTED_NEW_LOGIN)
            new_password = _optional_header(CONSTANTS.HEADER_ENCRYPTED_NEW_PASSWORD)

            if new_login is None and new_password is None:
                raise SimplePMError(ApplicationCodes.MISSING_FIELDS, HTTPCodes.BAD_REQUEST, CONSTANTS.MESSAGE_NO_VALID_DATA, "headers")

            # A taken or malformed login must fail before the password rotates
            if new_login is not None:
                app.account_processor.check_login_change(current_login, current_password, new_login)

            if new_password is not None:
                app.account_processor.update_account_password(current_login, current_password, new_password)

                # The login update below re-verifies with the new password
                current_password = new_password

            if new_login is not None:
                app.account_processor.update_account_login(current_login, current_password, new_login)

            return "", HTTPCodes.NO_CONTENT

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="patch_account")
            return jsonify(clean_packet), status


    """
        Delete an account and all of its entries.

        @require headers encryptedLogin, encryptedPassword
        @return flask.Response: 204
    """
    @app.delete(f"{CONSTANTS.API_PREFIX}/accounts")
    def delete_account():
        try:
            encrypted_login = _require_header(CONSTANTS.HEADER_ENCRYPTED_LOGIN)
            encrypted_password = _require_header(CONSTANTS.HEADER_ENCRYPTED_PASSWORD, challenge="account password")

            account_id = app.account_processor.delete_account(encrypted_login, encrypted_password)

            app.audit_log.event(event="account_deleted", account_id=account_id)

            return "", HTTPCodes.NO_CONTENT

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="delete_account")
            return jsonify(clean_packet), status


    """
        Return the stored master envelope.

        @require header encryptedLogin
        @return flask.Response: {master_password, master_salt, master_pending}
    """
    @app.get(f"{CONSTANTS.API_PREFIX}/accounts/master")
    def get_master_password():
        try:
            encrypted_login = _require_header(CONSTANTS.HEADER_ENCRYPTED_LOGIN)

            envelope = app.account_processor.retrieve_master_password(encrypted_login)

            return jsonify(envelope), HTTPCodes.OK

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="get_master_password")
            return jsonify(clean_packet), status


    """
        Set a new master password from an operation code or the current master.

        @require headers encryptedCurrentLogin, encryptedOperationCode, encryptedNewMasterPass
        @return flask.Response: 201 {master_password, master_salt}
    """
    @app.post(f"{CONSTANTS.API_PREFIX}/accounts/master")
    def post_master_password():
        try:
            encrypted_login = _require_header(CONSTANTS.HEADER_ENCRYPTED_CURRENT_LOGIN)
            encrypted_code = _require_header(CONSTANTS.HEADER_ENCRYPTED_OPERATION_CODE, challenge="operation code")
            encrypted_new_master = _require_header(CONSTANTS.HEADER_ENCRYPTED_NEW_MASTER_PASS)

            envelope = app.account_processor.set_new_master_password(encrypted_login, encrypted_code, encrypted_new_master)

            return jsonify(envelope), HTTPCodes.CREATED

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="post_master_password")
            return jsonify(clean_packet), status


    """
        Replace the master password by a one-time operation code.

        @require headers encryptedLogin, encryptedPassword, rsaPublicKey (PEM; literal "\\n" sequences accepted)
        @return flask.Response: 202 {encrypted_operation_code}
    """
    @app.delete(f"{CONSTANTS.API_PREFIX}/accounts/master/reset")
    def reset_master_password():
        try:
            encrypted_login = _require_header(CONSTANTS.HEADER_ENCRYPTED_LOGIN)
            encrypted_password = _require_header(CONSTANTS.HEADER_ENCRYPTED_PASSWORD, challenge="account password")
            client_public_key = _require_header(CONSTANTS.HEADER_RSA_PUBLIC_KEY)

            # Header values cannot carry raw newlines
            client_public_key = client_public_key.replace("\\n", "\n")

            encrypted_code = app.account_processor.reset_master_password(encrypted_login, encrypted_password, client_public_key)

            return jsonify({"encrypted_operation_code": encrypted_code}), HTTPCodes.ACCEPTED

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="reset_master_password")
            return jsonify(clean_packet), status


    """
        Sync phase 1: {id, version} of every entry, sorted by name.

        @require header accountID
    """
    @app.get(f"{CONSTANTS.API_PREFIX}/entries/sync/checklist")
    def get_sync_checklist():
        try:
            account_id = _require_header(CONSTANTS.HEADER_ACCOUNT_ID)

            return jsonify(app.entries_processor.get_checklist(account_id)), HTTPCodes.OK

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="get_sync_checklist")
            return jsonify(clean_packet), status


    """
        Sync phase 2: full entries for a comma-separated ID list.

        @require headers accountID, idList
    """
    @app.get(f"{CONSTANTS.API_PREFIX}/entries/sync/updatelist")
    def get_sync_update_list():
        try:
            account_id = _require_header(CONSTANTS.HEADER_ACCOUNT_ID)
            id_list = VALIDATION.parse_id_list(_require_header(CONSTANTS.HEADER_ID_LIST))

            entries = app.entries_processor.get_update_list(account_id, id_list)

            return jsonify([entry.to_client() for entry in entries]), HTTPCodes.OK

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="get_sync_update_list")
            return jsonify(clean_packet), status


    """
        Sync phase 3: apply a create / update / delete batch.

        @require header accountID and a JSON list of entries carrying sync_operation
        @return flask.Response: 204, or 422 when some items could not be applied
        @ensures A malformed item rejects the whole batch before anything is written.
    """
    @app.post(f"{CONSTANTS.API_PREFIX}/entries/sync")
    def post_sync_entries():
        try:
            account_id = _require_header(CONSTANTS.HEADER_ACCOUNT_ID)
            payload = _require_json_body(list)

            changes = []
            for item in payload:
                entry = Entry.from_client(item, account_id)
                changes.append((entry, entry.sync_operation))

            if not app.entries_processor.try_commit_changes(account_id, changes):
                app.audit_log.event(event="sync_partial_commit", account_id=account_id, submitted=len(changes))
                raise SimplePMError(ApplicationCodes.PARTIAL_COMMIT, HTTPCodes.UNPROCESSABLE_ENTITY, CONSTANTS.MESSAGE_PARTIAL_COMMIT, "entries")

            return "", HTTPCodes.NO_CONTENT

        except Exception as e:
            clean_packet, status = app.error_handler.handle_server_error(e, context="post_sync_entries")
            return jsonify(clean_packet), status


    """
        Attach the key discovery challenge to every 401 response.
    """
    @app.after_request
    def add_authenticate_header(response):
        if response.status_code == HTTPCodes.UNAUTHORIZED:
            header_name, header_value = CONSTANTS.AUTHORIZATION_HEADER
            response.headers[header_name] = header_value
        return response


    ################################################################################################
    # GLOBAL ERROR HANDLERS
    ################################################################################################

    """
        413 Payload Too Large exception into a SimplePM error packet.

        @param _e (Exception): Raw 413 exception.
        @return flask.Response: Standardized SimplePM error packet + HTTP code
        @ensures Oversized payload errors are always returned in a consistent format.
    """
    @app.errorhandler(413)
    def handle_payload_too_large(_e):

        # Build a normalized error response
        e = SimplePMError(ApplicationCodes.INVALID_LENGTH, HTTPCodes.PAYLOAD_TOO_LARGE, "Payload exceeds maximum size limit", "body")

        clean_packet, status = app.error_handler.handle_server_error(e, context="payload_too_large")

        return jsonify(clean_packet), status


    """
        Catch-all handler for any unexpected exception raised during request processing.

        @param e (Exception): Unhandled exception.
        @return flask.Response: Standardized SimplePM error packet + HTTP code
        @ensures All unexpected exceptions are logged and normalized through ErrorHandler.
    """
    @app.errorhandler(Exception)
    def handle_internal_error(e: Exception):

        # Routing errors keep their own status
        if isinstance(e, HTTPException):
            e = SimplePMError(ApplicationCodes.INVALID_REQUEST, e.code or HTTPCodes.BAD_REQUEST, e.description or e.name, "path")

        clean_packet, status = app.error_handler.handle_server_error(e, context="global_error_handler")

        return jsonify(clean_packet), status

    # Return the configured Flask app
    return app
