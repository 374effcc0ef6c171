#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: error_handler.py

    Description:
        Centralized error handling for all SimplePM backend components.
        Converts exceptions into standardized error packets, logs diagnostic
        information to the audit log, and maps every failure to one of the
        coarse client-visible categories (not-found, unauthorized, forbidden,
        bad-request, conflict, server-error). Internal exception detail is
        written to the audit log and never echoed to the client.
"""


from dataclasses import dataclass
from typing import Tuple, Optional
from datetime import datetime, timezone
from simplepm.utilities.audit_log import AuditLog
import simplepm.constants as CONSTANTS



"""
    Container Class for HTTP status constants.
"""
@dataclass
class HTTPCodes:
    # 200 OK
    OK = 200

    # 201 Created
    CREATED = 201

    # 202 Accepted
    ACCEPTED = 202

    # 204 No Content
    NO_CONTENT = 204

    # 400 Bad Request
    BAD_REQUEST = 400

    # 401 Unauthorized
    UNAUTHORIZED = 401

    # 403 Forbidden
    FORBIDDEN = 403

    # 404 Not Found
    NOT_FOUND = 404

    # 409 Conflict
    CONFLICT = 409

    # 413 Payload Too Large
    PAYLOAD_TOO_LARGE = 413

    # 422 Unprocessable Entity (partial sync commit)
    UNPROCESSABLE_ENTITY = 422

    # 500 Internal Server Error
    INTERNAL_SERVER_ERROR = 500


"""
    Container Class for server error code strings.
"""
@dataclass
class ApplicationCodes:

    MALFORMED_JSON           = "malformed_json"
    MISSING_FIELDS           = "missing_fields"
    INVALID_TYPE             = "invalid_type"
    INVALID_LENGTH           = "invalid_length"
    INVALID_CONTENT_TYPE     = "invalid_content_type"
    INVALID_REQUEST          = "invalid_request"
    INVALID_BASE64URL        = "invalid_base64url"
    INVALID_TIMESTAMP        = "invalid_timestamp"
    INVALID_LOGIN            = "invalid_login"
    INVALID_SYNC_OPERATION   = "invalid_sync_operation"
    NOT_FOUND                = "not_found"
    AUTH_FAILED              = "auth_failed"
    PERMISSION_DENIED        = "permission_denied"
    CONSTRAINT_VIOLATION     = "constraint_violation"
    INVALID_KEY              = "invalid_key"
    INVALID_CIPHERTEXT       = "invalid_ciphertext"
    CRYPTO_FAILURE           = "crypto_failure"
    ENCODING_ERROR           = "encoding_error"
    DECODING_ERROR           = "decoding_error"
    INVALID_SALT             = "invalid_salt"
    PASSWORD_HASH_ERROR      = "password_hash_error"
    PASSWORD_VERIFY_ERROR    = "password_verify_error"
    RSA_INIT_ERROR           = "rsa_init_error"
    RSA_KEY_GENERATION_ERROR = "rsa_key_generation_error"
    STORE_INCONSISTENCY      = "store_inconsistency"
    CACHE_INCONSISTENCY      = "cache_inconsistency"
    CACHE_ERROR              = "cache_error"
    PARTIAL_COMMIT           = "partial_commit"
    INVALID_PATH             = "invalid_path"
    INTERNAL_SERVER_ERROR    = "internal_server_error"


# Application codes surfaced to clients as the generic "encryption required" message
_TRANSPORT_CRYPTO_CODES = {
    ApplicationCodes.INVALID_KEY,
    ApplicationCodes.INVALID_CIPHERTEXT,
    ApplicationCodes.CRYPTO_FAILURE,
    ApplicationCodes.ENCODING_ERROR,
    ApplicationCodes.DECODING_ERROR,
    ApplicationCodes.INVALID_BASE64URL,
}



class SimplePMError(Exception):

    """
        Initialize a SimplePMError containing application code, HTTP code, detail message, and field context.

        @param application_code (str): Identifier from ApplicationCodes signaling the failure type.
        @param http_code (int): HTTP status code associated with the error.
        @param detail (str): Descriptive message intended for client-facing error packets.
        @param field (str): Logical argument or field the error is tagged to (optional).
        @require isinstance(application_code, str)
        @require isinstance(http_code, int)
        @require isinstance(detail, str)
        @ensures Error metadata is accessible to the centralized ErrorHandler.
    """
    def __init__(self, application_code: str, http_code: int, detail: str, field: str = "") -> None:
        self.application_code = application_code
        self.http_code = http_code
        self.detail = detail
        self.field = field
        super().__init__(f"{application_code}: {detail}")






class ErrorHandler:

    """
        Initialize the ErrorHandler and attach an AuditLog for diagnostic event recording.

        @param audit_log (AuditLog|None): Shared audit log; a default one is created when omitted.
        @ensures ErrorHandler is ready to format and log errors.
    """
    def __init__(self, audit_log: Optional[AuditLog] = None) -> None:

        self.audit_log = audit_log if audit_log is not None else AuditLog()


    """
        Process an exception and return a standardized SimplePM error packet.

        @param e (Exception): Exception raised during request handling.
        @param context (str): Logical context string identifying the failing operation.
        @require isinstance(e, Exception)
        @return tuple[dict, int]: (clean_error_packet, http_status_code)
        @ensures Exception is logged to audit_log and a canonical failure packet is returned.
    """
    def handle_server_error(self, e: Exception, context: str = "") -> Tuple[dict, int]:

        # If the exception is already a SimplePMError
        if isinstance(e, SimplePMError):
            application_code = e.application_code
            http_code = e.http_code
            message = e.detail
            field = e.field
        else:
            # For non-raised errors, normalize to INTERNAL_SERVER_ERROR
            application_code = ApplicationCodes.INTERNAL_SERVER_ERROR
            http_code = HTTPCodes.INTERNAL_SERVER_ERROR
            message = CONSTANTS.MESSAGE_INTERNAL_SERVER_ERROR
            field = ""

        # Transport crypto failures never reveal wrong-key vs corrupted payload
        if application_code in _TRANSPORT_CRYPTO_CODES:
            http_code = HTTPCodes.BAD_REQUEST
            message = CONSTANTS.MESSAGE_ENCRYPTION_REQUIRED

        # Server-side failures only expose their category
        if http_code >= HTTPCodes.INTERNAL_SERVER_ERROR:
            message = CONSTANTS.MESSAGE_INTERNAL_SERVER_ERROR
            field = ""

        # Always log the raw exception detail for operators
        self.audit_log.event(event="server_exception", context=context, error_type=type(e).__name__, http_code=http_code, detail=str(e))

        # Build standardized error packet
        clean_packet = self.create_error_response_packet(message, application_code, field)

        # Return packet and HTTP code
        return clean_packet, http_code




    """
        Build a standardized SimplePM error response packet.

        @param message (str): Human-readable error message for client.
        @param error_code (str): One of ApplicationCodes.* defining the error type.
        @param field (str): Logical field associated with the error (optional).
        @require isinstance(message, str)
        @require isinstance(error_code, str)
        @return dict: Serialized error packet including a timestamp.
    """
    def create_error_response_packet(self, message: str, error_code: str, field: str = "") -> dict:
        try:
            # Generate ISO8601Z timestamp
            timestamp_iso = datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")

            # Construct canonical error response
            packet = {
                "response_status": CONSTANTS.RESPONSE_STATUS_FAILURE,
                "timestamp": timestamp_iso,
                "message": message,
                "error_code": error_code,
                "field": field
            }

            return packet

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Internal error creating error response packet.", "")
