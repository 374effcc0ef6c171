#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: sanitization_validation.py

    Description:
        Provides all encoding, decoding, parsing, and general type-conversion
        utilities for SimplePM's cryptographic, storage and HTTP layers, as well
        as reusable field-level validation helpers. Includes Base64URL
        conversions, UTF-8 helpers, JSON serialization used by the sync cache,
        timestamp parsing, integer coercion, header list parsing and strict
        field validation.

        Ensures strict input validation and raises SimplePMError for all malformed
        or non-conforming data types processed during request handling.
"""

import base64
import typing
import json
from datetime import datetime, timezone

from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.constants as CONSTANTS


####################################################################################################
#                                   Base64URL Encoding / Decoding
####################################################################################################

"""
    Convert a Base64URL string into raw bytes.

    @param field_name (str): Logical field name for context in error messages.
    @param b64u_text (Any): Base64URL-encoded string to decode.
    @param application_code (str): Code raised when the text is not Base64URL.
    @require b64u_text is a non-empty string
    @return bytes: Decoded byte sequence.
    @ensures Padding is normalized and invalid base64url input raises SimplePMError.
"""
def decode_base64url_to_bytes(field_name: str, b64u_text: typing.Any, application_code: str = ApplicationCodes.INVALID_BASE64URL) -> bytes:
    try:
        # Validate input with generic validators
        validate_string(b64u_text, application_code, field_name)
        validate_b64(b64u_text, application_code, field_name)

        # Add padding if necessary (base64url allows stripped "=")
        stripped = b64u_text.rstrip("=")
        padded = stripped + "=" * ((4 - len(stripped) % 4) % 4)

        # Decode base64url text into bytes
        decoded_bytes = base64.urlsafe_b64decode(padded)

        return bytes(decoded_bytes)

    except SimplePMError:
        raise
    except Exception:
        raise SimplePMError(application_code, HTTPCodes.BAD_REQUEST, f"Invalid base64url for {field_name}", field_name)



"""
    Convert raw bytes into a Base64URL string without padding.

    @param raw (bytes): Bytes to encode.
    @require raw is bytes or bytearray
    @return str: Base64URL-encoded ASCII string without '=' padding.
    @ensures Output string is safe for URL, header and JSON transport.
"""
def encode_bytes_to_base64url(raw: bytes) -> str:
    try:
        # Validate input type
        if not isinstance(raw, (bytes, bytearray)):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "b64url encode expects bytes", "raw")

        # Perform base64url encoding and strip padding
        return base64.urlsafe_b64encode(bytes(raw)).decode("ascii").rstrip("=")

    except SimplePMError:
        raise
    except Exception:
        raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error during base64url encoding", "raw")



####################################################################################################
#                                   UTF-8 / JSON Conversions
####################################################################################################

"""
    Convert raw bytes into a UTF-8 decoded string.

    @param raw_bytes (bytes): UTF-8 encoded bytes.
    @require raw_bytes is bytes or bytearray
    @return str: UTF-8 decoded text.
    @ensures Raises DECODING_ERROR on invalid UTF-8 sequences.
"""
def decode_bytes_to_utf8_text(raw_bytes: bytes) -> str:
    try:
        # Validate input type
        if not isinstance(raw_bytes, (bytes, bytearray)):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Input must be bytes for UTF-8 decode", "raw_bytes")

        # Decode to text
        return bytes(raw_bytes).decode("utf-8")

    except SimplePMError:
        raise
    except Exception:
        raise SimplePMError(ApplicationCodes.DECODING_ERROR, HTTPCodes.BAD_REQUEST, "Invalid UTF-8 byte sequence", "raw_bytes")



"""
    Convert text into UTF-8 bytes.

    @param text (str): Input string.
    @require text is a string
    @return bytes: UTF-8 encoded byte sequence.
    @ensures Raises ENCODING_ERROR on text that has no UTF-8 form (e.g. lone surrogates).
"""
def encode_utf8_text_to_bytes(text: str) -> bytes:
    try:
        # Validate input type
        if not isinstance(text, str):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Input must be string", "text")

        # Encode to bytes
        return text.encode("utf-8")

    except SimplePMError:
        raise
    except Exception:
        raise SimplePMError(ApplicationCodes.ENCODING_ERROR, HTTPCodes.BAD_REQUEST, "Text cannot be encoded as UTF-8", "text")



"""
    Encode a JSON-compatible value (dict or list) into compact UTF-8 JSON bytes.

    @param data (dict|list): JSON-serializable value.
    @return bytes: UTF-8 encoded JSON payload.
    @ensures Raises error on non-serializable input.
"""
def encode_value_to_json_bytes(data: typing.Any) -> bytes:
    try:
        # Validate input type
        if not isinstance(data, (dict, list)):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "Input must be dict or list", "data")

        # Serialize to JSON and encode to bytes
        return json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8")

    except SimplePMError:
        raise
    except Exception:
        raise SimplePMError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to serialize JSON payload", "data")



"""
    Convert UTF-8 JSON bytes into a Python dict or list.

    @param json_bytes (bytes): Raw JSON bytes.
    @require json_bytes is bytes or bytearray
    @return dict|list: Parsed JSON value.
    @ensures Raises SimplePMError on malformed JSON or scalar values.
"""
def decode_json_bytes_to_value(json_bytes: bytes) -> typing.Any:
    try:
        # Validate input type
        if not isinstance(json_bytes, (bytes, bytearray)):
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "Input must be bytes", "json_bytes")

        # Decode UTF-8 then parse JSON
        obj = json.loads(bytes(json_bytes).decode("utf-8"))

        # Validate output type
        if not isinstance(obj, (dict, list)):
            raise SimplePMError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.INTERNAL_SERVER_ERROR, "Expected JSON object or array", "json_bytes")

        return obj

    except SimplePMError:
        raise
    except Exception:
        raise SimplePMError(ApplicationCodes.MALFORMED_JSON, HTTPCodes.INTERNAL_SERVER_ERROR, "Malformed JSON payload", "json_bytes")



####################################################################################################
#                                   Generalized Type Parsers
####################################################################################################

"""
    Parse a strict ISO8601Z timestamp into a UTC-aware datetime object.

    @param value (str): Timestamp ending with 'Z'.
    @require value is a string ending with 'Z'
    @return datetime: Parsed UTC datetime.
    @ensures Raises SimplePMError on invalid timestamp formatting.
"""
def parse_timestamp(value: str) -> datetime:
    try:
        # Validate type first
        validate_string(value, ApplicationCodes.INVALID_TIMESTAMP, "timestamp")

        # Strip whitespace
        cleaned = value.strip()

        validate_iso8601(cleaned, ApplicationCodes.INVALID_TIMESTAMP, "timestamp")

        # Parse strict ISO8601Z: YYYY-MM-DDTHH:MM:SSZ
        parsed = datetime.strptime(cleaned, "%Y-%m-%dT%H:%M:%SZ")

        # Force UTC timezone
        return parsed.replace(tzinfo=timezone.utc)

    except SimplePMError:
        raise
    except Exception:
        raise SimplePMError(ApplicationCodes.INVALID_TIMESTAMP, HTTPCodes.BAD_REQUEST, "Invalid ISO8601Z timestamp", "timestamp")



"""
    Convert a numeric value or numeric string into an integer.

    @param value (Any): Value to convert.
    @param field_name (str): Field reported on failure.
    @require value must be convertible via int() and must not be a bool
    @return int: Integer representation.
    @ensures Raises SimplePMError if conversion fails.
"""
def coerce_to_int(value: typing.Any, field_name: str = "value") -> int:
    try:
        if isinstance(value, bool) or value is None:
            raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, f"{field_name} must be an integer", field_name)

        return int(value)

    except SimplePMError:
        raise
    except Exception:
        raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, f"{field_name} cannot be coerced to int", field_name)



"""
    Split a comma-separated header value into a list of identifiers.

    @param raw (str|None): Header value, e.g. "id1,id2,id3".
    @return list[str]: Non-empty, stripped identifiers in their original order.
"""
def parse_id_list(raw: typing.Optional[str]) -> typing.List[str]:
    if raw is None:
        return []

    return [part.strip() for part in raw.split(",") if part.strip()]



####################################################################################################
#                               GENERIC VALIDATORS (REUSABLE)
####################################################################################################

"""
    Function: Validate that a value is a non-empty string.

    @param: typing.Any - value to be validated
    @param: ApplicationCodes - application-level error type to raise if validation fails
    @param: str - field_name identifying the failing field
    @require: value must be a string with at least one non-whitespace character
    @ensures: raises SimplePMError if value is not a valid non-empty string
"""
def validate_string(value: typing.Any, application_code, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise SimplePMError(application_code, HTTPCodes.BAD_REQUEST, f"{field_name} must be a non-empty string.", field_name)



"""
    Function: Validate that a string does not exceed a maximum length.

    @param: str - value to be validated
    @param: int - max_len specifying the maximum allowed characters
    @param: ApplicationCodes - application-level error type to raise if validation fails
    @param: str - field_name identifying the failing field
    @ensures: raises SimplePMError if value length exceeds max_len
"""
def validate_max_length(value: str, max_len: int, application_code, field_name: str) -> None:
    if len(value) > max_len:
        raise SimplePMError(application_code, HTTPCodes.BAD_REQUEST, f"{field_name} exceeds maximum length ({max_len}).", field_name)



"""
    Function: Validate that a value belongs to an allowed set.

    @param: str - value to be validated
    @param: set - allowed_set containing permitted values
    @param: ApplicationCodes - application-level error type to raise if validation fails
    @param: str - field_name identifying the failing field
    @ensures: raises SimplePMError if value is not in allowed_set
"""
def validate_in_set(value: str, allowed_set: set, application_code, field_name: str) -> None:
    if value not in allowed_set:
        raise SimplePMError(application_code, HTTPCodes.BAD_REQUEST, f"Invalid {field_name}: '{value}'.", field_name)



"""
    Function: Validate that a string is Base64URL formatted.

    @param: str - value to be validated
    @param: ApplicationCodes - application-level error type to raise on failure
    @param: str - field_name identifying the failing field
    @ensures: raises SimplePMError if value is not valid Base64URL
"""
def validate_b64(value: str, application_code, field_name: str) -> None:
    if not isinstance(value, str) or not CONSTANTS._BASE64URL_RX.match(value):
        raise SimplePMError(application_code, HTTPCodes.BAD_REQUEST, f"{field_name} must be Base64URL.", field_name)

    if len(value) > CONSTANTS._MAX_B64URL_BYTES:
        raise SimplePMError(application_code, HTTPCodes.BAD_REQUEST, f"{field_name} exceeds maximum allowed size.", field_name)



"""
    Function: Validate that a value is a strict ISO8601Z timestamp.

    @param: str - value containing timestamp
    @param: ApplicationCodes - application-level error type to raise on failure
    @param: str - field_name identifying the failing field
    @ensures: raises SimplePMError if timestamp does not match ISO8601Z pattern
"""
def validate_iso8601(value: str, application_code, field_name: str) -> None:
    if not isinstance(value, str) or not CONSTANTS._ISO8601Z.fullmatch(value):
        raise SimplePMError(application_code, HTTPCodes.BAD_REQUEST, f"{value} must be ISO8601Z timestamp.", field_name)




"""
    Function: Generate a strict ISO8601Z UTC timestamp.

    @ensures: Returns timestamp in exact format YYYY-MM-DDTHH:MM:SSZ
    @returns: str - ISO8601Z formatted UTC timestamp with no fractional seconds.
"""
def get_timestamp_iso8601z() -> str:

    # Get current UTC time without fractional seconds
    now = datetime.now(timezone.utc).replace(microsecond=0)

    # Produce ISO8601 without offset, force 'Z'
    return now.strftime("%Y-%m-%dT%H:%M:%SZ")


"""
    Ensure all required fields are present and non-empty in the payload.

    @param payload (dict): Incoming JSON payload.
    @param required_fields (set[str]): Required field names.
    @param error_code (ApplicationCodes): Error code to raise.
    @param field_context (str): Name of the payload being validated.

    @ensures All required fields exist or raises SimplePMError.
"""
def validate_required_fields(payload: dict, required_fields: set, error_code: str, field_context: str) -> None:

    # Validate parameters
    if not isinstance(payload, dict):
        raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "Payload must be a JSON object.", field_context)

    missing = {name for name in required_fields if payload.get(name) in (None, "")}
    if missing:
        raise SimplePMError(error_code, HTTPCodes.BAD_REQUEST, f"Missing required fields: {', '.join(sorted(missing))}", field_context)
