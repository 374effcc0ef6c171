#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: constants.py

    Description:
        Centralized protocol constants for the SimplePM web services. Defines
        API prefix, request header names, salt and digest sizes, cache
        namespaces and expiries, operation-code lifetime, client-facing
        messages, and regex patterns shared across validation modules.
"""

import re


# Prefix shared by every HTTP route
API_PREFIX = "/api/v1"

# Maximum accepted request payload (bytes)
_MAX_CONTENT_LENGTH = 262_144


################################################################################################
# Cryptography
################################################################################################

# RSA modulus size for the process key pair
_RSA_KEY_SIZE_BITS = 2048

# RSA public exponent
_RSA_PUBLIC_EXPONENT = 65537

# Number of bytes for the password salts
_SALT_LEN_BYTES = 16

# Number of bytes for a hashed password
_HASHED_PASSWORD_LENGTH = 32

# Seconds a reset-issued operation code stays usable
OPERATION_CODE_TTL_SECONDS = 60 * 60


################################################################################################
# Cache
################################################################################################

# Namespace of account snapshots (keyed by login)
CACHE_NAMESPACE_ACCOUNTS = "accounts"

# Namespace of entry-set snapshots (keyed by account id)
CACHE_NAMESPACE_ENTRIES = "entries"

# Account snapshots are short-lived
ACCOUNT_CACHE_TTL_SECONDS = 60

# Entry-set snapshots
ENTRIES_CACHE_TTL_SECONDS = 30 * 60

# Seconds between background purges of expired snapshots
CACHE_CLEANUP_INTERVAL_SECONDS = 60

# Snapshot suffix format (capture timestamp)
_SNAPSHOT_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"


################################################################################################
# Sync operations
################################################################################################

SYNC_OPERATION_CREATE = "create"
SYNC_OPERATION_UPDATE = "update"
SYNC_OPERATION_DELETE = "delete"

_ALLOWED_SYNC_OPERATIONS = {SYNC_OPERATION_CREATE, SYNC_OPERATION_UPDATE, SYNC_OPERATION_DELETE}

# Master credential kinds stored in accounts.master_kind
MASTER_KIND_HASHED = "hashed"
MASTER_KIND_PENDING = "pending_operation"

_ALLOWED_MASTER_KINDS = {MASTER_KIND_HASHED, MASTER_KIND_PENDING}


################################################################################################
# Request headers
################################################################################################

HEADER_ENCRYPTED_LOGIN = "encryptedLogin"
HEADER_ENCRYPTED_PASSWORD = "encryptedPassword"
HEADER_ENCRYPTED_CURRENT_LOGIN = "encryptedCurrentLogin"
HEADER_ENCRYPTED_CURRENT_PASSWORD = "encryptedCurrentPassword"
HEADER_ENCRYPTED_NEW_LOGIN = "encryptedNewLogin"
HEADER_ENCRYPTED_NEW_PASSWORD = "encryptedNewPassword"
HEADER_ENCRYPTED_OPERATION_CODE = "encryptedOperationCode"
HEADER_ENCRYPTED_NEW_MASTER_PASS = "encryptedNewMasterPass"
HEADER_RSA_PUBLIC_KEY = "rsaPublicKey"
HEADER_ACCOUNT_ID = "accountID"
HEADER_ID_LIST = "idList"

# Challenge attached to every 401 response
AUTHORIZATION_HEADER = ("WWW-Authenticate", "User's account current password encrypted with RSA open key. To obtain RSA open key: GET api/v1/rsa")


################################################################################################
# Response messages
################################################################################################

RESPONSE_STATUS_SUCCESS = "success"
RESPONSE_STATUS_FAILURE = "failure"

MESSAGE_ENCRYPTION_REQUIRED = "Encryption is required. To obtain RSA open key: GET api/v1/rsa"
MESSAGE_INTERNAL_SERVER_ERROR = "An internal server error occurred. If the problem persists, please contact software developer."
MESSAGE_LOGIN_OCCUPIED = "Username already occupied. Please enter a different user name."
MESSAGE_NO_VALID_DATA = "No valid data have been received. Please verify your entry and try again."
MESSAGE_PARTIAL_COMMIT = ("Some of entries provided to be updated or deleted were not found. "
                          "It may occur due to deletion of this entries with another client while this client was offline. "
                          "All entries found have been updated.")


def corrupted_or_missing_message(name: str) -> str:
    return f"The {name} provided is corrupted or missing."


def incorrect_value_message(name: str) -> str:
    return f"The {name} provided is incorrect. Please enter a correct one and try again."


def required_value_message(name: str) -> str:
    article = "An" if name[:1].lower() in "aeiouy" else "A"
    return f"{article} {name} required to confirm identity."


################################################################################################
# Validation patterns
################################################################################################

# Maximum allowed login length
_MAX_LOGIN_LEN = 256

# Maximum decoded Base64URL size (bytes)
_MAX_B64URL_BYTES = 65536

# ISO8601 UTC timestamp regex
_ISO8601Z = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")

# Base64URL regex with optional padding
_BASE64URL_RX = re.compile(r"^[A-Za-z0-9_\-]+={0,2}$")
