#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: credential_hasher.py

    Description:
        Provides SimplePM's salted one-way hashing of account passwords and
        master passwords. Salts are random Base64URL strings; a credential is
        hashed by running Argon2id over the concatenation of the plaintext and
        the salt text, using the decoded salt bytes as the Argon2 salt. The
        digest is stored as Base64URL. Verification recomputes the digest and
        compares in constant time.
"""


import hmac
import os
from argon2.low_level import hash_secret_raw, Type as Argon2Type
from simplepm.handlers.error_handler import HTTPCodes, ApplicationCodes, SimplePMError
import simplepm.handlers.sanitization_validation as VALIDATION
import simplepm.constants as CONSTANTS



class CredentialHasher:

    """
        Initialize a CredentialHasher with Argon2id cost parameters.

        @param time_cost (int): Argon2 iterations.
        @param memory_cost_kib (int): Argon2 memory in KiB.
        @param parallelism (int): Argon2 lanes.
        @require all parameters are positive integers
        @ensures The hasher is ready for deterministic hashing.
    """
    def __init__(self, time_cost: int = 3, memory_cost_kib: int = 64 * 1024, parallelism: int = 2) -> None:

        try:
            # Validate cost parameters
            for name, value in (("time_cost", time_cost), ("memory_cost_kib", memory_cost_kib), ("parallelism", parallelism)):
                if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                    raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, f"{name} must be a positive integer", name)

            self._time_cost: int = time_cost
            self._memory_cost_kib: int = memory_cost_kib
            self._parallelism: int = parallelism
            self._hash_len: int = CONSTANTS._HASHED_PASSWORD_LENGTH
            self._salt_len: int = CONSTANTS._SALT_LEN_BYTES

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to initialize CredentialHasher", "credential_hasher")


    """
        Generate a new random salt using a secure CSPRNG.

        @return str: Base64URL encoding of self._salt_len random bytes.
        @ensures Returned salt is cryptographically random.
    """
    def generate_salt(self) -> str:

        try:
            # Generate random bytes for salt
            salt = os.urandom(self._salt_len)

            # Validate salt properties
            if not isinstance(salt, bytes) or len(salt) != self._salt_len:
                raise SimplePMError(ApplicationCodes.INVALID_SALT, HTTPCodes.INTERNAL_SERVER_ERROR, "Generated salt has the wrong length", "salt")

            return VALIDATION.encode_bytes_to_base64url(salt)

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error during salt generation", "salt")




    """
        Hash a credential with its salt.

        @param plain_text (str): Credential in clear text.
        @param salt (str): Base64URL salt produced by generate_salt().
        @require plain_text is a string and salt decodes to at least 8 bytes
        @return str: Base64URL Argon2id digest of self._hash_len bytes.
        @ensures Identical inputs always produce the identical digest.
    """
    def salt_and_hash(self, plain_text: str, salt: str) -> str:

        try:
            # Validate types
            if not isinstance(plain_text, str):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.BAD_REQUEST, "plain_text must be a string", "plain_text")

            # Validate salt and recover its bytes
            salt_bytes = VALIDATION.decode_base64url_to_bytes("salt", salt, ApplicationCodes.INVALID_SALT)
            if len(salt_bytes) < 8:
                raise SimplePMError(ApplicationCodes.INVALID_SALT, HTTPCodes.BAD_REQUEST, "salt is too short", "salt")

            # Salt the plaintext, then hash
            secret = VALIDATION.encode_utf8_text_to_bytes(plain_text + salt)

            digest = hash_secret_raw(
                secret=secret,
                salt=salt_bytes,
                time_cost=self._time_cost,
                memory_cost=self._memory_cost_kib,
                parallelism=self._parallelism,
                hash_len=self._hash_len,
                type=Argon2Type.ID,
            )

            # Validate output digest type and length
            if not isinstance(digest, bytes) or len(digest) != self._hash_len:
                raise SimplePMError(ApplicationCodes.PASSWORD_HASH_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Invalid Argon2id digest length", "hash")

            return VALIDATION.encode_bytes_to_base64url(digest)

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.PASSWORD_HASH_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Argon2id hashing failed", "plain_text")




    """
        Verify a credential against a stored digest using constant-time comparison.

        @param plain_text (str): Credential in clear text.
        @param salt (str): Salt used during original hashing.
        @param expected_hash (str): Stored Base64URL digest.
        @return bool: True if recomputed digest matches expected_hash; False otherwise.
        @ensures Comparison is performed using constant-time comparison.
    """
    def verify(self, plain_text: str, salt: str, expected_hash: str) -> bool:

        try:
            if not isinstance(expected_hash, str) or not expected_hash:
                return False

            # Recompute digest
            recomputed = self.salt_and_hash(plain_text, salt)

            # Perform constant-time comparison
            return hmac.compare_digest(recomputed.encode("ascii"), expected_hash.encode("utf-8"))

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.PASSWORD_VERIFY_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Argon2id password verification failure", "expected_hash")
