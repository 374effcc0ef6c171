#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name:    testCredentialHasher.py

    Description:

        Test suite for CredentialHasher. Verifies salt generation, salted
        Argon2id hashing, constant-time verification, and error handling with
        correct ApplicationCodes and HTTPCodes. Uses cheap Argon2 parameters.
"""

import unittest
from simplepm.encryption.credential_hasher import CredentialHasher
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.handlers.sanitization_validation as VALIDATION


class TestCredentialHasher(unittest.TestCase):

    PASSWORD = "Secret1!"
    WRONG_PASSWORD = "Secret2!"

    """
        Create a fast CredentialHasher and salt for each test.
    """
    def setUp(self) -> None:

        self.hasher = CredentialHasher(time_cost=1, memory_cost_kib=1024, parallelism=1)
        self.salt = self.hasher.generate_salt()

    """
        Generated salts must be Base64URL of 16 bytes and non-deterministic.
    """
    def test_generate_salt_properties(self):

        salt1 = self.hasher.generate_salt()
        salt2 = self.hasher.generate_salt()

        self.assertIsInstance(salt1, str)
        self.assertEqual(16, len(VALIDATION.decode_base64url_to_bytes("salt", salt1)))
        self.assertNotEqual(salt1, salt2)

    """
        salt_and_hash must be deterministic and produce a 32-byte digest.
    """
    def test_salt_and_hash_is_deterministic(self):

        digest1 = self.hasher.salt_and_hash(self.PASSWORD, self.salt)
        digest2 = self.hasher.salt_and_hash(self.PASSWORD, self.salt)

        self.assertEqual(digest1, digest2)
        self.assertEqual(32, len(VALIDATION.decode_base64url_to_bytes("hash", digest1)))
        self.assertNotEqual(self.PASSWORD, digest1)

    """
        Different salts must produce different digests for the same plaintext.
    """
    def test_salt_changes_digest(self):

        other_salt = self.hasher.generate_salt()

        self.assertNotEqual(self.hasher.salt_and_hash(self.PASSWORD, self.salt), self.hasher.salt_and_hash(self.PASSWORD, other_salt))

    """
        verify must accept the original plaintext and reject any other.
    """
    def test_verify(self):

        digest = self.hasher.salt_and_hash(self.PASSWORD, self.salt)

        self.assertTrue(self.hasher.verify(self.PASSWORD, self.salt, digest))
        self.assertFalse(self.hasher.verify(self.WRONG_PASSWORD, self.salt, digest))
        self.assertFalse(self.hasher.verify(self.PASSWORD, self.hasher.generate_salt(), digest))
        self.assertFalse(self.hasher.verify(self.PASSWORD, self.salt, ""))

    """
        The empty string is a valid credential to hash.
    """
    def test_empty_plaintext(self):

        digest = self.hasher.salt_and_hash("", self.salt)

        self.assertTrue(self.hasher.verify("", self.salt, digest))

    """
        salt_and_hash must reject non-string plaintext with INVALID_TYPE / BAD_REQUEST.
    """
    def test_salt_and_hash_rejects_invalid_plaintext(self):

        with self.assertRaises(SimplePMError) as cm:
            self.hasher.salt_and_hash(b"bytes", self.salt)  # type: ignore[arg-type]

        exc = cm.exception
        self.assertEqual(exc.application_code, ApplicationCodes.INVALID_TYPE)
        self.assertEqual(exc.http_code, HTTPCodes.BAD_REQUEST)
        self.assertEqual(exc.field, "plain_text")

    """
        salt_and_hash must reject malformed or short salts with INVALID_SALT.
    """
    def test_salt_and_hash_rejects_invalid_salt(self):

        for bad in ("", "not a salt!", "AAAA", None):
            with self.subTest(bad=bad):
                with self.assertRaises(SimplePMError) as cm:
                    self.hasher.salt_and_hash(self.PASSWORD, bad)  # type: ignore[arg-type]

                self.assertEqual(cm.exception.application_code, ApplicationCodes.INVALID_SALT)

    """
        Constructor must reject non-positive cost parameters.
    """
    def test_init_rejects_invalid_costs(self):

        for kwargs in ({"time_cost": 0}, {"memory_cost_kib": -1}, {"parallelism": True}):
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(SimplePMError) as cm:
                    CredentialHasher(**kwargs)

                self.assertEqual(cm.exception.application_code, ApplicationCodes.INVALID_TYPE)


if __name__ == "__main__":
    unittest.main()
