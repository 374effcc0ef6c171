#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: testAccountProcessor.py

    Description:
        Integration tests for AccountProcessor over an SQLite-backed account and
        entry store. Every credential is RSA-encrypted under the process key the
        way a client would send it. Covers registration, authentication, password
        and login rotation, account deletion, and the master-password reset flow
        including single-use and expiring operation codes.
"""


import os
import shutil
import sqlite3
import tempfile
import unittest
from unittest import mock
from datetime import datetime, timezone, timedelta
from simplepm.database.database_object import Database
from simplepm.database.sync_cache import SyncCache
from simplepm.database.account_table import AccountTable
from simplepm.database.entry_table import EntryTable
from simplepm.database.models import Entry, MasterCredential
from simplepm.encryption.RSA_manager import RSAManager
from simplepm.encryption.credential_hasher import CredentialHasher
from simplepm.handlers.account_processor import AccountProcessor
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.constants as CONSTANTS


def sqlite_factory(path: str):

    def _connect():
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    return _connect



class TestAccountProcessor(unittest.TestCase):

    LOGIN = "alice"
    PASSWORD = "Secret1!"

    """
        Key generation is slow; share one process key and one client key pair.
    """
    @classmethod
    def setUpClass(cls):
        cls.rsa = RSAManager()
        cls.client_private_pem, cls.client_public_pem = RSAManager.generate_key_pair()
        cls.hasher = CredentialHasher(time_cost=1, memory_cost_kib=1024, parallelism=1)


    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        db = Database(connection_factory=sqlite_factory(os.path.join(self.tmpdir, "simplepm.db")), paramstyle="qmark")
        self.cache = SyncCache()
        self.accounts = AccountTable(db, self.cache)
        self.entries = EntryTable(db, self.cache)
        self.processor = AccountProcessor(self.accounts, self.entries, self.rsa, self.hasher)


    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)


    def enc(self, text: str) -> str:
        return self.rsa.encrypt(text, self.rsa.public_key_pem)


    def register(self, login: str = LOGIN, password: str = PASSWORD, master: str = None) -> str:
        payload = {"login": self.enc(login), "password": self.enc(password)}
        if master is not None:
            payload["master_password"] = self.enc(master)
        return self.processor.register(payload)


    def assertSimplePMError(self, ctx, application_code, http_code, field=None):
        self.assertEqual(application_code, ctx.exception.application_code)
        self.assertEqual(http_code, ctx.exception.http_code)
        if field is not None:
            self.assertEqual(field, ctx.exception.field)


    ################################################################################################
    # Registration and authentication
    ################################################################################################

    """
        Register alice, then authenticate with the same credentials.
    """
    def test_register_then_authenticate(self):

        self.assertTrue(self.processor.is_login_available(self.enc(self.LOGIN)))

        account_id = self.register()

        self.assertEqual(32, len(account_id))
        self.assertFalse(self.processor.is_login_available(self.enc(self.LOGIN)))

        result = self.processor.authenticate(self.enc(self.LOGIN), self.enc(self.PASSWORD))

        self.assertEqual(account_id, result["account_id"])
        self.assertIsNone(result["master_password"])
        self.assertIsNone(result["master_salt"])
        self.assertFalse(result["master_pending"])

        # Authentication is idempotent
        self.assertEqual(result, self.processor.authenticate(self.enc(self.LOGIN), self.enc(self.PASSWORD)))


    """
        Stored credentials are salted hashes, never the plaintext.
    """
    def test_credentials_stored_hashed(self):

        self.register(master="Master1!")

        account = self.accounts.retrieve(self.LOGIN)

        self.assertNotEqual(self.PASSWORD, account.password)
        self.assertTrue(self.hasher.verify(self.PASSWORD, account.salt, account.password))
        self.assertTrue(self.hasher.verify("Master1!", account.master.salt, account.master.value))
        self.assertNotEqual(account.salt, account.master.salt)


    """
        Client-supplied salts and IDs are ignored.
    """
    def test_register_ignores_client_salt(self):

        account_id = self.processor.register({
            "login": self.enc(self.LOGIN),
            "password": self.enc(self.PASSWORD),
            "salt": "client-salt",
            "account_id": "client-id",
        })

        account = self.accounts.retrieve(self.LOGIN)

        self.assertNotEqual("client-id", account_id)
        self.assertNotEqual("client-salt", account.salt)


    """
        A taken login is a 409 tagged login.
    """
    def test_register_duplicate_login(self):

        self.register()

        with self.assertRaises(SimplePMError) as ctx:
            self.register(password="Other1!")

        self.assertSimplePMError(ctx, ApplicationCodes.CONSTRAINT_VIOLATION, HTTPCodes.CONFLICT, "login")
        self.assertEqual(CONSTANTS.MESSAGE_LOGIN_OCCUPIED, ctx.exception.detail)


    """
        Login and password are required.
    """
    def test_register_missing_fields(self):

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.register({"login": self.enc(self.LOGIN)})

        self.assertEqual(ApplicationCodes.MISSING_FIELDS, ctx.exception.application_code)


    """
        Wrong password is AUTH_FAILED tagged with the password argument; unknown login is NOT_FOUND.
    """
    def test_authenticate_failures(self):

        self.register()

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.authenticate(self.enc(self.LOGIN), self.enc("wrong"))
        self.assertSimplePMError(ctx, ApplicationCodes.AUTH_FAILED, HTTPCodes.UNAUTHORIZED, "encrypted_password")

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.authenticate(self.enc("bob"), self.enc(self.PASSWORD))
        self.assertSimplePMError(ctx, ApplicationCodes.NOT_FOUND, HTTPCodes.NOT_FOUND, "encrypted_login")


    """
        Plaintext or corrupted fields fail decryption and are tagged with the argument name.
    """
    def test_unencrypted_input_rejected(self):

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.is_login_available("alice")
        self.assertEqual("encrypted_login", ctx.exception.field)

        ciphertext = self.enc(self.LOGIN)
        tampered = ciphertext[:-4] + ("AAAA" if not ciphertext.endswith("AAAA") else "BBBB")

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.is_login_available(tampered)
        self.assertEqual(ApplicationCodes.CRYPTO_FAILURE, ctx.exception.application_code)


    ################################################################################################
    # Rotation and deletion
    ################################################################################################

    """
        After a password rotation only the new password authenticates.
    """
    def test_update_account_password(self):

        self.register()
        old_salt = self.accounts.retrieve(self.LOGIN).salt

        self.processor.update_account_password(self.enc(self.LOGIN), self.enc(self.PASSWORD), self.enc("NewSecret2!"))

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.authenticate(self.enc(self.LOGIN), self.enc(self.PASSWORD))
        self.assertEqual(ApplicationCodes.AUTH_FAILED, ctx.exception.application_code)

        self.processor.authenticate(self.enc(self.LOGIN), self.enc("NewSecret2!"))
        self.assertNotEqual(old_salt, self.accounts.retrieve(self.LOGIN).salt)


    """
        A rotation with the wrong current password changes nothing.
    """
    def test_update_password_requires_current(self):

        self.register()

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.update_account_password(self.enc(self.LOGIN), self.enc("wrong"), self.enc("NewSecret2!"))
        self.assertSimplePMError(ctx, ApplicationCodes.AUTH_FAILED, HTTPCodes.UNAUTHORIZED, "encrypted_current_password")

        self.processor.authenticate(self.enc(self.LOGIN), self.enc(self.PASSWORD))


    """
        A stored rotation whose snapshot cannot be refreshed is a CACHE_INCONSISTENCY, yet the new hash is stored.
    """
    def test_update_password_snapshot_refresh_fails(self):

        self.register()
        self.accounts.retrieve(self.LOGIN)

        with mock.patch.object(self.accounts, "refresh_cache", return_value=False):
            with self.assertRaises(SimplePMError) as ctx:
                self.processor.update_account_password(self.enc(self.LOGIN), self.enc(self.PASSWORD), self.enc("NewSecret2!"))

        self.assertSimplePMError(ctx, ApplicationCodes.CACHE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, "accounts")

        self.assertTrue(self.accounts.refresh_cache(self.LOGIN))
        self.processor.authenticate(self.enc(self.LOGIN), self.enc("NewSecret2!"))


    """
        Checking a login change verifies credentials and availability without writing.
    """
    def test_check_login_change(self):

        self.register()
        self.register(login="bob", password="Other1!")

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.check_login_change(self.enc(self.LOGIN), self.enc(self.PASSWORD), self.enc("bob"))
        self.assertSimplePMError(ctx, ApplicationCodes.CONSTRAINT_VIOLATION, HTTPCodes.CONFLICT, "encrypted_new_login")

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.check_login_change(self.enc(self.LOGIN), self.enc("wrong"), self.enc("alicia"))
        self.assertSimplePMError(ctx, ApplicationCodes.AUTH_FAILED, HTTPCodes.UNAUTHORIZED, "encrypted_current_password")

        account, login, new_login = self.processor.check_login_change(self.enc(self.LOGIN), self.enc(self.PASSWORD), self.enc("alicia"))

        self.assertEqual((self.LOGIN, "alicia"), (login, new_login))
        self.assertEqual(account.account_id, self.accounts.retrieve(self.LOGIN).account_id)
        self.assertTrue(self.processor.is_login_available(self.enc("alicia")))


    """
        After a login change the old login is unknown immediately.
    """
    def test_update_account_login(self):

        account_id = self.register()
        self.processor.authenticate(self.enc(self.LOGIN), self.enc(self.PASSWORD))

        self.processor.update_account_login(self.enc(self.LOGIN), self.enc(self.PASSWORD), self.enc("alicia"))

        self.assertTrue(self.processor.is_login_available(self.enc(self.LOGIN)))

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.authenticate(self.enc(self.LOGIN), self.enc(self.PASSWORD))
        self.assertEqual(ApplicationCodes.NOT_FOUND, ctx.exception.application_code)

        self.assertEqual(account_id, self.processor.authenticate(self.enc("alicia"), self.enc(self.PASSWORD))["account_id"])


    """
        Changing to a taken login is a 409.
    """
    def test_update_login_taken(self):

        self.register()
        self.register(login="bob")

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.update_account_login(self.enc(self.LOGIN), self.enc(self.PASSWORD), self.enc("bob"))

        self.assertSimplePMError(ctx, ApplicationCodes.CONSTRAINT_VIOLATION, HTTPCodes.CONFLICT, "encrypted_new_login")


    """
        Deleting an account removes its entries and frees the login.
    """
    def test_delete_account(self):

        account_id = self.register()
        self.entries.create(Entry(entry_id="e1", account_id=account_id, name="mail"))
        self.assertEqual({"e1"}, set(self.entries.retrieve_all(account_id)))

        self.assertEqual(account_id, self.processor.delete_account(self.enc(self.LOGIN), self.enc(self.PASSWORD)))

        self.assertTrue(self.processor.is_login_available(self.enc(self.LOGIN)))
        self.assertIsNone(self.entries.retrieve_by_id("e1"))
        self.assertIsNone(self.entries.retrieve_all(account_id))


    """
        Deletion requires the correct password.
    """
    def test_delete_account_wrong_password(self):

        self.register()

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.delete_account(self.enc(self.LOGIN), self.enc("wrong"))
        self.assertEqual(ApplicationCodes.AUTH_FAILED, ctx.exception.application_code)

        self.assertFalse(self.processor.is_login_available(self.enc(self.LOGIN)))


    ################################################################################################
    # Master password
    ################################################################################################

    """
        Full reset flow: the code reaches the client encrypted, is never returned by
        retrieve, sets a new master once, and cannot be reused.
    """
    def test_reset_and_set_master(self):

        self.register(master="Master1!")

        encrypted_code = self.processor.reset_master_password(self.enc(self.LOGIN), self.enc(self.PASSWORD), self.client_public_pem)
        code = self.rsa.decrypt(encrypted_code, self.client_private_pem)

        envelope = self.processor.retrieve_master_password(self.enc(self.LOGIN))
        self.assertEqual({"master_password": None, "master_salt": None, "master_pending": True}, envelope)
        self.assertNotIn(code, str(self.processor.authenticate(self.enc(self.LOGIN), self.enc(self.PASSWORD))))

        result = self.processor.set_new_master_password(self.enc(self.LOGIN), self.enc(code), self.enc("Master2!"))
        self.assertTrue(self.hasher.verify("Master2!", result["master_salt"], result["master_password"]))

        stored = self.processor.retrieve_master_password(self.enc(self.LOGIN))
        self.assertEqual(result["master_password"], stored["master_password"])
        self.assertFalse(stored["master_pending"])

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.set_new_master_password(self.enc(self.LOGIN), self.enc(code), self.enc("Master3!"))
        self.assertSimplePMError(ctx, ApplicationCodes.AUTH_FAILED, HTTPCodes.UNAUTHORIZED, "encrypted_code_or_current_master")


    """
        A wrong operation code is rejected and leaves the pending state in place.
    """
    def test_set_master_wrong_code(self):

        self.register()
        self.processor.reset_master_password(self.enc(self.LOGIN), self.enc(self.PASSWORD), self.client_public_pem)

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.set_new_master_password(self.enc(self.LOGIN), self.enc("guess"), self.enc("Master2!"))
        self.assertEqual(ApplicationCodes.AUTH_FAILED, ctx.exception.application_code)

        self.assertTrue(self.processor.retrieve_master_password(self.enc(self.LOGIN))["master_pending"])


    """
        A code older than its lifetime is rejected.
    """
    def test_expired_operation_code(self):

        self.register()

        account = self.accounts.retrieve(self.LOGIN)
        issued = (datetime.now(timezone.utc) - timedelta(seconds=CONSTANTS.OPERATION_CODE_TTL_SECONDS + 5)).replace(microsecond=0)
        account.master = MasterCredential.pending_operation("stale-code", issued.isoformat().replace("+00:00", "Z"))
        self.accounts.update(account)
        self.accounts.refresh_cache(self.LOGIN)

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.set_new_master_password(self.enc(self.LOGIN), self.enc("stale-code"), self.enc("Master2!"))
        self.assertEqual(ApplicationCodes.AUTH_FAILED, ctx.exception.application_code)


    """
        The stored master hash itself is accepted in place of a code.
    """
    def test_set_master_with_current_hash(self):

        self.register(master="Master1!")
        current = self.processor.retrieve_master_password(self.enc(self.LOGIN))["master_password"]

        result = self.processor.set_new_master_password(self.enc(self.LOGIN), self.enc(current), self.enc("Master2!"))

        self.assertNotEqual(current, result["master_password"])


    """
        An account without a master must reset before setting one.
    """
    def test_set_master_without_master(self):

        self.register()

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.set_new_master_password(self.enc(self.LOGIN), self.enc(""), self.enc("Master2!"))
        self.assertEqual(ApplicationCodes.AUTH_FAILED, ctx.exception.application_code)


    """
        An unusable client key fails the reset before anything is persisted.
    """
    def test_reset_invalid_client_key(self):

        self.register(master="Master1!")
        before = self.processor.retrieve_master_password(self.enc(self.LOGIN))

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.reset_master_password(self.enc(self.LOGIN), self.enc(self.PASSWORD), "not a key")
        self.assertSimplePMError(ctx, ApplicationCodes.INVALID_KEY, HTTPCodes.BAD_REQUEST, "client_public_key")

        self.assertEqual(before, self.processor.retrieve_master_password(self.enc(self.LOGIN)))


    """
        Reset requires the account password.
    """
    def test_reset_wrong_password(self):

        self.register(master="Master1!")

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.reset_master_password(self.enc(self.LOGIN), self.enc("wrong"), self.client_public_pem)
        self.assertSimplePMError(ctx, ApplicationCodes.AUTH_FAILED, HTTPCodes.UNAUTHORIZED, "encrypted_password")

        self.assertFalse(self.processor.retrieve_master_password(self.enc(self.LOGIN))["master_pending"])


    """
        Master retrieval for an unknown login is NOT_FOUND.
    """
    def test_retrieve_master_unknown(self):

        with self.assertRaises(SimplePMError) as ctx:
            self.processor.retrieve_master_password(self.enc("nobody"))
        self.assertSimplePMError(ctx, ApplicationCodes.NOT_FOUND, HTTPCodes.NOT_FOUND, "encrypted_login")


if __name__ == "__main__":
    unittest.main()
