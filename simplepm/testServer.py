#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: testServer.py

    Description:
        End-to-end tests for the SimplePM Flask routes through the Flask test
        client. The app is built over an SQLite store, a temporary audit log,
        and a cheap credential hasher, without the background cleanup thread.
"""


import os
import json
import shutil
import sqlite3
import tempfile
import unittest
from simplepm.server import create_app
from simplepm.database.database_object import Database
from simplepm.encryption.RSA_manager import RSAManager
from simplepm.encryption.credential_hasher import CredentialHasher
from simplepm.handlers.error_handler import ApplicationCodes
from simplepm.utilities.audit_log import AuditLog
import simplepm.constants as CONSTANTS


API = CONSTANTS.API_PREFIX


def sqlite_factory(path: str):

    def _connect():
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    return _connect



class TestServer(unittest.TestCase):

    LOGIN = "alice"
    PASSWORD = "Secret1!"

    @classmethod
    def setUpClass(cls):
        cls.rsa = RSAManager()
        cls.client_private_pem, cls.client_public_pem = RSAManager.generate_key_pair()
        cls.hasher = CredentialHasher(time_cost=1, memory_cost_kib=1024, parallelism=1)


    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.audit_path = os.path.join(self.tmpdir, "audit.log")

        database = Database(connection_factory=sqlite_factory(os.path.join(self.tmpdir, "simplepm.db")), paramstyle="qmark")

        self.app = create_app(database=database, audit_log=AuditLog(self.audit_path), rsa_manager=self.rsa, hasher=self.hasher, start_cleanup_worker=False)
        self.app.config["TESTING"] = True
        self.client = self.app.test_client()


    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)


    def enc(self, text: str) -> str:
        return self.rsa.encrypt(text, self.rsa.public_key_pem)


    def register(self, login: str = LOGIN, password: str = PASSWORD, master: str = None):
        body = {"login": self.enc(login), "password": self.enc(password)}
        if master is not None:
            body["master_password"] = self.enc(master)
        return self.client.post(f"{API}/accounts", json=body)


    def login_headers(self, login: str = LOGIN, password: str = PASSWORD) -> dict:
        return {CONSTANTS.HEADER_ENCRYPTED_LOGIN: self.enc(login), CONSTANTS.HEADER_ENCRYPTED_PASSWORD: self.enc(password)}


    def audit_events(self) -> list:
        with open(self.audit_path, encoding="utf-8") as f:
            return [json.loads(line)["event"] for line in f if line.strip()]


    ################################################################################################
    # Discovery
    ################################################################################################

    def test_liveness(self):

        response = self.client.get(f"{API}/test")

        self.assertEqual(200, response.status_code)
        self.assertEqual(CONSTANTS.RESPONSE_STATUS_SUCCESS, response.get_json()["response_status"])


    """
        The public key endpoint publishes the key with its epoch.
    """
    def test_rsa_public_key(self):

        body = self.client.get(f"{API}/rsa").get_json()

        self.assertEqual(self.rsa.public_key_pem, body["rsa_public_key"])
        self.assertEqual(self.rsa.key_identifier, body["key_identifier"])
        self.assertIn("key_creation_time", body)


    def test_unknown_route(self):

        response = self.client.get(f"{API}/nope")

        self.assertEqual(404, response.status_code)
        self.assertEqual(CONSTANTS.RESPONSE_STATUS_FAILURE, response.get_json()["response_status"])


    ################################################################################################
    # Accounts
    ################################################################################################

    """
        Register alice, then log in and read the envelope.
    """
    def test_register_and_login(self):

        self.assertTrue(self.client.get(f"{API}/accounts/login/availability", headers={CONSTANTS.HEADER_ENCRYPTED_LOGIN: self.enc(self.LOGIN)}).get_json())

        response = self.register()
        self.assertEqual(201, response.status_code)
        account_id = response.get_json()["account_id"]

        self.assertFalse(self.client.get(f"{API}/accounts/login/availability", headers={CONSTANTS.HEADER_ENCRYPTED_LOGIN: self.enc(self.LOGIN)}).get_json())

        response = self.client.get(f"{API}/accounts", headers=self.login_headers())

        self.assertEqual(200, response.status_code)
        self.assertEqual(account_id, response.get_json()["account_id"])
        self.assertIn("account_registered", self.audit_events())


    def test_register_duplicate(self):

        self.register()
        response = self.register()

        self.assertEqual(409, response.status_code)
        self.assertEqual(CONSTANTS.MESSAGE_LOGIN_OCCUPIED, response.get_json()["message"])


    """
        Registration requires a JSON object body.
    """
    def test_register_bad_body(self):

        response = self.client.post(f"{API}/accounts", data="login=alice", headers={"Content-Type": "text/plain"})
        self.assertEqual(400, response.status_code)
        self.assertEqual(ApplicationCodes.INVALID_CONTENT_TYPE, response.get_json()["error_code"])

        response = self.client.post(f"{API}/accounts", json=["not", "an", "object"])
        self.assertEqual(400, response.status_code)


    """
        A missing password header is a 401 carrying the key discovery challenge.
    """
    def test_missing_password_header(self):

        self.register()

        response = self.client.get(f"{API}/accounts", headers={CONSTANTS.HEADER_ENCRYPTED_LOGIN: self.enc(self.LOGIN)})

        self.assertEqual(401, response.status_code)
        self.assertEqual(CONSTANTS.AUTHORIZATION_HEADER[1], response.headers[CONSTANTS.AUTHORIZATION_HEADER[0]])
        self.assertEqual(CONSTANTS.required_value_message("account password"), response.get_json()["message"])


    def test_wrong_password_and_unknown_login(self):

        self.register()

        response = self.client.get(f"{API}/accounts", headers=self.login_headers(password="wrong"))
        self.assertEqual(401, response.status_code)
        self.assertIn(CONSTANTS.AUTHORIZATION_HEADER[0], response.headers)

        response = self.client.get(f"{API}/accounts", headers=self.login_headers(login="bob"))
        self.assertEqual(404, response.status_code)


    """
        Plaintext credentials are answered with the encryption-required message.
    """
    def test_plaintext_credentials(self):

        self.register()

        response = self.client.get(f"{API}/accounts", headers={CONSTANTS.HEADER_ENCRYPTED_LOGIN: "alice", CONSTANTS.HEADER_ENCRYPTED_PASSWORD: "Secret1!"})

        self.assertEqual(400, response.status_code)
        self.assertEqual(CONSTANTS.MESSAGE_ENCRYPTION_REQUIRED, response.get_json()["message"])


    """
        PATCH without new values is rejected; with both, login and password change together.
    """
    def test_patch_account(self):

        self.register()

        current = {CONSTANTS.HEADER_ENCRYPTED_CURRENT_LOGIN: self.enc(self.LOGIN), CONSTANTS.HEADER_ENCRYPTED_CURRENT_PASSWORD: self.enc(self.PASSWORD)}

        response = self.client.patch(f"{API}/accounts", headers=current)
        self.assertEqual(400, response.status_code)
        self.assertEqual(CONSTANTS.MESSAGE_NO_VALID_DATA, response.get_json()["message"])

        headers = dict(current)
        headers[CONSTANTS.HEADER_ENCRYPTED_NEW_LOGIN] = self.enc("alicia")
        headers[CONSTANTS.HEADER_ENCRYPTED_NEW_PASSWORD] = self.enc("NewSecret2!")

        response = self.client.patch(f"{API}/accounts", headers=headers)
        self.assertEqual(204, response.status_code)

        self.assertEqual(200, self.client.get(f"{API}/accounts", headers=self.login_headers("alicia", "NewSecret2!")).status_code)
        self.assertEqual(404, self.client.get(f"{API}/accounts", headers=self.login_headers()).status_code)


    """
        A PATCH whose new login is taken changes nothing, not even the password.
    """
    def test_patch_account_taken_login_keeps_password(self):

        self.register()
        self.register(login="bob", password="Other1!")

        headers = {
            CONSTANTS.HEADER_ENCRYPTED_CURRENT_LOGIN: self.enc(self.LOGIN),
            CONSTANTS.HEADER_ENCRYPTED_CURRENT_PASSWORD: self.enc(self.PASSWORD),
            CONSTANTS.HEADER_ENCRYPTED_NEW_LOGIN: self.enc("bob"),
            CONSTANTS.HEADER_ENCRYPTED_NEW_PASSWORD: self.enc("Changed2!"),
        }

        response = self.client.patch(f"{API}/accounts", headers=headers)

        self.assertEqual(409, response.status_code)
        self.assertEqual(CONSTANTS.MESSAGE_LOGIN_OCCUPIED, response.get_json()["message"])
        self.assertEqual(200, self.client.get(f"{API}/accounts", headers=self.login_headers()).status_code)
        self.assertEqual(401, self.client.get(f"{API}/accounts", headers=self.login_headers(password="Changed2!")).status_code)


    def test_delete_account(self):

        self.register()

        self.assertEqual(204, self.client.delete(f"{API}/accounts", headers=self.login_headers()).status_code)
        self.assertEqual(404, self.client.get(f"{API}/accounts", headers=self.login_headers()).status_code)
        self.assertIn("account_deleted", self.audit_events())


    ################################################################################################
    # Master password
    ################################################################################################

    """
        Reset, read the pending envelope, then set a new master with the code.
    """
    def test_master_reset_flow(self):

        self.register(master="Master1!")

        headers = self.login_headers()
        headers[CONSTANTS.HEADER_RSA_PUBLIC_KEY] = self.client_public_pem.replace("\n", "\\n")

        response = self.client.delete(f"{API}/accounts/master/reset", headers=headers)
        self.assertEqual(202, response.status_code)
        code = self.rsa.decrypt(response.get_json()["encrypted_operation_code"], self.client_private_pem)

        envelope = self.client.get(f"{API}/accounts/master", headers={CONSTANTS.HEADER_ENCRYPTED_LOGIN: self.enc(self.LOGIN)}).get_json()
        self.assertTrue(envelope["master_pending"])
        self.assertIsNone(envelope["master_password"])

        set_headers = {
            CONSTANTS.HEADER_ENCRYPTED_CURRENT_LOGIN: self.enc(self.LOGIN),
            CONSTANTS.HEADER_ENCRYPTED_OPERATION_CODE: self.enc(code),
            CONSTANTS.HEADER_ENCRYPTED_NEW_MASTER_PASS: self.enc("Master2!"),
        }

        response = self.client.post(f"{API}/accounts/master", headers=set_headers)
        self.assertEqual(201, response.status_code)
        self.assertTrue(self.hasher.verify("Master2!", response.get_json()["master_salt"], response.get_json()["master_password"]))

        # Codes are single-use
        response = self.client.post(f"{API}/accounts/master", headers=set_headers)
        self.assertEqual(401, response.status_code)


    def test_master_missing_code_header(self):

        self.register()

        response = self.client.post(f"{API}/accounts/master", headers={
            CONSTANTS.HEADER_ENCRYPTED_CURRENT_LOGIN: self.enc(self.LOGIN),
            CONSTANTS.HEADER_ENCRYPTED_NEW_MASTER_PASS: self.enc("Master2!"),
        })

        self.assertEqual(401, response.status_code)
        self.assertIn(CONSTANTS.AUTHORIZATION_HEADER[0], response.headers)


    ################################################################################################
    # Entry sync
    ################################################################################################

    """
        Commit a batch, then walk the checklist and update list.
    """
    def test_sync_roundtrip(self):

        account_id = self.register().get_json()["account_id"]
        headers = {CONSTANTS.HEADER_ACCOUNT_ID: account_id}

        batch = [
            {"id": "e1", "name": "zeta", "sync_operation": "create"},
            {"id": "e2", "name": "alpha", "version": 4, "sync_operation": "Create"},
        ]

        self.assertEqual(204, self.client.post(f"{API}/entries/sync", headers=headers, json=batch).status_code)

        checklist = self.client.get(f"{API}/entries/sync/checklist", headers=headers).get_json()
        self.assertEqual([{"id": "e2", "version": 4}, {"id": "e1", "version": 0}], checklist)

        headers[CONSTANTS.HEADER_ID_LIST] = "e1, e2,unknown"
        update_list = self.client.get(f"{API}/entries/sync/updatelist", headers=headers).get_json()
        self.assertEqual(["e1", "e2"], [item["id"] for item in update_list])
        self.assertEqual(account_id, update_list[0]["account_id"])


    """
        A batch with a missing update target answers 422 and keeps the applied items.
    """
    def test_sync_partial_commit(self):

        account_id = self.register().get_json()["account_id"]
        headers = {CONSTANTS.HEADER_ACCOUNT_ID: account_id}

        batch = [
            {"id": "a", "name": "a", "sync_operation": "create"},
            {"id": "b-missing", "sync_operation": "update"},
        ]

        response = self.client.post(f"{API}/entries/sync", headers=headers, json=batch)

        self.assertEqual(422, response.status_code)
        self.assertEqual(CONSTANTS.MESSAGE_PARTIAL_COMMIT, response.get_json()["message"])
        self.assertEqual(ApplicationCodes.PARTIAL_COMMIT, response.get_json()["error_code"])
        self.assertEqual([{"id": "a", "version": 0}], self.client.get(f"{API}/entries/sync/checklist", headers=headers).get_json())
        self.assertIn("sync_partial_commit", self.audit_events())


    """
        A malformed item rejects the whole batch before anything is written.
    """
    def test_sync_malformed_item(self):

        account_id = self.register().get_json()["account_id"]
        headers = {CONSTANTS.HEADER_ACCOUNT_ID: account_id}

        batch = [
            {"id": "a", "sync_operation": "create"},
            {"id": "b", "sync_operation": "merge"},
        ]

        response = self.client.post(f"{API}/entries/sync", headers=headers, json=batch)

        self.assertEqual(400, response.status_code)
        self.assertEqual([], self.client.get(f"{API}/entries/sync/checklist", headers=headers).get_json())


    def test_sync_foreign_entry_forbidden(self):

        alice_id = self.register().get_json()["account_id"]
        bob_id = self.register(login="bob").get_json()["account_id"]

        self.client.post(f"{API}/entries/sync", headers={CONSTANTS.HEADER_ACCOUNT_ID: bob_id}, json=[{"id": "bobs", "sync_operation": "create"}])

        response = self.client.get(f"{API}/entries/sync/updatelist", headers={CONSTANTS.HEADER_ACCOUNT_ID: alice_id, CONSTANTS.HEADER_ID_LIST: "bobs"})

        self.assertEqual(403, response.status_code)


    def test_sync_unknown_account(self):

        response = self.client.get(f"{API}/entries/sync/checklist", headers={CONSTANTS.HEADER_ACCOUNT_ID: "acc-404"})
        self.assertEqual(404, response.status_code)

        response = self.client.get(f"{API}/entries/sync/checklist")
        self.assertEqual(400, response.status_code)


if __name__ == "__main__":
    unittest.main()
