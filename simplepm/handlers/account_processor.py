#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: account_processor.py

    Description:
        Implements SimplePM's account lifecycle and credential-rotation state
        machine: login availability, authentication, registration, password
        and login rotation, account deletion, and the master-password flows
        (retrieve, reset to a one-time operation code, set new). Every inbound
        credential arrives RSA-OAEP encrypted under the process public key and
        is decrypted before any comparison or storage. Passwords and master
        passwords are stored only as salted Argon2id hashes. Lookup failures
        raise NOT_FOUND tagged with the login argument, credential mismatches
        raise AUTH_FAILED tagged with the password or code argument.
"""


import hmac
import secrets
import typing
import uuid
from simplepm.database.account_table import AccountTable
from simplepm.database.entry_table import EntryTable
from simplepm.database.models import Account, MasterCredential
from simplepm.encryption.RSA_manager import RSAManager
from simplepm.encryption.credential_hasher import CredentialHasher
from simplepm.handlers.error_handler import SimplePMError, ApplicationCodes, HTTPCodes
import simplepm.handlers.sanitization_validation as VALIDATION
import simplepm.constants as CONSTANTS


####################################################################################################
#                                       Account Processor
####################################################################################################

"""
    AccountProcessor

    Coordinates account flows between the transport crypto, the credential
    hasher and the account store:

        - Decrypting inbound fields with the process RSA private key
        - Hashing every stored credential with a fresh salt
        - Refreshing the account snapshot after each credential write
        - Representing a pending master reset as a tagged MasterCredential

    All failures raise SimplePMError so the Flask layer can format a consistent
    JSON error payload.
"""
class AccountProcessor:

    """
        Initialize the AccountProcessor with its stores and crypto helpers.

        @param accounts (AccountTable): Account store.
        @param entries (EntryTable): Entry store (entry snapshots are dropped on account deletion).
        @param rsa_manager (RSAManager): Process key holder for inbound decryption.
        @param hasher (CredentialHasher): Salted hashing of credentials.
        @require all collaborators are of the annotated types
    """
    def __init__(self, accounts: AccountTable, entries: EntryTable, rsa_manager: RSAManager, hasher: CredentialHasher) -> None:

        try:
            if not isinstance(accounts, AccountTable):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "AccountProcessor requires an AccountTable", "accounts")
            if not isinstance(entries, EntryTable):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "AccountProcessor requires an EntryTable", "entries")
            if not isinstance(rsa_manager, RSAManager):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "AccountProcessor requires an RSAManager", "rsa_manager")
            if not isinstance(hasher, CredentialHasher):
                raise SimplePMError(ApplicationCodes.INVALID_TYPE, HTTPCodes.INTERNAL_SERVER_ERROR, "AccountProcessor requires a CredentialHasher", "hasher")

            self._accounts: AccountTable = accounts
            self._entries: EntryTable = entries
            self._rsa_manager: RSAManager = rsa_manager
            self._hasher: CredentialHasher = hasher

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to initialize AccountProcessor", "account_processor_init")



    ################################################################################################
    #                                   INTERNAL HELPERS
    ################################################################################################

    """
        Decrypt one inbound field with the process private key.

        @param cipher_text (str): Base64URL RSA-OAEP ciphertext.
        @param field_name (str): Argument name the failure is tagged with.
        @return str: Plaintext.
    """
    def _decrypt(self, cipher_text: typing.Any, field_name: str) -> str:
        try:
            return self._rsa_manager.decrypt_with_server_key(cipher_text)
        except SimplePMError as e:
            raise SimplePMError(e.application_code, e.http_code, e.detail, field_name)


    """
        Resolve an account by plaintext login.

        @ensures Raises NOT_FOUND tagged with field_name when no account has this login.
    """
    def _require_account(self, login: str, field_name: str) -> Account:

        if not login.strip():
            raise SimplePMError(ApplicationCodes.NOT_FOUND, HTTPCodes.NOT_FOUND, CONSTANTS.corrupted_or_missing_message("login"), field_name)

        account = self._accounts.retrieve(login)

        if account is None:
            raise SimplePMError(ApplicationCodes.NOT_FOUND, HTTPCodes.NOT_FOUND, "Account not found", field_name)

        return account


    """
        Verify a plaintext password against the account's stored hash.

        @ensures Raises AUTH_FAILED tagged with field_name on mismatch.
    """
    def _require_password(self, account: Account, password: str, field_name: str) -> None:
        if not self._hasher.verify(password, account.salt, account.password):
            raise SimplePMError(ApplicationCodes.AUTH_FAILED, HTTPCodes.UNAUTHORIZED, CONSTANTS.incorrect_value_message("password"), field_name)


    """
        Re-snapshot an account after a write.

        @ensures Raises CACHE_INCONSISTENCY when the snapshot cannot be written.
    """
    def _refresh_account_cache(self, login: str) -> None:
        try:
            refreshed = self._accounts.refresh_cache(login)
        except SimplePMError:
            refreshed = False

        if not refreshed:
            raise SimplePMError(ApplicationCodes.CACHE_INCONSISTENCY, HTTPCodes.INTERNAL_SERVER_ERROR, "Account stored but its snapshot could not be refreshed", "accounts")


    @staticmethod
    def _master_envelope(master: typing.Optional[MasterCredential]) -> dict:

        # A pending operation code never leaves the server in clear
        if master is None or master.is_pending:
            return {"master_password": None, "master_salt": None, "master_pending": master is not None}

        return {"master_password": master.value, "master_salt": master.salt, "master_pending": False}


    ################################################################################################
    #                                   ACCOUNT FLOWS
    ################################################################################################

    """
        Report whether a login is free for registration.

        @param encrypted_login (str): Login encrypted under the process key.
        @return bool: True when no account uses the login.
    """
    def is_login_available(self, encrypted_login: str) -> bool:

        try:
            login = self._decrypt(encrypted_login, "encrypted_login")

            if not login.strip():
                raise SimplePMError(ApplicationCodes.INVALID_LOGIN, HTTPCodes.BAD_REQUEST, CONSTANTS.corrupted_or_missing_message("login"), "encrypted_login")

            return self._accounts.retrieve(login) is None

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error checking login availability", "is_login_available")


    """
        Authenticate an account owner.

        @param encrypted_login (str): Login encrypted under the process key.
        @param encrypted_password (str): Password encrypted under the process key.
        @return dict: {account_id, master_password, master_salt, master_pending}
        @ensures Identical inputs return identical results (no state change).
    """
    def authenticate(self, encrypted_login: str, encrypted_password: str) -> dict:

        try:
            login = self._decrypt(encrypted_login, "encrypted_login")
            password = self._decrypt(encrypted_password, "encrypted_password")

            account = self._require_account(login, "encrypted_login")
            self._require_password(account, password, "encrypted_password")

            result = {"account_id": account.account_id}
            result.update(self._master_envelope(account.master))
            return result

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error in authentication flow", "authenticate")


    """
        Register a new account.

        @param encrypted_account (dict): {login, password, master_password?}, each encrypted under the process key.
                                         Client-supplied salts and IDs are ignored.
        @return str: The new account ID (uuid4 hex).
        @ensures Both credentials are stored only as salted hashes with fresh salts; a taken login raises CONSTRAINT_VIOLATION.
    """
    def register(self, encrypted_account: dict) -> str:

        try:
            if not isinstance(encrypted_account, dict):
                raise SimplePMError(ApplicationCodes.INVALID_REQUEST, HTTPCodes.BAD_REQUEST, CONSTANTS.corrupted_or_missing_message("account model"), "encrypted_account")

            VALIDATION.validate_required_fields(encrypted_account, {"login", "password"}, ApplicationCodes.MISSING_FIELDS, "encrypted_account")

            # Decrypt all present fields
            login = self._decrypt(encrypted_account["login"], "login")
            password = self._decrypt(encrypted_account["password"], "password")

            master_plain = None
            if encrypted_account.get("master_password") not in (None, ""):
                master_plain = self._decrypt(encrypted_account["master_password"], "master_password")

            # Validate login
            VALIDATION.validate_string(login, ApplicationCodes.INVALID_LOGIN, "login")
            VALIDATION.validate_max_length(login, CONSTANTS._MAX_LOGIN_LEN, ApplicationCodes.INVALID_LENGTH, "login")

            # Hash both credentials with fresh salts
            salt = self._hasher.generate_salt()
            master = None
            if master_plain is not None:
                master_salt = self._hasher.generate_salt()
                master = MasterCredential.hashed(self._hasher.salt_and_hash(master_plain, master_salt), master_salt)

            account = Account(
                account_id=uuid.uuid4().hex,
                login=login,
                password=self._hasher.salt_and_hash(password, salt),
                salt=salt,
                master=master,
            )

            try:
                self._accounts.create(account)
            except SimplePMError as e:
                if e.application_code == ApplicationCodes.CONSTRAINT_VIOLATION:
                    raise SimplePMError(ApplicationCodes.CONSTRAINT_VIOLATION, HTTPCodes.CONFLICT, CONSTANTS.MESSAGE_LOGIN_OCCUPIED, "login")
                raise

            return account.account_id

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error in registration flow", "register")


    """
        Rotate the account password.

        @param encrypted_current_login (str): Current login.
        @param encrypted_current_password (str): Current password.
        @param encrypted_new_password (str): New password.
        @ensures The new password is stored with a fresh salt and the snapshot is refreshed.
    """
    def update_account_password(self, encrypted_current_login: str, encrypted_current_password: str, encrypted_new_password: str) -> None:

        try:
            login = self._decrypt(encrypted_current_login, "encrypted_current_login")
            current_password = self._decrypt(encrypted_current_password, "encrypted_current_password")
            new_password = self._decrypt(encrypted_new_password, "encrypted_new_password")

            account = self._require_account(login, "encrypted_current_login")
            self._require_password(account, current_password, "encrypted_current_password")

            # Fresh salt for every rotation
            account.salt = self._hasher.generate_salt()
            account.password = self._hasher.salt_and_hash(new_password, account.salt)

            self._accounts.update(account)
            self._refresh_account_cache(login)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error in password rotation", "update_account_password")


    """
        Verify the credentials and the requested login without changing anything.

        @param encrypted_current_login (str): Current login.
        @param encrypted_current_password (str): Current password.
        @param encrypted_new_login (str): New login.
        @return tuple[Account, str, str]: The account, its current login and the new login.
        @ensures A malformed or taken new login raises before any write.
    """
    def check_login_change(self, encrypted_current_login: str, encrypted_current_password: str, encrypted_new_login: str) -> typing.Tuple[Account, str, str]:

        try:
            login = self._decrypt(encrypted_current_login, "encrypted_current_login")
            current_password = self._decrypt(encrypted_current_password, "encrypted_current_password")
            new_login = self._decrypt(encrypted_new_login, "encrypted_new_login")

            VALIDATION.validate_string(new_login, ApplicationCodes.INVALID_LOGIN, "encrypted_new_login")
            VALIDATION.validate_max_length(new_login, CONSTANTS._MAX_LOGIN_LEN, ApplicationCodes.INVALID_LENGTH, "encrypted_new_login")

            account = self._require_account(login, "encrypted_current_login")
            self._require_password(account, current_password, "encrypted_current_password")

            if new_login != login and self._accounts.retrieve(new_login) is not None:
                raise SimplePMError(ApplicationCodes.CONSTRAINT_VIOLATION, HTTPCodes.CONFLICT, CONSTANTS.MESSAGE_LOGIN_OCCUPIED, "encrypted_new_login")

            return account, login, new_login

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error checking login change", "check_login_change")


    """
        Change the account login.

        @param encrypted_current_login (str): Current login.
        @param encrypted_current_password (str): Current password.
        @param encrypted_new_login (str): New login.
        @ensures The old login resolves to nothing afterwards; a taken login raises CONSTRAINT_VIOLATION.
    """
    def update_account_login(self, encrypted_current_login: str, encrypted_current_password: str, encrypted_new_login: str) -> None:

        try:
            account, login, new_login = self.check_login_change(encrypted_current_login, encrypted_current_password, encrypted_new_login)

            if new_login == login:
                return

            try:
                self._accounts.update_login(account.account_id, new_login)
            except SimplePMError as e:
                if e.application_code == ApplicationCodes.CONSTRAINT_VIOLATION:
                    raise SimplePMError(ApplicationCodes.CONSTRAINT_VIOLATION, HTTPCodes.CONFLICT, CONSTANTS.MESSAGE_LOGIN_OCCUPIED, "encrypted_new_login")
                raise

            # Old login must stop resolving immediately
            self._accounts.invalidate_cache(login)
            self._refresh_account_cache(new_login)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error in login rotation", "update_account_login")


    """
        Delete an account and, by cascade, all of its entries.

        @param encrypted_login (str): Login.
        @param encrypted_password (str): Password.
        @return str: The deleted account ID.
        @ensures Account and entry-set snapshots are dropped.
    """
    def delete_account(self, encrypted_login: str, encrypted_password: str) -> str:

        try:
            login = self._decrypt(encrypted_login, "encrypted_login")
            password = self._decrypt(encrypted_password, "encrypted_password")

            account = self._require_account(login, "encrypted_login")
            self._require_password(account, password, "encrypted_password")

            self._accounts.delete(account.account_id)

            self._accounts.invalidate_cache(login)
            self._entries.invalidate_cache(account.account_id)

            return account.account_id

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error in account deletion", "delete_account")


    ################################################################################################
    #                                   MASTER PASSWORD FLOWS
    ################################################################################################

    """
        Return the stored master envelope of an account (no password check).

        @param encrypted_login (str): Login.
        @return dict: {master_password, master_salt, master_pending}
        @ensures A pending operation code is never returned.
    """
    def retrieve_master_password(self, encrypted_login: str) -> dict:

        try:
            login = self._decrypt(encrypted_login, "encrypted_login")

            account = self._require_account(login, "encrypted_login")

            return self._master_envelope(account.master)

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error retrieving master password", "retrieve_master_password")


    """
        Replace the master credential by a one-time operation code.

        @param encrypted_login (str): Login.
        @param encrypted_password (str): Account password.
        @param client_public_key (str): PEM RSA public key the code is returned under.
        @return str: The operation code encrypted under client_public_key.
        @ensures The client key is validated before anything is persisted; the code expires after OPERATION_CODE_TTL_SECONDS.
    """
    def reset_master_password(self, encrypted_login: str, encrypted_password: str, client_public_key: str) -> str:

        try:
            login = self._decrypt(encrypted_login, "encrypted_login")
            password = self._decrypt(encrypted_password, "encrypted_password")

            account = self._require_account(login, "encrypted_login")
            self._require_password(account, password, "encrypted_password")

            operation_code = secrets.token_hex(16)

            # Encrypting first validates the client key
            try:
                encrypted_code = self._rsa_manager.encrypt(operation_code, client_public_key)
            except SimplePMError as e:
                raise SimplePMError(e.application_code, e.http_code, e.detail, "client_public_key")

            account.master = MasterCredential.pending_operation(operation_code)
            self._accounts.update(account)
            self._refresh_account_cache(login)

            return encrypted_code

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error resetting master password", "reset_master_password")


    """
        Set a new master password.

        @param encrypted_login (str): Login.
        @param encrypted_code_or_current_master (str): The operation code of a pending reset,
                                                       or the stored master hash.
        @param encrypted_new_master (str): New master password.
        @return dict: {master_password, master_salt} of the new credential.
        @ensures The supplied value is compared verbatim in constant time; an expired code raises AUTH_FAILED;
                 success overwrites any operation code so each code works once.
    """
    def set_new_master_password(self, encrypted_login: str, encrypted_code_or_current_master: str, encrypted_new_master: str) -> dict:

        try:
            login = self._decrypt(encrypted_login, "encrypted_login")
            supplied = self._decrypt(encrypted_code_or_current_master, "encrypted_code_or_current_master")
            new_master = self._decrypt(encrypted_new_master, "encrypted_new_master")

            account = self._require_account(login, "encrypted_login")
            master = account.master

            mismatch = SimplePMError(ApplicationCodes.AUTH_FAILED, HTTPCodes.UNAUTHORIZED, CONSTANTS.incorrect_value_message("operation code"), "encrypted_code_or_current_master")

            # Accounts without a master credential must go through reset first
            if master is None or not master.value:
                raise mismatch

            if master.is_pending and master.is_expired():
                raise mismatch

            if not hmac.compare_digest(supplied.encode("utf-8"), master.value.encode("utf-8")):
                raise mismatch

            new_salt = self._hasher.generate_salt()
            account.master = MasterCredential.hashed(self._hasher.salt_and_hash(new_master, new_salt), new_salt)

            self._accounts.update(account)
            self._refresh_account_cache(login)

            return {"master_password": account.master.value, "master_salt": account.master.salt}

        except SimplePMError:
            raise

        except Exception:
            raise SimplePMError(ApplicationCodes.INTERNAL_SERVER_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Unexpected error setting master password", "set_new_master_password")
