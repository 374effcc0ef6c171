#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: RSA_manager.py

    Description:
        Manages SimplePM's process-lifetime RSA-2048 keypair. The keypair is
        generated in memory when the manager is created and is never written to
        disk; its public half is published together with a key epoch identifier
        so clients can detect a server restart. Provides RSA-OAEP (SHA-256)
        encryption and decryption of UTF-8 text carried as Base64URL, using
        either caller-supplied PEM keys or the process private key.
"""

import uuid
import threading
import typing
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives import serialization, hashes
from simplepm.handlers.error_handler import HTTPCodes, ApplicationCodes, SimplePMError
import simplepm.handlers.sanitization_validation as VALIDATION
import simplepm.constants as CONSTANTS


# OAEP padding shared by every encrypt / decrypt call
_OAEP = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


class RSAManager:

    """
        Initialize an RSAManager instance and generate the process RSA-2048 keypair.

        @ensures A valid RSA-2048 private key, key identifier and creation time are available in memory.
    """
    def __init__(self):

        try:
            # Lock to use for threading
            self._lock = threading.RLock()

            # Generate the process keypair (memory only)
            self._private_key = rsa.generate_private_key(public_exponent=CONSTANTS._RSA_PUBLIC_EXPONENT, key_size=CONSTANTS._RSA_KEY_SIZE_BITS)

            # Key epoch metadata, published with the public key
            self._key_identifier: str = uuid.uuid4().hex
            self._key_creation_time: str = VALIDATION.get_timestamp_iso8601z()

            # Cache the PEM of the public half
            self._public_pem: str = self._private_key.public_key().public_bytes(encoding=serialization.Encoding.PEM, format=serialization.PublicFormat.SubjectPublicKeyInfo).decode("utf-8")

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.RSA_INIT_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to initialize RSAManager", "rsa_manager")



    @property
    def key_identifier(self) -> str:
        return self._key_identifier


    @property
    def public_key_pem(self) -> str:
        return self._public_pem



    """
        Generate a fresh RSA-2048 keypair serialized as PEM text.

        @return tuple[str, str]: (private_key_pem in PKCS#8, public_key_pem in SubjectPublicKeyInfo)
        @ensures Neither key is persisted anywhere.
    """
    @staticmethod
    def generate_key_pair() -> typing.Tuple[str, str]:
        try:
            private_key = rsa.generate_private_key(public_exponent=CONSTANTS._RSA_PUBLIC_EXPONENT, key_size=CONSTANTS._RSA_KEY_SIZE_BITS)

            private_pem = private_key.private_bytes(encoding=serialization.Encoding.PEM, format=serialization.PrivateFormat.PKCS8, encryption_algorithm=serialization.NoEncryption()).decode("utf-8")
            public_pem = private_key.public_key().public_bytes(encoding=serialization.Encoding.PEM, format=serialization.PublicFormat.SubjectPublicKeyInfo).decode("utf-8")

            return private_pem, public_pem

        except Exception:
            raise SimplePMError(ApplicationCodes.RSA_KEY_GENERATION_ERROR, HTTPCodes.INTERNAL_SERVER_ERROR, "Failed to generate RSA keypair", "rsa_key")



    """
        Retrieve the process RSA public key and its epoch metadata.

        @return dict: {
            'rsa_public_key': PEM-formatted public key,
            'key_identifier': identifier string, new on every process start,
            'key_creation_time': ISO8601Z timestamp
        }
    """
    def get_public_key_data(self) -> dict:
        return {
            "rsa_public_key": self._public_pem,
            "key_identifier": self._key_identifier,
            "key_creation_time": self._key_creation_time,
        }



    """
        Encrypt text using RSA-OAEP (SHA-256) with a PEM-encoded public key.

        @param plain_text (str): Text to encrypt.
        @param public_key_pem (str): PEM-encoded RSA public key.
        @require isinstance(public_key_pem, str) and public_key_pem.strip() != ""
        @return str: Base64URL (unpadded) ciphertext.
        @ensures Returned ciphertext is produced using RSA-OAEP with SHA-256.
    """
    def encrypt(self, plain_text: str, public_key_pem: str) -> str:
        try:
            # Validate and parse the public key
            public_key = self._load_public_key(public_key_pem)

            # Validate and encode the plaintext
            if not isinstance(plain_text, str):
                raise SimplePMError(ApplicationCodes.ENCODING_ERROR, HTTPCodes.BAD_REQUEST, "Plaintext must be a string", "plain_text")
            data = VALIDATION.encode_utf8_text_to_bytes(plain_text)

            # Encrypt using RSA-OAEP with SHA-256 (fails when the text is too long for the key)
            try:
                encrypted_data = public_key.encrypt(data, _OAEP)
            except Exception:
                raise SimplePMError(ApplicationCodes.CRYPTO_FAILURE, HTTPCodes.BAD_REQUEST, "RSA-OAEP encryption failure", "plain_text")

            return VALIDATION.encode_bytes_to_base64url(encrypted_data)

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.CRYPTO_FAILURE, HTTPCodes.BAD_REQUEST, "RSA-OAEP encryption failure", "plain_text")



    """
        Decrypt Base64URL RSA-OAEP ciphertext using a PEM-encoded private key.

        @param cipher_text (str): Base64URL ciphertext.
        @param private_key_pem (str): PEM-encoded RSA private key (unencrypted PKCS#8 or PKCS#1).
        @return str: UTF-8 decoded plaintext.
        @ensures Wrong key and corrupted payload raise the same CRYPTO_FAILURE error.
    """
    def decrypt(self, cipher_text: str, private_key_pem: str) -> str:
        try:
            # Validate and parse the private key
            if not isinstance(private_key_pem, str) or not private_key_pem.strip():
                raise SimplePMError(ApplicationCodes.INVALID_KEY, HTTPCodes.BAD_REQUEST, "Private key PEM must be a non-empty string", "private_key")

            try:
                private_key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
            except Exception:
                raise SimplePMError(ApplicationCodes.INVALID_KEY, HTTPCodes.BAD_REQUEST, "Failed to parse RSA private key PEM", "private_key")

            if not isinstance(private_key, rsa.RSAPrivateKey):
                raise SimplePMError(ApplicationCodes.INVALID_KEY, HTTPCodes.BAD_REQUEST, "Parsed key is not an RSA private key", "private_key")

            return self._decrypt_with(private_key, cipher_text)

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.CRYPTO_FAILURE, HTTPCodes.BAD_REQUEST, "RSA-OAEP decryption failure", "cipher_text")



    """
        Decrypt Base64URL RSA-OAEP ciphertext with the process private key.

        @param cipher_text (str): Ciphertext produced with the key from get_public_key_data().
        @return str: UTF-8 decoded plaintext.
        @ensures Values encrypted for a previous key epoch fail with CRYPTO_FAILURE.
    """
    def decrypt_with_server_key(self, cipher_text: str) -> str:
        try:
            with self._lock:
                private_key = self._private_key

            return self._decrypt_with(private_key, cipher_text)

        except SimplePMError:
            raise
        except Exception:
            raise SimplePMError(ApplicationCodes.CRYPTO_FAILURE, HTTPCodes.BAD_REQUEST, "RSA-OAEP decryption failure", "cipher_text")



    def _decrypt_with(self, private_key, cipher_text: str) -> str:

        # Validate and decode the ciphertext
        encrypted_data = VALIDATION.decode_base64url_to_bytes("cipher_text", cipher_text, ApplicationCodes.INVALID_CIPHERTEXT)

        # Decrypt; wrong key and corrupted payload are indistinguishable
        try:
            data = private_key.decrypt(encrypted_data, _OAEP)
        except Exception:
            raise SimplePMError(ApplicationCodes.CRYPTO_FAILURE, HTTPCodes.BAD_REQUEST, "RSA-OAEP decryption failure", "cipher_text")

        return VALIDATION.decode_bytes_to_utf8_text(data)



    def _load_public_key(self, public_key_pem: str):

        if not isinstance(public_key_pem, str) or not public_key_pem.strip():
            raise SimplePMError(ApplicationCodes.INVALID_KEY, HTTPCodes.BAD_REQUEST, "Public key PEM must be a non-empty string", "public_key")

        try:
            public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
        except Exception:
            raise SimplePMError(ApplicationCodes.INVALID_KEY, HTTPCodes.BAD_REQUEST, "Failed to parse RSA public key PEM", "public_key")

        # Ensure we have a valid RSAPublicKey instance
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise SimplePMError(ApplicationCodes.INVALID_KEY, HTTPCodes.BAD_REQUEST, "Parsed key is not an RSA public key", "public_key")

        return public_key
