"""
Credential vault for PhiWallet recovery phrases.

At rest a phrase is stored as an opaque string: base64 of a small JSON
envelope holding an AES-256-GCM ciphertext whose key is derived from the
spending password with PBKDF2-HMAC-SHA256.

    {
      "version": 1,
      "kdf": "pbkdf2-hmac-sha256",
      "kdf_iterations": 600000,
      "salt": "<hex>", "nonce": "<hex>", "tag": "<hex>",
      "ciphertext": "<hex>"
    }

Decryption failures (wrong password, truncated or tampered envelope) all
produce the same ``None`` result.  Plaintext is only handed out through
:meth:`CredentialVault.unlocked`, scoped to a single signing operation, or
through :meth:`CredentialVault.reveal_phrase`, which always asks for the
password again.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
from contextlib import contextmanager
from typing import Iterator

from Crypto.Cipher import AES

from phiwallet_core.errors import CredentialError, ValidationError
from phiwallet_core.keys import validate_mnemonic
from phiwallet_core.wallet import (
    EncryptedWallet,
    LegacyWallet,
    WalletRecord,
    WalletVariant,
    classify,
)

logger = logging.getLogger("phiwallet_vault")

ENVELOPE_VERSION = 1
KDF_NAME = "pbkdf2-hmac-sha256"
DEFAULT_ITERATIONS = 600_000


class CredentialVault:
    """Owns the encrypted representation of a wallet's recovery phrase."""

    def __init__(self, iterations: int = DEFAULT_ITERATIONS,
                 min_password_length: int = 6):
        if iterations < 1:
            raise ValueError("iterations must be positive")
        self.iterations = iterations
        self.min_password_length = min_password_length

    @classmethod
    def from_config(cls, cfg) -> CredentialVault:
        return cls(cfg.vault.kdf_iterations, cfg.vault.min_password_length)

    @staticmethod
    def classify(record: WalletRecord) -> WalletVariant:
        return classify(record)

    # ---- symmetric encryption ----

    def _derive_key(self, password: str, salt: bytes, iterations: int) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)

    def encrypt(self, mnemonic: str, password: str) -> str:
        """Encrypt a 12/24-word phrase under *password*."""
        phrase = validate_mnemonic(mnemonic)
        if not password or len(password) < self.min_password_length:
            raise ValidationError(
                f"Spending password must be at least {self.min_password_length} characters"
            )

        salt = os.urandom(16)
        key = self._derive_key(password, salt, self.iterations)
        nonce = os.urandom(12)  # 96-bit nonce, unique per encryption
        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        ciphertext, tag = cipher.encrypt_and_digest(phrase.encode("utf-8"))

        envelope = {
            "version": ENVELOPE_VERSION,
            "kdf": KDF_NAME,
            "kdf_iterations": self.iterations,
            "salt": salt.hex(),
            "nonce": nonce.hex(),
            "tag": tag.hex(),
            "ciphertext": ciphertext.hex(),
        }
        return base64.b64encode(
            json.dumps(envelope, separators=(",", ":")).encode("utf-8")
        ).decode("ascii")

    def decrypt(self, ciphertext: str, password: str) -> str | None:
        """Return the phrase, or ``None`` for a wrong password or bad data."""
        try:
            envelope = json.loads(base64.b64decode(ciphertext, validate=True))
            if envelope.get("version") != ENVELOPE_VERSION or envelope.get("kdf") != KDF_NAME:
                return None
            key = self._derive_key(
                password or "",
                bytes.fromhex(envelope["salt"]),
                int(envelope["kdf_iterations"]),
            )
            cipher = AES.new(key, AES.MODE_GCM, nonce=bytes.fromhex(envelope["nonce"]))
            plain = cipher.decrypt_and_verify(
                bytes.fromhex(envelope["ciphertext"]),
                bytes.fromhex(envelope["tag"]),
            )
            return validate_mnemonic(plain.decode("utf-8"))
        except (ValueError, KeyError, TypeError, AttributeError, ValidationError):
            logger.debug("Phrase decryption failed")
            return None

    # ---- plaintext access ----

    def _phrase_for(self, record: WalletRecord, password: str | None) -> str:
        variant = classify(record)
        if isinstance(variant, EncryptedWallet):
            if not password:
                raise ValidationError("Password required for encrypted wallet")
            phrase = self.decrypt(variant.ciphertext, password)
            if phrase is None:
                raise CredentialError()
            return phrase
        if isinstance(variant, LegacyWallet):
            return validate_mnemonic(variant.mnemonic)
        raise ValidationError("No mnemonic available in wallet")

    @contextmanager
    def unlocked(self, record: WalletRecord, password: str | None = None) -> Iterator[str]:
        """Yield the plaintext phrase for the duration of one signing operation.

        Python strings cannot be zeroed in place; the vault keeps no
        reference once the block exits, and nothing here persists it.
        """
        phrase = self._phrase_for(record, password)
        try:
            yield phrase
        finally:
            del phrase

    def reveal_phrase(self, record: WalletRecord, password: str | None) -> str:
        """Backup flow: hand the phrase to the user for writing down.

        Encrypted wallets always need the password here, independent of any
        signing session the caller may have unlocked.
        """
        variant = classify(record)
        if not isinstance(variant, (EncryptedWallet, LegacyWallet)):
            raise ValidationError(
                "This wallet type cannot be backed up through this interface"
            )
        phrase = self._phrase_for(record, password)
        logger.info(f"Recovery phrase revealed for wallet {record.id}")
        return phrase

    # ---- record transitions ----

    def protect(self, record: WalletRecord, password: str) -> WalletRecord:
        """Turn a legacy plaintext record into an encrypted one."""
        variant = classify(record)
        if not isinstance(variant, LegacyWallet):
            raise ValidationError("Only legacy plaintext wallets can be protected")
        ciphertext = self.encrypt(variant.mnemonic, password)
        logger.info(f"Wallet {record.id} migrated to encrypted storage")
        return record.with_updates(mnemonic=None, encrypted_mnemonic=ciphertext)

    def change_password(self, record: WalletRecord, old_password: str,
                        new_password: str) -> WalletRecord:
        variant = classify(record)
        if not isinstance(variant, EncryptedWallet):
            raise ValidationError("Wallet is not password protected")
        with self.unlocked(record, old_password) as phrase:
            ciphertext = self.encrypt(phrase, new_password)
        logger.info(f"Spending password changed for wallet {record.id}")
        return record.with_updates(encrypted_mnemonic=ciphertext)
