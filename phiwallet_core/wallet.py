"""
Wallet records for PhiWallet.

A :class:`WalletRecord` is the persisted JSON object the surrounding
application keeps (camelCase keys on disk).  It is an immutable value:
changes go through explicit operations that return a new record.

The record's credential shape is turned once into a closed sum type:

    LegacyWallet          plaintext ``mnemonic`` (pre-encryption wallets)
    EncryptedWallet       ``encryptedMnemonic`` only
    ExternalKeyringWallet accounts only; keys live in an external keyring
    UnknownWallet         nothing usable

Storage is behind :class:`WalletRepository` (``load`` / ``save`` / ``clear``);
the core receives record values and never opens a repository itself.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, Union

from phiwallet_core.errors import ValidationError
from phiwallet_core.keys import SigningAccount, generate_mnemonic, validate_mnemonic

if TYPE_CHECKING:
    from phiwallet_core.vault import CredentialVault

logger = logging.getLogger("phiwallet_wallet")


@dataclass(frozen=True)
class WalletAccount:
    address: str

    def to_dict(self) -> dict:
        return {"address": self.address}


@dataclass(frozen=True)
class WalletRecord:
    """Persisted wallet; at most one of the two phrase fields is set."""
    id: str
    name: str
    accounts: tuple[WalletAccount, ...] = ()
    mnemonic: str | None = None
    encrypted_mnemonic: str | None = None
    is_active: bool = True
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def __post_init__(self) -> None:
        if self.mnemonic and self.encrypted_mnemonic:
            raise ValidationError(
                "Wallet record holds both a plaintext and an encrypted phrase"
            )

    @property
    def primary_address(self) -> str:
        if not self.accounts:
            raise ValidationError("Wallet has no accounts")
        return self.accounts[0].address

    def with_updates(self, **changes: Any) -> WalletRecord:
        """Return a copy with *changes* applied (invariants re-checked)."""
        return replace(self, **changes)

    # ---- serialisation ----

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "accounts": [a.to_dict() for a in self.accounts],
            "isActive": self.is_active,
            "createdAt": self.created_at,
        }
        if self.mnemonic:
            data["mnemonic"] = self.mnemonic
        if self.encrypted_mnemonic:
            data["encryptedMnemonic"] = self.encrypted_mnemonic
        return data

    @classmethod
    def from_dict(cls, data: dict) -> WalletRecord:
        if not isinstance(data, dict):
            raise ValidationError("Wallet record must be a JSON object")
        accounts = tuple(
            WalletAccount(a["address"])
            for a in data.get("accounts") or []
            if isinstance(a, dict) and a.get("address")
        )
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            accounts=accounts,
            mnemonic=data.get("mnemonic") or None,
            encrypted_mnemonic=data.get("encryptedMnemonic") or None,
            is_active=bool(data.get("isActive", True)),
            created_at=str(data.get("createdAt") or ""),
        )

    def __repr__(self) -> str:
        # never print phrase material
        return f"WalletRecord(id={self.id!r}, name={self.name!r}, accounts={len(self.accounts)})"


# ═══════════════════════════════════════════════════════════════════
#  Variants
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LegacyWallet:
    mnemonic: str = field(repr=False)
    label = "PhiWallet (Legacy)"


@dataclass(frozen=True)
class EncryptedWallet:
    ciphertext: str = field(repr=False)
    label = "PhiWallet (Encrypted)"


@dataclass(frozen=True)
class ExternalKeyringWallet:
    accounts: tuple[WalletAccount, ...]
    label = "Keyring Wallet"


@dataclass(frozen=True)
class UnknownWallet:
    label = "Unknown Wallet"


WalletVariant = Union[LegacyWallet, EncryptedWallet, ExternalKeyringWallet, UnknownWallet]


def classify(record: WalletRecord) -> WalletVariant:
    """Map a record onto exactly one variant.

    Precedence: encrypted-only, then plaintext, then accounts-only.
    Records holding both phrase forms cannot be constructed.
    """
    if record.encrypted_mnemonic and not record.mnemonic:
        return EncryptedWallet(record.encrypted_mnemonic)
    if record.mnemonic:
        return LegacyWallet(record.mnemonic)
    if record.accounts:
        return ExternalKeyringWallet(record.accounts)
    return UnknownWallet()


def requires_password(record: WalletRecord) -> bool:
    return isinstance(classify(record), EncryptedWallet)


def can_backup(record: WalletRecord) -> bool:
    return isinstance(classify(record), (EncryptedWallet, LegacyWallet))


def describe(record: WalletRecord | None) -> str:
    if record is None:
        return UnknownWallet.label
    return classify(record).label


# ═══════════════════════════════════════════════════════════════════
#  Creation / import
# ═══════════════════════════════════════════════════════════════════

def _new_record(name: str, address: str, **phrase: str | None) -> WalletRecord:
    return WalletRecord(
        id=uuid.uuid4().hex,
        name=name or "Phi Wallet",
        accounts=(WalletAccount(address),),
        **phrase,
    )


def create_wallet(name: str, password: str, vault: CredentialVault,
                  prefix: str = "cosmos") -> tuple[str, WalletRecord]:
    """Create a fresh 24-word wallet.

    Returns ``(mnemonic, record)``: the phrase is handed back once so the
    user can write it down; the record only holds its encrypted form.
    """
    mnemonic = generate_mnemonic(24)
    account = SigningAccount.from_mnemonic(mnemonic, prefix)
    account.wipe()
    ciphertext = vault.encrypt(mnemonic, password)
    record = _new_record(name, account.address, encrypted_mnemonic=ciphertext)
    logger.info(f"Created wallet {record.id} for {account.address}")
    return mnemonic, record


def import_wallet(name: str, mnemonic: str, vault: CredentialVault | None = None,
                  password: str | None = None, prefix: str = "cosmos") -> WalletRecord:
    """Import an existing phrase.

    With a password the record is stored encrypted; without one it is a
    legacy plaintext record.
    """
    phrase = validate_mnemonic(mnemonic)
    account = SigningAccount.from_mnemonic(phrase, prefix)
    account.wipe()
    if password is not None:
        if vault is None:
            raise ValidationError("A vault is required to import with a password")
        record = _new_record(name, account.address,
                             encrypted_mnemonic=vault.encrypt(phrase, password))
    else:
        record = _new_record(name, account.address, mnemonic=phrase)
    logger.info(f"Imported wallet {record.id} for {account.address}")
    return record


# ═══════════════════════════════════════════════════════════════════
#  Repository
# ═══════════════════════════════════════════════════════════════════

class WalletRepository(Protocol):
    def load(self) -> WalletRecord | None: ...
    def save(self, record: WalletRecord) -> None: ...
    def clear(self) -> None: ...


class InMemoryWalletRepository:
    """Repository holding a single record in memory."""

    def __init__(self, record: WalletRecord | None = None):
        self._record = record

    def load(self) -> WalletRecord | None:
        return self._record

    def save(self, record: WalletRecord) -> None:
        self._record = record

    def clear(self) -> None:
        self._record = None


class JsonFileWalletRepository:
    """Repository persisting the active record as a JSON file."""

    def __init__(self, path: str = "data/wallet.json"):
        self.path = Path(path)

    def load(self) -> WalletRecord | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ValidationError(f"Unreadable wallet file {self.path}: {exc}") from exc
        return WalletRecord.from_dict(data)

    def save(self, record: WalletRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f, indent=2)
        os.replace(tmp, self.path)
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            logger.debug(f"Could not restrict permissions on {self.path}")
        logger.info(f"Saved wallet {record.id} to {self.path}")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Removed wallet file {self.path}")

