"""
Transaction construction, signing and broadcast for PhiWallet.

Lifecycle of a single user action:

    IDLE -> AWAITING_CREDENTIAL -> SIGNING -> BROADCASTING -> COMPLETED
                                                           +-> FAILED

``AWAITING_CREDENTIAL`` is only entered for encrypted wallets; legacy and
external-keyring wallets go straight to signing.  Any error moves the
builder to ``FAILED`` and is re-raised to the caller unchanged.

Broadcast is at-most-once: there is no retry and no idempotency key.  The
hash of the signed bytes is computed locally and exposed on
:class:`SignedTransaction` so a caller whose acknowledgement was lost can
look the transaction up before deciding to resend.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from phiwallet_core.errors import ChainError, NetworkError, ValidationError
from phiwallet_core.keys import SigningAccount, is_valid_address
from phiwallet_core.messages import (
    AUTH_INFO,
    MSG_CREATE_IDENTITY,
    MSG_SEND,
    MSG_UPDATE_IDENTITY,
    SECP256K1_PUBKEY,
    SIGN_DOC,
    SIGN_MODE_DIRECT,
    TX_BODY,
    TX_MESSAGE_TYPES,
    TX_RAW,
)
from phiwallet_core.wallet import (
    EncryptedWallet,
    ExternalKeyringWallet,
    LegacyWallet,
    WalletRecord,
    classify,
)
from phiwallet_core.wire import MessageType, encode_message

if TYPE_CHECKING:
    from phiwallet_core.config import FeeSpec, PhiWalletConfig
    from phiwallet_core.transport import Transport
    from phiwallet_core.vault import CredentialVault

logger = logging.getLogger("phiwallet_builder")

BROADCAST_MODE_SYNC = "BROADCAST_MODE_SYNC"


class TxState(Enum):
    IDLE = "idle"
    AWAITING_CREDENTIAL = "awaiting_credential"
    SIGNING = "signing"
    BROADCASTING = "broadcasting"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[TxState, set[TxState]] = {
    TxState.IDLE: {TxState.AWAITING_CREDENTIAL, TxState.SIGNING, TxState.FAILED},
    TxState.AWAITING_CREDENTIAL: {TxState.SIGNING, TxState.FAILED},
    TxState.SIGNING: {TxState.BROADCASTING, TxState.FAILED},
    TxState.BROADCASTING: {TxState.COMPLETED, TxState.FAILED},
    TxState.COMPLETED: {TxState.IDLE},
    TxState.FAILED: {TxState.IDLE},
}


# ═══════════════════════════════════════════════════════════════════
#  Values
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Coin:
    denom: str
    amount: str

    def to_wire(self) -> dict:
        return {"denom": self.denom, "amount": self.amount}


@dataclass(frozen=True)
class Fee:
    amount: tuple[Coin, ...]
    gas: int

    @classmethod
    def from_spec(cls, spec: FeeSpec) -> Fee:
        return cls((Coin(spec.denom, str(spec.amount)),), int(spec.gas))


@dataclass
class PendingTransaction:
    """One message plus its fee and memo, discarded after broadcast."""
    message_type: MessageType
    fields: dict[str, Any]
    fee: Fee
    memo: str = ""

    @property
    def signer(self) -> str:
        return self.fields.get("from_address") or self.fields.get("creator") or ""

    def encode(self) -> bytes:
        return encode_message(self.message_type, self.fields)

    def as_any(self) -> dict:
        return {"type_url": self.message_type.type_url, "value": self.encode()}


@dataclass(frozen=True)
class AccountInfo:
    address: str
    account_number: int
    sequence: int


@dataclass(frozen=True)
class SignedTransaction:
    body_bytes: bytes
    auth_info_bytes: bytes
    signature: bytes
    tx_bytes: bytes
    local_hash: str = field(default="")

    @property
    def tx_bytes_b64(self) -> str:
        return base64.b64encode(self.tx_bytes).decode("ascii")


@dataclass(frozen=True)
class BroadcastResult:
    success: bool
    hash: str
    height: int
    raw_log: str
    explorer_url: str

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "hash": self.hash,
            "height": self.height,
            "raw_log": self.raw_log,
            "explorer_url": self.explorer_url,
        }


class ExternalSigner(Protocol):
    """Signs on behalf of keyring wallets whose keys never reach this process."""

    async def get_public_key(self, address: str) -> bytes: ...

    async def sign_direct(self, address: str, sign_doc: bytes) -> bytes: ...


def to_minimal_units(amount: Any, decimals: int) -> str:
    """Convert a display amount (``"1.5"``) to minimal units (``"1500000"``)."""
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {amount!r}") from None
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be greater than zero")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(f"Amount supports at most {decimals} decimal places")
    return str(int(scaled))


# ═══════════════════════════════════════════════════════════════════
#  Builder
# ═══════════════════════════════════════════════════════════════════

class TransactionBuilder:
    """Composes, signs and broadcasts one transaction at a time.

    The caller serialises signing requests per wallet; the builder tracks
    the state of the current attempt but holds no lock.
    """

    def __init__(self, config: PhiWalletConfig, vault: CredentialVault,
                 transport: Transport, external_signer: ExternalSigner | None = None):
        self.config = config
        self.vault = vault
        self.transport = transport
        self.external_signer = external_signer
        self.state = TxState.IDLE
        self.transitions: list[TxState] = [TxState.IDLE]

    def _transition(self, new_state: TxState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal transition {self.state.name} -> {new_state.name}")
        logger.debug(f"tx state {self.state.name} -> {new_state.name}")
        self.state = new_state
        self.transitions.append(new_state)

    def reset(self) -> None:
        if self.state in (TxState.COMPLETED, TxState.FAILED):
            self._transition(TxState.IDLE)
        self.transitions = [self.state]

    # ── compose ────────────────────────────────────────────────────

    def compose_send(self, sender: str, recipient: str, amount: Any,
                     memo: str = "") -> PendingTransaction:
        prefix = self.config.chain.address_prefix
        if not sender:
            raise ValidationError("Sender address is required")
        recipient = (recipient or "").strip()
        if not recipient:
            raise ValidationError("Recipient address is required")
        if not is_valid_address(recipient, prefix):
            raise ValidationError(f"Invalid recipient address: {recipient}")
        micro = to_minimal_units(amount, self.config.currency.decimals)
        return PendingTransaction(
            message_type=MSG_SEND,
            fields={
                "from_address": sender,
                "to_address": recipient,
                "amount": [Coin(self.config.currency.minimal_denom, micro).to_wire()],
            },
            fee=Fee.from_spec(self.config.fees.transfer),
            memo=memo or "",
        )

    def compose_create_identity(self, creator: str, cccd_id: str,
                                memo: str = "") -> PendingTransaction:
        if not creator:
            raise ValidationError("Creator address is required")
        cccd_id = (cccd_id or "").strip()
        if not cccd_id:
            raise ValidationError("Identity card number is required")
        return PendingTransaction(
            message_type=MSG_CREATE_IDENTITY,
            fields={"creator": creator, "cccd_id": cccd_id},
            fee=Fee.from_spec(self.config.fees.identity_create),
            memo=memo or "",
        )

    def compose_update_identity(self, creator: str, identity_id: Any,
                                full_name: str = "", date_of_birth: str = "",
                                is_verified: bool = False, verified_by: str = "",
                                memo: str = "") -> PendingTransaction:
        if not creator:
            raise ValidationError("Creator address is required")
        if identity_id is None or isinstance(identity_id, bool) or identity_id == "":
            raise ValidationError("Identity id is required")
        try:
            ident = int(identity_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid identity id: {identity_id!r}") from None
        if ident < 0:
            raise ValidationError("Identity id cannot be negative")
        return PendingTransaction(
            message_type=MSG_UPDATE_IDENTITY,
            fields={
                "creator": creator,
                "id": ident,
                "full_name": full_name or "",
                "date_of_birth": date_of_birth or "",
                "is_verified": bool(is_verified),
                "verified_by": verified_by or "",
            },
            fee=Fee.from_spec(self.config.fees.identity_update),
            memo=memo or "",
        )

    # ── chain look-ups ─────────────────────────────────────────────

    async def fetch_account(self, address: str) -> AccountInfo:
        """Account number and sequence from the auth module."""
        url = f"{self.config.chain.rest_endpoint}/cosmos/auth/v1beta1/accounts/{address}"
        try:
            data = await self.transport.get_json(url)
        except NetworkError as exc:
            if exc.status == 404:
                raise ValidationError(
                    f"Account {address} does not exist on chain; fund it first"
                ) from exc
            raise
        account = (data or {}).get("account") if isinstance(data, dict) else None
        if not isinstance(account, dict):
            raise NetworkError("Malformed account response", url=url)
        # vesting and module accounts wrap the base account
        if isinstance(account.get("base_vesting_account"), dict):
            account = account["base_vesting_account"].get("base_account") or account
        elif isinstance(account.get("base_account"), dict):
            account = account["base_account"]
        try:
            return AccountInfo(
                address=account.get("address") or address,
                account_number=int(account.get("account_number") or 0),
                sequence=int(account.get("sequence") or 0),
            )
        except (TypeError, ValueError) as exc:
            raise NetworkError("Malformed account response", url=url) from exc

    # ── signing ────────────────────────────────────────────────────

    def build_sign_doc(self, pending: PendingTransaction, public_key: bytes,
                       account: AccountInfo) -> tuple[bytes, bytes, bytes]:
        """Return ``(body_bytes, auth_info_bytes, sign_doc_bytes)``."""
        body_bytes = encode_message(TX_BODY, {
            "messages": [pending.as_any()],
            "memo": pending.memo,
        })
        auth_info_bytes = encode_message(AUTH_INFO, {
            "signer_infos": [{
                "public_key": {
                    "type_url": SECP256K1_PUBKEY.type_url,
                    "value": encode_message(SECP256K1_PUBKEY, {"key": public_key}),
                },
                "mode_info": {"single": {"mode": SIGN_MODE_DIRECT}},
                "sequence": account.sequence,
            }],
            "fee": {
                "amount": [coin.to_wire() for coin in pending.fee.amount],
                "gas_limit": pending.fee.gas,
            },
        })
        sign_doc = encode_message(SIGN_DOC, {
            "body_bytes": body_bytes,
            "auth_info_bytes": auth_info_bytes,
            "chain_id": self.config.chain.chain_id,
            "account_number": account.account_number,
        })
        return body_bytes, auth_info_bytes, sign_doc

    @staticmethod
    def assemble(body_bytes: bytes, auth_info_bytes: bytes,
                 signature: bytes) -> SignedTransaction:
        tx_bytes = encode_message(TX_RAW, {
            "body_bytes": body_bytes,
            "auth_info_bytes": auth_info_bytes,
            "signatures": [signature],
        })
        return SignedTransaction(
            body_bytes=body_bytes,
            auth_info_bytes=auth_info_bytes,
            signature=signature,
            tx_bytes=tx_bytes,
            local_hash=hashlib.sha256(tx_bytes).hexdigest().upper(),
        )

    async def sign(self, pending: PendingTransaction, record: WalletRecord,
                   password: str | None = None) -> SignedTransaction:
        if TX_MESSAGE_TYPES.get(pending.message_type.type_url) is not pending.message_type:
            raise ValidationError(f"Unsupported message type {pending.message_type.name}")
        variant = classify(record)

        if isinstance(variant, (EncryptedWallet, LegacyWallet)):
            with self.vault.unlocked(record, password) as phrase:
                signer = SigningAccount.from_mnemonic(
                    phrase, self.config.chain.address_prefix
                )
            try:
                if pending.signer != signer.address:
                    raise ValidationError("Wallet key does not match the transaction signer")
                account = await self.fetch_account(signer.address)
                body, auth_info, sign_doc = self.build_sign_doc(
                    pending, signer.public_key, account
                )
                signature = signer.sign_direct(sign_doc)
            finally:
                signer.wipe()

        elif isinstance(variant, ExternalKeyringWallet):
            if self.external_signer is None:
                raise ValidationError("No external signer available for this wallet")
            address = pending.signer
            if address not in {a.address for a in variant.accounts}:
                raise ValidationError("Wallet key does not match the transaction signer")
            public_key = await self.external_signer.get_public_key(address)
            account = await self.fetch_account(address)
            body, auth_info, sign_doc = self.build_sign_doc(pending, public_key, account)
            signature = await self.external_signer.sign_direct(address, sign_doc)
            if len(signature) != 64:
                raise ValidationError("External signer returned a malformed signature")

        else:
            raise ValidationError("No mnemonic available in wallet")

        signed = self.assemble(body, auth_info, signature)
        logger.info(
            f"Signed {pending.message_type.name} for {pending.signer} "
            f"(seq {account.sequence}, local hash {signed.local_hash})"
        )
        return signed

    # ── broadcast ──────────────────────────────────────────────────

    async def broadcast(self, signed: SignedTransaction) -> BroadcastResult:
        """Submit once in sync mode; ``code != 0`` raises ChainError."""
        url = f"{self.config.chain.rest_endpoint}/cosmos/tx/v1beta1/txs"
        data = await self.transport.post_json(
            url, {"tx_bytes": signed.tx_bytes_b64, "mode": BROADCAST_MODE_SYNC}
        )
        response = data.get("tx_response") if isinstance(data, dict) else None
        if not isinstance(response, dict):
            raise NetworkError(
                f"Malformed broadcast response (local hash {signed.local_hash})", url=url
            )

        raw_log = response.get("raw_log") or ""
        try:
            code = int(response.get("code") or 0)
            height = int(response.get("height") or 0)
        except (TypeError, ValueError) as exc:
            raise NetworkError(
                f"Malformed broadcast response (local hash {signed.local_hash})", url=url
            ) from exc
        if code != 0:
            logger.warning(f"Broadcast rejected with code {code}: {raw_log}")
            raise ChainError(code, raw_log)

        tx_hash = response.get("txhash") or signed.local_hash
        result = BroadcastResult(
            success=True,
            hash=tx_hash,
            height=height,
            raw_log=raw_log,
            explorer_url=f"{self.config.chain.explorer_url}/tx/{tx_hash}",
        )
        logger.info(f"Broadcast accepted: {tx_hash}")
        return result

    async def submit(self, pending: PendingTransaction, record: WalletRecord,
                     password: str | None = None) -> BroadcastResult:
        """Run one full IDLE -> COMPLETED/FAILED cycle."""
        if self.state not in (TxState.IDLE, TxState.COMPLETED, TxState.FAILED):
            raise ValidationError("Another transaction is already in progress")
        self.reset()

        try:
            if isinstance(classify(record), EncryptedWallet):
                self._transition(TxState.AWAITING_CREDENTIAL)
                if not password:
                    raise ValidationError("Password required for encrypted wallet")
            self._transition(TxState.SIGNING)
            signed = await self.sign(pending, record, password)
            self._transition(TxState.BROADCASTING)
            result = await self.broadcast(signed)
        except Exception:
            self._transition(TxState.FAILED)
            raise
        self._transition(TxState.COMPLETED)
        return result

    # ── convenience flows ──────────────────────────────────────────

    async def send_tokens(self, record: WalletRecord, recipient: str, amount: Any,
                          password: str | None = None, memo: str = "") -> BroadcastResult:
        pending = self.compose_send(record.primary_address, recipient, amount, memo)
        return await self.submit(pending, record, password)

    async def create_identity(self, record: WalletRecord, cccd_id: str,
                              password: str | None = None) -> BroadcastResult:
        pending = self.compose_create_identity(record.primary_address, cccd_id)
        return await self.submit(pending, record, password)

    async def update_identity(self, record: WalletRecord, identity_id: Any,
                              password: str | None = None, **changes: Any) -> BroadcastResult:
        pending = self.compose_update_identity(record.primary_address, identity_id, **changes)
        return await self.submit(pending, record, password)
