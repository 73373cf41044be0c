"""
Tests for phiwallet_core.builder — compose, sign, broadcast, state machine.

Covers:
  - Input validation for transfers and identity messages
  - Fixed per-family fees
  - Account lookup (plain and wrapped accounts)
  - Signatures over the SignDoc
  - Broadcast success / ChainError / malformed responses
  - State transitions for legacy, encrypted and keyring wallets
"""

from __future__ import annotations

import base64

import pytest

from conftest import REST, MNEMONIC_12, PASSWORD, FakeTransport, account_response
from phiwallet_core.builder import (
    AccountInfo,
    Fee,
    PendingTransaction,
    TransactionBuilder,
    TxState,
    to_minimal_units,
)
from phiwallet_core.errors import ChainError, CredentialError, NetworkError, ValidationError
from phiwallet_core.keys import SigningAccount, verify_signature
from phiwallet_core.messages import COIN, MSG_CREATE_IDENTITY, MSG_SEND, MSG_UPDATE_IDENTITY
from phiwallet_core.wallet import WalletAccount, WalletRecord

BROADCAST_URL = f"{REST}/cosmos/tx/v1beta1/txs"


def _accounts_url(address: str) -> str:
    return f"{REST}/cosmos/auth/v1beta1/accounts/{address}"


def _wire_chain(transport: FakeTransport, address: str, broadcast_response) -> None:
    transport.get_routes[_accounts_url(address)] = account_response(address)
    transport.post_routes[BROADCAST_URL] = broadcast_response


class _FakeSigner:
    """ExternalSigner backed by a local key."""

    def __init__(self, mnemonic: str):
        self.account = SigningAccount.from_mnemonic(mnemonic)
        self.signed: list[bytes] = []

    async def get_public_key(self, address: str) -> bytes:
        return self.account.public_key

    async def sign_direct(self, address: str, sign_doc: bytes) -> bytes:
        self.signed.append(sign_doc)
        return self.account.sign_direct(sign_doc)


# ═══════════════════════════════════════════════════════════════════
#  Compose
# ═══════════════════════════════════════════════════════════════════

class TestMinimalUnits:
    def test_conversions(self):
        assert to_minimal_units("1", 6) == "1000000"
        assert to_minimal_units("1.5", 6) == "1500000"
        assert to_minimal_units("0.000001", 6) == "1"
        assert to_minimal_units(2, 6) == "2000000"

    @pytest.mark.parametrize("bad", ["0", "-1", "abc", "", "NaN", "Infinity", "0.0000001"])
    def test_rejects(self, bad):
        with pytest.raises(ValidationError):
            to_minimal_units(bad, 6)


class TestCompose:
    def test_send(self, config, vault, transport, address_12, address_24):
        builder = TransactionBuilder(config, vault, transport)
        pending = builder.compose_send(address_12, address_24, "1.5", memo="hi")
        assert pending.message_type is MSG_SEND
        assert pending.fields["amount"] == [{"denom": "stake", "amount": "1500000"}]
        assert pending.fee == Fee.from_spec(config.fees.transfer)
        assert pending.fee.amount[0].amount == "5000"
        assert pending.fee.gas == 200000
        assert pending.memo == "hi"
        assert pending.signer == address_12

    def test_send_validation(self, config, vault, transport, address_12, address_24):
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(ValidationError):
            builder.compose_send(address_12, "", "1")
        with pytest.raises(ValidationError):
            builder.compose_send(address_12, "cosmos1garbage", "1")
        with pytest.raises(ValidationError):
            builder.compose_send(address_12, address_24, "0")
        with pytest.raises(ValidationError):
            builder.compose_send("", address_24, "1")

    def test_send_wrong_prefix(self, config, vault, transport, address_12):
        other = SigningAccount.from_mnemonic(MNEMONIC_12, "viet").address
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(ValidationError):
            builder.compose_send(address_12, other, "1")

    def test_create_identity(self, config, vault, transport, address_12):
        builder = TransactionBuilder(config, vault, transport)
        pending = builder.compose_create_identity(address_12, " 001234567890 ")
        assert pending.message_type is MSG_CREATE_IDENTITY
        assert pending.fields == {"creator": address_12, "cccd_id": "001234567890"}
        assert pending.fee.amount[0].denom == "token"
        assert pending.fee.amount[0].amount == "1000"
        with pytest.raises(ValidationError):
            builder.compose_create_identity(address_12, "  ")

    def test_update_identity_zero_id(self, config, vault, transport, address_12):
        builder = TransactionBuilder(config, vault, transport)
        pending = builder.compose_update_identity(address_12, 0, full_name="A")
        assert pending.message_type is MSG_UPDATE_IDENTITY
        assert pending.fields["id"] == 0
        assert b"\x10\x00" in pending.encode()
        assert pending.fee.amount[0].amount == "0"

    @pytest.mark.parametrize("bad", [None, "", "x", -1, True])
    def test_update_identity_bad_id(self, config, vault, transport, address_12, bad):
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(ValidationError):
            builder.compose_update_identity(address_12, bad)

    def test_update_identity_string_id(self, config, vault, transport, address_12):
        builder = TransactionBuilder(config, vault, transport)
        assert builder.compose_update_identity(address_12, "12").fields["id"] == 12

    def test_as_any(self, config, vault, transport, address_12):
        builder = TransactionBuilder(config, vault, transport)
        any_msg = builder.compose_create_identity(address_12, "1").as_any()
        assert any_msg["type_url"] == "/vietchain.identity.MsgCreateIdentity"
        assert isinstance(any_msg["value"], bytes)


# ═══════════════════════════════════════════════════════════════════
#  Account lookup & signing
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestSigning:
    async def test_fetch_account(self, config, vault, transport, address_12):
        transport.get_routes[_accounts_url(address_12)] = account_response(address_12, 9, 4)
        info = await TransactionBuilder(config, vault, transport).fetch_account(address_12)
        assert info == AccountInfo(address_12, 9, 4)

    async def test_fetch_vesting_account(self, config, vault, transport, address_12):
        transport.get_routes[_accounts_url(address_12)] = {"account": {
            "@type": "/cosmos.vesting.v1beta1.ContinuousVestingAccount",
            "base_vesting_account": {"base_account": {
                "address": address_12, "account_number": "11", "sequence": "2",
            }},
        }}
        info = await TransactionBuilder(config, vault, transport).fetch_account(address_12)
        assert (info.account_number, info.sequence) == (11, 2)

    async def test_fetch_unknown_account(self, config, vault, transport, address_12):
        with pytest.raises(ValidationError):
            await TransactionBuilder(config, vault, transport).fetch_account(address_12)

    async def test_fetch_account_server_error(self, config, vault, transport, address_12):
        transport.get_routes[_accounts_url(address_12)] = NetworkError("boom", status=500)
        with pytest.raises(NetworkError):
            await TransactionBuilder(config, vault, transport).fetch_account(address_12)

    async def test_signature_covers_sign_doc(self, config, vault, transport,
                                             legacy_record, address_12, address_24):
        transport.get_routes[_accounts_url(address_12)] = account_response(address_12)
        builder = TransactionBuilder(config, vault, transport)
        pending = builder.compose_send(address_12, address_24, "1")
        signed = await builder.sign(pending, legacy_record)

        account = SigningAccount.from_mnemonic(MNEMONIC_12)
        body, auth_info, sign_doc = builder.build_sign_doc(
            pending, account.public_key, AccountInfo(address_12, 7, 3)
        )
        assert signed.body_bytes == body
        assert signed.auth_info_bytes == auth_info
        assert verify_signature(account.public_key, sign_doc, signed.signature)
        assert sign_doc.endswith(b"\x1a\x09vietchain\x20\x07")

    async def test_signing_is_deterministic(self, config, vault, transport,
                                            legacy_record, address_12, address_24):
        transport.get_routes[_accounts_url(address_12)] = account_response(address_12)
        builder = TransactionBuilder(config, vault, transport)
        pending = builder.compose_send(address_12, address_24, "1")
        a = await builder.sign(pending, legacy_record)
        b = await builder.sign(pending, legacy_record)
        assert a.tx_bytes == b.tx_bytes
        assert a.local_hash == b.local_hash
        assert len(a.local_hash) == 64 and a.local_hash.isupper()

    async def test_signer_mismatch(self, config, vault, transport, legacy_record, address_24):
        builder = TransactionBuilder(config, vault, transport)
        pending = builder.compose_create_identity(address_24, "1")
        with pytest.raises(ValidationError):
            await builder.sign(pending, legacy_record)
        assert transport.calls == []


# ═══════════════════════════════════════════════════════════════════
#  Submit / broadcast
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestSubmit:
    async def test_success(self, config, vault, transport, legacy_record, address_12, address_24):
        _wire_chain(transport, address_12,
                    {"tx_response": {"code": 0, "txhash": "ABC123", "height": "42", "raw_log": ""}})
        builder = TransactionBuilder(config, vault, transport)
        result = await builder.send_tokens(legacy_record, address_24, "2")

        assert result.success is True
        assert result.hash == "ABC123"
        assert result.height == 42
        assert result.explorer_url.endswith("/tx/ABC123")
        assert builder.state is TxState.COMPLETED
        assert builder.transitions == [
            TxState.IDLE, TxState.SIGNING, TxState.BROADCASTING, TxState.COMPLETED,
        ]

        method, url, payload = transport.calls[-1]
        assert (method, url) == ("POST", BROADCAST_URL)
        assert payload["mode"] == "BROADCAST_MODE_SYNC"
        assert base64.b64decode(payload["tx_bytes"])[:1] == b"\x0a"

    async def test_chain_rejection(self, config, vault, transport, legacy_record,
                                   address_12, address_24):
        _wire_chain(transport, address_12,
                    {"tx_response": {"code": 5, "txhash": "DEF", "raw_log": "insufficient funds"}})
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(ChainError) as exc_info:
            await builder.send_tokens(legacy_record, address_24, "2")
        assert exc_info.value.code == 5
        assert exc_info.value.raw_log == "insufficient funds"
        assert "insufficient funds" in str(exc_info.value)
        assert builder.state is TxState.FAILED

    async def test_no_retry(self, config, vault, transport, legacy_record, address_12, address_24):
        _wire_chain(transport, address_12, NetworkError("connection reset", url=BROADCAST_URL))
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(NetworkError):
            await builder.send_tokens(legacy_record, address_24, "2")
        assert transport.urls("POST") == [BROADCAST_URL]
        assert builder.state is TxState.FAILED

    async def test_malformed_response(self, config, vault, transport, legacy_record,
                                      address_12, address_24):
        _wire_chain(transport, address_12, {"unexpected": True})
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(NetworkError):
            await builder.send_tokens(legacy_record, address_24, "2")

    @pytest.mark.parametrize("tx_response", [
        {"code": "x", "txhash": "XYZ"},
        {"code": 0, "height": "pending", "txhash": "XYZ"},
        {"code": [5]},
    ])
    async def test_non_numeric_fields_are_network_errors(self, config, vault, transport, legacy_record,
                                                         address_12, address_24, tx_response):
        _wire_chain(transport, address_12, {"tx_response": tx_response})
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(NetworkError) as exc_info:
            await builder.send_tokens(legacy_record, address_24, "1")
        assert "local hash" in str(exc_info.value)
        assert builder.state is TxState.FAILED

    async def test_missing_code_is_success(self, config, vault, transport, legacy_record,
                                           address_12, address_24):
        _wire_chain(transport, address_12, {"tx_response": {"txhash": "XYZ"}})
        result = await TransactionBuilder(config, vault, transport).send_tokens(
            legacy_record, address_24, "1"
        )
        assert result.hash == "XYZ"

    async def test_encrypted_wallet(self, config, vault, transport, encrypted_record,
                                    address_12):
        _wire_chain(transport, address_12, {"tx_response": {"code": 0, "txhash": "ID1"}})
        builder = TransactionBuilder(config, vault, transport)
        result = await builder.create_identity(encrypted_record, "001234567890", password=PASSWORD)
        assert result.hash == "ID1"
        assert builder.transitions == [
            TxState.IDLE, TxState.AWAITING_CREDENTIAL, TxState.SIGNING,
            TxState.BROADCASTING, TxState.COMPLETED,
        ]

    async def test_encrypted_wallet_without_password(self, config, vault, transport,
                                                     encrypted_record):
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(ValidationError):
            await builder.create_identity(encrypted_record, "001234567890")
        assert builder.transitions == [
            TxState.IDLE, TxState.AWAITING_CREDENTIAL, TxState.FAILED,
        ]
        assert transport.calls == []

    async def test_encrypted_wallet_wrong_password(self, config, vault, transport,
                                                   encrypted_record):
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(CredentialError):
            await builder.update_identity(encrypted_record, 0, password="wrong-password")
        assert builder.state is TxState.FAILED
        assert transport.calls == []

    async def test_builder_reusable_after_failure(self, config, vault, transport,
                                                  legacy_record, address_12):
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(ValidationError):
            await builder.create_identity(legacy_record, "1")  # account unknown
        _wire_chain(transport, address_12, {"tx_response": {"code": 0, "txhash": "OK"}})
        result = await builder.create_identity(legacy_record, "1")
        assert result.hash == "OK"
        assert builder.state is TxState.COMPLETED

    async def test_update_identity_flow(self, config, vault, transport, legacy_record, address_12):
        _wire_chain(transport, address_12, {"tx_response": {"code": 0, "txhash": "UPD"}})
        result = await TransactionBuilder(config, vault, transport).update_identity(
            legacy_record, 3, full_name="Nguyen Van A", is_verified=True,
        )
        assert result.hash == "UPD"


@pytest.mark.asyncio
class TestExternalSigner:
    async def test_keyring_wallet_uses_signer(self, config, vault, transport, address_12):
        record = WalletRecord(id="k", name="K", accounts=(WalletAccount(address_12),))
        _wire_chain(transport, address_12, {"tx_response": {"code": 0, "txhash": "KR"}})
        signer = _FakeSigner(MNEMONIC_12)
        builder = TransactionBuilder(config, vault, transport, external_signer=signer)
        result = await builder.create_identity(record, "001")
        assert result.hash == "KR"
        assert len(signer.signed) == 1
        assert TxState.AWAITING_CREDENTIAL not in builder.transitions

    async def test_keyring_without_signer(self, config, vault, transport, address_12):
        record = WalletRecord(id="k", name="K", accounts=(WalletAccount(address_12),))
        builder = TransactionBuilder(config, vault, transport)
        with pytest.raises(ValidationError):
            await builder.create_identity(record, "001")

    async def test_unknown_wallet(self, config, vault, transport, address_12):
        builder = TransactionBuilder(config, vault, transport)
        pending = builder.compose_create_identity(address_12, "001")
        with pytest.raises(ValidationError):
            await builder.submit(pending, WalletRecord(id="u", name="U"))
        assert builder.state is TxState.FAILED

    async def test_unsupported_message_type(self, config, vault, transport, legacy_record,
                                            address_12):
        builder = TransactionBuilder(config, vault, transport)
        pending = PendingTransaction(
            message_type=COIN,
            fields={"denom": "stake", "amount": "1"},
            fee=Fee.from_spec(config.fees.transfer),
        )
        with pytest.raises(ValidationError):
            await builder.sign(pending, legacy_record)
        assert transport.calls == []


class TestModuleSource:
    def test_compiles_without_warnings(self):
        import warnings
        from pathlib import Path

        import phiwallet_core.builder as builder_module

        source = Path(builder_module.__file__).read_text(encoding="utf-8")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(source, builder_module.__file__, "exec")
