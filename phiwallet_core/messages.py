"""
Fixed field tables for every message PhiWallet puts on the wire.

The identity messages are custom to the VietChain ``identity`` module and
unknown to any off-the-shelf client, so they are spelled out here.  The
Cosmos SDK transaction envelope (TxBody, AuthInfo, SignDoc, TxRaw) and the
bank ``MsgSend`` are described the same way so the whole transaction is
produced by one encoder.

Field numbers and kinds are constants of the proto definitions; nothing here
is ever derived from runtime data.
"""

from __future__ import annotations

from phiwallet_core.wire import FieldSpec, MessageType

# ── VietChain identity module ───────────────────────────────────────

MSG_CREATE_IDENTITY = MessageType(
    name="MsgCreateIdentity",
    type_url="/vietchain.identity.MsgCreateIdentity",
    fields=(
        FieldSpec(1, "creator", "string"),
        FieldSpec(2, "cccd_id", "string"),      # national identity card number
    ),
)

MSG_UPDATE_IDENTITY = MessageType(
    name="MsgUpdateIdentity",
    type_url="/vietchain.identity.MsgUpdateIdentity",
    fields=(
        FieldSpec(1, "creator", "string"),
        # identity 0 is a real record id; never treat it as "unset"
        FieldSpec(2, "id", "uint64", always_emit=True),
        FieldSpec(3, "full_name", "string"),
        FieldSpec(4, "date_of_birth", "string"),
        FieldSpec(5, "is_verified", "bool"),
        FieldSpec(6, "verified_by", "string"),
    ),
)

# ── cosmos.base.v1beta1 / cosmos.bank.v1beta1 ───────────────────────

COIN = MessageType(
    name="Coin",
    fields=(
        FieldSpec(1, "denom", "string"),
        FieldSpec(2, "amount", "string"),
    ),
)

MSG_SEND = MessageType(
    name="MsgSend",
    type_url="/cosmos.bank.v1beta1.MsgSend",
    fields=(
        FieldSpec(1, "from_address", "string"),
        FieldSpec(2, "to_address", "string"),
        FieldSpec(3, "amount", "message", repeated=True, message=COIN),
    ),
)

# ── google.protobuf.Any / cosmos.crypto.secp256k1 ───────────────────

ANY = MessageType(
    name="Any",
    fields=(
        FieldSpec(1, "type_url", "string"),
        FieldSpec(2, "value", "bytes"),
    ),
)

SECP256K1_PUBKEY = MessageType(
    name="PubKey",
    type_url="/cosmos.crypto.secp256k1.PubKey",
    fields=(
        FieldSpec(1, "key", "bytes"),
    ),
)

# ── cosmos.tx.v1beta1 ───────────────────────────────────────────────

SIGN_MODE_DIRECT = 1

TX_BODY = MessageType(
    name="TxBody",
    fields=(
        FieldSpec(1, "messages", "message", repeated=True, message=ANY),
        FieldSpec(2, "memo", "string"),
        FieldSpec(3, "timeout_height", "uint64"),
    ),
)

MODE_INFO_SINGLE = MessageType(
    name="ModeInfo.Single",
    fields=(
        FieldSpec(1, "mode", "uint64"),
    ),
)

MODE_INFO = MessageType(
    name="ModeInfo",
    fields=(
        FieldSpec(1, "single", "message", message=MODE_INFO_SINGLE),
    ),
)

SIGNER_INFO = MessageType(
    name="SignerInfo",
    fields=(
        FieldSpec(1, "public_key", "message", message=ANY),
        FieldSpec(2, "mode_info", "message", message=MODE_INFO),
        FieldSpec(3, "sequence", "uint64"),
    ),
)

FEE = MessageType(
    name="Fee",
    fields=(
        FieldSpec(1, "amount", "message", repeated=True, message=COIN),
        FieldSpec(2, "gas_limit", "uint64"),
        FieldSpec(3, "payer", "string"),
        FieldSpec(4, "granter", "string"),
    ),
)

AUTH_INFO = MessageType(
    name="AuthInfo",
    fields=(
        FieldSpec(1, "signer_infos", "message", repeated=True, message=SIGNER_INFO),
        FieldSpec(2, "fee", "message", message=FEE),
    ),
)

SIGN_DOC = MessageType(
    name="SignDoc",
    fields=(
        FieldSpec(1, "body_bytes", "bytes"),
        FieldSpec(2, "auth_info_bytes", "bytes"),
        FieldSpec(3, "chain_id", "string"),
        FieldSpec(4, "account_number", "uint64"),
    ),
)

TX_RAW = MessageType(
    name="TxRaw",
    fields=(
        FieldSpec(1, "body_bytes", "bytes"),
        FieldSpec(2, "auth_info_bytes", "bytes"),
        FieldSpec(3, "signatures", "bytes", repeated=True),
    ),
)

# Message types a PendingTransaction may carry, keyed by type URL.
TX_MESSAGE_TYPES: dict[str, MessageType] = {
    m.type_url: m for m in (MSG_SEND, MSG_CREATE_IDENTITY, MSG_UPDATE_IDENTITY)
}
