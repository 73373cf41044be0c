"""
Key management for PhiWallet.

  - BIP-39 phrase generation, validation and seed derivation
  - BIP-32 hierarchical derivation on the Cosmos path m/44'/118'/0'/0/0
  - secp256k1 SIGN_MODE_DIRECT signatures (RFC 6979, low-S)
  - bech32 account addresses

Private key material lives in ``bytearray`` buffers so that
:meth:`SigningAccount.wipe` can zero it once a signature has been produced.
"""

from __future__ import annotations

import hashlib
import hmac
import struct

import bech32
from Crypto.Hash import RIPEMD160
from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.util import sigdecode_string, sigencode_string_canonize
from mnemonic import Mnemonic

from phiwallet_core.errors import ValidationError

COSMOS_HD_PATH = "m/44'/118'/0'/0/0"
VALID_WORD_COUNTS = (12, 24)

_WORD_COUNT_STRENGTH = {12: 128, 24: 256}
_MNEMONIC = Mnemonic("english")


# ===================================================================
#  BIP-39 recovery phrases
# ===================================================================

def phrase_words(mnemonic: str) -> list[str]:
    return mnemonic.strip().split()


def validate_mnemonic(mnemonic: str) -> str:
    """Check the word count (12 or 24) and return the normalised phrase.

    Raises ValidationError; never touches any cryptographic primitive.
    """
    if not mnemonic or not isinstance(mnemonic, str):
        raise ValidationError("Mnemonic is required and must be a string")
    words = phrase_words(mnemonic)
    if not words:
        raise ValidationError("Mnemonic cannot be empty")
    if len(words) not in VALID_WORD_COUNTS:
        raise ValidationError("Mnemonic must be 12 or 24 words")
    return " ".join(words)


def generate_mnemonic(word_count: int = 24) -> str:
    """Generate a new BIP-39 phrase from fresh entropy."""
    if word_count not in _WORD_COUNT_STRENGTH:
        raise ValidationError("Mnemonic must be 12 or 24 words")
    return _MNEMONIC.generate(strength=_WORD_COUNT_STRENGTH[word_count])


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """Convert a phrase to its 64-byte BIP-39 seed.

    The phrase must pass both the word-count rule and the BIP-39 checksum.
    """
    phrase = validate_mnemonic(mnemonic)
    if not _MNEMONIC.check(phrase):
        raise ValidationError("Invalid mnemonic phrase")
    return Mnemonic.to_seed(phrase, passphrase)


# ===================================================================
#  HD Key Derivation (BIP-32)
# ===================================================================

class HDNode:
    """
    Hierarchical Deterministic key derivation node.

    Implements BIP-32 private derivation with HMAC-SHA512.
    Path notation: m/44'/118'/account'/0/index
    """

    HARDENED = 0x80000000

    def __init__(self, private_key: bytes, chain_code: bytes, depth: int = 0,
                 index: int = 0):
        self.private_key = bytearray(private_key)
        self.chain_code = bytes(chain_code)
        self.depth = depth
        self.index = index

    @classmethod
    def from_seed(cls, seed: bytes) -> HDNode:
        """Create master node from a BIP-39 seed."""
        I = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        return cls(private_key=I[:32], chain_code=I[32:])

    def compressed_public_key(self) -> bytes:
        """33-byte SEC1 compressed secp256k1 public key."""
        sk = SigningKey.from_string(bytes(self.private_key), curve=SECP256k1)
        return sk.get_verifying_key().to_string("compressed")

    def derive_child(self, index: int) -> HDNode:
        """Derive a child node at the given index."""
        if index >= self.HARDENED:
            data = b"\x00" + bytes(self.private_key) + struct.pack(">I", index)
        else:
            data = self.compressed_public_key() + struct.pack(">I", index)

        I = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        tweak = int.from_bytes(I[:32], "big")
        if tweak >= SECP256k1.order:
            raise ValueError(f"invalid child key at index {index}")
        child_key_int = (tweak + int.from_bytes(self.private_key, "big")) % SECP256k1.order
        if child_key_int == 0:
            raise ValueError(f"invalid child key at index {index}")

        return HDNode(
            private_key=child_key_int.to_bytes(32, "big"),
            chain_code=I[32:],
            depth=self.depth + 1,
            index=index,
        )

    def derive_path(self, path: str) -> HDNode:
        """
        Derive from a BIP-44 path string like "m/44'/118'/0'/0/0".
        """
        if path == "m":
            return self
        if path.startswith("m/"):
            path = path[2:]

        node = self
        for component in path.split("/"):
            if component.endswith("'"):
                index = int(component[:-1]) + self.HARDENED
            else:
                index = int(component)
            child = node.derive_child(index)
            if node is not self:
                node.wipe()
            node = child
        return node

    def wipe(self) -> None:
        for i in range(len(self.private_key)):
            self.private_key[i] = 0


# ===================================================================
#  Addresses & signatures
# ===================================================================

def pubkey_to_address(public_key: bytes, prefix: str = "cosmos") -> str:
    """bech32(prefix, RIPEMD160(SHA256(compressed pubkey)))."""
    sha = hashlib.sha256(public_key).digest()
    rip = RIPEMD160.new(sha).digest()
    return bech32.bech32_encode(prefix, bech32.convertbits(rip, 8, 5))


def is_valid_address(address: str, prefix: str | None = None) -> bool:
    hrp, data = bech32.bech32_decode(address)
    if hrp is None or data is None:
        return False
    if prefix is not None and hrp != prefix:
        return False
    decoded = bech32.convertbits(data, 5, 8, False)
    return decoded is not None and len(decoded) in (20, 32)


def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Check a 64-byte r||s signature over SHA-256(*message*)."""
    vk = VerifyingKey.from_string(public_key, curve=SECP256k1)
    try:
        return vk.verify_digest(signature, hashlib.sha256(message).digest(),
                                sigdecode=sigdecode_string)
    except BadSignatureError:
        return False


class SigningAccount:
    """The single account a recovery phrase controls on this chain."""

    def __init__(self, private_key: bytes, prefix: str = "cosmos"):
        self._private_key = bytearray(private_key)
        sk = SigningKey.from_string(bytes(self._private_key), curve=SECP256k1)
        self.public_key: bytes = sk.get_verifying_key().to_string("compressed")
        self.address: str = pubkey_to_address(self.public_key, prefix)

    @classmethod
    def from_mnemonic(cls, mnemonic: str, prefix: str = "cosmos",
                      path: str = COSMOS_HD_PATH) -> SigningAccount:
        master = HDNode.from_seed(mnemonic_to_seed(mnemonic))
        node = master.derive_path(path)
        try:
            return cls(bytes(node.private_key), prefix)
        finally:
            node.wipe()
            master.wipe()

    def sign_direct(self, sign_doc: bytes) -> bytes:
        """Sign SHA-256(*sign_doc*); returns the 64-byte low-S r||s form."""
        if not any(self._private_key):
            raise ValueError("signing key has been wiped")
        sk = SigningKey.from_string(bytes(self._private_key), curve=SECP256k1)
        digest = hashlib.sha256(sign_doc).digest()
        return sk.sign_digest_deterministic(
            digest, hashfunc=hashlib.sha256, sigencode=sigencode_string_canonize,
        )

    def wipe(self) -> None:
        for i in range(len(self._private_key)):
            self._private_key[i] = 0

    def __repr__(self) -> str:
        return f"SigningAccount({self.address})"
