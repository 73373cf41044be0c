"""
PhiWallet - wallet core for the VietChain identity network.

Key features:
- Byte-exact protobuf encoding of identity messages and the Cosmos tx envelope
- Recovery phrases stored only under AES-GCM with a password-derived key
- BIP-39 / BIP-32 key derivation and secp256k1 SIGN_MODE_DIRECT signing
- Multi-tier transaction history that degrades instead of failing
"""

__version__ = "0.1.0"
__all__ = [
    "wire",
    "messages",
    "keys",
    "wallet",
    "vault",
    "transport",
    "builder",
    "history",
    "queries",
    "config",
]
