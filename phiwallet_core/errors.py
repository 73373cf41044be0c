"""
Error taxonomy for the PhiWallet core.

  - ValidationError            malformed / missing user input
  - CredentialError            wrong password or corrupted encrypted data
  - NetworkError               endpoint unreachable or non-success HTTP status
  - ChainError                 broadcast accepted but rejected by chain logic
  - EncodingPreconditionError  programmer defect in the wire encoder

``EncodingPreconditionError`` deliberately sits outside ``PhiWalletError``:
callers catching the runtime hierarchy must never swallow it.
"""

from __future__ import annotations


class PhiWalletError(Exception):
    """Base class for every recoverable runtime error raised by the core."""


class ValidationError(PhiWalletError):
    """User input rejected before any network or cryptographic call."""


class CredentialError(PhiWalletError):
    """Wrong password or corrupted ciphertext.

    The message is always the same so callers cannot tell the two apart.
    """

    GENERIC_MESSAGE = "Invalid password or corrupted wallet data"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.GENERIC_MESSAGE)


class NetworkError(PhiWalletError):
    """An endpoint could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, url: str = "", status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ChainError(PhiWalletError):
    """The chain rejected a broadcast transaction (``code != 0``)."""

    def __init__(self, code: int, raw_log: str):
        super().__init__(f"Transaction failed with code {code}: {raw_log}")
        self.code = code
        self.raw_log = raw_log


class EncodingPreconditionError(AssertionError):
    """A message was encoded against a field table it does not satisfy."""
