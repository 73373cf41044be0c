"""
Shared pytest fixtures for the PhiWallet test suite.
"""

from __future__ import annotations

from typing import Any

import pytest

from phiwallet_core.config import PhiWalletConfig
from phiwallet_core.errors import NetworkError
from phiwallet_core.keys import SigningAccount
from phiwallet_core.vault import CredentialVault
from phiwallet_core.wallet import WalletAccount, WalletRecord

MNEMONIC_12 = " ".join(["abandon"] * 11 + ["about"])
MNEMONIC_24 = " ".join(["abandon"] * 23 + ["art"])
PASSWORD = "hunter22"
FAST_ITERATIONS = 1000

REST = "http://localhost:1317"
RPC = "http://localhost:26657"


class FakeTransport:
    """In-memory Transport: routes map a URL to a response.

    A route value may be a JSON-like object, an exception instance to raise,
    or a callable taking the request params (GET) / payload (POST).
    Unrouted URLs answer like a 404.
    """

    def __init__(self, get_routes: dict[str, Any] | None = None,
                 post_routes: dict[str, Any] | None = None):
        self.get_routes = dict(get_routes or {})
        self.post_routes = dict(post_routes or {})
        self.calls: list[tuple[str, str, Any]] = []

    @staticmethod
    def _answer(method: str, url: str, handler: Any, arg: Any) -> Any:
        if handler is None:
            raise NetworkError(f"{method} {url} returned HTTP 404", url=url, status=404)
        if callable(handler):
            handler = handler(arg)
        if isinstance(handler, Exception):
            raise handler
        return handler

    async def get_json(self, url: str, params=None) -> Any:
        params = dict(params) if params else None
        self.calls.append(("GET", url, params))
        return self._answer("GET", url, self.get_routes.get(url), params)

    async def post_json(self, url: str, payload: Any) -> Any:
        self.calls.append(("POST", url, payload))
        return self._answer("POST", url, self.post_routes.get(url), payload)

    def urls(self, method: str = "GET") -> list[str]:
        return [url for m, url, _ in self.calls if m == method]


def account_response(address: str, number: int = 7, sequence: int = 3) -> dict:
    return {
        "account": {
            "@type": "/cosmos.auth.v1beta1.BaseAccount",
            "address": address,
            "pub_key": None,
            "account_number": str(number),
            "sequence": str(sequence),
        }
    }


@pytest.fixture
def config() -> PhiWalletConfig:
    cfg = PhiWalletConfig()
    cfg.vault.kdf_iterations = FAST_ITERATIONS
    return cfg


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(iterations=FAST_ITERATIONS)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture(scope="session")
def address_12() -> str:
    account = SigningAccount.from_mnemonic(MNEMONIC_12)
    account.wipe()
    return account.address


@pytest.fixture(scope="session")
def address_24() -> str:
    account = SigningAccount.from_mnemonic(MNEMONIC_24)
    account.wipe()
    return account.address


@pytest.fixture
def legacy_record(address_12) -> WalletRecord:
    return WalletRecord(
        id="w-legacy",
        name="Legacy",
        accounts=(WalletAccount(address_12),),
        mnemonic=MNEMONIC_12,
    )


@pytest.fixture
def encrypted_record(address_12, vault) -> WalletRecord:
    return WalletRecord(
        id="w-encrypted",
        name="Encrypted",
        accounts=(WalletAccount(address_12),),
        encrypted_mnemonic=vault.encrypt(MNEMONIC_12, PASSWORD),
    )

