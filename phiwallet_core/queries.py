"""
Read-only chain look-ups: balances, faucet funding and identity records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from phiwallet_core.errors import NetworkError, ValidationError
from phiwallet_core.history import format_readable

if TYPE_CHECKING:
    from phiwallet_core.config import PhiWalletConfig
    from phiwallet_core.transport import Transport

logger = logging.getLogger("phiwallet_queries")


@dataclass(frozen=True)
class Balance:
    amount: str
    denom: str
    readable: str


@dataclass(frozen=True)
class FaucetReceipt:
    tx_hash: str | None
    amount: str
    denom: str
    explorer_url: str | None
    message: str


class ChainQueries:
    def __init__(self, config: PhiWalletConfig, transport: Transport):
        self.config = config
        self.transport = transport

    def _zero_balance(self) -> Balance:
        currency = self.config.currency
        return Balance("0", currency.minimal_denom,
                       format_readable("0", currency.decimals, currency.display_denom))

    async def get_balance(self, address: str) -> Balance:
        """Balance in the configured minimal denom; zero when unavailable."""
        if not address:
            raise ValidationError("Address is required")
        currency = self.config.currency
        url = f"{self.config.chain.rest_endpoint}/cosmos/bank/v1beta1/balances/{address}"
        try:
            data = await self.transport.get_json(url)
        except NetworkError as exc:
            logger.warning(f"Failed to get balance for {address}: {exc}")
            return self._zero_balance()

        balances = data.get("balances") if isinstance(data, dict) else None
        for entry in balances or []:
            if isinstance(entry, dict) and entry.get("denom") == currency.minimal_denom:
                amount = str(entry.get("amount") or "0")
                return Balance(amount, currency.minimal_denom,
                               format_readable(amount, currency.decimals, currency.display_denom))
        return self._zero_balance()

    async def request_faucet(self, address: str, amount: str | None = None) -> FaucetReceipt:
        if not address:
            raise ValidationError("Address is required")
        chain = self.config.chain
        denom = self.config.currency.minimal_denom
        faucet_amount = str(amount or chain.faucet_amount)
        result = await self.transport.post_json(
            chain.faucet_endpoint,
            {"address": address, "amount": faucet_amount, "denom": denom},
        )
        result = result if isinstance(result, dict) else {}
        tx_hash = result.get("txhash") or result.get("tx_hash") or result.get("transactionHash")
        logger.info(f"Faucet funded {address} with {faucet_amount}{denom}")
        return FaucetReceipt(
            tx_hash=tx_hash,
            amount=faucet_amount,
            denom=denom,
            explorer_url=f"{chain.explorer_url}/tx/{tx_hash}" if tx_hash else None,
            message=result.get("message") or "Tokens sent successfully",
        )

    async def get_identity_by_creator(self, creator: str) -> dict[str, Any] | None:
        """The identity record owned by *creator*, or ``None``.

        Tries the list endpoint first, then the per-creator endpoint.
        """
        if not creator:
            raise ValidationError("Creator address is required")
        base = f"{self.config.chain.rest_endpoint}{self.config.chain.identity_query_path}"
        for url in (base, f"{base}/{creator}"):
            try:
                data = await self.transport.get_json(url)
            except NetworkError as exc:
                logger.debug(f"Identity lookup failed at {url}: {exc}")
                continue
            identity = data.get("identity") if isinstance(data, dict) else None
            if isinstance(identity, list):
                for item in identity:
                    if isinstance(item, dict) and item.get("creator") == creator:
                        return item
            elif isinstance(identity, dict) and identity.get("creator") == creator:
                return identity
        return None
