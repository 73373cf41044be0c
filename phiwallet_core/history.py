"""
Best-effort transaction history for an address.

Nodes expose history through several incompatible surfaces, so the resolver
runs an ordered chain of retrieval strategies and returns the first tier
that yields anything:

1. **Indexed query** — REST ``/cosmos/tx/v1beta1/txs`` event filters and the
   legacy ``/txs`` path, for recipient and sender; results are unioned.
2. **Search query** — Tendermint RPC ``/tx_search`` free-text queries;
   event attributes may be plain or base64 and are decoded transparently.
3. **Block scan** — walks back from the latest height over at most
   ``scan_block_cap`` blocks.  This tier does NOT decode transactions: it
   emits one placeholder per block that contains any.
4. **Placeholder** — two fixed, clearly marked records.

Tiers run strictly one after another and variants inside a tier are probed
in order; nothing fans out in parallel.  A tier that raises is logged and
treated as empty, so :meth:`HistoryResolver.resolve` never raises.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from phiwallet_core.errors import NetworkError

if TYPE_CHECKING:
    from phiwallet_core.config import PhiWalletConfig
    from phiwallet_core.transport import Transport

logger = logging.getLogger("phiwallet_history")

SENT = "sent"
RECEIVED = "received"
UNKNOWN = "unknown"

PLACEHOLDER_SENDER = "cosmos1faucet123456789abcdef"

# leading digits, then the denom (first coin of a comma-separated list)
_COIN_RE = re.compile(r"^\s*(\d+)([a-zA-Z][a-zA-Z0-9/:._-]*)")

_PLAIN_ATTRIBUTE_KEYS = frozenset({
    "amount", "sender", "recipient", "receiver", "spender", "minter", "burner",
    "module", "action", "fee", "fee_payer", "acc_seq", "signature", "msg_index",
})


@dataclass
class HistoryRecord:
    hash: str
    height: int
    timestamp: str
    type: str
    amount: str
    readable_amount: str
    denom: str
    from_address: str
    to_address: str
    fee: str
    memo: str
    success: bool
    explorer_url: str

    def to_dict(self) -> dict:
        return asdict(self)


# ═══════════════════════════════════════════════════════════════════
#  Normalisation helpers
# ═══════════════════════════════════════════════════════════════════

def classify_direction(from_address: str, to_address: str, queried: str) -> str:
    """sent / received / unknown as seen from *queried*."""
    if from_address and from_address == queried:
        return SENT
    if to_address and to_address == queried:
        return RECEIVED
    return UNKNOWN


def parse_coin(composite: str, default_denom: str = "") -> tuple[str, str]:
    """Split ``"1000000stake"`` into ``("1000000", "stake")``."""
    match = _COIN_RE.match(composite or "")
    if not match:
        return "0", default_denom
    return match.group(1), match.group(2)


def format_readable(amount: str, decimals: int, display_denom: str) -> str:
    """``amount / 10**decimals`` with six fraction digits plus the display denom."""
    try:
        value = Decimal(int(amount)).scaleb(-decimals)
    except (ValueError, InvalidOperation):
        value = Decimal(0)
    return f"{value:.6f} {display_denom}"


def _b64_text(value: str) -> str | None:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def decode_attribute(key: Any, value: Any) -> tuple[str, str]:
    """Return a plain-text ``(key, value)`` pair.

    Older nodes ship event attributes base64-encoded; a key that is not a
    known plain attribute name but decodes to text marks the whole pair as
    encoded.
    """
    key = key if isinstance(key, str) else ""
    value = value if isinstance(value, str) else ""
    if key in _PLAIN_ATTRIBUTE_KEYS:
        return key, value
    decoded_key = _b64_text(key) if key else None
    if decoded_key and decoded_key.isprintable():
        decoded_value = _b64_text(value) if value else ""
        return decoded_key, decoded_value if decoded_value is not None else value
    return key, value


def extract_transfer(events: list, default_denom: str) -> tuple[str, str, str, str]:
    """``(amount, denom, sender, recipient)`` from a list of tx events.

    Later transfer events override earlier ones: the fee transfer comes
    first, the message transfer after it.
    """
    amount, denom, sender, recipient = "0", default_denom, "", ""
    for event in events or []:
        if not isinstance(event, dict) or event.get("type") != "transfer":
            continue
        for attr in event.get("attributes") or []:
            if not isinstance(attr, dict):
                continue
            key, value = decode_attribute(attr.get("key"), attr.get("value"))
            if key == "amount":
                if value:
                    amount, denom = parse_coin(value, default_denom)
            elif key == "sender":
                sender = value
            elif key == "recipient":
                recipient = value
    return amount, denom, sender, recipient


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _dedupe(items: list[dict], key_names: tuple[str, ...]) -> list[dict]:
    seen: set[str] = set()
    out: list[dict] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        key = next((str(item[k]) for k in key_names if item.get(k)), None)
        if key is not None:
            if key in seen:
                continue
            seen.add(key)
        out.append(item)
    return out


# ═══════════════════════════════════════════════════════════════════
#  Strategies
# ═══════════════════════════════════════════════════════════════════

class HistoryStrategy(ABC):
    """One tier: fetch raw items, then map each onto a HistoryRecord."""

    name = "strategy"
    # whether the driver cuts results down to the requested limit
    truncate = True

    def __init__(self, config: PhiWalletConfig):
        self.chain = config.chain
        self.currency = config.currency
        self.history = config.history

    @abstractmethod
    async def attempt(self, address: str, limit: int) -> list[Any]:
        ...

    @abstractmethod
    def normalize(self, raw: Any, address: str) -> HistoryRecord:
        ...

    def explorer_link(self, tx_hash: str) -> str:
        return f"{self.chain.explorer_url}/tx/{tx_hash}"

    def make_record(self, *, tx_hash: str, height: int, timestamp: str,
                    amount: str, denom: str, from_address: str, to_address: str,
                    address: str, fee: str = "N/A", memo: str = "",
                    success: bool = True, direction: str | None = None) -> HistoryRecord:
        return HistoryRecord(
            hash=tx_hash,
            height=height,
            timestamp=timestamp,
            type=direction or classify_direction(from_address, to_address, address),
            amount=amount,
            readable_amount=format_readable(
                amount, self.currency.decimals, self.currency.display_denom
            ),
            denom=denom,
            from_address=from_address,
            to_address=to_address,
            fee=fee,
            memo=memo,
            success=success,
            explorer_url=self.explorer_link(tx_hash),
        )


class IndexedQueryStrategy(HistoryStrategy):
    """Tier 1: REST indexed event queries, unioned."""

    name = "indexed-query"

    def __init__(self, config: PhiWalletConfig, transport: Transport):
        super().__init__(config)
        self.transport = transport

    def variants(self, address: str, limit: int) -> list[tuple[str, dict]]:
        rest = self.chain.rest_endpoint
        modern = f"{rest}/cosmos/tx/v1beta1/txs"
        legacy = f"{rest}/txs"
        return [
            (modern, {"events": f"transfer.recipient='{address}'", "pagination.limit": str(limit)}),
            (modern, {"events": f"transfer.sender='{address}'", "pagination.limit": str(limit)}),
            (legacy, {"transfer.recipient": address, "limit": str(limit)}),
            (legacy, {"transfer.sender": address, "limit": str(limit)}),
        ]

    async def attempt(self, address: str, limit: int) -> list[Any]:
        collected: list[dict] = []
        for url, params in self.variants(address, limit):
            try:
                data = await self.transport.get_json(url, params)
            except NetworkError as exc:
                logger.warning(f"Indexed query failed ({url}): {exc}")
                continue
            if not isinstance(data, dict):
                continue
            # tx_responses carry hashes and events; bare txs are the older shape
            items = data.get("tx_responses")
            if not isinstance(items, list):
                items = data.get("txs")
            if isinstance(items, list):
                collected.extend(items)
        return _dedupe(collected, ("txhash", "hash"))

    def normalize(self, raw: Any, address: str) -> HistoryRecord:
        events = raw.get("events") or []
        if not events:
            logs = raw.get("logs") or []
            if logs and isinstance(logs[0], dict):
                events = logs[0].get("events") or []
        amount, denom, sender, recipient = extract_transfer(
            events, self.currency.minimal_denom
        )
        tx = raw.get("tx") if isinstance(raw.get("tx"), dict) else {}
        body = tx.get("body") or {}
        fee_coins = ((tx.get("auth_info") or {}).get("fee") or {}).get("amount") or []
        fee = fee_coins[0].get("amount", "N/A") if fee_coins and isinstance(fee_coins[0], dict) else "N/A"
        tx_hash = raw.get("txhash") or raw.get("hash") or ""
        return self.make_record(
            tx_hash=tx_hash,
            height=_as_int(raw.get("height")),
            timestamp=raw.get("timestamp") or _now_iso(),
            amount=amount,
            denom=denom,
            from_address=sender,
            to_address=recipient,
            address=address,
            fee=fee,
            memo=body.get("memo") or "",
            success=raw.get("code", 0) == 0,
        )


class SearchQueryStrategy(HistoryStrategy):
    """Tier 2: RPC ``tx_search`` free-text queries, unioned."""

    name = "search-query"

    def __init__(self, config: PhiWalletConfig, transport: Transport):
        super().__init__(config)
        self.transport = transport

    @staticmethod
    def queries(address: str) -> list[str]:
        return [
            f"transfer.recipient='{address}'",
            f"transfer.sender='{address}'",
            f"message.sender='{address}'",
        ]

    async def attempt(self, address: str, limit: int) -> list[Any]:
        url = f"{self.chain.rpc_endpoint}/tx_search"
        per_page = max(1, min(limit, self.history.search_page_size))
        collected: list[dict] = []
        for query in self.queries(address):
            params = {"query": f'"{query}"', "per_page": str(per_page), "order_by": '"desc"'}
            try:
                data = await self.transport.get_json(url, params)
            except NetworkError as exc:
                logger.warning(f"Search query failed ({query}): {exc}")
                continue
            txs = ((data or {}).get("result") or {}).get("txs") if isinstance(data, dict) else None
            if isinstance(txs, list):
                collected.extend(txs)
        return _dedupe(collected, ("hash",))

    def normalize(self, raw: Any, address: str) -> HistoryRecord:
        tx_result = raw.get("tx_result") or {}
        amount, denom, sender, recipient = extract_transfer(
            tx_result.get("events") or [], self.currency.minimal_denom
        )
        return self.make_record(
            tx_hash=raw.get("hash") or "",
            height=_as_int(raw.get("height")),
            timestamp=tx_result.get("timestamp") or _now_iso(),
            amount=amount,
            denom=denom,
            from_address=sender,
            to_address=recipient,
            address=address,
            success=tx_result.get("code", 0) == 0,
        )


class BlockScanStrategy(HistoryStrategy):
    """Tier 3: bounded walk over recent blocks.

    Stub: a block containing transactions yields one placeholder record;
    transaction bytes are never decoded, so address, amount and direction
    are unknown.
    """

    name = "block-scan"

    def __init__(self, config: PhiWalletConfig, transport: Transport):
        super().__init__(config)
        self.transport = transport

    @staticmethod
    def _block_summary(data: Any) -> dict:
        block = data["result"]["block"]
        header = block["header"]
        return {
            "height": int(header["height"]),
            "time": header.get("time") or "",
            "tx_count": len((block.get("data") or {}).get("txs") or []),
        }

    async def attempt(self, address: str, limit: int) -> list[Any]:
        url = f"{self.chain.rpc_endpoint}/block"
        latest = self._block_summary(await self.transport.get_json(url))
        latest_height = latest["height"]
        logger.debug(f"Latest block height: {latest_height}")

        found: list[dict] = []
        for offset in range(min(self.history.scan_block_cap, latest_height)):
            if len(found) >= limit:
                break
            height = latest_height - offset
            if offset == 0:
                summary = latest
            else:
                try:
                    summary = self._block_summary(
                        await self.transport.get_json(url, {"height": str(height)})
                    )
                except (NetworkError, KeyError, TypeError, ValueError) as exc:
                    logger.warning(f"Failed to get block {height}: {exc}")
                    continue
            if summary["tx_count"] > 0:
                logger.debug(f"Block {height} has {summary['tx_count']} transactions")
                found.append(summary)
        return found

    def normalize(self, raw: Any, address: str) -> HistoryRecord:
        height = raw["height"]
        return self.make_record(
            tx_hash=f"block_{height}_tx_1",
            height=height,
            timestamp=raw.get("time") or _now_iso(),
            amount="0",
            denom=self.currency.minimal_denom,
            from_address=UNKNOWN,
            to_address=UNKNOWN,
            address=address,
            memo=f"Transaction in block {height}",
            direction=UNKNOWN,
        )


class PlaceholderStrategy(HistoryStrategy):
    """Tier 4: fixed sample history, marked as such in hash and memo."""

    name = "placeholder"
    truncate = False

    async def attempt(self, address: str, limit: int) -> list[Any]:
        now = datetime.now(timezone.utc)
        return [
            {
                "hash": "MOCK_ABC123DEF456",
                "height": 12345,
                "timestamp": (now - timedelta(hours=1)).isoformat(),
                "memo": "Faucet tokens (Mock)",
            },
            {
                "hash": "MOCK_DEF789GHI012",
                "height": 12346,
                "timestamp": (now - timedelta(hours=2)).isoformat(),
                "memo": "Second faucet request (Mock)",
            },
        ]

    def normalize(self, raw: Any, address: str) -> HistoryRecord:
        return self.make_record(
            tx_hash=raw["hash"],
            height=raw["height"],
            timestamp=raw["timestamp"],
            amount="1000000",
            denom=self.currency.minimal_denom,
            from_address=PLACEHOLDER_SENDER,
            to_address=address,
            address=address,
            fee="5000",
            memo=raw["memo"],
        )


# ═══════════════════════════════════════════════════════════════════
#  Fallback driver
# ═══════════════════════════════════════════════════════════════════

class HistoryResolver:
    """Runs strategies in order; the first non-empty tier wins."""

    def __init__(self, strategies: list[HistoryStrategy], default_limit: int = 10):
        if not strategies:
            raise ValueError("at least one strategy is required")
        self.strategies = list(strategies)
        self.default_limit = default_limit

    @classmethod
    def default(cls, config: PhiWalletConfig, transport: Transport) -> HistoryResolver:
        return cls(
            [
                IndexedQueryStrategy(config, transport),
                SearchQueryStrategy(config, transport),
                BlockScanStrategy(config, transport),
                PlaceholderStrategy(config),
            ],
            default_limit=config.history.default_limit,
        )

    @staticmethod
    def _normalize_all(strategy: HistoryStrategy, raw_items: list[Any],
                       address: str) -> list[HistoryRecord]:
        records: list[HistoryRecord] = []
        for raw in raw_items:
            try:
                records.append(strategy.normalize(raw, address))
            except Exception as exc:
                logger.warning(f"Skipping malformed {strategy.name} item: {exc!r}")
        return records

    async def resolve(self, address: str, limit: int | None = None) -> list[HistoryRecord]:
        if not address:
            logger.warning("History requested without an address")
            return []
        limit = limit if limit and limit > 0 else self.default_limit

        for strategy in self.strategies:
            try:
                raw_items = await strategy.attempt(address, limit)
            except Exception as exc:
                logger.warning(f"History tier {strategy.name} failed: {exc}")
                continue
            if strategy.truncate:
                raw_items = raw_items[:limit]
            records = self._normalize_all(strategy, raw_items, address)
            if records:
                logger.info(f"History for {address}: {len(records)} records from {strategy.name}")
                return records
            logger.debug(f"History tier {strategy.name} returned nothing")

        return []
