"""
PhiWallet command-line client.

Owns the wallet repository, prompts for passwords, and drives the core:

    phiwallet create --name "My Wallet"
    phiwallet import --no-password
    phiwallet balance
    phiwallet send cosmos1... 1.5 --memo "rent"
    phiwallet history --limit 20 --json
    phiwallet identity-create 001234567890
    phiwallet identity-update 0 --full-name "Nguyen Van A" --verified
    phiwallet reveal

Configuration comes from ``--config`` (TOML) plus ``PHIWALLET_*`` env vars.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import getpass
import json
import logging
import sys
from typing import Any

from phiwallet_core import __version__
from phiwallet_core.builder import TransactionBuilder
from phiwallet_core.config import PhiWalletConfig, load_config
from phiwallet_core.errors import PhiWalletError, ValidationError
from phiwallet_core.history import HistoryResolver
from phiwallet_core.logging_config import setup_logging
from phiwallet_core.queries import ChainQueries
from phiwallet_core.transport import HttpTransport, Transport
from phiwallet_core.vault import CredentialVault
from phiwallet_core.wallet import (
    JsonFileWalletRepository,
    WalletRecord,
    WalletRepository,
    create_wallet,
    describe,
    import_wallet,
    requires_password,
)

logger = logging.getLogger("phiwallet_cli")


def _prompt_secret(prompt: str) -> str:
    return getpass.getpass(prompt)


def _prompt_new_password() -> str:
    first = _prompt_secret("New spending password: ")
    second = _prompt_secret("Repeat spending password: ")
    if first != second:
        raise ValidationError("Passwords do not match")
    return first


def _password_for(record: WalletRecord) -> str | None:
    if requires_password(record):
        return _prompt_secret("Spending password: ")
    return None


def _require_wallet(repository: WalletRepository) -> WalletRecord:
    record = repository.load()
    if record is None:
        raise ValidationError("No wallet found; run 'phiwallet create' or 'phiwallet import'")
    return record


def _emit(data: Any, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"  {key:<14} {value}")
    else:
        print(data)


# ═══════════════════════════════════════════════════════════════════
#  Commands
# ═══════════════════════════════════════════════════════════════════

async def cmd_create(args, cfg, transport, repository) -> int:
    if repository.load() is not None and not args.force:
        raise ValidationError("A wallet already exists; pass --force to replace it")
    vault = CredentialVault.from_config(cfg)
    mnemonic, record = create_wallet(
        args.name, _prompt_new_password(), vault, cfg.chain.address_prefix
    )
    repository.save(record)
    print("Write down your recovery phrase and keep it offline:\n")
    print(f"  {mnemonic}\n")
    print(f"Address: {record.primary_address}")
    return 0


async def cmd_import(args, cfg, transport, repository) -> int:
    if repository.load() is not None and not args.force:
        raise ValidationError("A wallet already exists; pass --force to replace it")
    phrase = _prompt_secret("Recovery phrase (12 or 24 words): ")
    if args.no_password:
        record = import_wallet(args.name, phrase, prefix=cfg.chain.address_prefix)
    else:
        record = import_wallet(
            args.name, phrase, CredentialVault.from_config(cfg),
            _prompt_new_password(), cfg.chain.address_prefix,
        )
    repository.save(record)
    print(f"Imported {describe(record)}: {record.primary_address}")
    return 0


async def cmd_show(args, cfg, transport, repository) -> int:
    record = _require_wallet(repository)
    _emit({
        "name": record.name,
        "type": describe(record),
        "address": record.primary_address,
        "created": record.created_at,
    }, args.json)
    return 0


async def cmd_balance(args, cfg, transport, repository) -> int:
    address = args.address or _require_wallet(repository).primary_address
    balance = await ChainQueries(cfg, transport).get_balance(address)
    _emit({"address": address, "amount": balance.amount,
           "denom": balance.denom, "readable": balance.readable}, args.json)
    return 0


async def cmd_faucet(args, cfg, transport, repository) -> int:
    address = args.address or _require_wallet(repository).primary_address
    receipt = await ChainQueries(cfg, transport).request_faucet(address, args.amount)
    _emit({"address": address, "tx_hash": receipt.tx_hash, "amount": receipt.amount,
           "denom": receipt.denom, "explorer": receipt.explorer_url,
           "message": receipt.message}, args.json)
    return 0


async def cmd_history(args, cfg, transport, repository) -> int:
    address = args.address or _require_wallet(repository).primary_address
    records = await HistoryResolver.default(cfg, transport).resolve(address, args.limit)
    if args.json:
        _emit([r.to_dict() for r in records], True)
        return 0
    if not records:
        print("No transactions found.")
    for r in records:
        status = "ok" if r.success else "failed"
        print(f"  {r.timestamp}  {r.type:<8} {r.readable_amount:>22}  {r.hash}  [{status}]")
    return 0


async def _submit(flow, record: WalletRecord, as_json: bool, *flow_args, **flow_kwargs) -> int:
    result = await flow(record, *flow_args, password=_password_for(record), **flow_kwargs)
    _emit(result.to_dict(), as_json)
    return 0


async def cmd_send(args, cfg, transport, repository) -> int:
    record = _require_wallet(repository)
    builder = TransactionBuilder(cfg, CredentialVault.from_config(cfg), transport)
    return await _submit(builder.send_tokens, record, args.json,
                         args.recipient, args.amount, memo=args.memo)


async def cmd_identity_create(args, cfg, transport, repository) -> int:
    record = _require_wallet(repository)
    builder = TransactionBuilder(cfg, CredentialVault.from_config(cfg), transport)
    return await _submit(builder.create_identity, record, args.json, args.cccd_id)


async def cmd_identity_update(args, cfg, transport, repository) -> int:
    record = _require_wallet(repository)
    builder = TransactionBuilder(cfg, CredentialVault.from_config(cfg), transport)
    return await _submit(
        builder.update_identity, record, args.json, args.identity_id,
        full_name=args.full_name, date_of_birth=args.date_of_birth,
        is_verified=args.verified, verified_by=args.verified_by,
    )


async def cmd_identity_show(args, cfg, transport, repository) -> int:
    creator = args.creator or _require_wallet(repository).primary_address
    identity = await ChainQueries(cfg, transport).get_identity_by_creator(creator)
    if identity is None:
        print(f"No identity registered for {creator}")
        return 1
    _emit(identity, args.json)
    return 0


async def cmd_reveal(args, cfg, transport, repository) -> int:
    record = _require_wallet(repository)
    vault = CredentialVault.from_config(cfg)
    print(vault.reveal_phrase(record, _password_for(record)))
    return 0


async def cmd_protect(args, cfg, transport, repository) -> int:
    record = _require_wallet(repository)
    vault = CredentialVault.from_config(cfg)
    repository.save(vault.protect(record, _prompt_new_password()))
    print("Wallet is now password protected.")
    return 0


async def cmd_change_password(args, cfg, transport, repository) -> int:
    record = _require_wallet(repository)
    vault = CredentialVault.from_config(cfg)
    old = _prompt_secret("Current spending password: ")
    repository.save(vault.change_password(record, old, _prompt_new_password()))
    print("Spending password changed.")
    return 0


async def cmd_forget(args, cfg, transport, repository) -> int:
    if not args.yes:
        raise ValidationError("Refusing to remove the wallet without --yes")
    repository.clear()
    print("Wallet removed.")
    return 0


COMMANDS = {
    "create": cmd_create,
    "import": cmd_import,
    "show": cmd_show,
    "balance": cmd_balance,
    "faucet": cmd_faucet,
    "history": cmd_history,
    "send": cmd_send,
    "identity-create": cmd_identity_create,
    "identity-update": cmd_identity_update,
    "identity-show": cmd_identity_show,
    "reveal": cmd_reveal,
    "protect": cmd_protect,
    "change-password": cmd_change_password,
    "forget": cmd_forget,
}


# ═══════════════════════════════════════════════════════════════════
#  Entry point
# ═══════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="phiwallet", description="PhiWallet client for VietChain")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--config", default=None, help="Path to phiwallet.toml config file")
    p.add_argument("--wallet-file", default=None, help="Override [storage] wallet_file")
    p.add_argument("--log-level", default=None, help="Override [logging] level")
    sub = p.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", help="Machine-readable output")

    s = sub.add_parser("create", parents=[common], help="Create a new encrypted wallet")
    s.add_argument("--name", default="Phi Wallet")
    s.add_argument("--force", action="store_true", help="Replace an existing wallet")

    s = sub.add_parser("import", parents=[common], help="Import a recovery phrase")
    s.add_argument("--name", default="Phi Wallet")
    s.add_argument("--no-password", action="store_true",
                   help="Store the phrase unencrypted (legacy format)")
    s.add_argument("--force", action="store_true", help="Replace an existing wallet")

    sub.add_parser("show", parents=[common], help="Show the active wallet")

    s = sub.add_parser("balance", parents=[common], help="Query the balance")
    s.add_argument("--address", default=None)

    s = sub.add_parser("faucet", parents=[common], help="Request test tokens")
    s.add_argument("--address", default=None)
    s.add_argument("--amount", default=None, help="Amount in minimal units")

    s = sub.add_parser("history", parents=[common], help="Show transaction history")
    s.add_argument("--address", default=None)
    s.add_argument("--limit", type=int, default=None)

    s = sub.add_parser("send", parents=[common], help="Send tokens")
    s.add_argument("recipient")
    s.add_argument("amount", help="Amount in display units, e.g. 1.5")
    s.add_argument("--memo", default="")

    s = sub.add_parser("identity-create", parents=[common], help="Register an identity")
    s.add_argument("cccd_id", help="National identity card number")

    s = sub.add_parser("identity-update", parents=[common], help="Update an identity")
    s.add_argument("identity_id", type=int)
    s.add_argument("--full-name", default="")
    s.add_argument("--date-of-birth", default="")
    s.add_argument("--verified", action="store_true")
    s.add_argument("--verified-by", default="")

    s = sub.add_parser("identity-show", parents=[common], help="Look up an identity by creator")
    s.add_argument("--creator", default=None)

    sub.add_parser("reveal", parents=[common], help="Show the recovery phrase (asks for the password)")
    sub.add_parser("protect", parents=[common], help="Encrypt a legacy plaintext wallet")
    sub.add_parser("change-password", parents=[common], help="Change the spending password")

    s = sub.add_parser("forget", parents=[common], help="Remove the wallet file")
    s.add_argument("--yes", action="store_true")
    return p


async def dispatch(args: argparse.Namespace, cfg: PhiWalletConfig,
                   transport: Transport, repository: WalletRepository) -> int:
    return await COMMANDS[args.command](args, cfg, transport, repository)


async def _run(args: argparse.Namespace, cfg: PhiWalletConfig) -> int:
    repository = JsonFileWalletRepository(cfg.storage.wallet_file)
    async with HttpTransport(timeout=cfg.chain.request_timeout) as transport:
        return await dispatch(args, cfg, transport, repository)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)
    if args.wallet_file:
        cfg.storage.wallet_file = args.wallet_file
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    setup_logging(level=cfg.logging.level, fmt=cfg.logging.format, log_file=cfg.logging.file)

    try:
        return asyncio.run(_run(args, cfg))
    except PhiWalletError as exc:
        logger.debug(f"{args.command} failed: {exc!r}")
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def main_sync() -> None:
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        raise SystemExit(main())


if __name__ == "__main__":
    main_sync()
