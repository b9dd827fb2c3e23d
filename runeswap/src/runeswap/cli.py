"""
Command-line interface for the rune swap bridge.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any

import typer
from loguru import logger

from runecore.errors import SwapError
from runecore.models import SwapShape, UtxoRef, WalletType
from runeswap.config import get_settings
from runeswap.service import SwapService
from runeswap.wallet import WalletInfo

app = typer.Typer(
    name="runeswap",
    help="Rune swap bridge - build and settle escrow swap drafts",
    add_completion=False,
)


def setup_logging(level: str) -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _run(action: Callable[[SwapService], Awaitable[Any]], log_level: str | None) -> None:
    """Run action against a service built from settings and print its result as JSON."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)

    async def _main() -> Any:
        service = SwapService.from_settings(settings)
        try:
            return await action(service)
        finally:
            await service.close()

    try:
        result = asyncio.run(_main())
    except SwapError as e:
        logger.error(f"{e.kind.value}: {e.message}")
        _echo_json(e.to_dict())
        raise typer.Exit(1)
    _echo_json(result)


def load_referenced_utxos(path: Path) -> list[list[UtxoRef]]:
    """
    Read referenced UTXOs as written by build-draft.

    The file holds either the list of draft results printed by build-draft
    or a bare list (one entry per draft) of {txid, vout, value} lists.
    """
    data = json.loads(path.read_text())
    legs = []
    for entry in data:
        refs = entry["referenced_utxos"] if isinstance(entry, dict) else entry
        legs.append(
            [UtxoRef(txid=r["txid"], vout=int(r["vout"]), value=int(r["value"])) for r in refs]
        )
    return legs


LogLevelOption = Annotated[
    str | None, typer.Option("--log-level", "-l", help="Log level (defaults to settings)")
]


@app.command("fee-rate")
def fee_rate(log_level: LogLevelOption = None) -> None:
    """Show the fee rate drafts would use right now."""

    async def action(service: SwapService) -> dict[str, float]:
        return {"fee_rate": await service.fee_rate()}

    _run(action, log_level)


@app.command("escrow-address")
def escrow_address(
    basket: Annotated[bool, typer.Option("--basket", help="Basket escrow instead")] = False,
    log_level: LogLevelOption = None,
) -> None:
    """Resolve the escrow account to its current address."""

    async def action(service: SwapService) -> dict[str, str]:
        account = await service.escrow_address(basket=basket)
        return {
            "account": account.account_pubkey.hex(),
            "address": account.address,
            "script": account.script.hex(),
        }

    _run(action, log_level)


@app.command("build-draft")
def build_draft(
    shape: Annotated[SwapShape, typer.Option("--shape", "-s", help="Swap shape")],
    wallet_type: Annotated[WalletType, typer.Option("--wallet-type", "-w", help="Wallet type")],
    payment_address: Annotated[str, typer.Option("--payment-address", help="Payment address")],
    payment_pubkey: Annotated[str, typer.Option("--payment-pubkey", help="Payment pubkey hex")],
    ordinals_address: Annotated[
        str, typer.Option("--ordinals-address", help="Ordinals (asset) address")
    ],
    ordinals_pubkey: Annotated[
        str, typer.Option("--ordinals-pubkey", help="Ordinals (asset) pubkey hex")
    ],
    amount: Annotated[
        str | None, typer.Option("--amount", "-a", help="Token amount, display units")
    ] = None,
    asset_id: Annotated[str | None, typer.Option("--asset-id", help="Inscription id")] = None,
    log_level: LogLevelOption = None,
) -> None:
    """Build the unsigned drafts for a swap."""
    if amount is not None and asset_id is not None:
        logger.error("Use either --amount or --asset-id, not both")
        raise typer.Exit(1)

    async def action(service: SwapService) -> list[dict[str, Any]]:
        wallet = WalletInfo.parse(
            wallet_type=wallet_type,
            payment_address=payment_address,
            payment_pubkey=payment_pubkey,
            ordinals_address=ordinals_address,
            ordinals_pubkey=ordinals_pubkey,
        )
        target = amount if amount is not None else asset_id
        results = await service.build_draft(shape, wallet, target)
        return [r.to_dict() for r in results]

    _run(action, log_level)


@app.command()
def settle(
    shape: Annotated[SwapShape, typer.Option("--shape", "-s", help="Swap shape")],
    wallet_type: Annotated[WalletType, typer.Option("--wallet-type", "-w", help="Wallet type")],
    drafts: Annotated[
        list[str], typer.Option("--draft", "-d", help="Signed draft, once per leg in order")
    ],
    referenced_file: Annotated[
        Path,
        typer.Option(
            "--referenced-file", "-r", exists=True, help="JSON with the referenced UTXOs per leg"
        ),
    ],
    user_address: Annotated[
        str | None, typer.Option("--user-address", help="Claiming address (claims only)")
    ] = None,
    log_level: LogLevelOption = None,
) -> None:
    """Settle signed drafts through the execution layer."""

    async def action(service: SwapService) -> dict[str, Any]:
        referenced = load_referenced_utxos(referenced_file)
        receipt = await service.settle(shape, wallet_type, drafts, referenced, user_address)
        return receipt.to_dict()

    _run(action, log_level)


@app.command()
def broadcast(
    raw_hex: Annotated[str, typer.Argument(help="Raw transaction hex")],
    log_level: LogLevelOption = None,
) -> None:
    """Broadcast a raw transaction, retrying mempool chain-limit rejections."""

    async def action(service: SwapService) -> dict[str, str]:
        return {"txid": await service.broadcast(raw_hex)}

    _run(action, log_level)


@app.command()
def balance(
    address: Annotated[str, typer.Argument(help="Address to query")],
    token_id: Annotated[str, typer.Argument(help="Rune id, block:tx")],
    log_level: LogLevelOption = None,
) -> None:
    """Show the spendable balance of one token."""

    async def action(service: SwapService) -> dict[str, Any]:
        return await service.token_balance(address, token_id)

    _run(action, log_level)


@app.command("inscription-list")
def inscription_list(
    address: Annotated[str, typer.Argument(help="Ordinals address to query")],
    log_level: LogLevelOption = None,
) -> None:
    """List the collection inscriptions an address holds."""

    async def action(service: SwapService) -> dict[str, list[str]]:
        return {"inscriptions": await service.inscription_list(address)}

    _run(action, log_level)


@app.command("escrow-balances")
def escrow_balances(
    basket: Annotated[bool, typer.Option("--basket", help="Basket escrow instead")] = False,
    log_level: LogLevelOption = None,
) -> None:
    """Show every token balance held in escrow."""

    async def action(service: SwapService) -> list[dict[str, str]]:
        balances = await service.escrow_balances(basket=basket)
        return [{"token_id": b.token_id, "amount": str(b.amount)} for b in balances]

    _run(action, log_level)


@app.command("claim-count")
def claim_count(
    address: Annotated[
        str | None, typer.Option("--address", help="Also show this user's claims")
    ] = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show claim counters."""

    async def action(service: SwapService) -> dict[str, Any]:
        return await service.claim_count(address)

    _run(action, log_level)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
