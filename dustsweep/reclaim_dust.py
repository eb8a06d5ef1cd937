#!/usr/bin/env python3
"""
Find and reclaim dust in a wallet.

On Solana, empty or near-empty SPL token accounts are closed and their rent
deposits returned to the owner. On BNB Smart Chain, worthless token balances
are listed and can be previewed for a transfer to the burn address.
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

from dustsweep.lib.chain_scanners import create_scanner
from dustsweep.lib.classifier import now_ms
from dustsweep.lib.config import SweepConfig
from dustsweep.lib.executor import ExecutionEngine
from dustsweep.lib.formatters import history_table, preview_table, scan_table, write_csv
from dustsweep.lib.ledger import RunHistoryLedger
from dustsweep.lib.models import Chain, ChainContext, ExecutionResult, Network, RunStatus
from dustsweep.lib.price_feed import CoinGeckoPriceSource, PriceTicker
from dustsweep.lib.rpc_client import AnkrClient, BscRpcClient, SolanaRpcClient
from dustsweep.lib.state_store import ScanStateStore
from dustsweep.lib.sweeper import DustSweeper
from dustsweep.lib.transactions import SolanaKeypairSigner, load_keypair

ENV_OPERATOR_KEY = "DUSTSWEEP_OPERATOR_KEY"

SUPPORTED_CHAINS = [c.value for c in Chain]
SUPPORTED_NETWORKS = [n.value for n in Network]

err_console = Console(stderr=True)


def log(chain: str, message: str) -> None:
    """Log a message with chain prefix."""
    err_console.print(f"[{chain}] {message}", markup=False, highlight=False)


def setup_logging(level: str) -> None:
    """Route library logging through a rich handler on stderr."""
    logger = logging.getLogger("dustsweep")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if logger.handlers:
        logger.handlers.clear()

    handler = RichHandler(console=err_console, show_time=True, show_path=False)
    logger.addHandler(handler)


def build_sweeper(
    context: ChainContext,
    config: SweepConfig,
    solana_client: Optional[SolanaRpcClient] = None,
) -> DustSweeper:
    """
    Wire a sweep session for one chain from the configuration.

    Args:
        context: Chain and network to work on
        config: Loaded configuration
        solana_client: Shared Solana client (built from the config if None)

    Returns:
        DustSweeper ready to scan
    """
    store = ScanStateStore()
    if context.chain == Chain.SOLANA:
        scanner = create_scanner(
            context,
            solana_client=solana_client
            or SolanaRpcClient(context.network, endpoints=config.endpoints_for(context.network)),
        )
    else:
        scanner = create_scanner(
            context,
            ankr_client=AnkrClient(config.ankr_url),
            bsc_client=BscRpcClient(config.bsc_rpc_url),
        )

    return DustSweeper(
        context,
        scanner,
        store,
        RunHistoryLedger(config.history_file),
        ExecutionEngine(store, config.retry_policy()),
        config,
    )


def parse_context(parsed_args: argparse.Namespace) -> ChainContext:
    """
    Build the chain context from --chain/--network.

    Raises:
        ValueError: If the chain or network is not supported
    """
    return ChainContext.parse(parsed_args.chain, parsed_args.network)


def protection_override(parsed_args: argparse.Namespace) -> Optional[bool]:
    return False if parsed_args.no_protection else None


async def scan_wallet(
    sweeper: DustSweeper,
    wallet: str,
    protection: Optional[bool],
    with_price: bool,
) -> int:
    """Scan and print the dust table. Returns the exit code."""
    chain = sweeper.context.chain.value
    symbol = sweeper.context.native_symbol
    log(chain, f"Scanning {wallet} on {sweeper.context.network.value}...")

    if with_price:
        async with PriceTicker(CoinGeckoPriceSource(), [symbol]) as ticker:
            result = await sweeper.scan(wallet, protection)
            if ticker.current_price(symbol) is None:
                await ticker.refresh()

        def usd(amount):
            return ticker.format_usd(amount, symbol)

    else:
        result = await sweeper.scan(wallet, protection)
        usd = None

    if result.error:
        log(chain, f"ERROR: {result.error}")
        return 1

    log(chain, f"Found {result.dust_detected} dust items in {result.total_scanned} holdings")
    err_console.print(scan_table(result, symbol, now_ms(), usd))
    return 0


def cmd_scan(config: SweepConfig, parsed_args: argparse.Namespace) -> int:
    """
    Execute scan command.

    Args:
        config: Loaded configuration
        parsed_args: Parsed arguments

    Returns:
        Exit code
    """
    context = parse_context(parsed_args)
    sweeper = build_sweeper(context, config)

    code = asyncio.run(
        scan_wallet(
            sweeper,
            parsed_args.wallet,
            protection_override(parsed_args),
            not parsed_args.no_price,
        )
    )
    if code != 0 or sweeper.result is None:
        return code

    if parsed_args.output or parsed_args.csv:
        path = write_csv(list(sweeper.result.accounts), parsed_args.output)
        if path:
            log(context.chain.value, f"Results written to: {path}")
    return 0


async def reclaim_wallet(
    sweeper: DustSweeper,
    signer: Optional[SolanaKeypairSigner],
    wallet: str,
    protection: Optional[bool],
) -> int:
    """Scan, preview and (with a signer) reclaim. Returns the exit code."""
    chain = sweeper.context.chain.value
    symbol = sweeper.context.native_symbol

    result = await sweeper.scan(wallet, protection)
    if result.error:
        log(chain, f"ERROR: {result.error}")
        return 1

    protected = sum(1 for item in result.accounts if item.is_protected)
    if protected:
        log(chain, f"{protected} recently active accounts are protected and will be skipped")

    preview = sweeper.preview()
    err_console.print(preview_table(preview, symbol))

    if signer is None:
        log(chain, "Dry run, nothing sent")
        return 0
    if preview.item_count == 0:
        log(chain, "Nothing to reclaim")
        return 0

    outcome: ExecutionResult = await sweeper.reclaim(
        wallet, signer.sign_and_send, signer.confirm
    )
    log(
        chain,
        f"{outcome.status.value.upper()}: {outcome.closed_or_swept} closed, "
        f"{outcome.failed_or_skipped} failed, {outcome.reclaimed_amount} {symbol} reclaimed",
    )
    for tx_id in outcome.transaction_ids:
        log(chain, f"Transaction: {tx_id}")
    if outcome.error:
        log(chain, f"ERROR: {outcome.error}")

    return 0 if outcome.status == RunStatus.SUCCESS else 1


def cmd_reclaim(config: SweepConfig, parsed_args: argparse.Namespace) -> int:
    """
    Execute reclaim command.

    Live runs need the operator keypair in DUSTSWEEP_OPERATOR_KEY and are
    only available on Solana; BNB burns require an external wallet.
    """
    context = parse_context(parsed_args)
    chain = context.chain.value

    if context.chain != Chain.SOLANA and not parsed_args.dry_run:
        log(chain, "ERROR: burn transfers need an external wallet. Use --dry-run to preview.")
        return 1

    keypair = None
    secret = os.environ.get(ENV_OPERATOR_KEY, "").strip()
    if not parsed_args.dry_run:
        if not secret:
            log(chain, f"ERROR: {ENV_OPERATOR_KEY} is not set")
            return 1
        try:
            keypair = load_keypair(secret)
        except ValueError as e:
            log(chain, f"ERROR: {e}")
            return 1

    wallet = parsed_args.wallet or (str(keypair.pubkey()) if keypair is not None else None)
    if not wallet:
        log(chain, "ERROR: --wallet is required for a dry run")
        return 1
    if keypair is not None and wallet != str(keypair.pubkey()):
        log(chain, "ERROR: --wallet does not match the operator key")
        return 1

    client = None
    signer = None
    if keypair is not None:
        client = SolanaRpcClient(context.network, endpoints=config.endpoints_for(context.network))
        signer = SolanaKeypairSigner(client, keypair)
    sweeper = build_sweeper(context, config, solana_client=client)

    return asyncio.run(
        reclaim_wallet(sweeper, signer, wallet, protection_override(parsed_args))
    )


def cmd_history(config: SweepConfig, parsed_args: argparse.Namespace) -> int:
    """Execute history command."""
    history = RunHistoryLedger(config.history_file).load()
    if not history.entries:
        err_console.print("[green]No runs recorded yet[/green]")
        return 0

    if parsed_args.limit:
        history = replace(history, entries=history.entries[: parsed_args.limit])
    Console().print(history_table(history))
    return 0


def positive_int(value: str) -> int:
    """argparse type accepting integers greater than zero."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dustsweep",
        description="Find and reclaim dust token accounts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List dust on a Solana wallet
  %(prog)s scan --wallet GKvq...

  # Export BNB dust to a CSV report
  %(prog)s scan --chain bnb --wallet 0x... --output dust.csv

  # Close empty token accounts with the operator key
  DUSTSWEEP_OPERATOR_KEY=... %(prog)s reclaim
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING, ERROR)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_chain_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--chain",
            default=Chain.SOLANA.value,
            help=f"Chain to scan. Supported: {', '.join(SUPPORTED_CHAINS)}",
        )
        sub.add_argument(
            "--network",
            default=Network.MAINNET.value,
            help=f"Solana network. Supported: {', '.join(SUPPORTED_NETWORKS)}",
        )
        sub.add_argument(
            "--no-protection",
            action="store_true",
            help="Do not protect recently active accounts",
        )

    scan_parser = subparsers.add_parser("scan", help="List dust without changing anything")
    add_chain_args(scan_parser)
    scan_parser.add_argument("--wallet", required=True, help="Wallet address to scan")
    scan_parser.add_argument(
        "--output",
        help="CSV output file path (timestamp auto-appended)",
    )
    scan_parser.add_argument(
        "--csv",
        action="store_true",
        help="Write the CSV report to stdout",
    )
    scan_parser.add_argument(
        "--no-price",
        action="store_true",
        help="Do not fetch the USD price",
    )

    reclaim_parser = subparsers.add_parser("reclaim", help="Close dust accounts")
    add_chain_args(reclaim_parser)
    reclaim_parser.add_argument(
        "--wallet",
        help="Wallet address (defaults to the operator key's address)",
    )
    reclaim_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print what would be reclaimed",
    )

    history_parser = subparsers.add_parser("history", help="Show recorded reclaim runs")
    history_parser.add_argument(
        "--limit",
        type=positive_int,
        default=None,
        help="Only show the most recent N runs",
    )

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, 1 for error or a partial run)
    """
    parsed_args = build_parser().parse_args(args)

    config = SweepConfig.load(parsed_args.config)
    setup_logging(parsed_args.log_level or config.log_level)

    commands = {
        "scan": cmd_scan,
        "reclaim": cmd_reclaim,
        "history": cmd_history,
    }
    try:
        return commands[parsed_args.command](config, parsed_args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
