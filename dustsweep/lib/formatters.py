"""
Output formatters for dust scan reports.

This module handles CSV export of scan results with timestamp-based
filenames, and builds the rich tables shown for scans, reclaim previews and
the run history.
"""

import csv
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

from rich.table import Table

from .models import (
    CSV_COLUMNS,
    NATIVE_SYMBOLS,
    Chain,
    DustItem,
    ItemStatus,
    ReclaimPreview,
    RunHistory,
    ScanResult,
)

STATUS_STYLES = {
    ItemStatus.PENDING: "white",
    ItemStatus.PROCESSING: "yellow",
    ItemStatus.CLOSED: "green",
    ItemStatus.ERROR: "red",
    ItemStatus.PROTECTED: "cyan",
}

RUN_STATUS_STYLES = {
    "success": "green",
    "partial": "yellow",
    "failed": "red",
}

UsdFormatter = Callable[[Decimal], str]


def generate_timestamp() -> str:
    """
    Generate a timestamp string for filenames.

    Returns:
        Timestamp in YYYYMMDD_HHMMSS format
    """
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def generate_filename(base_path: str, timestamp: Optional[str] = None) -> str:
    """
    Generate a timestamped filename for a dust report.

    Args:
        base_path: Base output path (e.g., "dust.csv")
        timestamp: Optional timestamp to use (generates new one if not provided)

    Returns:
        The timestamped file path

    Examples:
        generate_filename("dust.csv", "20241214_153022") -> "dust_20241214_153022.csv"
    """
    if timestamp is None:
        timestamp = generate_timestamp()

    path = Path(base_path)
    suffix = path.suffix or ".csv"
    return str(path.parent / f"{path.stem}_{timestamp}{suffix}")


def write_csv_to_stream(items: Sequence[DustItem], stream: TextIO) -> None:
    """
    Write dust items to a CSV stream.

    Args:
        items: Dust items to write
        stream: File-like object to write to
    """
    writer = csv.writer(stream)
    writer.writerow(CSV_COLUMNS)

    for item in items:
        writer.writerow(item.to_csv_row())


def write_csv(items: Sequence[DustItem], output_path: Optional[str] = None) -> Optional[str]:
    """
    Write dust items to a CSV file or stdout.

    Args:
        items: Dust items to write
        output_path: Base output path. If None, writes to stdout.

    Returns:
        The written file path if output_path was provided, otherwise None
    """
    if output_path is None:
        write_csv_to_stream(items, sys.stdout)
        return None

    filename = generate_filename(output_path)
    with open(filename, "w", newline="", encoding="utf-8") as f:
        write_csv_to_stream(items, f)
    return filename


def shorten(value: str, keep: int = 4) -> str:
    """Shorten an address for display, e.g. "GKvq...JqiV"."""
    if len(value) <= keep * 2 + 3:
        return value
    return f"{value[:keep]}...{value[-keep:]}"


def format_amount(amount: Decimal, places: int = 6) -> str:
    quantum = Decimal(1).scaleb(-places)
    return f"{amount.quantize(quantum):f}"


def format_age(created_at: Optional[int], now_ms: int) -> str:
    """Human-readable account age, or "unknown" when no activity was found."""
    if created_at is None:
        return "unknown"
    hours = max(0, now_ms - created_at) // (60 * 60 * 1000)
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"


def scan_table(
    result: ScanResult,
    native_symbol: str,
    now_ms: int,
    usd: Optional[UsdFormatter] = None,
) -> Table:
    """
    Build the table of dust items found by a scan.

    Args:
        result: Scan snapshot to render
        native_symbol: Symbol recoverable amounts are denominated in
        now_ms: Reference time for the age column
        usd: Optional formatter converting a native amount to a USD string

    Returns:
        A rich Table (one row per dust item)
    """
    title = (
        f"{result.dust_detected} dust items in {result.total_scanned} holdings, "
        f"{format_amount(result.recoverable_amount)} {native_symbol} recoverable"
    )
    if usd is not None:
        title += f" ({usd(result.recoverable_amount)})"

    table = Table(title=title)
    table.add_column("", style="bold")
    table.add_column("Address", style="cyan")
    table.add_column("Token")
    table.add_column("Kind", style="dim")
    table.add_column("Balance", justify="right")
    table.add_column(f"Recoverable ({native_symbol})", justify="right", style="green")
    table.add_column("Age", justify="right", style="dim")
    table.add_column("Status")

    for item in result.accounts:
        style = STATUS_STYLES[item.status]
        table.add_row(
            "x" if item.selected else "",
            shorten(item.address),
            item.symbol or shorten(item.asset_id),
            item.kind.value,
            f"{item.balance:f}",
            format_amount(item.recoverable),
            format_age(item.created_at, now_ms),
            f"[{style}]{item.status.value}[/{style}]",
        )

    return table


def preview_table(
    preview: ReclaimPreview,
    native_symbol: str,
    usd: Optional[UsdFormatter] = None,
) -> Table:
    """Build the confirmation summary for a reclaim run."""
    table = Table(title="Reclaim preview", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")

    def amount(value: Decimal) -> str:
        text = f"{format_amount(value)} {native_symbol}"
        return f"{text} ({usd(value)})" if usd is not None else text

    table.add_row("Action", preview.action_kind.value)
    table.add_row("Items", str(preview.item_count))
    table.add_row("Transactions", str(preview.batch_count))
    table.add_row("Recoverable", amount(preview.recoverable_amount))
    table.add_row("Estimated fee", amount(preview.estimated_fee))
    table.add_row("Net", f"[green]{amount(preview.net_amount)}[/green]")
    return table


def history_table(history: RunHistory) -> Table:
    """Build the table of recorded reclaim runs, newest first."""
    table = Table(
        title=(
            f"{len(history.entries)} runs, {history.lifetime_accounts_closed} accounts closed, "
            f"{format_amount(history.lifetime_amount_reclaimed)} reclaimed"
        )
    )
    table.add_column("Time", style="dim")
    table.add_column("Chain")
    table.add_column("Wallet", style="cyan")
    table.add_column("Closed", justify="right")
    table.add_column("Reclaimed", justify="right", style="green")
    table.add_column("Transaction")
    table.add_column("Status")

    for entry in history.entries:
        style = RUN_STATUS_STYLES.get(entry.status.value, "white")
        symbol = _symbol_for(entry.chain)
        status = f"[{style}]{entry.status.value}[/{style}]"
        if entry.error:
            status += f"\n[dim]{entry.error}[/dim]"
        table.add_row(
            entry.timestamp,
            f"{entry.chain}/{entry.network}",
            shorten(entry.wallet_address),
            str(entry.accounts_closed),
            f"{format_amount(entry.amount_reclaimed)} {symbol}",
            shorten(entry.signature_or_hash, 8),
            status,
        )

    return table


def _symbol_for(chain: str) -> str:
    try:
        return NATIVE_SYMBOLS[Chain(chain)]
    except ValueError:
        return ""
