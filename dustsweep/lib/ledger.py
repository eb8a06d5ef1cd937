"""
Run history ledger.

Durable, append-only log of completed reclaim runs with lifetime totals,
stored as a JSON document. Reads degrade to an empty history and writes never
raise, so a broken history file can never hide a run's outcome.
"""

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import PersistenceError
from .models import (
    MAX_HISTORY_ENTRIES,
    ChainContext,
    ExecutionResult,
    RunHistory,
    RunLogEntry,
    RunStatus,
)

logger = logging.getLogger(__name__)

NO_SIGNATURE = "none"


def _entry_to_dict(entry: RunLogEntry) -> Dict[str, Any]:
    return {
        "timestamp": entry.timestamp,
        "signature_or_hash": entry.signature_or_hash,
        "accounts_closed": entry.accounts_closed,
        "amount_reclaimed": str(entry.amount_reclaimed),
        "wallet_address": entry.wallet_address,
        "status": entry.status.value,
        "error": entry.error,
        "chain": entry.chain,
        "network": entry.network,
    }


def _entry_from_dict(data: Dict[str, Any]) -> RunLogEntry:
    return RunLogEntry(
        timestamp=str(data["timestamp"]),
        signature_or_hash=str(data.get("signature_or_hash") or NO_SIGNATURE),
        accounts_closed=int(data.get("accounts_closed", 0)),
        amount_reclaimed=Decimal(str(data.get("amount_reclaimed", "0"))),
        wallet_address=str(data.get("wallet_address", "")),
        status=RunStatus(data.get("status", RunStatus.FAILED.value)),
        error=data.get("error"),
        chain=str(data.get("chain", "solana")),
        network=str(data.get("network", "mainnet-beta")),
    )


def history_to_dict(history: RunHistory) -> Dict[str, Any]:
    return {
        "last_run_timestamp": history.last_run_timestamp,
        "lifetime_amount_reclaimed": str(history.lifetime_amount_reclaimed),
        "lifetime_accounts_closed": history.lifetime_accounts_closed,
        "entries": [_entry_to_dict(e) for e in history.entries],
    }


def history_from_dict(data: Dict[str, Any]) -> RunHistory:
    """
    Parse a stored history document.

    Raises:
        KeyError, TypeError, ValueError, InvalidOperation: If the document is malformed
    """
    return RunHistory(
        last_run_timestamp=data.get("last_run_timestamp"),
        lifetime_amount_reclaimed=Decimal(str(data.get("lifetime_amount_reclaimed", "0"))),
        lifetime_accounts_closed=int(data.get("lifetime_accounts_closed", 0)),
        entries=[_entry_from_dict(e) for e in data.get("entries", [])][:MAX_HISTORY_ENTRIES],
    )


def build_entry(
    result: ExecutionResult,
    wallet_address: str,
    context: ChainContext,
    timestamp: Optional[str] = None,
) -> RunLogEntry:
    """
    Build the log entry recording an execution result.

    Args:
        result: Outcome of the run
        wallet_address: Owner wallet the run acted on
        context: Chain and network the run targeted
        timestamp: ISO timestamp (defaults to now, UTC)

    Returns:
        RunLogEntry whose status is success, partial or failed
    """
    return RunLogEntry(
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        signature_or_hash=result.transaction_ids[0] if result.transaction_ids else NO_SIGNATURE,
        accounts_closed=result.closed_or_swept,
        amount_reclaimed=result.reclaimed_amount,
        wallet_address=wallet_address,
        status=result.status,
        error=result.error,
        chain=context.chain.value,
        network=context.network.value,
    )


class RunHistoryLedger:
    """JSON-file backed run history."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> RunHistory:
        """
        Read the stored history.

        Returns:
            The stored history, or a zeroed history if the file is missing or corrupt
        """
        if not self.path.exists():
            return RunHistory()

        try:
            with self.path.open(encoding="utf-8") as f:
                return history_from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError, AttributeError, InvalidOperation) as e:
            logger.warning("Could not load run history from %s, starting fresh: %s", self.path, e)
            return RunHistory()

    def append(self, entry: RunLogEntry, history: RunHistory) -> RunHistory:
        """
        Record a run and persist the updated history.

        Lifetime totals only grow for success and partial runs, and are kept
        independently of the entry cap.

        Args:
            entry: Run to record
            history: History the entry is appended to (not modified)

        Returns:
            The updated history, even if persisting it failed
        """
        amount = history.lifetime_amount_reclaimed
        closed = history.lifetime_accounts_closed
        if entry.status in (RunStatus.SUCCESS, RunStatus.PARTIAL):
            amount += entry.amount_reclaimed
            closed += entry.accounts_closed

        updated = replace(
            history,
            last_run_timestamp=entry.timestamp,
            lifetime_amount_reclaimed=amount,
            lifetime_accounts_closed=closed,
            entries=([entry] + list(history.entries))[:MAX_HISTORY_ENTRIES],
        )

        try:
            self.save(updated)
        except PersistenceError as e:
            logger.error("Run history not saved: %s", e)

        return updated

    def save(self, history: RunHistory) -> None:
        """
        Write the history to disk.

        Raises:
            PersistenceError: If the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(history_to_dict(history), f, indent=2)
            tmp_path.replace(self.path)
        except OSError as e:
            raise PersistenceError(f"Could not write {self.path}: {e}") from e
