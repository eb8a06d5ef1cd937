"""
Sweep session: scan a wallet, preview the reclaim, execute it, record it.

DustSweeper owns no chain logic of its own; it wires the scanner, state
store, execution engine and run history ledger for one chain context.
"""

import logging
from typing import Optional

from .batch_planner import build_preview, plan
from .chain_scanners import DustScanner
from .config import SweepConfig
from .executor import Confirm, ExecutionEngine, SignAndSend
from .ledger import RunHistoryLedger, build_entry
from .models import (
    ActionKind,
    ChainContext,
    ExecutionResult,
    ReclaimPreview,
    RunHistory,
    ScanResult,
)
from .state_store import ScanStateStore

logger = logging.getLogger(__name__)


class DustSweeper:
    """
    One wallet session on one chain.

    Usage:
        sweeper = DustSweeper(context, scanner, store, ledger, engine, config)
        await sweeper.scan(owner)
        preview = sweeper.preview()
        result = await sweeper.reclaim(owner, signer.sign_and_send, signer.confirm)
    """

    def __init__(
        self,
        context: ChainContext,
        scanner: DustScanner,
        store: ScanStateStore,
        ledger: RunHistoryLedger,
        engine: ExecutionEngine,
        config: SweepConfig,
    ):
        self.context = context
        self.scanner = scanner
        self.store = store
        self.ledger = ledger
        self.engine = engine
        self.config = config

    @property
    def result(self) -> Optional[ScanResult]:
        return self.store.result

    def _batch_size(self) -> Optional[int]:
        # burn transfers always go one per transaction
        if self.context.action_kind == ActionKind.CLOSE:
            return self.config.max_batch_size
        return None

    async def scan(self, owner: str, protection_enabled: Optional[bool] = None) -> ScanResult:
        """
        Scan a wallet and replace the store's snapshot with the result.

        Args:
            owner: Wallet address
            protection_enabled: Override for the configured protection toggle

        Returns:
            The new snapshot (with error set if the scan failed)
        """
        policy = self.config.classification_policy(protection_enabled)
        result = await self.scanner.scan(owner, policy)
        self.store.set_result(result)
        return self.store.result or result

    def preview(self) -> ReclaimPreview:
        """Summarise a reclaim over the currently selected items."""
        return build_preview(
            self.store.selected_items(),
            self.context.action_kind,
            self._batch_size(),
            self.config.fee_per_transaction,
        )

    def history(self) -> RunHistory:
        return self.ledger.load()

    async def reclaim(
        self, owner: str, sign_and_send: SignAndSend, confirm: Confirm
    ) -> ExecutionResult:
        """
        Reclaim every selected, pending item and record the run.

        Items left processing by a stopped run are moved to error before the
        run is logged. Nothing is logged when there was nothing to reclaim.

        Args:
            owner: Wallet address the items belong to
            sign_and_send: Signs and broadcasts one batch, returning its id
            confirm: Waits for a transaction id to confirm

        Returns:
            ExecutionResult of the run
        """
        items = self.store.selected_items()
        if not items:
            logger.info("Nothing selected to reclaim")
            return ExecutionResult(success=True)

        batches = plan(items, self.context.action_kind, self._batch_size())
        logger.info(
            "Reclaiming %d items in %d transactions (%s)",
            len(items),
            len(batches),
            self.context.action_kind.value,
        )

        result = await self.engine.execute(
            batches, self.context.action_kind, sign_and_send, confirm
        )

        stuck = self.store.fail_processing()
        if stuck:
            logger.warning("%d items left unconfirmed, marked as error", len(stuck))

        entry = build_entry(result, owner, self.context)
        self.ledger.append(entry, self.ledger.load())
        logger.info(
            "Run %s: %d closed, %d failed, %s %s reclaimed",
            entry.status.value,
            result.closed_or_swept,
            result.failed_or_skipped,
            result.reclaimed_amount,
            self.context.native_symbol,
        )
        return result
