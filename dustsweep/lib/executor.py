"""
Execution engine driving reclaim batches on-chain.

Batches run strictly one after another. Each submit+confirm is wrapped in the
retry policy; the state store is updated as batches move through
processing -> closed/error, and totals are accumulated for the run log.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Sequence

from .errors import friendly_error_message, is_user_rejection
from .models import ActionKind, DustItem, ExecutionResult
from .retry import RetryPolicy, retry_async
from .state_store import ScanStateStore

logger = logging.getLogger(__name__)

SignAndSend = Callable[[List[DustItem]], Awaitable[str]]
Confirm = Callable[[str], Awaitable[None]]


def _has_value(item: DustItem) -> bool:
    if item.raw_balance is not None:
        return int(item.raw_balance) > 0
    return item.balance > 0


class ExecutionEngine:
    """
    Runs planned batches through sign/send/confirm.

    Usage:
        engine = ExecutionEngine(store, RetryPolicy(max_attempts=3))
        result = await engine.execute(batches, ActionKind.CLOSE, send, confirm)
    """

    def __init__(
        self,
        store: ScanStateStore,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep

    async def _submit(
        self,
        batch: List[DustItem],
        sign_and_send: SignAndSend,
        confirm: Confirm,
        label: str,
    ) -> str:
        async def attempt() -> str:
            tx_id = await sign_and_send(batch)
            await confirm(tx_id)
            return tx_id

        def on_retry(attempt_number: int, error: BaseException) -> None:
            logger.warning(
                "%s failed, retrying (%d/%d): %s",
                label,
                attempt_number,
                self.retry_policy.max_attempts,
                error,
            )

        return await retry_async(attempt, self.retry_policy, sleep=self.sleep, on_retry=on_retry)

    async def execute(
        self,
        batches: Sequence[List[DustItem]],
        action_kind: ActionKind,
        sign_and_send: SignAndSend,
        confirm: Confirm,
    ) -> ExecutionResult:
        """Dispatch to the close or burn strategy for the given action kind."""
        if action_kind == ActionKind.CLOSE:
            return await self.execute_close(batches, sign_and_send, confirm)
        items = [item for batch in batches for item in batch]
        return await self.execute_burn(items, sign_and_send, confirm)

    async def execute_close(
        self,
        batches: Sequence[List[DustItem]],
        sign_and_send: SignAndSend,
        confirm: Confirm,
    ) -> ExecutionResult:
        """
        Close accounts batch by batch, stopping at the first batch that fails.

        Args:
            batches: Planned batches; each becomes one transaction
            sign_and_send: Builds, signs and broadcasts a batch, returning its signature
            confirm: Waits for a signature to confirm, raising on failure

        Returns:
            ExecutionResult with counts of what completed before any stop. Items
            of a failed batch are left processing and listed in failed_addresses.
        """
        total_items = sum(len(batch) for batch in batches)
        closed = 0
        reclaimed = Decimal("0")
        tx_ids: List[str] = []

        for index, batch in enumerate(batches, start=1):
            addresses = [item.address for item in batch]
            label = f"Batch {index}/{len(batches)}"
            logger.info("Processing %s (%d accounts)", label, len(batch))
            self.store.mark_processing(addresses)

            try:
                tx_id = await self._submit(batch, sign_and_send, confirm, label)
            except Exception as e:
                if is_user_rejection(e):
                    logger.error("%s rejected by wallet", label)
                else:
                    logger.error(
                        "%s failed after %d attempts: %s", label, self.retry_policy.max_attempts, e
                    )
                return ExecutionResult(
                    success=closed > 0,
                    closed_or_swept=closed,
                    failed_or_skipped=total_items - closed,
                    reclaimed_amount=reclaimed,
                    transaction_ids=tx_ids,
                    failed_addresses=addresses,
                    error=friendly_error_message(e),
                )

            self.store.mark_closed(addresses)
            tx_ids.append(tx_id)
            closed += len(batch)
            # rent plus unwrapped lamports for wrapped-native accounts
            reclaimed += sum((item.recoverable for item in batch), Decimal("0"))
            logger.info("%s confirmed: %s", label, tx_id)

        return ExecutionResult(
            success=True,
            closed_or_swept=closed,
            failed_or_skipped=0,
            reclaimed_amount=reclaimed,
            transaction_ids=tx_ids,
        )

    async def execute_burn(
        self,
        items: Sequence[DustItem],
        sign_and_send: SignAndSend,
        confirm: Confirm,
    ) -> ExecutionResult:
        """
        Transfer each item to the burn address as its own transaction.

        Item outcomes are independent: a failed transfer is marked error and
        the remaining items are still attempted. Zero-balance items are marked
        closed without touching the network.
        """
        swept = 0
        failed_addresses: List[str] = []
        tx_ids: List[str] = []
        last_error = None

        for index, item in enumerate(items, start=1):
            label = f"Transfer {index}/{len(items)} ({item.symbol or item.asset_id})"

            if not _has_value(item):
                self.store.mark_closed([item.address])
                swept += 1
                logger.info("%s has no balance, nothing to send", label)
                continue

            self.store.mark_processing([item.address])
            try:
                tx_id = await self._submit([item], sign_and_send, confirm, label)
            except Exception as e:
                logger.error("%s failed: %s", label, e)
                self.store.mark_error([item.address])
                failed_addresses.append(item.address)
                last_error = e
                continue

            self.store.mark_closed([item.address])
            tx_ids.append(tx_id)
            swept += 1
            logger.info("%s confirmed: %s", label, tx_id)

        return ExecutionResult(
            success=swept > 0 or not failed_addresses,
            closed_or_swept=swept,
            failed_or_skipped=len(failed_addresses),
            reclaimed_amount=Decimal("0"),
            transaction_ids=tx_ids,
            failed_addresses=failed_addresses,
            error=friendly_error_message(last_error) if last_error is not None else None,
        )
