"""
Batch planning for reclaim runs.

Close actions are bundled into multi-instruction transactions; burn transfers
are one contract call each and are never bundled.
"""

from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from .models import ActionKind, DustItem, ReclaimPreview

# Max close instructions per transaction, keeps the transaction under size limits
CLOSE_BATCH_SIZE = 20
BURN_BATCH_SIZE = 1

DEFAULT_BATCH_SIZES: Dict[ActionKind, int] = {
    ActionKind.CLOSE: CLOSE_BATCH_SIZE,
    ActionKind.BURN_TRANSFER: BURN_BATCH_SIZE,
}

# Base signature fee per transaction, in native units
FEE_PER_TRANSACTION = Decimal("0.000005")

Batch = List[DustItem]


def plan(
    items: Sequence[DustItem],
    action_kind: ActionKind,
    max_batch_size: Optional[int] = None,
) -> List[Batch]:
    """
    Partition items into ordered batches.

    Args:
        items: Selected pending items, in the order they should be processed
        action_kind: Close or burn transfer; picks the default batch size
        max_batch_size: Override for the batch size

    Returns:
        Batches partitioning the input in order; [] for empty input

    Raises:
        ValueError: If max_batch_size is less than 1

    Examples:
        45 items with max_batch_size=20 -> batches of sizes [20, 20, 5]
    """
    size = max_batch_size if max_batch_size is not None else DEFAULT_BATCH_SIZES[action_kind]
    if size < 1:
        raise ValueError(f"max_batch_size must be at least 1, got {size}")

    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def estimate_fee(batch_count: int, fee_per_transaction: Decimal = FEE_PER_TRANSACTION) -> Decimal:
    return fee_per_transaction * batch_count


def build_preview(
    items: Sequence[DustItem],
    action_kind: ActionKind,
    max_batch_size: Optional[int] = None,
    fee_per_transaction: Decimal = FEE_PER_TRANSACTION,
) -> ReclaimPreview:
    """Summarise what a reclaim run over the given items would do."""
    batches = plan(items, action_kind, max_batch_size)
    return ReclaimPreview(
        action_kind=action_kind,
        item_count=len(items),
        recoverable_amount=sum((item.recoverable for item in items), Decimal("0")),
        batch_count=len(batches),
        estimated_fee=estimate_fee(len(batches), fee_per_transaction),
    )
