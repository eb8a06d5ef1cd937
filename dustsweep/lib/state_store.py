"""
Scan/reclaim state store.

Holds the current ScanResult and exposes the mutations a session performs on
it. Every mutation builds a new snapshot from the previous one and recomputes
the recoverable amount, so the selection invariant holds after every call.
"""

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Set

from .models import DustItem, ItemStatus, ScanResult

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[ScanResult]], None]

# Statuses each target status may be entered from; re-entering is a no-op.
ALLOWED_SOURCES = {
    ItemStatus.PROCESSING: {ItemStatus.PENDING, ItemStatus.ERROR},
    ItemStatus.CLOSED: {ItemStatus.PENDING, ItemStatus.PROCESSING, ItemStatus.ERROR},
    ItemStatus.ERROR: {ItemStatus.PENDING, ItemStatus.PROCESSING},
}


def recoverable_total(items: Iterable[DustItem]) -> Decimal:
    """
    Sum of recoverable value over pending, selected items.

    Wrapped-native items count their unwrapped balance on top of the rent
    deposit, so this can exceed count * RENT_PER_ACCOUNT.
    """
    return sum((item.recoverable for item in items if item.is_reclaimable), Decimal("0"))


def _with_items(result: ScanResult, items: Sequence[DustItem]) -> ScanResult:
    items = [
        replace(item, selected=False)
        if item.selected and item.status != ItemStatus.PENDING
        else item
        for item in items
    ]
    return replace(
        result,
        accounts=tuple(items),
        recoverable_amount=recoverable_total(items),
    )


def _transition(item: DustItem, target: ItemStatus) -> DustItem:
    if item.status == target:
        return item
    if item.status not in ALLOWED_SOURCES[target]:
        logger.debug("Ignoring %s -> %s for %s", item.status.value, target.value, item.address)
        return item
    # selected only has meaning while pending
    return replace(item, status=target, selected=False)


class ScanStateStore:
    """
    Owner of the live scan snapshot for one session.

    Usage:
        store = ScanStateStore()
        store.set_result(result)
        store.toggle_selection(address)
        store.mark_processing([address])
    """

    def __init__(self, result: Optional[ScanResult] = None):
        self._result = _with_items(result, result.accounts) if result is not None else None
        self._listeners: List[Listener] = []

    @property
    def result(self) -> Optional[ScanResult]:
        return self._result

    def add_listener(self, listener: Listener) -> None:
        """Register a callback invoked with every new snapshot."""
        self._listeners.append(listener)

    def _publish(self, result: Optional[ScanResult]) -> None:
        self._result = result
        for listener in self._listeners:
            listener(result)

    def set_result(self, result: ScanResult) -> None:
        """Replace the whole snapshot (after a scan, successful or not)."""
        self._publish(_with_items(result, result.accounts))

    def clear(self) -> None:
        self._publish(None)

    def _update(self, fn: Callable[[DustItem], DustItem]) -> None:
        if self._result is None:
            return
        self._publish(_with_items(self._result, [fn(item) for item in self._result.accounts]))

    def toggle_selection(self, address: str) -> None:
        """Flip selection of a pending item; no-op for any other status."""

        def toggle(item: DustItem) -> DustItem:
            if item.address == address and item.status == ItemStatus.PENDING:
                return replace(item, selected=not item.selected)
            return item

        self._update(toggle)

    def select_all(self) -> None:
        self._update(
            lambda item: replace(item, selected=True)
            if item.status == ItemStatus.PENDING
            else item
        )

    def deselect_all(self) -> None:
        self._update(lambda item: replace(item, selected=False) if item.selected else item)

    def _mark(self, addresses: Iterable[str], target: ItemStatus) -> None:
        wanted: Set[str] = set(addresses)
        self._update(lambda item: _transition(item, target) if item.address in wanted else item)

    def mark_processing(self, addresses: Iterable[str]) -> None:
        self._mark(addresses, ItemStatus.PROCESSING)

    def mark_closed(self, addresses: Iterable[str]) -> None:
        self._mark(addresses, ItemStatus.CLOSED)

    def mark_error(self, addresses: Iterable[str]) -> None:
        self._mark(addresses, ItemStatus.ERROR)

    def fail_processing(self) -> List[str]:
        """
        Move every item still processing to error.

        Returns:
            Addresses that were transitioned
        """
        if self._result is None:
            return []
        stuck = [i.address for i in self._result.accounts if i.status == ItemStatus.PROCESSING]
        if stuck:
            self.mark_error(stuck)
        return stuck

    def selected_items(self) -> List[DustItem]:
        """Pending, selected items in scan order."""
        if self._result is None:
            return []
        return [item for item in self._result.accounts if item.is_reclaimable]
