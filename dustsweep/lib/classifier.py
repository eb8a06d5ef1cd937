"""
Dust classification for rent-model and balance-model chains.

Turns raw holdings into annotated DustItems, applying the chain-specific dust
rules and the account-age protection policy.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Awaitable, List, Optional, Protocol, Sequence

from .models import (
    RENT_PER_ACCOUNT,
    WRAPPED_SOL_MINT,
    AssetKind,
    ChainModel,
    DustItem,
    ItemStatus,
    RawHolding,
)

logger = logging.getLogger(__name__)

DEFAULT_PROTECTION_WINDOW_MS = 24 * 60 * 60 * 1000
DEFAULT_WRAPPED_NATIVE_THRESHOLD = Decimal("0.001")
DEFAULT_DUST_USD_THRESHOLD = Decimal("0.01")


def now_ms() -> int:
    return int(time.time() * 1000)


class ActivityLookup(Protocol):
    """Best-effort lookup of when an account was last seen active."""

    def first_activity_timestamp(self, account_id: str) -> Awaitable[Optional[int]]:
        ...


@dataclass
class ClassificationPolicy:
    """Thresholds and protection settings used by classify."""

    protection_enabled: bool = True
    protection_window_ms: int = DEFAULT_PROTECTION_WINDOW_MS
    now_ms: int = field(default_factory=now_ms)
    wrapped_native_threshold: Decimal = DEFAULT_WRAPPED_NATIVE_THRESHOLD
    dust_usd_threshold: Decimal = DEFAULT_DUST_USD_THRESHOLD
    rent_per_account: Decimal = RENT_PER_ACCOUNT
    treat_unpriced_as_dust: bool = True


def is_dust(holding: RawHolding, model: ChainModel, policy: ClassificationPolicy) -> bool:
    """
    Decide whether a single holding is dust.

    Rent model: zero balance, or wrapped native below the sub-unit threshold.
    Balance model: below the USD threshold or zero, never the native currency.
    """
    if model == ChainModel.RENT:
        if holding.balance == 0:
            return True
        return (
            holding.asset_id == WRAPPED_SOL_MINT
            and holding.balance < policy.wrapped_native_threshold
        )

    if holding.is_native:
        return False
    if holding.balance == 0:
        return True
    if holding.usd_value is None:
        return policy.treat_unpriced_as_dust
    return holding.usd_value < policy.dust_usd_threshold


async def _lookup_age(lookup: ActivityLookup, address: str) -> Optional[int]:
    try:
        return await lookup.first_activity_timestamp(address)
    except Exception as e:
        logger.warning("Could not fetch age for %s: %s", address, e)
        return None


def _rent_item(holding: RawHolding, policy: ClassificationPolicy) -> DustItem:
    wrapped = holding.asset_id == WRAPPED_SOL_MINT
    recoverable = policy.rent_per_account
    if wrapped:
        # closing a wrapped-native account also unwraps its lamports
        recoverable += holding.balance
    return DustItem(
        address=holding.address,
        asset_id=holding.asset_id,
        kind=AssetKind.WRAPPED_NATIVE if wrapped else AssetKind.FUNGIBLE_TOKEN,
        balance=holding.balance,
        status=ItemStatus.PENDING,
        selected=True,
        raw_balance=holding.raw_balance,
        decimals=holding.decimals,
        recoverable=recoverable,
        symbol=holding.symbol,
        name=holding.name,
    )


def _balance_item(holding: RawHolding) -> DustItem:
    return DustItem(
        address=holding.address,
        asset_id=holding.asset_id,
        kind=AssetKind.STANDARD_TOKEN,
        balance=holding.balance,
        status=ItemStatus.PENDING,
        selected=False,  # burning is irreversible, so it is opt-in
        raw_balance=holding.raw_balance,
        decimals=holding.decimals,
        recoverable=Decimal("0"),
        symbol=holding.symbol,
        name=holding.name,
    )


async def classify(
    holdings: Sequence[RawHolding],
    policy: ClassificationPolicy,
    model: ChainModel,
    activity_lookup: Optional[ActivityLookup] = None,
) -> List[DustItem]:
    """
    Classify raw holdings into dust items.

    Args:
        holdings: Holdings in discovery order (not modified)
        policy: Thresholds, protection settings and the reference time
        model: Chain model deciding which dust rules apply
        activity_lookup: Age source for protection; protection is skipped
            when None

    Returns:
        DustItems in the same order as the dust holdings were given
    """
    items: List[DustItem] = []
    protect = (
        model == ChainModel.RENT and policy.protection_enabled and activity_lookup is not None
    )

    for holding in holdings:
        if not is_dust(holding, model, policy):
            continue

        if model == ChainModel.BALANCE:
            items.append(_balance_item(holding))
            continue

        item = _rent_item(holding, policy)
        if protect:
            created_at = await _lookup_age(activity_lookup, holding.address)
            if created_at is not None and policy.now_ms - created_at < policy.protection_window_ms:
                logger.info("Protected: %s (active within protection window)", holding.address)
                item = replace(
                    item, created_at=created_at, status=ItemStatus.PROTECTED, selected=False
                )
            else:
                item = replace(item, created_at=created_at)
        items.append(item)

    logger.info(
        "Classified %d of %d holdings as dust (%d protected)",
        len(items),
        len(holdings),
        sum(1 for i in items if i.is_protected),
    )
    return items
