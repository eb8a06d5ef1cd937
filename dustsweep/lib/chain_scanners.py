"""
Chain scanners turning a wallet's holdings into a dust ScanResult.

This module provides the chain-specific holdings providers and activity
lookups, and the DustScanner that runs enumerate -> classify -> snapshot.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Dict, List, Optional, Protocol

from .classifier import ActivityLookup, ClassificationPolicy, classify
from .errors import ProviderUnavailableError, friendly_error_message
from .models import Chain, ChainContext, RawHolding, ScanResult
from .rpc_client import AnkrClient, BscRpcClient, RpcAPIError, SolanaRpcClient
from .state_store import recoverable_total

logger = logging.getLogger(__name__)

BSC_NATIVE_DECIMALS = 18


def to_decimal(raw_balance: int, decimals: int) -> Decimal:
    """
    Convert a smallest-unit balance to a Decimal quantity without float rounding.

    Examples:
        to_decimal(1500000, 6) -> Decimal("1.5")
        to_decimal(0, 9) -> Decimal("0")
    """
    if raw_balance == 0:
        return Decimal("0")
    if decimals == 0:
        return Decimal(raw_balance)
    return Decimal(raw_balance).scaleb(-decimals).normalize()


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class HoldingsProvider(Protocol):
    """Enumerates every token holding of a wallet."""

    def list_holdings(self, owner: str) -> Awaitable[List[RawHolding]]:
        ...


class SolanaHoldingsProvider:
    """Lists SPL token accounts owned by a wallet."""

    def __init__(self, client: SolanaRpcClient):
        self.client = client

    @staticmethod
    def _parse_account(entry: Dict[str, Any]) -> Optional[RawHolding]:
        data = entry.get("account", {}).get("data", {})
        info = data.get("parsed", {}).get("info") if isinstance(data, dict) else None
        if not info:
            return None

        token_amount = info.get("tokenAmount", {})
        raw_amount = str(token_amount.get("amount", "0"))
        decimals = int(token_amount.get("decimals", 0))
        try:
            balance = to_decimal(int(raw_amount), decimals)
        except ValueError:
            return None

        return RawHolding(
            address=entry.get("pubkey", ""),
            asset_id=info.get("mint", ""),
            balance=balance,
            raw_balance=raw_amount,
            decimals=decimals,
        )

    async def list_holdings(self, owner: str) -> List[RawHolding]:
        """
        List token accounts for an owner.

        Raises:
            ProviderUnavailableError: If every RPC endpoint failed
        """
        accounts = await asyncio.to_thread(self.client.get_token_accounts_by_owner, owner)
        logger.info("Found %d token accounts", len(accounts))

        holdings: List[RawHolding] = []
        for entry in accounts:
            holding = self._parse_account(entry)
            if holding is None:
                logger.debug("Skipping unparsed account %s", entry.get("pubkey"))
                continue
            holdings.append(holding)
        return holdings


class SolanaActivityLookup:
    """
    Account age lookup based on transaction signatures.

    Uses the newest signature touching the account, which never makes an
    account look older than it is.
    """

    def __init__(self, client: SolanaRpcClient):
        self.client = client

    async def first_activity_timestamp(self, account_id: str) -> Optional[int]:
        try:
            signatures = await asyncio.to_thread(
                self.client.get_signatures_for_address, account_id, 1
            )
        except RpcAPIError as e:
            logger.warning("Could not fetch age for %s: %s", account_id, e)
            return None

        if signatures and signatures[0].get("blockTime"):
            return int(signatures[0]["blockTime"]) * 1000
        return None


class BnbHoldingsProvider:
    """
    Lists BEP-20 balances via Ankr, falling back to the native balance only.

    When Ankr is unavailable the wallet's BNB balance is still read so the
    scan reports what it could see; no token can be classified in that case.
    """

    def __init__(self, ankr: AnkrClient, bsc: BscRpcClient):
        self.ankr = ankr
        self.bsc = bsc

    @staticmethod
    def _parse_asset(asset: Dict[str, Any], owner: str) -> RawHolding:
        contract = asset.get("contractAddress") or ""
        raw_balance = asset.get("balanceRawInteger")
        decimals = asset.get("tokenDecimals")
        return RawHolding(
            address=contract or owner,
            asset_id=contract,
            balance=_optional_decimal(asset.get("balance")) or Decimal("0"),
            raw_balance=str(raw_balance) if raw_balance is not None else None,
            decimals=int(decimals) if decimals is not None else None,
            usd_value=_optional_decimal(asset.get("balanceUsd")),
            is_native=asset.get("tokenType") == "NATIVE",
            symbol=asset.get("tokenSymbol") or "",
            name=asset.get("tokenName") or "",
        )

    async def list_holdings(self, owner: str) -> List[RawHolding]:
        """
        List token holdings for an owner.

        Raises:
            ProviderUnavailableError: If both Ankr and the BSC node failed
        """
        try:
            assets = await asyncio.to_thread(self.ankr.get_account_balance, owner)
            return [self._parse_asset(asset, owner) for asset in assets]
        except RpcAPIError as e:
            logger.warning("Ankr multichain failed, using BSC RPC fallback: %s", e)

        try:
            wei = await asyncio.to_thread(self.bsc.get_native_balance, owner)
        except RpcAPIError as e:
            raise ProviderUnavailableError(f"BSC fallback also failed: {e}") from e

        logger.info("Native BNB balance: %s", to_decimal(wei, BSC_NATIVE_DECIMALS))
        return [
            RawHolding(
                address=owner,
                asset_id="",
                balance=to_decimal(wei, BSC_NATIVE_DECIMALS),
                raw_balance=str(wei),
                decimals=BSC_NATIVE_DECIMALS,
                is_native=True,
                symbol="BNB",
                name="BNB",
            )
        ]


class DustScanner:
    """
    Scanner producing a fresh ScanResult for one chain.

    Usage:
        scanner = create_scanner(ChainContext(Chain.SOLANA))
        result = await scanner.scan(owner, ClassificationPolicy())
    """

    def __init__(
        self,
        context: ChainContext,
        provider: HoldingsProvider,
        activity_lookup: Optional[ActivityLookup] = None,
    ):
        self.context = context
        self.provider = provider
        self.activity_lookup = activity_lookup

    async def scan(self, owner: str, policy: ClassificationPolicy) -> ScanResult:
        """
        Scan a wallet for dust.

        Args:
            owner: Wallet address
            policy: Classification thresholds and protection settings

        Returns:
            ScanResult; an empty result carrying a user-facing error if the
            holdings could not be enumerated
        """
        logger.info("[%s] Starting dust scan for %s", self.context.chain.value, owner)
        try:
            holdings = await self.provider.list_holdings(owner)
        except ProviderUnavailableError as e:
            logger.error("[%s] Scan failed: %s", self.context.chain.value, e)
            return ScanResult.empty(error=friendly_error_message(e))

        items = await classify(holdings, policy, self.context.model, self.activity_lookup)
        return ScanResult(
            total_scanned=len(holdings),
            dust_detected=len(items),
            recoverable_amount=recoverable_total(items),
            accounts=tuple(items),
        )


def create_scanner(
    context: ChainContext,
    solana_client: Optional[SolanaRpcClient] = None,
    ankr_client: Optional[AnkrClient] = None,
    bsc_client: Optional[BscRpcClient] = None,
) -> DustScanner:
    """
    Factory function to create the appropriate scanner for a chain.

    Args:
        context: Chain and network to scan
        solana_client: Solana client (created for the network if None)
        ankr_client: Ankr client for BNB (default endpoint if None)
        bsc_client: BSC node client for BNB (default endpoint if None)

    Returns:
        DustScanner wired with the chain's provider and lookup
    """
    if context.chain == Chain.SOLANA:
        client = solana_client or SolanaRpcClient(context.network)
        return DustScanner(context, SolanaHoldingsProvider(client), SolanaActivityLookup(client))
    if context.chain == Chain.BNB:
        return DustScanner(
            context,
            BnbHoldingsProvider(ankr_client or AnkrClient(), bsc_client or BscRpcClient()),
        )
    raise ValueError(f"Unsupported chain: {context.chain}")
