"""
Data models for dust scanning and reclaiming.

This module defines the chain selection types, the DustItem/ScanResult
snapshot used by the state store, and the run records persisted by the
history ledger.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

# Wrapped SOL mint address (native SOL representation as an SPL token)
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

# Rent deposit held by a single SPL token account, in SOL
RENT_PER_ACCOUNT = Decimal("0.00203928")

# Maximum number of run log entries kept in the history
MAX_HISTORY_ENTRIES = 100

# CSV column order for dust exports
CSV_COLUMNS = [
    "address",
    "asset_id",
    "kind",
    "symbol",
    "balance",
    "raw_balance",
    "recoverable",
    "status",
    "selected",
    "created_at",
]


class Chain(str, Enum):
    SOLANA = "solana"
    BNB = "bnb"


class Network(str, Enum):
    MAINNET = "mainnet-beta"
    DEVNET = "devnet"


class ChainModel(str, Enum):
    """How a chain charges for holding tokens."""

    RENT = "rent"  # per-account refundable deposit
    BALANCE = "balance"  # balances under a single account


class ActionKind(str, Enum):
    """On-chain action used to clean up a dust item."""

    CLOSE = "close"
    BURN_TRANSFER = "burn_transfer"


class AssetKind(str, Enum):
    WRAPPED_NATIVE = "WrappedNative"
    FUNGIBLE_TOKEN = "FungibleToken"
    STANDARD_TOKEN = "StandardToken"


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CLOSED = "closed"
    ERROR = "error"
    PROTECTED = "protected"


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


NATIVE_SYMBOLS = {
    Chain.SOLANA: "SOL",
    Chain.BNB: "BNB",
}


@dataclass(frozen=True)
class ChainContext:
    """
    Explicit chain/network selection passed into scan and reclaim entry points.
    """

    chain: Chain = Chain.SOLANA
    network: Network = Network.MAINNET

    @property
    def model(self) -> ChainModel:
        return ChainModel.RENT if self.chain == Chain.SOLANA else ChainModel.BALANCE

    @property
    def action_kind(self) -> ActionKind:
        return ActionKind.CLOSE if self.model == ChainModel.RENT else ActionKind.BURN_TRANSFER

    @property
    def native_symbol(self) -> str:
        return NATIVE_SYMBOLS[self.chain]

    @classmethod
    def parse(cls, chain: str, network: str = Network.MAINNET.value) -> "ChainContext":
        """
        Build a context from user-supplied names.

        Raises:
            ValueError: If the chain or network is not supported
        """
        try:
            parsed_chain = Chain(chain.lower())
        except ValueError:
            supported = ", ".join(c.value for c in Chain)
            raise ValueError(f"Unsupported chain: {chain}. Supported: {supported}") from None
        try:
            parsed_network = Network(network.lower())
        except ValueError:
            supported = ", ".join(n.value for n in Network)
            raise ValueError(f"Unsupported network: {network}. Supported: {supported}") from None
        return cls(chain=parsed_chain, network=parsed_network)


@dataclass
class RawHolding:
    """A token holding as returned by a holdings provider, before classification."""

    address: str  # token account (rent model) or token contract (balance model)
    asset_id: str  # mint or contract address
    balance: Decimal
    raw_balance: Optional[str] = None  # exact smallest-unit balance
    decimals: Optional[int] = None
    usd_value: Optional[Decimal] = None  # None when no price is known
    is_native: bool = False
    symbol: str = ""
    name: str = ""


@dataclass(frozen=True)
class DustItem:
    """One candidate unit of reclaim."""

    address: str
    asset_id: str
    kind: AssetKind
    balance: Decimal
    status: ItemStatus = ItemStatus.PENDING
    selected: bool = False
    raw_balance: Optional[str] = None
    decimals: Optional[int] = None
    created_at: Optional[int] = None  # ms since epoch, None when unknown
    recoverable: Decimal = Decimal("0")  # value returned to the owner on reclaim
    symbol: str = ""
    name: str = ""

    @property
    def is_protected(self) -> bool:
        return self.status == ItemStatus.PROTECTED

    @property
    def is_reclaimable(self) -> bool:
        """True when the item will be part of the next reclaim run."""
        return self.selected and self.status == ItemStatus.PENDING

    def to_csv_row(self) -> List[str]:
        """Convert item to a CSV row (list of strings)."""
        return [
            self.address,
            self.asset_id,
            self.kind.value,
            self.symbol,
            format(self.balance, "f"),
            self.raw_balance or "",
            format(self.recoverable, "f"),
            self.status.value,
            "yes" if self.selected else "no",
            str(self.created_at) if self.created_at is not None else "",
        ]


@dataclass(frozen=True)
class ScanResult:
    """
    A single scan snapshot.

    The whole snapshot is replaced on every rescan and on every state store
    mutation, so observers never see a half-updated result.
    """

    total_scanned: int
    dust_detected: int
    recoverable_amount: Decimal
    accounts: Tuple[DustItem, ...] = ()
    error: Optional[str] = None  # user-facing message if the scan failed

    @classmethod
    def empty(cls, error: Optional[str] = None) -> "ScanResult":
        return cls(
            total_scanned=0,
            dust_detected=0,
            recoverable_amount=Decimal("0"),
            accounts=(),
            error=error,
        )

    def find(self, address: str) -> Optional[DustItem]:
        for item in self.accounts:
            if item.address == address:
                return item
        return None


@dataclass
class ExecutionResult:
    """Outcome of driving a set of batches through the execution engine."""

    success: bool
    closed_or_swept: int = 0
    failed_or_skipped: int = 0
    reclaimed_amount: Decimal = Decimal("0")
    transaction_ids: List[str] = field(default_factory=list)
    failed_addresses: List[str] = field(default_factory=list)
    error: Optional[str] = None  # user-facing message of the stopping failure

    @property
    def status(self) -> RunStatus:
        if self.failed_or_skipped == 0:
            return RunStatus.SUCCESS
        if self.closed_or_swept > 0:
            return RunStatus.PARTIAL
        return RunStatus.FAILED


@dataclass
class ReclaimPreview:
    """Numbers shown to the user before a reclaim run is confirmed."""

    action_kind: ActionKind
    item_count: int
    recoverable_amount: Decimal
    batch_count: int
    estimated_fee: Decimal

    @property
    def net_amount(self) -> Decimal:
        return self.recoverable_amount - self.estimated_fee


@dataclass
class RunLogEntry:
    """Persisted record of one completed reclaim execution."""

    timestamp: str  # ISO 8601
    signature_or_hash: str  # first successful transaction id, or "none"
    accounts_closed: int
    amount_reclaimed: Decimal
    wallet_address: str
    status: RunStatus
    error: Optional[str] = None
    chain: str = Chain.SOLANA.value
    network: str = Network.MAINNET.value


@dataclass
class RunHistory:
    """Lifetime run totals plus the most recent run log entries (newest first)."""

    last_run_timestamp: Optional[str] = None
    lifetime_amount_reclaimed: Decimal = Decimal("0")
    lifetime_accounts_closed: int = 0
    entries: List[RunLogEntry] = field(default_factory=list)
