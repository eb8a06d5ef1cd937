"""
Pytest configuration and shared fixtures for dustsweep tests.
"""

from decimal import Decimal

import pytest

from dustsweep.lib.models import (
    RENT_PER_ACCOUNT,
    WRAPPED_SOL_MINT,
    AssetKind,
    DustItem,
    ItemStatus,
    RawHolding,
)

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def sample_solana_address():
    """Sample Solana wallet address for testing."""
    return "GKvqsuNcnwWqPzzuhLmGi4rzzh55FhJtGizkhHaEJqiV"


@pytest.fixture
def sample_bnb_address():
    """Sample BNB Smart Chain wallet address for testing."""
    return "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"


@pytest.fixture
def usdc_mint():
    return USDC_MINT


@pytest.fixture
def make_holding():
    """Factory for raw holdings with sensible defaults."""

    def _make(address="acct1", asset_id=USDC_MINT, balance="0", **kwargs):
        return RawHolding(address=address, asset_id=asset_id, balance=Decimal(balance), **kwargs)

    return _make


@pytest.fixture
def make_item():
    """Factory for pending, selected rent-model dust items."""

    def _make(address="acct1", **kwargs):
        defaults = dict(
            asset_id=USDC_MINT,
            kind=AssetKind.FUNGIBLE_TOKEN,
            balance=Decimal("0"),
            status=ItemStatus.PENDING,
            selected=True,
            raw_balance="0",
            decimals=6,
            recoverable=RENT_PER_ACCOUNT,
        )
        defaults.update(kwargs)
        return DustItem(address=address, **defaults)

    return _make


@pytest.fixture
def make_items(make_item):
    """Factory for n distinct pending, selected items named acct0..acct{n-1}."""

    def _make(count, **kwargs):
        return [make_item(f"acct{i}", **kwargs) for i in range(count)]

    return _make


@pytest.fixture
def wrapped_sol_mint():
    return WRAPPED_SOL_MINT
