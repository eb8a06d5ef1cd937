"""
Unit tests for dust classification.

Tests follow the Given/When/Then pattern for clarity.
"""

from decimal import Decimal

import pytest

from dustsweep.lib.classifier import ClassificationPolicy, classify, is_dust
from dustsweep.lib.models import RENT_PER_ACCOUNT, AssetKind, ChainModel, ItemStatus

NOW = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000


class FakeActivityLookup:
    """Activity lookup answering from a dict; unknown addresses fail."""

    def __init__(self, timestamps):
        self.timestamps = timestamps
        self.calls = []

    async def first_activity_timestamp(self, account_id):
        self.calls.append(account_id)
        if account_id not in self.timestamps:
            raise RuntimeError("lookup failed")
        return self.timestamps[account_id]


class TestIsDustRentModel:
    """Tests for rent-model dust rules."""

    def test_zero_balance_is_dust(self, make_holding):
        """
        Given a token account with zero balance
        When checking for dust
        Then it should be dust
        """
        # Given
        holding = make_holding(balance="0")

        # When / Then
        assert is_dust(holding, ChainModel.RENT, ClassificationPolicy(now_ms=NOW))

    def test_nonzero_token_is_not_dust(self, make_holding):
        """
        Given a non-wrapped token account with a balance
        When checking for dust
        Then it should not be dust
        """
        # Given
        holding = make_holding(balance="0.000001")

        # When / Then
        assert not is_dust(holding, ChainModel.RENT, ClassificationPolicy(now_ms=NOW))

    @pytest.mark.parametrize("balance,expected", [("0.0005", True), ("0.001", False)])
    def test_wrapped_native_threshold(self, make_holding, wrapped_sol_mint, balance, expected):
        """
        Given wrapped SOL accounts around the threshold
        When checking for dust
        Then only balances strictly below the threshold should be dust
        """
        # Given
        holding = make_holding(asset_id=wrapped_sol_mint, balance=balance)

        # When / Then
        assert is_dust(holding, ChainModel.RENT, ClassificationPolicy(now_ms=NOW)) is expected


class TestIsDustBalanceModel:
    """Tests for balance-model dust rules."""

    def test_native_currency_is_never_dust(self, make_holding):
        """
        Given the native currency with a zero balance
        When checking for dust
        Then it should not be dust
        """
        # Given
        holding = make_holding(balance="0", is_native=True, usd_value=Decimal("0"))

        # When / Then
        assert not is_dust(holding, ChainModel.BALANCE, ClassificationPolicy(now_ms=NOW))

    @pytest.mark.parametrize(
        "usd,expected",
        [(Decimal("0.009"), True), (Decimal("0.01"), False), (Decimal("12"), False)],
    )
    def test_usd_threshold(self, make_holding, usd, expected):
        """
        Given tokens worth different USD amounts
        When checking for dust
        Then only values strictly below the threshold should be dust
        """
        # Given
        holding = make_holding(balance="3", usd_value=usd)

        # When / Then
        assert is_dust(holding, ChainModel.BALANCE, ClassificationPolicy(now_ms=NOW)) is expected

    def test_unpriced_tokens_follow_policy(self, make_holding):
        """
        Given a token with no known price
        When checking for dust with and without the unpriced rule
        Then the policy flag should decide
        """
        # Given
        holding = make_holding(balance="3", usd_value=None)

        # When / Then
        assert is_dust(holding, ChainModel.BALANCE, ClassificationPolicy(now_ms=NOW))
        assert not is_dust(
            holding,
            ChainModel.BALANCE,
            ClassificationPolicy(now_ms=NOW, treat_unpriced_as_dust=False),
        )


class TestClassify:
    """Tests for classify."""

    @pytest.mark.asyncio
    async def test_old_and_young_accounts(self, make_holding):
        """
        Given an account last active 48h ago and one active 1h ago
        When classifying with protection enabled
        Then the old one should be selected and the young one protected
        """
        # Given
        holdings = [make_holding("old"), make_holding("young")]
        lookup = FakeActivityLookup({"old": NOW - 48 * HOUR_MS, "young": NOW - 1 * HOUR_MS})
        policy = ClassificationPolicy(now_ms=NOW)

        # When
        items = await classify(holdings, policy, ChainModel.RENT, lookup)

        # Then
        old, young = items
        assert old.status == ItemStatus.PENDING and old.selected
        assert old.created_at == NOW - 48 * HOUR_MS
        assert young.status == ItemStatus.PROTECTED and not young.selected

    @pytest.mark.asyncio
    async def test_failed_lookup_leaves_item_unprotected(self, make_holding):
        """
        Given an age lookup that fails for an account
        When classifying with protection enabled
        Then the account should be pending and selected with unknown age
        """
        # Given
        lookup = FakeActivityLookup({})
        policy = ClassificationPolicy(now_ms=NOW)

        # When
        items = await classify([make_holding("acct")], policy, ChainModel.RENT, lookup)

        # Then
        assert items[0].status == ItemStatus.PENDING
        assert items[0].selected
        assert items[0].created_at is None

    @pytest.mark.asyncio
    async def test_protection_disabled_skips_lookup(self, make_holding):
        """
        Given protection disabled
        When classifying
        Then no age lookups should be made and nothing protected
        """
        # Given
        lookup = FakeActivityLookup({"acct": NOW})
        policy = ClassificationPolicy(now_ms=NOW, protection_enabled=False)

        # When
        items = await classify([make_holding("acct")], policy, ChainModel.RENT, lookup)

        # Then
        assert lookup.calls == []
        assert items[0].status == ItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_skips_non_dust_and_keeps_order(self, make_holding):
        """
        Given a mix of dust and non-dust holdings
        When classifying
        Then only dust should be returned in input order
        """
        # Given
        holdings = [
            make_holding("a"),
            make_holding("b", balance="5"),
            make_holding("c"),
        ]

        # When
        items = await classify(holdings, ClassificationPolicy(now_ms=NOW), ChainModel.RENT)

        # Then
        assert [i.address for i in items] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_wrapped_native_recovers_rent_and_balance(self, make_holding, wrapped_sol_mint):
        """
        Given a near-empty wrapped SOL account
        When classifying
        Then its recoverable value should include the unwrapped balance
        """
        # Given
        holding = make_holding(asset_id=wrapped_sol_mint, balance="0.0005")

        # When
        items = await classify([holding], ClassificationPolicy(now_ms=NOW), ChainModel.RENT)

        # Then
        assert items[0].kind == AssetKind.WRAPPED_NATIVE
        assert items[0].recoverable == RENT_PER_ACCOUNT + Decimal("0.0005")

    @pytest.mark.asyncio
    async def test_balance_model_items_are_opt_in(self, make_holding):
        """
        Given a worthless BEP-20 token
        When classifying for the balance model
        Then it should be pending, unselected and recover nothing
        """
        # Given
        holding = make_holding("0xtoken", asset_id="0xtoken", balance="1", usd_value=Decimal("0"))
        lookup = FakeActivityLookup({})

        # When
        policy = ClassificationPolicy(now_ms=NOW)
        items = await classify([holding], policy, ChainModel.BALANCE, lookup)

        # Then
        assert items[0].kind == AssetKind.STANDARD_TOKEN
        assert items[0].status == ItemStatus.PENDING
        assert not items[0].selected
        assert items[0].recoverable == Decimal("0")
        assert lookup.calls == []

    @pytest.mark.asyncio
    async def test_does_not_mutate_input(self, make_holding):
        """
        Given a list of holdings
        When classifying
        Then the input list should be unchanged
        """
        # Given
        holdings = [make_holding("a"), make_holding("b", balance="2")]
        snapshot = list(holdings)

        # When
        await classify(holdings, ClassificationPolicy(now_ms=NOW), ChainModel.RENT)

        # Then
        assert holdings == snapshot
