"""
Unit tests for transaction building and signing adapters.

Tests follow the Given/When/Then pattern for clarity.
"""

import base64
import json
from decimal import Decimal

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from dustsweep.lib.errors import (
    ConfirmationTimeoutError,
    SubmissionFailedError,
    UserRejectedError,
)
from dustsweep.lib.models import AssetKind
from dustsweep.lib.rpc_client import TOKEN_PROGRAM_ID, RpcAPIError
from dustsweep.lib.transactions import (
    BURN_ADDRESS,
    BurnTransferSigner,
    SolanaKeypairSigner,
    build_close_instruction,
    encode_burn_transfer,
    load_keypair,
)


class FakeSolanaClient:
    def __init__(self, statuses=None, send_error=None):
        self.blockhash = str(Hash.new_unique())
        self.statuses = statuses or []
        self.send_error = send_error
        self.sent = []

    def get_latest_blockhash(self):
        return self.blockhash

    def send_transaction(self, tx_base64):
        if self.send_error:
            raise self.send_error
        self.sent.append(tx_base64)
        return "sig1"

    def get_signature_statuses(self, signatures):
        status = self.statuses.pop(0) if self.statuses else None
        return [status]


class FakeBscClient:
    def __init__(self, receipts):
        self.receipts = list(receipts)

    def get_transaction_receipt(self, tx_hash):
        return self.receipts.pop(0) if self.receipts else None


class WalletError(Exception):
    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


class FakeWallet:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def send_transaction(self, to, data):
        self.calls.append((to, data))
        if self.error:
            raise self.error
        return "0xhash"


def account_items(make_item, count):
    return [make_item(str(Pubkey.new_unique())) for _ in range(count)]


class TestCloseInstruction:
    """Tests for SPL CloseAccount instructions."""

    def test_close_instruction_layout(self):
        """
        Given a token account and owner
        When building a close instruction
        Then it should target the token program with the close opcode
        """
        # Given
        account, owner = Pubkey.new_unique(), Pubkey.new_unique()

        # When
        ix = build_close_instruction(account, owner)

        # Then
        assert ix.program_id == Pubkey.from_string(TOKEN_PROGRAM_ID)
        assert bytes(ix.data) == bytes([9])
        assert [meta.pubkey for meta in ix.accounts] == [account, owner, owner]
        assert ix.accounts[0].is_writable
        assert ix.accounts[2].is_signer


class TestLoadKeypair:
    """Tests for operator key loading."""

    def test_loads_json_byte_array(self):
        """
        Given a keypair exported as a JSON byte array
        When loading it
        Then the same public key should be returned
        """
        # Given
        keypair = Keypair()
        secret = json.dumps(list(bytes(keypair)))

        # When / Then
        assert load_keypair(secret).pubkey() == keypair.pubkey()

    def test_loads_base58_secret(self):
        """
        Given a keypair exported as base58
        When loading it
        Then the same public key should be returned
        """
        # Given
        keypair = Keypair()

        # When / Then
        assert load_keypair(str(keypair)).pubkey() == keypair.pubkey()

    def test_rejects_garbage(self):
        """
        Given a string in neither format
        When loading it
        Then a ValueError should be raised
        """
        # When / Then
        with pytest.raises(ValueError, match="Invalid private key format"):
            load_keypair("not-a-key")


class TestSolanaKeypairSigner:
    """Tests for signing and confirming close batches."""

    @pytest.mark.asyncio
    async def test_sends_signed_transaction_with_one_instruction_per_item(self, make_item):
        """
        Given a batch of three token accounts
        When signing and sending
        Then one signed transaction with three instructions should be broadcast
        """
        # Given
        keypair = Keypair()
        client = FakeSolanaClient()
        signer = SolanaKeypairSigner(client, keypair)
        batch = account_items(make_item, 3)

        # When
        signature = await signer.sign_and_send(batch)

        # Then
        assert signature == "sig1"
        tx = Transaction.from_bytes(base64.b64decode(client.sent[0]))
        assert len(tx.message.instructions) == 3
        assert tx.message.account_keys[0] == keypair.pubkey()
        assert str(tx.message.recent_blockhash) == client.blockhash
        tx.verify()

    @pytest.mark.asyncio
    async def test_rpc_errors_become_submission_failures(self, make_item):
        """
        Given a node rejecting the transaction
        When signing and sending
        Then SubmissionFailedError should be raised
        """
        # Given
        client = FakeSolanaClient(send_error=RpcAPIError("API error: blockhash not found"))
        signer = SolanaKeypairSigner(client, Keypair())

        # When / Then
        with pytest.raises(SubmissionFailedError, match="blockhash not found"):
            await signer.sign_and_send(account_items(make_item, 1))

    @pytest.mark.asyncio
    async def test_confirm_waits_for_confirmation(self):
        """
        Given a signature that is processed and then confirmed
        When confirming
        Then it should return once confirmed
        """
        # Given
        client = FakeSolanaClient(
            statuses=[
                {"confirmationStatus": "processed", "err": None},
                {"confirmationStatus": "confirmed", "err": None},
            ]
        )
        signer = SolanaKeypairSigner(client, Keypair(), confirm_timeout=5, poll_interval=0)

        # When
        await signer.confirm("sig1")

        # Then
        assert client.statuses == []

    @pytest.mark.asyncio
    async def test_confirm_raises_on_transaction_error(self):
        """
        Given a signature whose transaction failed on chain
        When confirming
        Then SubmissionFailedError should be raised
        """
        # Given
        client = FakeSolanaClient(statuses=[{"confirmationStatus": "confirmed", "err": {"x": 1}}])
        signer = SolanaKeypairSigner(client, Keypair(), confirm_timeout=5, poll_interval=0)

        # When / Then
        with pytest.raises(SubmissionFailedError):
            await signer.confirm("sig1")

    @pytest.mark.asyncio
    async def test_confirm_times_out(self):
        """
        Given a signature that never shows up
        When the confirmation window passes
        Then ConfirmationTimeoutError should be raised
        """
        # Given
        signer = SolanaKeypairSigner(
            FakeSolanaClient(), Keypair(), confirm_timeout=0.05, poll_interval=0.01
        )

        # When / Then
        with pytest.raises(ConfirmationTimeoutError):
            await signer.confirm("sig1")


class TestBurnTransfer:
    """Tests for ERC-20 burn transfers."""

    def burn_item(self, make_item, raw="1000"):
        return make_item(
            "0xtoken",
            asset_id="0xtoken",
            kind=AssetKind.STANDARD_TOKEN,
            balance=Decimal("0.000000000000001"),
            raw_balance=raw,
            recoverable=Decimal("0"),
        )

    def test_encodes_transfer_calldata(self, make_item):
        """
        Given a token balance of 1000 smallest units
        When encoding the burn transfer
        Then the calldata should be transfer(burn address, 1000)
        """
        # Given
        item = self.burn_item(make_item)

        # When
        data = encode_burn_transfer(item)

        # Then
        assert data.startswith("0xa9059cbb")
        assert data[10:74] == BURN_ADDRESS.lower()[2:].rjust(64, "0")
        assert int(data[74:], 16) == 1000
        assert len(data) == 2 + 8 + 64 + 64

    def test_encoding_needs_exact_raw_balance(self, make_item):
        """
        Given an item without a raw balance
        When encoding the burn transfer
        Then a ValueError should be raised
        """
        # Given
        item = self.burn_item(make_item, raw=None)

        # When / Then
        with pytest.raises(ValueError, match="No exact raw balance"):
            encode_burn_transfer(item)

    @pytest.mark.asyncio
    async def test_sends_to_token_contract(self, make_item):
        """
        Given a burn signer with a wallet
        When sending a single item
        Then the wallet should be asked to call the token contract
        """
        # Given
        wallet = FakeWallet()
        signer = BurnTransferSigner(wallet, FakeBscClient([]))

        # When
        tx_hash = await signer.sign_and_send([self.burn_item(make_item)])

        # Then
        assert tx_hash == "0xhash"
        assert wallet.calls[0][0] == "0xtoken"

    @pytest.mark.asyncio
    async def test_wallet_rejection_is_mapped(self, make_item):
        """
        Given a wallet that the user declines
        When sending
        Then UserRejectedError should be raised
        """
        # Given
        signer = BurnTransferSigner(
            FakeWallet(error=WalletError("User denied", 4001)), FakeBscClient([])
        )

        # When / Then
        with pytest.raises(UserRejectedError):
            await signer.sign_and_send([self.burn_item(make_item)])

    @pytest.mark.asyncio
    async def test_rejects_bundled_batches(self, make_item):
        """
        Given two items in one batch
        When sending
        Then a ValueError should be raised
        """
        # Given
        signer = BurnTransferSigner(FakeWallet(), FakeBscClient([]))
        item = self.burn_item(make_item)

        # When / Then
        with pytest.raises(ValueError, match="one token at a time"):
            await signer.sign_and_send([item, item])

    @pytest.mark.asyncio
    async def test_confirm_polls_until_receipt(self):
        """
        Given a receipt that appears on the second poll
        When confirming
        Then it should return without error
        """
        # Given
        signer = BurnTransferSigner(
            FakeWallet(), FakeBscClient([None, {"status": "0x1"}]), poll_interval=0
        )

        # When / Then
        await signer.confirm("0xhash")

    @pytest.mark.asyncio
    async def test_confirm_raises_on_revert(self):
        """
        Given a reverted transaction
        When confirming
        Then SubmissionFailedError should be raised
        """
        # Given
        client = FakeBscClient([{"status": "0x0"}])
        signer = BurnTransferSigner(FakeWallet(), client, poll_interval=0)

        # When / Then
        with pytest.raises(SubmissionFailedError, match="reverted"):
            await signer.confirm("0xhash")
