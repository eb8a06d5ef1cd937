"""
Transaction construction and signing adapters for the execution engine.

Solana batches become one transaction of SPL CloseAccount instructions signed
with a local keypair. BNB dust items become ERC-20 transfers to the burn
address, sent through an external wallet.
"""

import asyncio
import base64
import json
import logging
import time
from typing import Awaitable, List, Optional, Protocol, Sequence

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .errors import (
    ConfirmationTimeoutError,
    SubmissionFailedError,
    UserRejectedError,
    is_user_rejection,
)
from .models import DustItem
from .rpc_client import TOKEN_PROGRAM_ID, BscRpcClient, RpcAPIError, SolanaRpcClient

logger = logging.getLogger(__name__)

# SPL Token CloseAccount instruction index
CLOSE_ACCOUNT_IX = bytes([9])

# ERC-20 transfer(address,uint256) selector
ERC20_TRANSFER_SELECTOR = "a9059cbb"
BURN_ADDRESS = "0x000000000000000000000000000000000000dEaD"

DEFAULT_CONFIRM_TIMEOUT = 60.0  # seconds
DEFAULT_POLL_INTERVAL = 0.8  # seconds


def build_close_instruction(token_account: Pubkey, owner: Pubkey) -> Instruction:
    """CloseAccount instruction returning the account's lamports to its owner."""
    return Instruction(
        program_id=Pubkey.from_string(TOKEN_PROGRAM_ID),
        accounts=[
            AccountMeta(pubkey=token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
        ],
        data=CLOSE_ACCOUNT_IX,
    )


def build_close_instructions(batch: Sequence[DustItem], owner: Pubkey) -> List[Instruction]:
    return [build_close_instruction(Pubkey.from_string(item.address), owner) for item in batch]


def load_keypair(secret: str) -> Keypair:
    """
    Load a keypair from a JSON byte array or a base58 secret key.

    Raises:
        ValueError: If the secret is in neither format
    """
    secret = secret.strip()
    try:
        parsed = json.loads(secret)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return Keypair.from_bytes(bytes(parsed))

    try:
        return Keypair.from_base58_string(secret)
    except BaseException as e:  # PanicException from solders is not an Exception
        if isinstance(e, (KeyboardInterrupt, SystemExit)):
            raise
        raise ValueError("Invalid private key format. Use JSON array or Base58.") from None


class SolanaKeypairSigner:
    """
    Signs and broadcasts close-account batches with a local keypair.

    Used by the headless sweep; sign_and_send and confirm plug directly into
    ExecutionEngine.execute_close.
    """

    def __init__(
        self,
        client: SolanaRpcClient,
        keypair: Keypair,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.client = client
        self.keypair = keypair
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval

    @property
    def owner(self) -> str:
        return str(self.keypair.pubkey())

    def build_transaction(self, batch: Sequence[DustItem], blockhash: str) -> Transaction:
        owner = self.keypair.pubkey()
        recent = Hash.from_string(blockhash)
        message = Message.new_with_blockhash(build_close_instructions(batch, owner), owner, recent)
        return Transaction([self.keypair], message, recent)

    def _sign_and_send(self, batch: Sequence[DustItem]) -> str:
        try:
            blockhash = self.client.get_latest_blockhash()
            tx = self.build_transaction(batch, blockhash)
            return self.client.send_transaction(base64.b64encode(bytes(tx)).decode("utf-8"))
        except RpcAPIError as e:
            raise SubmissionFailedError(str(e), status_code=e.status_code) from e

    async def sign_and_send(self, batch: List[DustItem]) -> str:
        return await asyncio.to_thread(self._sign_and_send, batch)

    def _confirm(self, signature: str) -> None:
        deadline = time.monotonic() + self.confirm_timeout
        while time.monotonic() < deadline:
            try:
                status = self.client.get_signature_statuses([signature])[0]
            except RpcAPIError as e:
                logger.debug("Status poll failed for %s: %s", signature, e)
                status = None

            if status is not None:
                if status.get("err"):
                    raise SubmissionFailedError(f"Transaction {signature} failed: {status['err']}")
                if (status.get("confirmationStatus") or "").lower() in ("confirmed", "finalized"):
                    return
            time.sleep(self.poll_interval)

        raise ConfirmationTimeoutError(f"Timed out waiting for confirmation: {signature}")

    async def confirm(self, signature: str) -> None:
        await asyncio.to_thread(self._confirm, signature)


def encode_burn_transfer(item: DustItem, burn_address: str = BURN_ADDRESS) -> str:
    """
    Encode ERC-20 transfer calldata moving an item's whole balance to the burn address.

    The exact integer raw balance is used; a decimal balance is never
    converted through floating point.

    Raises:
        ValueError: If the item has no raw balance
    """
    if item.raw_balance is None:
        raise ValueError(f"No exact raw balance for {item.address}")
    amount = int(item.raw_balance)
    to_word = burn_address.lower().replace("0x", "").rjust(64, "0")
    amount_word = format(amount, "x").rjust(64, "0")
    return "0x" + ERC20_TRANSFER_SELECTOR + to_word + amount_word


class EvmTransactionSender(Protocol):
    """External wallet able to sign and broadcast an EVM transaction."""

    def send_transaction(self, to: str, data: str) -> Awaitable[str]:
        ...


class BurnTransferSigner:
    """Adapts an external EVM wallet to the engine's sign/confirm contract."""

    def __init__(
        self,
        sender: EvmTransactionSender,
        client: BscRpcClient,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.sender = sender
        self.client = client
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval

    async def sign_and_send(self, batch: List[DustItem]) -> str:
        if len(batch) != 1:
            raise ValueError("Burn transfers are sent one token at a time")
        item = batch[0]
        try:
            return await self.sender.send_transaction(item.asset_id, encode_burn_transfer(item))
        except Exception as e:
            if is_user_rejection(e):
                raise UserRejectedError("Transaction was rejected by the wallet") from e
            raise

    def _receipt_status(self, tx_hash: str) -> Optional[bool]:
        try:
            receipt = self.client.get_transaction_receipt(tx_hash)
        except RpcAPIError as e:
            logger.debug("Receipt poll failed for %s: %s", tx_hash, e)
            return None
        if not receipt:
            return None
        return receipt.get("status") == "0x1"

    async def confirm(self, tx_hash: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirm_timeout
        while loop.time() < deadline:
            status = await asyncio.to_thread(self._receipt_status, tx_hash)
            if status is True:
                return
            if status is False:
                raise SubmissionFailedError(f"Transaction {tx_hash} reverted")
            await asyncio.sleep(self.poll_interval)
        raise ConfirmationTimeoutError(f"Timed out waiting for receipt: {tx_hash}")
