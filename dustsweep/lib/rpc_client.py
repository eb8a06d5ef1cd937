"""
JSON-RPC clients with automatic rate limit handling, retries and endpoint fallback.

This module provides the read/broadcast layer for both supported chains:
Solana RPC nodes (with a per-network list of fallback endpoints), the Ankr
multichain API for BNB Smart Chain token balances, and a plain BSC node.
"""

import random
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from .errors import ProviderUnavailableError
from .models import Network

# Solana RPC endpoints, tried in order
SOLANA_ENDPOINTS = {
    Network.MAINNET: [
        "https://api.mainnet-beta.solana.com",
        "https://solana-mainnet.g.alchemy.com/v2/demo",
    ],
    Network.DEVNET: [
        "https://api.devnet.solana.com",
    ],
}

ANKR_MULTICHAIN_URL = "https://rpc.ankr.com/multichain"
BSC_RPC_URL = "https://bsc-dataseed.binance.org"

# SPL Token program (owner of classic token accounts)
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

# Retry configuration
DEFAULT_INITIAL_DELAY = 1.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_DELAY = 5.0  # seconds
DEFAULT_JITTER = 0.1  # ±10%
DEFAULT_TIMEOUT = 30.0  # seconds per HTTP request


class RpcAPIError(ProviderUnavailableError):
    """Exception raised for RPC API errors."""


class RpcRateLimitError(RpcAPIError):
    """Exception raised when rate limit is exceeded and retries are exhausted."""

    pass


class JsonRpcClient:
    """
    JSON-RPC 2.0 client with automatic 429 retry handling.

    All requests to a single endpoint go through this class, which handles:
    - HTTP 429 rate limit retries with exponential backoff
    - Server error (5xx) and transport error retries
    - Request/response serialization and JSON-RPC error extraction
    - Redaction of the API key from error messages
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            url: Endpoint URL
            api_key: Optional API key appended to the URL path
            initial_delay: Initial delay in seconds for retry backoff
            backoff_multiplier: Multiplier for exponential backoff
            max_retries: Maximum number of retry attempts
            max_delay: Maximum delay cap in seconds
            jitter: Jitter factor (±percentage) to randomize delays
            timeout: Per-request timeout in seconds
            session: Shared requests session (a new one is created if None)
        """
        self.url = f"{url.rstrip('/')}/{api_key}" if api_key else url
        self.api_key = api_key
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_retries = max_retries
        self.max_delay = max_delay
        self.jitter = jitter
        self.timeout = timeout
        self.session = session or requests.Session()

    def _sanitize_error_message(self, message: str) -> str:
        """Remove API key from error messages to prevent credential leakage."""
        if not self.api_key:
            return message
        return message.replace(self.api_key, "[REDACTED]")

    def _apply_jitter(self, delay: float) -> float:
        """Apply random jitter to a delay value."""
        jitter_range = delay * self.jitter
        return delay + random.uniform(-jitter_range, jitter_range)

    def _execute_with_retry(
        self,
        request_func: Callable[[], requests.Response],
    ) -> requests.Response:
        """
        Execute a request function with retry logic for rate limits and server errors.

        Args:
            request_func: A callable that returns a requests.Response

        Returns:
            The successful response

        Raises:
            RpcAPIError: For API errors after retries exhausted
            RpcRateLimitError: When rate limit retries are exhausted
        """
        delay = self.initial_delay

        for attempt in range(self.max_retries + 1):
            try:
                response = request_func()

                if response.status_code == 429:
                    if attempt < self.max_retries:
                        time.sleep(self._apply_jitter(min(delay, self.max_delay)))
                        delay *= self.backoff_multiplier
                        continue
                    raise RpcRateLimitError(
                        "Rate limit exceeded and max retries reached",
                        status_code=429,
                    )

                if response.status_code in (401, 403):
                    raise RpcAPIError(
                        "Access denied by RPC endpoint",
                        status_code=response.status_code,
                    )

                if response.status_code >= 500:
                    if attempt < self.max_retries:
                        time.sleep(self._apply_jitter(min(delay, self.max_delay)))
                        delay *= self.backoff_multiplier
                        continue
                    raise RpcAPIError(
                        f"Server error: {response.status_code}",
                        status_code=response.status_code,
                    )

                response.raise_for_status()
                return response

            except requests.RequestException as e:
                if attempt < self.max_retries:
                    time.sleep(self._apply_jitter(min(delay, self.max_delay)))
                    delay *= self.backoff_multiplier
                    continue
                sanitized_msg = self._sanitize_error_message(str(e))
                raise RpcAPIError(f"Request failed: {sanitized_msg}") from e

        raise RpcAPIError("Max retries exceeded")

    def request(self, method: str, params: Any, request_id: int = 1) -> Any:
        """
        Make a JSON-RPC request with automatic 429 retry and exponential backoff.

        Args:
            method: JSON-RPC method name
            params: Method parameters
            request_id: JSON-RPC request ID

        Returns:
            The 'result' field from the JSON-RPC response

        Raises:
            RpcAPIError: For API errors
            RpcRateLimitError: When rate limit retries are exhausted
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id,
        }

        response = self._execute_with_retry(
            lambda: self.session.post(self.url, json=payload, timeout=self.timeout)
        )
        try:
            data = response.json()
        except ValueError:
            raise RpcAPIError(
                "Invalid JSON-RPC response", status_code=response.status_code
            ) from None
        if not isinstance(data, dict):
            raise RpcAPIError("Invalid JSON-RPC response", status_code=response.status_code)

        if "error" in data:
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise RpcAPIError(
                f"API error: {self._sanitize_error_message(message)}",
                status_code=code,
            )

        return data.get("result")


class SolanaRpcClient:
    """
    Solana RPC client falling back through a list of endpoints.

    Each call is tried against the endpoints in order; the first endpoint
    that answers wins. The last error is raised if every endpoint fails.
    """

    def __init__(
        self,
        network: Network = Network.MAINNET,
        endpoints: Optional[Sequence[str]] = None,
        **client_kwargs: Any,
    ):
        self.network = network
        self.endpoints = list(endpoints or SOLANA_ENDPOINTS[network])
        if not self.endpoints:
            raise ValueError(f"No RPC endpoints configured for {network.value}")
        self._clients = [JsonRpcClient(url, **client_kwargs) for url in self.endpoints]

    def _request(self, method: str, params: Any) -> Any:
        last_error: Optional[RpcAPIError] = None
        for client in self._clients:
            try:
                return client.request(method, params)
            except RpcAPIError as e:
                last_error = e
                continue
        raise last_error or RpcAPIError("All RPC endpoints failed")

    def get_token_accounts_by_owner(
        self, owner: str, program_id: str = TOKEN_PROGRAM_ID
    ) -> List[Dict[str, Any]]:
        """
        Get all token accounts owned by a wallet, jsonParsed.

        Args:
            owner: Wallet public key (base58)
            program_id: Token program owning the accounts

        Returns:
            List of {"pubkey": ..., "account": {...}} entries
        """
        result = self._request(
            "getTokenAccountsByOwner",
            [owner, {"programId": program_id}, {"encoding": "jsonParsed"}],
        )
        return (result or {}).get("value", []) or []

    def get_signatures_for_address(self, address: str, limit: int = 1) -> List[Dict[str, Any]]:
        """Get the most recent transaction signatures touching an address."""
        result = self._request("getSignaturesForAddress", [address, {"limit": limit}])
        return result or []

    def get_latest_blockhash(self) -> str:
        result = self._request("getLatestBlockhash", [{"commitment": "confirmed"}])
        blockhash = ((result or {}).get("value") or {}).get("blockhash")
        if not blockhash:
            raise RpcAPIError("getLatestBlockhash returned no blockhash")
        return str(blockhash)

    def send_transaction(self, tx_base64: str, skip_preflight: bool = False) -> str:
        """
        Broadcast a signed, base64-encoded transaction.

        Returns:
            The transaction signature
        """
        result = self._request(
            "sendTransaction",
            [
                tx_base64,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": "confirmed",
                },
            ],
        )
        if not result:
            raise RpcAPIError("sendTransaction returned no signature")
        return str(result)

    def get_signature_statuses(self, signatures: List[str]) -> List[Optional[Dict[str, Any]]]:
        result = self._request(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": True}],
        )
        return (result or {}).get("value") or [None] * len(signatures)

    def get_balance(self, owner: str) -> int:
        """Get the native balance in lamports."""
        result = self._request("getBalance", [owner, {"commitment": "confirmed"}])
        return int((result or {}).get("value", 0) or 0)


class AnkrClient(JsonRpcClient):
    """Client for the Ankr multichain Advanced API (token balances with USD values)."""

    def __init__(self, url: str = ANKR_MULTICHAIN_URL, **kwargs: Any):
        super().__init__(url, **kwargs)

    def get_account_balance(self, wallet: str, blockchain: str = "bsc") -> List[Dict[str, Any]]:
        """
        Get all token balances for a wallet.

        Automatically paginates through all results.

        Args:
            wallet: Wallet address (0x...)
            blockchain: Ankr blockchain name

        Returns:
            List of asset dicts (balance, balanceRawInteger, balanceUsd, tokenType, ...)
        """
        all_assets: List[Dict[str, Any]] = []
        page_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {
                "blockchain": [blockchain],
                "walletAddress": wallet,
                "onlyWhitelisted": False,
            }
            if page_token:
                params["pageToken"] = page_token

            result = self.request("ankr_getAccountBalance", params) or {}
            all_assets.extend(result.get("assets", []) or [])

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        return all_assets


class BscRpcClient(JsonRpcClient):
    """Plain BNB Smart Chain node client."""

    def __init__(self, url: str = BSC_RPC_URL, **kwargs: Any):
        super().__init__(url, **kwargs)

    def get_native_balance(self, wallet: str) -> int:
        """Get the BNB balance in wei."""
        result = self.request("eth_getBalance", [wallet, "latest"])
        return int(result, 16)

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Get a transaction receipt, or None while the transaction is pending."""
        return self.request("eth_getTransactionReceipt", [tx_hash])
