"""
ingestion/rpc/client.py

SolanaRpcClient - thin JSON-RPC client over requests with 429/5xx backoff.

Only the account-reading calls the DLMM binding needs are exposed:
getAccountInfo and getMultipleAccounts (base64 encoding).
"""
import base64
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_COMMITMENT = "confirmed"

# getMultipleAccounts accepts at most 100 keys per call
MAX_ACCOUNTS_PER_REQUEST = 100

RETRYABLE_HTTP_CODES = (429, 500, 502, 503, 504)


class RpcError(RuntimeError):
    """JSON-RPC call failed (transport exhausted or error object returned)."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class AccountNotFoundError(RpcError):
    """Requested account does not exist on chain."""


@dataclass
class AccountInfo:
    """Raw on-chain account."""
    pubkey: str
    owner: str
    lamports: int
    data: bytes
    executable: bool = False

    @classmethod
    def from_rpc(cls, pubkey: str, value: Dict[str, Any]) -> "AccountInfo":
        data_field = value.get("data") or ["", "base64"]
        if isinstance(data_field, list):
            raw = base64.b64decode(data_field[0]) if data_field[0] else b""
        else:
            raw = base64.b64decode(data_field)
        return cls(
            pubkey=pubkey,
            owner=value.get("owner", ""),
            lamports=int(value.get("lamports", 0)),
            data=raw,
            executable=bool(value.get("executable", False)),
        )


class SolanaRpcClient:
    """
    Solana JSON-RPC client.

    Features:
    - Persistent requests.Session
    - Exponential backoff on HTTP 429/5xx and JSON-RPC rate-limit errors
    - Chunked getMultipleAccounts

    Environment:
        SOLANA_RPC_URL: RPC endpoint URL used when rpc_url is None
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        commitment: str = DEFAULT_COMMITMENT,
        timeout: float = 30.0,
        max_retries: int = 5,
        initial_delay_ms: float = 250.0,
        session: Optional[Any] = None,
    ):
        """
        Initialize SolanaRpcClient.

        Args:
            rpc_url: Endpoint URL (falls back to SOLANA_RPC_URL, then mainnet-beta)
            commitment: Commitment level sent with every account read
            timeout: Per-request timeout in seconds
            max_retries: Retries for rate-limited / transient failures
            initial_delay_ms: First backoff delay, doubled on each retry
            session: requests.Session-compatible object (injected in tests)
        """
        self.rpc_url = rpc_url or os.getenv("SOLANA_RPC_URL", DEFAULT_RPC_URL)
        self.commitment = commitment
        self.timeout = timeout
        self._max_retries = max_retries
        self._initial_delay_ms = initial_delay_ms
        self._session = session if session is not None else requests.Session()
        self._request_id = 0

        # Metrics
        self._http_calls = 0
        self._retries = 0

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "SolanaRpcClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _sleep(self, delay_ms: float) -> None:
        time.sleep(delay_ms / 1000.0)

    def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Execute one JSON-RPC call and return its ``result``.

        Raises:
            RpcError: On JSON-RPC error objects or exhausted retries
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        delay_ms = self._initial_delay_ms
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries + 1):
            try:
                response = self._session.post(self.rpc_url, json=payload, timeout=self.timeout)
                self._http_calls += 1

                if response.status_code in RETRYABLE_HTTP_CODES:
                    last_error = RpcError(
                        f"HTTP {response.status_code} from {self.rpc_url}",
                        code=response.status_code,
                    )
                else:
                    if response.status_code >= 400:
                        raise RpcError(f"HTTP {response.status_code} from {self.rpc_url}", code=response.status_code)
                    body = response.json()
                    error = body.get("error")
                    if error is None:
                        return body.get("result")

                    code = error.get("code")
                    message = error.get("message", str(error))
                    if code != 429:
                        raise RpcError(f"{method} failed: {message}", code=code)
                    last_error = RpcError(f"{method} rate limited: {message}", code=code)

            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                last_error = e

            if attempt < self._max_retries:
                self._retries += 1
                logger.warning(f"[rpc] {method} attempt {attempt + 1} failed ({last_error}), retrying in {delay_ms:.0f}ms")
                self._sleep(delay_ms)
                delay_ms *= 2

        raise RpcError(f"{method} failed after {self._max_retries + 1} attempts: {last_error}")

    def get_account_info(self, pubkey: str) -> AccountInfo:
        """Fetch a single account; raises AccountNotFoundError if it is missing."""
        result = self.request(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            raise AccountNotFoundError(f"Account not found: {pubkey}")
        return AccountInfo.from_rpc(pubkey, value)

    def get_multiple_accounts(self, pubkeys: List[str]) -> List[Optional[AccountInfo]]:
        """Fetch many accounts, preserving order; missing accounts map to None."""
        accounts: List[Optional[AccountInfo]] = []
        for start in range(0, len(pubkeys), MAX_ACCOUNTS_PER_REQUEST):
            chunk = pubkeys[start:start + MAX_ACCOUNTS_PER_REQUEST]
            result = self.request(
                "getMultipleAccounts",
                [chunk, {"encoding": "base64", "commitment": self.commitment}],
            )
            values = (result or {}).get("value") or []
            for pubkey, value in zip(chunk, values):
                accounts.append(AccountInfo.from_rpc(pubkey, value) if value is not None else None)
        logger.debug(f"[rpc] getMultipleAccounts: {len(pubkeys)} requested, {sum(a is not None for a in accounts)} found")
        return accounts

    def get_metrics(self) -> Dict[str, Any]:
        """Get client metrics."""
        return {
            "http_calls": self._http_calls,
            "retries": self._retries,
        }
