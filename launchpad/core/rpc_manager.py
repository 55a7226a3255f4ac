"""
Resilient JSON-RPC request layer
Round-robin endpoint failover with exponential backoff for read calls;
write calls go out once on the current endpoint
"""

import asyncio
import base64
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import aiohttp
from solders.hash import Hash
from solders.pubkey import Pubkey

from launchpad.core.config import RPCConfig, RPCEndpoint
from launchpad.core.errors import (
    RateLimitedError,
    RetriesExhaustedError,
    RPCError,
    TransientNetworkError,
)
from launchpad.core.logger import get_logger
from launchpad.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()

T = TypeVar("T")

# Error text that marks an endpoint as rate limited or restricted for this call
RATE_LIMIT_MARKERS = (
    "429",
    "too many requests",
    "rate limit",
    "getprogramaccounts is not available",
)


def is_rate_limit_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def is_retryable(error: BaseException) -> bool:
    """Rate limits and unreachable endpoints rotate and retry; nothing else does"""
    if isinstance(error, RetriesExhaustedError):
        return False
    return isinstance(error, TransientNetworkError)


class EndpointPool:
    """
    Ordered RPC endpoints with a rotating cursor

    Only the request layer moves the cursor.
    """

    def __init__(self, endpoints: Sequence[RPCEndpoint]):
        if not endpoints:
            raise ValueError("No RPC endpoints configured")
        self._endpoints: List[RPCEndpoint] = list(endpoints)
        self._cursor = 0
        self.rotations = 0

    def __len__(self) -> int:
        return len(self._endpoints)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def current(self) -> RPCEndpoint:
        return self._endpoints[self._cursor]

    @property
    def labels(self) -> List[str]:
        return [ep.label for ep in self._endpoints]

    def rotate(self) -> RPCEndpoint:
        """Advance to the next endpoint (round-robin) and return it"""
        self._cursor = (self._cursor + 1) % len(self._endpoints)
        self.rotations += 1
        return self.current


async def with_retry(
    operation: Callable[[RPCEndpoint], Awaitable[T]],
    pool: EndpointPool,
    max_retries: int = 5,
    base_delay_ms: int = 2000,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    description: str = "rpc_call"
) -> T:
    """
    Run a read operation with endpoint rotation and exponential backoff

    On a retryable error the pool rotates to the next endpoint and the call is
    retried after base_delay_ms * 2**attempt. Any other error propagates
    unchanged on the first occurrence.

    Args:
        operation: Coroutine factory taking the endpoint to use
        pool: Endpoint pool whose cursor is rotated on failure
        max_retries: Total attempts before giving up
        base_delay_ms: Backoff base in milliseconds
        sleep: Awaitable sleep (injectable for tests)
        description: Name used in log events

    Returns:
        Result of the first successful attempt

    Raises:
        RetriesExhaustedError: If every attempt hit a retryable error
    """
    last_error: Optional[BaseException] = None

    for attempt in range(max_retries):
        endpoint = pool.current
        try:
            return await operation(endpoint)
        except Exception as e:
            if not is_retryable(e):
                raise
            last_error = e

        next_endpoint = pool.rotate()
        metrics.increment_counter("rpc_endpoint_rotations")
        logger.warning(
            "rpc_endpoint_rotated",
            operation=description,
            failed_endpoint=endpoint.label,
            next_endpoint=next_endpoint.label,
            attempt=attempt + 1,
            max_retries=max_retries,
            error=str(last_error)
        )

        if attempt < max_retries - 1:
            delay_ms = base_delay_ms * (2 ** attempt)
            await sleep(delay_ms / 1000)

    metrics.increment_counter("rpc_retries_exhausted")
    logger.error(
        "rpc_retries_exhausted",
        operation=description,
        attempts=max_retries,
        error=str(last_error)
    )
    raise RetriesExhaustedError(attempts=max_retries, last_error=last_error)


@dataclass(frozen=True)
class AccountInfo:
    """Account as returned by getAccountInfo with base64 encoding"""
    owner: Pubkey
    lamports: int
    data: bytes
    executable: bool = False

    @classmethod
    def from_rpc(cls, value: Dict[str, Any]) -> "AccountInfo":
        raw = value.get("data")
        if isinstance(raw, list):
            data = base64.b64decode(raw[0]) if raw and raw[0] else b""
        elif isinstance(raw, str):
            data = base64.b64decode(raw)
        else:
            data = b""
        return cls(
            owner=Pubkey.from_string(value["owner"]),
            lamports=value.get("lamports", 0),
            data=data,
            executable=value.get("executable", False)
        )


class RPCManager:
    """
    JSON-RPC client over aiohttp with multi-endpoint failover

    Features:
    - Round-robin rotation on rate limits and unreachable endpoints
    - Exponential backoff (base delay x 2^attempt) up to a retry ceiling
    - Reads batched where the RPC allows (getMultipleAccounts)
    - Writes (sendTransaction, simulateTransaction) never retried

    Usage:
        async with RPCManager(config.rpc_config) as rpc:
            info = await rpc.get_account_info(pool_address)
    """

    def __init__(
        self,
        config: RPCConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize RPC manager

        Args:
            config: RPC configuration
            sleep: Awaitable sleep used between retries
        """
        self.config = config
        self.endpoints = EndpointPool(config.endpoints)
        self._sleep = sleep
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._request_ids = itertools.count(1)

        logger.info(
            "rpc_manager_initialized",
            endpoint_count=len(self.endpoints),
            endpoints=self.endpoints.labels,
            max_retries=config.max_retries,
            base_delay_ms=config.base_delay_ms
        )

    async def start(self) -> None:
        """Open the HTTP session"""
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
            logger.info("rpc_manager_started")

    async def stop(self) -> None:
        """Close the HTTP session"""
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            logger.info("rpc_manager_stopped")

    async def __aenter__(self) -> "RPCManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _post(self, endpoint: RPCEndpoint, method: str, params: List[Any]) -> Any:
        """
        Single JSON-RPC POST to one endpoint

        Returns:
            The "result" member of the response

        Raises:
            RateLimitedError: HTTP 429 or rate-limit/restricted error text
            TransientNetworkError: Connection failure, timeout or HTTP 5xx
            RPCError: Any other JSON-RPC error
        """
        if self._http_session is None:
            raise RuntimeError("HTTP session not initialized. Call start() first.")

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params
        }
        timeout = aiohttp.ClientTimeout(total=endpoint.timeout_ms / 1000)

        with LatencyTimer(metrics, "rpc_call", {"endpoint": endpoint.label, "method": method}):
            try:
                async with self._http_session.post(endpoint.url, json=payload, timeout=timeout) as response:
                    if response.status == 429:
                        metrics.increment_counter("rpc_rate_limited", labels={"endpoint": endpoint.label})
                        raise RateLimitedError(
                            f"HTTP 429 from {endpoint.label}",
                            endpoint=endpoint.label,
                            status=429
                        )
                    if response.status >= 500:
                        raise TransientNetworkError(
                            f"HTTP {response.status} from {endpoint.label}"
                        )
                    body = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                metrics.increment_counter("rpc_transport_errors", labels={"endpoint": endpoint.label})
                raise TransientNetworkError(
                    f"{endpoint.label} unreachable: {type(e).__name__}: {e}"
                ) from e

        if "error" in body:
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if is_rate_limit_message(message):
                metrics.increment_counter("rpc_rate_limited", labels={"endpoint": endpoint.label})
                raise RateLimitedError(message, endpoint=endpoint.label)
            raise RPCError(
                f"RPC error: {message}",
                code=error.get("code") if isinstance(error, dict) else None,
                data=error.get("data") if isinstance(error, dict) else None
            )

        return body.get("result")

    async def call(self, method: str, params: List[Any]) -> Any:
        """
        Read call with rotation and backoff

        Raises:
            RetriesExhaustedError: If every attempt was rate limited or unreachable
            RPCError: On a non-retryable RPC error
        """
        return await with_retry(
            lambda endpoint: self._post(endpoint, method, params),
            self.endpoints,
            max_retries=self.config.max_retries,
            base_delay_ms=self.config.base_delay_ms,
            sleep=self._sleep,
            description=method
        )

    async def call_once(self, method: str, params: List[Any]) -> Any:
        """Write call: one attempt on the current endpoint, errors surface as-is"""
        return await self._post(self.endpoints.current, method, params)

    # ----- read calls -----

    async def get_account_info(
        self,
        address: Pubkey,
        commitment: str = "confirmed"
    ) -> Optional[AccountInfo]:
        result = await self.call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": commitment}]
        )
        value = (result or {}).get("value")
        return AccountInfo.from_rpc(value) if value else None

    async def get_multiple_accounts(
        self,
        addresses: Sequence[Pubkey],
        commitment: str = "confirmed"
    ) -> List[Optional[AccountInfo]]:
        """
        Fetch many accounts, chunked to the configured batch size

        Returns:
            One entry per address, None where the account does not exist
        """
        batch_size = max(1, self.config.multiple_accounts_batch_size)
        accounts: List[Optional[AccountInfo]] = []

        for start in range(0, len(addresses), batch_size):
            chunk = addresses[start:start + batch_size]
            result = await self.call(
                "getMultipleAccounts",
                [[str(a) for a in chunk], {"encoding": "base64", "commitment": commitment}]
            )
            values = (result or {}).get("value") or []
            if len(values) != len(chunk):
                logger.warning(
                    "get_multiple_accounts_length_mismatch",
                    requested=len(chunk),
                    received=len(values)
                )
                values = (list(values) + [None] * len(chunk))[:len(chunk)]
            accounts.extend(AccountInfo.from_rpc(v) if v else None for v in values)

        return accounts

    async def get_program_accounts(
        self,
        program_id: Pubkey,
        data_size: Optional[int] = None,
        commitment: str = "confirmed"
    ) -> List[Tuple[Pubkey, AccountInfo]]:
        """Enumerate accounts owned by a program, optionally filtered by exact size"""
        options: Dict[str, Any] = {"encoding": "base64", "commitment": commitment}
        if data_size is not None:
            options["filters"] = [{"dataSize": data_size}]

        result = await self.call("getProgramAccounts", [str(program_id), options])

        accounts = []
        for entry in result or []:
            accounts.append((
                Pubkey.from_string(entry["pubkey"]),
                AccountInfo.from_rpc(entry["account"])
            ))
        return accounts

    async def get_signatures_for_address(
        self,
        address: Pubkey,
        limit: int = 50,
        before: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        options: Dict[str, Any] = {"limit": limit}
        if before:
            options["before"] = before
        result = await self.call("getSignaturesForAddress", [str(address), options])
        return list(result or [])

    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        return await self.call(
            "getTransaction",
            [signature, {
                "encoding": "jsonParsed",
                "maxSupportedTransactionVersion": 0,
                "commitment": "confirmed"
            }]
        )

    async def get_latest_blockhash(self, commitment: str = "confirmed") -> Tuple[Hash, int]:
        result = await self.call("getLatestBlockhash", [{"commitment": commitment}])
        value = result["value"]
        return Hash.from_string(value["blockhash"]), value["lastValidBlockHeight"]

    async def get_minimum_balance_for_rent_exemption(self, data_size: int) -> int:
        return int(await self.call("getMinimumBalanceForRentExemption", [data_size]))

    async def get_signature_statuses(self, signatures: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        result = await self.call(
            "getSignatureStatuses",
            [list(signatures), {"searchTransactionHistory": True}]
        )
        return list((result or {}).get("value") or [])

    # ----- write calls -----

    async def send_transaction(
        self,
        tx_bytes: bytes,
        skip_preflight: bool = False,
        preflight_commitment: str = "confirmed"
    ) -> str:
        """Submit a signed transaction once; returns the signature string"""
        return await self.call_once(
            "sendTransaction",
            [
                base64.b64encode(tx_bytes).decode("utf-8"),
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": preflight_commitment,
                    "maxRetries": 0
                }
            ]
        )

    async def simulate_transaction(self, tx_bytes: bytes, sig_verify: bool = False) -> Dict[str, Any]:
        """Simulate a transaction once; returns the RPC "value" object"""
        result = await self.call_once(
            "simulateTransaction",
            [
                base64.b64encode(tx_bytes).decode("utf-8"),
                {
                    "encoding": "base64",
                    "sigVerify": sig_verify,
                    "replaceRecentBlockhash": not sig_verify,
                    "commitment": "confirmed"
                }
            ]
        )
        return (result or {}).get("value") or {}
