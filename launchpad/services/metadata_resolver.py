"""
Token metadata resolution with a time-boxed cache

On-chain metadata record first, then the off-chain JSON document for the
image. Failed lookups are cached as absent for the same TTL.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

import aiohttp
from solders.pubkey import Pubkey

from launchpad.core.addresses import AddressDeriver
from launchpad.core.config import MetadataConfig
from launchpad.core.errors import DerivationError
from launchpad.core.layouts import decode_metadata
from launchpad.core.logger import get_logger
from launchpad.core.metrics import get_metrics, LatencyTimer
from launchpad.core.models import TokenMetadataRecord
from launchpad.core.rpc_manager import AccountInfo, RPCManager


logger = get_logger(__name__)
metrics = get_metrics()


@dataclass
class _CacheEntry:
    record: Optional[TokenMetadataRecord]
    stored_at: float


class MetadataResolver:
    """
    Resolves {name, symbol, image} per mint

    The cache is owned by the instance; share one resolver across refresh
    cycles to benefit from it.

    Usage:
        async with MetadataResolver(rpc_manager, deriver) as resolver:
            records = await resolver.resolve_many(mints)
    """

    def __init__(
        self,
        rpc_manager: RPCManager,
        deriver: AddressDeriver,
        config: Optional[MetadataConfig] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize metadata resolver

        Args:
            rpc_manager: RPC manager for metadata account reads
            deriver: Address deriver for metadata PDAs
            config: Cache and fetch limits (optional)
            http_session: Session for document fetches (created on start() when omitted)
            clock: Monotonic clock used for cache ages
        """
        self.rpc_manager = rpc_manager
        self.deriver = deriver
        self.config = config or MetadataConfig()
        self._http_session = http_session
        self._owns_session = http_session is None
        self._clock = clock
        self._cache: Dict[str, _CacheEntry] = {}

    async def start(self) -> None:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
            self._owns_session = True

    async def stop(self) -> None:
        if self._http_session is not None and self._owns_session:
            await self._http_session.close()
            self._http_session = None

    async def __aenter__(self) -> "MetadataResolver":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ----- cache -----

    def _cached(self, mint: str) -> Optional[_CacheEntry]:
        entry = self._cache.get(mint)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.config.cache_ttl_s:
            del self._cache[mint]
            return None
        return entry

    def _store(self, mint: str, record: Optional[TokenMetadataRecord]) -> None:
        self._cache[mint] = _CacheEntry(record=record, stored_at=self._clock())

    def is_cached(self, mint: str) -> bool:
        return self._cached(mint) is not None

    def invalidate(self, mint: str) -> None:
        self._cache.pop(mint, None)

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    # ----- resolution -----

    async def resolve(self, mint: Pubkey) -> Optional[TokenMetadataRecord]:
        """
        Resolve metadata for one mint

        Returns:
            TokenMetadataRecord, or None when the mint has no readable metadata
        """
        results = await self.resolve_many([mint])
        return results[str(mint)]

    async def resolve_many(self, mints: Iterable[Pubkey]) -> Dict[str, Optional[TokenMetadataRecord]]:
        """
        Resolve many mints with batched account reads and bounded document fetches

        Returns:
            Mapping of mint (base58) to record or None
        """
        results: Dict[str, Optional[TokenMetadataRecord]] = {}
        pending: List[Pubkey] = []

        for mint in mints:
            key = str(mint)
            if key in results:
                continue
            entry = self._cached(key)
            if entry is not None:
                metrics.increment_counter("metadata_cache_hits")
                results[key] = entry.record
            else:
                metrics.increment_counter("metadata_cache_misses")
                results[key] = None
                pending.append(mint)

        if not pending:
            return results

        with LatencyTimer(metrics, "metadata_resolve_batch"):
            decoded = await self._fetch_records(pending)
            resolved = await self._attach_images(decoded)

        for mint in pending:
            key = str(mint)
            record = resolved.get(key)
            self._store(key, record)
            results[key] = record

        logger.info(
            "metadata_resolved",
            requested=len(results),
            fetched=len(pending),
            found=sum(1 for m in pending if resolved.get(str(m)) is not None)
        )
        return results

    async def _fetch_records(self, mints: List[Pubkey]) -> Dict[str, TokenMetadataRecord]:
        addresses = []
        for mint in mints:
            try:
                addresses.append((mint, self.deriver.metadata(mint)))
            except DerivationError as e:
                logger.warning("metadata_derivation_failed", mint=str(mint), error=str(e))

        records: Dict[str, TokenMetadataRecord] = {}
        batch_size = max(1, self.config.batch_size)

        for start in range(0, len(addresses), batch_size):
            chunk = addresses[start:start + batch_size]
            infos = await self.rpc_manager.get_multiple_accounts([address for _, address in chunk])
            for (mint, _), info in zip(chunk, infos):
                record = self._decode(mint, info)
                if record is not None:
                    records[str(mint)] = record

        return records

    def _decode(self, mint: Pubkey, info: Optional[AccountInfo]) -> Optional[TokenMetadataRecord]:
        if info is None:
            logger.debug("metadata_account_missing", mint=str(mint))
            return None

        account = decode_metadata(info.data)
        if account is None:
            return None

        return TokenMetadataRecord(
            mint=str(mint),
            name=account.name,
            symbol=account.symbol,
            uri=account.uri
        )

    async def _attach_images(self, records: Dict[str, TokenMetadataRecord]) -> Dict[str, TokenMetadataRecord]:
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))

        async def with_image(record: TokenMetadataRecord) -> TokenMetadataRecord:
            if not record.uri:
                return record
            async with semaphore:
                image = await self.fetch_image(record.uri)
            return TokenMetadataRecord(
                mint=record.mint,
                name=record.name,
                symbol=record.symbol,
                uri=record.uri,
                image_uri=image
            )

        enriched = await asyncio.gather(*(with_image(r) for r in records.values()))
        return {record.mint: record for record in enriched}

    async def fetch_image(self, uri: str) -> Optional[str]:
        """
        Fetch the off-chain document and return its "image" field

        Any transport error, timeout, non-200 status or non-JSON body yields None.
        """
        if self._http_session is None:
            await self.start()

        timeout = aiohttp.ClientTimeout(total=self.config.document_timeout_s)
        try:
            async with self._http_session.get(uri, timeout=timeout) as response:
                if response.status != 200:
                    logger.debug("metadata_document_status", uri=uri, status=response.status)
                    metrics.increment_counter("metadata_document_failures")
                    return None
                document = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug("metadata_document_failed", uri=uri, error=f"{type(e).__name__}: {e}")
            metrics.increment_counter("metadata_document_failures")
            return None

        image = document.get("image") if isinstance(document, dict) else None
        return image if isinstance(image, str) and image else None
