# scheduler.py
# Full and partial refresh cycles of the delegators cache

import asyncio
import time
from typing import Dict, FrozenSet, List, Optional, Tuple

from .aggregator import merge_validator, rebuild
from .cache import CacheStore
from .discovery import get_all_validators
from .fetcher import DelegatorFetcher
from .interfaces.rpc import NearRpcClient, RpcError, RpcTransientError
from .interfaces.storage import SnapshotFile
from .logging_utils import get_logger
from .metrics import (
    c_persistence_failures,
    c_refresh_cycles,
    g_pending_validators,
    observe_snapshot,
)
from .models import CacheSnapshot, UpdateTrigger
from .retry import RetryError, RetryPolicy, retry


logger = get_logger(__name__)

FETCH_ERRORS = (RpcError, RetryError)


def watermark_rank(watermark: Optional[int]) -> int:
    # "latest" requests rank below any concrete block height
    return -1 if watermark is None else watermark


class RefreshScheduler:
    """
    Owns the pending partial-refresh queue and runs both refresh loops.

    A validator moves Idle -> Pending -> InFlight -> Idle. A request is
    dropped when the validator already has pending or in-flight work at an
    equal or higher watermark.
    """

    def __init__(
        self,
        store: CacheStore,
        fetcher: DelegatorFetcher,
        rpc: NearRpcClient,
        storage: SnapshotFile,
        refresh_interval: float = 60,
        batch_size: int = 5,
        poll_interval: float = 1.0,
        validator_concurrency: int = 10,
        retry_policy: RetryPolicy | None = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.rpc = rpc
        self.storage = storage
        self.refresh_interval = refresh_interval
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.validator_concurrency = validator_concurrency
        self.retry_policy = retry_policy or RetryPolicy()
        self._pending: Dict[str, Optional[int]] = {}
        self._in_flight: Dict[str, Optional[int]] = {}
        self._wakeup = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def pending(self) -> Dict[str, Optional[int]]:
        return dict(self._pending)

    @property
    def in_flight(self) -> Dict[str, Optional[int]]:
        return dict(self._in_flight)

    def request_refresh(self, validator: str, watermark: Optional[int] = None) -> bool:
        """Schedule a partial refresh. Returns False when the request adds nothing new."""
        rank = watermark_rank(watermark)
        for queue in (self._pending, self._in_flight):
            if validator in queue and watermark_rank(queue[validator]) >= rank:
                logger.debug(
                    f"Dropping refresh of {validator} at {watermark}: already scheduled at {queue[validator]}"
                )
                return False
        self._pending[validator] = watermark
        g_pending_validators.set(len(self._pending))
        self._wakeup.set()
        return True

    def take_batch(self) -> List[Tuple[str, Optional[int]]]:
        """Move up to `batch_size` pending validators to in-flight."""
        batch = []
        for validator in list(self._pending)[: self.batch_size]:
            watermark = self._pending.pop(validator)
            self._in_flight[validator] = watermark
            batch.append((validator, watermark))
        g_pending_validators.set(len(self._pending))
        return batch

    async def handle_trigger(self, trigger: UpdateTrigger) -> Tuple[str, bool]:
        """
        Resolve a webhook trigger to (validator, scheduled).

        Without a block hash the watermark is the latest final block height,
        which is never earlier than the event that caused the trigger.
        """
        validator = await retry(
            self.retry_policy,
            lambda: self.rpc.receipt_receiver(trigger.receipt_id),
            retry_on=(RpcTransientError,),
            description=f"receiver_id for receipt_id {trigger.receipt_id}",
        )
        watermark = await retry(
            self.retry_policy,
            lambda: self.rpc.block_height(trigger.block_hash),
            retry_on=(RpcTransientError,),
            description=f"block_id for block_hash {trigger.block_hash}",
        )
        scheduled = self.request_refresh(validator, watermark)
        logger.info(
            f"Refresh of {validator} at block {watermark} {'scheduled' if scheduled else 'dropped'}"
        )
        return validator, scheduled

    async def refresh_validator(self, validator: str, watermark: Optional[int]) -> bool:
        """Fetch one validator and merge it. Returns True when the cache changed."""
        try:
            if watermark is None:
                watermark = await retry(
                    self.retry_policy,
                    self.rpc.block_height,
                    retry_on=(RpcTransientError,),
                    description="final block height",
                )
            logger.info(f"Updating delegators for validator: {validator}")
            delegators = await self.fetcher.fetch(validator, watermark)
        except FETCH_ERRORS as e:
            logger.error(f"Error updating delegators of {validator}: {e}")
            c_refresh_cycles.labels(kind="partial", outcome="failed").inc()
            return False

        now = int(time.time())
        committed = False

        def _apply(snapshot: CacheSnapshot) -> Optional[CacheSnapshot]:
            nonlocal committed
            committed_height = snapshot.heights.get(validator)
            if committed_height is not None and committed_height > watermark:
                logger.info(
                    f"Skipping delegators of {validator} at {watermark}: block {committed_height} already committed"
                )
                return None
            committed = True
            return merge_validator(snapshot, validator, delegators, now, watermark)

        snapshot = await self.store.mutate(_apply)
        outcome = "committed" if committed else "superseded"
        c_refresh_cycles.labels(kind="partial", outcome=outcome).inc()
        if committed:
            observe_snapshot(snapshot)
            logger.info(f"Updated delegators for validator: {validator}")
        return committed

    async def process_batch(self) -> int:
        """Refresh one batch of pending validators and persist once for all of them."""
        batch = self.take_batch()
        if not batch:
            return 0
        try:
            results = await asyncio.gather(
                *[self.refresh_validator(validator, watermark) for validator, watermark in batch]
            )
        finally:
            for validator, _ in batch:
                self._in_flight.pop(validator, None)
        if any(results):
            await self.persist()
        return len(batch)

    async def _fetch_all(
        self, validators: set, block_height: int
    ) -> Dict[str, Optional[FrozenSet[str]]]:
        semaphore = asyncio.Semaphore(self.validator_concurrency)

        async def _one(validator: str):
            async with semaphore:
                try:
                    return validator, await self.fetcher.fetch(validator, block_height)
                except FETCH_ERRORS as e:
                    logger.error(f"Error fetching delegators of {validator}: {e}")
                    return validator, None

        return dict(await asyncio.gather(*[_one(v) for v in validators]))

    async def full_refresh(self, force: bool = False) -> bool:
        """
        Rebuild the cache from every discovered validator.

        Runs only when the cache is older than its TTL unless `force` is set.
        Validators whose fetch fails keep their cached delegators. A result
        identical to the cache while it is still fresh changes nothing.
        Returns True when a new snapshot was committed.
        """
        if not force and not self.store.is_stale():
            return False

        logger.info("Updating all delegators")
        try:
            block_height = await retry(
                self.retry_policy,
                self.rpc.block_height,
                retry_on=(RpcTransientError,),
                description="final block height",
            )
            validators = await get_all_validators(self.rpc)
        except FETCH_ERRORS as e:
            logger.error(f"Failed to get all validators: {e}")
            c_refresh_cycles.labels(kind="full", outcome="aborted").inc()
            return False
        if not validators:
            logger.error("Validator discovery returned no accounts")
            c_refresh_cycles.labels(kind="full", outcome="aborted").inc()
            return False

        results = await self._fetch_all(validators, block_height)
        if all(delegators is None for delegators in results.values()):
            logger.error("Failed to fetch delegators of every validator")
            c_refresh_cycles.labels(kind="full", outcome="failed").inc()
            return False

        now = int(time.time())
        committed = False

        def _apply(snapshot: CacheSnapshot) -> Optional[CacheSnapshot]:
            nonlocal committed
            forward = {}
            heights = {}
            for validator, delegators in results.items():
                committed_height = snapshot.heights.get(validator)
                newer = committed_height is not None and committed_height > block_height
                if delegators is None or newer:
                    if validator in snapshot.forward:
                        forward[validator] = snapshot.forward[validator]
                    if committed_height is not None:
                        heights[validator] = committed_height
                    continue
                if delegators:
                    forward[validator] = delegators
                heights[validator] = block_height

            if now - snapshot.timestamp < self.store.cache_ttl and forward == snapshot.forward:
                return None
            committed = True
            return rebuild(forward, now, heights)

        snapshot = await self.store.mutate(_apply)
        if not committed:
            logger.info("Delegators in file are up-to-date")
            c_refresh_cycles.labels(kind="full", outcome="unchanged").inc()
            return False

        c_refresh_cycles.labels(kind="full", outcome="committed").inc()
        observe_snapshot(snapshot)
        logger.info(
            f"Updated delegators of {len(snapshot.forward)} validators ({len(snapshot.inverse)} delegators)"
        )
        await self.persist()
        return True

    async def persist(self) -> bool:
        try:
            await self.storage.save(self.store.read())
        except OSError as e:
            logger.error(f"Error saving delegators state: {e}")
            c_persistence_failures.inc()
            return False
        return True

    async def refresh_loop(self) -> None:
        while True:
            try:
                await self.full_refresh()
            except Exception as e:
                logger.error(f"Error in full refresh: {e}", exc_info=True)
            await asyncio.sleep(self.refresh_interval)

    async def worker_loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()
            while self._pending:
                try:
                    await self.process_batch()
                except Exception as e:
                    logger.error(f"Error processing refresh batch: {e}", exc_info=True)

    def start(self) -> None:
        self._tasks = [
            asyncio.create_task(self.refresh_loop()),
            asyncio.create_task(self.worker_loop()),
        ]
        logger.info("Refresh tasks started")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Refresh tasks stopped")
