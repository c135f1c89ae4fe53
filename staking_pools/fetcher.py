# fetcher.py
# Retrieves the delegator accounts of a single staking pool, page by page

import asyncio
from typing import Any, FrozenSet, Iterable

from .constants import ACCOUNTS_METHOD, LIMIT, MAX_IN_FLIGHT_PAGES, NUMBER_OF_ACCOUNTS_METHOD
from .interfaces.rpc import ContractAbsentError, NearRpcClient, RpcParseError, RpcTransientError
from .logging_utils import get_logger
from .retry import RetryPolicy, retry


logger = get_logger(__name__)

# RpcParseError is not retried
RETRYABLE_ERRORS = (RpcTransientError,)


def parse_account_ids(page: Any) -> FrozenSet[str]:
    """get_accounts returns [{"account_id": ..., "staked_balance": ..., ...}, ...]."""
    if not isinstance(page, list):
        raise RpcParseError(f"Failed to parse delegators: {page!r}")
    try:
        return frozenset(str(item["account_id"]) for item in page)
    except (KeyError, TypeError) as e:
        raise RpcParseError(f"Failed to parse delegators: {e}") from e


def page_offsets(count: int, limit: int = LIMIT) -> Iterable[int]:
    return range(0, count, limit)


class DelegatorFetcher:
    def __init__(
        self,
        rpc: NearRpcClient,
        retry_policy: RetryPolicy | None = None,
        page_size: int = LIMIT,
        max_in_flight: int = MAX_IN_FLIGHT_PAGES,
    ):
        self.rpc = rpc
        self.retry_policy = retry_policy or RetryPolicy()
        self.page_size = page_size
        self.max_in_flight = max_in_flight

    async def get_number_of_delegators(
        self, validator_id: str, block_height: int | None = None
    ) -> int:
        async def _count():
            try:
                return await self.rpc.view_call(
                    validator_id, NUMBER_OF_ACCOUNTS_METHOD, None, block_height
                )
            except ContractAbsentError:
                return 0

        count = await retry(
            self.retry_policy,
            _count,
            retry_on=RETRYABLE_ERRORS,
            description=f"{NUMBER_OF_ACCOUNTS_METHOD} for {validator_id}",
        )
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise RpcParseError(f"Failed to parse number of delegators: {count!r}")
        return count

    async def _fetch_page(
        self,
        validator_id: str,
        from_index: int,
        block_height: int | None,
        semaphore: asyncio.Semaphore,
    ) -> FrozenSet[str]:
        async def _page():
            try:
                page = await self.rpc.view_call(
                    validator_id,
                    ACCOUNTS_METHOD,
                    {"from_index": from_index, "limit": self.page_size},
                    block_height,
                )
            except ContractAbsentError:
                return frozenset()
            return parse_account_ids(page)

        async with semaphore:
            return await retry(
                self.retry_policy,
                _page,
                retry_on=RETRYABLE_ERRORS,
                description=f"{ACCOUNTS_METHOD}({from_index}) for {validator_id}",
            )

    async def fetch(
        self, validator_id: str, block_height: int | None = None
    ) -> FrozenSet[str]:
        """
        All delegators of `validator_id` at `block_height` (latest final block when None).

        An account without staking pool code has no delegators. Accounts may
        shift between pages while they are read; the set union absorbs that.
        """
        count = await self.get_number_of_delegators(validator_id, block_height)
        if count == 0:
            return frozenset()

        semaphore = asyncio.Semaphore(self.max_in_flight)
        tasks = [
            asyncio.create_task(
                self._fetch_page(validator_id, from_index, block_height, semaphore)
            )
            for from_index in page_offsets(count, self.page_size)
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            # The first failed page cancels every page still queued or running
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        failed = [task for task in done if task.exception() is not None]
        if failed:
            raise failed[0].exception()

        pages = [task.result() for task in tasks]
        delegators = frozenset().union(*pages)
        logger.debug(
            f"Fetched {len(delegators)} delegators of {validator_id} from {len(pages)} pages"
        )
        return delegators
