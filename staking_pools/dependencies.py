from typing import Annotated

from fastapi import Depends, Request

from .cache import CacheStore
from .config import Settings
from .fetcher import DelegatorFetcher
from .interfaces.rpc import NearRpcClient
from .interfaces.storage import SnapshotFile
from .scheduler import RefreshScheduler


class AppState:
    """Everything the process shares; built once by the application lifespan."""

    def __init__(
        self,
        settings: Settings,
        rpc: NearRpcClient,
        store: CacheStore,
        storage: SnapshotFile,
        scheduler: RefreshScheduler,
    ):
        self.settings = settings
        self.rpc = rpc
        self.store = store
        self.storage = storage
        self.scheduler = scheduler


async def build_app_state(settings: Settings) -> AppState:
    rpc = NearRpcClient(settings.rpc_url, timeout=settings.rpc_timeout)
    storage = SnapshotFile(settings.resolved_cache_path)
    store = CacheStore(
        await storage.load(), cache_ttl=settings.cache_ttl.total_seconds()
    )
    fetcher = DelegatorFetcher(
        rpc,
        retry_policy=settings.retry_policy,
        page_size=settings.page_size,
        max_in_flight=settings.page_concurrency,
    )
    scheduler = RefreshScheduler(
        store,
        fetcher,
        rpc,
        storage,
        refresh_interval=settings.refresh_interval.total_seconds(),
        batch_size=settings.batch_size,
        poll_interval=settings.worker_poll_interval.total_seconds(),
        validator_concurrency=settings.validator_concurrency,
        retry_policy=settings.retry_policy,
    )
    return AppState(settings, rpc, store, storage, scheduler)


def get_app_state(request: Request) -> AppState:
    return request.app.state.services


def get_cache_store(
    state: Annotated[AppState, Depends(get_app_state)],
) -> CacheStore:
    return state.store


def get_scheduler(
    state: Annotated[AppState, Depends(get_app_state)],
) -> RefreshScheduler:
    return state.scheduler
