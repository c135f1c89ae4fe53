from contextlib import asynccontextmanager
from typing import Annotated

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import HTMLResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from . import __version__
from .cache import CacheStore
from .config import Settings, load_config
from .dependencies import AppState, build_app_state, get_cache_store, get_scheduler
from .interfaces.rpc import RpcError
from .logging_utils import get_logger, set_log_level
from .metrics import observe_snapshot
from .models import (
    DelegatorsWithTimestamp,
    DelegatorWithTimestamp,
    UpdateResponse,
    UpdateTrigger,
    ValidatorWithTimestamp,
    WebhookData,
    is_valid_account_id,
)
from .retry import RetryError
from .scheduler import RefreshScheduler


logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    state: AppState | None = None,
    run_background: bool = True,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Waiting for application startup.")
        services = getattr(app.state, "services", None)
        if services is None:
            services = await build_app_state(settings or load_config())
            app.state.services = services
        observe_snapshot(services.store.read())
        if run_background:
            services.scheduler.start()
        logger.info("Application startup complete.")
        yield
        if run_background:
            await services.scheduler.stop()
        await services.rpc.close()
        logger.info("Application shutdown complete.")

    app = FastAPI(title="NEAR Staking Pools", version=__version__, lifespan=lifespan)
    if state is not None:
        app.state.services = state

    @app.get("/", response_class=HTMLResponse)
    async def read_root():
        return """
        <html>
            <head>
                <title>NEAR Staking Pools API</title>
            </head>
            <body>
                <h1>NEAR Staking Pools API</h1>
                <p>Delegator to staking pool mapping. Navigate to /docs for API documentation.</p>
                <p>Check metrics at /metrics</p>
            </body>
        </html>
        """

    @app.get("/get-staking-pools")
    async def get_all(
        store: Annotated[CacheStore, Depends(get_cache_store)],
    ) -> DelegatorsWithTimestamp:
        logger.info("GET request received")
        return store.read().to_document()

    @app.get("/get-staking-pools/{account_id}")
    async def get_by_account_id(
        account_id: str,
        store: Annotated[CacheStore, Depends(get_cache_store)],
    ) -> DelegatorWithTimestamp:
        logger.info("GET by account id request received")
        snapshot = _snapshot_for(store, account_id)
        pools = store.delegator_pools(account_id)
        if pools is None:
            raise HTTPException(status_code=404, detail="Account has no staking pools")
        return DelegatorWithTimestamp(
            timestamp=snapshot.timestamp, delegator_staking_pools=sorted(pools)
        )

    @app.get("/get-delegators/{account_id}")
    async def get_delegators(
        account_id: str,
        store: Annotated[CacheStore, Depends(get_cache_store)],
    ) -> ValidatorWithTimestamp:
        snapshot = _snapshot_for(store, account_id)
        delegators = store.validator_delegators(account_id)
        if delegators is None:
            raise HTTPException(status_code=404, detail="Staking pool has no delegators")
        return ValidatorWithTimestamp(
            timestamp=snapshot.timestamp, validator_delegators=sorted(delegators)
        )

    @app.post("/update-staking-pools")
    async def update(
        data: WebhookData,
        scheduler: Annotated[RefreshScheduler, Depends(get_scheduler)],
    ) -> UpdateResponse:
        logger.info("POST request received")
        try:
            validator, scheduled = await scheduler.handle_trigger(
                UpdateTrigger.from_webhook(data)
            )
        except (RpcError, RetryError) as e:
            logger.error(f"Failed to resolve update trigger: {e}")
            raise HTTPException(status_code=502, detail="Failed to resolve receipt")
        return UpdateResponse(validator=validator, scheduled=scheduled)

    @app.get("/metrics")
    async def get_metrics_endpoint():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def _snapshot_for(store: CacheStore, account_id: str):
    if not is_valid_account_id(account_id):
        raise HTTPException(status_code=400, detail="Invalid account id")
    snapshot = store.read()
    if snapshot.timestamp == 0:
        raise HTTPException(status_code=503, detail="Cache is not populated yet")
    return snapshot


app = create_app()


def main():
    settings = load_config()
    set_log_level(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
