from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version

from anyio import to_thread
import uvicorn
from fastapi import FastAPI

from wgdash.api.peer_metrics import register_peer_metrics
from wgdash.api.routers import health, metrics, peers
from wgdash.cli.migrate_db import migrate_db
from wgdash.core.service import build_peer_service
from wgdash.core.store import PeerRecordStore
from wgdash.db import get_sessionmaker
from wgdash.observability import configure_logging, install_http_observability
from wgdash.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Migrations are sync (Alembic). Run them before serving any traffic.
    await to_thread.run_sync(migrate_db)

    store = PeerRecordStore(get_sessionmaker())
    # Nothing can be served without peer records: an unreachable store aborts startup.
    await to_thread.run_sync(store.ping)

    service = build_peer_service(settings, store)
    app.state.peer_service = service
    if settings.metrics_enabled:
        register_peer_metrics(service)
    try:
        yield
    finally:
        app.state.peer_service = None
        await to_thread.run_sync(service.close)


settings = get_settings()
configure_logging(settings.log_level)


def _app_version() -> str:
    try:
        return pkg_version("wgdash")
    except PackageNotFoundError:
        return "dev"


app = FastAPI(title="wgdash", version=_app_version(), lifespan=lifespan)
install_http_observability(app, component="api")

app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(peers.router)


def run() -> None:
    if not settings.api_internal_token:
        raise RuntimeError("API_INTERNAL_TOKEN is required")
    uvicorn.run(
        "wgdash.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
