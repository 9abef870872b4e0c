"""colsync FastAPI backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from colsync import config
from colsync.collection_registry import FileCollectionRegistry
from colsync.observability import initialize as initialize_observability, shutdown as shutdown_observability
from colsync.routers.collections import collections_router
from colsync.sync.engine import CollectionSync
from colsync.sync.notifications import EventBroadcaster

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("colsync")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("colsync backend starting up")
    initialize_observability(app)

    # 1. Registry of file collections (persisted)
    registry = FileCollectionRegistry(config.REGISTRY_PATH)

    # 2. Event fan-out for WebSocket subscribers
    events = EventBroadcaster()
    app.state.collection_events = events

    # 3. Sync facade
    app.state.collection_sync = CollectionSync(notify=events, registry=registry)

    yield

    logger.info("colsync backend shutting down")
    await app.state.collection_sync.teardown()
    shutdown_observability(app)


app = FastAPI(
    title="colsync API",
    description="Keeps API collections in sync with YAML files on disk",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the Vite dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(collections_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    collection_sync = getattr(app.state, "collection_sync", None)
    watched = collection_sync.watcher.watched_directories if collection_sync else []
    return {
        "status": "ok",
        "watcher": "running" if watched else "stopped",
        "watchedDirectories": watched,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("colsync.main:app", host=config.HOST, port=config.PORT)
