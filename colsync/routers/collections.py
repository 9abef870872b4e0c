"""File collection API: load/save/watch directories and stream change events."""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from colsync.models import CollectionTree, OperationResult

logger = logging.getLogger("colsync.api")

collections_router = APIRouter(prefix="/api/collections", tags=["collections"])


class DirectoryRequest(BaseModel):
    directoryPath: str = Field(..., min_length=1)


class PathRequest(BaseModel):
    path: str = Field(..., min_length=1)


class SaveCollectionRequest(BaseModel):
    collection: CollectionTree
    directoryPath: str = Field(..., min_length=1)


class SyncCollectionRequest(BaseModel):
    collection: CollectionTree


def _get_collection_sync(request: Request):
    collection_sync = getattr(request.app.state, "collection_sync", None)
    if not collection_sync:
        raise HTTPException(status_code=503, detail="Collection sync not initialized")
    return collection_sync


def _raise_for_failure(result: OperationResult) -> None:
    if result.success:
        return
    detail = result.error or "Operation failed"
    status_code = 403 if detail.startswith("Access denied") else 400
    raise HTTPException(status_code=status_code, detail=detail)


@collections_router.post("/load")
async def load_collection(request: Request, body: DirectoryRequest):
    """Read a collection tree from a directory without registering it."""
    collection_sync = _get_collection_sync(request)
    result = await collection_sync.load_collection_from_directory(body.directoryPath)
    _raise_for_failure(result)
    return result.model_dump(mode="json", by_alias=True)


@collections_router.post("/save")
async def save_collection(request: Request, body: SaveCollectionRequest):
    collection_sync = _get_collection_sync(request)
    result = await collection_sync.save_collection_to_directory(body.collection, body.directoryPath)
    _raise_for_failure(result)
    return {"status": "ok"}


@collections_router.post("/watch")
async def watch_directory(request: Request, body: DirectoryRequest):
    collection_sync = _get_collection_sync(request)
    result = await collection_sync.watch_collection_directory(body.directoryPath)
    _raise_for_failure(result)
    return {"status": "ok", "directoryPath": body.directoryPath}


@collections_router.post("/unwatch")
async def unwatch_directory(request: Request, body: DirectoryRequest):
    collection_sync = _get_collection_sync(request)
    await collection_sync.unwatch_collection_directory(body.directoryPath)
    return {"status": "ok", "directoryPath": body.directoryPath}


@collections_router.get("/file-info")
async def get_file_info(request: Request, path: str = Query(..., min_length=1)):
    collection_sync = _get_collection_sync(request)
    info = await collection_sync.get_file_info(path)
    return info.model_dump()


@collections_router.post("/open-in-explorer")
async def open_in_explorer(request: Request, body: PathRequest):
    collection_sync = _get_collection_sync(request)
    result = await collection_sync.open_in_file_manager(body.path)
    _raise_for_failure(result)
    return {"status": "ok"}


@collections_router.post("/open")
async def open_file_collection(request: Request, body: DirectoryRequest):
    """Load a directory, register it as a file collection and start watching it."""
    collection_sync = _get_collection_sync(request)
    result = await collection_sync.open_collection(body.directoryPath)
    _raise_for_failure(result)
    payload = result.model_dump(mode="json", by_alias=True)
    payload["fileCollection"] = _registry_entry(collection_sync, result.collection.id)
    return payload


@collections_router.post("/export")
async def export_file_collection(request: Request, body: SaveCollectionRequest):
    """Write an in-memory collection to a directory and keep it in sync from then on."""
    collection_sync = _get_collection_sync(request)
    result = await collection_sync.export_collection(body.collection, body.directoryPath)
    _raise_for_failure(result)
    return {"status": "ok", "fileCollection": _registry_entry(collection_sync, body.collection.id)}


@collections_router.post("/{collection_id}/sync")
async def sync_file_collection(request: Request, collection_id: str, body: SyncCollectionRequest):
    collection_sync = _get_collection_sync(request)
    if body.collection.id != collection_id:
        raise HTTPException(status_code=400, detail="Collection id does not match the request path")
    if not collection_sync.registry.is_file_collection(collection_id):
        raise HTTPException(status_code=404, detail=f"File collection {collection_id} not found")
    result = await collection_sync.sync_collection(body.collection)
    _raise_for_failure(result)
    return {"status": "ok", "fileCollection": _registry_entry(collection_sync, collection_id)}


@collections_router.get("/registered")
async def list_registered(request: Request):
    collection_sync = _get_collection_sync(request)
    registry = collection_sync.registry
    return {
        "defaultDirectory": registry.default_directory,
        "fileCollections": [info.model_dump() for info in registry.list_collections()],
    }


@collections_router.get("/conflicts")
async def list_conflicts(request: Request, collectionId: Optional[str] = Query(None)):
    collection_sync = _get_collection_sync(request)
    conflicts = collection_sync.registry.list_conflicts(collectionId)
    return {"count": len(conflicts), "items": [c.model_dump() for c in conflicts]}


@collections_router.delete("/conflicts/{collection_id}")
async def clear_conflicts(request: Request, collection_id: str):
    """Dismiss open conflicts; the collection goes back to ``modified`` until the next sync."""
    collection_sync = _get_collection_sync(request)
    registry = collection_sync.registry
    if not registry.is_file_collection(collection_id):
        raise HTTPException(status_code=404, detail=f"File collection {collection_id} not found")
    registry.clear_conflicts(collection_id)
    registry.update_sync_state(collection_id, "modified")
    return {"status": "ok"}


@collections_router.websocket("/events")
async def stream_events(websocket: WebSocket):
    """Push every FileChangeEvent to the connected client as JSON."""
    broadcaster = getattr(websocket.app.state, "collection_events", None)
    await websocket.accept()
    if broadcaster is None:
        await websocket.close(code=1011)
        return

    queue = broadcaster.subscribe()
    try:
        while True:
            event = await queue.get()
            await websocket.send_json(event.model_dump())
    except WebSocketDisconnect:
        logger.debug("Collection event subscriber disconnected")
    finally:
        broadcaster.unsubscribe(queue)


def _registry_entry(collection_sync: Any, collection_id: str) -> Optional[dict[str, Any]]:
    info = collection_sync.registry.get(collection_id)
    return info.model_dump() if info else None
