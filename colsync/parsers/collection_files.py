"""Load and save collection trees as directories of YAML files.

Layout of a collection directory::

    my-api/
      _collection.yaml          name, description, auth, variables
      get-users.http.yaml       one file per HTTP request
      users/
        _folder.yaml            optional: name, description
        create-user.http.yaml
        stream.grpc.yaml        one file per gRPC request

Identifiers are never written to disk. Every load assigns fresh ones to the
collection, folders, items, requests and every key/value entry.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ValidationError

from colsync.errors import (
    CollectionSyncError,
    FilesystemError,
    PartialLoadWarning,
    PathSafetyError,
    SchemaValidationError,
)
from colsync.models import (
    CollectionMetaFile,
    CollectionTree,
    Folder,
    FolderMetaFile,
    GrpcRequest,
    HttpRequest,
    KeyValue,
    RequestItem,
)
from colsync.parsers.yaml_io import load_yaml_mapping, save_yaml_file
from colsync.sync.mod_tracker import ModificationTracker

logger = logging.getLogger("colsync.serializer")

PathLike = Union[str, Path]
PathPredicate = Callable[[PathLike], bool]

COLLECTION_META = "_collection.yaml"
FOLDER_META = "_folder.yaml"
HTTP_REQUEST_SUFFIX = ".http.yaml"
GRPC_REQUEST_SUFFIX = ".grpc.yaml"

_REQUEST_SUFFIXES = {
    "http": HTTP_REQUEST_SUFFIX,
    "grpc": GRPC_REQUEST_SUFFIX,
}
_REQUEST_MODELS: dict[str, type[BaseModel]] = {
    "http": HttpRequest,
    "grpc": GrpcRequest,
}
_KEY_VALUE_FIELDS = ("headers", "params", "metadata")
_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")


def sanitize_filename(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to ``-``, trim leading/trailing ``-``.

    One-way: "Get Users!" and "get-users" both become ``get-users``.
    """
    return _NON_ALNUM_RUN.sub("-", (name or "").lower()).strip("-")


def request_type_from_filename(filename: str) -> Optional[str]:
    for request_type, suffix in _REQUEST_SUFFIXES.items():
        if filename.endswith(suffix) and len(filename) > len(suffix):
            return request_type
    return None


def _allow_all(_path: PathLike) -> bool:
    return True


def _validate(model: type[BaseModel], data: dict[str, Any], path: Path, role: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise SchemaValidationError(path, role, problems) from exc


def _without_ids(value: Any, in_list: bool = False) -> Any:
    """Drop ``id`` keys from mappings that are list entries (key/value rows, form parts)."""
    if isinstance(value, list):
        return [_without_ids(entry, in_list=True) for entry in value]
    if isinstance(value, dict):
        return {
            key: _without_ids(entry)
            for key, entry in value.items()
            if not (in_list and key == "id")
        }
    return value


def _file_key_value(entry: dict[str, Any]) -> dict[str, Any]:
    row = {
        "key": entry.get("key", ""),
        "value": entry.get("value", ""),
        "enabled": entry.get("enabled", True),
    }
    if entry.get("description"):
        row["description"] = entry["description"]
    return row


# ── Load ────────────────────────────────────────────────────────────

@dataclass
class _LoadContext:
    is_path_safe: PathPredicate
    tracker: Optional[ModificationTracker]
    warnings: list[PartialLoadWarning] = field(default_factory=list)

    def record(self, path: Path) -> None:
        if self.tracker is not None:
            self.tracker.record_current(path)

    def skip(self, path: Path, reason: str) -> None:
        warning = PartialLoadWarning(path, reason)
        logger.warning(str(warning))
        self.warnings.append(warning)


def load_collection(
    directory_path: PathLike,
    tracker: Optional[ModificationTracker] = None,
    *,
    is_path_safe: Optional[PathPredicate] = None,
    warnings: Optional[list[PartialLoadWarning]] = None,
) -> CollectionTree:
    """Read a collection directory into a CollectionTree.

    Raises PathSafetyError, FilesystemError or SchemaValidationError when the
    directory or its ``_collection.yaml`` cannot be used. Problems with
    individual folders or request files do not fail the load: they are logged,
    appended to ``warnings`` when given, and the offending file is skipped.
    """
    ctx = _LoadContext(is_path_safe=is_path_safe or _allow_all, tracker=tracker)
    directory = Path(directory_path)

    if not ctx.is_path_safe(directory):
        raise PathSafetyError(directory)
    if not directory.is_dir():
        raise FilesystemError(f"Directory does not exist: {directory}")

    meta_path = directory / COLLECTION_META
    if not meta_path.is_file():
        raise FilesystemError(f"No {COLLECTION_META} found in {directory}")

    role = "collection metadata"
    meta = _validate(CollectionMetaFile, load_yaml_mapping(meta_path, role), meta_path, role)
    ctx.record(meta_path)

    items = _load_items(directory, ctx, fatal=True)

    if warnings is not None:
        warnings.extend(ctx.warnings)

    return CollectionTree(
        name=meta.name,
        description=meta.description,
        auth=meta.auth,
        variables=[KeyValue(**entry.model_dump(exclude_none=True)) for entry in meta.variables or []],
        items=items,
        sourcePath=str(directory),
    )


def _load_items(directory: Path, ctx: _LoadContext, fatal: bool = False) -> list:
    try:
        # Enumeration order is whatever the OS yields; it is not sorted.
        with os.scandir(directory) as it:
            entries = list(it)
    except OSError as exc:
        if fatal:
            raise FilesystemError(f"Could not list {directory}: {exc}") from exc
        ctx.skip(directory, f"could not list directory ({exc})")
        return []

    items: list = []
    for entry in entries:
        if entry.name.startswith("."):
            continue
        entry_path = Path(entry.path)
        if not ctx.is_path_safe(entry_path):
            ctx.skip(entry_path, "rejected by path safety check")
            continue

        try:
            is_dir = entry.is_dir()
            is_file = not is_dir and entry.is_file()
        except OSError as exc:
            ctx.skip(entry_path, f"could not stat ({exc})")
            continue

        if is_dir:
            items.append(_load_folder(entry_path, ctx))
            continue
        if not is_file:
            continue

        request_type = request_type_from_filename(entry.name)
        if request_type is None:
            continue
        try:
            items.append(_load_request_item(entry_path, request_type, ctx))
        except (CollectionSyncError, OSError) as exc:
            ctx.skip(entry_path, str(exc))

    return items


def _load_folder(folder_path: Path, ctx: _LoadContext) -> Folder:
    name = folder_path.name
    description = None

    meta_path = folder_path / FOLDER_META
    role = "folder metadata"
    try:
        if meta_path.is_file():
            meta = _validate(FolderMetaFile, load_yaml_mapping(meta_path, role), meta_path, role)
            name = meta.name
            description = meta.description
            ctx.record(meta_path)
    except (CollectionSyncError, OSError) as exc:
        logger.warning(f"Using directory name for folder {folder_path}: {exc}")

    return Folder(
        name=name,
        description=description,
        items=_load_items(folder_path, ctx),
        sourcePath=str(folder_path),
    )


def _load_request_item(path: Path, request_type: str, ctx: _LoadContext) -> RequestItem:
    role = f"{request_type} request"
    data = _without_ids(load_yaml_mapping(path, role))
    data.pop("id", None)
    data["type"] = request_type

    request = _validate(_REQUEST_MODELS[request_type], data, path, role)
    ctx.record(path)

    if not request.name:
        request.name = path.name[: -len(_REQUEST_SUFFIXES[request_type])]
    return RequestItem(name=request.name, request=request, sourcePath=str(path))


# ── Save ────────────────────────────────────────────────────────────

@dataclass
class _SaveContext:
    is_path_safe: PathPredicate
    tracker: Optional[ModificationTracker]
    written: list[Path] = field(default_factory=list)

    def write(self, path: Path, data: dict[str, Any]) -> None:
        if not self.is_path_safe(path):
            raise PathSafetyError(path)
        save_yaml_file(path, data)
        self.written.append(path)
        if self.tracker is not None:
            self.tracker.record_current(path)

    def ensure_dir(self, path: Path) -> None:
        if not self.is_path_safe(path):
            raise PathSafetyError(path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Could not create directory {path}: {exc}") from exc


def save_collection(
    tree: CollectionTree,
    directory_path: PathLike,
    tracker: Optional[ModificationTracker] = None,
    *,
    is_path_safe: Optional[PathPredicate] = None,
) -> list[Path]:
    """Write ``tree`` into ``directory_path`` and return the files written.

    When ``tracker`` is given, the mtime of every written file is recorded so
    a watcher on the same directory does not treat the write as external.
    Files for items no longer in the tree are left untouched.
    """
    ctx = _SaveContext(is_path_safe=is_path_safe or _allow_all, tracker=tracker)
    directory = Path(directory_path)
    if not ctx.is_path_safe(directory):
        raise PathSafetyError(directory)
    ctx.ensure_dir(directory)

    ctx.write(directory / COLLECTION_META, collection_meta_document(tree))
    _save_items(tree.items, directory, ctx)

    logger.info(f"Saved collection '{tree.name}' to {directory} ({len(ctx.written)} files)")
    return ctx.written


def collection_meta_document(tree: CollectionTree) -> dict[str, Any]:
    meta: dict[str, Any] = {"name": tree.name}
    if tree.description:
        meta["description"] = tree.description
    if tree.auth:
        meta["auth"] = tree.auth.model_dump(mode="json", by_alias=True, exclude_none=True)
    if tree.variables:
        meta["variables"] = [_file_key_value(entry.model_dump()) for entry in tree.variables]
    return meta


def request_document(request: Union[HttpRequest, GrpcRequest]) -> dict[str, Any]:
    """On-disk form of a request: no id, no type tag, no unset fields."""
    data = _without_ids(
        request.model_dump(mode="json", by_alias=True, exclude={"id", "type"}, exclude_none=True)
    )
    for key in _KEY_VALUE_FIELDS:
        entries = data.get(key)
        if isinstance(entries, list) and all(isinstance(entry, dict) for entry in entries):
            data[key] = [_file_key_value(entry) for entry in entries]
    return data


class _NameAllocator:
    """Hands out distinct entry names within one directory: ``users``, ``users-2``, ..."""

    def __init__(self) -> None:
        self._taken: set[str] = set()

    def allocate(self, display_name: str, suffix: str = "") -> str:
        base = sanitize_filename(display_name) or "untitled"
        candidate = base
        counter = 2
        while f"{candidate}{suffix}" in self._taken:
            candidate = f"{base}-{counter}"
            counter += 1
        entry_name = f"{candidate}{suffix}"
        if candidate != base:
            logger.warning(f"Name '{display_name}' collides with a sibling; writing {entry_name}")
        self._taken.add(entry_name)
        return entry_name


def _save_items(items: list, directory: Path, ctx: _SaveContext) -> None:
    names = _NameAllocator()
    for item in items:
        if isinstance(item, Folder):
            folder_path = directory / names.allocate(item.name)
            ctx.ensure_dir(folder_path)
            folder_meta: dict[str, Any] = {"name": item.name}
            if item.description:
                folder_meta["description"] = item.description
            ctx.write(folder_path / FOLDER_META, folder_meta)
            if item.items:
                _save_items(item.items, folder_path, ctx)
        elif isinstance(item, RequestItem):
            suffix = _REQUEST_SUFFIXES[item.request.type]
            document = request_document(item.request)
            document["name"] = item.name
            ctx.write(directory / names.allocate(item.name, suffix), document)
