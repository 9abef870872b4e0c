"""Pydantic models matching the frontend TypeScript types."""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from colsync.ids import generate_id


def _scalar_to_str(value: Any) -> Any:
    # Hand-edited YAML turns `value: 8080` into an int; keep it as text.
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


# ── Shared building blocks ─────────────────────────────────────────

class KeyValue(BaseModel):
    id: str = Field(default_factory=generate_id)
    key: str
    value: str = ""
    enabled: bool = True
    description: Optional[str] = None

    @field_validator("key", "value", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        return _scalar_to_str(value)


class FormDataItem(KeyValue):
    type: Literal["text", "file"] = "text"


class MultipartPart(BaseModel):
    id: str = Field(default_factory=generate_id)
    contentType: str = "text/plain"
    content: str = ""
    headers: Optional[dict[str, str]] = None


class BasicAuth(BaseModel):
    username: str
    password: str


class BearerAuth(BaseModel):
    token: str


class ApiKeyAuth(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str
    value: str
    in_: Literal["header", "query"] = Field(default="header", alias="in")


class OAuth2Auth(BaseModel):
    accessToken: str
    tokenType: Optional[str] = None
    scopes: Optional[list[str]] = None


class AwsSignatureAuth(BaseModel):
    accessKey: str
    secretKey: str
    region: str
    service: str


class AuthConfig(BaseModel):
    type: Literal["none", "basic", "bearer", "api-key", "oauth2", "digest", "aws-signature"] = "none"
    basic: Optional[BasicAuth] = None
    bearer: Optional[BearerAuth] = None
    apiKey: Optional[ApiKeyAuth] = None
    oauth2: Optional[OAuth2Auth] = None
    digest: Optional[BasicAuth] = None
    awsSignature: Optional[AwsSignatureAuth] = None


# ── Request models ─────────────────────────────────────────────────

class RequestBody(BaseModel):
    type: Literal[
        "none", "json", "xml", "form-data", "x-www-form-urlencoded",
        "binary", "protobuf", "graphql", "text", "multipart-mixed",
    ] = "none"
    raw: Optional[str] = None
    formData: Optional[list[FormDataItem]] = None
    multipartParts: Optional[list[MultipartPart]] = None


class RequestSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    timeout: int = 30000  # in milliseconds
    followRedirects: bool = True
    maxRedirects: int = 5
    verifySsl: bool = True


class HttpRequest(BaseModel):
    # Unknown keys from hand-edited files are kept and written back on save.
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=generate_id)
    type: Literal["http"] = "http"
    name: str = ""
    method: Literal["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"] = "GET"
    url: str = ""
    headers: list[KeyValue] = Field(default_factory=list)
    params: list[KeyValue] = Field(default_factory=list)
    body: RequestBody = Field(default_factory=RequestBody)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    preRequestScript: Optional[str] = None
    testScript: Optional[str] = None
    settings: Optional[RequestSettings] = None


class GrpcRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=generate_id)
    type: Literal["grpc"] = "grpc"
    name: str = ""
    methodType: Literal["unary", "server-streaming", "client-streaming", "bidirectional-streaming"] = "unary"
    url: str = ""
    service: str = ""
    method: str = ""
    metadata: list[KeyValue] = Field(default_factory=list)
    message: str = ""
    auth: AuthConfig = Field(default_factory=AuthConfig)
    preRequestScript: Optional[str] = None
    testScript: Optional[str] = None


Request = Annotated[Union[HttpRequest, GrpcRequest], Field(discriminator="type")]


# ── Collection tree ────────────────────────────────────────────────

class Folder(BaseModel):
    id: str = Field(default_factory=generate_id)
    type: Literal["folder"] = "folder"
    name: str
    description: Optional[str] = None
    items: list[CollectionItem] = Field(default_factory=list)
    sourcePath: Optional[str] = None


class RequestItem(BaseModel):
    id: str = Field(default_factory=generate_id)
    type: Literal["request"] = "request"
    name: str
    request: Request
    sourcePath: Optional[str] = None


CollectionItem = Annotated[Union[Folder, RequestItem], Field(discriminator="type")]

Folder.model_rebuild()


class CollectionTree(BaseModel):
    id: str = Field(default_factory=generate_id)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    auth: Optional[AuthConfig] = None
    variables: list[KeyValue] = Field(default_factory=list)
    items: list[CollectionItem] = Field(default_factory=list)
    sourcePath: Optional[str] = None


# ── On-disk file schemas ───────────────────────────────────────────

class FileKeyValue(BaseModel):
    key: str
    value: str
    enabled: Optional[bool] = None
    description: Optional[str] = None

    @field_validator("key", "value", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        return _scalar_to_str(value)


class CollectionMetaFile(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    auth: Optional[AuthConfig] = None
    variables: Optional[list[FileKeyValue]] = None


class FolderMetaFile(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


# ── Watcher / facade results ───────────────────────────────────────

class FileChangeEvent(BaseModel):
    type: Literal["modified", "added", "deleted"]
    path: str
    directoryPath: str
    lastModified: Optional[float] = None


class FileInfo(BaseModel):
    exists: bool
    lastModified: Optional[float] = None
    size: Optional[int] = None


class OperationResult(BaseModel):
    success: bool
    error: Optional[str] = None


class LoadResult(OperationResult):
    collection: Optional[CollectionTree] = None
    warnings: list[str] = Field(default_factory=list)


# ── File collection registry ───────────────────────────────────────

class FileCollectionInfo(BaseModel):
    collectionId: str
    directoryPath: str
    syncState: Literal["synced", "modified", "conflict", "loading", "error"] = "synced"
    lastSynced: float = 0.0  # epoch milliseconds
    isWatching: bool = False
    error: Optional[str] = None


class ConflictInfo(BaseModel):
    collectionId: str
    itemId: Optional[str] = None
    itemName: str
    filePath: str
    localModified: float
    externalModified: float
    message: Optional[str] = None
