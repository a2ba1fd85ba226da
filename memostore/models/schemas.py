from typing import Annotated, List, Optional

from fastapi import Path
from pydantic import BaseModel, Field, field_validator

from memostore.db.query import SQLITE_MAX_INT

RowId = Annotated[int, Field(le=SQLITE_MAX_INT)]
RowIdPath = Annotated[int, Path(le=SQLITE_MAX_INT)]


class NoteIn(BaseModel):
    title: str = ""
    body: str = ""
    tags: List[str] = Field(default_factory=list)
    pinned: bool = False
    kind: str = Field("markdown", max_length=32)
    resourceIds: List[RowId] = Field(default_factory=list, max_length=50)
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class Tag(BaseModel):
    id: int
    name: str
    color: Optional[str] = None
    createdAt: str


class TagWithCount(Tag):
    noteCount: int


class TagUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("tag name cannot be blank")
        return value


class TagMerge(BaseModel):
    targetId: RowId


class ResourceIn(BaseModel):
    filename: str = Field(..., min_length=1)
    storagePath: str = Field(..., min_length=1)
    mimeType: Optional[str] = None
    size: Optional[int] = Field(None, ge=0, le=SQLITE_MAX_INT)
    sha256: Optional[str] = None


class Resource(BaseModel):
    id: int
    ownerId: Optional[int] = None
    filename: str
    storagePath: str
    url: str
    mimeType: Optional[str] = None
    size: Optional[int] = None
    sha256: Optional[str] = None
    createdAt: str


class Note(BaseModel):
    id: int
    ownerId: Optional[int] = None
    title: str
    body: str
    pinned: bool
    kind: str
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    tags: List[Tag]
    resources: List[Resource]
    createdAt: str
    updatedAt: str


class NotePage(BaseModel):
    ownerId: Optional[int] = None
    limit: int
    offset: int
    total: int
    items: List[Note]


class OwnerStats(BaseModel):
    notesCount: int
    tagsCount: int
    resourcesCount: int
    notebooksCount: int
    pinnedCount: int
    notesCreated7d: int
    notesUpdated7d: int


class HealthResponse(BaseModel):
    status: str
    time: str
    schemaVersion: Optional[int] = None


class MetricsResponse(BaseModel):
    uptimeSeconds: int
    requests: dict
    latencyMs: dict
    errors: dict
    notes: dict
    pool: dict


class NoteBatchDelete(BaseModel):
    ids: List[RowId] = Field(..., min_length=1, max_length=500)
