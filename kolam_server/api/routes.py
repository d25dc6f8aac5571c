"""
API routes for the Kolam HTTP front-end.

Thin REST wrappers over the stores and the bridge service. Store errors are
rendered by the KolamError handler installed in app.py.
"""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from ..bridge import DIRECTIVES, BridgeService, parse_ai_response
from ..errors import (
    EntryNotFoundError,
    PendingBlockNotFoundError,
    StreamNotFoundError,
    VersionNotFoundError,
)
from ..store import ContentStore, StagingSet, StreamStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Kolam"])


# --- Request Models ---


class StreamCreateRequest(BaseModel):
    """Request to create a stream."""

    title: str = Field(..., min_length=1, description="Stream title")
    description: str | None = Field(None, description="Optional description")
    tags: list[str] = Field(default_factory=list, description="Tags")
    color: str | None = Field(None, description="Display color")
    pinned: bool = Field(False, description="Pin to the top of the list")


class StreamUpdateRequest(BaseModel):
    """Request to update stream fields; omitted fields are unchanged."""

    title: str | None = Field(None, min_length=1)
    description: str | None = None
    tags: list[str] | None = None
    color: str | None = None
    pinned: bool | None = None


class EntryCreateRequest(BaseModel):
    """Request to append an entry to a stream."""

    role: str = Field("user", description="'user' or 'ai'")
    content: dict[str, Any] = Field(
        default_factory=lambda: {"type": "doc", "content": [{"type": "paragraph", "content": []}]},
        description="Structured document",
    )


class EntryContentRequest(BaseModel):
    content: dict[str, Any]


class StageRequest(BaseModel):
    staged: bool = True


class CommitRequest(BaseModel):
    message: str | None = Field(None, description="Optional commit message")


class RevertRequest(BaseModel):
    version_number: int = Field(..., ge=1)


class ExportRequest(BaseModel):
    directive: str = Field(..., description="DUMP, CRITIQUE or GENERATE")


class ImportRequest(BaseModel):
    """Pasted assistant response."""

    text: str = Field(..., description="Raw pasted text")
    target_entry_id: str | None = Field(None, description="Entry to overwrite instead of appending")


class ParseRequest(BaseModel):
    text: str


# --- Dependencies ---


def get_streams(request: Request) -> StreamStore:
    """Get the stream store from app state."""
    return request.app.state.streams


def get_content(request: Request) -> ContentStore:
    return request.app.state.content


def get_staging(request: Request) -> StagingSet:
    return request.app.state.staging


def get_bridge(request: Request) -> BridgeService:
    return request.app.state.bridge


# --- Stream Routes ---


@router.get("/streams")
async def list_streams(streams: StreamStore = Depends(get_streams)) -> dict[str, Any]:
    """List stream summaries, pinned first."""
    items = await streams.list_streams()
    return {"streams": [item.to_dict() for item in items]}


@router.post("/streams", status_code=201)
async def create_stream(
    request: StreamCreateRequest,
    streams: StreamStore = Depends(get_streams),
) -> dict[str, Any]:
    stream = await streams.create_stream(
        request.title,
        description=request.description,
        tags=request.tags,
        color=request.color,
        pinned=request.pinned,
    )
    return stream.to_dict()


@router.get("/streams/{stream_id}")
async def get_stream(stream_id: str, streams: StreamStore = Depends(get_streams)) -> dict[str, Any]:
    """Get a stream with its entries in sequence order."""
    details = await streams.get_stream_details(stream_id)
    return details.to_dict()


@router.patch("/streams/{stream_id}")
async def update_stream(
    stream_id: str,
    request: StreamUpdateRequest,
    streams: StreamStore = Depends(get_streams),
) -> dict[str, Any]:
    stream = await streams.update_stream(stream_id, **request.model_dump(exclude_unset=True))
    return stream.to_dict()


@router.delete("/streams/{stream_id}")
async def delete_stream(stream_id: str, streams: StreamStore = Depends(get_streams)) -> dict[str, Any]:
    """Delete a stream with its entries, versions and pending blocks."""
    if not await streams.delete_stream(stream_id):
        raise StreamNotFoundError(stream_id)
    return {"deleted": True, "id": stream_id}


# --- Entry Routes ---


@router.post("/streams/{stream_id}/entries", status_code=201)
async def create_entry(
    stream_id: str,
    request: EntryCreateRequest,
    streams: StreamStore = Depends(get_streams),
) -> dict[str, Any]:
    entry = await streams.create_entry(stream_id, request.role, request.content)
    return entry.to_dict()


@router.get("/entries/{entry_id}")
async def get_entry(entry_id: str, streams: StreamStore = Depends(get_streams)) -> dict[str, Any]:
    entry = await streams.get_entry(entry_id)
    if entry is None:
        raise EntryNotFoundError(entry_id)
    return entry.to_dict()


@router.put("/entries/{entry_id}/content")
async def update_entry_content(
    entry_id: str,
    request: EntryContentRequest,
    streams: StreamStore = Depends(get_streams),
) -> dict[str, Any]:
    """Save working content without creating a version."""
    await streams.update_entry_content(entry_id, request.content)
    entry = await streams.get_entry(entry_id)
    if entry is None:
        raise EntryNotFoundError(entry_id)
    return entry.to_dict()


@router.delete("/entries/{entry_id}")
async def delete_entry(entry_id: str, streams: StreamStore = Depends(get_streams)) -> dict[str, Any]:
    if not await streams.delete_entry(entry_id):
        raise EntryNotFoundError(entry_id)
    return {"deleted": True, "id": entry_id}


@router.get("/search")
async def search_entries(
    request: Request,
    q: str = Query(..., min_length=1, description="Substring to look for"),
    limit: int | None = Query(None, ge=1, description="Maximum results"),
    streams: StreamStore = Depends(get_streams),
) -> dict[str, Any]:
    """Substring search over entry content, most recently updated first."""
    max_results = request.app.state.config.bridge.search_limit
    results = await streams.search_entries(q, limit=min(limit or max_results, max_results))
    return {"query": q, "entries": [entry.to_dict() for entry in results]}


# --- Staging Routes ---


@router.post("/entries/{entry_id}/stage")
async def set_staged(
    entry_id: str,
    request: StageRequest,
    staging: StagingSet = Depends(get_staging),
) -> dict[str, Any]:
    await staging.set_staged(entry_id, request.staged)
    return {"id": entry_id, "is_staged": request.staged}


@router.get("/streams/{stream_id}/staged")
async def list_staged(stream_id: str, staging: StagingSet = Depends(get_staging)) -> dict[str, Any]:
    entries = await staging.list_staged(stream_id)
    return {"stream_id": stream_id, "entries": [entry.to_dict() for entry in entries]}


@router.delete("/streams/{stream_id}/staged")
async def clear_staged(stream_id: str, staging: StagingSet = Depends(get_staging)) -> dict[str, Any]:
    cleared = await staging.clear_all(stream_id)
    return {"stream_id": stream_id, "cleared": cleared}


# --- Version Routes ---


@router.post("/entries/{entry_id}/commit", status_code=201)
async def commit_entry(
    entry_id: str,
    request: CommitRequest,
    content: ContentStore = Depends(get_content),
) -> dict[str, Any]:
    """Snapshot the entry's current content as a new version."""
    version = await content.commit(entry_id, request.message)
    return version.to_dict()


@router.get("/entries/{entry_id}/versions")
async def list_versions(entry_id: str, content: ContentStore = Depends(get_content)) -> dict[str, Any]:
    versions = await content.list_versions(entry_id)
    return {"entry_id": entry_id, "versions": [version.to_dict() for version in versions]}


@router.get("/entries/{entry_id}/versions/latest")
async def latest_version(entry_id: str, content: ContentStore = Depends(get_content)) -> dict[str, Any]:
    version = await content.latest_version(entry_id)
    if version is None:
        raise VersionNotFoundError(entry_id)
    return version.to_dict()


@router.get("/entries/{entry_id}/versions/{version_number}")
async def get_version(
    entry_id: str,
    version_number: int,
    content: ContentStore = Depends(get_content),
) -> dict[str, Any]:
    version = await content.get_version(entry_id, version_number)
    if version is None:
        raise VersionNotFoundError(entry_id, version_number)
    return version.to_dict()


@router.post("/entries/{entry_id}/revert")
async def revert_entry(
    entry_id: str,
    request: RevertRequest,
    content: ContentStore = Depends(get_content),
    streams: StreamStore = Depends(get_streams),
) -> dict[str, Any]:
    """Restore a version's snapshot as working content; history is unchanged."""
    await content.revert(entry_id, request.version_number)
    entry = await streams.get_entry(entry_id)
    if entry is None:
        raise EntryNotFoundError(entry_id)
    return entry.to_dict()


# --- Bridge Routes ---


@router.get("/directives")
async def list_directives() -> dict[str, Any]:
    return {
        "directives": [
            {"directive": d.value, "label": config.label, "description": config.description}
            for d, config in DIRECTIVES.items()
        ]
    }


@router.post("/streams/{stream_id}/export", status_code=201)
async def export_staged(
    stream_id: str,
    request: ExportRequest,
    bridge: BridgeService = Depends(get_bridge),
) -> dict[str, Any]:
    """Package staged entries and open a pending block."""
    export, block = await bridge.export(stream_id, request.directive)
    return {"export": asdict(export), "pending_block": block.to_dict()}


@router.get("/streams/{stream_id}/pending")
async def get_pending(stream_id: str, bridge: BridgeService = Depends(get_bridge)) -> dict[str, Any]:
    block = await bridge.pending(stream_id)
    if block is None:
        raise PendingBlockNotFoundError(stream_id)
    return block.to_dict()


@router.delete("/streams/{stream_id}/pending")
async def cancel_pending(stream_id: str, bridge: BridgeService = Depends(get_bridge)) -> dict[str, Any]:
    """Abandon the newest export and re-stage its entries."""
    block = await bridge.cancel(stream_id)
    return {"cancelled": block.to_dict()}


@router.post("/streams/{stream_id}/import", status_code=201)
async def import_response(
    stream_id: str,
    request: ImportRequest,
    bridge: BridgeService = Depends(get_bridge),
) -> dict[str, Any]:
    """Accept a pasted response for the stream's pending block."""
    entry, version = await bridge.import_response(
        stream_id, request.text, target_entry_id=request.target_entry_id
    )
    return {"entry": entry.to_dict(), "version": version.to_dict()}


@router.post("/bridge/parse")
async def parse_response(request: ParseRequest) -> dict[str, Any]:
    """Preview what would be imported from pasted text, without writing."""
    return asdict(parse_ai_response(request.text))
