"""Draft routes: create, read, share and delete voice-note drafts."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from quickquote.api import deps
from quickquote.models.draft import Draft, ShareMethod
from quickquote.models.queue import QueueItemType
from quickquote.services import Services

router = APIRouter()


class CreateDraftRequest(BaseModel):
    audio_path: Optional[str] = None
    audio_duration: Optional[int] = None  # ms
    enqueue: bool = True


class ShareRequest(BaseModel):
    method: ShareMethod


@router.post("", response_model=Draft)
def create_draft(request: CreateDraftRequest, services: Services = Depends(deps.services)):
    """Save a recording as a draft and, by default, queue it for processing."""
    draft = services.drafts.create_draft(request.audio_path, request.audio_duration)
    if request.enqueue and request.audio_path:
        services.queue.enqueue(draft.id, QueueItemType.BOTH)
        draft = services.drafts.get(draft.id)
    return draft


@router.get("", response_model=List[Draft])
def list_drafts(q: Optional[str] = None, services: Services = Depends(deps.services)):
    if q:
        return services.drafts.search(q)
    return services.drafts.list_drafts()


@router.get("/{draft_id}", response_model=Draft)
def get_draft(draft_id: str, services: Services = Depends(deps.services)):
    draft = services.drafts.get(draft_id)
    if draft is None:
        raise HTTPException(status_code=404, detail="Draft not found")
    return draft


@router.post("/{draft_id}/share", response_model=Draft)
def share_draft(draft_id: str, request: ShareRequest, services: Services = Depends(deps.services)):
    if services.drafts.get(draft_id) is None:
        raise HTTPException(status_code=404, detail="Draft not found")
    services.drafts.mark_shared(draft_id, request.method)
    return services.drafts.get(draft_id)


@router.delete("/{draft_id}")
def delete_draft(draft_id: str, services: Services = Depends(deps.services)):
    services.drafts.delete(draft_id)
    return {"deleted": draft_id}
