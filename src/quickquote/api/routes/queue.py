"""Queue routes: enqueue work, inspect and reset the queue."""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from quickquote.api import deps
from quickquote.models.queue import QueueItemType
from quickquote.pipeline.processor import QueueStatus
from quickquote.services import Services

router = APIRouter()


class EnqueueRequest(BaseModel):
    draft_id: str
    stage: QueueItemType = QueueItemType.BOTH


@router.post("")
def enqueue(request: EnqueueRequest, services: Services = Depends(deps.services)):
    """Queue a draft for processing. Re-enqueueing returns the active item."""
    if services.drafts.get(request.draft_id) is None:
        raise HTTPException(status_code=404, detail="Draft not found")
    item_id = services.queue.enqueue(request.draft_id, request.stage)
    return {"id": item_id, "draft_id": request.draft_id}


@router.get("/status", response_model=QueueStatus)
def queue_status(services: Services = Depends(deps.services)):
    return services.processor.get_queue_status()


@router.get("/items")
def queue_items(services: Services = Depends(deps.services)):
    """Every non-completed item, oldest first."""
    return services.queue.list_pending()


@router.post("/retry")
def retry_failed(services: Services = Depends(deps.services)):
    return {"reset": services.processor.retry_failed_items()}


@router.delete("")
def clear_queue(services: Services = Depends(deps.services)):
    return {"deleted": services.queue.purge_all()}
