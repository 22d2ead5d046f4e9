"""Gallery and usage statistics endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from hibiscus.api.dependencies import get_gallery, get_scheduler
from hibiscus.models.stats import UsageStats
from hibiscus.services.gallery import Gallery
from hibiscus.workers.scheduler import JobScheduler

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["gallery"])


@router.get("/gallery")
async def list_gallery(gallery: Gallery = Depends(get_gallery)) -> list[dict[str, Any]]:
    return await gallery.list_items()


@router.delete("/gallery/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_gallery_item(
    item_id: str,
    gallery: Gallery = Depends(get_gallery),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> None:
    """Delete a stored item and drop it from the recent results."""
    removed = await gallery.remove(item_id)
    in_recents = scheduler.remove_from_recents(item_id)
    if not removed and not in_recents:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    logger.info("gallery.item_deleted", item_id=item_id, in_recents=in_recents)


@router.get("/stats", response_model=UsageStats)
async def get_stats(scheduler: JobScheduler = Depends(get_scheduler)) -> UsageStats:
    return scheduler.stats
