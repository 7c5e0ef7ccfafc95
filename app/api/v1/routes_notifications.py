from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from app.domain.order import Actor

from .common import get_actor, get_services, ok

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    services=Depends(get_services),
):
    items = await services.notifications.list_notifications(actor.id, unread_only=unread_only, limit=limit)
    return ok([item.to_dict() for item in items])


@router.get("/unread-count")
async def unread_count(actor: Actor = Depends(get_actor), services=Depends(get_services)):
    return ok({"count": await services.notifications.unread_count(actor.id)})


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, actor: Actor = Depends(get_actor), services=Depends(get_services)):
    if not await services.notifications.mark_read(notification_id, actor.id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return ok({"id": notification_id, "isRead": True})


@router.post("/read-all")
async def mark_all_read(actor: Actor = Depends(get_actor), services=Depends(get_services)):
    return ok({"updated": await services.notifications.mark_all_read(actor.id)})
