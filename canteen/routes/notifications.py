"""Notification routes: inbox, read state, settings, targeted create and broadcast."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from canteen.services.account_service import AccountNotFoundError
from canteen.services.auth import current_user_id, get_current_user, require_roles
from canteen.services.notification_service import (
    FILTERS,
    NotificationNotFoundError,
    NotificationService,
)

router = APIRouter(prefix="/api/notifications")


class CreateNotificationRequest(BaseModel):
    userId: int | None = None
    type: str | None = None
    title: str | None = None
    message: str | None = None
    data: dict = {}


class BroadcastRequest(BaseModel):
    type: str | None = None
    title: str | None = None
    message: str | None = None
    data: dict = {}
    targetRole: str | None = None


@router.get("")
async def list_notifications(
    user: dict = Depends(get_current_user),
    filter_: str = Query("all", alias="filter"),
):
    if filter_ not in FILTERS:
        return JSONResponse(status_code=400, content={"error": f"Unknown filter: {filter_}"})
    svc = NotificationService()
    return JSONResponse(content=svc.list_for_account(current_user_id(user), filter_))


@router.patch("/mark-all-read")
async def mark_all_read(user: dict = Depends(get_current_user)):
    count = NotificationService().mark_all_read(current_user_id(user))
    return JSONResponse(content={"message": "All notifications marked as read", "count": count})


@router.get("/settings")
async def get_settings(user: dict = Depends(get_current_user)):
    return JSONResponse(content=NotificationService().get_settings(current_user_id(user)))


@router.put("/settings")
async def update_settings(body: dict, user: dict = Depends(get_current_user)):
    settings = NotificationService().update_settings(current_user_id(user), body)
    return JSONResponse(content=settings)


@router.patch("/{notification_id}/read")
async def mark_read(notification_id: int, user: dict = Depends(get_current_user)):
    try:
        n = NotificationService().mark_read(current_user_id(user), notification_id)
    except NotificationNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(content=n)


@router.delete("/{notification_id}")
async def delete_notification(notification_id: int, user: dict = Depends(get_current_user)):
    try:
        NotificationService().delete(current_user_id(user), notification_id)
    except NotificationNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return JSONResponse(content={"message": "Notification deleted successfully"})


@router.post("/create")
async def create_notification(body: CreateNotificationRequest, user: dict = Depends(get_current_user)):
    """Notify a single account (staff/admin)."""
    require_roles(user, "staff", "admin")
    try:
        n = NotificationService().create(
            body.userId, body.type, body.title, body.message, body.data
        )
    except AccountNotFoundError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(status_code=201, content=n)


@router.post("/broadcast")
async def broadcast(body: BroadcastRequest, user: dict = Depends(get_current_user)):
    """Notify every account, or every account with ``targetRole`` (admin)."""
    require_roles(user, "admin")
    try:
        count = NotificationService().broadcast(
            body.type, body.title, body.message, body.data, body.targetRole
        )
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(content={
        "message": f"Notification sent to {count} users",
        "count": count,
    })
