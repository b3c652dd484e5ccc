from datetime import datetime
from typing import Any, Dict, List, Optional

from .curriculum_models import NotificationCreate
from .courses import is_admin
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import Notification, NotificationType, RelatedModel, RelatedTo


async def notify(
    db,
    user_id: str,
    title: str,
    message: str,
    type: NotificationType = NotificationType.INFO,
    related_model: RelatedModel = RelatedModel.SYSTEM,
    related_id: Optional[str] = None,
) -> Dict[str, Any]:
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        related_to=RelatedTo(model=related_model, id=related_id),
    ).dict()
    await db.notifications.insert_one(notification)
    return notification

async def notify_many(db, user_ids: List[str], data: NotificationCreate) -> int:
    related_to = data.related_to or RelatedTo()
    notifications = [
        Notification(
            user_id=user_id,
            title=data.title,
            message=data.message,
            type=data.type,
            related_to=related_to,
        ).dict()
        for user_id in user_ids
    ]
    if notifications:
        await db.notifications.insert_many(notifications)
    return len(notifications)


async def get_notification_or_404(db, notification_id: str) -> Dict[str, Any]:
    notification = await db.notifications.find_one({"id": notification_id})
    if not notification:
        raise NotFoundError(f"Notification not found with id of {notification_id}")
    return notification

async def list_notifications(db, user: dict, limit: int = 50) -> List[Dict[str, Any]]:
    return await db.notifications.find({"user_id": user["id"]}).sort("created_at", -1).limit(limit).to_list(None)

async def unread_count(db, user: dict) -> int:
    return await db.notifications.count_documents({"user_id": user["id"], "read": False})

async def mark_as_read(db, user: dict, notification_id: str) -> Dict[str, Any]:
    notification = await get_notification_or_404(db, notification_id)
    if notification["user_id"] != user["id"]:
        raise ForbiddenError("User not authorized to access this notification")

    await db.notifications.update_one(
        {"id": notification_id},
        {"$set": {"read": True, "read_at": datetime.utcnow()}},
    )
    return await get_notification_or_404(db, notification_id)

async def mark_all_as_read(db, user: dict) -> int:
    result = await db.notifications.update_many(
        {"user_id": user["id"], "read": False},
        {"$set": {"read": True, "read_at": datetime.utcnow()}},
    )
    return result.modified_count

async def delete_notification(db, user: dict, notification_id: str):
    notification = await get_notification_or_404(db, notification_id)
    if notification["user_id"] != user["id"] and not is_admin(user):
        raise ForbiddenError("User not authorized to delete this notification")
    await db.notifications.delete_one({"id": notification_id})

async def create_notification(db, data: NotificationCreate) -> int:
    """Send to one user, to everyone, or to every user holding a role."""
    if data.user_id:
        if not await db.users.find_one({"id": data.user_id}):
            raise NotFoundError(f"User not found with id of {data.user_id}")
        return await notify_many(db, [data.user_id], data)
    if data.to_all or data.to_role:
        query = {"role": data.to_role.value} if data.to_role else {}
        users = await db.users.find(query, {"id": 1}).to_list(None)
        return await notify_many(db, [u["id"] for u in users], data)
    raise ValidationError("Please specify user_id, to_all, or to_role")
