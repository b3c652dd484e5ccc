"""User administration and self-service account management."""
import logging
import re
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from .auth import get_password_hash, insert_user, verify_password
from .courses import is_admin
from .enrollments import list_enrollments
from .errors import ConflictError, ForbiddenError, NotFoundError
from .models import DetailsUpdate, PasswordUpdate, User, UserCreate, UserUpdate
from .storage import LocalFileStorage, stored_refs

logger = logging.getLogger(__name__)


async def get_user_or_404(db, user_id: str) -> Dict[str, Any]:
    user = await db.users.find_one({"id": user_id})
    if not user:
        raise NotFoundError(f"User not found with id of {user_id}")
    return user

def ensure_self_or_admin(current_user: dict, user_id: str, action: str = "update"):
    if current_user["id"] != user_id and not is_admin(current_user):
        raise ForbiddenError(f"User {current_user['id']} is not authorized to {action} this profile")

async def _ensure_email_free(db, email: str, user_id: Optional[str] = None):
    existing = await db.users.find_one({"email": email})
    if existing and existing["id"] != user_id:
        raise ConflictError("Email already registered")

async def _apply_update(db, user_id: str, update_data: dict) -> Dict[str, Any]:
    if update_data.get("email"):
        update_data["email"] = update_data["email"].lower()
        await _ensure_email_free(db, update_data["email"], user_id)
    update_data["updated_at"] = datetime.utcnow()
    await db.users.update_one({"id": user_id}, {"$set": update_data})
    return await get_user_or_404(db, user_id)


# Admin operations
async def list_users(
    db,
    role: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    skip: int = 0,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if role:
        query["role"] = role
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"email": {"$regex": pattern, "$options": "i"}},
        ]
    return await db.users.find(query).sort("created_at", -1).skip(skip).limit(limit).to_list(None)

async def create_user(db, data: UserCreate) -> Dict[str, Any]:
    """Create an account with any role."""
    email = data.email.lower()
    await _ensure_email_free(db, email)
    user = User(
        email=email,
        name=data.name,
        role=data.role,
        bio=data.bio,
        is_active=data.is_active,
        password_hash=get_password_hash(data.password),
    ).dict()
    return await insert_user(db, user)

async def update_user(db, user_id: str, data: UserUpdate) -> Dict[str, Any]:
    await get_user_or_404(db, user_id)
    return await _apply_update(db, user_id, data.dict(exclude_unset=True, exclude_none=True))

async def delete_user(db, current_user: dict, user_id: str, storage: Optional[LocalFileStorage] = None):
    """Delete an account with its enrollments, progress and notifications."""
    user = await get_user_or_404(db, user_id)
    if user_id == current_user["id"]:
        raise ForbiddenError("You cannot delete your own account")

    await db.enrollments.delete_many({"user_id": user_id})
    await db.lesson_progress.delete_many({"user_id": user_id})
    await db.notifications.delete_many({"user_id": user_id})
    await db.users.delete_one({"id": user_id})
    if storage is not None:
        for ref in stored_refs(user, "avatar_url"):
            storage.delete(ref)
    logger.info("User %s deleted by %s", user_id, current_user["id"])

async def reset_password(db, user_id: str) -> Dict[str, str]:
    """Replace a user's password with a generated one and hand it back once."""
    await get_user_or_404(db, user_id)
    new_password = secrets.token_urlsafe(6)
    await db.users.update_one(
        {"id": user_id},
        {"$set": {"password_hash": get_password_hash(new_password), "updated_at": datetime.utcnow()}},
    )
    logger.info("Password reset for user %s", user_id)
    return {"new_password": new_password}


# Self-service
async def get_profile(db, current_user: dict, user_id: str) -> Dict[str, Any]:
    ensure_self_or_admin(current_user, user_id, "view")
    user = await get_user_or_404(db, user_id)
    return {"user": user, "enrollments": await list_enrollments(db, user)}

async def update_details(db, current_user: dict, data: DetailsUpdate) -> Dict[str, Any]:
    return await _apply_update(db, current_user["id"], data.dict(exclude_unset=True, exclude_none=True))

async def update_password(db, current_user: dict, data: PasswordUpdate) -> Dict[str, Any]:
    if not verify_password(data.current_password, current_user.get("password_hash") or ""):
        raise ForbiddenError("Password is incorrect")
    await db.users.update_one(
        {"id": current_user["id"]},
        {"$set": {"password_hash": get_password_hash(data.new_password), "updated_at": datetime.utcnow()}},
    )
    return await get_user_or_404(db, current_user["id"])

async def upload_avatar(
    db,
    current_user: dict,
    user_id: str,
    data: bytes,
    filename: str,
    mime_type: Optional[str],
    storage: LocalFileStorage,
) -> Dict[str, Any]:
    ensure_self_or_admin(current_user, user_id)
    user = await get_user_or_404(db, user_id)

    ref = await run_in_threadpool(storage.save_image, data, filename, mime_type, "avatars")
    updated = await _apply_update(db, user_id, {"avatar_url": ref})
    for previous in stored_refs(user, "avatar_url"):
        storage.delete(previous)
    return updated
