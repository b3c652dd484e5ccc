import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import LESSON_FILE_FIELDS, Course, CourseCreate, CourseUpdate, UserRole
from .storage import LocalFileStorage, stored_refs

logger = logging.getLogger(__name__)


def is_admin(user: Optional[dict]) -> bool:
    return bool(user) and user.get("role") == UserRole.ADMIN

def is_course_owner(course: dict, user: Optional[dict]) -> bool:
    return bool(user) and (course["author_id"] == user["id"] or is_admin(user))

def ensure_course_owner(course: dict, user: dict, action: str = "modify"):
    if not is_course_owner(course, user):
        raise ForbiddenError(f"User {user['id']} is not authorized to {action} this course")

def can_preview(course: dict, user: Optional[dict]) -> bool:
    """Unpublished content is visible to its author, instructors and admins."""
    if course.get("is_published"):
        return True
    if not user:
        return False
    return user.get("role") in (UserRole.ADMIN, UserRole.INSTRUCTOR) or user["id"] == course["author_id"]


async def get_course_or_404(db, course_id: str) -> Dict[str, Any]:
    course = await db.courses.find_one({"id": course_id})
    if not course:
        raise NotFoundError(f"Course not found with id of {course_id}")
    return course

async def _with_counts(db, course: dict) -> dict:
    author = await db.users.find_one({"id": course["author_id"]})
    course["author_name"] = author.get("name", "Unknown") if author else "Unknown"
    course["total_lessons"] = await db.lessons.count_documents({"course_id": course["id"]})
    return course


async def create_course(db, user: dict, data: CourseCreate) -> Dict[str, Any]:
    course_dict = data.dict()
    course_dict["author_id"] = user["id"]
    # Admin-created courses skip the approval step
    if is_admin(user):
        course_dict["is_approved"] = True
        course_dict["approved_by"] = user["id"]

    course = Course(**course_dict).dict()
    await db.courses.insert_one(course)
    logger.info("Course %s created by %s", course["id"], user["id"])
    return await _with_counts(db, course)

async def list_courses(
    db,
    category: Optional[str] = None,
    level: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 20,
    skip: int = 0,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {"is_published": True}
    if category:
        query["category"] = category
    if level:
        query["level"] = level
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]

    courses = await db.courses.find(query).sort("created_at", -1).skip(skip).limit(limit).to_list(None)
    return [await _with_counts(db, course) for course in courses]

async def get_course(db, course_id: str, user: Optional[dict] = None) -> Dict[str, Any]:
    course = await get_course_or_404(db, course_id)
    if not can_preview(course, user):
        raise NotFoundError("Course not found")
    return await _with_counts(db, course)

async def update_course(db, user: dict, course_id: str, data: CourseUpdate) -> Dict[str, Any]:
    course = await get_course_or_404(db, course_id)
    ensure_course_owner(course, user, "update")

    update_data = data.dict(exclude_unset=True)
    update_data["updated_at"] = datetime.utcnow()
    await db.courses.update_one({"id": course_id}, {"$set": update_data})
    return await get_course(db, course_id, user)

async def delete_course(db, user: dict, course_id: str, storage: Optional[LocalFileStorage] = None):
    """Delete a course together with everything that hangs off it, stored files included."""
    course = await get_course_or_404(db, course_id)
    ensure_course_owner(course, user, "delete")

    refs = stored_refs(course, "thumbnail_url")
    for lesson in await db.lessons.find({"course_id": course_id}).to_list(None):
        refs += stored_refs(lesson, *LESSON_FILE_FIELDS)
    issued = await db.enrollments.find({"course_id": course_id, "certificate_issued": True}).to_list(None)
    for enrollment in issued:
        refs += stored_refs(enrollment, "certificate_url")

    await db.lessons.delete_many({"course_id": course_id})
    await db.quizzes.delete_many({"course_id": course_id})
    await db.lesson_progress.delete_many({"course_id": course_id})
    await db.enrollments.delete_many({"course_id": course_id})
    await db.courses.delete_one({"id": course_id})
    if storage is not None:
        for ref in refs:
            storage.delete(ref)
    logger.info("Course %s deleted by %s", course_id, user["id"])

async def submit_for_approval(db, user: dict, course_id: str) -> Dict[str, Any]:
    course = await get_course_or_404(db, course_id)
    if course["author_id"] != user["id"]:
        raise ForbiddenError(f"User {user['id']} is not authorized to update this course")

    await db.courses.update_one(
        {"id": course_id},
        {"$set": {"requires_approval": True, "updated_at": datetime.utcnow()}},
    )
    return await get_course(db, course_id, user)

async def approve_course(db, user: dict, course_id: str) -> Dict[str, Any]:
    await get_course_or_404(db, course_id)
    await db.courses.update_one(
        {"id": course_id},
        {"$set": {
            "is_approved": True,
            "requires_approval": False,
            "approved_by": user["id"],
            "updated_at": datetime.utcnow(),
        }},
    )
    return await get_course(db, course_id, user)

async def publish_course(db, user: dict, course_id: str, is_published: bool = True) -> Dict[str, Any]:
    course = await get_course_or_404(db, course_id)
    ensure_course_owner(course, user, "publish")
    if is_published and not course.get("is_approved") and not is_admin(user):
        raise ValidationError("Course must be approved before publishing")

    await db.courses.update_one(
        {"id": course_id},
        {"$set": {"is_published": is_published, "updated_at": datetime.utcnow()}},
    )
    return await get_course(db, course_id, user)

async def upload_course_image(
    db,
    user: dict,
    course_id: str,
    data: bytes,
    filename: str,
    mime_type: Optional[str],
    storage: LocalFileStorage,
) -> Dict[str, Any]:
    course = await get_course_or_404(db, course_id)
    ensure_course_owner(course, user, "update")

    ref = await run_in_threadpool(storage.save_image, data, filename, mime_type, "courses")
    await db.courses.update_one(
        {"id": course_id},
        {"$set": {"thumbnail_url": ref, "updated_at": datetime.utcnow()}},
    )
    for previous in stored_refs(course, "thumbnail_url"):
        storage.delete(previous)
    return await get_course(db, course_id, user)
