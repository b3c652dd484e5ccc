"""Lessons and their dense 1..N ordering within a course.

Every create/reorder/delete keeps the orders of a course's lessons equal
to exactly {1, ..., N}.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from .courses import get_course_or_404, ensure_course_owner, can_preview
from .curriculum_models import LessonCreate, LessonUpdate
from .enrollments import recompute_course
from .errors import NotFoundError, ValidationError
from .locks import KeyedLock
from .models import LESSON_FILE_FIELDS, Lesson
from .storage import LocalFileStorage, stored_refs

logger = logging.getLogger(__name__)

# Serializes order-changing writes per course
course_locks = KeyedLock()


async def count_lessons(db, course_id: str) -> int:
    return await db.lessons.count_documents({"course_id": course_id})

async def get_lesson_or_404(db, lesson_id: str) -> Dict[str, Any]:
    lesson = await db.lessons.find_one({"id": lesson_id})
    if not lesson:
        raise NotFoundError(f"Lesson not found with id of {lesson_id}")
    return lesson

async def get_lesson_at(db, course_id: str, order: int) -> Optional[Dict[str, Any]]:
    return await db.lessons.find_one({"course_id": course_id, "order": order})


async def list_lessons(db, course_id: str, user: Optional[dict] = None) -> List[Dict[str, Any]]:
    course = await get_course_or_404(db, course_id)
    if not can_preview(course, user):
        raise NotFoundError("Course not found")
    return await db.lessons.find({"course_id": course_id}).sort("order", 1).to_list(None)

async def create_lesson(db, user: dict, course_id: str, data: LessonCreate) -> Dict[str, Any]:
    """Append a lesson at the end of the course."""
    course = await get_course_or_404(db, course_id)
    ensure_course_owner(course, user, "add lessons to")

    async with course_locks.hold(course_id):
        order = await count_lessons(db, course_id) + 1
        lesson = Lesson(course_id=course_id, order=order, **data.dict()).dict()
        await db.lessons.insert_one(lesson)

    # One more lesson changes every enrolled learner's percentage
    await recompute_course(db, course_id)
    return lesson

async def update_lesson(db, user: dict, lesson_id: str, data: LessonUpdate) -> Dict[str, Any]:
    lesson = await get_lesson_or_404(db, lesson_id)
    course = await get_course_or_404(db, lesson["course_id"])
    ensure_course_owner(course, user, "update lessons of")

    update_data = data.dict(exclude_unset=True)
    update_data["updated_at"] = datetime.utcnow()
    await db.lessons.update_one({"id": lesson_id}, {"$set": update_data})
    return await get_lesson_or_404(db, lesson_id)

async def reorder_lesson(db, user: dict, lesson_id: str, new_order: int) -> Dict[str, Any]:
    """Move a lesson to ``new_order``, shifting the lessons in between by one."""
    lesson = await get_lesson_or_404(db, lesson_id)
    course_id = lesson["course_id"]
    course = await get_course_or_404(db, course_id)
    ensure_course_owner(course, user, "reorder lessons of")

    async with course_locks.hold(course_id):
        # order may have shifted while waiting
        lesson = await get_lesson_or_404(db, lesson_id)
        total = await count_lessons(db, course_id)
        if not 1 <= new_order <= total:
            raise ValidationError(f"Lesson order must be between 1 and {total}")

        old_order = lesson["order"]
        if new_order == old_order:
            return lesson

        if new_order > old_order:
            await db.lessons.update_many(
                {"course_id": course_id, "order": {"$gt": old_order, "$lte": new_order}},
                {"$inc": {"order": -1}},
            )
        else:
            await db.lessons.update_many(
                {"course_id": course_id, "order": {"$gte": new_order, "$lt": old_order}},
                {"$inc": {"order": 1}},
            )
        await db.lessons.update_one(
            {"id": lesson_id},
            {"$set": {"order": new_order, "updated_at": datetime.utcnow()}},
        )

    logger.info("Lesson %s moved from %d to %d in course %s", lesson_id, old_order, new_order, course_id)
    return await get_lesson_or_404(db, lesson_id)

async def delete_lesson(db, user: dict, lesson_id: str, storage: Optional[LocalFileStorage] = None):
    """Remove a lesson, close the gap it leaves and drop its progress records."""
    lesson = await get_lesson_or_404(db, lesson_id)
    course_id = lesson["course_id"]
    course = await get_course_or_404(db, course_id)
    ensure_course_owner(course, user, "delete lessons of")

    async with course_locks.hold(course_id):
        lesson = await get_lesson_or_404(db, lesson_id)
        await db.lessons.delete_one({"id": lesson_id})
        await db.lessons.update_many(
            {"course_id": course_id, "order": {"$gt": lesson["order"]}},
            {"$inc": {"order": -1}},
        )
    await db.lesson_progress.delete_many({"lesson_id": lesson_id})
    await db.quizzes.update_many({"lesson_id": lesson_id}, {"$set": {"lesson_id": None}})

    if storage is not None:
        for ref in stored_refs(lesson, *LESSON_FILE_FIELDS):
            storage.delete(ref)

    await recompute_course(db, course_id)
    logger.info("Lesson %s deleted from course %s", lesson_id, course_id)


async def upload_material(
    db,
    user: dict,
    lesson_id: str,
    data: bytes,
    filename: str,
    mime_type: Optional[str],
    storage: LocalFileStorage,
) -> Dict[str, Any]:
    """Store an uploaded file and attach it as the lesson's video, pdf or generic material."""
    lesson = await get_lesson_or_404(db, lesson_id)
    course = await get_course_or_404(db, lesson["course_id"])
    ensure_course_owner(course, user, "upload material to")

    ref = await run_in_threadpool(storage.save, data, filename, "materials")
    mime_type = mime_type or ""
    if mime_type.startswith("video/"):
        field = "video"
        previous = (lesson.get("video") or {}).get("url")
        value = {**(lesson.get("video") or {}), "url": ref}
    elif mime_type == "application/pdf":
        field = "pdf"
        previous = (lesson.get("pdf") or {}).get("url")
        value = {**(lesson.get("pdf") or {}), "url": ref}
    else:
        field = "material"
        previous = lesson.get("material")
        value = ref

    await db.lessons.update_one(
        {"id": lesson_id},
        {"$set": {field: value, "updated_at": datetime.utcnow()}},
    )
    if previous:
        storage.delete(previous)
    return await get_lesson_or_404(db, lesson_id)
