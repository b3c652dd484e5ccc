"""Per-lesson progress and sequential access to a course's lessons.

Each progress change is followed by an explicit ``enrollments.recompute``
for the same (user, course) pair.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError

from .courses import get_course_or_404, is_course_owner, can_preview
from .enrollments import find_enrollment, get_active_enrollment, recompute, touch
from .errors import ForbiddenError, NotFoundError
from .lessons import get_lesson_or_404, get_lesson_at
from .models import LessonProgress, ProgressStatus

logger = logging.getLogger(__name__)


async def find_progress(db, user_id: str, lesson_id: str) -> Optional[Dict[str, Any]]:
    return await db.lesson_progress.find_one({"user_id": user_id, "lesson_id": lesson_id})

async def _insert_progress(db, progress: dict) -> Dict[str, Any]:
    try:
        await db.lesson_progress.insert_one(progress)
    except DuplicateKeyError:
        # Another request created it first
        return await find_progress(db, progress["user_id"], progress["lesson_id"])
    return progress

def _result(lesson: dict, progress: Optional[dict], enrollment: Optional[dict]) -> Dict[str, Any]:
    return {
        "lesson": lesson,
        "progress": progress,
        "completion_percentage": enrollment["completion_percentage"] if enrollment else None,
    }


async def view_lesson(db, user: dict, lesson_id: str) -> Dict[str, Any]:
    """Open a lesson, enforcing that the previous one has been completed.

    The first view creates an ``in-progress`` record. Authors and admins
    preview without gating or progress tracking.
    """
    lesson = await get_lesson_or_404(db, lesson_id)
    course = await get_course_or_404(db, lesson["course_id"])
    if is_course_owner(course, user):
        return _result(lesson, None, None)
    if not can_preview(course, user):
        raise NotFoundError(f"Lesson not found with id of {lesson_id}")

    if lesson["order"] > 1:
        previous = await get_lesson_at(db, lesson["course_id"], lesson["order"] - 1)
        if previous is not None:
            previous_progress = await find_progress(db, user["id"], previous["id"])
            if not previous_progress or previous_progress["status"] != ProgressStatus.COMPLETED:
                raise ForbiddenError("You must complete the previous lesson first")

    now = datetime.utcnow()
    progress = await find_progress(db, user["id"], lesson_id)
    changed = False
    if not progress:
        progress = await _insert_progress(db, LessonProgress(
            user_id=user["id"],
            course_id=lesson["course_id"],
            lesson_id=lesson_id,
            status=ProgressStatus.IN_PROGRESS,
        ).dict())
        changed = True
    elif progress["status"] == ProgressStatus.NOT_STARTED:
        await db.lesson_progress.update_one(
            {"id": progress["id"]},
            {"$set": {"status": ProgressStatus.IN_PROGRESS.value, "last_accessed_at": now}},
        )
        progress.update(status=ProgressStatus.IN_PROGRESS.value, last_accessed_at=now)
        changed = True
    else:
        await db.lesson_progress.update_one({"id": progress["id"]}, {"$set": {"last_accessed_at": now}})
        progress["last_accessed_at"] = now

    await touch(db, user["id"], lesson["course_id"])
    if changed:
        enrollment = await recompute(db, user["id"], lesson["course_id"])
    else:
        enrollment = await find_enrollment(db, user["id"], lesson["course_id"])
    return _result(lesson, progress, enrollment)

async def complete_lesson(db, user: dict, lesson_id: str) -> Dict[str, Any]:
    """Mark a lesson completed; the first completion date is kept on repeats."""
    lesson = await get_lesson_or_404(db, lesson_id)
    course_id = lesson["course_id"]
    await get_active_enrollment(db, user["id"], course_id)

    now = datetime.utcnow()
    progress = await find_progress(db, user["id"], lesson_id)
    if not progress:
        progress = await _insert_progress(db, LessonProgress(
            user_id=user["id"],
            course_id=course_id,
            lesson_id=lesson_id,
            status=ProgressStatus.COMPLETED,
            completion_date=now,
        ).dict())
    if progress["status"] != ProgressStatus.COMPLETED:
        update = {
            "status": ProgressStatus.COMPLETED.value,
            "completion_date": progress.get("completion_date") or now,
            "last_accessed_at": now,
        }
        await db.lesson_progress.update_one({"id": progress["id"]}, {"$set": update})

    await touch(db, user["id"], course_id)
    enrollment = await recompute(db, user["id"], course_id)
    return _result(lesson, await find_progress(db, user["id"], lesson_id), enrollment)

async def get_course_progress(db, user: dict, course_id: str) -> Dict[str, Any]:
    await get_course_or_404(db, course_id)
    enrollment = await find_enrollment(db, user["id"], course_id)
    if not enrollment:
        raise ForbiddenError("You must be enrolled to view progress")

    records = await db.lesson_progress.find({
        "user_id": user["id"],
        "course_id": course_id,
    }).sort("created_at", 1).to_list(None)

    return {
        "course_id": course_id,
        "completion_percentage": enrollment["completion_percentage"],
        "status": enrollment["status"],
        "completion_date": enrollment.get("completion_date"),
        "last_accessed_at": enrollment.get("last_accessed_at"),
        "lesson_progress": records,
    }
