"""Enrollments and the course-level completion aggregate.

``recompute`` is called explicitly by whoever changes progress or the lesson
set of a course; nothing here runs as a save hook.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from .courses import get_course_or_404
from .errors import ConflictError, ForbiddenError, NotFoundError
from .models import Enrollment, EnrollmentStatus, ProgressStatus

logger = logging.getLogger(__name__)


def completion_percentage(completed: int, total: int) -> int:
    """round(100 * completed / total) with halves rounded up; 0 for an empty course."""
    if total <= 0:
        return 0
    return min(100, (200 * completed + total) // (2 * total))


async def find_enrollment(db, user_id: str, course_id: str) -> Optional[Dict[str, Any]]:
    return await db.enrollments.find_one({"user_id": user_id, "course_id": course_id})

async def get_active_enrollment(db, user_id: str, course_id: str) -> Dict[str, Any]:
    enrollment = await find_enrollment(db, user_id, course_id)
    if not enrollment or enrollment["status"] == EnrollmentStatus.DROPPED:
        raise ForbiddenError("You are not enrolled in this course")
    return enrollment


async def recompute(db, user_id: str, course_id: str) -> Optional[Dict[str, Any]]:
    """Refresh one enrollment's completion percentage from its progress records.

    Reaching 100% marks the enrollment completed and stamps the completion
    date once. Falling below 100% later leaves the status alone.
    """
    enrollment = await find_enrollment(db, user_id, course_id)
    if not enrollment:
        return None

    total = await db.lessons.count_documents({"course_id": course_id})
    completed = await db.lesson_progress.count_documents({
        "user_id": user_id,
        "course_id": course_id,
        "status": ProgressStatus.COMPLETED.value,
    })

    update = {"completion_percentage": completion_percentage(completed, total)}
    if update["completion_percentage"] == 100 and enrollment["status"] != EnrollmentStatus.COMPLETED:
        update["status"] = EnrollmentStatus.COMPLETED.value
        if not enrollment.get("completion_date"):
            update["completion_date"] = datetime.utcnow()
        logger.info("User %s completed course %s", user_id, course_id)

    await db.enrollments.update_one({"id": enrollment["id"]}, {"$set": update})
    enrollment.update(update)
    return enrollment

async def touch(db, user_id: str, course_id: str):
    """Record learner activity on an enrollment."""
    await db.enrollments.update_one(
        {"user_id": user_id, "course_id": course_id},
        {"$set": {"last_accessed_at": datetime.utcnow()}},
    )

async def recompute_course(db, course_id: str) -> int:
    """Recompute every enrollment of a course after its lesson set changed."""
    enrollments = await db.enrollments.find({"course_id": course_id}).to_list(None)
    for enrollment in enrollments:
        await recompute(db, enrollment["user_id"], course_id)
    return len(enrollments)


async def enroll(db, user: dict, course_id: str) -> Dict[str, Any]:
    course = await get_course_or_404(db, course_id)
    if not course.get("is_published"):
        raise ForbiddenError("Course is not open for enrollment")

    existing = await find_enrollment(db, user["id"], course_id)
    if existing:
        if existing["status"] != EnrollmentStatus.DROPPED:
            raise ConflictError("Already enrolled in this course")
        await db.enrollments.update_one(
            {"id": existing["id"]},
            {"$set": {"status": EnrollmentStatus.ACTIVE.value, "last_accessed_at": datetime.utcnow()}},
        )
        enrollment = await recompute(db, user["id"], course_id)
    else:
        enrollment = Enrollment(user_id=user["id"], course_id=course_id).dict()
        try:
            await db.enrollments.insert_one(enrollment)
        except DuplicateKeyError:
            raise ConflictError("Already enrolled in this course")
        # Lessons may already be completed from a previous enrollment
        enrollment = await recompute(db, user["id"], course_id)

    logger.info("User %s enrolled in course %s", user["id"], course_id)
    enrollment["course_title"] = course["title"]
    return enrollment

async def unenroll(db, user: dict, course_id: str) -> Dict[str, Any]:
    enrollment = await find_enrollment(db, user["id"], course_id)
    if not enrollment or enrollment["status"] == EnrollmentStatus.DROPPED:
        raise NotFoundError("You are not enrolled in this course")

    await db.enrollments.update_one(
        {"id": enrollment["id"]},
        {"$set": {"status": EnrollmentStatus.DROPPED.value}},
    )
    enrollment["status"] = EnrollmentStatus.DROPPED.value
    return enrollment

async def list_enrollments(db, user: dict) -> List[Dict[str, Any]]:
    enrollments = await db.enrollments.find({
        "user_id": user["id"],
        "status": {"$ne": EnrollmentStatus.DROPPED.value},
    }).to_list(None)

    results = []
    for enrollment in enrollments:
        course = await db.courses.find_one({"id": enrollment["course_id"]})
        if course:
            enrollment["course_title"] = course["title"]
            results.append(enrollment)
    return results
