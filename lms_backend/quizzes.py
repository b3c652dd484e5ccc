"""Quizzes: authoring, answer scoring and attempt recording.

Attempts live on the learner's enrollment (``quiz_scores``); every
submission appends a new entry.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from .courses import get_course_or_404, ensure_course_owner, can_preview
from .curriculum_models import QuizCreate, QuizUpdate
from .enrollments import find_enrollment, get_active_enrollment
from .errors import ForbiddenError, NotFoundError, ValidationError
from .locks import KeyedLock
from .models import Quiz, QuizAttempt, QuestionType, UserRole

logger = logging.getLogger(__name__)

# Serializes check-attempts-then-append per (user, quiz)
submission_locks = KeyedLock()


class Score(BaseModel):
    """Outcome of scoring one set of answers."""
    score: float
    max_score: float
    percentage: float
    passed: bool


def _is_blank(answer: Any) -> bool:
    return answer is None or answer == "" or answer == []

def answer_matches(question: Dict[str, Any], answer: Any) -> bool:
    """Exact match for choice questions, trimmed case-insensitive match for fill-in-blank."""
    correct = question.get("correct_answer")
    qtype = question.get("question_type", QuestionType.MULTIPLE_CHOICE.value)
    if qtype in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
        return answer == correct
    if qtype == QuestionType.FILL_IN_BLANK:
        return (
            isinstance(answer, str)
            and isinstance(correct, str)
            and answer.strip().lower() == correct.strip().lower()
        )
    return False

def score_answers(questions: Sequence[Dict[str, Any]], answers: Sequence[Any], passing_score: float) -> Score:
    """Score answers positionally against ``questions``.

    A quiz worth zero points scores 0%.
    """
    score = 0.0
    max_score = 0.0
    for index, question in enumerate(questions):
        points = question.get("points", 1)
        max_score += points
        answer = answers[index] if index < len(answers) else None
        if _is_blank(answer):
            continue
        if answer_matches(question, answer):
            score += points

    percentage = (score / max_score) * 100 if max_score else 0.0
    return Score(score=score, max_score=max_score, percentage=percentage, passed=percentage >= passing_score)


def _sees_answers(user: Optional[dict]) -> bool:
    return bool(user) and user.get("role") in (UserRole.ADMIN, UserRole.INSTRUCTOR)

def present_quiz(quiz: dict, user: Optional[dict], attempt: Optional[dict] = None) -> Dict[str, Any]:
    """Quiz as shown to ``user``: learners never see correct answers."""
    quiz = dict(quiz)
    quiz.pop("_id", None)
    quiz["total_points"] = sum(q.get("points", 1) for q in quiz.get("questions", []))
    if not _sees_answers(user):
        quiz["questions"] = [
            {k: v for k, v in q.items() if k != "correct_answer"} for q in quiz.get("questions", [])
        ]
    if attempt is not None:
        quiz["user_score"] = attempt
    return quiz


async def get_quiz_or_404(db, quiz_id: str) -> Dict[str, Any]:
    quiz = await db.quizzes.find_one({"id": quiz_id})
    if not quiz:
        raise NotFoundError(f"Quiz not found with id of {quiz_id}")
    return quiz

async def _check_lesson(db, course_id: str, lesson_id: Optional[str]):
    if not lesson_id:
        return
    lesson = await db.lessons.find_one({"id": lesson_id})
    if not lesson:
        raise NotFoundError(f"Lesson not found with id of {lesson_id}")
    if lesson["course_id"] != course_id:
        raise ValidationError("Lesson does not belong to this course")

def _ensure_visible(course: dict, user: Optional[dict]):
    if not can_preview(course, user):
        raise ForbiddenError("Course not published or you're not authorized to access its quizzes")


async def create_quiz(db, user: dict, course_id: str, data: QuizCreate) -> Dict[str, Any]:
    course = await get_course_or_404(db, course_id)
    ensure_course_owner(course, user, "add a quiz to")
    await _check_lesson(db, course_id, data.lesson_id)

    quiz = Quiz(course_id=course_id, **data.dict()).dict()
    await db.quizzes.insert_one(quiz)
    return quiz

async def update_quiz(db, user: dict, quiz_id: str, data: QuizUpdate) -> Dict[str, Any]:
    quiz = await get_quiz_or_404(db, quiz_id)
    course = await get_course_or_404(db, quiz["course_id"])
    ensure_course_owner(course, user, "update quizzes of")

    update_data = data.dict(exclude_unset=True)
    if update_data.get("lesson_id") and update_data["lesson_id"] != quiz.get("lesson_id"):
        await _check_lesson(db, course["id"], update_data["lesson_id"])
    update_data["updated_at"] = datetime.utcnow()
    await db.quizzes.update_one({"id": quiz_id}, {"$set": update_data})
    return await get_quiz_or_404(db, quiz_id)

async def delete_quiz(db, user: dict, quiz_id: str):
    """Delete a quiz and every recorded attempt at it."""
    quiz = await get_quiz_or_404(db, quiz_id)
    course = await get_course_or_404(db, quiz["course_id"])
    ensure_course_owner(course, user, "delete quizzes of")

    await db.enrollments.update_many(
        {"quiz_scores.quiz_id": quiz_id},
        {"$pull": {"quiz_scores": {"quiz_id": quiz_id}}},
    )
    await db.quizzes.delete_one({"id": quiz_id})

async def list_quizzes(db, course_id: str, user: Optional[dict] = None) -> List[Dict[str, Any]]:
    course = await get_course_or_404(db, course_id)
    _ensure_visible(course, user)
    quizzes = await db.quizzes.find({"course_id": course_id}).sort("created_at", 1).to_list(None)
    return [present_quiz(quiz, user) for quiz in quizzes]

async def get_quiz(db, quiz_id: str, user: Optional[dict] = None) -> Dict[str, Any]:
    quiz = await get_quiz_or_404(db, quiz_id)
    course = await get_course_or_404(db, quiz["course_id"])
    _ensure_visible(course, user)

    attempt = None
    if user and user.get("role") == UserRole.STUDENT:
        enrollment = await find_enrollment(db, user["id"], course["id"])
        attempts = [a for a in (enrollment or {}).get("quiz_scores", []) if a["quiz_id"] == quiz_id]
        if attempts:
            attempt = attempts[-1]
    return present_quiz(quiz, user, attempt)


async def submit_quiz(db, user: dict, quiz_id: str, answers: Sequence[Any]) -> Dict[str, Any]:
    """Score a submission and append it to the learner's attempt history."""
    quiz = await get_quiz_or_404(db, quiz_id)

    async with submission_locks.hold((user["id"], quiz_id)):
        enrollment = await get_active_enrollment(db, user["id"], quiz["course_id"])
        previous = [a for a in enrollment.get("quiz_scores", []) if a["quiz_id"] == quiz_id]
        if len(previous) >= quiz["max_attempts"] and not quiz["allow_retake"]:
            raise ForbiddenError("You have exceeded the maximum number of attempts for this quiz")

        result = score_answers(quiz.get("questions", []), answers or [], quiz["passing_score"])
        attempt = QuizAttempt(
            quiz_id=quiz_id,
            score=result.score,
            max_score=result.max_score,
            passed=result.passed,
        ).dict()
        await db.enrollments.update_one(
            {"id": enrollment["id"]},
            {
                "$push": {"quiz_scores": attempt},
                "$set": {"last_accessed_at": datetime.utcnow()},
            },
        )

    logger.info(
        "User %s scored %s/%s on quiz %s (passed=%s)",
        user["id"], result.score, result.max_score, quiz_id, result.passed,
    )
    return {
        **result.dict(),
        "passing_score": quiz["passing_score"],
        "attempt_number": len(previous) + 1,
    }
