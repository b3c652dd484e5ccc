import asyncio
import random

import pytest

from conftest import course_lessons
from lms_backend import lessons, progress
from lms_backend.curriculum_models import LessonCreate, LessonUpdate
from lms_backend.enrollments import find_enrollment
from lms_backend.errors import ForbiddenError, NotFoundError, ValidationError


async def orders(db, course_id):
    return [lesson["order"] for lesson in await course_lessons(db, course_id)]

async def titles(db, course_id):
    return [lesson["title"] for lesson in await course_lessons(db, course_id)]


async def test_create_appends_at_the_end(db, instructor, course):
    lesson = await lessons.create_lesson(db, instructor, course["id"], LessonCreate(title="Extra", content="x"))

    assert lesson["order"] == 4
    assert await orders(db, course["id"]) == [1, 2, 3, 4]


async def test_create_requires_course_owner(db, make_user, course):
    other = await make_user(role="instructor", name="Someone Else")
    with pytest.raises(ForbiddenError):
        await lessons.create_lesson(db, other, course["id"], LessonCreate(title="Nope", content="x"))


async def test_admin_can_add_lessons_to_any_course(db, admin, course):
    lesson = await lessons.create_lesson(db, admin, course["id"], LessonCreate(title="By admin", content="x"))
    assert lesson["order"] == 4


async def test_reorder_later_shifts_lessons_in_between_back(db, instructor, course):
    first = (await course_lessons(db, course["id"]))[0]

    moved = await lessons.reorder_lesson(db, instructor, first["id"], 3)

    assert moved["order"] == 3
    assert await titles(db, course["id"]) == ["Lesson 2", "Lesson 3", "Lesson 1"]
    assert await orders(db, course["id"]) == [1, 2, 3]


async def test_reorder_earlier_shifts_lessons_in_between_forward(db, instructor, course):
    last = (await course_lessons(db, course["id"]))[-1]

    await lessons.reorder_lesson(db, instructor, last["id"], 1)

    assert await titles(db, course["id"]) == ["Lesson 3", "Lesson 1", "Lesson 2"]
    assert await orders(db, course["id"]) == [1, 2, 3]


async def test_reorder_to_same_position_is_noop(db, instructor, course):
    second = (await course_lessons(db, course["id"]))[1]
    await lessons.reorder_lesson(db, instructor, second["id"], 2)
    assert await titles(db, course["id"]) == ["Lesson 1", "Lesson 2", "Lesson 3"]


@pytest.mark.parametrize("target", [0, 4, -1])
async def test_reorder_out_of_range_is_rejected(db, instructor, course, target):
    first = (await course_lessons(db, course["id"]))[0]
    with pytest.raises(ValidationError):
        await lessons.reorder_lesson(db, instructor, first["id"], target)
    assert await titles(db, course["id"]) == ["Lesson 1", "Lesson 2", "Lesson 3"]


async def test_delete_closes_the_gap(db, instructor, course):
    middle = (await course_lessons(db, course["id"]))[1]

    await lessons.delete_lesson(db, instructor, middle["id"])

    assert await titles(db, course["id"]) == ["Lesson 1", "Lesson 3"]
    assert await orders(db, course["id"]) == [1, 2]
    with pytest.raises(NotFoundError):
        await lessons.get_lesson_or_404(db, middle["id"])


async def test_orders_stay_dense_through_random_edits(db, instructor, make_course):
    course = await make_course(instructor, lesson_count=5)
    rng = random.Random(1234)

    for step in range(40):
        current = await course_lessons(db, course["id"])
        action = rng.choice(["create", "reorder", "delete"]) if current else "create"
        if action == "create":
            await lessons.create_lesson(db, instructor, course["id"], LessonCreate(title=f"New {step}", content="x"))
        elif action == "reorder":
            lesson = rng.choice(current)
            await lessons.reorder_lesson(db, instructor, lesson["id"], rng.randint(1, len(current)))
        else:
            await lessons.delete_lesson(db, instructor, rng.choice(current)["id"])

        count = await lessons.count_lessons(db, course["id"])
        assert await orders(db, course["id"]) == list(range(1, count + 1))


async def test_delete_removes_progress_and_recomputes(db, instructor, student, course, enrolled):
    first, second, third = await course_lessons(db, course["id"])
    await progress.complete_lesson(db, student, first["id"])
    await progress.complete_lesson(db, student, second["id"])
    assert (await find_enrollment(db, student["id"], course["id"]))["completion_percentage"] == 67

    await lessons.delete_lesson(db, instructor, third["id"])

    enrollment = await find_enrollment(db, student["id"], course["id"])
    assert enrollment["completion_percentage"] == 100
    assert enrollment["status"] == "completed"


async def test_create_lowers_existing_percentages(db, instructor, student, course, enrolled):
    first = (await course_lessons(db, course["id"]))[0]
    await progress.complete_lesson(db, student, first["id"])

    await lessons.create_lesson(db, instructor, course["id"], LessonCreate(title="Lesson 4", content="x"))

    enrollment = await find_enrollment(db, student["id"], course["id"])
    assert enrollment["completion_percentage"] == 25


async def test_update_lesson_keeps_order(db, instructor, course):
    first = (await course_lessons(db, course["id"]))[0]

    updated = await lessons.update_lesson(db, instructor, first["id"], LessonUpdate(title="Renamed", content_type="video"))

    assert updated["title"] == "Renamed"
    assert updated["content_type"] == "video"
    assert updated["order"] == 1


async def test_list_lessons_hides_unpublished_course_from_students(db, instructor, student, make_course):
    draft = await make_course(instructor, lesson_count=2, published=False)
    with pytest.raises(NotFoundError):
        await lessons.list_lessons(db, draft["id"], student)
    assert len(await lessons.list_lessons(db, draft["id"], instructor)) == 2


async def test_upload_material_routes_by_mime_type(db, instructor, course, storage):
    first = (await course_lessons(db, course["id"]))[0]

    lesson = await lessons.upload_material(db, instructor, first["id"], b"%PDF-1.4", "notes.pdf", "application/pdf", storage)
    assert lesson["pdf"]["url"].startswith("/uploads/materials/")
    assert storage.resolve(lesson["pdf"]["url"]).exists()

    lesson = await lessons.upload_material(db, instructor, first["id"], b"data", "clip.mp4", "video/mp4", storage)
    assert lesson["video"]["url"].endswith(".mp4")

    old_ref = lesson["pdf"]["url"]
    lesson = await lessons.upload_material(db, instructor, first["id"], b"%PDF-1.5", "v2.pdf", "application/pdf", storage)
    assert lesson["pdf"]["url"] != old_ref
    assert not storage.resolve(old_ref).exists()

    lesson = await lessons.upload_material(db, instructor, first["id"], b"a,b", "sheet.csv", "text/csv", storage)
    assert lesson["material"].endswith(".csv")


async def test_upload_material_enforces_size_limit(db, instructor, course, storage):
    first = (await course_lessons(db, course["id"]))[0]
    with pytest.raises(ValidationError):
        await lessons.upload_material(db, instructor, first["id"], b"x" * (1024 * 1024 + 1), "big.bin", None, storage)


@pytest.fixture
def slow_count(monkeypatch):
    """Yield to the event loop between counting and writing, as a real driver does."""
    count = lessons.count_lessons

    async def _count(db, course_id):
        total = await count(db, course_id)
        await asyncio.sleep(0)
        return total

    monkeypatch.setattr(lessons, "count_lessons", _count)


async def test_concurrent_creates_stay_dense(db, instructor, course, slow_count):
    await asyncio.gather(*(
        lessons.create_lesson(db, instructor, course["id"], LessonCreate(title=f"Extra {i}", content="x"))
        for i in range(4)
    ))

    assert await orders(db, course["id"]) == [1, 2, 3, 4, 5, 6, 7]
    assert len(lessons.course_locks) == 0


async def test_concurrent_reorders_stay_dense(db, instructor, course, slow_count):
    first, _, last = await course_lessons(db, course["id"])

    await asyncio.gather(
        lessons.reorder_lesson(db, instructor, first["id"], 3),
        lessons.reorder_lesson(db, instructor, last["id"], 1),
    )

    assert await orders(db, course["id"]) == [1, 2, 3]
    assert await titles(db, course["id"]) == ["Lesson 3", "Lesson 2", "Lesson 1"]


async def test_concurrent_create_and_delete_stay_dense(db, instructor, course, slow_count):
    first = (await course_lessons(db, course["id"]))[0]

    await asyncio.gather(
        lessons.delete_lesson(db, instructor, first["id"]),
        lessons.create_lesson(db, instructor, course["id"], LessonCreate(title="Extra", content="x")),
    )

    assert await orders(db, course["id"]) == [1, 2, 3]
