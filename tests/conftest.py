import asyncio

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from lms_backend import lessons
from lms_backend.auth import token_for_user
from lms_backend.certificates import get_certificate_renderer
from lms_backend.curriculum_models import LessonCreate
from lms_backend.database import ensure_indexes, get_db
from lms_backend.enrollments import enroll
from lms_backend.models import Course, User, UserRole, new_id
from lms_backend.server import app
from lms_backend.storage import LocalFileStorage, get_storage


class FakeRenderer:
    """Records render requests instead of drawing a PDF."""

    def __init__(self):
        self.calls = []
        self.fail = False

    async def __call__(self, data):
        self.calls.append(data)
        # let concurrent callers interleave here
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("renderer unavailable")
        return f"/uploads/certificates/{data['user_id']}-{data['course_id']}-{len(self.calls)}.pdf"


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["lms_test"]
    await ensure_indexes(database)
    return database


@pytest.fixture
def storage(tmp_path):
    store = LocalFileStorage(root=tmp_path / "uploads", max_size_mb=1)
    store.init()
    return store


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def make_user(db):
    async def _make(role=UserRole.STUDENT, name="Test User"):
        user = User(email=f"{new_id()}@example.com", name=name, role=role).dict()
        await db.users.insert_one(user)
        return user
    return _make


@pytest.fixture
async def student(make_user):
    return await make_user(UserRole.STUDENT, "Ada Learner")


@pytest.fixture
async def instructor(make_user):
    return await make_user(UserRole.INSTRUCTOR, "Grace Hopper")


@pytest.fixture
async def admin(make_user):
    return await make_user(UserRole.ADMIN, "Root Admin")


@pytest.fixture
def make_course(db):
    """Insert a course owned by ``author`` with ``lesson_count`` lessons."""
    async def _make(author, lesson_count=3, published=True, title="Python Basics"):
        course = Course(
            title=title,
            description="An introductory course",
            category="Programming",
            author_id=author["id"],
            is_published=published,
            is_approved=published,
        ).dict()
        await db.courses.insert_one(course)
        for i in range(lesson_count):
            await lessons.create_lesson(db, author, course["id"], LessonCreate(
                title=f"Lesson {i + 1}",
                content=f"Content of lesson {i + 1}",
            ))
        return course
    return _make


@pytest.fixture
async def course(make_course, instructor):
    return await make_course(instructor)


@pytest.fixture
async def enrolled(db, student, course):
    return await enroll(db, student, course["id"])


async def course_lessons(db, course_id):
    return await db.lessons.find({"course_id": course_id}).sort("order", 1).to_list(None)


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for_user(user)}"}


@pytest.fixture
async def client(db, storage, renderer):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_certificate_renderer] = lambda: renderer
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
