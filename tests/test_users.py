import pytest

from conftest import auth_headers
from lms_backend import auth, users
from lms_backend.enrollments import enroll
from lms_backend.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from lms_backend.models import DetailsUpdate, PasswordUpdate, User, UserCreate, UserUpdate


def new_user(**overrides):
    data = {"email": "Linus@Example.com", "name": "Linus", "password": "secret123", **overrides}
    return UserCreate(**data)


async def test_insert_user_maps_duplicate_email_to_conflict(db, student):
    twin = User(email=student["email"], name="Twin").dict()

    with pytest.raises(ConflictError):
        await auth.insert_user(db, twin)
    assert await db.users.count_documents({"email": student["email"]}) == 1


async def test_create_user_with_any_role(db):
    created = await users.create_user(db, new_user(role="instructor", bio="Kernel hacker"))

    assert created["email"] == "linus@example.com"
    assert created["role"] == "instructor"
    assert created["bio"] == "Kernel hacker"
    assert auth.verify_password("secret123", created["password_hash"])

    with pytest.raises(ConflictError):
        await users.create_user(db, new_user(email="LINUS@example.com"))


async def test_list_users_filters_by_role_and_search(db, student, instructor, admin):
    instructors = await users.list_users(db, role="instructor")
    assert [u["id"] for u in instructors] == [instructor["id"]]

    found = await users.list_users(db, search="hopper")
    assert [u["id"] for u in found] == [instructor["id"]]

    assert len(await users.list_users(db, search=".*")) == 0
    assert len(await users.list_users(db)) == 3


async def test_update_user_changes_role_and_guards_email(db, student, instructor):
    updated = await users.update_user(db, student["id"], UserUpdate(role="instructor", bio=None))
    assert updated["role"] == "instructor"

    with pytest.raises(ConflictError):
        await users.update_user(db, student["id"], UserUpdate(email=instructor["email"].upper()))

    with pytest.raises(NotFoundError):
        await users.update_user(db, "missing", UserUpdate(name="Ghost"))


async def test_delete_user_cascades(db, admin, student, course, enrolled):
    await db.notifications.insert_one({"id": "n1", "user_id": student["id"]})

    await users.delete_user(db, admin, student["id"])

    assert await db.users.find_one({"id": student["id"]}) is None
    assert await db.enrollments.count_documents({"user_id": student["id"]}) == 0
    assert await db.notifications.count_documents({"user_id": student["id"]}) == 0


async def test_admin_cannot_delete_self(db, admin):
    with pytest.raises(ForbiddenError):
        await users.delete_user(db, admin, admin["id"])
    assert await db.users.find_one({"id": admin["id"]}) is not None


async def test_reset_password_hands_back_a_working_password(db, student):
    result = await users.reset_password(db, student["id"])

    stored = await users.get_user_or_404(db, student["id"])
    assert auth.verify_password(result["new_password"], stored["password_hash"])


async def test_profile_is_visible_to_self_and_admin(db, make_user, admin, student, course, enrolled):
    own = await users.get_profile(db, student, student["id"])
    assert own["user"]["id"] == student["id"]
    assert [e["course_id"] for e in own["enrollments"]] == [course["id"]]

    assert (await users.get_profile(db, admin, student["id"]))["user"]["id"] == student["id"]

    other = await make_user(name="Nosy Neighbour")
    with pytest.raises(ForbiddenError):
        await users.get_profile(db, other, student["id"])


async def test_update_details(db, student, instructor):
    updated = await users.update_details(db, student, DetailsUpdate(email="ADA@Example.com", name=None, bio="Counts things"))

    assert updated["email"] == "ada@example.com"
    assert updated["name"] == student["name"]
    assert updated["bio"] == "Counts things"

    with pytest.raises(ConflictError):
        await users.update_details(db, student, DetailsUpdate(email=instructor["email"]))


async def test_update_password_checks_the_current_one(db):
    user = await users.create_user(db, new_user())

    with pytest.raises(ForbiddenError):
        await users.update_password(db, user, PasswordUpdate(current_password="wrong-pass", new_password="another1"))

    updated = await users.update_password(db, user, PasswordUpdate(current_password="secret123", new_password="another1"))
    assert auth.verify_password("another1", updated["password_hash"])
    assert not auth.verify_password("secret123", updated["password_hash"])


async def test_update_password_without_a_stored_hash(db, student):
    with pytest.raises(ForbiddenError):
        await users.update_password(db, student, PasswordUpdate(current_password="anything", new_password="another1"))


async def test_upload_avatar(db, make_user, student, storage):
    with pytest.raises(ValidationError):
        await users.upload_avatar(db, student, student["id"], b"%PDF", "cv.pdf", "application/pdf", storage)

    first = await users.upload_avatar(db, student, student["id"], b"\x89PNG", "me.png", "image/png", storage)
    assert first["avatar_url"].startswith("/uploads/avatars/")

    second = await users.upload_avatar(db, student, student["id"], b"\x89PNG2", "me2.png", "image/png", storage)
    assert storage.resolve(second["avatar_url"]).exists()
    assert not storage.resolve(first["avatar_url"]).exists()

    other = await make_user(name="Someone Else")
    with pytest.raises(ForbiddenError):
        await users.upload_avatar(db, other, student["id"], b"\x89PNG", "x.png", "image/png", storage)


async def test_delete_user_removes_avatar(db, admin, student, storage):
    uploaded = await users.upload_avatar(db, student, student["id"], b"\x89PNG", "me.png", "image/png", storage)

    await users.delete_user(db, admin, student["id"], storage)

    assert not storage.resolve(uploaded["avatar_url"]).exists()


@pytest.mark.asyncio
async def test_user_admin_routes(client, admin, student):
    r = await client.get("/api/users", headers=auth_headers(student))
    assert r.status_code == 403

    r = await client.get("/api/users", params={"role": "student"}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert [u["id"] for u in r.json()] == [student["id"]]
    assert "password_hash" not in r.json()[0]

    r = await client.post("/api/users", headers=auth_headers(admin), json={
        "email": "teacher@example.com", "name": "Teacher", "password": "secret123", "role": "instructor",
    })
    assert r.status_code == 201
    created = r.json()
    assert created["role"] == "instructor"

    r = await client.put(f"/api/users/{created['id']}", headers=auth_headers(admin), json={"bio": "Teaches"})
    assert r.status_code == 200
    assert r.json()["bio"] == "Teaches"

    r = await client.put(f"/api/users/{created['id']}/reset-password", headers=auth_headers(admin))
    assert r.status_code == 200
    r = await client.post("/api/auth/login", json={"email": "teacher@example.com", "password": r.json()["new_password"]})
    assert r.status_code == 200

    r = await client.delete(f"/api/users/{admin['id']}", headers=auth_headers(admin))
    assert r.status_code == 403
    r = await client.delete(f"/api/users/{created['id']}", headers=auth_headers(admin))
    assert r.status_code == 200
    r = await client.get(f"/api/users/{created['id']}", headers=auth_headers(admin))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_self_service_routes(client, db, student, course):
    await enroll(db, student, course["id"])

    r = await client.get(f"/api/users/{student['id']}/profile", headers=auth_headers(student))
    assert r.status_code == 200
    assert r.json()["user"]["name"] == student["name"]
    assert len(r.json()["enrollments"]) == 1

    r = await client.put("/api/auth/update-details", headers=auth_headers(student), json={"bio": "Learning"})
    assert r.status_code == 200
    assert r.json()["bio"] == "Learning"

    r = await client.put("/api/auth/update-password", headers=auth_headers(student), json={
        "current_password": "nope12", "new_password": "another1",
    })
    assert r.status_code == 403

    r = await client.put(
        f"/api/users/{student['id']}/photo",
        headers=auth_headers(student),
        files={"file": ("me.png", b"\x89PNG", "image/png")},
    )
    assert r.status_code == 200
    assert r.json()["avatar_url"].startswith("/uploads/avatars/")


@pytest.mark.asyncio
async def test_update_password_route_issues_a_fresh_token(client, db):
    r = await client.post("/api/auth/register", json={"email": "pat@example.com", "password": "secret123", "name": "Pat"})
    token = r.json()["access_token"]

    r = await client.put("/api/auth/update-password", headers={"Authorization": f"Bearer {token}"}, json={
        "current_password": "secret123", "new_password": "another1",
    })
    assert r.status_code == 200
    assert r.json()["access_token"]
    assert "token=" in r.headers["set-cookie"]

    r = await client.post("/api/auth/login", json={"email": "pat@example.com", "password": "another1"})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_course_photo_route(client, instructor, student, course):
    r = await client.put(
        f"/api/courses/{course['id']}/photo",
        headers=auth_headers(student),
        files={"file": ("cover.png", b"\x89PNG", "image/png")},
    )
    assert r.status_code == 403

    r = await client.put(
        f"/api/courses/{course['id']}/photo",
        headers=auth_headers(instructor),
        files={"file": ("cover.png", b"\x89PNG", "image/png")},
    )
    assert r.status_code == 200
    assert r.json()["thumbnail_url"].startswith("/uploads/courses/")

    r = await client.put(
        f"/api/courses/{course['id']}/photo",
        headers=auth_headers(instructor),
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert r.status_code == 400
