import pytest

from lms_backend import notifications
from lms_backend.curriculum_models import NotificationCreate
from lms_backend.errors import ForbiddenError, NotFoundError, ValidationError


async def test_notify_and_read(db, student):
    created = await notifications.notify(db, student["id"], "Hello", "Welcome aboard")

    assert await notifications.unread_count(db, student) == 1
    read = await notifications.mark_as_read(db, student, created["id"])
    assert read["read"] is True
    assert read["read_at"] is not None
    assert await notifications.unread_count(db, student) == 0


async def test_list_is_newest_first_and_limited(db, student):
    for i in range(3):
        await notifications.notify(db, student["id"], f"Title {i}", "msg")

    listed = await notifications.list_notifications(db, student, limit=2)

    assert len(listed) == 2
    assert listed[0]["created_at"] >= listed[1]["created_at"]


async def test_mark_all_as_read(db, student, instructor):
    await notifications.notify(db, student["id"], "One", "msg")
    await notifications.notify(db, student["id"], "Two", "msg")
    await notifications.notify(db, instructor["id"], "Other", "msg")

    assert await notifications.mark_all_as_read(db, student) == 2
    assert await notifications.unread_count(db, instructor) == 1


async def test_only_owner_reads_and_owner_or_admin_deletes(db, student, instructor, admin):
    created = await notifications.notify(db, student["id"], "Private", "msg")

    with pytest.raises(ForbiddenError):
        await notifications.mark_as_read(db, instructor, created["id"])
    with pytest.raises(ForbiddenError):
        await notifications.delete_notification(db, instructor, created["id"])

    await notifications.delete_notification(db, admin, created["id"])
    with pytest.raises(NotFoundError):
        await notifications.get_notification_or_404(db, created["id"])


async def test_create_for_role(db, student, instructor, admin, make_user):
    await make_user(name="Second Student")

    count = await notifications.create_notification(
        db, NotificationCreate(title="Exam week", message="Good luck", to_role="student")
    )

    assert count == 2
    assert await notifications.unread_count(db, instructor) == 0


async def test_create_for_everyone(db, student, instructor, admin):
    count = await notifications.create_notification(
        db, NotificationCreate(title="Maintenance", message="Tonight", to_all=True)
    )
    assert count == 3


async def test_create_for_single_user(db, student):
    count = await notifications.create_notification(
        db, NotificationCreate(title="Hi", message="Just you", user_id=student["id"])
    )
    assert count == 1
    with pytest.raises(NotFoundError):
        await notifications.create_notification(
            db, NotificationCreate(title="Hi", message="Nobody", user_id="missing")
        )


async def test_create_needs_a_target(db):
    with pytest.raises(ValidationError):
        await notifications.create_notification(db, NotificationCreate(title="Hi", message="?"))
