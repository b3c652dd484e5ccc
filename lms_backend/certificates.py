"""Course completion certificates.

Issuance is idempotent per (user, course): once an enrollment carries a
certificate reference, later requests return it without rendering again.
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict

from fastapi.concurrency import run_in_threadpool
from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfgen import canvas

from .courses import get_course_or_404
from .enrollments import find_enrollment
from .errors import ForbiddenError, InternalError, NotFoundError
from .locks import KeyedLock
from .models import NotificationType, RelatedModel, new_id
from .notifications import notify
from .storage import LocalFileStorage, get_storage

logger = logging.getLogger(__name__)

Renderer = Callable[[Dict[str, Any]], Awaitable[str]]

# Serializes check-then-render per (user, course)
certificate_locks = KeyedLock()


def format_completion_date(value: datetime) -> str:
    return f"{value:%B} {value.day}, {value.year}"


class PdfCertificateRenderer:
    """Draws a landscape A4 certificate with reportlab and stores it on disk."""

    def __init__(self, storage: LocalFileStorage):
        self.storage = storage

    def render(self, data: Dict[str, Any]) -> str:
        filename = f"certificate-{data['user_id']}-{data['course_id']}-{data['certificate_id']}.pdf"
        path = self.storage.path_for("certificates", filename)
        path.parent.mkdir(parents=True, exist_ok=True)

        width, height = landscape(A4)
        pdf = canvas.Canvas(str(path), pagesize=(width, height))
        pdf.setTitle(f"Certificate - {data['course_name']}")

        pdf.setLineWidth(3)
        pdf.rect(30, 30, width - 60, height - 60)

        center = width / 2
        pdf.setFont("Helvetica-Bold", 30)
        pdf.drawCentredString(center, height - 120, "CERTIFICATE OF COMPLETION")
        pdf.setFont("Helvetica", 16)
        pdf.drawCentredString(center, height - 175, "This is to certify that")
        pdf.setFont("Helvetica-Bold", 24)
        pdf.drawCentredString(center, height - 220, data["user_name"])
        pdf.setFont("Helvetica", 16)
        pdf.drawCentredString(center, height - 265, "has successfully completed the course")
        pdf.setFont("Helvetica-Bold", 24)
        pdf.drawCentredString(center, height - 310, data["course_name"])
        pdf.setFont("Helvetica", 16)
        pdf.drawCentredString(center, height - 355, f"on {data['completion_date']}")

        pdf.setFont("Helvetica", 10)
        pdf.drawString(width - 300, 50, f"Certificate ID: {data['certificate_id']}")
        pdf.showPage()
        pdf.save()
        return self.storage.url_for("certificates", filename)

    async def __call__(self, data: Dict[str, Any]) -> str:
        return await run_in_threadpool(self.render, data)


def get_certificate_renderer() -> Renderer:
    return PdfCertificateRenderer(get_storage())


async def issue_certificate(db, user: dict, course_id: str, renderer: Renderer) -> Dict[str, Any]:
    course = await get_course_or_404(db, course_id)

    async with certificate_locks.hold((user["id"], course_id)):
        enrollment = await find_enrollment(db, user["id"], course_id)
        if not enrollment:
            raise ForbiddenError("You are not enrolled in this course")
        if enrollment["completion_percentage"] < 100:
            raise ForbiddenError("You must complete the course before getting a certificate")

        if enrollment.get("certificate_issued") and enrollment.get("certificate_url"):
            return {
                "certificate_id": enrollment.get("certificate_id"),
                "certificate_url": enrollment["certificate_url"],
                "issued_at": enrollment.get("certificate_date"),
                "already_issued": True,
            }

        certificate_id = new_id()
        data = {
            "certificate_id": certificate_id,
            "user_name": user["name"],
            "course_name": course["title"],
            "completion_date": format_completion_date(enrollment.get("completion_date") or datetime.utcnow()),
            "user_id": user["id"],
            "course_id": course_id,
        }
        try:
            certificate_url = await renderer(data)
        except Exception as e:
            logger.exception("Certificate generation failed for user %s, course %s", user["id"], course_id)
            raise InternalError("Error generating certificate") from e

        issued_at = datetime.utcnow()
        await db.enrollments.update_one(
            {"id": enrollment["id"]},
            {"$set": {
                "certificate_issued": True,
                "certificate_id": certificate_id,
                "certificate_url": certificate_url,
                "certificate_date": issued_at,
            }},
        )

    logger.info("Certificate issued to user %s for course %s", user["id"], course_id)
    await notify(
        db,
        user["id"],
        "Certificate issued",
        f"Your certificate for {course['title']} is ready.",
        type=NotificationType.SUCCESS,
        related_model=RelatedModel.COURSE,
        related_id=course_id,
    )
    return {
        "certificate_id": certificate_id,
        "certificate_url": certificate_url,
        "issued_at": issued_at,
        "already_issued": False,
    }

async def verify_certificate(db, user_id: str, course_id: str) -> Dict[str, Any]:
    """Public lookup of an issued certificate."""
    enrollment = await db.enrollments.find_one({
        "user_id": user_id,
        "course_id": course_id,
        "certificate_issued": True,
    })
    if not enrollment:
        raise NotFoundError("Certificate not found or not issued")

    user = await db.users.find_one({"id": user_id}) or {}
    course = await db.courses.find_one({"id": course_id}) or {}
    return {
        "verified": True,
        "certificate": {
            "user": {"name": user.get("name"), "id": user_id},
            "course": {"title": course.get("title"), "id": course_id, "level": course.get("level")},
            "certificate_id": enrollment.get("certificate_id"),
            "issue_date": enrollment.get("certificate_date") or enrollment.get("completion_date"),
            "certificate_url": enrollment["certificate_url"],
        },
    }
