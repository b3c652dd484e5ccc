from fastapi import FastAPI, APIRouter, Depends, File, HTTPException, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.cors import CORSMiddleware
import logging
from typing import List, Optional, Dict, Any

from . import config
from . import certificates, courses, enrollments, lessons, notifications, progress, quizzes, users
from .auth import (
    Token, LoginCredentials, RegisterCredentials,
    token_for_user, register_user, authenticate_user,
    get_current_user_dependency, get_optional_user, require_roles,
)
from .curriculum_models import (
    LessonCreate, LessonUpdate, LessonResponse, LessonView, ReorderRequest, CourseProgress,
    QuizCreate, QuizUpdate, QuizResponse, QuizSubmission, QuizResult,
    CertificateResponse, CertificateVerification, NotificationCreate, NotificationResponse,
)
from .database import mongo, get_db, ensure_indexes
from .errors import LMSError, NotFoundError, ForbiddenError, ValidationError, ConflictError, InternalError
from .models import (
    UserRole, UserResponse, UserCreate, UserUpdate, UserProfile, DetailsUpdate, PasswordUpdate, PasswordReset,
    CourseCreate, CourseUpdate, CourseResponse, PublishRequest, EnrollmentResponse,
)
from .storage import get_storage, init_storage

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app without a prefix
app = FastAPI(title="LMS API", version="1.0.0")

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

authoring = require_roles(UserRole.INSTRUCTOR, UserRole.ADMIN)
admin_only = require_roles(UserRole.ADMIN)

ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InternalError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)

@app.exception_handler(LMSError)
async def lms_error_handler(request: Request, exc: LMSError):
    status_code = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})

# Health check
@api_router.get("/")
async def root():
    return {"message": "LMS API is running!", "version": "1.0.0"}

@api_router.get("/health")
async def health():
    return {"status": "ok", "message": "LMS API is running"}

# Authentication Routes

def _token_response(user: dict) -> Token:
    return Token(
        access_token=token_for_user(user),
        token_type="bearer",
        user=UserResponse(**user).dict(),
    )

def _set_auth_cookie(response: Response, token: Token):
    response.set_cookie(
        config.AUTH_COOKIE_NAME,
        token.access_token,
        httponly=True,
        samesite="lax",
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )

@api_router.post("/auth/register", response_model=Token, status_code=status.HTTP_201_CREATED)
async def register(user_data: RegisterCredentials, db=Depends(get_db)):
    """Register a new user with email and password"""
    user = await register_user(db, user_data)
    return _token_response(user)

@api_router.post("/auth/login", response_model=Token)
async def login(credentials: LoginCredentials, response: Response, db=Depends(get_db)):
    """Login with email and password"""
    user = await authenticate_user(db, credentials)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = _token_response(user)
    _set_auth_cookie(response, token)
    return token

@api_router.get("/auth/me", response_model=UserResponse)
async def get_current_user_info(current_user: dict = Depends(get_current_user_dependency)):
    """Get current authenticated user information"""
    return UserResponse(**current_user)

@api_router.post("/auth/logout")
async def logout(response: Response):
    """Clear the auth cookie; bearer tokens simply expire"""
    response.delete_cookie(config.AUTH_COOKIE_NAME)
    return {"message": "Successfully logged out"}

@api_router.put("/auth/update-details", response_model=UserResponse)
async def update_details(details: DetailsUpdate, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    return await users.update_details(db, current_user, details)

@api_router.put("/auth/update-password", response_model=Token)
async def update_password(
    passwords: PasswordUpdate,
    response: Response,
    current_user: dict = Depends(get_current_user_dependency),
    db=Depends(get_db),
):
    """Change own password and get a fresh token"""
    user = await users.update_password(db, current_user, passwords)
    token = _token_response(user)
    _set_auth_cookie(response, token)
    return token

# User Management
@api_router.get("/users", response_model=List[UserResponse])
async def get_users(
    role: Optional[UserRole] = None,
    search: Optional[str] = None,
    limit: int = 50,
    skip: int = 0,
    current_user: dict = Depends(admin_only),
    db=Depends(get_db),
):
    return await users.list_users(db, role.value if role else None, search, limit, skip)

@api_router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(user_data: UserCreate, current_user: dict = Depends(admin_only), db=Depends(get_db)):
    return await users.create_user(db, user_data)

@api_router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, current_user: dict = Depends(admin_only), db=Depends(get_db)):
    return await users.get_user_or_404(db, user_id)

@api_router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(user_id: str, user_data: UserUpdate, current_user: dict = Depends(admin_only), db=Depends(get_db)):
    return await users.update_user(db, user_id, user_data)

@api_router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    current_user: dict = Depends(admin_only),
    db=Depends(get_db),
    storage=Depends(get_storage),
):
    await users.delete_user(db, current_user, user_id, storage)
    return {"message": "User deleted successfully"}

@api_router.put("/users/{user_id}/reset-password", response_model=PasswordReset)
async def reset_user_password(user_id: str, current_user: dict = Depends(admin_only), db=Depends(get_db)):
    return await users.reset_password(db, user_id)

@api_router.get("/users/{user_id}/profile", response_model=UserProfile)
async def get_user_profile(user_id: str, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    """Own profile with enrollments; admins may view anyone's"""
    return await users.get_profile(db, current_user, user_id)

@api_router.put("/users/{user_id}/photo", response_model=UserResponse)
async def upload_profile_image(
    user_id: str,
    file: UploadFile = File(...),
    current_user: dict = Depends(get_current_user_dependency),
    db=Depends(get_db),
    storage=Depends(get_storage),
):
    data = await file.read()
    return await users.upload_avatar(db, current_user, user_id, data, file.filename, file.content_type, storage)

# Course Management
@api_router.post("/courses", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
async def create_course(course_data: CourseCreate, current_user: dict = Depends(authoring), db=Depends(get_db)):
    return await courses.create_course(db, current_user, course_data)

@api_router.get("/courses", response_model=List[CourseResponse])
async def get_courses(
    category: Optional[str] = None,
    level: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 20,
    skip: int = 0,
    db=Depends(get_db),
):
    """Get published courses (public endpoint)"""
    return await courses.list_courses(db, category, level, search, limit, skip)

@api_router.get("/courses/{course_id}", response_model=CourseResponse)
async def get_course(course_id: str, current_user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    return await courses.get_course(db, course_id, current_user)

@api_router.put("/courses/{course_id}", response_model=CourseResponse)
async def update_course(course_id: str, course_data: CourseUpdate, current_user: dict = Depends(authoring), db=Depends(get_db)):
    return await courses.update_course(db, current_user, course_id, course_data)

@api_router.delete("/courses/{course_id}")
async def delete_course(
    course_id: str,
    current_user: dict = Depends(authoring),
    db=Depends(get_db),
    storage=Depends(get_storage),
):
    await courses.delete_course(db, current_user, course_id, storage)
    return {"message": "Course deleted successfully"}

@api_router.put("/courses/{course_id}/photo", response_model=CourseResponse)
async def upload_course_photo(
    course_id: str,
    file: UploadFile = File(...),
    current_user: dict = Depends(authoring),
    db=Depends(get_db),
    storage=Depends(get_storage),
):
    data = await file.read()
    return await courses.upload_course_image(db, current_user, course_id, data, file.filename, file.content_type, storage)

@api_router.put("/courses/{course_id}/submit", response_model=CourseResponse)
async def submit_course(course_id: str, current_user: dict = Depends(authoring), db=Depends(get_db)):
    return await courses.submit_for_approval(db, current_user, course_id)

@api_router.put("/courses/{course_id}/approve", response_model=CourseResponse)
async def approve_course(course_id: str, current_user: dict = Depends(admin_only), db=Depends(get_db)):
    return await courses.approve_course(db, current_user, course_id)

@api_router.put("/courses/{course_id}/publish", response_model=CourseResponse)
async def publish_course(course_id: str, body: PublishRequest, current_user: dict = Depends(authoring), db=Depends(get_db)):
    return await courses.publish_course(db, current_user, course_id, body.is_published)

# Enrollment Management
@api_router.post("/courses/{course_id}/enroll", response_model=EnrollmentResponse, status_code=status.HTTP_201_CREATED)
async def enroll_in_course(course_id: str, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    return await enrollments.enroll(db, current_user, course_id)

@api_router.delete("/courses/{course_id}/enroll", response_model=EnrollmentResponse)
async def unenroll_from_course(course_id: str, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    return await enrollments.unenroll(db, current_user, course_id)

@api_router.get("/enrollments", response_model=List[EnrollmentResponse])
async def get_user_enrollments(current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    return await enrollments.list_enrollments(db, current_user)

@api_router.get("/courses/{course_id}/progress", response_model=CourseProgress)
async def get_course_progress(course_id: str, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    return await progress.get_course_progress(db, current_user, course_id)

# Lesson APIs
@api_router.post("/courses/{course_id}/lessons", response_model=LessonResponse, status_code=status.HTTP_201_CREATED)
async def create_lesson(course_id: str, lesson_data: LessonCreate, current_user: dict = Depends(authoring), db=Depends(get_db)):
    return await lessons.create_lesson(db, current_user, course_id, lesson_data)

@api_router.get("/courses/{course_id}/lessons", response_model=List[LessonResponse])
async def get_course_lessons(course_id: str, current_user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    return await lessons.list_lessons(db, course_id, current_user)

@api_router.get("/lessons/{lesson_id}", response_model=LessonView)
async def view_lesson(lesson_id: str, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    """Open a lesson; the previous lesson must be completed first"""
    return await progress.view_lesson(db, current_user, lesson_id)

@api_router.put("/lessons/{lesson_id}", response_model=LessonResponse)
async def update_lesson(lesson_id: str, lesson_data: LessonUpdate, current_user: dict = Depends(authoring), db=Depends(get_db)):
    return await lessons.update_lesson(db, current_user, lesson_id, lesson_data)

@api_router.put("/lessons/{lesson_id}/reorder", response_model=LessonResponse)
async def reorder_lesson(lesson_id: str, body: ReorderRequest, current_user: dict = Depends(authoring), db=Depends(get_db)):
    return await lessons.reorder_lesson(db, current_user, lesson_id, body.new_order)

@api_router.delete("/lessons/{lesson_id}")
async def delete_lesson(
    lesson_id: str,
    current_user: dict = Depends(authoring),
    db=Depends(get_db),
    storage=Depends(get_storage),
):
    await lessons.delete_lesson(db, current_user, lesson_id, storage)
    return {"message": "Lesson deleted successfully"}

@api_router.post("/lessons/{lesson_id}/material", response_model=LessonResponse)
async def upload_material(
    lesson_id: str,
    file: UploadFile = File(...),
    current_user: dict = Depends(authoring),
    db=Depends(get_db),
    storage=Depends(get_storage),
):
    data = await file.read()
    return await lessons.upload_material(db, current_user, lesson_id, data, file.filename, file.content_type, storage)

@api_router.post("/lessons/{lesson_id}/complete", response_model=LessonView)
async def complete_lesson(lesson_id: str, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    return await progress.complete_lesson(db, current_user, lesson_id)

# Quiz APIs
@api_router.post("/courses/{course_id}/quizzes", response_model=QuizResponse, status_code=status.HTTP_201_CREATED)
async def create_quiz(course_id: str, quiz_data: QuizCreate, current_user: dict = Depends(authoring), db=Depends(get_db)):
    quiz = await quizzes.create_quiz(db, current_user, course_id, quiz_data)
    return quizzes.present_quiz(quiz, current_user)

@api_router.get("/courses/{course_id}/quizzes", response_model=List[QuizResponse])
async def get_course_quizzes(course_id: str, current_user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    return await quizzes.list_quizzes(db, course_id, current_user)

@api_router.get("/quizzes/{quiz_id}", response_model=QuizResponse)
async def get_quiz(quiz_id: str, current_user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    return await quizzes.get_quiz(db, quiz_id, current_user)

@api_router.put("/quizzes/{quiz_id}", response_model=QuizResponse)
async def update_quiz(quiz_id: str, quiz_data: QuizUpdate, current_user: dict = Depends(authoring), db=Depends(get_db)):
    quiz = await quizzes.update_quiz(db, current_user, quiz_id, quiz_data)
    return quizzes.present_quiz(quiz, current_user)

@api_router.delete("/quizzes/{quiz_id}")
async def delete_quiz(quiz_id: str, current_user: dict = Depends(authoring), db=Depends(get_db)):
    await quizzes.delete_quiz(db, current_user, quiz_id)
    return {"message": "Quiz deleted successfully"}

@api_router.post("/quizzes/{quiz_id}/submit", response_model=QuizResult)
async def submit_quiz(quiz_id: str, submission: QuizSubmission, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    return await quizzes.submit_quiz(db, current_user, quiz_id, submission.answers)

# Certificates
@api_router.post("/courses/{course_id}/certificate", response_model=CertificateResponse)
async def generate_certificate(
    course_id: str,
    current_user: dict = Depends(get_current_user_dependency),
    db=Depends(get_db),
    renderer=Depends(certificates.get_certificate_renderer),
):
    return await certificates.issue_certificate(db, current_user, course_id, renderer)

@api_router.get("/certificates/verify/{user_id}/{course_id}", response_model=CertificateVerification)
async def verify_certificate(user_id: str, course_id: str, db=Depends(get_db)):
    """Public certificate verification"""
    return await certificates.verify_certificate(db, user_id, course_id)

# Notifications
@api_router.get("/notifications", response_model=List[NotificationResponse])
async def get_notifications(limit: int = 50, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    return await notifications.list_notifications(db, current_user, limit)

@api_router.get("/notifications/unread/count")
async def get_unread_count(current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)) -> Dict[str, Any]:
    return {"count": await notifications.unread_count(db, current_user)}

@api_router.put("/notifications/read-all")
async def mark_all_notifications_read(current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    updated = await notifications.mark_all_as_read(db, current_user)
    return {"updated": updated}

@api_router.put("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(notification_id: str, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    return await notifications.mark_as_read(db, current_user, notification_id)

@api_router.delete("/notifications/{notification_id}")
async def delete_notification(notification_id: str, current_user: dict = Depends(get_current_user_dependency), db=Depends(get_db)):
    await notifications.delete_notification(db, current_user, notification_id)
    return {"message": "Notification deleted successfully"}

@api_router.post("/notifications", status_code=status.HTTP_201_CREATED)
async def create_notification(data: NotificationCreate, current_user: dict = Depends(admin_only), db=Depends(get_db)):
    count = await notifications.create_notification(db, data)
    return {"count": count, "message": f"Notification sent to {count} users"}

# Include the router in the main app
app.include_router(api_router)
app.mount("/uploads", StaticFiles(directory=str(config.UPLOAD_DIR), check_dir=False), name="uploads")

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup():
    db = mongo.connect()
    await ensure_indexes(db)
    init_storage()

@app.on_event("shutdown")
async def shutdown_db_client():
    mongo.close()
