from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Any
import uuid
from datetime import datetime
from enum import Enum


# Enums
class UserRole(str, Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"

class ContentType(str, Enum):
    TEXT = "text"
    VIDEO = "video"
    PDF = "pdf"
    MIXED = "mixed"

class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"

class ProgressStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    FILL_IN_BLANK = "fill-in-blank"

class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"

class RelatedModel(str, Enum):
    COURSE = "Course"
    LESSON = "Lesson"
    QUIZ = "Quiz"
    USER = "User"
    SYSTEM = "System"


def new_id() -> str:
    return str(uuid.uuid4())


class Document(BaseModel):
    """Base for stored documents; enums are kept as their plain values."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)


# User Models
class User(Document):
    id: str = Field(default_factory=new_id)
    email: str
    name: str
    password_hash: Optional[str] = None
    role: UserRole = UserRole.STUDENT
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    is_active: bool = True

class UserCreate(BaseModel):
    email: str
    name: str
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.STUDENT
    bio: Optional[str] = Field(None, max_length=500)
    is_active: bool = True

class UserUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[UserRole] = None
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = None
    is_active: Optional[bool] = None

class DetailsUpdate(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)

class PasswordUpdate(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)

class PasswordReset(BaseModel):
    new_password: str

class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: UserRole
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: datetime
    is_active: bool


# Course Models
class Course(Document):
    id: str = Field(default_factory=new_id)
    title: str
    description: str
    category: str
    level: str = "Beginner"  # Beginner, Intermediate, Advanced
    price: float = 0.0
    thumbnail_url: Optional[str] = None
    author_id: str
    is_published: bool = False
    is_approved: bool = False
    requires_approval: bool = False
    approved_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

class CourseCreate(BaseModel):
    title: str = Field(..., max_length=100)
    description: str
    category: str
    level: str = "Beginner"
    price: float = Field(0.0, ge=0)
    thumbnail_url: Optional[str] = None

class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    category: Optional[str] = None
    level: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    thumbnail_url: Optional[str] = None

class CourseResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    level: str
    price: float
    thumbnail_url: Optional[str] = None
    author_id: str
    author_name: Optional[str] = None
    is_published: bool
    is_approved: bool
    requires_approval: bool = False
    created_at: datetime
    total_lessons: int = 0

class PublishRequest(BaseModel):
    is_published: bool = True


# Lesson Models
class VideoAsset(Document):
    url: Optional[str] = None
    duration: Optional[int] = None  # minutes

class PdfAsset(Document):
    url: Optional[str] = None
    page_count: Optional[int] = None

class Lesson(Document):
    id: str = Field(default_factory=new_id)
    course_id: str
    title: str
    description: Optional[str] = None
    content: str
    content_type: ContentType = ContentType.TEXT
    video: Optional[VideoAsset] = None
    pdf: Optional[PdfAsset] = None
    material: Optional[str] = None
    order: int
    is_published: bool = False
    required_time_to_complete: int = 30  # minutes
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

# Lesson fields that may hold an uploaded file
LESSON_FILE_FIELDS = ("material", "video", "pdf")


# Enrollment Models
class QuizAttempt(Document):
    quiz_id: str
    score: float
    max_score: float
    passed: bool = False
    attempt_date: datetime = Field(default_factory=datetime.utcnow)

class Enrollment(Document):
    id: str = Field(default_factory=new_id)
    user_id: str
    course_id: str
    enrollment_date: datetime = Field(default_factory=datetime.utcnow)
    completion_percentage: int = Field(0, ge=0, le=100)
    completion_date: Optional[datetime] = None
    last_accessed_at: datetime = Field(default_factory=datetime.utcnow)
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    certificate_issued: bool = False
    certificate_id: Optional[str] = None
    certificate_url: Optional[str] = None
    certificate_date: Optional[datetime] = None
    quiz_scores: List[QuizAttempt] = []

class EnrollmentResponse(BaseModel):
    id: str
    user_id: str
    course_id: str
    course_title: Optional[str] = None
    enrollment_date: datetime
    completion_percentage: int
    completion_date: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    status: EnrollmentStatus
    certificate_issued: bool = False
    certificate_id: Optional[str] = None
    certificate_url: Optional[str] = None
    quiz_scores: List[QuizAttempt] = []

class UserProfile(BaseModel):
    user: UserResponse
    enrollments: List[EnrollmentResponse] = []


# Progress Models
class LessonProgress(Document):
    id: str = Field(default_factory=new_id)
    user_id: str
    course_id: str
    lesson_id: str
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    completion_date: Optional[datetime] = None
    last_accessed_at: datetime = Field(default_factory=datetime.utcnow)
    time_spent: int = 0  # seconds
    created_at: datetime = Field(default_factory=datetime.utcnow)


# Quiz Models
class QuizQuestion(Document):
    question_text: str
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    options: List[str] = []
    correct_answer: Any
    points: float = Field(1, ge=0)

class Quiz(Document):
    id: str = Field(default_factory=new_id)
    course_id: str
    lesson_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    questions: List[QuizQuestion] = []
    time_limit: int = 0  # minutes, 0 means no limit
    passing_score: float = 70  # percentage
    randomize_questions: bool = False
    is_published: bool = False
    allow_retake: bool = True
    max_attempts: int = 3
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


# Notification Models
class RelatedTo(Document):
    model: RelatedModel = RelatedModel.SYSTEM
    id: Optional[str] = None

class Notification(Document):
    id: str = Field(default_factory=new_id)
    user_id: str
    title: str = Field(..., max_length=100)
    message: str = Field(..., max_length=500)
    type: NotificationType = NotificationType.INFO
    related_to: RelatedTo = Field(default_factory=RelatedTo)
    read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
