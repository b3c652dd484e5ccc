# Request/response models for lessons, progress, quizzes, certificates and notifications
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any
from datetime import datetime

from .models import (
    ContentType, EnrollmentStatus, ProgressStatus, QuestionType, NotificationType,
    UserRole, VideoAsset, PdfAsset, QuizQuestion, RelatedTo, QuizAttempt
)


class LessonCreate(BaseModel):
    title: str = Field(..., max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    content: str
    content_type: ContentType = ContentType.TEXT
    video: Optional[VideoAsset] = None
    pdf: Optional[PdfAsset] = None
    is_published: bool = False
    required_time_to_complete: int = Field(30, ge=0)

class LessonUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    content: Optional[str] = None
    content_type: Optional[ContentType] = None
    video: Optional[VideoAsset] = None
    pdf: Optional[PdfAsset] = None
    is_published: Optional[bool] = None
    required_time_to_complete: Optional[int] = Field(None, ge=0)

class LessonResponse(BaseModel):
    id: str
    course_id: str
    title: str
    description: Optional[str] = None
    content: str
    content_type: ContentType
    video: Optional[VideoAsset] = None
    pdf: Optional[PdfAsset] = None
    material: Optional[str] = None
    order: int
    is_published: bool = False
    required_time_to_complete: int = 30
    created_at: datetime
    updated_at: datetime

class ReorderRequest(BaseModel):
    new_order: int


class ProgressResponse(BaseModel):
    id: str
    user_id: str
    course_id: str
    lesson_id: str
    status: ProgressStatus
    completion_date: Optional[datetime] = None
    last_accessed_at: datetime
    time_spent: int = 0

class LessonView(BaseModel):
    lesson: LessonResponse
    progress: Optional[ProgressResponse] = None
    completion_percentage: Optional[int] = None

class CourseProgress(BaseModel):
    course_id: str
    completion_percentage: int
    status: EnrollmentStatus
    completion_date: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    lesson_progress: List[ProgressResponse] = []


class QuizCreate(BaseModel):
    title: str = Field(..., max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    lesson_id: Optional[str] = None
    questions: List[QuizQuestion] = []
    time_limit: int = Field(0, ge=0)
    passing_score: float = Field(70, ge=0, le=100)
    randomize_questions: bool = False
    is_published: bool = False
    allow_retake: bool = True
    max_attempts: int = Field(3, ge=1)

class QuizUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    lesson_id: Optional[str] = None
    questions: Optional[List[QuizQuestion]] = None
    time_limit: Optional[int] = Field(None, ge=0)
    passing_score: Optional[float] = Field(None, ge=0, le=100)
    randomize_questions: Optional[bool] = None
    is_published: Optional[bool] = None
    allow_retake: Optional[bool] = None
    max_attempts: Optional[int] = Field(None, ge=1)

class QuestionResponse(BaseModel):
    question_text: str
    question_type: QuestionType
    options: List[str] = []
    correct_answer: Optional[Any] = None
    points: float

class QuizResponse(BaseModel):
    id: str
    course_id: str
    lesson_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    questions: List[QuestionResponse] = []
    time_limit: int
    passing_score: float
    randomize_questions: bool
    is_published: bool
    allow_retake: bool
    max_attempts: int
    total_points: float = 0
    user_score: Optional[QuizAttempt] = None

class QuizSubmission(BaseModel):
    answers: List[Optional[Any]] = []

class QuizResult(BaseModel):
    score: float
    max_score: float
    percentage: float
    passed: bool
    passing_score: float
    attempt_number: int


class CertificateResponse(BaseModel):
    certificate_id: Optional[str] = None
    certificate_url: str
    issued_at: Optional[datetime] = None
    already_issued: bool = False

class CertificateVerification(BaseModel):
    verified: bool
    certificate: Dict[str, Any]


class NotificationCreate(BaseModel):
    title: str = Field(..., max_length=100)
    message: str = Field(..., max_length=500)
    type: NotificationType = NotificationType.INFO
    related_to: Optional[RelatedTo] = None
    user_id: Optional[str] = None
    to_all: bool = False
    to_role: Optional[UserRole] = None

class NotificationResponse(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    type: NotificationType
    related_to: RelatedTo
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
