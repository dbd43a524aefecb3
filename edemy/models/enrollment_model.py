from typing import Optional

from pydantic import BaseModel, Field

ENROLLMENT_STATUSES = ("active", "completed", "cancelled", "refunded", "expired")


class EnrollIn(BaseModel):
    courseId: str = Field(..., min_length=1)
    paymentId: Optional[str] = None


class ProgressIn(BaseModel):
    lectureId: str = Field(..., min_length=1)
    completed: bool = False
    watchTime: int = Field(0, ge=0)


class LectureCompleteIn(BaseModel):
    watchTime: int = Field(0, ge=0)


class NoteIn(BaseModel):
    lectureId: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=5000)
    timestamp: int = Field(0, ge=0)


class NoteUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class BookmarkIn(BaseModel):
    lectureId: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    timestamp: int = Field(0, ge=0)
