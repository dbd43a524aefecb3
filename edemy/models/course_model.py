# Modelos de entrada para cursos (los documentos usan los mismos nombres que la API)
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

CATEGORIES = (
    "Web Development", "Data Science", "Design", "Business", "Marketing",
    "Photography", "Music", "Health & Fitness", "Programming", "Technology",
    "Language", "Academic", "Personal Development",
)
LEVELS = ("Beginner", "Intermediate", "Advanced", "All Levels")
STATUSES = ("draft", "published", "archived")
SORT_OPTIONS = ("popular", "rating", "newest", "price_low", "price_high")


class Resource(BaseModel):
    title: str = Field(..., max_length=200)
    url: str
    type: str = "link"


class LectureIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    videoUrl: str = ""
    duration: int = Field(0, ge=0)  # segundos
    resources: List[Resource] = Field(default_factory=list)
    isPreview: bool = False
    order: Optional[int] = None


class SectionIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=1000)
    order: Optional[int] = None
    lectures: List[LectureIn] = Field(default_factory=list)


class CourseBase(BaseModel):
    subtitle: Optional[str] = Field(None, max_length=200)
    price: Optional[float] = Field(None, ge=0)
    originalPrice: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0, le=100)
    language: Optional[str] = None
    subcategory: Optional[str] = None
    thumbnail: Optional[str] = None
    previewVideo: Optional[str] = None
    sections: Optional[List[SectionIn]] = None
    learningOutcomes: Optional[List[str]] = None
    requirements: Optional[List[str]] = None
    targetAudience: Optional[str] = Field(None, max_length=1000)
    tags: Optional[List[str]] = None
    status: Optional[str] = None

    @field_validator("status")
    @classmethod
    def check_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in STATUSES:
            raise ValueError(f"status must be one of {', '.join(STATUSES)}")
        return v

    @field_validator("tags")
    @classmethod
    def check_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        return list(dict.fromkeys(t.strip().lower() for t in v if t and t.strip()))


class CourseIn(CourseBase):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=5000)
    category: str
    level: str = "Beginner"

    @field_validator("category")
    @classmethod
    def check_category(cls, v: str) -> str:
        if v not in CATEGORIES:
            raise ValueError(f"category must be one of {', '.join(CATEGORIES)}")
        return v

    @field_validator("level")
    @classmethod
    def check_level(cls, v: str) -> str:
        if v not in LEVELS:
            raise ValueError(f"level must be one of {', '.join(LEVELS)}")
        return v


class CourseUpdate(CourseBase):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    category: Optional[str] = None
    level: Optional[str] = None

    @field_validator("category")
    @classmethod
    def check_category(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in CATEGORIES:
            raise ValueError(f"category must be one of {', '.join(CATEGORIES)}")
        return v

    @field_validator("level")
    @classmethod
    def check_level(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in LEVELS:
            raise ValueError(f"level must be one of {', '.join(LEVELS)}")
        return v
