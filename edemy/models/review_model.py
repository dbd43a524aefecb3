from typing import Optional

from pydantic import BaseModel, Field

REVIEW_STATUSES = ("active", "pending", "flagged", "removed", "archived")
FLAG_REASONS = ("spam", "inappropriate", "offensive", "misleading", "other")
MODERATION_ACTIONS = ("approve", "reject", "remove")
REVIEW_SORTS = ("recent", "helpful", "highest", "lowest")


class ReviewIn(BaseModel):
    courseId: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=10, max_length=2000)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, min_length=10, max_length=2000)


class HelpfulIn(BaseModel):
    type: str = Field("helpful", pattern="^(helpful|not_helpful)$")


class FlagIn(BaseModel):
    reason: str = Field(..., pattern="^(spam|inappropriate|offensive|misleading|other)$")
    description: Optional[str] = Field(None, max_length=500)


class ResponseIn(BaseModel):
    comment: str = Field(..., min_length=1, max_length=1000)


class ModerateIn(BaseModel):
    action: str = Field(..., pattern="^(approve|reject|remove)$")
    notes: Optional[str] = Field(None, max_length=1000)
