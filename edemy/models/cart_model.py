from pydantic import BaseModel, Field


class CourseRef(BaseModel):
    """Body de cart/add y wishlist/add."""
    courseId: str = Field(..., min_length=1)
