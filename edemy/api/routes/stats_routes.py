from fastapi import APIRouter, Depends, Query

from edemy.api.deps import get_optional_user
from edemy.repositories.mongo_repository import MongoRepository
from edemy.utils.redis_stats import course_stats, top_viewed_courses

router = APIRouter(prefix="/stats", tags=["Stats"])
reviews = MongoRepository("reviews")
courses = MongoRepository("courses")

# ventas e ingresos solo para el dueño del curso o un admin
PRIVATE_FIELDS = ("sales", "revenue")


@router.get("/courses/top-viewed")
def get_top_viewed(top: int = Query(10, ge=1, le=100)):
    items = top_viewed_courses(top)
    return {"success": True, "data": {"top": top, "courses": [{"course_id": k, "views": int(v)} for k, v in items]}}


@router.get("/courses/{course_id}")
def get_course_stats(course_id: str, user=Depends(get_optional_user)):
    """
    Estadísticas de un curso:
    - vistas e inscripciones (Redis), públicas
    - ventas e ingresos (Redis), solo para el instructor dueño o un admin
    - reseñas activas (MongoDB)
    """
    stats = course_stats(course_id)
    stats["reviews"] = reviews.count({"course": course_id, "status": "active"})
    if not _can_see_revenue(user, course_id):
        for key in PRIVATE_FIELDS:
            stats.pop(key, None)
    return {"success": True, "data": stats}


def _can_see_revenue(user, course_id: str) -> bool:
    if not user:
        return False
    if user.get("role") == "admin":
        return True
    course = courses.find_one(course_id)
    return bool(course) and course.get("instructor") == str(user["_id"])
