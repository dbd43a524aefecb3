# course_routes.py
from typing import Optional

from fastapi import APIRouter, Depends, Query

from edemy.api.deps import get_current_user, require_instructor
from edemy.models.course_model import CourseIn, CourseUpdate, LEVELS
from edemy.services.course_service import CourseService
from edemy.services.recommendation_service import RecommendationService

router = APIRouter(prefix="/courses", tags=["Courses"])
svc = CourseService()
recommender = RecommendationService()


# -------------------- catálogo público --------------------
@router.get("")
def list_courses(
    search: Optional[str] = Query(None, max_length=200),
    category: Optional[str] = None,
    level: Optional[str] = Query(None, pattern="^(" + "|".join(LEVELS) + ")$"),
    minPrice: Optional[float] = Query(None, ge=0),
    maxPrice: Optional[float] = Query(None, ge=0),
    rating: Optional[float] = Query(None, ge=0, le=5),
    tags: Optional[str] = None,
    sortBy: str = Query("rating", pattern="^(popular|rating|newest|price_low|price_high)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
):
    data = svc.list_public({
        "search": search, "category": category, "level": level,
        "minPrice": minPrice, "maxPrice": maxPrice, "rating": rating, "tags": tags,
        "sortBy": sortBy, "page": page, "limit": limit,
    })
    return {"success": True, "data": data}


@router.get("/featured")
def featured(limit: int = Query(8, ge=1, le=50)):
    return {"success": True, "data": {"courses": svc.featured(limit)}}


@router.get("/categories")
def categories():
    return {"success": True, "data": {"categories": svc.categories()}}


@router.get("/tags/popular")
def popular_tags(limit: int = Query(20, ge=1, le=100)):
    return {"success": True, "data": {"tags": svc.popular_tags(limit)}}


@router.get("/category/{category}")
def by_category(category: str, page: int = Query(1, ge=1), limit: int = Query(12, ge=1, le=100)):
    return {"success": True, "data": svc.by_category(category, page, limit)}


@router.get("/trending")
def trending(limit: int = Query(12, ge=1, le=50)):
    return {"success": True, "data": {"courses": recommender.trending(limit)}}


@router.get("/recommendations/personalized")
def personalized(limit: int = Query(12, ge=1, le=50), user=Depends(get_current_user)):
    return {"success": True, "data": recommender.personalized(user, limit)}


@router.get("/recommendations/category/{category}")
def recommended_by_category(category: str, limit: int = Query(12, ge=1, le=50)):
    return {"success": True, "data": {"courses": recommender.by_category(category, limit)}}


@router.get("/public/{course_id}")
def public_detail(course_id: str):
    return {"success": True, "data": svc.public_detail(course_id)}


# -------------------- instructor --------------------
@router.get("/instructor/my-courses")
def my_courses(status: Optional[str] = Query(None, pattern="^(draft|published|archived)$"),
               user=Depends(require_instructor)):
    courses = svc.instructor_courses(user, status)
    return {"success": True, "data": {"courses": courses, "count": len(courses)}}


@router.get("/instructor/stats")
def instructor_stats(user=Depends(require_instructor)):
    return {"success": True, "data": {"stats": svc.instructor_stats(user)}}


@router.post("", status_code=201)
def create_course(payload: CourseIn, user=Depends(require_instructor)):
    course = svc.create(user, payload.model_dump(exclude_none=True))
    message = "Course published successfully" if course["status"] == "published" else "Course saved as draft"
    return {"success": True, "message": message, "data": {"course": course}}


@router.get("/{course_id}")
def get_course(course_id: str, user=Depends(require_instructor)):
    return {"success": True, "data": {"course": svc.get_for_instructor(user, course_id)}}


@router.put("/{course_id}")
def update_course(course_id: str, payload: CourseUpdate, user=Depends(require_instructor)):
    course = svc.update(user, course_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Course updated successfully", "data": {"course": course}}


@router.delete("/{course_id}")
def delete_course(course_id: str, user=Depends(require_instructor)):
    svc.delete(user, course_id)
    return {"success": True, "message": "Course deleted successfully"}


@router.patch("/{course_id}/toggle-status")
def toggle_status(course_id: str, user=Depends(require_instructor)):
    course = svc.toggle_status(user, course_id)
    return {
        "success": True,
        "message": f"Course {'published' if course['status'] == 'published' else 'unpublished'} successfully",
        "data": {"course": course},
    }
