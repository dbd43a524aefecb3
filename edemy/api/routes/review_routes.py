# review_routes.py
from typing import Optional

from fastapi import APIRouter, Depends, Query

from edemy.api.deps import get_current_user, require_admin, require_instructor
from edemy.models.review_model import FlagIn, HelpfulIn, ModerateIn, ResponseIn, ReviewIn, ReviewUpdate
from edemy.services.review_service import ReviewService

router = APIRouter(prefix="/reviews", tags=["Reviews"])
svc = ReviewService()
MODERATED = {"approve": "approved", "reject": "rejected", "remove": "removed"}


@router.post("", status_code=201)
def create_review(payload: ReviewIn, user=Depends(get_current_user)):
    review = svc.create(user, payload.courseId, payload.rating, payload.comment)
    return {"success": True, "message": "Review submitted successfully", "data": {"review": review}}


@router.get("/course/{course_id}")
def course_reviews(course_id: str,
                   sortBy: str = Query("recent", pattern="^(recent|helpful|highest|lowest)$"),
                   rating: Optional[int] = Query(None, ge=1, le=5),
                   page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50)):
    return {"success": True, "data": svc.for_course(course_id, sortBy, rating, page, limit)}


@router.get("/course/{course_id}/my-review")
def my_review(course_id: str, user=Depends(get_current_user)):
    return {
        "success": True,
        "data": {"review": svc.my_review(user, course_id), "canReview": svc.can_review(user, course_id)["canReview"]},
    }


@router.get("/admin/flagged")
def flagged_reviews(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100), user=Depends(require_admin)):
    return {"success": True, "data": svc.flagged(page, limit)}


@router.get("/instructor/my-reviews")
def instructor_reviews(courseId: Optional[str] = None, page: int = Query(1, ge=1),
                       limit: int = Query(20, ge=1, le=100), user=Depends(require_instructor)):
    return {"success": True, "data": svc.instructor_reviews(user, courseId, page, limit)}


@router.get("/{review_id}")
def get_review(review_id: str):
    return {"success": True, "data": {"review": svc.get(review_id)}}


@router.put("/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, user=Depends(get_current_user)):
    review = svc.update(user, review_id, payload.rating, payload.comment)
    return {"success": True, "message": "Review updated successfully", "data": {"review": review}}


@router.delete("/{review_id}")
def delete_review(review_id: str, user=Depends(get_current_user)):
    svc.delete(user, review_id)
    return {"success": True, "message": "Review deleted successfully"}


# -------------------- interacción --------------------
@router.post("/{review_id}/helpful")
def mark_helpful(review_id: str, payload: Optional[HelpfulIn] = None, user=Depends(get_current_user)):
    data = svc.mark_helpful(user, review_id, payload.type if payload else "helpful")
    return {"success": True, "data": data}


@router.post("/{review_id}/flag")
def flag_review(review_id: str, payload: FlagIn, user=Depends(get_current_user)):
    data = svc.flag(user, review_id, payload.reason, payload.description)
    return {"success": True, "message": "Review flagged for moderation", "data": data}


# -------------------- respuesta del instructor --------------------
@router.post("/{review_id}/response", status_code=201)
def add_response(review_id: str, payload: ResponseIn, user=Depends(require_instructor)):
    review = svc.respond(user, review_id, payload.comment)
    return {"success": True, "message": "Response added", "data": {"review": review}}


@router.put("/{review_id}/response")
def update_response(review_id: str, payload: ResponseIn, user=Depends(require_instructor)):
    review = svc.update_response(user, review_id, payload.comment)
    return {"success": True, "message": "Response updated", "data": {"review": review}}


@router.delete("/{review_id}/response")
def delete_response(review_id: str, user=Depends(require_instructor)):
    svc.delete_response(user, review_id)
    return {"success": True, "message": "Response deleted"}


@router.patch("/{review_id}/moderate")
def moderate_review(review_id: str, payload: ModerateIn, user=Depends(require_admin)):
    review = svc.moderate(user, review_id, payload.action, payload.notes)
    return {"success": True, "message": f"Review {MODERATED[payload.action]}", "data": {"review": review}}
