# wishlist_routes.py
from fastapi import APIRouter, Depends

from edemy.api.deps import get_current_user
from edemy.models.cart_model import CourseRef
from edemy.services.wishlist_service import WishlistService

router = APIRouter(prefix="/wishlist", tags=["Wishlist"])
svc = WishlistService()


@router.get("")
def get_wishlist(user=Depends(get_current_user)):
    return {"success": True, "data": {"wishlist": svc.get(user)}}


@router.post("/add")
def add_to_wishlist(payload: CourseRef, user=Depends(get_current_user)):
    wishlist = svc.add(user, payload.courseId)
    return {"success": True, "message": "Course added to wishlist", "data": {"wishlist": wishlist}}


@router.delete("/remove/{course_id}")
def remove_from_wishlist(course_id: str, user=Depends(get_current_user)):
    wishlist = svc.remove(user, course_id)
    return {"success": True, "message": "Course removed from wishlist", "data": {"wishlist": wishlist}}


@router.delete("/clear")
def clear_wishlist(user=Depends(get_current_user)):
    return {"success": True, "message": "Wishlist cleared", "data": {"wishlist": svc.clear(user)}}


@router.get("/check/{course_id}")
def check_wishlist(course_id: str, user=Depends(get_current_user)):
    return {"success": True, "data": {"inWishlist": svc.contains(user, course_id)}}
