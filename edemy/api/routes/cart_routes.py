# cart_routes.py
from fastapi import APIRouter, Depends

from edemy.api.deps import get_current_user
from edemy.models.cart_model import CourseRef
from edemy.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["Cart"])
svc = CartService()


@router.get("")
def get_cart(user=Depends(get_current_user)):
    return {"success": True, "data": {"cart": svc.get(user)}}


@router.post("/add")
def add_to_cart(payload: CourseRef, user=Depends(get_current_user)):
    return {"success": True, "message": "Course added to cart", "data": {"cart": svc.add(user, payload.courseId)}}


@router.delete("/remove/{course_id}")
def remove_from_cart(course_id: str, user=Depends(get_current_user)):
    return {"success": True, "message": "Course removed from cart", "data": {"cart": svc.remove(user, course_id)}}


@router.delete("/clear")
def clear_cart(user=Depends(get_current_user)):
    return {"success": True, "message": "Cart cleared", "data": {"cart": svc.clear(user)}}
