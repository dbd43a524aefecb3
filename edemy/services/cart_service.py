# edemy/services/cart_service.py
from datetime import datetime
from typing import Any, Dict, List

from edemy.core.errors import BadRequestError, NotFoundError
from edemy.repositories.mongo_repository import MongoRepository, to_object_id
from edemy.services.course_service import CourseService, effective_price, serialize
from edemy.services.enrollment_service import LIVE_STATUSES


class CartService:
    """Un carrito por usuario: items [{course, price, addedAt}]."""

    def __init__(self):
        self.repo = MongoRepository("carts")
        self.enrollments = MongoRepository("enrollments")
        self.courses = CourseService()

    def _cart(self, user_id: str) -> Dict[str, Any]:
        cart = self.repo.find_one_by({"user": user_id})
        if not cart:
            cart = self.repo.create({"user": user_id, "items": [], "totalPrice": 0.0})
        return cart

    def _published(self, course_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        oids = [oid for oid in (to_object_id(c) for c in course_ids) if oid is not None]
        docs = self.courses.repo.find({"_id": {"$in": oids}, "status": "published"}) if oids else []
        return {str(c["_id"]): c for c in docs}

    def _save(self, cart: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
        total = round(sum(float(i.get("price") or 0) for i in items), 2)
        return self.repo.update(cart["_id"], {"items": items, "totalPrice": total})

    def _view(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        courses = self._published([i["course"] for i in cart.get("items", [])])
        self.courses._attach_instructors(list(courses.values()))
        items = [
            {"course": serialize(courses[i["course"]]), "price": i["price"], "addedAt": i["addedAt"]}
            for i in cart.get("items", []) if i["course"] in courses
        ]
        return {"id": str(cart["_id"]), "items": items, "totalPrice": cart.get("totalPrice", 0.0), "itemCount": len(items)}

    def get(self, user: Dict[str, Any]) -> Dict[str, Any]:
        cart = self._cart(str(user["_id"]))
        live = self._published([i["course"] for i in cart.get("items", [])])
        kept = [i for i in cart.get("items", []) if i["course"] in live]
        if len(kept) != len(cart.get("items", [])):
            # cursos borrados o despublicados desaparecen del carrito
            cart = self._save(cart, kept)
        return self._view(cart)

    def add(self, user: Dict[str, Any], course_id: str) -> Dict[str, Any]:
        uid = str(user["_id"])
        course = self.courses.get_published_doc(course_id)
        course_id = str(course["_id"])
        if float(course.get("price") or 0) <= 0:
            raise BadRequestError("Free courses cannot be added to the cart", "FREE_COURSE")
        if course.get("instructor") == uid:
            raise BadRequestError("You cannot purchase your own course", "OWN_COURSE")
        enrollment = self.enrollments.find_one_by({"student": uid, "course": course_id})
        if enrollment and enrollment.get("status") in LIVE_STATUSES:
            raise BadRequestError("You are already enrolled in this course", "ALREADY_ENROLLED")

        cart = self._cart(uid)
        if any(i["course"] == course_id for i in cart.get("items", [])):
            raise BadRequestError("Course already in cart", "ALREADY_IN_CART")
        items = cart.get("items", []) + [{"course": course_id, "price": effective_price(course), "addedAt": datetime.utcnow()}]
        return self._view(self._save(cart, items))

    def remove(self, user: Dict[str, Any], course_id: str) -> Dict[str, Any]:
        cart = self._cart(str(user["_id"]))
        items = [i for i in cart.get("items", []) if i["course"] != course_id]
        if len(items) == len(cart.get("items", [])):
            raise NotFoundError("Course not in cart", "NOT_IN_CART")
        return self._view(self._save(cart, items))

    def clear(self, user: Dict[str, Any]) -> Dict[str, Any]:
        cart = self._cart(str(user["_id"]))
        return self._view(self._save(cart, []))

    def discard(self, user_id: str, course_id: str) -> None:
        """Quita un curso recién comprado, si estaba en el carrito."""
        cart = self.repo.find_one_by({"user": user_id})
        if cart and any(i["course"] == course_id for i in cart.get("items", [])):
            self._save(cart, [i for i in cart["items"] if i["course"] != course_id])
