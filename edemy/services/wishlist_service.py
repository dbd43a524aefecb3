# edemy/services/wishlist_service.py
from datetime import datetime
from typing import Any, Dict, List

from edemy.core.errors import BadRequestError, NotFoundError
from edemy.repositories.mongo_repository import MongoRepository, to_object_id
from edemy.services.course_service import CourseService, serialize


class WishlistService:
    def __init__(self):
        self.repo = MongoRepository("wishlists")
        self.courses = CourseService()

    def _wishlist(self, user_id: str) -> Dict[str, Any]:
        doc = self.repo.find_one_by({"user": user_id})
        if not doc:
            doc = self.repo.create({"user": user_id, "courses": []})
        return doc

    def _view(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        ids: List[str] = [c["course"] for c in doc.get("courses", [])]
        oids = [oid for oid in (to_object_id(c) for c in ids) if oid is not None]
        found = {str(c["_id"]): c for c in self.courses.repo.find({"_id": {"$in": oids}, "status": "published"})} if oids else {}
        self.courses._attach_instructors(list(found.values()))
        courses = [
            {"course": serialize(found[c["course"]]), "addedAt": c["addedAt"]}
            for c in doc.get("courses", []) if c["course"] in found
        ]
        return {"id": str(doc["_id"]), "courses": courses, "count": len(courses)}

    def get(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return self._view(self._wishlist(str(user["_id"])))

    def add(self, user: Dict[str, Any], course_id: str) -> Dict[str, Any]:
        course = self.courses.get_published_doc(course_id)
        course_id = str(course["_id"])
        doc = self._wishlist(str(user["_id"]))
        if any(c["course"] == course_id for c in doc.get("courses", [])):
            raise BadRequestError("Course already in wishlist", "ALREADY_IN_WISHLIST")
        doc = self.repo.apply(doc["_id"], {
            "$push": {"courses": {"course": course_id, "addedAt": datetime.utcnow()}},
            "$set": {"updatedAt": datetime.utcnow()},
        })
        return self._view(doc)

    def remove(self, user: Dict[str, Any], course_id: str) -> Dict[str, Any]:
        doc = self._wishlist(str(user["_id"]))
        if not any(c["course"] == course_id for c in doc.get("courses", [])):
            raise NotFoundError("Course not in wishlist", "NOT_IN_WISHLIST")
        doc = self.repo.apply(doc["_id"], {
            "$pull": {"courses": {"course": course_id}},
            "$set": {"updatedAt": datetime.utcnow()},
        })
        return self._view(doc)

    def clear(self, user: Dict[str, Any]) -> Dict[str, Any]:
        doc = self._wishlist(str(user["_id"]))
        return self._view(self.repo.update(doc["_id"], {"courses": []}))

    def contains(self, user: Dict[str, Any], course_id: str) -> bool:
        return self.repo.count({"user": str(user["_id"]), "courses.course": course_id}) > 0
