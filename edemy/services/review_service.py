# edemy/services/review_service.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from edemy.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from edemy.repositories.mongo_repository import MongoRepository, clean, pagination, to_object_id
from edemy.repositories.user_repository import UserRepository
from edemy.services.course_service import CourseService
from edemy.services.enrollment_service import LIVE_STATUSES

MIN_PROGRESS_TO_REVIEW = 20
AUTO_FLAG_THRESHOLD = 5

SORTS = {
    "recent": [("createdAt", -1)],
    "helpful": [("likes", -1), ("createdAt", -1)],
    "highest": [("rating", -1), ("createdAt", -1)],
    "lowest": [("rating", 1), ("createdAt", -1)],
}


def rating_summary(ratings: List[int]) -> Dict[str, Any]:
    distribution = {str(star): 0 for star in range(1, 6)}
    for r in ratings:
        distribution[str(int(r))] += 1
    average = round(sum(ratings) / len(ratings), 1) if ratings else 0
    return {"averageRating": average, "totalReviews": len(ratings), "distribution": distribution}


class ReviewService:
    def __init__(self):
        self.repo = MongoRepository("reviews")
        self.enrollments = MongoRepository("enrollments")
        self.users = UserRepository()
        self.courses = CourseService()

    def _now(self) -> datetime:
        return datetime.utcnow()

    def _get(self, review_id: str) -> Dict[str, Any]:
        doc = self.repo.find_one(review_id)
        if not doc:
            raise NotFoundError("Review not found", "REVIEW_NOT_FOUND")
        return doc

    def _with_students(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ids = [oid for oid in {to_object_id(d.get("student")) for d in docs} if oid is not None]
        people = {str(u["_id"]): u for u in self.users.find({"_id": {"$in": ids}})} if ids else {}
        out = []
        for d in docs:
            item = clean(d)
            # no exponemos quién marcó/flaggeó
            item.pop("helpfulBy", None)
            moderation = dict(item.get("moderation") or {})
            moderation.pop("flaggedBy", None)
            item["moderation"] = moderation
            u = people.get(d.get("student")) or {}
            profile = u.get("profile") or {}
            item["studentInfo"] = {
                "id": d.get("student"),
                "username": u.get("username"),
                "firstName": profile.get("firstName", ""),
                "lastName": profile.get("lastName", ""),
                "avatar": profile.get("avatar", ""),
            }
            out.append(item)
        return out

    # ------- recálculo de ratings -------
    def recompute_ratings(self, course_id: str) -> None:
        """Promedio del curso y del instructor, sólo con reseñas activas."""
        ratings = [r["rating"] for r in self.repo.find({"course": course_id, "status": "active"})]
        summary = rating_summary(ratings)
        course = self.courses.repo.update(course_id, {
            "averageRating": summary["averageRating"],
            "totalReviews": summary["totalReviews"],
        })
        if not course:
            return
        instructor_id = course.get("instructor")
        all_ratings = [r["rating"] for r in self.repo.find({"instructor": instructor_id, "status": "active"})]
        average = round(sum(all_ratings) / len(all_ratings), 1) if all_ratings else 0
        self.users.set_fields(instructor_id, {
            "instructorProfile.rating": {"average": average, "count": len(all_ratings)},
        })

    # -------------------- alta --------------------
    def can_review(self, user: Dict[str, Any], course_id: str) -> Dict[str, Any]:
        uid = str(user["_id"])
        enrollment = self.enrollments.find_one_by({"student": uid, "course": course_id})
        if not enrollment or enrollment.get("status") not in LIVE_STATUSES:
            return {"canReview": False, "reason": "You must be enrolled in this course to review it", "code": "NOT_ENROLLED"}
        progress = int((enrollment.get("progress") or {}).get("percentage", 0))
        if progress < MIN_PROGRESS_TO_REVIEW:
            return {
                "canReview": False,
                "reason": f"Complete at least {MIN_PROGRESS_TO_REVIEW}% of the course to leave a review",
                "code": "INSUFFICIENT_PROGRESS",
            }
        if self.repo.find_one_by({"student": uid, "course": course_id}):
            return {"canReview": False, "reason": "You have already reviewed this course", "code": "ALREADY_REVIEWED"}
        return {"canReview": True, "enrollment": enrollment}

    def create(self, user: Dict[str, Any], course_id: str, rating: int, comment: str) -> Dict[str, Any]:
        course = self.courses.get_doc(course_id)
        course_id = str(course["_id"])
        check = self.can_review(user, course_id)
        if not check["canReview"]:
            raise BadRequestError(check["reason"], check["code"])

        enrollment = check["enrollment"]
        try:
            doc = self.repo.create({
                "course": course_id,
                "student": str(user["_id"]),
                "instructor": course.get("instructor"),
                "enrollment": str(enrollment["_id"]),
                "rating": rating,
                "comment": comment.strip(),
                "likes": 0,
                "dislikes": 0,
                "helpfulBy": [],
                "isVerifiedPurchase": bool(enrollment.get("payment")),
                "status": "active",
                "instructorResponse": None,
                "moderation": {
                    "flaggedBy": [], "flagCount": 0,
                    "moderatedBy": None, "moderatedAt": None, "moderationNotes": None,
                },
                "editHistory": [],
            })
        except DuplicateKeyError:
            raise ConflictError("You have already reviewed this course", "ALREADY_REVIEWED")

        self.enrollments.update(enrollment["_id"], {"rating": {"hasRated": True, "ratedAt": self._now()}})
        self.recompute_ratings(course_id)
        logging.info(f"[reviews.create] {doc['_id']} course {course_id} rating {rating}")
        return self._with_students([doc])[0]

    # -------------------- consultas --------------------
    def for_course(self, course_id: str, sort_by: str = "recent", rating: Optional[int] = None,
                   page: int = 1, limit: int = 10) -> Dict[str, Any]:
        q: Dict[str, Any] = {"course": course_id, "status": "active"}
        if rating:
            q["rating"] = rating
        items, total = self.repo.paginate(q, page=page, limit=limit, sort=SORTS.get(sort_by, SORTS["recent"]))
        stats = rating_summary([r["rating"] for r in self.repo.find({"course": course_id, "status": "active"})])
        return {
            "reviews": self._with_students(items),
            "ratingStats": stats,
            "pagination": pagination(page, limit, total, "reviews"),
        }

    def get(self, review_id: str) -> Dict[str, Any]:
        return self._with_students([self._get(review_id)])[0]

    def my_review(self, user: Dict[str, Any], course_id: str) -> Optional[Dict[str, Any]]:
        doc = self.repo.find_one_by({"student": str(user["_id"]), "course": course_id})
        return self._with_students([doc])[0] if doc else None

    # -------------------- edición --------------------
    def update(self, user: Dict[str, Any], review_id: str, rating: Optional[int], comment: Optional[str]):
        doc = self._get(review_id)
        if doc.get("student") != str(user["_id"]):
            raise ForbiddenError("You can only edit your own reviews", "NOT_REVIEW_OWNER")
        if doc.get("status") in ("flagged", "removed"):
            raise BadRequestError("This review cannot be edited", "REVIEW_LOCKED")
        changes: Dict[str, Any] = {}
        if rating is not None:
            changes["rating"] = rating
        if comment is not None:
            changes["comment"] = comment.strip()
        if not changes:
            raise BadRequestError("No changes provided", "NO_UPDATES")

        updated = self.repo.apply(doc["_id"], {
            "$set": dict(changes, updatedAt=self._now()),
            "$push": {"editHistory": {"rating": doc["rating"], "comment": doc["comment"], "editedAt": self._now()}},
        })
        if "rating" in changes:
            self.recompute_ratings(doc["course"])
        return self._with_students([updated])[0]

    def delete(self, user: Dict[str, Any], review_id: str) -> None:
        doc = self._get(review_id)
        if doc.get("student") != str(user["_id"]) and user.get("role") != "admin":
            raise ForbiddenError("Not authorized to delete this review", "NOT_REVIEW_OWNER")
        self.repo.delete(doc["_id"])
        self.enrollments.col.update_one(
            {"student": doc["student"], "course": doc["course"]},
            {"$set": {"rating": {"hasRated": False, "ratedAt": None}}},
        )
        self.recompute_ratings(doc["course"])

    # -------------------- helpful / flag --------------------
    def mark_helpful(self, user: Dict[str, Any], review_id: str, vote: str) -> Dict[str, Any]:
        doc = self._get(review_id)
        uid = str(user["_id"])
        if doc.get("student") == uid:
            raise BadRequestError("You cannot vote on your own review", "OWN_REVIEW")

        votes = [v for v in doc.get("helpfulBy") or [] if v.get("user") != uid]
        previous = next((v["type"] for v in doc.get("helpfulBy") or [] if v.get("user") == uid), None)
        if previous != vote:
            votes.append({"user": uid, "type": vote})
        likes = sum(1 for v in votes if v["type"] == "helpful")
        dislikes = sum(1 for v in votes if v["type"] == "not_helpful")
        self.repo.update(doc["_id"], {"helpfulBy": votes, "likes": likes, "dislikes": dislikes})
        return {"likes": likes, "dislikes": dislikes, "userVote": None if previous == vote else vote}

    def flag(self, user: Dict[str, Any], review_id: str, reason: str, description: Optional[str] = None):
        doc = self._get(review_id)
        uid = str(user["_id"])
        flagged_by = (doc.get("moderation") or {}).get("flaggedBy") or []
        if any(f.get("user") == uid for f in flagged_by):
            raise BadRequestError("You have already flagged this review", "ALREADY_FLAGGED")

        updated = self.repo.apply(doc["_id"], {
            "$push": {"moderation.flaggedBy": {
                "user": uid, "reason": reason, "description": description, "flaggedAt": self._now(),
            }},
            "$inc": {"moderation.flagCount": 1},
        })
        if updated["moderation"]["flagCount"] >= AUTO_FLAG_THRESHOLD and updated["status"] == "active":
            updated = self.repo.update(doc["_id"], {"status": "flagged"})
            self.recompute_ratings(doc["course"])
            logging.warning(f"[reviews.flag] ⚠️ review {review_id} auto-flagged for moderation")
        return {"flagCount": updated["moderation"]["flagCount"], "status": updated["status"]}

    # -------------------- respuesta del instructor --------------------
    def _for_instructor(self, user: Dict[str, Any], review_id: str) -> Dict[str, Any]:
        doc = self._get(review_id)
        if doc.get("instructor") != str(user["_id"]):
            raise ForbiddenError("Only the course instructor can respond to this review", "NOT_COURSE_OWNER")
        return doc

    def respond(self, user: Dict[str, Any], review_id: str, comment: str) -> Dict[str, Any]:
        doc = self._for_instructor(user, review_id)
        if doc.get("instructorResponse"):
            raise BadRequestError("You have already responded to this review", "ALREADY_RESPONDED")
        updated = self.repo.update(doc["_id"], {
            "instructorResponse": {"comment": comment.strip(), "respondedAt": self._now()},
        })
        return self._with_students([updated])[0]

    def update_response(self, user: Dict[str, Any], review_id: str, comment: str) -> Dict[str, Any]:
        doc = self._for_instructor(user, review_id)
        if not doc.get("instructorResponse"):
            raise NotFoundError("No response to update", "RESPONSE_NOT_FOUND")
        updated = self.repo.update(doc["_id"], {
            "instructorResponse.comment": comment.strip(),
            "instructorResponse.respondedAt": self._now(),
        })
        return self._with_students([updated])[0]

    def delete_response(self, user: Dict[str, Any], review_id: str) -> None:
        doc = self._for_instructor(user, review_id)
        if not doc.get("instructorResponse"):
            raise NotFoundError("No response to delete", "RESPONSE_NOT_FOUND")
        self.repo.update(doc["_id"], {"instructorResponse": None})

    # -------------------- moderación --------------------
    def moderate(self, admin: Dict[str, Any], review_id: str, action: str, notes: Optional[str] = None):
        doc = self._get(review_id)
        status = {"approve": "active", "reject": "archived", "remove": "removed"}[action]
        changes: Dict[str, Any] = {
            "status": status,
            "moderation.moderatedBy": str(admin["_id"]),
            "moderation.moderatedAt": self._now(),
            "moderation.moderationNotes": notes,
        }
        if action == "approve":
            changes["moderation.flaggedBy"] = []
            changes["moderation.flagCount"] = 0
        updated = self.repo.update(doc["_id"], changes)
        self.recompute_ratings(doc["course"])
        logging.info(f"[reviews.moderate] {review_id} -> {status} by {admin['_id']}")
        return self._with_students([updated])[0]

    def flagged(self, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        q = {"$or": [{"status": "flagged"}, {"moderation.flagCount": {"$gt": 0}, "status": "active"}]}
        items, total = self.repo.paginate(q, page=page, limit=limit, sort=[("moderation.flagCount", -1)])
        out = []
        for d in items:
            item = clean(d)
            item.pop("helpfulBy", None)
            out.append(item)
        return {"reviews": out, "pagination": pagination(page, limit, total, "reviews")}

    def instructor_reviews(self, user: Dict[str, Any], course_id: Optional[str] = None,
                           page: int = 1, limit: int = 20) -> Dict[str, Any]:
        q: Dict[str, Any] = {"instructor": str(user["_id"]), "status": {"$ne": "removed"}}
        if course_id:
            q["course"] = course_id
        items, total = self.repo.paginate(q, page=page, limit=limit, sort=[("createdAt", -1)])
        reviews = self._with_students(items)
        titles = {
            str(c["_id"]): c.get("title")
            for c in self.courses.repo.find({"_id": {"$in": [oid for oid in (to_object_id(r["course"]) for r in items) if oid]}})
        }
        for r in reviews:
            r["courseTitle"] = titles.get(r["course"])
        return {
            "reviews": reviews,
            "stats": rating_summary([r["rating"] for r in self.repo.find({"instructor": str(user["_id"]), "status": "active"})]),
            "pagination": pagination(page, limit, total, "reviews"),
        }
