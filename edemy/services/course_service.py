# edemy/services/course_service.py
from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from edemy.core.errors import BadRequestError, ForbiddenError, NotFoundError
from edemy.repositories.mongo_repository import MongoRepository, clean, pagination, to_object_id
from edemy.repositories.neo4j_repository import Neo4jRepository
from edemy.repositories.user_repository import UserRepository, instructor_card
from edemy.utils import redis_stats

STOP_WORDS = {
    "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "learn", "course", "tutorial",
}

SORTS: Dict[str, List[Tuple[str, int]]] = {
    "popular": [("totalEnrollments", -1), ("averageRating", -1)],
    "rating": [("averageRating", -1), ("totalReviews", -1)],
    "newest": [("createdAt", -1)],
    "price_low": [("price", 1)],
    "price_high": [("price", -1)],
}

PUBLISHED = {"status": "published"}


# -------------------- helpers de dominio --------------------
def slugify(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (title or "").lower()).strip("-")


def effective_price(course: Dict[str, Any]) -> float:
    price = float(course.get("price") or 0)
    discount = float(course.get("discount") or 0)
    return round(price * (1 - discount / 100), 2)


def auto_tags(title: str, description: str, limit: int = 10) -> List[str]:
    words = re.findall(r"[a-z0-9]+", f"{title} {description}".lower())
    tags: List[str] = []
    for w in words:
        if len(w) >= 3 and w not in STOP_WORDS and w not in tags:
            tags.append(w)
        if len(tags) == limit:
            break
    return tags


def build_sections(sections: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int, int]:
    """Asigna ids/orden a secciones y clases; devuelve (secciones, duración total, nº de clases)."""
    out: List[Dict[str, Any]] = []
    total_duration = 0
    total_lectures = 0
    for s_idx, section in enumerate(sections):
        lectures = []
        for l_idx, lecture in enumerate(section.get("lectures") or []):
            lec = dict(lecture)
            lec["id"] = lec.get("id") or str(ObjectId())
            lec["order"] = lec.get("order") if lec.get("order") is not None else l_idx + 1
            lec["duration"] = int(lec.get("duration") or 0)
            total_duration += lec["duration"]
            total_lectures += 1
            lectures.append(lec)
        sec = dict(section)
        sec["id"] = sec.get("id") or str(ObjectId())
        sec["order"] = sec.get("order") if sec.get("order") is not None else s_idx + 1
        sec["lectures"] = lectures
        out.append(sec)
    return out, total_duration, total_lectures


def iter_lectures(course: Dict[str, Any]):
    for section in course.get("sections") or []:
        for lecture in section.get("lectures") or []:
            yield section, lecture


def serialize(course: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    out = clean(course)
    if not out:
        return None
    out["slug"] = slugify(out.get("title", ""))
    out["effectivePrice"] = effective_price(out)
    return out


def public_view(course: Dict[str, Any]) -> Dict[str, Any]:
    """Oculta los videos de las clases que no son de vista previa."""
    out = serialize(course)
    sections = []
    for section in out.get("sections") or []:
        sec = dict(section)
        sec["lectures"] = [
            lec if lec.get("isPreview") else {k: v for k, v in lec.items() if k not in ("videoUrl", "resources")}
            for lec in section.get("lectures") or []
        ]
        sections.append(sec)
    out["sections"] = sections
    return out


class CourseService:
    def __init__(self) -> None:
        self.repo = MongoRepository("courses")
        self.enrollments = MongoRepository("enrollments")
        self.users = UserRepository()
        self.graph = Neo4jRepository()

    def _now(self) -> datetime:
        return datetime.utcnow()

    # -------------------- lectura interna --------------------
    def get_doc(self, course_id: str) -> Dict[str, Any]:
        doc = self.repo.find_one(course_id)
        if not doc:
            raise NotFoundError("Course not found", "COURSE_NOT_FOUND")
        return doc

    def get_published_doc(self, course_id: str) -> Dict[str, Any]:
        doc = self.repo.find_one(course_id)
        if not doc or doc.get("status") != "published":
            raise NotFoundError("Course not found or not published", "COURSE_NOT_FOUND")
        return doc

    def _owned(self, user: Dict[str, Any], course_id: str) -> Dict[str, Any]:
        doc = self.get_doc(course_id)
        if doc.get("instructor") != str(user["_id"]) and user.get("role") != "admin":
            raise ForbiddenError("You are not the instructor of this course", "NOT_COURSE_OWNER")
        return doc

    def _attach_instructors(self, courses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ids = {to_object_id(c.get("instructor")) for c in courses}
        ids.discard(None)
        cards = {str(u["_id"]): instructor_card(u) for u in self.users.find({"_id": {"$in": list(ids)}})} if ids else {}
        for c in courses:
            c["instructorInfo"] = cards.get(c.get("instructor"))
        return courses

    def increment_enrollments(self, course_id: str, delta: int = 1) -> None:
        self.repo.apply(course_id, {"$inc": {"totalEnrollments": delta}})

    # -------------------- catálogo público --------------------
    def list_public(self, filters: Dict[str, Any]) -> Dict[str, Any]:
        q: Dict[str, Any] = dict(PUBLISHED)
        if filters.get("category"):
            q["category"] = filters["category"]
        if filters.get("level"):
            q["level"] = filters["level"]
        price: Dict[str, float] = {}
        if filters.get("minPrice") is not None:
            price["$gte"] = float(filters["minPrice"])
        if filters.get("maxPrice") is not None:
            price["$lte"] = float(filters["maxPrice"])
        if price:
            q["price"] = price
        if filters.get("rating") is not None:
            q["averageRating"] = {"$gte": float(filters["rating"])}
        if filters.get("tags"):
            tags = [t.strip().lower() for t in str(filters["tags"]).split(",") if t.strip()]
            if tags:
                q["tags"] = {"$in": tags}
        if filters.get("search"):
            rx = {"$regex": re.escape(filters["search"].strip()), "$options": "i"}
            q["$or"] = [{"title": rx}, {"subtitle": rx}, {"description": rx}, {"tags": rx}]

        page = int(filters.get("page") or 1)
        limit = int(filters.get("limit") or 12)
        sort = SORTS.get(filters.get("sortBy") or "rating", SORTS["rating"])
        items, total = self.repo.paginate(q, page=page, limit=limit, sort=sort)
        courses = self._attach_instructors([public_view(c) for c in items])
        return {"courses": courses, "pagination": pagination(page, limit, total, "courses")}

    def featured(self, limit: int = 8) -> List[Dict[str, Any]]:
        items = self.repo.find({**PUBLISHED, "featured": True}, sort=SORTS["rating"], limit=limit)
        if len(items) < limit:
            # completar con los mejor valorados
            seen = [c["_id"] for c in items]
            items += self.repo.find(
                {**PUBLISHED, "_id": {"$nin": seen}}, sort=SORTS["rating"], limit=limit - len(items)
            )
        return self._attach_instructors([public_view(c) for c in items])

    def categories(self) -> List[Dict[str, Any]]:
        counts = Counter(c.get("category") for c in self.repo.col.find(PUBLISHED, {"category": 1}))
        return [{"category": cat, "count": n} for cat, n in counts.most_common() if cat]

    def popular_tags(self, limit: int = 20) -> List[Dict[str, Any]]:
        counts: Counter = Counter()
        for c in self.repo.col.find(PUBLISHED, {"tags": 1}):
            counts.update(c.get("tags") or [])
        return [{"tag": tag, "count": n} for tag, n in counts.most_common(limit)]

    def by_category(self, category: str, page: int = 1, limit: int = 12) -> Dict[str, Any]:
        return self.list_public({"category": category, "page": page, "limit": limit, "sortBy": "popular"})

    def public_detail(self, course_id: str) -> Dict[str, Any]:
        doc = self.get_published_doc(course_id)
        try:
            redis_stats.record_course_view(str(doc["_id"]))
        except Exception as e:
            logging.warning(f"[courses.detail] view counter skipped: {e}")

        course = self._attach_instructors([public_view(doc)])[0]
        similar_q: Dict[str, Any] = {
            **PUBLISHED,
            "_id": {"$ne": doc["_id"]},
            "$or": [{"category": doc.get("category")}, {"tags": {"$in": doc.get("tags") or []}}],
        }
        similar = self.repo.find(similar_q, sort=SORTS["rating"] + [("totalEnrollments", -1)], limit=6)
        return {"course": course, "similarCourses": [public_view(s) for s in similar]}

    # -------------------- instructor --------------------
    def instructor_courses(self, user: Dict[str, Any], status: Optional[str] = None) -> List[Dict[str, Any]]:
        q: Dict[str, Any] = {"instructor": str(user["_id"])}
        if status:
            q["status"] = status
        return [serialize(c) for c in self.repo.find(q, sort=[("createdAt", -1)])]

    def instructor_stats(self, user: Dict[str, Any]) -> Dict[str, Any]:
        courses = self.repo.find({"instructor": str(user["_id"])})
        rated = [c["averageRating"] for c in courses if c.get("totalReviews")]
        views = 0
        for c in courses:
            try:
                views += redis_stats.course_views(str(c["_id"]))
            except Exception as e:
                logging.warning(f"[courses.stats] view counter skipped: {e}")
                break
        return {
            "totalCourses": len(courses),
            "publishedCourses": sum(1 for c in courses if c.get("status") == "published"),
            "draftCourses": sum(1 for c in courses if c.get("status") == "draft"),
            "totalEnrollments": sum(int(c.get("totalEnrollments") or 0) for c in courses),
            "totalRevenue": round(sum(float(c.get("price") or 0) * int(c.get("totalEnrollments") or 0) for c in courses), 2),
            "averageRating": round(sum(rated) / len(rated), 1) if rated else 0,
            "totalViews": views,
        }

    def get_for_instructor(self, user: Dict[str, Any], course_id: str) -> Dict[str, Any]:
        return serialize(self._owned(user, course_id))

    def create(self, user: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        sections, total_duration, total_lectures = build_sections(data.get("sections") or [])
        status = data.get("status") or "draft"
        if status == "published" and not sections:
            raise BadRequestError("Cannot publish a course without sections", "NO_SECTIONS")

        price = float(data.get("price") or 0)
        now = self._now()
        course: Dict[str, Any] = {
            "title": data["title"].strip(),
            "subtitle": data.get("subtitle") or "",
            "description": data["description"],
            "instructor": str(user["_id"]),
            "category": data["category"],
            "subcategory": data.get("subcategory") or "",
            "level": data.get("level") or "Beginner",
            "price": price,
            "originalPrice": float(data.get("originalPrice") if data.get("originalPrice") is not None else price),
            "discount": float(data.get("discount") or 0),
            "language": data.get("language") or "English",
            "thumbnail": data.get("thumbnail") or "",
            "previewVideo": data.get("previewVideo") or "",
            "sections": sections,
            "learningOutcomes": data.get("learningOutcomes") or [],
            "requirements": data.get("requirements") or [],
            "targetAudience": data.get("targetAudience") or "",
            "tags": data.get("tags") or auto_tags(data["title"], data["description"]),
            "status": status,
            "isPublished": status == "published",
            "publishedAt": now if status == "published" else None,
            "totalDuration": total_duration,
            "totalLectures": total_lectures,
            "averageRating": 0.0,
            "totalReviews": 0,
            "totalEnrollments": 0,
            "featured": False,
            "bestseller": False,
        }
        created = self.repo.create(course)
        course_id = str(created["_id"])
        logging.info(f"[courses.create] {course_id} by instructor {user['_id']} ({status})")

        try:
            self.graph.upsert_course_node(course_id, course["title"], course["category"], course["instructor"])
        except Exception as e:
            logging.warning(f"[courses.create] Neo4j omitido por error: {e}")

        return serialize(created)

    def update(self, user: Dict[str, Any], course_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        doc = self._owned(user, course_id)
        updates = {k: v for k, v in changes.items() if v is not None}
        if not updates:
            raise BadRequestError("No fields to update", "NO_UPDATES")

        if "sections" in updates:
            sections, total_duration, total_lectures = build_sections(updates["sections"])
            updates.update(sections=sections, totalDuration=total_duration, totalLectures=total_lectures)
        if "title" in updates:
            updates["title"] = updates["title"].strip()

        status = updates.get("status")
        if status and status != doc.get("status"):
            sections = updates.get("sections", doc.get("sections"))
            if status == "published" and not sections:
                raise BadRequestError("Cannot publish a course without sections", "NO_SECTIONS")
            updates["isPublished"] = status == "published"
            if status == "published" and not doc.get("publishedAt"):
                updates["publishedAt"] = self._now()

        updated = self.repo.update(course_id, updates)

        try:
            if "title" in updates or "category" in updates:
                self.graph.upsert_course_node(course_id, updated["title"], updated["category"], updated["instructor"])
        except Exception as e:
            logging.warning(f"[courses.update] Neo4j omitido por error: {e}")

        return serialize(updated)

    def delete(self, user: Dict[str, Any], course_id: str) -> None:
        doc = self._owned(user, course_id)
        active = self.enrollments.count({"course": str(doc["_id"]), "status": {"$in": ["active", "completed"]}})
        if active or int(doc.get("totalEnrollments") or 0) > 0:
            raise BadRequestError(
                "Cannot delete a course with enrolled students. Archive it instead.", "COURSE_HAS_ENROLLMENTS"
            )
        try:
            self.graph.delete_course_node(course_id)
        except Exception as e:
            logging.warning(f"[courses.delete] Neo4j omitido por error: {e}")
        self.repo.delete(course_id)

    def toggle_status(self, user: Dict[str, Any], course_id: str) -> Dict[str, Any]:
        doc = self._owned(user, course_id)
        if doc.get("status") == "published":
            updates = {"status": "draft", "isPublished": False}
        else:
            if not doc.get("sections"):
                raise BadRequestError("Cannot publish a course without sections", "NO_SECTIONS")
            updates = {"status": "published", "isPublished": True}
            if not doc.get("publishedAt"):
                updates["publishedAt"] = self._now()
        return serialize(self.repo.update(course_id, updates))
