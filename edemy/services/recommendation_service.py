"""
Recomendaciones de cursos.

Puntaje por curso (mayor es mejor):
    +50 por cada categoría de interés que coincide
    +30 nivel exacto, +15 nivel adyacente
    + rating/5 * 10
    + min(inscriptos/10, 10)
    +5 si se publicó en los últimos 30 días
    +20 si compañeros de cursada también lo tomaron (grafo, si hay Neo4j)
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from edemy.repositories.mongo_repository import MongoRepository, to_object_id
from edemy.repositories.neo4j_repository import Neo4jRepository
from edemy.services.course_service import PUBLISHED, SORTS, public_view

LEVEL_MAP = {
    "beginner": ["Beginner", "All Levels"],
    "intermediate": ["Intermediate", "All Levels", "Beginner", "Advanced"],
    "advanced": ["Advanced", "Intermediate", "All Levels"],
    "expert": ["Advanced", "All Levels"],
}
# "expert" no existe como nivel de curso: se trata como Advanced
SKILL_INDEX = {"beginner": 0, "intermediate": 1, "advanced": 2, "expert": 2}
COURSE_LEVEL_INDEX = {"Beginner": 0, "Intermediate": 1, "Advanced": 2}

NEW_COURSE_DAYS = 30
PEER_BONUS = 20


def matched_categories(course: Dict[str, Any], interests: List[str]) -> List[str]:
    fields = [(course.get("category") or "").lower(), (course.get("subcategory") or "").lower()]
    tags = [t.lower() for t in course.get("tags") or []]
    found = []
    for interest in interests:
        needle = interest.lower()
        if any(f and (needle in f or f in needle) for f in fields) or any(needle in t for t in tags):
            found.append(interest)
    return found


def level_points(course_level: Optional[str], skill_level: str) -> int:
    course_idx = COURSE_LEVEL_INDEX.get(course_level or "")
    if course_idx is None:
        return 0
    diff = abs(course_idx - SKILL_INDEX.get(skill_level, 0))
    if diff == 0:
        return 30
    if diff == 1:
        return 15
    return 0


def score_course(course: Dict[str, Any], interests: List[str], skill_level: str,
                 now: datetime, peers: Optional[Dict[str, int]] = None) -> float:
    score = 50 * len(matched_categories(course, interests))
    score += level_points(course.get("level"), skill_level)
    score += float(course.get("averageRating") or 0) / 5 * 10
    score += min(int(course.get("totalEnrollments") or 0) / 10, 10)
    created = course.get("publishedAt") or course.get("createdAt")
    if created and created >= now - timedelta(days=NEW_COURSE_DAYS):
        score += 5
    if peers and str(course["_id"]) in peers:
        score += PEER_BONUS
    return round(score, 2)


class RecommendationService:
    def __init__(self):
        self.courses = MongoRepository("courses")
        self.enrollments = MongoRepository("enrollments")
        self.graph = Neo4jRepository()

    def _excluded(self, user: Dict[str, Any]) -> Set[Any]:
        uid = str(user["_id"])
        owned = {c["_id"] for c in self.courses.col.find({"instructor": uid}, {"_id": 1})}
        enrolled = {e["course"] for e in self.enrollments.col.find({"student": uid}, {"course": 1})}
        owned.update(oid for oid in (to_object_id(cid) for cid in enrolled) if oid is not None)
        return owned

    def popular(self, limit: int = 12, exclude: Optional[Set[Any]] = None) -> List[Dict[str, Any]]:
        q: Dict[str, Any] = dict(PUBLISHED)
        if exclude:
            q["_id"] = {"$nin": list(exclude)}
        return self.courses.find(q, sort=SORTS["popular"], limit=limit)

    def personalized(self, user: Dict[str, Any], limit: int = 12) -> Dict[str, Any]:
        interests = (user.get("interests") or {}).get("categories") or []
        skill_level = (user.get("interests") or {}).get("skillLevel") or "beginner"
        exclude = self._excluded(user)

        if not interests:
            return {
                "courses": [public_view(c) for c in self.popular(limit, exclude)],
                "personalized": False,
            }

        allowed_levels = LEVEL_MAP.get(skill_level, LEVEL_MAP["beginner"])
        q: Dict[str, Any] = {**PUBLISHED, "level": {"$in": allowed_levels}}
        if exclude:
            q["_id"] = {"$nin": list(exclude)}
        matches = [c for c in self.courses.find(q, sort=SORTS["rating"]) if matched_categories(c, interests)]
        candidates = matches[: limit * 2]

        if len(candidates) < limit:
            seen = exclude | {c["_id"] for c in candidates}
            candidates += self.popular(limit - len(candidates), seen)

        try:
            peers = self.graph.also_enrolled(str(user["_id"]))
        except Exception as e:
            logging.warning(f"[recommendations] Neo4j omitido por error: {e}")
            peers = {}

        now = datetime.utcnow()
        scored = []
        for c in candidates:
            view = public_view(c)
            view["recommendationScore"] = score_course(c, interests, skill_level, now, peers)
            view["matchedCategories"] = matched_categories(c, interests)
            scored.append(view)
        scored.sort(key=lambda v: v["recommendationScore"], reverse=True)
        return {"courses": scored[:limit], "personalized": True}

    def by_category(self, category: str, limit: int = 12) -> List[Dict[str, Any]]:
        """Cursos cuya categoría, subcategoría o algún tag contiene el texto (sin distinguir mayúsculas)."""
        rx = {"$regex": re.escape(category.strip()), "$options": "i"}
        q = {**PUBLISHED, "$or": [{"category": rx}, {"subcategory": rx}, {"tags": rx}]}
        items = self.courses.find(q, sort=SORTS["rating"], limit=limit)
        return [public_view(c) for c in items]

    def trending(self, limit: int = 12) -> List[Dict[str, Any]]:
        since = datetime.utcnow() - timedelta(days=NEW_COURSE_DAYS)
        items = self.courses.find(
            {**PUBLISHED, "publishedAt": {"$gte": since}},
            sort=[("totalEnrollments", -1), ("averageRating", -1)],
            limit=limit,
        )
        return [public_view(c) for c in items]
