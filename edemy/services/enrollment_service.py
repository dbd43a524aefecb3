# edemy/services/enrollment_service.py
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from edemy.core.errors import BadRequestError, ForbiddenError, NotFoundError
from edemy.repositories.mongo_repository import MongoRepository, clean, pagination, to_object_id
from edemy.repositories.neo4j_repository import Neo4jRepository
from edemy.repositories.user_repository import UserRepository
from edemy.services.course_service import CourseService, iter_lectures
from edemy.utils import redis_stats
from edemy.utils.security import make_reference

LIVE_STATUSES = ("active", "completed")


def progress_percentage(completed: int, total: int) -> int:
    if not total:
        return 0
    return min(100, int(math.floor(completed * 100 / total + 0.5)))


class EnrollmentService:
    def __init__(self):
        self.repo = MongoRepository("enrollments")
        self.payments = MongoRepository("payments")
        self.users = UserRepository()
        self.courses = CourseService()
        self.graph = Neo4jRepository()

    def _now(self) -> datetime:
        return datetime.utcnow()

    def _sync_graph(self, doc: Dict[str, Any]) -> None:
        try:
            self.graph.upsert_enrollment(
                doc["student"], doc["course"], doc["status"], int((doc.get("progress") or {}).get("percentage", 0))
            )
        except Exception as e:
            logging.warning(f"[enrollments] Neo4j omitido por error: {e}")

    def _course_summary(self, course_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        oids = [oid for oid in (to_object_id(c) for c in course_ids) if oid is not None]
        out = {}
        for c in self.courses.repo.find({"_id": {"$in": oids}}):
            out[str(c["_id"])] = {
                "id": str(c["_id"]),
                "title": c.get("title"),
                "thumbnail": c.get("thumbnail"),
                "instructor": c.get("instructor"),
                "totalLectures": c.get("totalLectures", 0),
                "totalDuration": c.get("totalDuration", 0),
                "level": c.get("level"),
                "category": c.get("category"),
            }
        return out

    def _with_courses(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        summaries = self._course_summary([d["course"] for d in docs])
        out = []
        for d in docs:
            item = clean(d)
            item["courseInfo"] = summaries.get(d["course"])
            out.append(item)
        return out

    # -------------------- alta --------------------
    def enroll(self, user: Dict[str, Any], course_id: str, payment_id: Optional[str] = None) -> Dict[str, Any]:
        uid = str(user["_id"])
        course = self.courses.repo.find_one(course_id)
        if not course:
            raise NotFoundError("Course not found", "COURSE_NOT_FOUND")
        if course.get("status") != "published":
            raise BadRequestError("Course is not available for enrollment", "COURSE_NOT_PUBLISHED")
        if course.get("instructor") == uid:
            raise BadRequestError("You cannot enroll in your own course", "OWN_COURSE")

        existing = self.repo.find_one_by({"student": uid, "course": str(course["_id"])})
        if existing and existing.get("status") in LIVE_STATUSES:
            if payment_id and existing.get("payment") == payment_id:
                return clean(existing)
            raise BadRequestError("You are already enrolled in this course", "ALREADY_ENROLLED")

        if float(course.get("price") or 0) > 0:
            payment = self.payments.find_one(payment_id) if payment_id else None
            if (
                not payment
                or payment.get("student") != uid
                or payment.get("course") != str(course["_id"])
                or payment.get("status") != "completed"
            ):
                raise BadRequestError("A completed payment is required to enroll in this course", "PAYMENT_REQUIRED")
            return clean(self.create_enrollment(uid, course, payment_id=str(payment["_id"]), source="purchase"))

        return clean(self.create_enrollment(uid, course, source="free"))

    def create_enrollment(self, student_id: str, course: Dict[str, Any],
                          payment_id: Optional[str] = None, source: str = "free",
                          amount: float = 0.0) -> Dict[str, Any]:
        """Crea la inscripción (o reactiva una reembolsada/cancelada). Idempotente si ya está activa."""
        course_id = str(course["_id"])
        now = self._now()
        existing = self.repo.find_one_by({"student": student_id, "course": course_id})
        if existing and existing.get("status") in LIVE_STATUSES:
            return existing

        if existing:
            doc = self.repo.update(existing["_id"], {
                "status": "active",
                "enrolledAt": now,
                "payment": payment_id,
                "pricePaid": amount,
                "metadata.enrollmentSource": source,
            })
        else:
            payload = {
                "student": student_id,
                "course": course_id,
                "instructor": course.get("instructor"),
                "status": "active",
                "enrolledAt": now,
                "completedAt": None,
                "payment": payment_id,
                "pricePaid": amount,
                "progress": {
                    "percentage": 0,
                    "completedLectures": [],
                    "completedSections": [],
                    "lastAccessedLecture": None,
                    "lastAccessedSection": None,
                    "lastAccessedAt": None,
                    "totalWatchTime": 0,
                },
                "certificate": {"issued": False, "issuedAt": None, "certificateId": None, "certificateUrl": None},
                "notes": [],
                "bookmarks": [],
                "rating": {"hasRated": False, "ratedAt": None},
                "accessType": "lifetime",
                "expiresAt": None,
                "metadata": {"enrollmentSource": source},
            }
            try:
                doc = self.repo.create(payload)
            except DuplicateKeyError:
                # carrera con otra request: devolvemos la existente
                return self.repo.find_one_by({"student": student_id, "course": course_id})

        self.courses.increment_enrollments(course_id, 1)
        try:
            redis_stats.record_enrollment(course_id)
        except Exception as e:
            logging.warning(f"[enrollments.create] stats skipped: {e}")
        self._sync_graph(doc)
        logging.info(f"[enrollments.create] student {student_id} -> course {course_id} ({source})")
        return doc

    def mark_refunded(self, student_id: str, course_id: str) -> None:
        doc = self.repo.find_one_by({"student": student_id, "course": course_id})
        if not doc or doc.get("status") not in LIVE_STATUSES:
            return
        doc = self.repo.update(doc["_id"], {"status": "refunded"})
        self.courses.increment_enrollments(course_id, -1)
        try:
            self.graph.remove_enrollment(student_id, course_id)
        except Exception as e:
            logging.warning(f"[enrollments.refund] Neo4j omitido por error: {e}")

    # -------------------- consultas --------------------
    def my_enrollments(self, user: Dict[str, Any], status: Optional[str] = None) -> Dict[str, Any]:
        uid = str(user["_id"])
        q: Dict[str, Any] = {"student": uid}
        if status:
            q["status"] = status
        docs = self.repo.find(q, sort=[("enrolledAt", -1)])
        everything = docs if not status else self.repo.find({"student": uid})
        percentages = [int((d.get("progress") or {}).get("percentage", 0)) for d in everything]
        stats = {
            "total": len(everything),
            "active": sum(1 for d in everything if d.get("status") == "active"),
            "completed": sum(1 for d in everything if d.get("status") == "completed"),
            "averageProgress": round(sum(percentages) / len(percentages)) if percentages else 0,
        }
        return {"enrollments": self._with_courses(docs), "stats": stats}

    def _get_doc(self, enrollment_id: str) -> Dict[str, Any]:
        doc = self.repo.find_one(enrollment_id)
        if not doc:
            raise NotFoundError("Enrollment not found", "ENROLLMENT_NOT_FOUND")
        return doc

    def _own(self, user: Dict[str, Any], enrollment_id: str) -> Dict[str, Any]:
        doc = self._get_doc(enrollment_id)
        if doc.get("student") != str(user["_id"]):
            raise ForbiddenError("Not authorized to modify this enrollment", "NOT_ENROLLMENT_OWNER")
        return doc

    def get(self, user: Dict[str, Any], enrollment_id: str) -> Dict[str, Any]:
        doc = self._get_doc(enrollment_id)
        uid = str(user["_id"])
        if uid not in (doc.get("student"), doc.get("instructor")) and user.get("role") != "admin":
            raise ForbiddenError("Not authorized to view this enrollment", "NOT_ENROLLMENT_OWNER")
        return self._with_courses([doc])[0]

    def find_for(self, student_id: str, course_id: str) -> Optional[Dict[str, Any]]:
        return self.repo.find_one_by({"student": student_id, "course": course_id})

    # -------------------- progreso --------------------
    def complete_lecture(self, user: Dict[str, Any], enrollment_id: str, lecture_id: str,
                         watch_time: int = 0) -> Dict[str, Any]:
        doc = self._own(user, enrollment_id)
        if doc.get("status") not in LIVE_STATUSES:
            raise ForbiddenError("This enrollment is no longer active", "ENROLLMENT_INACTIVE")
        course = self.courses.get_doc(doc["course"])
        section_id = self._section_of(course, lecture_id)

        progress = dict(doc.get("progress") or {})
        completed = list(progress.get("completedLectures") or [])
        now = self._now()
        for item in completed:
            if item["lecture"] == lecture_id:
                item["watchTime"] = int(item.get("watchTime") or 0) + watch_time
                break
        else:
            completed.append({"lecture": lecture_id, "completedAt": now, "watchTime": watch_time})

        progress.update(
            completedLectures=completed,
            lastAccessedLecture=lecture_id,
            lastAccessedSection=section_id,
            lastAccessedAt=now,
            totalWatchTime=int(progress.get("totalWatchTime") or 0) + watch_time,
        )
        self._recompute(progress, course)

        updates: Dict[str, Any] = {"progress": progress}
        if progress["percentage"] >= 100 and doc.get("status") == "active":
            updates["status"] = "completed"
            updates["completedAt"] = now
        updated = self.repo.update(doc["_id"], updates)
        self._sync_graph(updated)
        return clean(updated)

    def update_progress(self, user: Dict[str, Any], enrollment_id: str, lecture_id: str,
                        completed: bool = False, watch_time: int = 0) -> Dict[str, Any]:
        if completed:
            return self.complete_lecture(user, enrollment_id, lecture_id, watch_time)

        doc = self._own(user, enrollment_id)
        if doc.get("status") not in LIVE_STATUSES:
            raise ForbiddenError("This enrollment is no longer active", "ENROLLMENT_INACTIVE")
        course = self.courses.get_doc(doc["course"])
        section_id = self._section_of(course, lecture_id)
        progress = dict(doc.get("progress") or {})
        progress.update(
            lastAccessedLecture=lecture_id,
            lastAccessedSection=section_id,
            lastAccessedAt=self._now(),
            totalWatchTime=int(progress.get("totalWatchTime") or 0) + watch_time,
        )
        return clean(self.repo.update(doc["_id"], {"progress": progress}))

    @staticmethod
    def _section_of(course: Dict[str, Any], lecture_id: str) -> str:
        for section, lecture in iter_lectures(course):
            if lecture.get("id") == lecture_id:
                return section.get("id")
        raise NotFoundError("Lecture not found in this course", "LECTURE_NOT_FOUND")

    @staticmethod
    def _recompute(progress: Dict[str, Any], course: Dict[str, Any]) -> None:
        lecture_ids = {lec.get("id") for _, lec in iter_lectures(course)}
        done = {c["lecture"] for c in progress.get("completedLectures") or [] if c["lecture"] in lecture_ids}
        total = len(lecture_ids) or int(course.get("totalLectures") or 0)
        progress["percentage"] = progress_percentage(len(done), total)
        progress["completedSections"] = [
            s.get("id") for s in course.get("sections") or []
            if s.get("lectures") and all(l.get("id") in done for l in s["lectures"])
        ]

    # -------------------- certificado --------------------
    def issue_certificate(self, user: Dict[str, Any], enrollment_id: str) -> Dict[str, Any]:
        doc = self._get_doc(enrollment_id)
        uid = str(user["_id"])
        if uid not in (doc.get("student"), doc.get("instructor")) and user.get("role") != "admin":
            raise ForbiddenError("Not authorized to issue this certificate", "NOT_AUTHORIZED")
        cert = doc.get("certificate") or {}
        if cert.get("issued"):
            return cert
        if int((doc.get("progress") or {}).get("percentage", 0)) < 100:
            raise BadRequestError("Course must be 100% complete to issue a certificate", "COURSE_NOT_COMPLETED")

        cert_id = make_reference("CERT", 8)
        cert = {
            "issued": True,
            "issuedAt": self._now(),
            "certificateId": cert_id,
            "certificateUrl": f"/api/certificates/{cert_id}",
        }
        self.repo.update(doc["_id"], {"certificate": cert})
        logging.info(f"[enrollments.certificate] {cert_id} issued for enrollment {enrollment_id}")
        return cert

    # -------------------- notas y marcadores --------------------
    def add_note(self, user, enrollment_id: str, lecture_id: str, content: str, timestamp: int = 0):
        doc = self._own(user, enrollment_id)
        course = self.courses.get_doc(doc["course"])
        self._section_of(course, lecture_id)
        note = {"id": str(ObjectId()), "lecture": lecture_id, "content": content,
                "timestamp": timestamp, "createdAt": self._now()}
        self.repo.apply(doc["_id"], {"$push": {"notes": note}, "$set": {"updatedAt": self._now()}})
        return note

    def update_note(self, user, enrollment_id: str, note_id: str, content: str):
        doc = self._own(user, enrollment_id)
        notes = list(doc.get("notes") or [])
        for note in notes:
            if note.get("id") == note_id:
                note["content"] = content
                note["updatedAt"] = self._now()
                self.repo.update(doc["_id"], {"notes": notes})
                return note
        raise NotFoundError("Note not found", "NOTE_NOT_FOUND")

    def delete_note(self, user, enrollment_id: str, note_id: str) -> None:
        doc = self._own(user, enrollment_id)
        notes = [n for n in doc.get("notes") or [] if n.get("id") != note_id]
        if len(notes) == len(doc.get("notes") or []):
            raise NotFoundError("Note not found", "NOTE_NOT_FOUND")
        self.repo.update(doc["_id"], {"notes": notes})

    def add_bookmark(self, user, enrollment_id: str, lecture_id: str, title: str, timestamp: int = 0):
        doc = self._own(user, enrollment_id)
        course = self.courses.get_doc(doc["course"])
        self._section_of(course, lecture_id)
        bookmark = {"id": str(ObjectId()), "lecture": lecture_id, "title": title,
                    "timestamp": timestamp, "createdAt": self._now()}
        self.repo.apply(doc["_id"], {"$push": {"bookmarks": bookmark}, "$set": {"updatedAt": self._now()}})
        return bookmark

    def delete_bookmark(self, user, enrollment_id: str, bookmark_id: str) -> None:
        doc = self._own(user, enrollment_id)
        bookmarks = [b for b in doc.get("bookmarks") or [] if b.get("id") != bookmark_id]
        if len(bookmarks) == len(doc.get("bookmarks") or []):
            raise NotFoundError("Bookmark not found", "BOOKMARK_NOT_FOUND")
        self.repo.update(doc["_id"], {"bookmarks": bookmarks})

    # -------------------- instructor --------------------
    def course_stats(self, user: Dict[str, Any], course_id: str) -> Dict[str, Any]:
        course = self.courses.get_doc(course_id)
        if course.get("instructor") != str(user["_id"]) and user.get("role") != "admin":
            raise ForbiddenError("You are not the instructor of this course", "NOT_COURSE_OWNER")
        docs = self.repo.find({"course": str(course["_id"])})
        by_status = {s: 0 for s in ("active", "completed", "cancelled", "refunded", "expired")}
        for d in docs:
            by_status[d.get("status", "active")] = by_status.get(d.get("status", "active"), 0) + 1
        live = [d for d in docs if d.get("status") in LIVE_STATUSES]
        percentages = [int((d.get("progress") or {}).get("percentage", 0)) for d in live]
        return {
            "totalEnrollments": len(docs),
            "byStatus": by_status,
            "completionRate": round(by_status["completed"] / len(live) * 100, 1) if live else 0,
            "averageProgress": round(sum(percentages) / len(percentages), 1) if percentages else 0,
            "certificatesIssued": sum(1 for d in docs if (d.get("certificate") or {}).get("issued")),
        }

    def instructor_students(self, user: Dict[str, Any], course_id: Optional[str] = None,
                            page: int = 1, limit: int = 20) -> Dict[str, Any]:
        q: Dict[str, Any] = {"instructor": str(user["_id"])}
        if course_id:
            q["course"] = course_id
        docs, total = self.repo.paginate(q, page=page, limit=limit, sort=[("enrolledAt", -1)])
        items = self._with_courses(docs)
        student_ids = [oid for oid in (to_object_id(d["student"]) for d in docs) if oid is not None]
        students = {str(u["_id"]): u for u in self.users.find({"_id": {"$in": student_ids}})} if student_ids else {}
        for item in items:
            s = students.get(item["student"])
            item["studentInfo"] = {
                "id": item["student"],
                "username": s.get("username"),
                "email": s.get("email"),
                "firstName": (s.get("profile") or {}).get("firstName", ""),
                "lastName": (s.get("profile") or {}).get("lastName", ""),
            } if s else None
            item.pop("notes", None)
            item.pop("bookmarks", None)
        return {"enrollments": items, "pagination": pagination(page, limit, total, "enrollments")}
