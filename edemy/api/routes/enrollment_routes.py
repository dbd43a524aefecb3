# enrollment_routes.py
from typing import Optional

from fastapi import APIRouter, Depends, Query

from edemy.api.deps import get_current_user, require_instructor
from edemy.models.enrollment_model import (
    BookmarkIn,
    EnrollIn,
    LectureCompleteIn,
    NoteIn,
    NoteUpdate,
    ProgressIn,
)
from edemy.services.enrollment_service import EnrollmentService

router = APIRouter(prefix="/enrollments", tags=["Enrollments"])
svc = EnrollmentService()


@router.post("/enroll", status_code=201)
def enroll(payload: EnrollIn, user=Depends(get_current_user)):
    enrollment = svc.enroll(user, payload.courseId, payload.paymentId)
    return {"success": True, "message": "Successfully enrolled in course", "data": {"enrollment": enrollment}}


@router.get("/my-enrollments")
def my_enrollments(status: Optional[str] = Query(None, pattern="^(active|completed|cancelled|refunded|expired)$"),
                   user=Depends(get_current_user)):
    return {"success": True, "data": svc.my_enrollments(user, status)}


@router.get("/instructor/students")
def instructor_students(courseId: Optional[str] = None, page: int = Query(1, ge=1),
                        limit: int = Query(20, ge=1, le=100), user=Depends(require_instructor)):
    return {"success": True, "data": svc.instructor_students(user, courseId, page, limit)}


@router.get("/course/{course_id}/stats")
def course_stats(course_id: str, user=Depends(require_instructor)):
    return {"success": True, "data": {"stats": svc.course_stats(user, course_id)}}


@router.get("/{enr_id}")
def get_enrollment(enr_id: str, user=Depends(get_current_user)):
    return {"success": True, "data": {"enrollment": svc.get(user, enr_id)}}


@router.put("/{enr_id}/progress")
def update_progress(enr_id: str, payload: ProgressIn, user=Depends(get_current_user)):
    enrollment = svc.update_progress(user, enr_id, payload.lectureId, payload.completed, payload.watchTime)
    return {"success": True, "message": "Progress updated", "data": {"enrollment": enrollment}}


@router.post("/{enr_id}/lectures/{lecture_id}/complete")
def complete_lecture(enr_id: str, lecture_id: str, payload: Optional[LectureCompleteIn] = None,
                     user=Depends(get_current_user)):
    enrollment = svc.complete_lecture(user, enr_id, lecture_id, payload.watchTime if payload else 0)
    return {"success": True, "message": "Lecture marked as complete", "data": {"enrollment": enrollment}}


@router.post("/{enr_id}/certificate")
def issue_certificate(enr_id: str, user=Depends(get_current_user)):
    cert = svc.issue_certificate(user, enr_id)
    return {"success": True, "message": "Certificate issued", "data": {"certificate": cert}}


# -------------------- notas --------------------
@router.post("/{enr_id}/notes", status_code=201)
def add_note(enr_id: str, payload: NoteIn, user=Depends(get_current_user)):
    note = svc.add_note(user, enr_id, payload.lectureId, payload.content, payload.timestamp)
    return {"success": True, "message": "Note added", "data": {"note": note}}


@router.put("/{enr_id}/notes/{note_id}")
def update_note(enr_id: str, note_id: str, payload: NoteUpdate, user=Depends(get_current_user)):
    note = svc.update_note(user, enr_id, note_id, payload.content)
    return {"success": True, "message": "Note updated", "data": {"note": note}}


@router.delete("/{enr_id}/notes/{note_id}")
def delete_note(enr_id: str, note_id: str, user=Depends(get_current_user)):
    svc.delete_note(user, enr_id, note_id)
    return {"success": True, "message": "Note deleted"}


# -------------------- marcadores --------------------
@router.post("/{enr_id}/bookmarks", status_code=201)
def add_bookmark(enr_id: str, payload: BookmarkIn, user=Depends(get_current_user)):
    bookmark = svc.add_bookmark(user, enr_id, payload.lectureId, payload.title, payload.timestamp)
    return {"success": True, "message": "Bookmark added", "data": {"bookmark": bookmark}}


@router.delete("/{enr_id}/bookmarks/{bookmark_id}")
def delete_bookmark(enr_id: str, bookmark_id: str, user=Depends(get_current_user)):
    svc.delete_bookmark(user, enr_id, bookmark_id)
    return {"success": True, "message": "Bookmark deleted"}
