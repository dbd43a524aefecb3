"""Enrollment tests: free enrolment, progress tracking, certificates, notes, bookmarks.

Invariants:
    - Paid courses need a completed payment owned by the student
    - Progress percentage is derived from the course's lectures, never sent by clients
    - Reaching 100 % completes the enrollment; certificates need 100 %
"""

import pytest

from edemy.services.enrollment_service import progress_percentage


@pytest.mark.parametrize("done,total,expected", [(0, 0, 0), (1, 2, 50), (1, 3, 33), (2, 3, 67), (5, 4, 100)])
def test_progress_percentage_rounds_half_up(done, total, expected):
    assert progress_percentage(done, total) == expected


def _enroll(client, headers, course_id, payment_id=None):
    body = {"courseId": course_id}
    if payment_id:
        body["paymentId"] = payment_id
    return client.post("/api/enrollments/enroll", headers=headers, json=body)


def test_enroll_in_free_course(client, student, make_course):
    course = make_course(price=0)
    res = _enroll(client, student[1], course["id"])
    assert res.status_code == 201
    enrollment = res.json()["data"]["enrollment"]
    assert enrollment["status"] == "active"
    assert enrollment["progress"]["percentage"] == 0

    res = _enroll(client, student[1], course["id"])
    assert res.json()["code"] == "ALREADY_ENROLLED"


def test_paid_course_requires_payment(client, student, make_course):
    course = make_course(price=30)
    res = _enroll(client, student[1], course["id"])
    assert res.status_code == 400
    assert res.json()["code"] == "PAYMENT_REQUIRED"


def test_cannot_enroll_in_own_course(client, instructor, make_course):
    course = make_course(price=0)
    assert _enroll(client, instructor[1], course["id"]).json()["code"] == "OWN_COURSE"


def test_cannot_enroll_in_draft(client, student, make_course):
    course = make_course(price=0, status="draft", sections=[])
    assert _enroll(client, student[1], course["id"]).json()["code"] == "COURSE_NOT_PUBLISHED"


def test_enrolment_increments_course_counter(client, student, make_course):
    course = make_course(price=0)
    _enroll(client, student[1], course["id"])
    res = client.get(f"/api/courses/public/{course['id']}")
    assert res.json()["data"]["course"]["totalEnrollments"] == 1


def test_progress_to_completion_and_certificate(client, student, make_course):
    course = make_course(price=0)
    lectures = [lec["id"] for lec in course["sections"][0]["lectures"]]
    enr = _enroll(client, student[1], course["id"]).json()["data"]["enrollment"]

    res = client.post(f"/api/enrollments/{enr['id']}/certificate", headers=student[1])
    assert res.json()["code"] == "COURSE_NOT_COMPLETED"

    res = client.post(f"/api/enrollments/{enr['id']}/lectures/{lectures[0]}/complete",
                      headers=student[1], json={"watchTime": 120})
    assert res.json()["data"]["enrollment"]["progress"]["percentage"] == 50

    # completar dos veces la misma clase no suma progreso
    res = client.post(f"/api/enrollments/{enr['id']}/lectures/{lectures[0]}/complete", headers=student[1])
    assert res.json()["data"]["enrollment"]["progress"]["percentage"] == 50

    res = client.put(f"/api/enrollments/{enr['id']}/progress", headers=student[1],
                     json={"lectureId": lectures[1], "completed": True})
    enrollment = res.json()["data"]["enrollment"]
    assert enrollment["progress"]["percentage"] == 100
    assert enrollment["status"] == "completed"
    assert enrollment["progress"]["completedSections"] == [course["sections"][0]["id"]]

    cert = client.post(f"/api/enrollments/{enr['id']}/certificate", headers=student[1]).json()["data"]["certificate"]
    assert cert["certificateId"].startswith("CERT-")
    again = client.post(f"/api/enrollments/{enr['id']}/certificate", headers=student[1]).json()["data"]["certificate"]
    assert again["certificateId"] == cert["certificateId"]


def test_unknown_lecture(client, student, make_course):
    course = make_course(price=0)
    enr = _enroll(client, student[1], course["id"]).json()["data"]["enrollment"]
    res = client.post(f"/api/enrollments/{enr['id']}/lectures/nope/complete", headers=student[1])
    assert res.status_code == 404
    assert res.json()["code"] == "LECTURE_NOT_FOUND"


def test_other_students_cannot_touch_enrollment(client, student, make_user, make_course):
    course = make_course(price=0)
    lecture = course["sections"][0]["lectures"][0]["id"]
    enr = _enroll(client, student[1], course["id"]).json()["data"]["enrollment"]
    _, other = make_user("snoop")
    assert client.get(f"/api/enrollments/{enr['id']}", headers=other).status_code == 403
    res = client.post(f"/api/enrollments/{enr['id']}/lectures/{lecture}/complete", headers=other)
    assert res.status_code == 403


def test_instructor_can_read_enrollment(client, student, instructor, make_course):
    course = make_course(price=0)
    enr = _enroll(client, student[1], course["id"]).json()["data"]["enrollment"]
    res = client.get(f"/api/enrollments/{enr['id']}", headers=instructor[1])
    assert res.status_code == 200
    assert res.json()["data"]["enrollment"]["courseInfo"]["title"] == course["title"]


def test_my_enrollments_stats(client, student, make_course):
    first = make_course(price=0, title="First")
    make_course(price=0, title="Second")
    _enroll(client, student[1], first["id"])
    data = client.get("/api/enrollments/my-enrollments", headers=student[1]).json()["data"]
    assert data["stats"]["total"] == 1
    assert data["enrollments"][0]["courseInfo"]["title"] == "First"


def test_notes_and_bookmarks(client, student, make_course):
    course = make_course(price=0)
    lecture = course["sections"][0]["lectures"][1]["id"]
    enr = _enroll(client, student[1], course["id"]).json()["data"]["enrollment"]
    base = f"/api/enrollments/{enr['id']}"

    note = client.post(f"{base}/notes", headers=student[1],
                       json={"lectureId": lecture, "content": "remember venvs", "timestamp": 42}).json()["data"]["note"]
    res = client.put(f"{base}/notes/{note['id']}", headers=student[1], json={"content": "use uv"})
    assert res.json()["data"]["note"]["content"] == "use uv"
    assert client.delete(f"{base}/notes/{note['id']}", headers=student[1]).status_code == 200
    assert client.delete(f"{base}/notes/{note['id']}", headers=student[1]).json()["code"] == "NOTE_NOT_FOUND"

    bm = client.post(f"{base}/bookmarks", headers=student[1],
                     json={"lectureId": lecture, "title": "good part", "timestamp": 10}).json()["data"]["bookmark"]
    assert client.delete(f"{base}/bookmarks/{bm['id']}", headers=student[1]).status_code == 200


def test_instructor_students_and_course_stats(client, student, instructor, make_course):
    course = make_course(price=0)
    _enroll(client, student[1], course["id"])
    data = client.get("/api/enrollments/instructor/students", headers=instructor[1]).json()["data"]
    assert data["enrollments"][0]["studentInfo"]["username"] == "student1"

    stats = client.get(f"/api/enrollments/course/{course['id']}/stats", headers=instructor[1]).json()["data"]["stats"]
    assert stats["totalEnrollments"] == 1
    assert stats["byStatus"]["active"] == 1
