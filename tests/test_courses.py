"""Course catalog and instructor management tests.

Invariants:
    - Public endpoints only ever show published courses
    - Non-preview lecture videos are hidden from the public view
    - Only the owning instructor (or an admin) may change a course
    - A course cannot be published without sections
"""

from edemy.utils import redis_stats

from conftest import course_payload


def test_create_course_publishes_and_counts_lectures(client, instructor):
    _, headers = instructor
    res = client.post("/api/courses", headers=headers, json=course_payload())
    assert res.status_code == 201
    body = res.json()
    assert body["message"] == "Course published successfully"
    course = body["data"]["course"]
    assert course["totalLectures"] == 2
    assert course["totalDuration"] == 900
    assert course["slug"] == "python-for-data-science"
    assert all(lec["id"] for lec in course["sections"][0]["lectures"])


def test_create_draft_without_sections(client, instructor):
    res = client.post("/api/courses", headers=instructor[1], json=course_payload(status="draft", sections=[]))
    assert res.status_code == 201
    assert res.json()["message"] == "Course saved as draft"


def test_cannot_publish_without_sections(client, instructor):
    res = client.post("/api/courses", headers=instructor[1], json=course_payload(sections=[]))
    assert res.status_code == 400
    assert res.json()["code"] == "NO_SECTIONS"


def test_students_cannot_create_courses(client, student):
    res = client.post("/api/courses", headers=student[1], json=course_payload())
    assert res.status_code == 403
    assert res.json()["code"] == "INSUFFICIENT_ROLE"


def test_unknown_category_is_a_validation_error(client, instructor):
    res = client.post("/api/courses", headers=instructor[1], json=course_payload(category="Cooking"))
    assert res.status_code == 400
    assert "category" in res.json()["errors"]


def test_tags_are_derived_when_missing(make_course):
    course = make_course()
    assert "python" in course["tags"]
    assert "for" not in course["tags"]
    assert "learn" not in course["tags"]


# -- public catalog ------------------------------------------------------------

def test_public_list_hides_drafts(client, make_course):
    make_course(title="Visible course")
    make_course(title="Hidden draft", status="draft", sections=[])
    res = client.get("/api/courses")
    assert res.status_code == 200
    titles = [c["title"] for c in res.json()["data"]["courses"]]
    assert titles == ["Visible course"]
    assert res.json()["data"]["pagination"]["totalCourses"] == 1


def test_public_list_filters_and_search(client, make_course):
    make_course(title="Cheap design", category="Design", price=10)
    make_course(title="Pricey data", price=200)
    data = client.get("/api/courses", params={"maxPrice": 50}).json()["data"]
    assert [c["title"] for c in data["courses"]] == ["Cheap design"]

    data = client.get("/api/courses", params={"search": "PRICEY"}).json()["data"]
    assert [c["title"] for c in data["courses"]] == ["Pricey data"]

    data = client.get("/api/courses", params={"sortBy": "price_low"}).json()["data"]
    assert [c["title"] for c in data["courses"]] == ["Cheap design", "Pricey data"]


def test_public_list_rejects_bad_sort(client):
    res = client.get("/api/courses", params={"sortBy": "random"})
    assert res.status_code == 400


def test_public_detail_hides_locked_videos_and_counts_views(client, make_course):
    course = make_course()
    res = client.get(f"/api/courses/public/{course['id']}")
    assert res.status_code == 200
    lectures = res.json()["data"]["course"]["sections"][0]["lectures"]
    assert lectures[0]["videoUrl"] == "https://cdn/intro.mp4"
    assert "videoUrl" not in lectures[1]
    assert res.json()["data"]["course"]["instructorInfo"]["username"] == "teacher1"
    assert redis_stats.course_views(course["id"]) == 1


def test_public_detail_of_draft_is_404(client, make_course):
    course = make_course(status="draft", sections=[])
    assert client.get(f"/api/courses/public/{course['id']}").status_code == 404


def test_categories_and_popular_tags(client, make_course):
    make_course(tags=["python", "pandas"])
    make_course(title="Another", category="Design", tags=["python"])
    cats = client.get("/api/courses/categories").json()["data"]["categories"]
    assert {"category": "Data Science", "count": 1} in cats
    tags = client.get("/api/courses/tags/popular").json()["data"]["tags"]
    assert tags[0] == {"tag": "python", "count": 2}


def test_featured_falls_back_to_top_rated(client, make_course):
    make_course(title="One")
    res = client.get("/api/courses/featured")
    assert [c["title"] for c in res.json()["data"]["courses"]] == ["One"]


# -- instructor ----------------------------------------------------------------

def test_update_requires_ownership(client, make_user, make_course):
    course = make_course()
    _, other = make_user("intruder", role="instructor")
    res = client.put(f"/api/courses/{course['id']}", headers=other, json={"title": "Mine now"})
    assert res.status_code == 403
    assert res.json()["code"] == "NOT_COURSE_OWNER"


def test_update_and_toggle_status(client, instructor, make_course):
    course = make_course()
    _, headers = instructor
    res = client.put(f"/api/courses/{course['id']}", headers=headers, json={"title": "New title", "price": 20})
    assert res.json()["data"]["course"]["title"] == "New title"

    res = client.patch(f"/api/courses/{course['id']}/toggle-status", headers=headers)
    assert res.json()["data"]["course"]["status"] == "draft"
    assert res.json()["message"] == "Course unpublished successfully"


def test_delete_course_with_enrollments_is_refused(client, make_user, make_course, instructor):
    course = make_course(price=0)
    _, student_headers = make_user("learner")
    client.post("/api/enrollments/enroll", headers=student_headers, json={"courseId": course["id"]})
    res = client.delete(f"/api/courses/{course['id']}", headers=instructor[1])
    assert res.status_code == 400
    assert res.json()["code"] == "COURSE_HAS_ENROLLMENTS"


def test_delete_course(client, make_course, instructor):
    course = make_course()
    assert client.delete(f"/api/courses/{course['id']}", headers=instructor[1]).status_code == 200
    assert client.get(f"/api/courses/{course['id']}", headers=instructor[1]).status_code == 404


def test_instructor_stats(client, make_course, instructor):
    make_course()
    make_course(status="draft", sections=[])
    stats = client.get("/api/courses/instructor/stats", headers=instructor[1]).json()["data"]["stats"]
    assert stats["totalCourses"] == 2
    assert stats["publishedCourses"] == 1
    assert stats["draftCourses"] == 1


def test_unknown_route_envelope(client):
    res = client.get("/api/nope")
    assert res.status_code == 404
    assert res.json()["success"] is False
