"""Recommendation scoring and endpoint tests.

Invariants:
    - Users without interests get popular courses, unpersonalized
    - Owned and enrolled courses are never recommended
    - Results are sorted by recommendationScore, highest first
"""

from datetime import datetime, timedelta

import pytest

from edemy.repositories.mongo_repository import MongoRepository
from edemy.services.recommendation_service import level_points, matched_categories, score_course

NOW = datetime(2026, 1, 31)


def test_matched_categories_is_case_insensitive():
    course = {"category": "Data Science", "subcategory": "Machine Learning", "tags": ["pandas", "python"]}
    assert matched_categories(course, ["data science", "Python", "Design"]) == ["data science", "Python"]
    assert matched_categories(course, ["machine"]) == ["machine"]


@pytest.mark.parametrize("course_level,skill,points", [
    ("Beginner", "beginner", 30),
    ("Intermediate", "beginner", 15),
    ("Advanced", "beginner", 0),
    ("Advanced", "expert", 30),
    ("All Levels", "advanced", 0),
])
def test_level_points(course_level, skill, points):
    assert level_points(course_level, skill) == points


def test_score_course():
    course = {
        "_id": "c1", "category": "Design", "level": "Beginner",
        "averageRating": 4.5, "totalEnrollments": 250,
        "publishedAt": NOW - timedelta(days=3),
    }
    # 50 categoría + 30 nivel + 9 rating + 10 inscriptos (tope) + 5 nuevo
    assert score_course(course, ["design"], "beginner", NOW) == 104
    assert score_course(course, ["design"], "beginner", NOW, peers={"c1": 3}) == 124

    course["publishedAt"] = NOW - timedelta(days=90)
    course["totalEnrollments"] = 20
    assert score_course(course, [], "advanced", NOW) == 11


def test_no_interests_falls_back_to_popular(client, student, make_course):
    make_course(title="Quiet")
    loud = make_course(title="Loud")
    MongoRepository("courses").update(loud["id"], {"totalEnrollments": 40})
    data = client.get("/api/courses/recommendations/personalized", headers=student[1]).json()["data"]
    assert data["personalized"] is False
    assert [c["title"] for c in data["courses"]] == ["Loud", "Quiet"]


def test_personalized_ranking_excludes_enrolled(client, student, make_course):
    res = client.put("/api/auth/interests", headers=student[1],
                     json={"categories": ["Photography"], "skillLevel": "beginner"})
    assert res.status_code == 200
    match = make_course(title="Photography basics", category="Photography", price=0)
    make_course(title="Advanced data", category="Data Science", level="Advanced")
    taken = make_course(title="Photography I took", category="Photography", price=0)
    client.post("/api/enrollments/enroll", headers=student[1], json={"courseId": taken["id"]})

    data = client.get("/api/courses/recommendations/personalized", headers=student[1]).json()["data"]
    assert data["personalized"] is True
    titles = [c["title"] for c in data["courses"]]
    assert titles[0] == "Photography basics"
    assert "Photography I took" not in titles
    assert data["courses"][0]["matchedCategories"] == ["Photography"]
    scores = [c["recommendationScore"] for c in data["courses"]]
    assert scores == sorted(scores, reverse=True)
    assert match["id"] == data["courses"][0]["id"]


def test_interest_categories(client, student):
    res = client.put("/api/auth/interests", headers=student[1],
                     json={"categories": ["3D & Animation", "Finance & Accounting", "Test Prep", "Other"],
                           "goals": ["Career Advancement"]})
    assert res.status_code == 200

    res = client.put("/api/auth/interests", headers=student[1], json={"categories": ["Underwater Basketry"]})
    assert res.status_code == 400


def test_instructor_does_not_get_own_courses(client, instructor, make_course):
    make_course()
    data = client.get("/api/courses/recommendations/personalized", headers=instructor[1]).json()["data"]
    assert data["courses"] == []


def test_trending_and_by_category(client, make_course):
    make_course(title="Fresh", category="Design")
    old = make_course(title="Old", category="Design")
    MongoRepository("courses").update(old["id"], {"publishedAt": datetime.utcnow() - timedelta(days=60)})

    trending = client.get("/api/courses/trending").json()["data"]["courses"]
    assert [c["title"] for c in trending] == ["Fresh"]

    by_cat = client.get("/api/courses/recommendations/category/Design").json()["data"]["courses"]
    assert {c["title"] for c in by_cat} == {"Fresh", "Old"}


def test_by_category_matches_subcategory_and_tags(client, make_course):
    make_course(title="Logo work", category="Design")
    make_course(title="Neural nets", category="Data Science", subcategory="Machine Learning")
    make_course(title="Camera vision", category="Technology", tags=["opencv", "machine-vision"])

    def titles(term):
        data = client.get(f"/api/courses/recommendations/category/{term}").json()["data"]
        return {c["title"] for c in data["courses"]}

    assert titles("design") == {"Logo work"}
    assert titles("MACHINE") == {"Neural nets", "Camera vision"}
    assert titles("c++") == set()
