from typing import List, Tuple
from edemy.config.database import get_redis_client


def record_course_view(course_id: str):
    r = get_redis_client()
    r.zincrby("course_views", 1, course_id)


def record_enrollment(course_id: str):
    r = get_redis_client()
    r.zincrby("course_enrollments", 1, course_id)


def record_purchase(course_id: str, amount: float):
    r = get_redis_client()
    r.zincrby("course_sales", 1, course_id)
    r.zincrby("course_revenue", amount, course_id)


def course_views(course_id: str) -> int:
    r = get_redis_client()
    return int(float(r.zscore("course_views", course_id) or 0))


def top_viewed_courses(top: int = 10) -> List[Tuple[str, float]]:
    r = get_redis_client()
    return r.zrevrange("course_views", 0, top - 1, withscores=True)


def course_stats(course_id: str) -> dict:
    r = get_redis_client()
    views = r.zscore("course_views", course_id) or 0
    enrollments = r.zscore("course_enrollments", course_id) or 0
    sales = r.zscore("course_sales", course_id) or 0
    revenue = r.zscore("course_revenue", course_id) or 0
    return {
        "course_id": course_id,
        "views": int(float(views)),
        "enrollments": int(float(enrollments)),
        "sales": int(float(sales)),
        "revenue": round(float(revenue), 2),
    }
