import logging
from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
import redis
from neo4j import GraphDatabase

from edemy.config import settings

_mongo_client: Optional[Any] = None
_redis_client: Optional[Any] = None
_neo4j_driver: Optional[Any] = None
_neo4j_resolved = False


# ==================================
# 🟢 MongoDB
# ==================================
def get_mongo_client():
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = MongoClient(settings.MONGO_URI, serverSelectionTimeoutMS=5000)
    return _mongo_client


def get_mongo_db():
    return get_mongo_client()[settings.MONGO_DATABASE]


# ==================================
# ⚡ Redis
# ==================================
def get_redis_client():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URI, decode_responses=True)
    return _redis_client


# ==================================
# 🕸 Neo4j
# ==================================
def get_neo4j_driver():
    """Driver Bolt compartido, o None si no hay NEO4J_URI configurado."""
    global _neo4j_driver, _neo4j_resolved
    if not _neo4j_resolved:
        _neo4j_resolved = True
        if settings.NEO4J_URI:
            _neo4j_driver = GraphDatabase.driver(
                settings.NEO4J_URI, auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD)
            )
        else:
            logging.info("🕸️ NEO4J_URI not set, graph features disabled")
    return _neo4j_driver


def use_clients(mongo=None, redis_client=None, neo4j_driver=None) -> None:
    """Inject already-built clients (tests and maintenance scripts)."""
    global _mongo_client, _redis_client, _neo4j_driver, _neo4j_resolved
    _mongo_client = mongo
    _redis_client = redis_client
    _neo4j_driver = neo4j_driver
    _neo4j_resolved = True


def close_connections() -> None:
    if _mongo_client is not None:
        _mongo_client.close()
    if _neo4j_driver is not None:
        _neo4j_driver.close()


# ==================================
# 📇 Indexes
# ==================================
def ensure_indexes() -> None:
    db = get_mongo_db()
    db["users"].create_index("email", unique=True)
    db["users"].create_index("username", unique=True)
    db["courses"].create_index("instructor")
    db["courses"].create_index([("status", ASCENDING), ("category", ASCENDING)])
    db["courses"].create_index([("totalEnrollments", DESCENDING)])
    db["enrollments"].create_index([("student", ASCENDING), ("course", ASCENDING)], unique=True)
    db["enrollments"].create_index("instructor")
    db["payments"].create_index([("student", ASCENDING), ("status", ASCENDING)])
    db["payments"].create_index("providerPaymentId")
    db["reviews"].create_index([("student", ASCENDING), ("course", ASCENDING)], unique=True)
    db["reviews"].create_index([("course", ASCENDING), ("status", ASCENDING)])
    db["carts"].create_index("user", unique=True)
    db["wishlists"].create_index("user", unique=True)


# ==================================
# 🩺 Health probes
# ==================================
def check_connections() -> Dict[str, str]:
    """Ping each backend and report connected / disconnected / disabled."""
    status: Dict[str, str] = {}

    try:
        get_mongo_client().admin.command("ping")
        status["mongodb"] = "connected"
    except Exception as e:
        logging.error(f"❌ MongoDB ping failed: {e}")
        status["mongodb"] = "disconnected"

    try:
        get_redis_client().ping()
        status["redis"] = "connected"
    except Exception as e:
        logging.error(f"❌ Redis ping failed: {e}")
        status["redis"] = "disconnected"

    driver = get_neo4j_driver()
    if driver is None:
        status["neo4j"] = "disabled"
    else:
        try:
            with driver.session() as session:
                session.run("RETURN 1")
            status["neo4j"] = "connected"
        except Exception as e:
            logging.error(f"❌ Neo4j ping failed: {e}")
            status["neo4j"] = "disconnected"

    return status
