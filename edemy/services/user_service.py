import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from edemy.config import settings
from edemy.core.errors import BadRequestError, NotFoundError
from edemy.repositories.mongo_repository import MongoRepository
from edemy.repositories.neo4j_repository import Neo4jRepository
from edemy.repositories.redis_repository import RedisRepository
from edemy.repositories.user_repository import UserRepository, public_user
from edemy.services import email_service
from edemy.utils.security import verify_password

# campo de la API -> ruta en el documento
PROFILE_FIELDS = {
    "first_name": "profile.firstName",
    "last_name": "profile.lastName",
    "bio": "profile.bio",
    "phone": "profile.phone",
    "theme": "preferences.theme",
    "language": "preferences.language",
}


class UserService:
    def __init__(self):
        self.users = UserRepository()
        self.carts = MongoRepository("carts")
        self.wishlists = MongoRepository("wishlists")
        self.sessions = RedisRepository()
        self.graph = Neo4jRepository()

    def _now(self) -> datetime:
        return datetime.utcnow()

    # -------------------- perfil --------------------
    def update_profile(self, user: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
        fields = {PROFILE_FIELDS[k]: (v.strip() if isinstance(v, str) else v)
                  for k, v in changes.items() if k in PROFILE_FIELDS and v is not None}
        if not fields:
            raise BadRequestError("No valid fields to update", "NO_UPDATES")
        return public_user(self.users.set_fields(user["_id"], fields))

    def become_educator(self, user: Dict[str, Any]) -> Dict[str, Any]:
        if user.get("role") in ("instructor", "admin"):
            raise BadRequestError("You are already an instructor", "ALREADY_INSTRUCTOR")
        return self._promote(user)

    def _promote(self, user: Dict[str, Any]) -> Dict[str, Any]:
        updated = self.users.set_fields(
            user["_id"],
            {
                "role": "instructor",
                "instructorProfile.isApproved": True,
                "instructorProfile.approvedAt": self._now(),
            },
        )
        logging.info(f"[users.promote] {user['_id']} is now an instructor")
        return updated

    def make_instructor(self, email: str) -> Dict[str, Any]:
        user = self.users.find_by_email(email)
        if not user:
            raise NotFoundError(f"No user with email {email}", "USER_NOT_FOUND")
        if user.get("role") == "instructor":
            return public_user(user)
        return public_user(self._promote(user))

    # -------------------- intereses --------------------
    def get_interests(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return user.get("interests") or {"categories": [], "skillLevel": "beginner", "goals": [], "hasCompletedInterests": False}

    def update_interests(self, user: Dict[str, Any], categories: List[str],
                         skill_level: Optional[str] = None, goals: Optional[List[str]] = None) -> Dict[str, Any]:
        current = user.get("interests") or {}
        interests = {
            "categories": categories,
            "skillLevel": skill_level or current.get("skillLevel") or "beginner",
            "goals": goals if goals is not None else current.get("goals", []),
            "hasCompletedInterests": True,
            "lastUpdated": self._now(),
        }
        updated = self.users.set_fields(user["_id"], {"interests": interests})

        try:
            self.graph.set_interests(str(user["_id"]), categories)
        except Exception as e:
            logging.warning(f"[users.interests] Neo4j omitido por error: {e}")

        return updated["interests"]

    # -------------------- baja de cuenta --------------------
    def request_deletion(self, user: Dict[str, Any], password: str, reason: Optional[str] = None) -> Dict[str, Any]:
        if not verify_password(password, user.get("passwordHash", "")):
            raise BadRequestError("Incorrect password", "INVALID_PASSWORD")
        if (user.get("accountDeletion") or {}).get("isScheduled"):
            raise BadRequestError("Account deletion is already scheduled", "DELETION_ALREADY_SCHEDULED")

        now = self._now()
        scheduled_for = now + timedelta(days=settings.ACCOUNT_DELETION_DAYS)
        deletion = {"isScheduled": True, "requestedAt": now, "scheduledFor": scheduled_for, "reason": reason}
        self.users.set_fields(user["_id"], {"accountDeletion": deletion})

        try:
            email_service.send_account_deletion_email(user["email"], scheduled_for, user.get("username"))
        except email_service.EmailDeliveryError as e:
            logging.warning(f"[users.delete] notice email skipped: {e}")
        return deletion

    def cancel_deletion(self, user: Dict[str, Any]) -> Dict[str, Any]:
        if not (user.get("accountDeletion") or {}).get("isScheduled"):
            raise BadRequestError("No account deletion is scheduled", "NO_DELETION_SCHEDULED")
        deletion = {"isScheduled": False, "requestedAt": None, "scheduledFor": None, "reason": None}
        self.users.set_fields(user["_id"], {"accountDeletion": deletion})
        return deletion

    def purge_scheduled_deletions(self, now: Optional[datetime] = None) -> int:
        """Borra las cuentas cuya fecha de baja ya pasó. Devuelve cuántas."""
        purged = 0
        for user in self.users.scheduled_for_deletion(now or self._now()):
            uid = str(user["_id"])
            self.carts.col.delete_many({"user": uid})
            self.wishlists.col.delete_many({"user": uid})
            self.sessions.revoke_user_sessions(uid)
            self.users.delete(user["_id"])
            try:
                self.graph.delete_user_node(uid)
            except Exception as e:
                logging.warning(f"[users.purge] Neo4j omitido por error: {e}")
            purged += 1
            logging.info(f"[users.purge] account {uid} deleted")
        return purged
