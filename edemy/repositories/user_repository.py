import re
from datetime import datetime
from typing import Any, Dict, Optional

from edemy.repositories.mongo_repository import MongoRepository, clean

# campos que nunca salen en una respuesta
_PRIVATE_VERIFICATION = ("emailOTP", "otpExpires", "otpAttempts", "otpSentAt")


def new_user_document(username: str, email: str, password_hash: str) -> Dict[str, Any]:
    return {
        "username": username,
        "email": email.lower(),
        "passwordHash": password_hash,
        "role": "student",
        "profile": {"firstName": "", "lastName": "", "avatar": "", "bio": "", "phone": ""},
        "preferences": {
            "theme": "dark",
            "language": "en",
            "notifications": {"email": True, "push": True, "courseUpdates": True, "promotions": False},
        },
        "interests": {
            "categories": [],
            "skillLevel": "beginner",
            "goals": [],
            "hasCompletedInterests": False,
            "lastUpdated": None,
        },
        "instructorProfile": {
            "bio": "",
            "expertise": [],
            "isApproved": False,
            "approvedAt": None,
            "earnings": {"total": 0.0, "pending": 0.0, "paid": 0.0},
            "rating": {"average": 0.0, "count": 0},
        },
        "verification": {
            "isEmailVerified": False,
            "emailOTP": None,
            "otpExpires": None,
            "otpAttempts": 0,
            "otpSentAt": None,
        },
        "security": {
            "passwordResetOTP": None,
            "passwordResetExpires": None,
            "passwordResetVerified": False,
            "passwordResetRequestedAt": None,
            "passwordChangeOTP": None,
            "passwordChangeExpires": None,
            "passwordChangedAt": None,
            "loginAttempts": 0,
            "lockUntil": None,
        },
        "activity": {"lastLogin": None, "loginCount": 0, "ipAddress": None, "userAgent": None},
        "accountDeletion": {"isScheduled": False, "requestedAt": None, "scheduledFor": None, "reason": None},
        "isActive": True,
    }


def public_user(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Usuario sin hash de contraseña, bloque `security` ni datos de OTP."""
    out = clean(doc)
    if not out:
        return None
    out.pop("passwordHash", None)
    out.pop("security", None)
    verification = dict(out.get("verification") or {})
    for key in _PRIVATE_VERIFICATION:
        verification.pop(key, None)
    out["verification"] = verification
    return out


def instructor_card(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Datos públicos de un instructor para embeber en cursos y reseñas."""
    if not doc:
        return None
    profile = doc.get("profile") or {}
    return {
        "id": str(doc["_id"]),
        "username": doc.get("username"),
        "firstName": profile.get("firstName", ""),
        "lastName": profile.get("lastName", ""),
        "avatar": profile.get("avatar", ""),
        "bio": (doc.get("instructorProfile") or {}).get("bio") or profile.get("bio", ""),
        "rating": (doc.get("instructorProfile") or {}).get("rating", {"average": 0, "count": 0}),
    }


class UserRepository(MongoRepository):
    def __init__(self):
        super().__init__("users")

    def find_by_email(self, email: str):
        return self.col.find_one({"email": email.strip().lower()})

    def find_by_username(self, username: str):
        # case-insensitive, como el índice de login
        return self.col.find_one({"username": {"$regex": f"^{re.escape(username.strip())}$", "$options": "i"}})

    def find_by_login(self, email_or_username: str):
        value = email_or_username.strip()
        if "@" in value:
            return self.find_by_email(value)
        return self.find_by_username(value)

    def set_fields(self, user_id: Any, fields: Dict[str, Any]):
        """$set con rutas con punto (p.ej. "security.loginAttempts")."""
        return self.update(user_id, fields)

    def scheduled_for_deletion(self, now: Optional[datetime] = None):
        now = now or datetime.utcnow()
        return self.find({"accountDeletion.isScheduled": True, "accountDeletion.scheduledFor": {"$lte": now}})
