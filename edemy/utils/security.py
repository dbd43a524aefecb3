import hashlib
import re
import secrets
import uuid
from calendar import timegm
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from edemy.config import settings

# pbkdf2_sha256: sin dependencias binarias (bcrypt) y sin el límite de 72 bytes.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

PASSWORD_SPECIALS = '!@#$%^&*(),.?":{}|<>'
USERNAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_]*$")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def password_problem(password: str) -> Optional[str]:
    """Mensaje de error si la contraseña no cumple la política, o None."""
    if len(password) < 8:
        return "Password must be at least 8 characters long"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"\d", password):
        return "Password must contain at least one number"
    if not any(ch in PASSWORD_SPECIALS for ch in password):
        return "Password must contain at least one special character"
    return None


# ==================================
# 🔢 OTP
# ==================================
def generate_otp() -> str:
    return str(secrets.randbelow(900000) + 100000)


def hash_otp(otp: str) -> str:
    return hashlib.sha256(str(otp).strip().encode("utf-8")).hexdigest()


def otp_matches(otp: str, otp_hash: Optional[str]) -> bool:
    return bool(otp_hash) and secrets.compare_digest(hash_otp(otp), otp_hash)


# ==================================
# 🎟️ JWT
# ==================================
def utc_timestamp(dt: datetime) -> int:
    """Epoch seconds for a naive-UTC datetime as stored in Mongo."""
    return timegm(dt.utctimetuple())


def create_token(user: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    jti = uuid.uuid4().hex
    ttl = timedelta(days=settings.JWT_EXPIRES_DAYS)
    claims = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "username": user.get("username"),
        "role": user.get("role", "student"),
        "jti": jti,
        "iat": now,
        "exp": now + ttl,
    }
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {"token": token, "jti": jti, "expires_in": int(ttl.total_seconds())}


def decode_token(token: str) -> Dict[str, Any]:
    """Raises jwt.PyJWTError on a bad or expired token."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


# ==================================
# 🧾 Identificadores legibles
# ==================================
def _ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def make_reference(prefix: str, hex_len: int = 8) -> str:
    """e.g. TXN-1712345678901-3FA9C21B"""
    return f"{prefix}-{_ms()}-{secrets.token_hex(hex_len // 2).upper()}"
