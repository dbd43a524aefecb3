# edemy/services/auth_service.py
"""
Registro, verificación por OTP, login con bloqueo por intentos fallidos,
sesiones JWT respaldadas en Redis y recuperación de contraseña.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from edemy.config import settings
from edemy.core.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    LockedError,
    NotFoundError,
    ServiceError,
    TooManyRequestsError,
    UnauthorizedError,
)
from edemy.repositories.redis_repository import RedisRepository
from edemy.repositories.user_repository import UserRepository, new_user_document, public_user
from edemy.services import email_service
from edemy.utils.security import (
    create_token,
    generate_otp,
    hash_otp,
    hash_password,
    otp_matches,
    verify_password,
)


class AuthService:
    def __init__(self):
        self.users = UserRepository()
        self.sessions = RedisRepository()

    def _now(self) -> datetime:
        return datetime.utcnow()

    def _get_by_email(self, email: str) -> Dict[str, Any]:
        user = self.users.find_by_email(email)
        if not user:
            raise NotFoundError("No account found with this email", "USER_NOT_FOUND")
        return user

    # -------------------- sesiones --------------------
    def issue_session(self, user: Dict[str, Any]) -> Dict[str, Any]:
        """Firma un JWT y registra su jti en Redis con el mismo TTL."""
        tok = create_token(user)
        self.sessions.save_session(tok["jti"], str(user["_id"]), tok["expires_in"])
        return tok

    def logout(self, jti: Optional[str]) -> None:
        if jti:
            self.sessions.revoke_session(jti)

    def _record_login(self, user: Dict[str, Any], ip: Optional[str], user_agent: Optional[str]):
        return self.users.apply(
            user["_id"],
            {
                "$set": {
                    "activity.lastLogin": self._now(),
                    "activity.ipAddress": ip,
                    "activity.userAgent": user_agent,
                    "security.loginAttempts": 0,
                    "security.lockUntil": None,
                    "updatedAt": self._now(),
                },
                "$inc": {"activity.loginCount": 1},
            },
        )

    # -------------------- registro --------------------
    def signup(self, username: str, email: str, password: str) -> Dict[str, Any]:
        existing = self.users.find_by_email(email)
        if existing:
            if (existing.get("verification") or {}).get("isEmailVerified"):
                raise ConflictError("An account with this email already exists", "EMAIL_EXISTS", field="email")
            raise BadRequestError(
                "This email is registered but not verified. Please verify your email.",
                "EMAIL_NOT_VERIFIED",
                action="verify_email",
                email=existing["email"],
            )
        if self.users.find_by_username(username):
            raise ConflictError("Username is already taken", "USERNAME_EXISTS", field="username")

        doc = new_user_document(username, email, hash_password(password))
        otp = generate_otp()
        now = self._now()
        doc["verification"].update(
            emailOTP=hash_otp(otp),
            otpExpires=now + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
            otpSentAt=now,
        )
        try:
            user = self.users.create(doc)
        except DuplicateKeyError:
            raise ConflictError("Username or email is already taken", "DUPLICATE_ACCOUNT")

        try:
            email_service.send_otp_email(user["email"], otp, user["username"])
        except email_service.EmailDeliveryError as e:
            # compensación: sin email no hay forma de verificar la cuenta
            logging.error(f"[auth.signup] OTP email failed, removing user {user['_id']}: {e}")
            self.users.delete(user["_id"])
            raise ServiceError("Failed to send verification email. Please try again.", "EMAIL_SEND_FAILED")

        logging.info(f"[auth.signup] user {user['_id']} created, OTP sent to {user['email']}")
        return {
            "userId": str(user["_id"]),
            "email": user["email"],
            "username": user["username"],
            "requiresVerification": True,
        }

    def verify_email(self, email: str, otp: str, ip: Optional[str] = None, user_agent: Optional[str] = None):
        user = self._get_by_email(email)
        ver = user.get("verification") or {}
        if ver.get("isEmailVerified"):
            raise BadRequestError("Email is already verified", "ALREADY_VERIFIED")
        self._check_email_otp(user, otp)

        self.users.set_fields(
            user["_id"],
            {
                "verification.isEmailVerified": True,
                "verification.emailOTP": None,
                "verification.otpExpires": None,
                "verification.otpAttempts": 0,
            },
        )
        user = self._record_login(user, ip, user_agent)

        try:
            email_service.send_welcome_email(user["email"], user["username"])
        except email_service.EmailDeliveryError as e:
            logging.warning(f"[auth.verify_email] welcome email skipped: {e}")

        tok = self.issue_session(user)
        return {"user": public_user(user), "token": tok["token"], "expires_in": tok["expires_in"]}

    def _check_email_otp(self, user: Dict[str, Any], otp: str) -> None:
        ver = user.get("verification") or {}
        expires = ver.get("otpExpires")
        if not ver.get("emailOTP") or not expires or expires < self._now():
            raise BadRequestError("OTP has expired. Please request a new one.", "OTP_EXPIRED")
        attempts = int(ver.get("otpAttempts") or 0)
        if attempts >= settings.OTP_MAX_ATTEMPTS:
            raise BadRequestError("Too many failed attempts. Please request a new OTP.", "OTP_ATTEMPTS_EXCEEDED")
        if not otp_matches(otp, ver.get("emailOTP")):
            self.users.apply(user["_id"], {"$inc": {"verification.otpAttempts": 1}})
            remaining = settings.OTP_MAX_ATTEMPTS - attempts - 1
            raise BadRequestError(f"Invalid OTP. {remaining} attempts remaining.", "INVALID_OTP", attemptsRemaining=remaining)

    def resend_otp(self, email: str) -> Dict[str, Any]:
        user = self._get_by_email(email)
        ver = user.get("verification") or {}
        if ver.get("isEmailVerified"):
            raise BadRequestError("Email is already verified", "ALREADY_VERIFIED")
        sent_at = ver.get("otpSentAt")
        now = self._now()
        if sent_at and (now - sent_at).total_seconds() < settings.OTP_RESEND_SECONDS:
            wait = settings.OTP_RESEND_SECONDS - int((now - sent_at).total_seconds())
            raise TooManyRequestsError(
                f"Please wait {wait} seconds before requesting a new OTP", "OTP_RESEND_TOO_SOON", retryAfter=wait
            )

        otp = generate_otp()
        self.users.set_fields(
            user["_id"],
            {
                "verification.emailOTP": hash_otp(otp),
                "verification.otpExpires": now + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
                "verification.otpAttempts": 0,
                "verification.otpSentAt": now,
            },
        )
        try:
            email_service.send_otp_email(user["email"], otp, user["username"])
        except email_service.EmailDeliveryError as e:
            logging.error(f"[auth.resend_otp] {e}")
            raise ServiceError("Failed to send verification email. Please try again.", "EMAIL_SEND_FAILED")
        return {"email": user["email"]}

    # -------------------- login --------------------
    def login(self, email_or_username: str, password: str, ip: Optional[str] = None, user_agent: Optional[str] = None):
        user = self.users.find_by_login(email_or_username)
        if not user:
            raise UnauthorizedError("No account found with these credentials", "ACCOUNT_NOT_FOUND")

        now = self._now()
        sec = user.get("security") or {}
        lock_until = sec.get("lockUntil")
        if lock_until and lock_until > now:
            raise LockedError(
                "Account is temporarily locked due to too many failed login attempts. Please try again later.",
                "ACCOUNT_LOCKED",
                lockUntil=lock_until.isoformat(),
            )
        if not user.get("isActive", True):
            raise UnauthorizedError("Your account has been deactivated", "ACCOUNT_DEACTIVATED")
        if not (user.get("verification") or {}).get("isEmailVerified"):
            raise ForbiddenError(
                "Please verify your email before logging in", "EMAIL_NOT_VERIFIED",
                action="verify_email", email=user["email"],
            )
        if not verify_password(password, user.get("passwordHash", "")):
            self._register_failed_login(user, now)
            raise UnauthorizedError("Invalid credentials", "INVALID_CREDENTIALS")

        user = self._record_login(user, ip, user_agent)
        tok = self.issue_session(user)
        logging.info(f"[auth.login] user {user['_id']} logged in")
        return {"user": public_user(user), "token": tok["token"], "expires_in": tok["expires_in"]}

    def _register_failed_login(self, user: Dict[str, Any], now: datetime) -> None:
        lock_until = (user.get("security") or {}).get("lockUntil")
        if lock_until and lock_until <= now:
            # el bloqueo venció: se empieza a contar de nuevo (solo si nadie lo reinició antes)
            reset = self.users.col.update_one(
                {"_id": user["_id"], "security.lockUntil": lock_until},
                {"$set": {"security.loginAttempts": 1, "security.lockUntil": None}},
            )
            if reset.modified_count:
                return
        updated = self.users.col.find_one_and_update(
            {"_id": user["_id"]},
            {"$inc": {"security.loginAttempts": 1}},
            return_document=ReturnDocument.AFTER,
        )
        attempts = int(((updated or {}).get("security") or {}).get("loginAttempts") or 0)
        if attempts >= settings.MAX_LOGIN_ATTEMPTS:
            self.users.set_fields(user["_id"], {"security.lockUntil": now + timedelta(hours=settings.LOCK_HOURS)})
            logging.warning(f"[auth.login] user {user['_id']} locked after {attempts} failed attempts")

    # -------------------- recuperación de contraseña --------------------
    def forgot_password(self, email: str) -> Dict[str, Any]:
        user = self._get_by_email(email)
        if not user.get("isActive", True):
            raise UnauthorizedError("Your account has been deactivated", "ACCOUNT_DEACTIVATED")
        if not (user.get("verification") or {}).get("isEmailVerified"):
            raise ForbiddenError("Please verify your email first", "EMAIL_NOT_VERIFIED", action="verify_email")

        now = self._now()
        requested = (user.get("security") or {}).get("passwordResetRequestedAt")
        if requested and (now - requested).total_seconds() < settings.PASSWORD_RESET_INTERVAL_SECONDS:
            raise TooManyRequestsError(
                "Please wait before requesting another reset code", "RESET_TOO_SOON"
            )

        otp = generate_otp()
        self.users.set_fields(
            user["_id"],
            {
                "security.passwordResetOTP": hash_otp(otp),
                "security.passwordResetExpires": now + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
                "security.passwordResetVerified": False,
                "security.passwordResetRequestedAt": now,
            },
        )
        try:
            email_service.send_password_reset_email(user["email"], otp, user["username"])
        except email_service.EmailDeliveryError as e:
            logging.error(f"[auth.forgot_password] {e}")
            self._clear_reset(user["_id"])
            raise ServiceError("Failed to send password reset email. Please try again.", "EMAIL_SEND_FAILED")
        return {"email": user["email"]}

    def verify_reset_otp(self, email: str, otp: str) -> Dict[str, Any]:
        user = self._get_by_email(email)
        sec = user.get("security") or {}
        expires = sec.get("passwordResetExpires")
        if not expires or expires < self._now() or not otp_matches(otp, sec.get("passwordResetOTP")):
            raise BadRequestError("Invalid or expired OTP", "INVALID_OTP")
        self.users.set_fields(user["_id"], {"security.passwordResetVerified": True})
        return {"email": user["email"], "verified": True}

    def reset_password(self, email: str, new_password: str, confirm_password: str) -> Dict[str, Any]:
        if new_password != confirm_password:
            raise BadRequestError("Passwords do not match", "PASSWORDS_MISMATCH")
        user = self._get_by_email(email)
        sec = user.get("security") or {}
        expires = sec.get("passwordResetExpires")
        if not sec.get("passwordResetVerified") or not expires or expires < self._now():
            raise BadRequestError(
                "Password reset session expired. Please start again.", "RESET_SESSION_EXPIRED"
            )
        self._set_password(user, new_password)
        self._clear_reset(user["_id"])
        self.users.set_fields(user["_id"], {"security.loginAttempts": 0, "security.lockUntil": None})
        self._notify_password_changed(user)
        return {"email": user["email"]}

    def _clear_reset(self, user_id: Any) -> None:
        self.users.set_fields(
            user_id,
            {
                "security.passwordResetOTP": None,
                "security.passwordResetExpires": None,
                "security.passwordResetVerified": False,
            },
        )

    def _set_password(self, user: Dict[str, Any], new_password: str, keep_jti: Optional[str] = None) -> None:
        # un segundo atrás: el token emitido justo después sigue siendo válido
        changed_at = self._now() - timedelta(seconds=1)
        self.users.set_fields(
            user["_id"],
            {"passwordHash": hash_password(new_password), "security.passwordChangedAt": changed_at},
        )
        self.sessions.revoke_user_sessions(str(user["_id"]), keep=keep_jti)

    def _notify_password_changed(self, user: Dict[str, Any]) -> None:
        try:
            email_service.send_password_changed_email(user["email"], user.get("username"))
        except email_service.EmailDeliveryError as e:
            logging.warning(f"[auth.password] notice email skipped: {e}")

    # -------------------- cambio de contraseña autenticado --------------------
    def change_password(self, user: Dict[str, Any], current_password: str, new_password: str) -> Dict[str, Any]:
        if not verify_password(current_password, user.get("passwordHash", "")):
            raise BadRequestError("Current password is incorrect", "INVALID_CURRENT_PASSWORD")
        if verify_password(new_password, user.get("passwordHash", "")):
            raise BadRequestError("New password must be different from the current one", "SAME_PASSWORD")
        self._set_password(user, new_password)
        self._notify_password_changed(user)
        fresh = self.users.find_one(user["_id"])
        tok = self.issue_session(fresh)
        return {"user": public_user(fresh), "token": tok["token"], "expires_in": tok["expires_in"]}

    def request_password_change(self, user: Dict[str, Any]) -> Dict[str, Any]:
        otp = generate_otp()
        self.users.set_fields(
            user["_id"],
            {
                "security.passwordChangeOTP": hash_otp(otp),
                "security.passwordChangeExpires": self._now() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
            },
        )
        try:
            email_service.send_otp_email(user["email"], otp, user.get("username"))
        except email_service.EmailDeliveryError as e:
            logging.error(f"[auth.request_password_change] {e}")
            raise ServiceError("Failed to send verification code. Please try again.", "EMAIL_SEND_FAILED")
        return {"email": user["email"]}

    def change_password_with_otp(self, user: Dict[str, Any], otp: str, new_password: str) -> Dict[str, Any]:
        sec = user.get("security") or {}
        expires = sec.get("passwordChangeExpires")
        if not expires or expires < self._now() or not otp_matches(otp, sec.get("passwordChangeOTP")):
            raise BadRequestError("Invalid or expired OTP", "INVALID_OTP")
        if verify_password(new_password, user.get("passwordHash", "")):
            raise BadRequestError("New password must be different from the current one", "SAME_PASSWORD")
        self._set_password(user, new_password)
        self.users.set_fields(user["_id"], {"security.passwordChangeOTP": None, "security.passwordChangeExpires": None})
        self._notify_password_changed(user)
        fresh = self.users.find_one(user["_id"])
        tok = self.issue_session(fresh)
        return {"user": public_user(fresh), "token": tok["token"], "expires_in": tok["expires_in"]}
