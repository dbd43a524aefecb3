from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response

from edemy.api.deps import auth_rate_limit, client_ip, get_current_user, get_optional_user
from edemy.config import settings
from edemy.models.user_model import (
    ChangePasswordIn,
    ChangePasswordOtpIn,
    DeleteAccountIn,
    EmailIn,
    InterestsIn,
    LoginIn,
    OtpIn,
    ProfileIn,
    ResetPasswordIn,
    SignupIn,
)
from edemy.repositories.user_repository import public_user
from edemy.services.auth_service import AuthService
from edemy.services.user_service import UserService

router = APIRouter(prefix="/auth", tags=["Auth"])
svc = AuthService()
user_svc = UserService()

limited = [Depends(auth_rate_limit)]


def _set_auth_cookie(response: Response, result: Dict[str, Any]) -> None:
    response.set_cookie(
        key=settings.COOKIE_NAME,
        value=result["token"],
        max_age=result["expires_in"],
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict" if settings.COOKIE_SECURE else "lax",
    )


def _session_payload(result: Dict[str, Any]) -> Dict[str, Any]:
    return {"user": result["user"], "token": result["token"]}


# -------------------- registro / verificación --------------------
@router.post("/signup", status_code=201, dependencies=limited)
def signup(payload: SignupIn):
    data = svc.signup(payload.username, payload.email, payload.password)
    return {
        "success": True,
        "message": "Account created. Check your email for the verification code.",
        "data": data,
    }


@router.post("/verify-email", dependencies=limited)
def verify_email(payload: OtpIn, request: Request, response: Response):
    result = svc.verify_email(payload.email, payload.otp, client_ip(request), request.headers.get("user-agent"))
    _set_auth_cookie(response, result)
    return {"success": True, "message": "Email verified successfully", "data": _session_payload(result)}


@router.post("/resend-otp", dependencies=limited)
def resend_otp(payload: EmailIn):
    return {"success": True, "message": "A new OTP has been sent to your email", "data": svc.resend_otp(payload.email)}


# -------------------- sesión --------------------
@router.post("/login", dependencies=limited)
def login(payload: LoginIn, request: Request, response: Response):
    result = svc.login(
        payload.email_or_username, payload.password, client_ip(request), request.headers.get("user-agent")
    )
    _set_auth_cookie(response, result)
    return {"success": True, "message": "Login successful", "data": _session_payload(result)}


@router.post("/logout")
def logout(request: Request, response: Response):
    claims = getattr(request.state, "token_claims", None) or {}
    svc.logout(claims.get("jti"))
    response.delete_cookie(settings.COOKIE_NAME)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
def me(user=Depends(get_current_user)):
    return {"success": True, "data": {"user": public_user(user)}}


@router.get("/check")
def check(user=Depends(get_optional_user)):
    if not user:
        return {"success": True, "data": {"authenticated": False}}
    return {"success": True, "data": {"authenticated": True, "user": public_user(user)}}


# -------------------- contraseña --------------------
@router.post("/forgot-password", dependencies=limited)
def forgot_password(payload: EmailIn):
    return {"success": True, "message": "Password reset code sent to your email", "data": svc.forgot_password(payload.email)}


@router.post("/verify-reset-otp", dependencies=limited)
def verify_reset_otp(payload: OtpIn):
    return {"success": True, "message": "OTP verified", "data": svc.verify_reset_otp(payload.email, payload.otp)}


@router.post("/reset-password", dependencies=limited)
def reset_password(payload: ResetPasswordIn):
    data = svc.reset_password(payload.email, payload.new_password, payload.confirm_password)
    return {"success": True, "message": "Password reset successfully. Please log in.", "data": data}


@router.put("/change-password")
def change_password(payload: ChangePasswordIn, response: Response, user=Depends(get_current_user)):
    result = svc.change_password(user, payload.current_password, payload.new_password)
    _set_auth_cookie(response, result)
    return {"success": True, "message": "Password changed successfully", "data": _session_payload(result)}


@router.post("/request-password-change")
def request_password_change(user=Depends(get_current_user)):
    return {"success": True, "message": "Verification code sent to your email", "data": svc.request_password_change(user)}


@router.post("/change-password-otp")
def change_password_otp(payload: ChangePasswordOtpIn, response: Response, user=Depends(get_current_user)):
    result = svc.change_password_with_otp(user, payload.otp, payload.new_password)
    _set_auth_cookie(response, result)
    return {"success": True, "message": "Password changed successfully", "data": _session_payload(result)}


# -------------------- perfil --------------------
@router.put("/update-profile")
def update_profile(payload: ProfileIn, user=Depends(get_current_user)):
    updated = user_svc.update_profile(user, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Profile updated successfully", "data": {"user": updated}}


@router.post("/become-educator")
def become_educator(response: Response, user=Depends(get_current_user)):
    updated = user_svc.become_educator(user)
    # el rol viaja en el token: se emite uno nuevo
    tok = svc.issue_session(updated)
    result = {"user": public_user(updated), "token": tok["token"], "expires_in": tok["expires_in"]}
    _set_auth_cookie(response, result)
    return {"success": True, "message": "You are now an educator", "data": _session_payload(result)}


@router.get("/interests")
def get_interests(user=Depends(get_current_user)):
    return {"success": True, "data": {"interests": user_svc.get_interests(user)}}


@router.put("/interests")
def update_interests(payload: InterestsIn, user=Depends(get_current_user)):
    interests = user_svc.update_interests(user, payload.categories, payload.skill_level, payload.goals)
    return {"success": True, "message": "Interests updated successfully", "data": {"interests": interests}}


# -------------------- baja de cuenta --------------------
@router.post("/delete-account")
def delete_account(payload: DeleteAccountIn, user=Depends(get_current_user)):
    deletion = user_svc.request_deletion(user, payload.password, payload.reason)
    return {
        "success": True,
        "message": f"Account scheduled for deletion in {settings.ACCOUNT_DELETION_DAYS} days",
        "data": {"accountDeletion": deletion},
    }


@router.post("/cancel-delete-account")
def cancel_delete_account(user=Depends(get_current_user)):
    deletion = user_svc.cancel_deletion(user)
    return {"success": True, "message": "Account deletion cancelled", "data": {"accountDeletion": deletion}}
