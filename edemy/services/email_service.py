# edemy/services/email_service.py
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from edemy.config import settings


class EmailDeliveryError(Exception):
    pass


def send_email(to: str, subject: str, body: str, html: Optional[str] = None) -> None:
    """
    Envía un email vía SMTP. Sin SMTP_HOST configurado sólo se loguea
    (modo desarrollo). Lanza EmailDeliveryError si el envío falla.
    """
    if not settings.SMTP_HOST:
        logging.info(f"[email] SMTP not configured, would send to={to} subject={subject!r}\n{body}")
        return

    msg = EmailMessage()
    msg["From"] = settings.EMAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=15) as smtp:
            if settings.SMTP_USE_TLS:
                smtp.starttls()
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logging.error(f"[email] send to {to} failed: {e}")
        raise EmailDeliveryError(str(e)) from e

    logging.info(f"[email] sent {subject!r} to {to}")


# -------------------- templates --------------------
def _greeting(username: Optional[str]) -> str:
    return f"Hi {username}," if username else "Hi,"


def send_otp_email(to: str, otp: str, username: Optional[str] = None) -> None:
    body = (
        f"{_greeting(username)}\n\n"
        f"Your Edemy verification code is: {otp}\n"
        f"It expires in {settings.OTP_EXPIRE_MINUTES} minutes.\n\n"
        "If you did not create an account, ignore this email."
    )
    html = (
        f"<p>{_greeting(username)}</p><p>Your Edemy verification code is:</p>"
        f"<h2 style='letter-spacing:4px'>{otp}</h2>"
        f"<p>It expires in {settings.OTP_EXPIRE_MINUTES} minutes.</p>"
    )
    send_email(to, "Verify your email - Edemy", body, html)


def send_welcome_email(to: str, username: Optional[str] = None) -> None:
    body = (
        f"{_greeting(username)}\n\n"
        "Welcome to Edemy! Your email is verified and your account is ready.\n"
        f"Start exploring courses at {settings.CLIENT_URL}\n"
    )
    send_email(to, "Welcome to Edemy", body)


def send_password_reset_email(to: str, otp: str, username: Optional[str] = None) -> None:
    body = (
        f"{_greeting(username)}\n\n"
        f"Your password reset code is: {otp}\n"
        f"It expires in {settings.OTP_EXPIRE_MINUTES} minutes.\n\n"
        "If you did not request a password reset, you can ignore this email."
    )
    send_email(to, "Password reset code - Edemy", body)


def send_password_changed_email(to: str, username: Optional[str] = None) -> None:
    body = (
        f"{_greeting(username)}\n\n"
        "Your Edemy password was just changed. If this wasn't you, "
        "reset your password immediately and contact support."
    )
    send_email(to, "Your password was changed - Edemy", body)


def send_account_deletion_email(to: str, scheduled_for, username: Optional[str] = None) -> None:
    body = (
        f"{_greeting(username)}\n\n"
        f"Your account is scheduled for deletion on {scheduled_for:%Y-%m-%d}.\n"
        "Log in and cancel the request before that date to keep your account."
    )
    send_email(to, "Account deletion scheduled - Edemy", body)
