# edemy/config/settings.py
import os
from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


APP_NAME = "Edemy API"
APP_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
PORT = int(os.getenv("PORT", 5000))
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")

# ==================================
# 🗄️ Databases
# ==================================
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DATABASE = os.getenv("MONGO_DATABASE", "edemy")
REDIS_URI = os.getenv("REDIS_URI", "redis://localhost:6379/0")
NEO4J_URI = os.getenv("NEO4J_URI", "")
NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", "")

# ==================================
# 🔐 Auth
# ==================================
JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", 7))
COOKIE_NAME = "jwt"
COOKIE_SECURE = _bool("COOKIE_SECURE", "true" if ENVIRONMENT == "production" else "false")

OTP_EXPIRE_MINUTES = int(os.getenv("OTP_EXPIRE_MINUTES", 10))
OTP_MAX_ATTEMPTS = 5
OTP_RESEND_SECONDS = 60
PASSWORD_RESET_INTERVAL_SECONDS = 120
MAX_LOGIN_ATTEMPTS = 5
LOCK_HOURS = 2
ACCOUNT_DELETION_DAYS = 14

AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", 5))
AUTH_RATE_WINDOW_SECONDS = int(os.getenv("AUTH_RATE_WINDOW_SECONDS", 15 * 60))

# ==================================
# ✉️ Email
# ==================================
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = _bool("SMTP_USE_TLS", "true")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Edemy <no-reply@edemy.local>")

# ==================================
# 💳 Payments
# ==================================
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID", "")
PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET", "")
PAYPAL_MODE = os.getenv("PAYPAL_MODE", "sandbox")
PAYPAL_WEBHOOK_ID = os.getenv("PAYPAL_WEBHOOK_ID", "")
INSTRUCTOR_SHARE_PERCENT = float(os.getenv("INSTRUCTOR_SHARE_PERCENT", 70))
REFUND_WINDOW_DAYS = int(os.getenv("REFUND_WINDOW_DAYS", 30))
# "WELCOME10:10,SPRING:25"
COUPON_CODES = os.getenv("COUPON_CODES", "")


def coupon_table() -> dict:
    table = {}
    for chunk in COUPON_CODES.split(","):
        code, _, pct = chunk.strip().partition(":")
        if code and pct:
            table[code.strip().upper()] = float(pct)
    return table
