import os

from dotenv import load_dotenv

# Load env vars
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///dira.db")
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
BASE_URL = os.getenv("BASE_URL", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Razorpay
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR")

# SMTP
SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Dira Tarot <no-reply@diratarot.com>")

# Shiprocket
SHIPROCKET_API_URL = os.getenv("SHIPROCKET_API_URL", "https://apiv2.shiprocket.in/v1/external")
SHIPROCKET_EMAIL = os.getenv("SHIPROCKET_EMAIL")
SHIPROCKET_PASSWORD = os.getenv("SHIPROCKET_PASSWORD")
SHIPROCKET_PICKUP_LOCATION = os.getenv("SHIPROCKET_PICKUP_LOCATION", "Primary")
SHIPROCKET_WEBHOOK_TOKEN = os.getenv("SHIPROCKET_WEBHOOK_TOKEN")

# Sessions (days)
USER_SESSION_DAYS = int(os.getenv("USER_SESSION_DAYS", "30"))
ADMIN_SESSION_DAYS = int(os.getenv("ADMIN_SESSION_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))


def app_settings():
    """Flask config mapping built from the environment."""
    return {
        "SECRET_KEY": SECRET_KEY,
        "DATABASE_URL": DATABASE_URL,
        "BASE_URL": BASE_URL,
        "LOG_LEVEL": LOG_LEVEL,
        "RAZORPAY_KEY_ID": RAZORPAY_KEY_ID,
        "RAZORPAY_KEY_SECRET": RAZORPAY_KEY_SECRET,
        "DEFAULT_CURRENCY": DEFAULT_CURRENCY,
        "MAIL_SERVER": SMTP_HOST,
        "MAIL_PORT": SMTP_PORT,
        "MAIL_USE_TLS": SMTP_PORT != 465,
        "MAIL_USE_SSL": SMTP_PORT == 465,
        "MAIL_USERNAME": SMTP_USER,
        "MAIL_PASSWORD": SMTP_PASSWORD,
        "MAIL_DEFAULT_SENDER": EMAIL_FROM,
        "SHIPROCKET_API_URL": SHIPROCKET_API_URL,
        "SHIPROCKET_EMAIL": SHIPROCKET_EMAIL,
        "SHIPROCKET_PASSWORD": SHIPROCKET_PASSWORD,
        "SHIPROCKET_PICKUP_LOCATION": SHIPROCKET_PICKUP_LOCATION,
        "SHIPROCKET_WEBHOOK_TOKEN": SHIPROCKET_WEBHOOK_TOKEN,
        "USER_SESSION_DAYS": USER_SESSION_DAYS,
        "ADMIN_SESSION_DAYS": ADMIN_SESSION_DAYS,
        "BCRYPT_ROUNDS": BCRYPT_ROUNDS,
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
    }
