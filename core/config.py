import os
import logging
from dotenv import load_dotenv
from botocore.client import Config as BotoConfig
import boto3

# Load .env from project root
try:
    load_dotenv(dotenv_path=os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".env")))
except Exception:
    try:
        load_dotenv()
    except Exception:
        pass

# Environment
APP_ENV = (os.getenv("APP_ENV") or os.getenv("ENVIRONMENT") or "development").strip().lower()
IS_PRODUCTION = APP_ENV in ("production", "prod")

R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET = os.getenv("R2_BUCKET", "")

# Payments (Stripe)
STRIPE_WEBHOOK_SECRET = (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()
STRIPE_WEBHOOK_TOLERANCE_SEC = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SEC", "300"))

# Local simulation of checkout.session.completed (never in production)
ENABLE_DEV_WEBHOOK_SIMULATION = (os.getenv("ENABLE_DEV_WEBHOOK_SIMULATION") or "").strip().lower() in ("1", "true", "yes")

# Links and contact details used in customer emails
FRONTEND_URL = (os.getenv("FRONTEND_URL") or "https://livrestaka.fr").strip().rstrip("/")
SUPPORT_EMAIL = (os.getenv("SUPPORT_EMAIL") or "contact@staka.fr").strip()

ACTIVATION_TOKEN_TTL_HOURS = int(os.getenv("ACTIVATION_TOKEN_TTL_HOURS", "48"))
OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))
# A running intent not finished within this window is considered abandoned
OUTBOX_LEASE_SECONDS = int(os.getenv("OUTBOX_LEASE_SECONDS", "600"))

APP_NAME = os.getenv("APP_NAME", "Staka Livres")
COMPANY_NAME = os.getenv("COMPANY_NAME", "Staka Livres")
COMPANY_ADDRESS = os.getenv("COMPANY_ADDRESS", "")

MAIL_FROM = os.getenv("MAIL_FROM", "Staka Livres <noreply@staka-livres.com>")
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")

# Logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("staka")

# Static dir helper
STATIC_DIR = os.path.join(os.path.dirname(__file__), "..", "static")
STATIC_DIR = os.path.abspath(STATIC_DIR)

# S3/R2 client for invoice storage
s3 = None

if R2_ACCOUNT_ID and R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY:
    s3 = boto3.resource(
        "s3",
        endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        config=BotoConfig(signature_version="s3v4"),
        region_name="auto",
    )
