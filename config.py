# ======================================
# config.py
# (Loads critical environment variables)
# ======================================
import os
from dotenv import load_dotenv

# Load .env when running locally
load_dotenv()

# ----------------------
# Database (hosted Postgres)
# ----------------------
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("❌ Missing DATABASE_URL env var")

SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

# ----------------------
# Supabase (hosted auth)
# ----------------------
SUPABASE_URL = os.getenv("SUPABASE_URL")
if not SUPABASE_URL:
    raise RuntimeError("❌ Missing SUPABASE_URL env var")
SUPABASE_URL = SUPABASE_URL.rstrip("/")

SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
if not SUPABASE_ANON_KEY:
    raise RuntimeError("❌ Missing SUPABASE_ANON_KEY env var")

SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# ----------------------
# Stripe
# ----------------------
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
if not STRIPE_SECRET_KEY:
    raise RuntimeError("❌ Missing STRIPE_SECRET_KEY env var")

STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
if not STRIPE_WEBHOOK_SECRET:
    raise RuntimeError("❌ Missing STRIPE_WEBHOOK_SECRET env var")

STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1")
STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))

# ----------------------
# Brevo (transactional email)
# ----------------------
BREVO_API_KEY = os.getenv("BREVO_API_KEY")
if not BREVO_API_KEY:
    raise RuntimeError("❌ Missing BREVO_API_KEY env var")

BREVO_API_URL = os.getenv("BREVO_API_URL", "https://api.brevo.com/v3/smtp/email")
DEFAULT_SENDER_EMAIL = os.getenv("DEFAULT_SENDER_EMAIL", "hello@pbejourney.com")
DEFAULT_SENDER_NAME = os.getenv("DEFAULT_SENDER_NAME", "PBE Journey")

# ----------------------
# Web
# ----------------------
APP_URL = os.getenv("APP_URL", "https://pbejourney.com")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
