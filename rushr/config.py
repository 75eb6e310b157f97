# rushr/config.py
import os

# ──────────────────────────────────────────────────────────────────────────────
# Non-secret settings (read once at import). Secrets such as STRIPE_SECRET_KEY
# and SUPABASE_SERVICE_ROLE_KEY are read at request time in deps.py.
# ──────────────────────────────────────────────────────────────────────────────
CURRENCY = os.environ.get("STRIPE_CURRENCY", "usd")
STATEMENT_DESCRIPTOR = "RUSHR ESCROW"

# Stripe needs HTTPS for account links, so this must be the deployed URL
SITE_URL = os.environ.get("SITE_URL", "https://rushr-main.vercel.app").rstrip("/")

CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]

# Special Trade Contractors
CONTRACTOR_MCC = "1799"


def webhook_secret():
    return os.environ.get("STRIPE_WEBHOOK_SECRET")
