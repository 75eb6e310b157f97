import os

from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from rushr.deps import get_supabase

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"ok": True}


@router.get("/health/db")
def health_db(sb: Client = Depends(get_supabase)):
    try:
        sb.table("payment_holds").select("id").limit(1).execute()
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"DB check failed: {e}")
    return {"ok": True, "db": "up"}


@router.get("/diag")
def diag():
    # which settings are present; never the values
    return {
        "supabase_url_set": bool(os.environ.get("SUPABASE_URL")),
        "service_role_set": bool(os.environ.get("SUPABASE_SERVICE_ROLE_KEY")),
        "stripe_key_set": bool(os.environ.get("STRIPE_SECRET_KEY")),
        "stripe_webhook_secret_set": bool(os.environ.get("STRIPE_WEBHOOK_SECRET")),
        "twilio_set": bool(os.environ.get("TWILIO_ACCOUNT_SID") and os.environ.get("TWILIO_AUTH_TOKEN")),
        "email_set": bool(os.environ.get("SUPABASE_ANON_KEY")),
    }
