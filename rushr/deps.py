# rushr/deps.py
import os
from typing import Any, Dict, Optional

import stripe
from fastapi import HTTPException
from supabase import create_client, Client

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


def get_supabase() -> Client:
    """Service-role client, so it bypasses RLS on the server."""
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY")
    return create_client(url, key)


def get_stripe():
    key = os.environ.get("STRIPE_SECRET_KEY")
    if not key:
        raise HTTPException(
            status_code=503,
            detail="Payment system not configured. Please add STRIPE_SECRET_KEY to environment variables.",
        )
    stripe.api_key = key
    return stripe


def get_optional_stripe():
    """Like get_stripe, but None instead of a 503 for handlers that can work without payments."""
    try:
        return get_stripe()
    except HTTPException:
        return None


def first_row(query) -> Optional[Dict[str, Any]]:
    # .single() raises on zero rows; limit(1) lets callers decide what "missing" means
    resp = query.limit(1).execute()
    rows = resp.data or []
    return rows[0] if rows else None
