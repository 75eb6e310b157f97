# rushr/mailer.py
import html
import logging
import os

import httpx

log = logging.getLogger("uvicorn.error")


def send_email(to: str, subject: str, text: str) -> bool:
    """Send a plain email through the Supabase `send-email` edge function (SMTP behind it)."""
    url = os.environ.get("SUPABASE_URL")
    anon_key = os.environ.get("SUPABASE_ANON_KEY")
    if not url or not anon_key:
        log.warning(f"Email not configured (SUPABASE_URL / SUPABASE_ANON_KEY); skipping '{subject}'")
        return False

    try:
        resp = httpx.post(
            f"{url.rstrip('/')}/functions/v1/send-email",
            headers={"Authorization": f"Bearer {anon_key}"},
            json={
                "to": to,
                "subject": subject,
                "html": f"<p>{html.escape(text)}</p>",
                "text": text,
            },
            timeout=10,
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        log.error(f"Email '{subject}' to {to} failed: {e}")
        return False

    log.info(f"Email '{subject}' sent to {to}")
    return True
