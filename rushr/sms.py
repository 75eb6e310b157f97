# rushr/sms.py
import logging
import os
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

log = logging.getLogger("uvicorn.error")


def _twilio_client() -> Optional[Client]:
    sid = os.environ.get("TWILIO_ACCOUNT_SID")
    token = os.environ.get("TWILIO_AUTH_TOKEN")
    if not sid or not token:
        log.warning("Twilio credentials not configured. SMS notifications will not be sent.")
        return None
    # an API key SID (SK...) authenticates but can't be used as the account SID
    if not sid.startswith("AC"):
        log.warning("Invalid TWILIO_ACCOUNT_SID: must start with AC")
        return None
    return Client(sid, token)


def send_sms(to: str, message: str) -> bool:
    client = _twilio_client()
    from_number = os.environ.get("TWILIO_PHONE_NUMBER")
    if client is None or not from_number:
        return False

    try:
        result = client.messages.create(body=message, from_=from_number, to=to)
    except TwilioRestException as e:
        log.error(f"SMS to {to} failed: {e}")
        return False

    log.info(f"SMS sent to {to}. SID: {result.sid}")
    return True
