# rushr/stripe_webhook.py
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool
from supabase import Client

from . import config
from .connect import mirror_account
from .deps import first_row, get_supabase
from .escrow import AUTHORIZED, CANCELLED, PENDING, utcnow_iso

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/stripe", tags=["stripe"])


def _hold_for_intent(sb: Client, intent_id):
    return first_row(
        sb.table("payment_holds").select("id,job_id,status").eq("stripe_payment_intent_id", intent_id)
    )


def _on_amount_capturable(sb: Client, intent):
    # the homeowner confirmed the card; funds are held and ready to capture
    hold = _hold_for_intent(sb, intent["id"])
    if not hold or hold["status"] != PENDING:
        return
    sb.table("payment_holds").update({
        "status": AUTHORIZED,
        "updated_at": utcnow_iso(),
    }).eq("id", hold["id"]).execute()
    sb.table("homeowner_jobs").update({"payment_status": AUTHORIZED}).eq("id", hold["job_id"]).execute()
    log.info(f"Hold {hold['id']} authorized ({intent['id']})")


def _on_intent_canceled(sb: Client, intent):
    hold = _hold_for_intent(sb, intent["id"])
    if not hold or hold["status"] not in (PENDING, AUTHORIZED):
        return
    sb.table("payment_holds").update({
        "status": CANCELLED,
        "updated_at": utcnow_iso(),
    }).eq("id", hold["id"]).execute()
    log.info(f"Hold {hold['id']} cancelled ({intent['id']})")


def _on_account_updated(sb: Client, account):
    row = first_row(
        sb.table("stripe_connect_accounts").select("contractor_id").eq("stripe_account_id", account["id"])
    )
    if not row:
        log.warning(f"account.updated for unknown Connect account {account['id']}")
        return
    mirror_account(sb, row["contractor_id"], account)


HANDLERS = {
    "payment_intent.amount_capturable_updated": _on_amount_capturable,
    "payment_intent.canceled": _on_intent_canceled,
    "account.updated": _on_account_updated,
}


@router.post("/webhook")
async def webhook(req: Request, sb: Client = Depends(get_supabase)):
    secret = config.webhook_secret()
    if not secret:
        log.error("Stripe webhook secret missing (STRIPE_WEBHOOK_SECRET)")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    payload = await req.body()
    sig = req.headers.get("stripe-signature")
    try:
        event = stripe.Webhook.construct_event(payload, sig, secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        log.error(f"Stripe webhook verify FAILED: {e}; sig_header_present={bool(sig)}")
        raise HTTPException(status_code=400, detail=f"Webhook error: {e}")

    etype = event["type"]
    log.info(f"Stripe webhook received: {etype}")
    handler = HANDLERS.get(etype)
    if handler:
        # supabase calls block; keep them off the event loop
        await run_in_threadpool(handler, sb, event["data"]["object"])

    return {"ok": True}
