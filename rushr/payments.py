# rushr/payments.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import stripe
from fastapi import APIRouter, Depends, HTTPException
from postgrest.exceptions import APIError
from supabase import Client

from . import config, notifications
from .customers import get_or_create_customer
from .deps import UNIQUE_VIOLATION, first_row, get_optional_stripe, get_stripe, get_supabase
from .escrow import (
    AUTHORIZED,
    CAPTURED,
    PENDING,
    RELEASED,
    Fees,
    ReleaseError,
    compute_fees,
    release_hold,
    to_cents,
    transfer_group,
    utcnow_iso,
)
from .models import CaptureIn, ConfirmCompleteIn, CreateHoldIn, ReleaseIn

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/payments", tags=["payments"])


def open_hold(
    sb: Client,
    stripe_api,
    *,
    link_column: str,
    link_id: str,
    homeowner_id: str,
    contractor_id: str,
    amount,
    job_id: Optional[str],
    description: str,
    metadata: Dict[str, str],
) -> Tuple[Dict[str, Any], Fees, Any]:
    """Authorize `amount` on the homeowner's card and record a pending hold.

    `link_column` is the unique column the hold hangs off (bid_id or
    offer_id). If the insert fails the PaymentIntent is cancelled, and a
    unique violation on `link_column` becomes a 400.
    """
    customer_id = get_or_create_customer(sb, stripe_api, homeowner_id)
    fees = compute_fees(amount)

    intent = stripe_api.PaymentIntent.create(
        amount=to_cents(fees.amount),
        currency=config.CURRENCY,
        customer=customer_id,
        capture_method="manual",
        metadata={
            **metadata,
            "homeowner_id": homeowner_id,
            "contractor_id": contractor_id,
            "platform_fee": str(fees.platform_fee),
            "contractor_payout": str(fees.contractor_payout),
        },
        description=description,
        statement_descriptor=config.STATEMENT_DESCRIPTOR,
    )

    now = utcnow_iso()
    try:
        resp = sb.table("payment_holds").insert({
            link_column: link_id,
            "job_id": job_id,
            "homeowner_id": homeowner_id,
            "contractor_id": contractor_id,
            "stripe_payment_intent_id": intent.id,
            "stripe_customer_id": customer_id,
            "amount": float(fees.amount),
            "platform_fee": float(fees.platform_fee),
            "contractor_payout": float(fees.contractor_payout),
            "stripe_fee": float(fees.stripe_fee),
            "status": PENDING,
            "homeowner_confirmed_complete": False,
            "contractor_confirmed_complete": False,
            "created_at": now,
            "updated_at": now,
        }).execute()
    except APIError as e:
        # don't leave an orphaned authorization at Stripe
        log.error(f"payment_holds insert failed for {link_column} {link_id}, cancelling {intent.id}: {e.message}")
        stripe_api.PaymentIntent.cancel(intent.id)
        if e.code == UNIQUE_VIOLATION:
            noun = link_column.replace("_id", "")
            raise HTTPException(status_code=400, detail=f"Payment hold already exists for this {noun}")
        raise

    hold = resp.data[0]
    if job_id:
        sb.table("homeowner_jobs").update({
            "payment_status": PENDING,
            "payment_hold_id": hold["id"],
        }).eq("id", job_id).execute()

    log.info(f"Created hold {hold['id']} ({intent.id}) for {link_column} {link_id}: {fees.amount}")
    return hold, fees, intent


def hold_created(hold, fees: Fees, intent) -> Dict[str, Any]:
    return {
        "success": True,
        "clientSecret": intent.client_secret,
        "paymentHoldId": hold["id"],
        "amount": float(fees.amount),
        "platformFee": float(fees.platform_fee),
        "contractorPayout": float(fees.contractor_payout),
    }


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/payments/create-hold: authorize (don't capture) the bid amount
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/create-hold")
def create_hold(
    body: CreateHoldIn,
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    bid = first_row(
        sb.table("job_bids").select("*").eq("id", body.bid_id).eq("homeowner_id", body.homeowner_id)
    )
    if not bid:
        raise HTTPException(status_code=404, detail="Bid not found or access denied")

    # cheap early exit; the unique key on bid_id is the real guard
    if first_row(sb.table("payment_holds").select("id").eq("bid_id", body.bid_id)):
        raise HTTPException(status_code=400, detail="Payment hold already exists for this bid")

    job = first_row(sb.table("homeowner_jobs").select("id,title").eq("id", bid["job_id"])) or {}
    hold, fees, intent = open_hold(
        sb,
        stripe_api,
        link_column="bid_id",
        link_id=body.bid_id,
        homeowner_id=body.homeowner_id,
        contractor_id=bid["contractor_id"],
        amount=bid["bid_amount"],
        job_id=bid["job_id"],
        description=f"Escrow payment for: {job.get('title') or 'Job'}",
        metadata={"job_id": bid["job_id"], "bid_id": body.bid_id},
    )
    return hold_created(hold, fees, intent)


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/payments/capture: charge the authorized hold into escrow
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/capture")
def capture(
    body: CaptureIn,
    stripe_api=Depends(get_stripe),
    sb: Client = Depends(get_supabase),
):
    hold = first_row(
        sb.table("payment_holds").select("*")
        .eq("id", body.payment_hold_id)
        .eq("homeowner_id", body.homeowner_id)
    )
    if not hold:
        raise HTTPException(status_code=404, detail="Payment hold not found or access denied")
    if hold["status"] != AUTHORIZED:
        raise HTTPException(status_code=400, detail=f"Cannot capture payment with status: {hold['status']}")

    intent = stripe_api.PaymentIntent.capture(hold["stripe_payment_intent_id"])
    charge_id = intent.latest_charge

    now = utcnow_iso()
    sb.table("payment_holds").update({
        "status": CAPTURED,
        "stripe_charge_id": charge_id,
        "updated_at": now,
    }).eq("id", hold["id"]).execute()

    if hold.get("job_id"):
        sb.table("homeowner_jobs").update({
            "payment_status": "paid",
            "payment_captured_at": now,
        }).eq("id", hold["job_id"]).execute()

    log.info(f"Captured hold {hold['id']} ({hold['stripe_payment_intent_id']}), charge {charge_id}")
    notifications.payment_captured(sb, {**hold, "status": CAPTURED})

    return {"success": True, "status": CAPTURED, "chargeId": charge_id}


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/payments/confirm-complete: one side confirms; both → release
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/confirm-complete")
def confirm_complete(
    body: ConfirmCompleteIn,
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_optional_stripe),
):
    if body.payment_hold_id:
        hold = first_row(sb.table("payment_holds").select("*").eq("id", body.payment_hold_id))
    else:
        hold = first_row(
            sb.table("payment_holds").select("*")
            .eq("job_id", body.job_id)
            .eq("status", CAPTURED)
            .order("created_at", desc=True)
        )
    if not hold:
        raise HTTPException(
            status_code=404,
            detail="Payment hold not found. Ensure payment has been captured for this job.",
        )

    role = body.user_type
    other = "contractor" if role == "homeowner" else "homeowner"

    if body.user_id and hold[f"{role}_id"] != body.user_id:
        raise HTTPException(status_code=403, detail="User type mismatch - you are not authorized for this action")
    if hold["status"] != CAPTURED:
        raise HTTPException(status_code=400, detail="Payment must be captured before confirming completion")
    if hold.get(f"{role}_confirmed_complete"):
        raise HTTPException(status_code=400, detail=f"{role.capitalize()} has already confirmed completion")

    now = utcnow_iso()
    changes = {
        f"{role}_confirmed_complete": True,
        f"{role}_confirmed_at": now,
        "updated_at": now,
    }
    sb.table("payment_holds").update(changes).eq("id", hold["id"]).execute()

    # the other side's flag as read above; no reload, so concurrent confirms can race
    both_confirmed = bool(hold.get(f"{other}_confirmed_complete"))
    hold = {**hold, **changes}
    other_party_id = hold[f"{other}_id"]

    released = None
    release_error = None
    if both_confirmed:
        if hold.get("job_id"):
            sb.table("homeowner_jobs").update({"status": "completed"}).eq("id", hold["job_id"]).execute()
        released, release_error = _auto_release(sb, stripe_api, hold)
        notifications.work_completed(sb, hold, other_party_id, released=released is not None)
    else:
        notifications.confirmation_requested(sb, hold, other_party_id, confirmed_by=role)

    out = {
        "success": True,
        "bothConfirmed": both_confirmed,
        "paymentReleased": released is not None,
        "homeownerConfirmed": bool(hold.get("homeowner_confirmed_complete")),
        "contractorConfirmed": bool(hold.get("contractor_confirmed_complete")),
    }
    if released:
        out["transferId"] = released["transferId"]
    if release_error:
        out["releaseError"] = release_error
    return out


def _auto_release(sb: Client, stripe_api, hold):
    """Release right after the second confirmation. Failures leave the hold
    captured for /release or /reconcile to pick up."""
    if stripe_api is None:
        log.warning(f"Hold {hold['id']} fully confirmed but Stripe is not configured; release deferred")
        return None, "Payment system not configured"
    try:
        return release_hold(sb, stripe_api, hold), None
    except ReleaseError as e:
        log.warning(f"Auto-release of hold {hold['id']} deferred: {e}")
        return None, str(e)
    except stripe.StripeError as e:
        log.error(f"Auto-release of hold {hold['id']} failed at Stripe: {e}")
        return None, e.user_message or str(e)
    except APIError as e:
        log.error(f"Auto-release of hold {hold['id']} failed at the database: {e.message}")
        return None, "Payment release could not be completed"


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/payments/release: transfer the payout to the contractor
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/release")
def release(
    body: ReleaseIn,
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    hold = first_row(sb.table("payment_holds").select("*").eq("id", body.payment_hold_id))
    if not hold:
        raise HTTPException(status_code=404, detail="Payment hold not found")

    try:
        result = release_hold(sb, stripe_api, hold)
    except ReleaseError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, **result}


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/payments/reconcile: mark holds whose transfer exists at Stripe
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/reconcile")
def reconcile(
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    resp = (
        sb.table("payment_holds").select("*")
        .eq("status", CAPTURED)
        .eq("homeowner_confirmed_complete", True)
        .eq("contractor_confirmed_complete", True)
        .execute()
    )
    holds = resp.data or []

    reconciled = []
    for hold in holds:
        transfers = stripe_api.Transfer.list(transfer_group=transfer_group(hold), limit=100)
        match = next(
            (t for t in transfers.data if (t.get("metadata") or {}).get("payment_hold_id") == hold["id"]),
            None,
        )
        if match is None:
            continue

        created = match.get("created")
        released_at = (
            datetime.fromtimestamp(created, tz=timezone.utc).isoformat() if created else utcnow_iso()
        )
        sb.table("payment_holds").update({
            "status": RELEASED,
            "stripe_transfer_id": match["id"],
            "released_at": released_at,
            "updated_at": utcnow_iso(),
        }).eq("id", hold["id"]).execute()
        log.warning(f"Reconciled hold {hold['id']}: found transfer {match['id']} at Stripe")
        reconciled.append(hold["id"])

    return {"success": True, "checked": len(holds), "reconciled": reconciled}
