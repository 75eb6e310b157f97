# rushr/offers.py
"""Direct offers: a homeowner asks one contractor for a job at a set price.

Once the contractor accepts, the homeowner pays into the same escrow flow as
bids; the hold is keyed on offer_id instead of bid_id.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from . import notifications
from .deps import first_row, get_stripe, get_supabase
from .escrow import money, utcnow_iso
from .models import DirectOfferIn, OfferPaymentIn
from .payments import hold_created, open_hold

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/direct-offers", tags=["direct-offers"])


@router.post("/create", status_code=201)
def create_offer(body: DirectOfferIn, sb: Client = Depends(get_supabase)):
    contractor = first_row(sb.table("pro_contractors").select("id").eq("id", body.contractor_id))
    if not contractor:
        raise HTTPException(status_code=404, detail="Contractor not found")

    now = utcnow_iso()
    resp = sb.table("direct_offers").insert({
        "homeowner_id": body.homeowner_id,
        "contractor_id": body.contractor_id,
        "job_id": body.job_id,
        "title": body.title,
        "description": body.description,
        "category": body.category,
        "priority": body.priority,
        "offered_amount": float(money(body.offered_amount)),
        "estimated_duration_hours": body.estimated_duration_hours,
        "preferred_start_date": body.preferred_start_date,
        "address": body.address,
        "city": body.city,
        "state": body.state,
        "zip": body.zip,
        "latitude": body.latitude,
        "longitude": body.longitude,
        "homeowner_notes": body.homeowner_notes,
        "status": "pending",
        "created_at": now,
        "updated_at": now,
    }).execute()
    offer = resp.data[0]

    log.info(f"Direct offer {offer['id']} from {body.homeowner_id} to {body.contractor_id}: {offer['offered_amount']}")
    notifications.direct_offer_received(sb, offer)

    return {"success": True, "offerId": offer["id"], "message": "Offer created successfully"}


@router.post("/create-payment")
def create_offer_payment(
    body: OfferPaymentIn,
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    offer = first_row(
        sb.table("direct_offers").select("*")
        .eq("id", body.offer_id)
        .eq("homeowner_id", body.homeowner_id)
        .eq("status", "accepted")
    )
    if not offer:
        raise HTTPException(status_code=404, detail="Offer not found, not accepted, or access denied")

    if first_row(sb.table("payment_holds").select("id").eq("offer_id", body.offer_id)):
        raise HTTPException(status_code=400, detail="Payment hold already exists for this offer")

    # a counter-offer settles on final_agreed_amount
    amount = offer.get("final_agreed_amount") or offer["offered_amount"]
    metadata = {"offer_id": body.offer_id, "source": "direct_offer"}
    if offer.get("job_id"):
        metadata["job_id"] = offer["job_id"]

    hold, fees, intent = open_hold(
        sb,
        stripe_api,
        link_column="offer_id",
        link_id=body.offer_id,
        homeowner_id=body.homeowner_id,
        contractor_id=offer["contractor_id"],
        amount=amount,
        job_id=offer.get("job_id"),
        description=f"Direct offer payment: {offer.get('title') or 'Job'}",
        metadata=metadata,
    )
    return hold_created(hold, fees, intent)
