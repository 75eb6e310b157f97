# rushr/bids.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from . import notifications
from .deps import first_row, get_supabase
from .escrow import money, utcnow_iso
from .models import AcceptBidIn, RejectBidIn

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/bids", tags=["bids"])


@router.post("/accept")
def accept_bid(body: AcceptBidIn, sb: Client = Depends(get_supabase)):
    bid = first_row(
        sb.table("job_bids").select("*").eq("id", body.bid_id).eq("homeowner_id", body.homeowner_id)
    )
    if not bid:
        raise HTTPException(status_code=404, detail="Bid not found or access denied")
    if bid["status"] != "pending":
        raise HTTPException(status_code=400, detail=f"Cannot accept bid with status: {bid['status']}")

    now = utcnow_iso()
    sb.table("job_bids").update({"status": "accepted", "accepted_at": now}).eq("id", bid["id"]).execute()
    sb.table("homeowner_jobs").update({
        "status": "bid_accepted",
        "accepted_bid_id": bid["id"],
        "contractor_id": bid["contractor_id"],
        "final_cost": float(money(bid["bid_amount"])),
    }).eq("id", bid["job_id"]).execute()

    log.info(f"Bid {bid['id']} accepted for job {bid['job_id']}")
    notifications.bid_accepted(sb, bid, notifications.job_title(sb, bid["job_id"]))

    return {
        "success": True,
        "jobId": bid["job_id"],
        "bidAmount": float(money(bid["bid_amount"])),
    }


@router.post("/reject")
def reject_bid(body: RejectBidIn, sb: Client = Depends(get_supabase)):
    bid = first_row(sb.table("job_bids").select("*").eq("id", body.bid_id))
    if not bid:
        raise HTTPException(status_code=404, detail="Bid not found")
    if bid["status"] != "pending":
        raise HTTPException(status_code=400, detail=f"Cannot reject bid with status: {bid['status']}")

    sb.table("job_bids").update({
        "status": "rejected",
        "rejected_at": utcnow_iso(),
    }).eq("id", bid["id"]).execute()

    title = body.job_title or notifications.job_title(sb, bid["job_id"])
    notifications.bid_rejected(sb, bid, title, body.homeowner_id)

    return {"success": True, "message": "Bid rejected successfully"}
