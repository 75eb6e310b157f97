# rushr/jobs.py
from fastapi import APIRouter, Depends, HTTPException
from supabase import Client

from . import notifications
from .deps import first_row, get_supabase
from .escrow import utcnow_iso
from .models import ConfirmArrivalIn

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("/confirm-arrival")
def confirm_arrival(body: ConfirmArrivalIn, sb: Client = Depends(get_supabase)):
    job = first_row(sb.table("homeowner_jobs").select("*").eq("id", body.job_id))
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if job["status"] != "confirmed":
        raise HTTPException(status_code=400, detail=f"Cannot confirm arrival. Job status is: {job['status']}")

    # only the contractor holding the accepted bid can check in
    bid = None
    if job.get("accepted_bid_id"):
        bid = first_row(sb.table("job_bids").select("contractor_id").eq("id", job["accepted_bid_id"]))
    if not bid or bid["contractor_id"] != body.contractor_id:
        raise HTTPException(status_code=403, detail="Unauthorized - you are not assigned to this job")

    sb.table("homeowner_jobs").update({
        "status": "in_progress",
        "arrived_at": utcnow_iso(),
    }).eq("id", job["id"]).execute()

    notifications.contractor_arrived(sb, job)

    contractor = first_row(
        sb.table("pro_contractors").select("name,business_name").eq("id", body.contractor_id)
    ) or {}
    return {
        "success": True,
        "message": "Arrival confirmed. Job is now in progress.",
        "contractorName": contractor.get("business_name") or contractor.get("name") or "Contractor",
    }
