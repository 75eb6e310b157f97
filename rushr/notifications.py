# rushr/notifications.py
"""
In-app notifications plus email/SMS to homeowners and contractors.

Everything here is best-effort: a failure is logged and swallowed so it
never fails the payment or bid request that triggered it.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, NamedTuple, Optional

from . import config
from .deps import first_row
from .escrow import money, utcnow_iso
from .mailer import send_email
from .sms import send_sms

log = logging.getLogger("uvicorn.error")


class Parties(NamedTuple):
    homeowner_name: str
    homeowner_email: Optional[str]
    homeowner_phone: Optional[str]
    contractor_name: str
    contractor_email: Optional[str]
    contractor_phone: Optional[str]


@contextmanager
def best_effort(what: str):
    try:
        yield
    except Exception:
        log.exception(f"Failed to send {what}")


def notify_in_app(sb, user_id, type_, title, message, job_id=None, bid_id=None):
    with best_effort(f"{type_} notification to {user_id}"):
        sb.table("notifications").insert({
            "user_id": user_id,
            "type": type_,
            "title": title,
            "message": message,
            "job_id": job_id,
            "bid_id": bid_id,
            "read": False,
            "created_at": utcnow_iso(),
        }).execute()


def _auth_email(sb, user_id) -> Optional[str]:
    resp = sb.auth.admin.get_user_by_id(user_id)
    user = getattr(resp, "user", None)
    return getattr(user, "email", None)


def load_parties(sb, homeowner_id, contractor_id) -> Parties:
    homeowner = first_row(sb.table("user_profiles").select("name,phone").eq("id", homeowner_id)) or {}
    contractor = first_row(
        sb.table("pro_contractors").select("name,business_name,phone").eq("id", contractor_id)
    ) or {}
    return Parties(
        homeowner_name=homeowner.get("name") or "Homeowner",
        homeowner_email=_auth_email(sb, homeowner_id),
        homeowner_phone=homeowner.get("phone"),
        contractor_name=contractor.get("business_name") or contractor.get("name") or "Contractor",
        contractor_email=_auth_email(sb, contractor_id),
        contractor_phone=contractor.get("phone"),
    )


def job_title(sb, job_id, fallback="Job") -> str:
    job = first_row(sb.table("homeowner_jobs").select("title").eq("id", job_id))
    return (job or {}).get("title") or fallback


def hold_title(sb, hold: Dict[str, Any]) -> str:
    if hold.get("job_id"):
        return job_title(sb, hold["job_id"])
    offer = first_row(sb.table("direct_offers").select("title").eq("id", hold.get("offer_id")))
    return (offer or {}).get("title") or "Job"


# ──────────────────────────────────────────────────────────────────────────────
# Escrow events
# ──────────────────────────────────────────────────────────────────────────────
def payment_captured(sb, hold: Dict[str, Any]):
    amount = money(hold["amount"])
    notify_in_app(
        sb, hold["contractor_id"], "job_request_received", "Payment Secured!",
        f"Homeowner paid ${amount}. Payment is in escrow - let's get to work!",
        job_id=hold.get("job_id"), bid_id=hold.get("bid_id"),
    )

    with best_effort(f"payment captured email/SMS for hold {hold['id']}"):
        p = load_parties(sb, hold["homeowner_id"], hold["contractor_id"])
        title = hold_title(sb, hold)
        if p.homeowner_email:
            send_email(
                p.homeowner_email, f'Payment Confirmed - "{title}"',
                f'Hi {p.homeowner_name}, your payment of ${amount} for "{title}" has been processed. '
                f"{p.contractor_name} has been notified and will begin work shortly.",
            )
        if p.contractor_email:
            send_email(
                p.contractor_email, f'Payment Received - "{title}"',
                f'Hi {p.contractor_name}, {p.homeowner_name} has paid ${amount} for "{title}". '
                "You can now start the work. Payment will be released to you upon job completion.",
            )
        if p.homeowner_phone:
            send_sms(
                p.homeowner_phone,
                f'Hi {p.homeowner_name}! Your payment of ${amount} for "{title}" is confirmed. '
                f"{p.contractor_name} has been notified and will begin work soon.",
            )
        if p.contractor_phone:
            send_sms(
                p.contractor_phone,
                f'Hi {p.contractor_name}! {p.homeowner_name} has paid ${amount} for "{title}". '
                "You can now start work. Payment will be released upon completion.",
            )


def confirmation_requested(sb, hold: Dict[str, Any], notify_user_id, confirmed_by: str):
    notify_in_app(
        sb, notify_user_id, "job_filled", f"{confirmed_by.capitalize()} Confirmed Completion",
        f"Please confirm job completion to release payment of ${money(hold['contractor_payout'])}",
        job_id=hold.get("job_id"), bid_id=hold.get("bid_id"),
    )


def work_completed(sb, hold: Dict[str, Any], notify_user_id, released: bool):
    payout = money(hold["contractor_payout"])
    if released:
        title, message = "Job Complete - Payment Released!", f"Both parties confirmed completion. Payment of ${payout} has been released!"
    else:
        title, message = "Job Complete", f"Both parties confirmed completion. Payment of ${payout} will be released shortly."
    notify_in_app(sb, notify_user_id, "job_filled", title, message, job_id=hold.get("job_id"), bid_id=hold.get("bid_id"))

    with best_effort(f"work completed email/SMS for hold {hold['id']}"):
        p = load_parties(sb, hold["homeowner_id"], hold["contractor_id"])
        job = hold_title(sb, hold)
        if p.homeowner_email:
            send_email(
                p.homeowner_email, f'Work Completed - "{job}"',
                f'Hi {p.homeowner_name}, {p.contractor_name} has completed work on "{job}". '
                f"Payment of ${payout} is being released to the contractor.",
            )
        if p.contractor_email:
            send_email(
                p.contractor_email, f'Job Complete - "{job}"',
                f'Hi {p.contractor_name}, "{job}" is marked as complete. Your payout of ${payout} is on its way.',
            )
        if p.homeowner_phone:
            send_sms(
                p.homeowner_phone,
                f'Hi {p.homeowner_name}! {p.contractor_name} has completed work on "{job}". '
                f"Please review and rate the work at {config.SITE_URL}/dashboard/homeowner",
            )
        if p.contractor_phone:
            send_sms(
                p.contractor_phone,
                f'Hi {p.contractor_name}! Job "{job}" marked as complete. '
                f"{p.homeowner_name} has been notified. Payment will be released soon!",
            )


# ──────────────────────────────────────────────────────────────────────────────
# Bid / job events
# ──────────────────────────────────────────────────────────────────────────────
def bid_rejected(sb, bid: Dict[str, Any], title: str, homeowner_id):
    notify_in_app(
        sb, bid["contractor_id"], "bid_rejected", "Bid Not Accepted",
        f'Your bid on "{title}" was not accepted.',
        job_id=bid["job_id"], bid_id=bid["id"],
    )

    with best_effort(f"bid rejected email/SMS for bid {bid['id']}"):
        p = load_parties(sb, homeowner_id, bid["contractor_id"])
        if p.contractor_email:
            send_email(
                p.contractor_email, f'Bid Update - "{title}"',
                f'Hi {p.contractor_name}, your bid for "{title}" was not accepted by {p.homeowner_name}. '
                f"Browse more jobs at {config.SITE_URL}/dashboard/contractor/jobs",
            )
        if p.contractor_phone:
            send_sms(
                p.contractor_phone,
                f'Hi {p.contractor_name}, your bid for "{title}" was not accepted. '
                f"Don't worry - more opportunities await! View jobs at {config.SITE_URL}/dashboard/contractor",
            )


def bid_accepted(sb, bid: Dict[str, Any], title: str):
    notify_in_app(
        sb, bid["contractor_id"], "bid_accepted", "Bid Accepted!",
        f'Your bid of ${money(bid["bid_amount"])} on "{title}" was accepted. Waiting for the homeowner\'s payment.',
        job_id=bid["job_id"], bid_id=bid["id"],
    )

    with best_effort(f"bid accepted email/SMS for bid {bid['id']}"):
        p = load_parties(sb, bid["homeowner_id"], bid["contractor_id"])
        if p.contractor_email:
            send_email(
                p.contractor_email, f'Bid Accepted - "{title}"',
                f'Congratulations! {p.homeowner_name} accepted your bid for "{title}". '
                f"View at {config.SITE_URL}/dashboard/contractor/jobs",
            )
        if p.contractor_phone:
            send_sms(
                p.contractor_phone,
                f'Congratulations {p.contractor_name}! {p.homeowner_name} accepted your bid for "{title}". '
                f"View job details at {config.SITE_URL}/dashboard/contractor",
            )


def contractor_arrived(sb, job: Dict[str, Any]):
    notify_in_app(
        sb, job["homeowner_id"], "job_filled", "Contractor Has Arrived!",
        "Your contractor has arrived at the job location. Work is now in progress.",
        job_id=job["id"], bid_id=job.get("accepted_bid_id"),
    )


def direct_offer_received(sb, offer: Dict[str, Any]):
    amount = money(offer["offered_amount"])
    notify_in_app(
        sb, offer["contractor_id"], "direct_offer", "New Direct Offer",
        f'You received a ${amount} offer for "{offer["title"]}".',
        job_id=offer.get("job_id"),
    )

    with best_effort(f"direct offer email/SMS for offer {offer['id']}"):
        p = load_parties(sb, offer["homeowner_id"], offer["contractor_id"])
        if p.contractor_email:
            send_email(
                p.contractor_email, f'New Offer - "{offer["title"]}"',
                f'Hi {p.contractor_name}, {p.homeowner_name} sent you an offer of ${amount} for '
                f'"{offer["title"]}" ({offer["category"]}): {offer["description"]} '
                f"Respond at {config.SITE_URL}/dashboard/contractor/offers",
            )
        if p.contractor_phone:
            send_sms(
                p.contractor_phone,
                f'Hi {p.contractor_name}! {p.homeowner_name} sent you a ${amount} offer for "{offer["title"]}". '
                f"View it at {config.SITE_URL}/dashboard/contractor/offers",
            )
