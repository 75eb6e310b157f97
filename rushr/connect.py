# rushr/connect.py
"""Stripe Connect (Express) onboarding for contractor payouts."""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from postgrest.exceptions import APIError
from supabase import Client

from . import config
from .deps import UNIQUE_VIOLATION, first_row, get_stripe, get_supabase
from .escrow import utcnow_iso
from .models import ContractorIn, CreateAccountIn

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/stripe/connect", tags=["stripe-connect"])


def account_status(account) -> Dict[str, Any]:
    requirements = account.get("requirements") or {}
    return {
        "onboardingComplete": bool(account.get("details_submitted")),
        "chargesEnabled": bool(account.get("charges_enabled")),
        "payoutsEnabled": bool(account.get("payouts_enabled")),
        "requirementsCurrentlyDue": list(requirements.get("currently_due") or []),
        "requirementsEventuallyDue": list(requirements.get("eventually_due") or []),
    }


def mirror_account(sb: Client, contractor_id: str, account) -> Dict[str, Any]:
    """Copy the account's capability flags into stripe_connect_accounts.

    Once details are submitted and payouts are enabled the contractor's KYC
    is considered done.
    """
    status = account_status(account)
    now = utcnow_iso()
    sb.table("stripe_connect_accounts").update({
        "onboarding_complete": status["onboardingComplete"],
        "charges_enabled": status["chargesEnabled"],
        "payouts_enabled": status["payoutsEnabled"],
        "account_type": account.get("type"),
        "country": account.get("country"),
        "requirements_currently_due": status["requirementsCurrentlyDue"],
        "requirements_eventually_due": status["requirementsEventuallyDue"],
        "updated_at": now,
    }).eq("contractor_id", contractor_id).execute()

    if status["onboardingComplete"] and status["payoutsEnabled"]:
        sb.table("pro_contractors").update({
            "kyc_status": "completed",
            "kyc_completed_at": now,
        }).eq("id", contractor_id).execute()

    return status


@router.post("/create-account")
def create_account(
    body: CreateAccountIn,
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    existing = first_row(
        sb.table("stripe_connect_accounts")
        .select("stripe_account_id,onboarding_complete")
        .eq("contractor_id", body.contractor_id)
    )
    if existing:
        return {
            "success": True,
            "accountId": existing["stripe_account_id"],
            "onboardingComplete": bool(existing.get("onboarding_complete")),
            "alreadyExists": True,
        }

    account = stripe_api.Account.create(
        type="express",
        email=body.email,
        business_type="individual",
        capabilities={
            "card_payments": {"requested": True},
            "transfers": {"requested": True},
        },
        business_profile={
            "name": body.business_name or body.name,
            "product_description": "Home service professional on Rushr platform",
            "mcc": config.CONTRACTOR_MCC,
        },
        metadata={"contractor_id": body.contractor_id, "platform": "rushr"},
        # a retry after a failed save gets the same account back
        idempotency_key=f"connect-account-{body.contractor_id}",
    )

    now = utcnow_iso()
    try:
        sb.table("stripe_connect_accounts").insert({
            "contractor_id": body.contractor_id,
            "stripe_account_id": account.id,
            "onboarding_complete": False,
            "charges_enabled": False,
            "payouts_enabled": False,
            "email": body.email,
            "created_at": now,
            "updated_at": now,
        }).execute()
    except APIError as e:
        if e.code != UNIQUE_VIOLATION:
            log.error(f"Failed to save Connect account {account.id} for {body.contractor_id}: {e.message}")
            raise HTTPException(status_code=500, detail="Failed to save Stripe account to database")

        # lost a race with another create-account; the stored row wins
        stored = first_row(
            sb.table("stripe_connect_accounts")
            .select("stripe_account_id,onboarding_complete")
            .eq("contractor_id", body.contractor_id)
        )
        log.warning(
            f"Connect account for {body.contractor_id} saved concurrently: "
            f"keeping {stored['stripe_account_id']}, Stripe returned {account.id}"
        )
        return {
            "success": True,
            "accountId": stored["stripe_account_id"],
            "onboardingComplete": bool(stored.get("onboarding_complete")),
            "alreadyExists": True,
        }

    log.info(f"Created Connect account {account.id} for contractor {body.contractor_id}")
    return {
        "success": True,
        "accountId": account.id,
        "onboardingComplete": False,
        "alreadyExists": False,
    }


@router.post("/onboarding-link")
def onboarding_link(
    body: ContractorIn,
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    row = first_row(
        sb.table("stripe_connect_accounts").select("stripe_account_id").eq("contractor_id", body.contractor_id)
    )
    if not row:
        raise HTTPException(
            status_code=404,
            detail="Stripe Connect account not found. Please complete wizard first.",
        )

    link = stripe_api.AccountLink.create(
        account=row["stripe_account_id"],
        refresh_url=f"{config.SITE_URL}/dashboard/contractor/stripe/refresh",
        return_url=f"{config.SITE_URL}/dashboard/contractor/stripe/success",
        type="account_onboarding",
    )
    log.info(f"Created onboarding link for {row['stripe_account_id']}")
    return {"success": True, "url": link.url, "expiresAt": link.expires_at}


@router.post("/check-status")
def check_status(
    body: ContractorIn,
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    row = first_row(
        sb.table("stripe_connect_accounts").select("stripe_account_id").eq("contractor_id", body.contractor_id)
    )
    if not row:
        return {
            "success": True,
            "onboardingComplete": False,
            "chargesEnabled": False,
            "payoutsEnabled": False,
            "requirementsCurrentlyDue": [],
            "requirementsEventuallyDue": [],
            "message": "No Stripe account found",
        }

    account = stripe_api.Account.retrieve(row["stripe_account_id"])
    status = mirror_account(sb, body.contractor_id, account)
    return {"success": True, **status}
