# rushr/escrow.py
"""
Escrow money math and the release step.

A payment hold moves pending -> authorized -> captured -> released. The
authorized step happens at Stripe (the homeowner confirms the card on the
client) and reaches us through the webhook.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, NamedTuple

from postgrest.exceptions import APIError

from . import config
from .deps import first_row

log = logging.getLogger("uvicorn.error")

PENDING = "pending"
AUTHORIZED = "authorized"
CAPTURED = "captured"
RELEASED = "released"
CANCELLED = "cancelled"

PLATFORM_FEE_RATE = Decimal("0.10")
# Stripe's card pricing, used only as an estimate stored on the hold
PROCESSOR_FEE_RATE = Decimal("0.029")
PROCESSOR_FEE_FIXED = Decimal("0.30")

CENT = Decimal("0.01")


class Fees(NamedTuple):
    amount: Decimal
    platform_fee: Decimal
    contractor_payout: Decimal
    stripe_fee: Decimal


class ReleaseError(Exception):
    """Hold can't be released yet; funds stay in escrow."""


def money(value) -> Decimal:
    # str() first so 49.99 doesn't turn into 49.98999...
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value) -> int:
    return int(money(value) * 100)


def compute_fees(amount) -> Fees:
    amount = money(amount)
    platform_fee = (amount * PLATFORM_FEE_RATE).quantize(CENT, rounding=ROUND_HALF_UP)
    stripe_fee = (amount * PROCESSOR_FEE_RATE + PROCESSOR_FEE_FIXED).quantize(CENT, rounding=ROUND_HALF_UP)
    return Fees(
        amount=amount,
        platform_fee=platform_fee,
        contractor_payout=amount - platform_fee,
        stripe_fee=stripe_fee,
    )


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def transfer_group(hold: Dict[str, Any]) -> str:
    # direct-offer holds may have no job
    return hold.get("job_id") or f"hold-{hold['id']}"


def both_confirmed(hold: Dict[str, Any]) -> bool:
    return bool(hold.get("homeowner_confirmed_complete")) and bool(hold.get("contractor_confirmed_complete"))


def release_hold(sb, stripe_api, hold: Dict[str, Any]) -> Dict[str, Any]:
    """Transfer the contractor payout for a captured, fully confirmed hold.

    Raises ReleaseError when the hold isn't eligible or the contractor has no
    payout-enabled Connect account. The transfer carries an idempotency key
    derived from the hold id, so retrying after a failed status update
    returns the original transfer instead of paying twice.
    """
    if not both_confirmed(hold):
        raise ReleaseError("Both parties must confirm completion before releasing payment")
    if hold["status"] == RELEASED:
        raise ReleaseError("Payment already released")
    if hold["status"] != CAPTURED:
        raise ReleaseError(f"Cannot release payment with status: {hold['status']}")

    account = first_row(
        sb.table("stripe_connect_accounts")
        .select("stripe_account_id,payouts_enabled")
        .eq("contractor_id", hold["contractor_id"])
    )
    if not account or not account.get("payouts_enabled"):
        raise ReleaseError("Contractor has not completed Stripe Connect onboarding")

    transfer = stripe_api.Transfer.create(
        amount=to_cents(hold["contractor_payout"]),
        currency=config.CURRENCY,
        destination=account["stripe_account_id"],
        transfer_group=transfer_group(hold),
        metadata={
            "payment_hold_id": hold["id"],
            "job_id": hold.get("job_id") or "",
            "bid_id": hold.get("bid_id") or "",
            "offer_id": hold.get("offer_id") or "",
        },
        description="Payment for job completion",
        idempotency_key=f"release-{hold['id']}",
    )

    released_at = utcnow_iso()
    try:
        sb.table("payment_holds").update({
            "status": RELEASED,
            "stripe_transfer_id": transfer.id,
            "released_at": released_at,
            "updated_at": released_at,
        }).eq("id", hold["id"]).execute()
    except APIError as e:
        # money has moved; /reconcile picks the hold up from the transfer metadata
        log.error(f"Hold {hold['id']} transferred ({transfer.id}) but status update failed: {e.message}")
        raise

    log.info(f"Released hold {hold['id']}: transfer {transfer.id} of {money(hold['contractor_payout'])} to {account['stripe_account_id']}")
    return {
        "transferId": transfer.id,
        "amount": float(money(hold["contractor_payout"])),
        "releasedAt": released_at,
    }
