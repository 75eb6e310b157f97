# rushr/customers.py
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query
from postgrest.exceptions import APIError
from supabase import Client

from .deps import first_row, get_stripe, get_supabase
from .escrow import utcnow_iso
from .models import CustomerCreateIn, SaveCardIn, SetupIntentIn

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/stripe", tags=["customers"])


def get_or_create_customer(sb: Client, stripe_api, user_id: str) -> str:
    """Stripe customer id for a user, creating the customer and mapping row on first use."""
    existing = first_row(
        sb.table("stripe_customers").select("stripe_customer_id").eq("user_id", user_id)
    )
    if existing:
        return existing["stripe_customer_id"]

    profile = first_row(sb.table("user_profiles").select("email,name").eq("id", user_id)) or {}
    customer = stripe_api.Customer.create(
        email=profile.get("email"),
        name=profile.get("name"),
        metadata={"user_id": user_id},
    )
    sb.table("stripe_customers").upsert(
        {
            "user_id": user_id,
            "stripe_customer_id": customer.id,
            "email": profile.get("email"),
            "name": profile.get("name"),
        },
        on_conflict="user_id",
    ).execute()
    return customer.id


@router.post("/customer/create")
def create_customer(
    body: CustomerCreateIn,
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    existing = first_row(
        sb.table("stripe_customers").select("stripe_customer_id").eq("user_id", body.user_id)
    )
    if existing:
        return {"success": True, "customerId": existing["stripe_customer_id"], "alreadyExists": True}

    customer = stripe_api.Customer.create(
        email=body.email,
        name=body.name,
        metadata={"user_id": body.user_id, "platform": "rushr", "role": "homeowner"},
    )

    now = utcnow_iso()
    try:
        # upsert: a concurrent create for the same user keeps one mapping
        sb.table("stripe_customers").upsert(
            {
                "user_id": body.user_id,
                "stripe_customer_id": customer.id,
                "email": body.email,
                "name": body.name,
                "created_at": now,
                "updated_at": now,
            },
            on_conflict="user_id",
        ).execute()
    except APIError as e:
        log.error(f"Failed to save customer {customer.id} for {body.user_id}: {e.message}")
        raise HTTPException(status_code=500, detail="Failed to save customer to database")

    return {"success": True, "customerId": customer.id, "alreadyExists": False}


@router.post("/customer/setup-intent")
def create_setup_intent(body: SetupIntentIn, stripe_api=Depends(get_stripe)):
    setup_intent = stripe_api.SetupIntent.create(
        customer=body.customer_id,
        payment_method_types=["card"],
        metadata={"platform": "rushr"},
    )
    return {"success": True, "clientSecret": setup_intent.client_secret}


@router.get("/customer/payment-methods")
def list_payment_methods(
    user_id: str = Query(..., alias="userId", min_length=1),
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    customer = first_row(
        sb.table("stripe_customers")
        .select("stripe_customer_id,default_payment_method_id")
        .eq("user_id", user_id)
    )
    if not customer:
        return {"success": True, "paymentMethods": [], "defaultPaymentMethodId": None}

    methods = stripe_api.PaymentMethod.list(customer=customer["stripe_customer_id"], type="card")
    return {
        "success": True,
        "paymentMethods": list(methods.data),
        "defaultPaymentMethodId": customer.get("default_payment_method_id"),
        "customerId": customer["stripe_customer_id"],
    }


@router.post("/customer/save-card")
def save_card(
    body: SaveCardIn,
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    customer_id = get_or_create_customer(sb, stripe_api, body.user_id)

    try:
        stripe_api.PaymentMethod.attach(body.payment_method_id, customer=customer_id)
    except stripe.InvalidRequestError as e:
        if "already been attached" not in str(e):
            raise
        log.info(f"Payment method {body.payment_method_id} already attached to {customer_id}")

    if body.set_as_default:
        stripe_api.Customer.modify(
            customer_id,
            invoice_settings={"default_payment_method": body.payment_method_id},
        )
        sb.table("stripe_customers").update({
            "default_payment_method_id": body.payment_method_id,
            "updated_at": utcnow_iso(),
        }).eq("user_id", body.user_id).execute()

    return {"success": True, "message": "Card saved successfully", "paymentMethodId": body.payment_method_id}


@router.delete("/customer/save-card")
def remove_card(
    user_id: str = Query(..., alias="userId", min_length=1),
    payment_method_id: str = Query(..., alias="paymentMethodId", min_length=1),
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    customer = first_row(
        sb.table("stripe_customers")
        .select("stripe_customer_id,default_payment_method_id")
        .eq("user_id", user_id)
    )
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")

    method = stripe_api.PaymentMethod.retrieve(payment_method_id)
    if method.get("customer") != customer["stripe_customer_id"]:
        raise HTTPException(status_code=404, detail="Payment method not found")

    stripe_api.PaymentMethod.detach(payment_method_id)

    if customer.get("default_payment_method_id") == payment_method_id:
        sb.table("stripe_customers").update({
            "default_payment_method_id": None,
            "updated_at": utcnow_iso(),
        }).eq("user_id", user_id).execute()

    return {"success": True, "message": "Card removed successfully"}


@router.get("/transactions")
def list_transactions(
    user_id: str = Query(..., alias="userId", min_length=1),
    sb: Client = Depends(get_supabase),
    stripe_api=Depends(get_stripe),
):
    customer = first_row(
        sb.table("stripe_customers").select("stripe_customer_id").eq("user_id", user_id)
    )
    if not customer:
        return {"success": True, "charges": []}

    charges = stripe_api.Charge.list(
        customer=customer["stripe_customer_id"],
        limit=100,
        expand=["data.payment_intent"],
    )
    return {"success": True, "charges": list(charges.data)}
