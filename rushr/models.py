# rushr/models.py
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ApiIn(BaseModel):
    # the web and iOS clients send camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────────────────────────────────────────────────────
# Escrow payments
# ──────────────────────────────────────────────────────────────────────────────
class CreateHoldIn(ApiIn):
    bid_id: str = Field(..., min_length=1)
    homeowner_id: str = Field(..., min_length=1)


class CaptureIn(ApiIn):
    payment_hold_id: str = Field(..., min_length=1)
    homeowner_id: str = Field(..., min_length=1)


class ConfirmCompleteIn(ApiIn):
    payment_hold_id: Optional[str] = None
    job_id: Optional[str] = None
    user_id: Optional[str] = None
    user_type: Literal["homeowner", "contractor"]

    @model_validator(mode="after")
    def _need_a_lookup_key(self):
        if not self.payment_hold_id and not self.job_id:
            raise ValueError("need paymentHoldId or jobId")
        return self


class ReleaseIn(ApiIn):
    payment_hold_id: str = Field(..., min_length=1)


class OfferPaymentIn(ApiIn):
    offer_id: str = Field(..., min_length=1)
    homeowner_id: str = Field(..., min_length=1)


# ──────────────────────────────────────────────────────────────────────────────
# Stripe Connect / customers
# ──────────────────────────────────────────────────────────────────────────────
class CreateAccountIn(ApiIn):
    contractor_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    business_name: Optional[str] = None
    name: Optional[str] = None


class ContractorIn(ApiIn):
    contractor_id: str = Field(..., min_length=1)


class CustomerCreateIn(ApiIn):
    user_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    name: Optional[str] = None


class SetupIntentIn(ApiIn):
    customer_id: str = Field(..., min_length=1)


class SaveCardIn(ApiIn):
    user_id: str = Field(..., min_length=1)
    payment_method_id: str = Field(..., min_length=1)
    set_as_default: bool = True


# ──────────────────────────────────────────────────────────────────────────────
# Bids / jobs
# ──────────────────────────────────────────────────────────────────────────────
class RejectBidIn(ApiIn):
    bid_id: str = Field(..., min_length=1)
    homeowner_id: str = Field(..., min_length=1)
    job_title: Optional[str] = None


class AcceptBidIn(ApiIn):
    bid_id: str = Field(..., min_length=1)
    homeowner_id: str = Field(..., min_length=1)


class ConfirmArrivalIn(ApiIn):
    job_id: str = Field(..., min_length=1)
    contractor_id: str = Field(..., min_length=1)


# ──────────────────────────────────────────────────────────────────────────────
# Direct offers
# ──────────────────────────────────────────────────────────────────────────────
class DirectOfferIn(ApiIn):
    homeowner_id: str = Field(..., min_length=1)
    contractor_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    offered_amount: Decimal = Field(..., gt=0)
    priority: str = "normal"
    job_id: Optional[str] = None
    estimated_duration_hours: Optional[int] = None
    preferred_start_date: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    homeowner_notes: Optional[str] = None
