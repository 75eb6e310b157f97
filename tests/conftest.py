"""
Shared fixtures: an in-memory stand-in for the Supabase query builder and a
MagicMock in place of the stripe module, both wired in through
app.dependency_overrides.
"""
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from rushr.deps import get_optional_stripe, get_stripe, get_supabase
from rushr.main import app

UNIQUE_KEYS = {
    "payment_holds": ("bid_id", "offer_id"),
    "stripe_customers": ("user_id",),
    "stripe_connect_accounts": ("contractor_id",),
}


class StripeStub(dict):
    """dict with attribute access, like a StripeObject."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        for k, v in self.items():
            if isinstance(v, dict) and not isinstance(v, StripeStub):
                self[k] = StripeStub(v)

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name)


class FakeResponse:
    def __init__(self, data):
        self.data = data
        self.count = None


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.action = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.order_by = None
        self.limit_n = None

    def select(self, *columns, **kwargs):
        return self

    def insert(self, payload, **kwargs):
        self.action, self.payload = "insert", payload
        return self

    def update(self, payload, **kwargs):
        self.action, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict="", **kwargs):
        self.action, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False, **kwargs):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def _matches(self, row):
        return all(row.get(c) == v for c, v in self.filters)

    def execute(self):
        self.db.calls.append((self.table, self.action, self.payload))
        if (self.table, self.action) in self.db.fail_on:
            raise APIError({"code": "XX000", "message": f"{self.table} {self.action} failed", "hint": "", "details": ""})

        rows = self.db.tables.setdefault(self.table, [])
        if self.action == "select":
            out = [dict(r) for r in rows if self._matches(r)]
            if self.order_by:
                col, desc = self.order_by
                out.sort(key=lambda r: r.get(col) or "", reverse=desc)
            if self.limit_n is not None:
                out = out[: self.limit_n]
            return FakeResponse(out)

        if self.action == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResponse([self.db.add(self.table, item) for item in items])

        if self.action == "update":
            out = []
            for r in rows:
                if self._matches(r):
                    r.update(self.payload)
                    out.append(dict(r))
            return FakeResponse(out)

        if self.action == "upsert":
            key = self.on_conflict
            existing = next((r for r in rows if key and r.get(key) == self.payload.get(key)), None)
            if existing is not None:
                existing.update(self.payload)
                return FakeResponse([dict(existing)])
            return FakeResponse([self.db.add(self.table, self.payload)])

        raise AssertionError(f"unsupported action {self.action}")


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self.fail_on = set()
        self.emails = {}
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)
        self.auth = SimpleNamespace(admin=SimpleNamespace(get_user_by_id=self._get_user_by_id))

    def _get_user_by_id(self, user_id):
        email = self.emails.get(user_id)
        return SimpleNamespace(user=SimpleNamespace(id=user_id, email=email) if email else None)

    def table(self, name):
        return FakeQuery(self, name)

    def add(self, table, item):
        rows = self.tables.setdefault(table, [])
        for key in UNIQUE_KEYS.get(table, ()):
            if item.get(key) is None or not any(r.get(key) == item[key] for r in rows):
                continue
            raise APIError({
                "code": "23505",
                "message": f'duplicate key value violates unique constraint "{table}_{key}_key"',
                "hint": "",
                "details": "",
            })
        self._clock += timedelta(seconds=1)
        row = {"id": str(uuid.uuid4()), "created_at": self._clock.isoformat(), **item}
        rows.append(row)
        return dict(row)

    def rows(self, table):
        return self.tables.get(table, [])

    def get(self, table, row_id):
        return next((r for r in self.rows(table) if r["id"] == row_id), None)


@pytest.fixture(autouse=True)
def no_outbound(monkeypatch):
    for var in (
        "SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_SERVICE_ROLE_KEY",
        "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET",
        "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def sb():
    return FakeSupabase()


@pytest.fixture
def stripe_api():
    api = MagicMock(name="stripe")
    api.Customer.create.return_value = StripeStub(id="cus_123")
    api.PaymentIntent.create.return_value = StripeStub(id="pi_123", client_secret="pi_123_secret_abc")
    api.PaymentIntent.capture.return_value = StripeStub(id="pi_123", latest_charge="ch_123")
    api.Transfer.create.return_value = StripeStub(id="tr_123")
    api.Transfer.list.return_value = StripeStub(data=[])
    api.Account.create.return_value = StripeStub(id="acct_123")
    api.Account.retrieve.return_value = StripeStub(
        id="acct_123", type="express", country="US",
        details_submitted=False, charges_enabled=False, payouts_enabled=False,
        requirements={"currently_due": ["external_account"], "eventually_due": []},
    )
    api.AccountLink.create.return_value = StripeStub(
        url="https://connect.stripe.com/setup/e/acct_123/abc", expires_at=1760000300,
    )
    api.SetupIntent.create.return_value = StripeStub(id="seti_123", client_secret="seti_123_secret")
    api.PaymentMethod.list.return_value = StripeStub(data=[{"id": "pm_1", "card": {"last4": "4242"}}])
    api.PaymentMethod.retrieve.return_value = StripeStub(id="pm_1", customer="cus_123")
    api.Charge.list.return_value = StripeStub(data=[{"id": "ch_1", "amount": 25000, "status": "succeeded"}])
    return api


@pytest.fixture
def client(sb, stripe_api):
    app.dependency_overrides[get_supabase] = lambda: sb
    app.dependency_overrides[get_stripe] = lambda: stripe_api
    app.dependency_overrides[get_optional_stripe] = lambda: stripe_api
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()


# ──────────────────────────────────────────────────────────────────────────────
# Seed data
# ──────────────────────────────────────────────────────────────────────────────
HOMEOWNER = "home-1"
CONTRACTOR = "pro-1"


@pytest.fixture
def people(sb):
    sb.add("user_profiles", {"id": HOMEOWNER, "name": "Dana", "email": "dana@example.com", "phone": "+15550001"})
    sb.add("pro_contractors", {"id": CONTRACTOR, "name": "Sam", "business_name": "Sam's Plumbing", "phone": "+15550002"})
    sb.emails.update({HOMEOWNER: "dana@example.com", CONTRACTOR: "sam@example.com"})


@pytest.fixture
def bid(sb, people):
    job = sb.add("homeowner_jobs", {
        "homeowner_id": HOMEOWNER, "title": "Burst pipe", "status": "pending",
    })
    return sb.add("job_bids", {
        "job_id": job["id"], "contractor_id": CONTRACTOR, "homeowner_id": HOMEOWNER,
        "bid_amount": 250, "message": "On my way", "status": "pending",
    })


@pytest.fixture
def offer(sb, people):
    return sb.add("direct_offers", {
        "homeowner_id": HOMEOWNER, "contractor_id": CONTRACTOR, "title": "Fence repair",
        "description": "Two panels down", "category": "Carpentry",
        "offered_amount": 300.0, "final_agreed_amount": 320.0, "status": "accepted",
    })


def make_hold(sb, bid_row, **overrides):
    row = {
        "job_id": bid_row["job_id"],
        "bid_id": bid_row["id"],
        "homeowner_id": HOMEOWNER,
        "contractor_id": CONTRACTOR,
        "stripe_payment_intent_id": "pi_123",
        "stripe_customer_id": "cus_123",
        "amount": 250.0,
        "platform_fee": 25.0,
        "contractor_payout": 225.0,
        "stripe_fee": 7.55,
        "status": "captured",
        "homeowner_confirmed_complete": False,
        "contractor_confirmed_complete": False,
    }
    row.update(overrides)
    return sb.add("payment_holds", row)


def add_payout_account(sb, payouts_enabled=True):
    return sb.add("stripe_connect_accounts", {
        "contractor_id": CONTRACTOR,
        "stripe_account_id": "acct_123",
        "onboarding_complete": payouts_enabled,
        "charges_enabled": payouts_enabled,
        "payouts_enabled": payouts_enabled,
    })
