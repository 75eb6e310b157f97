# rushr/main.py
import logging
import os

import stripe
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from postgrest.exceptions import APIError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from .bids import router as bids_router
from .connect import router as connect_router
from .customers import router as customers_router
from .jobs import router as jobs_router
from .offers import router as offers_router
from .payments import router as payments_router
from .routers.health import router as health_router
from .stripe_webhook import router as stripe_router

log = logging.getLogger("uvicorn.error")

app = FastAPI(
    title="Rushr API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["default"])
def root():
    return {"ok": True, "service": "rushr-api"}


# ──────────────────────────────────────────────────────────────────────────────
# Errors: every failure is {"error": "..."} so the web app can show it as-is
# ──────────────────────────────────────────────────────────────────────────────
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())[1:])
        problems.append(f"{field}: {err['msg']}" if field else err["msg"])
    return JSONResponse({"error": "Invalid request: " + "; ".join(problems)}, status_code=400)


@app.exception_handler(stripe.StripeError)
async def stripe_error(request: Request, exc: stripe.StripeError):
    log.error(f"{request.url.path} Stripe error: {exc}")
    return JSONResponse({"error": exc.user_message or str(exc) or "Payment processor error"}, status_code=500)


@app.exception_handler(APIError)
async def db_error(request: Request, exc: APIError):
    log.error(f"{request.url.path} database error: {exc.code} {exc.message}")
    return JSONResponse({"error": exc.message or "Database error"}, status_code=500)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    log.exception(f"{request.url.path} failed")
    return JSONResponse({"error": str(exc) or "Internal server error"}, status_code=500)


# routers
app.include_router(health_router)
app.include_router(payments_router)
app.include_router(connect_router)
app.include_router(customers_router)
app.include_router(bids_router)
app.include_router(jobs_router)
app.include_router(offers_router)
app.include_router(stripe_router)


# ──────────────────────────────────────────────────────────────────────────────
# Local dev entrypoint
# ──────────────────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "rushr.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=True,
    )
