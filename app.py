"""
Mining Hosting Billing API - Main Application

Invoices hosted mining customers for electricity by miner count:
- /api/v1/auth/...             → Login, token refresh
- /api/v1/customers/...        → Customers, groups, miners
- /api/v1/pricing-configs/...  → Per-customer unit price history
- /api/v1/invoices/...         → Invoice lifecycle, emails, crypto links
- /api/v1/payments/...         → Cost ledger and reconciliation
- /api/v1/statements/...       → Customer statements (JSON / Excel)
- /api/v1/luxor                → Mining pool proxy
- /api/v1/webhooks/...         → Payment provider callbacks
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from database import init_db, db
from database.seed import ensure_default_pricing, seed_admin
from core.config import settings
from core.exceptions import BillingError

from routers.auth import router as auth_router
from routers.customers import router as customers_router
from routers.miners import router as miners_router
from routers.pricing_configs import router as pricing_configs_router
from routers.invoices import router as invoices_router
from routers.payments import router as payments_router
from routers.email_runs import router as email_runs_router
from routers.statements import router as statements_router
from routers.luxor import router as luxor_router
from routers.webhooks import router as webhooks_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("🚀 Starting Mining Hosting Billing API...")

    try:
        init_db()
        logger.info("✅ Database initialized")

        with db.get_session() as session:
            ensure_default_pricing(session)
            seed_admin(session)
        logger.info("✅ Default pricing seeded")

    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise

    scheduler = None
    scheduler_task = None
    if settings.OVERDUE_SWEEP_ENABLED:
        from services.email import get_email_service
        from services.overdue_scheduler import OverdueScheduler
        scheduler = OverdueScheduler(settings.OVERDUE_SWEEP_INTERVAL_SECONDS, get_email_service)
        scheduler_task = asyncio.create_task(scheduler.run())
        logger.info("📅 Overdue sweep scheduler started")

    logger.info("✅ Mining Hosting Billing API started successfully!")

    yield

    # Shutdown
    if scheduler:
        scheduler.stop()
        scheduler_task.cancel()
    logger.info("👋 Shutting down Mining Hosting Billing API...")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Electricity billing for hosted mining customers.

    * **Pricing** - Default and per-customer unit price per miner, by effective period
    * **Invoices** - DRAFT → ISSUED → PAID, with overdue tracking, cancel and refund
    * **Payments** - Cost ledger, reconciliation against invoices
    * **Crypto** - Confirmo payment links and webhook settlement
    * **Statements** - Aging and totals per customer, Excel export
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== EXCEPTION HANDLERS ====================

@app.exception_handler(BillingError)
async def billing_exception_handler(request: Request, exc: BillingError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"detail": message, "errors": [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors
        ]},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "detail": str(exc) if settings.debug else None
        }
    )


# ==================== HEALTH ====================

@app.get("/", tags=["Health"])
async def root():
    return {
        "message": settings.APP_NAME,
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    from sqlalchemy import text
    try:
        with db.get_session() as session:
            session.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "error": str(e)}
        )


# ==================== API ROUTES ====================

API_PREFIX = "/api/v1"

app.include_router(auth_router, prefix=f"{API_PREFIX}/auth", tags=["Authentication"])
app.include_router(customers_router, prefix=f"{API_PREFIX}/customers", tags=["Customers"])
app.include_router(miners_router, prefix=f"{API_PREFIX}/miners", tags=["Miners"])
app.include_router(pricing_configs_router, prefix=f"{API_PREFIX}/pricing-configs", tags=["Pricing"])
app.include_router(invoices_router, prefix=f"{API_PREFIX}/invoices", tags=["Invoices"])
app.include_router(payments_router, prefix=f"{API_PREFIX}/payments", tags=["Payments"])
app.include_router(email_runs_router, prefix=f"{API_PREFIX}/email-runs", tags=["Email Runs"])
app.include_router(statements_router, prefix=f"{API_PREFIX}/statements", tags=["Statements"])
app.include_router(luxor_router, prefix=f"{API_PREFIX}/luxor", tags=["Mining Pool"])
app.include_router(webhooks_router, prefix=f"{API_PREFIX}/webhooks", tags=["Webhooks"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
