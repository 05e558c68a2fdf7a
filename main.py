# main.py (lifespan-based)
from __future__ import annotations

import asyncio, logging, uuid, contextlib
from contextlib import asynccontextmanager
from datetime import date

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute
from passlib.context import CryptContext
from tortoise import Tortoise

from models import User
from errors import BillingError, billing_error_handler
from notifications import EventBroadcaster, Notifier
from storage import Storage

from routers import (
    auth,
    customers, meters, reading_routes,
    tariffs, readings, invoices, payments,
    dashboard, events,
)

# Background pieces
from scheduler import Scheduler
from services import config
from services.invoicing import BulkInvoiceBackfill

logger = logging.getLogger("uvicorn")
logger.setLevel(config.LOG_LEVEL.upper())
pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

# ----- helpers -----
async def _seed_admin():
    if not await User.exists():
        await User.create(
            id=uuid.uuid4(),
            username=config.ADMIN_USERNAME,
            email=config.ADMIN_EMAIL,
            hashed_password=pwd_ctx.hash(config.ADMIN_PASSWORD),
            is_admin=True,
        )
        logger.info("[seed] admin user %s created", config.ADMIN_USERNAME)

# ----- scheduled jobs -----
async def _job_backfill_current_period(app: FastAPI):
    admin = await User.filter(is_admin=True, disabled=False).order_by("username").first()
    period = date.today().strftime("%Y-%m")
    notifier = Notifier(app.state.events, actor=admin.id if admin else None)
    try:
        report = await BulkInvoiceBackfill(app.state.storage, notifier).run(
            period, date.today(), actor=admin.id if admin else None,
        )
        logger.info(f"[backfill] {period}: {report['message']}")
    except BillingError as e:
        logger.warning(f"[backfill] {period} failed: {e.detail}")

# ----- lifespan -----
@asynccontextmanager
async def lifespan(app: FastAPI):
    # 1) DB init
    await Tortoise.init(
        db_url=config.DB_URL,
        modules={"models": ["models"]},
    )
    await Tortoise.generate_schemas()

    # 2) Shared collaborators
    app.state.storage = Storage()
    app.state.events = EventBroadcaster(queue_size=config.EVENT_QUEUE_SIZE)

    # 3) Seeds
    await _seed_admin()

    # 4) Scheduler
    sched = Scheduler()
    app.state.scheduler = sched
    if config.BACKFILL_INTERVAL_SECONDS > 0:
        sched.every(config.BACKFILL_INTERVAL_SECONDS, _job_backfill_current_period, app)

    sched_task = asyncio.create_task(sched.run_forever())
    try:
        yield
    finally:
        if not sched_task.done():
            sched_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sched_task
        await Tortoise.close_connections()

# ----- app & routers -----
app = FastAPI(lifespan=lifespan, title="Aquabill Billing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "X-Total-Count"],
)
app.add_exception_handler(BillingError, billing_error_handler)

@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}

app.include_router(auth.router)

app.include_router(customers.router)
app.include_router(meters.router)
app.include_router(reading_routes.router)

app.include_router(tariffs.router)
app.include_router(readings.router)
app.include_router(invoices.router)
app.include_router(payments.router)

app.include_router(dashboard.router)
app.include_router(events.router)

for route in app.routes:
    if isinstance(route, APIRoute):
        logger.debug("%s -> %s", list(route.methods), route.path)
