"""
Campus Eats — FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from campus_eats.core.config import get_settings
from campus_eats.core.notifier import close_redis
from campus_eats.db.database import engine, Base
from campus_eats.middleware.auth import JWTAuthMiddleware
from campus_eats.models import coupon, kitchen, loyalty, menu, order, payment  # noqa: F401  (register tables)
from campus_eats.api import coupons, health, kitchen as kitchen_api, loyalty as loyalty_api, notifications
from campus_eats.api import orders, payments

settings = get_settings()
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Campus Eats",
    description="Order fulfilment core: payment confirmation, kitchen sync, loyalty points and coupons.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(JWTAuthMiddleware)

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")

app.include_router(payments.router)
app.include_router(orders.router)
app.include_router(kitchen_api.router)
app.include_router(loyalty_api.router)
app.include_router(coupons.router)
app.include_router(notifications.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}
