import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + FKs correctly
import campus_eats.models  # noqa: F401

from campus_eats.core.config import settings
from campus_eats.core.db import Base, engine

# Routers
from campus_eats.routers.auth import router as auth_router
from campus_eats.routers.menu import router as menu_router
from campus_eats.routers.orders import router as orders_router
from campus_eats.routers.loyalty import router as loyalty_router
from campus_eats.routers.coupons import router as coupons_router
from campus_eats.routers.payments import router as payments_router
from campus_eats.routers.kitchen import router as kitchen_router
from campus_eats.routers.health import router as health_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DB_CREATE_ALL:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")
    yield
    await engine.dispose()


app = FastAPI(title="CampusEats API", lifespan=lifespan)

# CORS for the SPA dev server; production origins come from CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# uploaded menu pictures
app.mount(
    settings.STATIC_URL_PREFIX,
    StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False),
    name="static",
)

# Auth & users
app.include_router(auth_router)

# Menu
app.include_router(menu_router)

# Orders, payments, kitchen
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(kitchen_router)

# Rewards
app.include_router(loyalty_router)
app.include_router(coupons_router)

app.include_router(health_router)
