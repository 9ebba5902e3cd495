import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import init_db
from app.logging_config import setup_logging
from app.routers import auth, health
from app.services.errors import InvalidInput
from app.services.identity import user_store

setup_logging(settings.log_level)
LOGGER = logging.getLogger(__name__)

app = FastAPI(title="OTP Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(auth.router, prefix="/api")
app.include_router(auth.legacy_router)


@app.on_event("startup")
def startup() -> None:
    init_db()
    if settings.seed_email:
        try:
            account = user_store.create_user(settings.seed_email)
        except InvalidInput as exc:
            LOGGER.warning("Skipping seed account %r: %s", settings.seed_email, exc)
        else:
            LOGGER.info("Seed account ready for %s", account.email)
    LOGGER.info("OTP service started with %s challenge store", settings.otp_store_backend)
