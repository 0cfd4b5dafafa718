"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coastal_crm.api.v1.endpoints import health
from coastal_crm.api.v1.routes import api_router
from coastal_crm.core.config import get_settings
from coastal_crm.core.validation import validate_providers_on_startup
from coastal_crm.domain.services.dialer_engine import DialerEngine
from coastal_crm.infrastructure.storage.database import init_db

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates provider configuration
    - Creates missing database tables
    - Initializes the dialer engine and its telephony provider

    Shutdown:
    - Releases the telephony provider; in-memory dialer sessions are dropped
    """
    logger.info("Starting Coastal CRM dialer...")

    strict_validation = settings.environment == "production"

    try:
        validate_providers_on_startup(settings.telephony_provider, strict=strict_validation)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        logger.warning(f"Configuration warnings (non-fatal in {settings.environment}): {e}")

    init_db()

    engine = await DialerEngine.get_instance()
    logger.info(f"Dialer engine initialized (provider={engine.provider.name})")

    yield

    logger.info("Shutting down Coastal CRM dialer...")
    try:
        await DialerEngine.reset()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}", exc_info=True)

    logger.info("Coastal CRM dialer shutdown complete")


app = FastAPI(
    title="Coastal CRM Dialer",
    description="Outbound power dialer for debt-settlement campaigns",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.api_prefix)
app.include_router(health.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
