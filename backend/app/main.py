"""
Work Plan Export API - FastAPI backend that renders work plans to .docx
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

from app.routers import exports, health
from app.services.docx_export_service import configured_template_path


# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    template_path = configured_template_path()
    if template_path.is_file():
        logger.info("Work plan template: %s", template_path)
    else:
        logger.warning(
            "Work plan template not found at %s; exports will fail until "
            "WORK_PLAN_TEMPLATE_PATH points at a valid file",
            template_path,
        )
    logger.info("Work Plan Export API started")
    yield
    logger.info("Work Plan Export API shutdown complete")


# Initialize FastAPI app
app = FastAPI(
    title="Work Plan Export API",
    description="Renders R&D work plans into the institutional .docx template",
    version="1.0.0",
    lifespan=lifespan,
)

# =============================================================================
# CORS Configuration
# =============================================================================
# Production uses strict HTTPS origins only, development allows localhost.

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

if ENVIRONMENT == "production":
    ALLOWED_ORIGINS_RAW = os.getenv("ALLOWED_ORIGINS", "").split(",")

    # Validate production origins: must be HTTPS, no localhost
    ALLOWED_ORIGINS = []
    for origin in ALLOWED_ORIGINS_RAW:
        origin = origin.strip()
        if not origin:
            continue
        if not origin.startswith("https://"):
            logger.warning("Rejecting non-HTTPS origin in production: %s", origin)
            continue
        if "localhost" in origin or "127.0.0.1" in origin:
            logger.warning("Rejecting localhost origin in production: %s", origin)
            continue
        ALLOWED_ORIGINS.append(origin)
else:
    default_origins = "http://localhost:3000,http://localhost:5173"
    ALLOWED_ORIGINS_RAW = os.getenv("ALLOWED_ORIGINS", default_origins).split(",")
    ALLOWED_ORIGINS = [origin.strip() for origin in ALLOWED_ORIGINS_RAW if origin.strip()]

if not ALLOWED_ORIGINS:
    raise ValueError("CORS configuration error: No valid allowed origins configured")

logger.info("CORS environment: %s, allowed origins: %s", ENVIRONMENT, ALLOWED_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
    expose_headers=["Content-Disposition"],
)

# =============================================================================
# Routers
# =============================================================================

app.include_router(health.router)
app.include_router(exports.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
