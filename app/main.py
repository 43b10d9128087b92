import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from app.api.v1.routes import router as api_v1_router
from app.config import get_settings


logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(dotenv_path=env_path, override=False)
    logger.info("Loaded environment from %s", env_path)
else:
    logger.info("No .env file at %s; using process environment", env_path)

settings = get_settings()
print("\n" + "="*60)
print("AD FORMAT ADAPTER CONFIGURATION")
print("="*60)
print(f"Renderer:          {settings.renderer}")
print(f"Analyzer backend:  {settings.analyzer_backend} ({settings.analyzer_device})")
print(f"Format catalog:    {settings.formats_path or 'built-in'}")
print(f"Storage directory: {settings.storage_dir}")
if settings.renderer == "generative" and not settings.replicate_api_token:
    print("⚠ REPLICATE_API_TOKEN not set; every generative format will fail")
print("="*60 + "\n")


def create_app() -> FastAPI:
    """
    Application factory for the Ad Format Adapter API.

    Keeping this as a separate function makes it easier to extend
    configuration and testing later.
    """
    app = FastAPI(
        title="Ad Format Adapter API",
        version="0.1.0",
        description="Adapts one advertisement image to a catalog of fixed ad formats.",
    )

    # Infrastructure-level health check (non-versioned) primarily for ops.
    @app.get("/health", tags=["health"])
    async def root_health_check() -> dict:
        """Simple root health check endpoint."""
        return {"status": "ok"}

    # Public, versioned API routes.
    app.include_router(api_v1_router)

    return app


app = create_app()
