import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from instacaption.api.routes import caption_routes
from instacaption.config import settings
from instacaption.core.logging_middleware import TimeLoggingMiddleware
from instacaption.services.ollama_client import get_ollama_client, is_ollama_available

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="InstaCaption API",
    description="Image captions from a local Ollama model, buffered or streamed",
    version="0.1.0"
)

# Include routers
app.include_router(caption_routes.router)

# Time logger
app.add_middleware(TimeLoggingMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    logger.info("Starting InstaCaption API...")
    logger.info(f"Ollama endpoint: {get_ollama_client().base_url}, model: {settings.OLLAMA_MODEL}")


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "InstaCaption API is running"}


@app.get("/health")
def health_check():
    """Health check endpoint."""
    ollama_up = is_ollama_available()
    model_available = ollama_up and get_ollama_client().has_model(settings.OLLAMA_MODEL)
    return {
        "status": "ok",
        "services": {
            "ollama": ollama_up
        },
        "model": settings.OLLAMA_MODEL,
        "model_available": model_available
    }
