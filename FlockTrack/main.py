from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config.settings import settings
from api.router import api_router
from utils.errors import install_error_handlers
from utils.logging_config import configure_logging, get_logger

configure_logging(level=settings.LOG_LEVEL)
logger = get_logger("app")

app = FastAPI(
    title="FlockTrack API",
    description="Feed stock ledger, cycle lifecycle and sale metrics for contract poultry farming.",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["X-User-Id", "X-User-Name", "Content-Type", "Authorization"],
)

install_error_handlers(app)
app.include_router(api_router)
logger.info("app_configured", extra={"timezone": settings.APP_TIMEZONE, "routes": len(app.routes)})


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok", "timezone": settings.APP_TIMEZONE}
