import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse

from localchat.core.config import settings
from localchat.core.exceptions import (
    AppException,
    app_exception_handler,
    validation_exception_handler,
    generic_exception_handler,
)
from localchat.db.session import init_db
from localchat.api.v1 import health, messages, sessions

# Configure logging
log_level = logging.DEBUG if settings.ENV == "development" else logging.INFO
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Suppress verbose logging from third-party libraries
noisy_loggers = [
    "httpx",
    "httpcore",
    "multipart",
    "python_multipart",
]
for logger_name in noisy_loggers:
    logging.getLogger(logger_name).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        init_db()
    except Exception as e:
        # Keep serving so /health still answers; store operations will fail loudly
        logger.error(f"Error initializing database tables: {e}")
        logger.error("Check DATABASE_URL and that the database server is running.")
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Session and message store for the Local Chat client",
    version="0.1.0",
    docs_url="/api/docs" if settings.ENV == "development" else None,
    redoc_url="/api/redoc" if settings.ENV == "development" else None,
    lifespan=lifespan,
)

# Register exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With"],
)

logger.info(f"Starting {settings.PROJECT_NAME} in {settings.ENV} mode")

# API v1 routers
app.include_router(health.router, prefix=settings.API_V1_PREFIX)
app.include_router(sessions.router, prefix=settings.API_V1_PREFIX)
app.include_router(messages.router, prefix=settings.API_V1_PREFIX)


@app.get("/", response_class=PlainTextResponse)
def read_root():
    """Root endpoint - basic API status."""
    return f"{settings.PROJECT_NAME} backend is running."
