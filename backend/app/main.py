import logging.config

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import get_settings
from app.core.exceptions import (
    AppException,
    app_exception_handler,
    request_validation_exception_handler,
    unhandled_exception_handler,
)
from parley.realtime import gateway as realtime_gateway

settings = get_settings()

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        }
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "root": {
        "handlers": ["default"],
        "level": settings.log_level.upper(),
    },
    "loggers": {
        "sqlalchemy.engine": {
            "level": "WARNING",
        },
        "parley.realtime": {
            "handlers": ["default"],
            "level": settings.log_level.upper(),
            "propagate": False,
        },
    },
}


logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=settings.cors_allow_origin_regex,
)

app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


@app.get("/health", tags=["system"])
def health_check() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "ok", "environment": settings.environment}


@app.on_event("shutdown")
async def _shutdown() -> None:
    gateway = realtime_gateway.get_chat_gateway()
    await gateway.rooms.clear()
    await gateway.routing.clear()
    logger.info("Realtime routing state cleared")


app.include_router(api_router, prefix="/api")
app.include_router(ws_router)
