import logging
import logging.config

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from huddle.realtime import configure_realtime, shutdown_realtime, startup_realtime
from huddle.realtime.transport import TransportUnavailableError

from app.api.metrics import router as metrics_router
from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import get_settings
from app.core.errors import Unavailable
from app.database import SessionLocal
from app.services.broadcast_auth import PolicyAuthorizer


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
        "level": "INFO",
    },
    "loggers": {
        "huddle.realtime": {
            "level": "INFO",
        },
        "sqlalchemy.engine": {
            "level": "WARNING",
        },
    },
}


logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=settings.cors_allow_origin_regex,
)

configure_realtime(authorizer=PolicyAuthorizer(SessionLocal))


def _unavailable(detail: str) -> JSONResponse:
    error = Unavailable(detail)
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


@app.exception_handler(OperationalError)
async def _database_unavailable(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("Database unavailable while handling %s %s", request.method, request.url.path, exc_info=exc)
    return _unavailable("Database temporarily unavailable")


@app.exception_handler(TransportUnavailableError)
async def _transport_unavailable(request: Request, exc: TransportUnavailableError) -> JSONResponse:
    logger.warning("Realtime backend unavailable while handling %s %s", request.method, request.url.path)
    return _unavailable("Realtime backend temporarily unavailable")


@app.get("/health", tags=["system"])
def health_check() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "ok", "environment": settings.environment}


@app.on_event("startup")
async def _startup() -> None:
    await startup_realtime()


@app.on_event("shutdown")
async def _shutdown() -> None:
    await shutdown_realtime()


app.include_router(api_router, prefix="/api")
app.include_router(ws_router)
app.include_router(metrics_router)
