import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .appointments import router as appointments_router
from .auth import router as auth_router
from .cart import router as cart_router
from .config import Settings
from .database import Database
from .errors import register_exception_handlers
from .logging_config import configure_logging
from .order import router as order_router
from .payments import router as payments_router
from .store import categories_router, products_router, services_router

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("petshop.access")


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """
    Build the application.

    Settings default to the process environment; the database defaults to
    settings.database_url. Both are kept on app.state for the dependencies.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    database = database or Database(settings.database_url)
    database.create_all()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Pet shop API starting (%s)", settings.environment)
        yield
        database.dispose()
        logger.info("Database connections closed")

    app = FastAPI(
        title="Pet Shop API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        access_logger.info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response

    register_exception_handlers(app)

    app.include_router(auth_router)
    app.include_router(categories_router)
    app.include_router(products_router)
    app.include_router(services_router)
    app.include_router(cart_router)
    app.include_router(order_router)
    app.include_router(payments_router)
    app.include_router(appointments_router)

    @app.get("/api/health", tags=["health"])
    def health_check():
        return {
            "success": True,
            "message": "Pet Shop API is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.environment,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
