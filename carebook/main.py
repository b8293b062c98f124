import time
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from carebook.core.config import settings
from carebook.core.logging import setup_logging, request_id_ctx
from carebook.core.db import build_engine, build_sessionmaker, init_models
from carebook.core.errors import BookingError, StorageError
from carebook.api.router import api_router
from carebook.platform.provider_registry import registry

logger = logging.getLogger(__name__)

def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000
        logger.info(
            f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
        )
        return response

    # outermost middleware: request_id_ctx is set before the timing line is logged
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id", "-")
        request_id_ctx.set(rid)
        return await call_next(request)

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        logger.info(f"Rejected {request.method} {request.url.path}: {exc.code} ({exc.message})")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage error for request {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"message": "An internal server error occurred."},
        )

    @app.on_event("startup")
    async def on_startup():
        engine = build_engine(settings.DATABASE_URL)
        app.state.engine = engine
        app.state.sessionmaker = build_sessionmaker(engine)
        if settings.DB_MANAGE == "create_all":
            await init_models(engine)

    @app.on_event("shutdown")
    async def on_shutdown():
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
        await registry.close()

    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app

setup_logging()
app = create_app()
