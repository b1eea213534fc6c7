# storefront/main.py
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from . import cart, shop
from .cart_service import CartService
from .cart_store import CartStore
from .catalog import ProductCatalog
from .config import Settings, get_settings
from .database import create_engine_from_settings, init_models, make_session_maker
from .errors import CartError, DatabaseError, ErrorKind
from .logging import add_context, clear_context, configure_logging, get_logger

logger = get_logger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DATABASE: 500,
}


def wire_services(app: FastAPI, session_maker: async_sessionmaker) -> None:
    """Build the long-lived store/catalog/service once and hang them on app.state."""
    app.state.session_maker = session_maker
    app.state.cart_service = CartService(CartStore(session_maker), ProductCatalog())


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    engine = create_engine_from_settings(settings)
    await init_models(engine)
    wire_services(app, make_session_maker(engine))
    logger.info("storefront starting up", environment=settings.environment)
    yield
    await engine.dispose()
    logger.info("storefront shutting down")


def _error_response(status_code: int, kind: str, message: str, details: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {
                "message": message,
                "kind": kind,
                "statusCode": status_code,
                "details": jsonable_encoder(details),
            },
        },
    )


def register_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(CartError)
    async def cart_error_handler(request: Request, exc: CartError):
        status_code = STATUS_BY_KIND[exc.kind]
        message, details = exc.message, exc.details
        if status_code >= 500:
            logger.error("request failed", path=request.url.path, kind=exc.kind.value,
                         error=exc.message, cause=repr(exc.__cause__))
            if not settings.debug:
                # hide storage internals from clients
                message, details = "Internal server error", None
        return _error_response(status_code, exc.kind.value, message, details)

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        wrapped = DatabaseError(f"Database operation failed: {exc}")
        wrapped.__cause__ = exc
        return await cart_error_handler(request, wrapped)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error_response(400, ErrorKind.VALIDATION.value, "Invalid request", exc.errors())


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.environment, settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        description="Catalog and shopping cart API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ✅ CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        clear_context()
        add_context(method=request.method, path=request.url.path)
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        logger.info("request handled", status=response.status_code, duration_ms=duration_ms)
        return response

    register_error_handlers(app, settings)

    # ✅ Routers
    app.include_router(shop.router)
    app.include_router(cart.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000, reload=True)
