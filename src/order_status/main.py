"""ASGI app entrypoint for the Order Status service.

This module exposes the FastAPI `app` object, wires the record store,
Shopify client and reconciler together, and renders every error as
``{"error": ..., "message": ...}``.
"""

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import orders as orders_router
from .api import webhooks as webhooks_router
from .config import Settings, settings
from .exceptions import OrderStatusError
from .handlers.completion import CompletionTagger
from .handlers.reconciler import OrderReconciler
from .integrations.shopify import ShopifyClient
from .integrations.store import KeyValueStore, build_store
from .logging_setup import configure_logging
from .schemas import HealthResponse

logger = logging.getLogger(__name__)

NO_CACHE = "no-store, no-cache, must-revalidate, max-age=0"


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


class EmptyPreflightCORSMiddleware(CORSMiddleware):
    """CORS middleware whose preflight answers are always an empty 200."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        headers = {
            name: value
            for name, value in response.headers.items()
            if name not in ("content-length", "content-type")
        }
        return Response(status_code=200, headers=headers)


def create_app(
    app_settings: Settings | None = None,
    *,
    store: KeyValueStore | None = None,
    shopify: ShopifyClient | None = None,
) -> FastAPI:
    """Build the application. Tests inject an in-memory store and a mocked Shopify client."""
    app_settings = app_settings or settings
    configure_logging(app_settings.log_level)

    store = store or build_store(app_settings.store_url)
    shopify = shopify or ShopifyClient.from_settings(app_settings)
    if not app_settings.shopify_configured:
        logger.warning("SHOPIFY_STORE / SHOPIFY_ACCESS_TOKEN not set; Shopify data will be unavailable")

    reconciler = OrderReconciler(
        store,
        shopify,
        url_templates=app_settings.url_templates(),
        auto_create=app_settings.auto_create_orders,
        validate_status=app_settings.validate_status,
        on_complete=CompletionTagger(shopify, app_settings.shopify_completion_tag),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.init()
        yield
        store.close()

    app = FastAPI(title="Order Status", lifespan=lifespan)
    app.state.settings = app_settings
    app.state.reconciler = reconciler

    # Registered before CORS so error responses built here still get CORS headers
    @app.middleware("http")
    async def disable_caching(request: Request, call_next):
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            response = _error(500, "Internal server error", str(exc))
        response.headers.setdefault("Cache-Control", NO_CACHE)
        response.headers.setdefault("Pragma", "no-cache")
        return response

    app.add_middleware(
        EmptyPreflightCORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(OrderStatusError)
    async def order_status_error(request: Request, exc: OrderStatusError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, exc.error, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return _error(400, "Invalid request", details)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 405:
            return _error(405, "Method not allowed", f"{request.method} is not supported on {request.url.path}")
        return _error(exc.status_code, HTTPStatus(exc.status_code).phrase, str(exc.detail))

    app.include_router(orders_router.router, tags=["orders"])
    app.include_router(webhooks_router.router, prefix="/webhooks", tags=["webhooks"])

    # Minimal health endpoint used for readiness/liveness checks
    @app.get("/health", response_model=HealthResponse, status_code=200)
    async def health() -> HealthResponse:
        """Return a simple health status in a predictable JSON schema."""
        return HealthResponse()

    # Plain OPTIONS requests (no CORS preflight headers) still get an empty 200
    @app.options("/{path:path}", include_in_schema=False)
    async def options(path: str) -> Response:
        return Response(status_code=200)

    return app


app = create_app()
