import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gatekeeper.config import Settings, settings
from gatekeeper.container import build_services
from gatekeeper.core.errors import register_error_handlers
from gatekeeper.core.logging import configure_logging
from gatekeeper.core.middleware import (
    AccessLogMiddleware,
    GatewayMiddleware,
    RequestIDMiddleware,
)
from gatekeeper.routers import admin, auth, user

logger = logging.getLogger("gatekeeper")

VERSION = "0.1.0"


def create_app(app_settings: Settings = settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(application: FastAPI):
        """Build the services, create tables, start the sweepers."""
        configure_logging(app_settings.log_level)
        services = build_services(app_settings)
        await services.create_tables()
        await services.bootstrap_admin()
        services.start()
        application.state.services = services
        logger.info(
            "Rate limiting %s (%d/min, %d/hr)",
            "enabled" if app_settings.rate_limit_enabled else "disabled",
            app_settings.rate_limit_per_minute,
            app_settings.rate_limit_per_hour,
        )
        try:
            yield
        finally:
            await services.close()

    application = FastAPI(
        title=app_settings.app_name,
        version=VERSION,
        docs_url="/docs" if app_settings.debug else None,
        redoc_url="/redoc" if app_settings.debug else None,
        lifespan=lifespan,
    )

    # Middleware: last added is outermost and runs first.
    # CORS outermost so all responses get CORS headers (including 401/429s);
    # request id before the gateway so its error bodies carry one.
    application.add_middleware(GatewayMiddleware)
    application.add_middleware(AccessLogMiddleware)
    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "x-request-id",
            "retry-after",
            "x-ratelimit-limit-minute",
            "x-ratelimit-limit-hour",
            "x-ratelimit-remaining-minute",
            "x-ratelimit-remaining-hour",
        ],
    )

    register_error_handlers(application)

    application.include_router(auth.router)
    application.include_router(user.router)
    application.include_router(admin.router)

    @application.get("/health")
    async def health_check():
        return {"status": "ok", "app": app_settings.app_name, "version": VERSION}

    return application


app = create_app()
