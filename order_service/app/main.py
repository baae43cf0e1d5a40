import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.v1.dead_letters import router as dead_letters_router
from .api.v1.health import router as health_router
from .api.v1.orders import router as orders_router
from .api.v1.products import router as products_router
from .core.database import OrderServiceDatabaseManager, database_manager
from .core.events import close_events, init_events
from .core.setting import OrderSettings, get_settings
from .middleware.error import setup_order_error_handling
from .middleware.security import setup_order_request_validation_middleware
from .providers.email_provider import EmailProvider
from .utils.logging import setup_order_logging

settings = get_settings()

enable_file_logging = settings.ENVIRONMENT.lower() in ["production", "staging"]

logger = setup_order_logging(
    "order_service",
    log_level=settings.LOG_LEVEL,
    enable_file_logging=enable_file_logging,
)


def build_lifespan(
    db_manager: OrderServiceDatabaseManager,
    app_settings: OrderSettings,
    email_provider: Optional[EmailProvider] = None,
):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup_start = time.time()
        try:
            logger.info(
                "Starting order service initialization",
                extra={
                    "environment": app_settings.ENVIRONMENT,
                    "debug_mode": app_settings.DEBUG,
                    "service_version": app_settings.APP_VERSION,
                },
            )

            db_start = time.time()
            await db_manager.create_tables()
            db_duration = int((time.time() - db_start) * 1000)
            logger.info(
                "Database initialization completed", extra={"duration_ms": db_duration}
            )

            event_start = time.time()
            app.state.order_event_publisher = await init_events(
                db_manager.async_session_maker,
                app_settings,
                email_provider=email_provider,
            )
            event_duration = int((time.time() - event_start) * 1000)
            logger.info(
                "Event publisher started", extra={"duration_ms": event_duration}
            )

            logger.info(
                "Order service started successfully",
                extra={
                    "total_startup_duration_ms": int(
                        (time.time() - startup_start) * 1000
                    ),
                    "database_init_ms": db_duration,
                    "event_publisher_init_ms": event_duration,
                },
            )
        except Exception as e:
            logger.error(
                "Failed to start order service",
                exc_info=True,
                extra={
                    "startup_duration_ms": int((time.time() - startup_start) * 1000),
                    "error_type": type(e).__name__,
                },
            )
            raise

        yield

        shutdown_start = time.time()
        logger.info("Starting order service shutdown")
        await close_events()
        await db_manager.close()
        logger.info(
            "Order service shutdown completed",
            extra={"shutdown_duration_ms": int((time.time() - shutdown_start) * 1000)},
        )

    return lifespan


def create_app(
    db_manager: Optional[OrderServiceDatabaseManager] = None,
    app_settings: Optional[OrderSettings] = None,
    email_provider: Optional[EmailProvider] = None,
) -> FastAPI:
    app_settings = app_settings or settings
    db_manager = db_manager or database_manager
    app = FastAPI(
        title=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        debug=app_settings.DEBUG,
        lifespan=build_lifespan(db_manager, app_settings, email_provider),
        openapi_url="/openapi.json" if app_settings.DEBUG else None,
        docs_url="/docs" if app_settings.DEBUG else None,
        redoc_url="/redoc" if app_settings.DEBUG else None,
    )
    app.state.db_manager = db_manager
    app.state.settings = app_settings

    # Added last runs first: the validation middleware sets the correlation id
    # before CORS and the routers see the request.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=app_settings.CORS_CREDENTIALS,
        allow_methods=app_settings.CORS_METHODS,
        allow_headers=app_settings.CORS_HEADERS,
    )
    setup_order_request_validation_middleware(
        app, max_request_size=app_settings.MAX_REQUEST_SIZE
    )
    setup_order_error_handling(app)

    routers_info: List[Dict[str, Any]] = []

    app.include_router(health_router, tags=["Health"])
    routers_info.append({"router": "health", "prefix": ""})

    for router, tag in (
        (orders_router, "Orders"),
        (products_router, "Products"),
        (dead_letters_router, "Dead Letters"),
    ):
        app.include_router(router, prefix="/api/v1", tags=[tag])
        routers_info.append({"router": tag, "prefix": "/api/v1"})

    logger.info(
        "API routes configured",
        extra={"total_routers": len(routers_info), "routers": routers_info},
    )
    return app


app = create_app()
