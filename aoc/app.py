from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError

from aoc.infra.config.settings import settings
from aoc.infra.database import get_database_manager
from aoc.core.logger.logger import logger
from aoc.core.dependencies import get_chain_verifier, get_price_oracle
from aoc.api.router import health, reservations, rewards
from aoc.api.middleware.logging.request_logging import RequestLoggingMiddleware
from aoc.core.exceptions.handler import ServiceError, GlobalErrorHandler


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="""
AOC backend - NFT reservations paid in SOL, referrals and social tasks.

## Services
- **Reservations**: on-chain payment verification, per-tier supply and per-user limits
- **Pricing**: SOL/USD quotes for each NFT tier
- **Rewards**: sign-up with invite codes, task completion points, invite milestone grants
        """,
        version=settings.APP_VERSION,
        docs_url="/",
        redoc_url="/redoc",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=600,  # 10 minutes
    )

    # Request logging middleware
    app.add_middleware(RequestLoggingMiddleware)

    # Add centralized error handlers
    app.add_exception_handler(ServiceError, GlobalErrorHandler.service_error_handler)
    app.add_exception_handler(RequestValidationError, GlobalErrorHandler.validation_error_handler)
    app.add_exception_handler(Exception, GlobalErrorHandler.general_exception_handler)

    # Include routers
    app.include_router(health.router, prefix="/api/v1")
    app.include_router(reservations.router)  # /api/v1 prefix set on the router
    app.include_router(rewards.router)

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "Starting AOC backend",
            extra={"service": settings.APP_NAME, "version": settings.APP_VERSION}
        )

        try:
            await get_database_manager().create_tables()
        except Exception as e:
            logger.error(f"Failed to initialize database on startup: {str(e)}")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info(
            "Shutting down AOC backend",
            extra={"service": settings.APP_NAME, "version": settings.APP_VERSION}
        )
        await get_chain_verifier().aclose()
        await get_price_oracle().aclose()
        await get_database_manager().close()

    return app
