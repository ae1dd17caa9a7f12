from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backoffice import __version__, load_all_models
from backoffice.common.exception.exception_handler import register_exception
from backoffice.common.log import log, setup_logging
from backoffice.core.conf import settings
from backoffice.database.redis import redis_client
from backoffice.src.billing.scheduler import shutdown_scheduler, start_scheduler


@asynccontextmanager
async def register_init(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan: connect Redis and run the billing scheduler while the app is up.

    :param app: FastAPI application
    :return:
    """
    await redis_client.open()
    if settings.BILLING_SCHEDULER_ENABLED:
        start_scheduler()
    log.info('Backoffice service started')

    yield

    if settings.BILLING_SCHEDULER_ENABLED:
        shutdown_scheduler()
    await redis_client.aclose()
    log.info('Backoffice service stopped')


def register_app() -> FastAPI:
    """Build the FastAPI application."""
    setup_logging()
    load_all_models()

    app = FastAPI(
        title=settings.FASTAPI_TITLE,
        version=__version__,
        description=settings.FASTAPI_DESCRIPTION,
        docs_url=settings.FASTAPI_DOCS_URL,
        redoc_url=settings.FASTAPI_REDOC_URL,
        openapi_url=settings.FASTAPI_OPENAPI_URL,
        lifespan=register_init,
    )

    register_middleware(app)
    register_router(app)
    register_exception(app)

    return app


def register_middleware(app: FastAPI) -> None:
    """
    Register middleware.

    :param app: FastAPI application
    :return:
    """
    if settings.MIDDLEWARE_CORS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=['*'],
            allow_headers=['*'],
            expose_headers=settings.CORS_EXPOSE_HEADERS,
        )


def register_router(app: FastAPI) -> None:
    """
    Register the API routers and the health check.

    :param app: FastAPI application
    :return:
    """
    from backoffice.app.router import router

    app.include_router(router)

    @app.get('/health', include_in_schema=False)
    async def health_check():
        return {'status': 'ok'}
