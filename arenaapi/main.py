import logging
from dotenv import load_dotenv

load_dotenv("arenaapi/.env")

from fastapi import FastAPI
from mangum import Mangum
from starlette.middleware.cors import CORSMiddleware

from arenaapi.config import settings
from arenaapi.containers import container
from arenaapi.core.exception_handlers import register_exception_handlers
from arenaapi.core.logging_middleware import LoggingMiddleware
from arenaapi.logging_config import setup_logging
from arenaapi.routers import (
    health_router,
    match_router,
    wallet_router,
    withdrawal_router,
)

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger("arenaapi")


def create_app() -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, debug=settings.DEBUG)
    app.container = container  # type: ignore

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    register_exception_handlers(app)

    @app.get("/")
    def hello() -> dict:
        return {"message": f"{settings.APP_NAME} is running"}

    app.include_router(health_router.router)
    app.include_router(match_router.router, prefix=settings.API_V1_STR)
    app.include_router(withdrawal_router.router, prefix=settings.API_V1_STR)
    app.include_router(wallet_router.router, prefix=settings.API_V1_STR)

    logger.info(f"{settings.PROJECT_NAME} started ({settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)
