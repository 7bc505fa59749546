import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chaincredit.api.v1.router import api_router
from chaincredit.core.config import settings
from chaincredit.core.errors import (
    ChainCreditError,
    ContractError,
    EligibilityError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)
from chaincredit.services.registry import Services, build_services

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = str(int(settings.RETRY_DELAY_SECONDS) or 1)


def _status_code(error: ChainCreditError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, OperationTimeoutError):
        return 504
    if error.retryable:
        return 503
    if isinstance(error, (ValidationError, EligibilityError)):
        return 422
    if isinstance(error, ContractError):
        return 400
    return 500


async def chain_credit_error_handler(request: Request, exc: ChainCreditError):
    status_code = _status_code(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    headers = {"Retry-After": RETRY_AFTER_SECONDS} if exc.retryable else None
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "code": exc.code,
            "retryable": exc.retryable,
            "operation": exc.operation,
            "identifier": exc.identifier,
        },
        headers=headers,
    )


def create_app(services: Optional[Services] = None, run_startup: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info(f"Starting {settings.PROJECT_NAME} on {settings.network_name}...")
        app_services = services or build_services(settings)
        app.state.services = app_services
        app_services.start()

        startup_task = None
        if run_startup:
            startup_task = asyncio.create_task(app_services.startup.run())

        yield

        logger.info(f"Shutting down {settings.PROJECT_NAME}...")
        if startup_task is not None and not startup_task.done():
            startup_task.cancel()
        if startup_task is not None:
            try:
                await startup_task
            except asyncio.CancelledError:
                pass
            except ChainCreditError as e:
                logger.error(f"Startup did not complete: {e}")
        await app_services.stop()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ChainCreditError, chain_credit_error_handler)
    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health")
    def health_check():
        return {"service": "chaincredit", "status": "ok", "network": settings.network_name}

    return app


app = create_app()


if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()
    uvicorn.run("chaincredit.main:app", host=args.host, port=args.port)
