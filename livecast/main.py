import time
import traceback
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from granian import Granian
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from livecast.api.errors import app_error_handler, app_validation_exception_handler
from livecast.api.v1.routers import room
from livecast.api.ws import signaling
from livecast.app_config import AppEnvironConfig, get_app_environ_config
from livecast.domain.signaling.registry import SessionRegistry
from livecast.domain.signaling.relay import SignalingRelay
from livecast.shared.api import health
from livecast.shared.api.utils import api_failure, init_logger
from livecast.utils.app_errors import AppError, AppErrorCode


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore
        start_time = time.time()
        request_id = str(uuid.uuid4())[:8]

        logger.info(f"[{request_id}] {request.method} {request.url.path}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000

            logger.info(
                f"[{request_id}] {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Duration: {process_time:.2f}ms"
            )

            return response

        except Exception as exc:
            process_time = (time.time() - start_time) * 1000

            logger.error(
                f"[{request_id}] Unhandled exception in {request.method} {request.url.path} - "
                f"Duration: {process_time:.2f}ms - "
                f"Error: {type(exc).__name__}: {exc}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            failure = api_failure(
                errcode=AppErrorCode.E_INTERNAL_ERROR.value,
                errmesg=f"Internal server error (request_id: {request_id})",
            )
            return ORJSONResponse(
                status_code=500,
                content=failure.model_dump(),
            )


@asynccontextmanager
async def lifespan(server: FastAPI):
    init_logger()

    cfg: AppEnvironConfig = server.state.config
    logger.info("Application startup...")
    logger.info("Environment: {} (dev mode: {})", cfg.APP_ENV, cfg.DEV_MODE)
    if cfg.PUBLIC_APP_URL:
        logger.info("Public app url: {}", cfg.PUBLIC_APP_URL)

    yield

    logger.info("Application shutdown...")


def create_app(cfg: AppEnvironConfig | None = None) -> FastAPI:
    cfg = cfg or get_app_environ_config()

    server = FastAPI(
        version="1.0",
        title="Livecast Signaling Relay",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    registry = SessionRegistry(dev_mode=cfg.DEV_MODE)
    server.state.config = cfg
    server.state.registry = registry
    server.state.relay = SignalingRelay(registry)

    server.add_middleware(HTTPLoggingMiddleware)
    server.add_middleware(
        CORSMiddleware,  # type: ignore
        allow_origins=cfg.API_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    server.add_exception_handler(RequestValidationError, app_validation_exception_handler)  # type: ignore
    server.add_exception_handler(AppError, app_error_handler)  # type: ignore

    server.include_router(health.router)
    server.include_router(room.router, prefix="/api/v1")
    server.include_router(signaling.router)

    return server


app = create_app()


def build_granian_kwargs(cfg: AppEnvironConfig | None = None):
    cfg = cfg or get_app_environ_config()
    kwargs = {
        "interface": "asgi",
        "address": cfg.API_HOST,
        "port": cfg.API_PORT,
        "workers": cfg.API_WORKERS,
        "reload": cfg.DEBUG,
    }

    return kwargs


if __name__ == "__main__":
    granian_kwargs = build_granian_kwargs()
    logger.info("Server running at: http://{}:{}", granian_kwargs["address"], granian_kwargs["port"])
    Granian("livecast.main:app", **granian_kwargs).serve()
