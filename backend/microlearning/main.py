import uvicorn
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from microlearning.api.api import api_router, ws_router
from microlearning.core.config import settings
from microlearning.core.exceptions import ExternalSourceError, InvalidMoveError, NotFoundError, ValidationError
from microlearning.config.dependency_injection import get_change_feed
from microlearning.core.redis_subscriber import redis_subscriber
from microlearning.core.websocket_manager import WebSocketForwarder, ws_manager
from microlearning.db.init_db import init_db
from microlearning.schemas.response import StandardResponse

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    启动时创建缺失的数据表。
    开启 ENABLE_REDIS_CHANGE_FEED 时，在应用生命周期里启动 redis_subscriber 作为后台任务，
    并在关闭时取消它。保证订阅器和 ws_manager 在同一进程内。
    未开启时，进程内的变更订阅直接转发给 ws_manager。
    """
    init_db()

    stop_forwarding = None
    if settings.ENABLE_REDIS_CHANGE_FEED:
        logger.info("启动 Redis 订阅器任务")
        app.state.redis_task = asyncio.create_task(redis_subscriber())
    else:
        forwarder = WebSocketForwarder(ws_manager, asyncio.get_running_loop())
        stop_forwarding = get_change_feed().subscribe(None, forwarder)
        logger.info("变更事件直接转发给 websocket")

    try:
        yield
    finally:
        if stop_forwarding is not None:
            stop_forwarding()
        task = getattr(app.state, "redis_task", None)
        if task:
            logger.info("取消 Redis 订阅器任务")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info("Redis 订阅器已取消")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan
)

# Set all CORS enabled origins
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    body = StandardResponse(code=status_code, message=str(exc), data=None)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(InvalidMoveError)
async def invalid_move_handler(request: Request, exc: InvalidMoveError):
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning(f"Validation failed on {request.url.path}: {exc.errors}")
    return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)


@app.exception_handler(ExternalSourceError)
async def external_source_handler(request: Request, exc: ExternalSourceError):
    return _error_response(status.HTTP_502_BAD_GATEWAY, exc)


app.include_router(api_router, prefix=settings.API_V1_STR)
app.include_router(ws_router, prefix="/ws")


if __name__ == '__main__':
    uvicorn.run(
        'microlearning.main:app',
        host='0.0.0.0',
        port=settings.BACKEND_PORT,
        reload=True
    )
