import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .database import create_db_engine, create_tables
from .dispatcher import TaskDispatcher
from .errors import TaskStoreError, ValidationError, status_for
from .lifecycle import policy_from_settings
from .reaper import ExpiryReaper
from .routers import tasks
from .routers.tasks import get_dispatcher
from .schemas.task import HealthResponse
from .store import TaskStore

logger = logging.getLogger(__name__)


def build_dispatcher(settings: Settings) -> TaskDispatcher:
    """Wire engine, store and lifecycle policy from explicit settings."""
    engine = create_db_engine(settings)
    create_tables(engine)
    store = TaskStore(engine)
    return TaskDispatcher(store, policy_from_settings(settings))


def create_app(settings: Optional[Settings] = None, dispatcher: Optional[TaskDispatcher] = None) -> FastAPI:
    settings = settings or get_settings()
    dispatcher = dispatcher or build_dispatcher(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper = None
        if settings.reaper_interval_seconds > 0:
            reaper = ExpiryReaper(dispatcher.store, settings.reaper_interval_seconds, settings.reaper_batch_size)
            reaper.start()
        app.state.reaper = reaper
        try:
            yield
        finally:
            if reaper is not None:
                reaper.stop(timeout=settings.store_timeout_seconds)

    app = FastAPI(
        title="Todo Task API",
        description="Multi-tenant task storage with per-user timelines and automatic expiration",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.dispatcher = dispatcher

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TaskStoreError)
    async def task_store_error_handler(request: Request, exc: TaskStoreError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            messages.append(f"{location}: {error.get('msg', 'invalid')}")
        error = ValidationError("; ".join(messages) or "Invalid request")
        return JSONResponse(status_code=400, content=error.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unexpected error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"kind": "internal", "message": "Internal server error"})

    app.include_router(tasks.router, tags=["tasks"])

    @app.get("/")
    def read_root():
        return {"message": "Todo Task API"}

    @app.get("/health", response_model=HealthResponse)
    def health_check(dispatcher: TaskDispatcher = Depends(get_dispatcher)):
        return {"status": "healthy", "live_tasks": dispatcher.store.count_live()}

    return app
