"""Vigil HTTP API

FastAPI application exposing task management, execution, analytics and
health endpoints on top of a single :class:`Orchestrator`.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..common.errors import (
    BatchNotFoundError,
    InvalidCronExpressionError,
    InvalidTaskConfigError,
    InvalidTaskStateError,
    TaskNotFoundError,
    TemplateNotFoundError,
    UnknownTaskTypeError,
)
from ..core.engine import Orchestrator
from .api import analytics, health, tasks

ERROR_STATUS = {
    TaskNotFoundError: 404,
    TemplateNotFoundError: 404,
    BatchNotFoundError: 404,
    InvalidTaskStateError: 409,
    InvalidTaskConfigError: 400,
    InvalidCronExpressionError: 400,
    UnknownTaskTypeError: 400,
    ValueError: 400,
}


async def _error_response(request: Request, exc: Exception) -> JSONResponse:
    status_code = next(
        (code for error, code in ERROR_STATUS.items() if isinstance(exc, error)), 500
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(orchestrator: Orchestrator | None = None) -> FastAPI:
    """Build the API around ``orchestrator``.

    The orchestrator is started on application startup and shut down on
    exit. When none is given one is built from ``vigil.toml``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.orchestrator is None:
            app.state.orchestrator = Orchestrator()
        await app.state.orchestrator.start()
        yield
        await app.state.orchestrator.shutdown()

    app = FastAPI(
        title="Vigil Task API",
        description="""
        ## Vigil Task Orchestration API

        Create, schedule and execute monitoring tasks (security scans, wallet
        and price monitors, simulated trading strategies) and inspect their
        execution history and analytics.

        ### API Structure
        - **Tasks**: Task lifecycle, manual and batch execution, history
        - **Analytics**: Per-user execution roll-ups and trends
        - **Health**: Engine load and scheduler status
        """,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Tasks", "description": "Manage and execute tasks."},
            {"name": "Templates", "description": "Reusable task templates."},
            {"name": "Analytics", "description": "Execution statistics."},
            {"name": "Health", "description": "Engine health and scheduler status."},
        ],
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for error in ERROR_STATUS:
        app.add_exception_handler(error, _error_response)

    app.include_router(tasks.router, prefix="/api/tasks", tags=["Tasks"])
    app.include_router(tasks.template_router, prefix="/api/templates", tags=["Templates"])
    app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])
    app.include_router(health.router, prefix="/health", tags=["Health"])

    @app.get("/", include_in_schema=False)
    async def root():
        return {"message": "Vigil Task API", "docs": "/docs"}

    return app


app = create_app()
