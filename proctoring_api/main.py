import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import routes
from .config import Settings, get_settings
from .database import Database
from .errors import ProctoringError
from .logging_config import setup_logging
from .schemas import ErrorResponse

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, detail: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=message, detail=detail or None)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


class FrontendFiles(StaticFiles):
    """Static frontend build; unknown paths get ``index.html`` for client-side routing."""

    async def get_response(self, path: str, scope):
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as exc:
            if exc.status_code != 404:
                raise
            return await super().get_response("index.html", scope)


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or get_settings()
    database = database or Database(settings.mongodb_url, settings.database_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await database.connect()
        await database.ensure_indexes()
        logger.info("Proctoring API running in %s mode", settings.app_env)
        yield
        await database.close()

    app = FastAPI(title="Proctoring Backend", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database

    if settings.is_development:
        allow_origins = ["*"]
    else:
        allow_origins = settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(ProctoringError)
    async def handle_proctoring_error(request: Request, exc: ProctoringError):
        detail = exc.detail
        # store details can leak connection strings
        if exc.status_code >= 500 and not settings.is_development:
            detail = None
        return _error(exc.status_code, exc.message, detail)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return _error(400, "Invalid request", problems)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Server error", str(exc) if settings.is_development else None)

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {"status": "ok"}

    app.include_router(routes.router)

    static_dir = Path(settings.static_dir)
    if not settings.is_development and static_dir.is_dir():
        app.mount("/", FrontendFiles(directory=str(static_dir), html=True), name="frontend")

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)
