"""
Main FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import router
from .core import Settings, create_db_engine, create_session_factory, init_models, settings as default_settings
from .core.errors import UpdateServerError
from .services import StorageBackend, UploadService, build_storage

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(settings: Optional[Settings] = None, storage: Optional[StorageBackend] = None) -> FastAPI:
    """
    Build the application.

    Storage and database are prepared in the lifespan, so building the app has
    no filesystem side effects.
    """
    settings = settings or default_settings
    storage = storage or build_storage(settings)
    engine = create_db_engine(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)
    upload_service = UploadService.from_settings(settings, session_factory, storage)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown"""
        logger.info("🚀 Starting Update Server...")

        init_models(engine)
        logger.info("✅ Database tables created/verified")

        storage.ensure_ready()
        upload_service.recover()

        logger.info(f"🌐 Server ready at http://{settings.SERVER_HOST}:{settings.SERVER_PORT}")
        logger.info(f"📖 API docs at http://{settings.SERVER_HOST}:{settings.SERVER_PORT}/docs")

        yield

        logger.info("🛑 Shutting down Update Server...")
        engine.dispose()

    app = FastAPI(
        title=settings.APP_TITLE,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.upload_service = upload_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UpdateServerError)
    async def handle_update_server_error(request: Request, exc: UpdateServerError):
        if exc.status_code >= 500:
            logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"↩️  {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {problems}"})

    app.include_router(router)

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {"status": "healthy", "storage": storage.name}

    return app


configure_logging(default_settings.LOG_LEVEL)
app = create_app()


def run():
    import uvicorn
    uvicorn.run(
        app,
        host=default_settings.SERVER_HOST,
        port=default_settings.SERVER_PORT,
        log_level=default_settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    run()
