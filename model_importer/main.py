"""
FastAPI application entry point for Model Importer
Implements proper lifespan management and middleware
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from .config import ImporterSettings, get_settings
from .core.errors import ImporterError
from .core.logging_config import setup_logging
from .models.execution_engine import create_execution_engine
from .models.metadata_store import MetadataDocumentStore
from .models.object_store import create_object_store
from .models.poller import ImportWatcher, StatusPoller
from .models.resolvers import HuggingFaceResolver, OllamaResolver
from .models.transfer import DelegatedBuildTransfer, DirectStreamingTransfer
from .models.verification import VerificationCheck
from .routes import destinations_router, health_router, imports_router
from .schemas.models import ModelSource
from .services import ImportService

logger = structlog.get_logger(__name__)


def build_import_service(settings: ImporterSettings) -> ImportService:
    """Wire the stores, resolvers, strategies and poller into an ImportService"""
    objects = create_object_store(settings)
    metadata = MetadataDocumentStore(
        objects,
        file_name=settings.metadata_file_name,
        description=settings.metadata_description,
    )
    engine = create_execution_engine(settings)

    huggingface = HuggingFaceResolver(
        endpoint=settings.huggingface_endpoint,
        default_token=settings.huggingface_token,
        chunk_size=settings.transfer_chunk_size,
        timeout=settings.request_timeout,
    )
    ollama = OllamaResolver(
        registry_url=settings.ollama_registry_url,
        timeout=settings.request_timeout,
    )

    return ImportService(
        resolvers={
            ModelSource.HUGGINGFACE: huggingface,
            ModelSource.OLLAMA: ollama,
        },
        strategies={
            ModelSource.HUGGINGFACE: DirectStreamingTransfer(
                metadata, objects, huggingface,
                partial_failure_policy=settings.partial_failure_policy,
            ),
            ModelSource.OLLAMA: DelegatedBuildTransfer(metadata, engine, ollama),
        },
        metadata=metadata,
        objects=objects,
        poller=StatusPoller(engine, metadata),
        verification=VerificationCheck(metadata),
        engine=engine,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    settings = app.state.settings

    # Startup
    logger.info("Starting Model Importer application")

    import_service = build_import_service(settings)
    watcher = ImportWatcher(import_service.poller, import_service.objects,
                            interval=settings.status_poll_interval)

    app.state.import_service = import_service
    app.state.import_watcher = watcher
    watcher.start()

    logger.info("Model Importer startup completed",
                storage_backend=settings.storage_backend,
                execution_engine=settings.execution_engine_url or None,
                poll_interval=settings.status_poll_interval)

    try:
        yield
    finally:
        # Shutdown
        logger.info("Shutting down Model Importer application")
        await watcher.stop()
        await import_service.close()


def create_app(settings: ImporterSettings = None) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="Model Importer",
        description="Imports models from Hugging Face and Ollama registries into storage destinations",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )
    app.state.settings = settings

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Add routers
    app.include_router(health_router)
    app.include_router(imports_router)
    app.include_router(destinations_router)

    @app.exception_handler(ImporterError)
    async def importer_exception_handler(request: Request, exc: ImporterError):
        logger.warning("Request failed",
                       method=request.method,
                       url=str(request.url),
                       status_code=exc.status_code,
                       error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        message = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": message or "Invalid request"})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors"""
        logger.error("Unhandled exception",
                     method=request.method,
                     url=str(request.url),
                     error=str(exc),
                     exc_info=exc)

        return JSONResponse(status_code=500, content={"error": "An unexpected error occurred"})

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint with API information"""
        return {
            "service": "Model Importer",
            "version": "1.0.0",
            "endpoints": {
                "health": "/health",
                "imports": "/models/import",
                "destinations": "/models/destinations",
                "docs": "/docs"
            }
        }

    return app


def main():
    """Main entry point for running the application"""
    settings = get_settings()

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
