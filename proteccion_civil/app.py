"""
FastAPI application entry point for the Protección Civil API.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from proteccion_civil.config import get_settings
from proteccion_civil.db import StoreClient
from proteccion_civil.dependencies import get_store_client
from proteccion_civil.errors import ApiError, ROUTE_NOT_FOUND, register_error_handlers
from proteccion_civil.routes import router
from proteccion_civil.schemas import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = app.dependency_overrides.get(get_store_client, get_store_client)()
    store.start()
    yield
    store.close()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Protección Civil API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    @app.get("/health", response_model=HealthResponse)
    def health(store: StoreClient = Depends(get_store_client)):
        return HealthResponse(
            status="OK",
            timestamp=datetime.now(timezone.utc).isoformat(),
            database="connected" if store.is_connected() else "disconnected",
            environment=settings.environment,
        )

    index_file = settings.public_dir / "index.html"

    @app.get("/", include_in_schema=False)
    def index():
        if not index_file.is_file():
            raise ApiError(404, ROUTE_NOT_FOUND)
        return FileResponse(index_file)

    app.include_router(router, prefix=settings.api_prefix)
    # Mounted last: "/" would otherwise shadow the API routes.
    for path, directory, name in (
        ("/uploads", settings.uploads_dir, "uploads"),
        ("/", settings.public_dir, "public"),
    ):
        if directory.is_dir():
            app.mount(path, StaticFiles(directory=directory), name=name)
            logger.info("Ruta %s: %s", name, directory)
        else:
            logger.warning("Directorio estático no encontrado: %s", directory)
    return app


app = create_app()


def main() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    logger.info("Servidor corriendo en puerto %s", settings.port)
    logger.info("Entorno: %s", settings.environment)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
