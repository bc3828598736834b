"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from proteccion_civil.config import get_settings
from proteccion_civil.db import InMemoryStoreClient, SqlStoreClient, StoreClient
from proteccion_civil.folio import FolioGenerator

logger = logging.getLogger(__name__)

_store_client: StoreClient | None = None
_folio_generator: FolioGenerator | None = None


def get_store_client() -> StoreClient:
    """
    Return a singleton store client so the engine and its connection
    supervisor are shared across requests.
    """
    global _store_client
    if _store_client:
        return _store_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        logger.info("Usando almacenamiento en memoria")
        _store_client = InMemoryStoreClient()
    else:
        _store_client = SqlStoreClient(
            settings.sqlalchemy_url,
            ssl=settings.is_production,
            reconnect_delay=settings.reconnect_delay_seconds,
            create_schema=settings.create_schema,
        )
    return _store_client


def get_folio_generator() -> FolioGenerator:
    global _folio_generator
    if _folio_generator:
        return _folio_generator
    _folio_generator = FolioGenerator()
    return _folio_generator
