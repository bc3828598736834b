"""
Supervised connection to the relational store.

The engine keeps its own pool; this module tracks whether the store is
reachable, re-runs the connect loop when the driver reports a lost
connection, and exposes that state to the health check.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_SECONDS = 5.0


class StoreConnection:
    """Connect-with-retry loop plus a disconnect handler for one engine."""

    def __init__(
        self,
        engine: Engine,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        on_connect: Optional[Callable[[], None]] = None,
    ):
        self.engine = engine
        self.retry_delay = retry_delay
        # Runs after each successful connect, inside the retry loop.
        self.on_connect = on_connect
        self._connected = threading.Event()
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        event.listen(engine, "handle_error", self._on_error)

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def connect_with_retry(self) -> bool:
        """
        Block until a connection succeeds or the supervisor is stopped.

        There is no backoff and no attempt limit: every failure waits
        `retry_delay` seconds and tries again.
        """
        while not self._stopped.is_set():
            try:
                with self.engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                if self.on_connect is not None:
                    self.on_connect()
            except SQLAlchemyError as exc:
                self._connected.clear()
                logger.error("Error conectando a la base de datos: %s", exc)
                logger.info("Reintentando en %s segundos...", self.retry_delay)
                self._stopped.wait(self.retry_delay)
                continue
            self._connected.set()
            logger.info(
                "Conectado a la base de datos %s", self.engine.url.database
            )
            return True
        return False

    def start(self) -> None:
        """Run the connect loop in a background thread unless one is running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopped.clear()
            self._thread = threading.Thread(
                target=self.connect_with_retry,
                name="store-connect",
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.retry_delay + 1)
        self._connected.clear()
        self.engine.dispose()

    def _on_error(self, context) -> None:
        if context.is_disconnect:
            logger.error(
                "Conexión con la base de datos perdida: %s",
                context.original_exception,
            )
            self._connected.clear()
            if not self._stopped.is_set():
                self.start()
        else:
            logger.error("Error de base de datos: %s", context.original_exception)
