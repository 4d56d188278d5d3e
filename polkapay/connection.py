"""Connection lifecycle for a single substrate node handle.

A :class:`ConnectionManager` owns at most one live handle. Services receive
the manager explicitly and ask it for the handle (or the typed pallet surface)
whenever they need one; they never create connections themselves.

Only :meth:`ConnectionManager.initialize_with_retry` retries. Callers must not
run it concurrently with itself on the same manager.
"""

from __future__ import annotations

import logging
import time
from enum import Enum, auto
from functools import partial
from typing import Any, Callable, Protocol

from . import rpc_client
from .config import ChainConfig, load_chain_config
from .errors import (
    ChainConnectionError,
    NotInitializedError,
    PolkaPayError,
    RetryExhaustedError,
    SchemaNotRegisteredError,
)
from .models import FinalizedBlock, field_value

logger = logging.getLogger(__name__)


class ChainHandle(Protocol):
    """Live connection produced by a transport factory."""

    def get_finalized_block_header(self) -> Any: ...

    def destroy(self) -> None: ...


class TypedSurface(Protocol):
    """Pallet-aware query/submit capability.

    ``query.<Pallet>.<Storage>`` exposes ``get_value``, ``get_values`` and
    ``watch_value``; ``tx.<Pallet>.<call>(**params)`` returns a call object
    with ``get_estimated_fees``, ``sign``, ``sign_and_submit`` and
    ``sign_submit_and_watch``.
    """

    query: Any
    tx: Any


TransportFactory = Callable[[str], ChainHandle]
SchemaFactory = Callable[[ChainHandle], TypedSurface]


class ConnectionState(Enum):
    UNINITIALIZED = auto()
    INITIALIZING = auto()
    CONNECTED = auto()
    DISCONNECTED = auto()


class ConnectionManager:
    """Own one node connection and hand it to the services that need it."""

    def __init__(
        self,
        config: ChainConfig | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        schema_factory: SchemaFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
        endpoint: str | None = None,
    ) -> None:
        self.config = config or load_chain_config()
        self._endpoint = endpoint
        self._transport_factory = transport_factory or partial(
            rpc_client.connect, timeout=self.config.timeout_seconds
        )
        self._schema_factory = schema_factory
        self._sleep = sleep
        self._handle: ChainHandle | None = None
        self._surface: TypedSurface | None = None
        self._state = ConnectionState.UNINITIALIZED

    @property
    def endpoint(self) -> str:
        return self._endpoint or self.config.endpoint

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._handle is not None and self._state is ConnectionState.CONNECTED

    def initialize(self) -> ChainHandle:
        """Create a fresh handle, replacing any existing one."""

        self._release_handle()
        self._state = ConnectionState.INITIALIZING
        logger.info("Initializing chain client for %s", self.endpoint)
        try:
            handle = self._transport_factory(self.endpoint)
        except Exception as exc:
            self._state = ConnectionState.UNINITIALIZED
            logger.error(
                "Failed to initialize client: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise ChainConnectionError(f"Failed to connect to {self.endpoint}: {exc}") from exc

        self._handle = handle
        self._state = ConnectionState.CONNECTED
        logger.info("Chain client initialized")
        return handle

    def get_handle(self) -> ChainHandle:
        if self._handle is None:
            raise NotInitializedError("Client not initialized. Call initialize() first.")
        return self._handle

    def verify(self) -> FinalizedBlock:
        """Read the finalized head to prove the handle is usable."""

        handle = self.get_handle()
        try:
            header = handle.get_finalized_block_header()
            block = FinalizedBlock(
                number=int(field_value(header, "number")),
                hash=str(field_value(header, "hash")),
            )
        except Exception as exc:
            logger.error(
                "Connection verification failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise ChainConnectionError(f"Connection verification failed: {exc}") from exc

        logger.info("Connection verified at block #%d (%s)", block.number, block.hash)
        return block

    def initialize_with_retry(
        self, max_attempts: int | None = None, delay_ms: int | None = None
    ) -> ChainHandle:
        """Initialize and verify, retrying with a fixed delay between attempts.

        When a schema is registered the typed surface is built as part of each
        attempt, so a node that accepts the connection but cannot serve the
        pallet metadata is retried like any other failure.
        """

        attempts = self.config.max_retries if max_attempts is None else max_attempts
        delay = self.config.retry_delay_ms if delay_ms is None else delay_ms
        if attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts}")

        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            logger.info("Connection attempt %d/%d...", attempt, attempts)
            try:
                handle = self.initialize()
                self.verify()
                if self._schema_factory is not None:
                    self.get_typed_surface()
                return handle
            except ChainConnectionError as exc:
                last_error = exc
                logger.warning("Attempt %d failed: %s", attempt, exc)
                self._release_handle()
                self._state = ConnectionState.UNINITIALIZED

            if attempt < attempts:
                logger.info("Retrying in %dms...", delay)
                self._sleep(delay / 1000)

        raise RetryExhaustedError(attempts, last_error) from last_error

    def register_schema(self, factory: SchemaFactory) -> None:
        """Register the typed-surface factory for the asset pallet."""

        self._schema_factory = factory
        self._close_surface()

    def get_typed_surface(self) -> TypedSurface:
        handle = self.get_handle()
        if self._schema_factory is None:
            raise SchemaNotRegisteredError(
                "No chain schema registered. Call register_schema() before querying pallets."
            )
        if self._surface is None:
            try:
                self._surface = self._schema_factory(handle)
            except PolkaPayError:
                raise
            except Exception as exc:
                raise ChainConnectionError(f"Failed to build typed surface: {exc}") from exc
            logger.debug("Typed surface initialized for %s", self.endpoint)
        return self._surface

    def disconnect(self) -> None:
        """Destroy the current handle; a no-op when already disconnected."""

        if self._handle is None:
            return
        handle = self._handle
        self._handle = None
        self._state = ConnectionState.DISCONNECTED
        try:
            self._teardown(handle)
        except Exception as exc:
            raise ChainConnectionError(f"Failed to close connection cleanly: {exc}") from exc
        logger.info("Client disconnected")

    def _release_handle(self) -> None:
        if self._handle is None:
            return
        handle = self._handle
        self._handle = None
        try:
            self._teardown(handle)
        except Exception:
            logger.warning("Failed to destroy previous handle", exc_info=True)

    def _teardown(self, handle: ChainHandle) -> None:
        # The handle is destroyed even when closing the surface fails.
        try:
            self._close_surface()
        finally:
            handle.destroy()

    def _close_surface(self) -> None:
        surface, self._surface = self._surface, None
        close = getattr(surface, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()
