import pytest

from polkapay.config import ChainConfig
from polkapay.connection import ConnectionManager, ConnectionState
from polkapay.errors import (
    ChainConnectionError,
    NotInitializedError,
    RetryExhaustedError,
    SchemaNotRegisteredError,
)
from polkapay.models import FinalizedBlock
from polkapay.rpc_client import SubstrateRPCClient

from conftest import StubHandle, StubSurface


def _manager(config: ChainConfig, factory, sleeps: list[float] | None = None, **kwargs) -> ConnectionManager:
    recorded = sleeps if sleeps is not None else []
    return ConnectionManager(config, transport_factory=factory, sleep=recorded.append, **kwargs)


def test_get_handle_before_initialize_raises(chain_config: ChainConfig) -> None:
    manager = _manager(chain_config, lambda endpoint: StubHandle())

    with pytest.raises(NotInitializedError, match="Call initialize"):
        manager.get_handle()
    assert manager.state is ConnectionState.UNINITIALIZED


def test_initialize_and_verify(chain_config: ChainConfig) -> None:
    endpoints: list[str] = []

    def factory(endpoint: str) -> StubHandle:
        endpoints.append(endpoint)
        return StubHandle(number=1234, block_hash="0xhead")

    manager = _manager(chain_config, factory)
    handle = manager.initialize()

    assert endpoints == ["http://localhost:9933"]
    assert manager.get_handle() is handle
    assert manager.is_connected
    assert manager.verify() == FinalizedBlock(number=1234, hash="0xhead")


def test_initialize_replaces_existing_handle(chain_config: ChainConfig) -> None:
    handles: list[StubHandle] = []

    def factory(endpoint: str) -> StubHandle:
        handles.append(StubHandle())
        return handles[-1]

    manager = _manager(chain_config, factory)
    first = manager.initialize()
    second = manager.initialize()

    assert first is not second
    assert handles[0].destroyed is True
    assert manager.get_handle() is second


def test_initialize_wraps_factory_failure(chain_config: ChainConfig) -> None:
    def factory(endpoint: str) -> StubHandle:
        raise OSError("connection refused")

    manager = _manager(chain_config, factory)

    with pytest.raises(ChainConnectionError, match="connection refused"):
        manager.initialize()
    assert manager.state is ConnectionState.UNINITIALIZED


def test_verify_failure_is_connection_error(chain_config: ChainConfig) -> None:
    handle = StubHandle()
    handle.header_error = TimeoutError("no header")
    manager = _manager(chain_config, lambda endpoint: handle)
    manager.initialize()

    with pytest.raises(ChainConnectionError, match="verification failed"):
        manager.verify()


def test_retry_gives_up_after_max_attempts(chain_config: ChainConfig) -> None:
    attempts: list[str] = []
    sleeps: list[float] = []

    def factory(endpoint: str) -> StubHandle:
        attempts.append(endpoint)
        raise OSError("node unreachable")

    manager = _manager(chain_config, factory, sleeps)

    with pytest.raises(RetryExhaustedError) as excinfo:
        manager.initialize_with_retry(max_attempts=3, delay_ms=250)

    assert len(attempts) == 3
    assert sleeps == [0.25, 0.25]
    assert excinfo.value.attempts == 3
    assert "after 3 attempts" in str(excinfo.value)
    assert "node unreachable" in str(excinfo.value)
    assert isinstance(excinfo.value.last_error, ChainConnectionError)
    assert manager.state is ConnectionState.UNINITIALIZED


def test_retry_succeeds_on_later_attempt(chain_config: ChainConfig) -> None:
    handles: list[StubHandle] = []
    sleeps: list[float] = []

    def factory(endpoint: str) -> StubHandle:
        handle = StubHandle()
        if not handles:
            handle.header_error = TimeoutError("stalled")
        handles.append(handle)
        return handle

    manager = _manager(chain_config, factory, sleeps)
    handle = manager.initialize_with_retry()

    assert handle is handles[1]
    assert handles[0].destroyed is True
    assert sleeps == [chain_config.retry_delay_ms / 1000]
    assert manager.is_connected


def test_retry_uses_configured_attempts(chain_config: ChainConfig) -> None:
    calls: list[str] = []

    def factory(endpoint: str) -> StubHandle:
        calls.append(endpoint)
        raise OSError("down")

    with pytest.raises(RetryExhaustedError):
        _manager(chain_config, factory).initialize_with_retry()

    assert len(calls) == chain_config.max_retries


def test_retry_rejects_non_positive_attempts(chain_config: ChainConfig) -> None:
    manager = _manager(chain_config, lambda endpoint: StubHandle())

    with pytest.raises(ValueError):
        manager.initialize_with_retry(max_attempts=0)


def test_disconnect_is_idempotent(chain_config: ChainConfig) -> None:
    handle = StubHandle()
    manager = _manager(chain_config, lambda endpoint: handle)
    manager.disconnect()
    manager.initialize()

    manager.disconnect()
    manager.disconnect()

    assert handle.destroyed is True
    assert manager.state is ConnectionState.DISCONNECTED
    with pytest.raises(NotInitializedError):
        manager.get_handle()


def test_typed_surface_requires_registered_schema(chain_config: ChainConfig) -> None:
    manager = _manager(chain_config, lambda endpoint: StubHandle())
    manager.initialize()

    with pytest.raises(SchemaNotRegisteredError):
        manager.get_typed_surface()

    surface = StubSurface()
    manager.register_schema(lambda handle: surface)

    assert manager.get_typed_surface() is surface
    assert manager.get_typed_surface() is surface


def test_typed_surface_is_closed_with_the_connection(chain_config: ChainConfig) -> None:
    surfaces: list[StubSurface] = []

    def schema(handle: StubHandle) -> StubSurface:
        surfaces.append(StubSurface())
        return surfaces[-1]

    manager = _manager(chain_config, lambda endpoint: StubHandle(), schema_factory=schema)
    manager.initialize()
    manager.get_typed_surface()
    manager.initialize()
    manager.get_typed_surface()

    with manager:
        pass

    assert [surface.closed for surface in surfaces] == [True, True]
    assert manager.state is ConnectionState.DISCONNECTED


def test_default_transport_is_json_rpc_client(chain_config: ChainConfig) -> None:
    manager = ConnectionManager(chain_config)
    handle = manager.initialize()

    assert isinstance(handle, SubstrateRPCClient)
    assert handle.endpoint == chain_config.endpoint
    assert handle.timeout == chain_config.timeout_seconds

    manager.disconnect()
    assert handle.closed is True


def test_endpoint_override_is_dialled_instead_of_config(chain_config: ChainConfig) -> None:
    endpoints: list[str] = []

    def factory(endpoint: str) -> StubHandle:
        endpoints.append(endpoint)
        return StubHandle()

    manager = _manager(chain_config, factory, endpoint=chain_config.subscription_endpoint)
    manager.initialize()

    assert endpoints == ["ws://localhost:9944"]
    assert manager.endpoint == "ws://localhost:9944"


def test_retry_builds_the_typed_surface_in_each_attempt(chain_config: ChainConfig) -> None:
    handles: list[StubHandle] = []
    built: list[StubHandle] = []

    def factory(endpoint: str) -> StubHandle:
        handles.append(StubHandle())
        return handles[-1]

    def schema(handle: StubHandle) -> StubSurface:
        if not built:
            built.append(handle)
            raise OSError("metadata request timed out")
        built.append(handle)
        return StubSurface()

    manager = _manager(chain_config, factory, schema_factory=schema)
    handle = manager.initialize_with_retry()

    assert built == handles
    assert handle is handles[1]
    assert handles[0].destroyed is True
    assert isinstance(manager.get_typed_surface(), StubSurface)
    assert len(built) == 2


def test_retry_gives_up_when_surface_never_builds(chain_config: ChainConfig) -> None:
    handles: list[StubHandle] = []

    def factory(endpoint: str) -> StubHandle:
        handles.append(StubHandle())
        return handles[-1]

    def schema(handle: StubHandle) -> StubSurface:
        raise OSError("metadata request timed out")

    manager = _manager(chain_config, factory, schema_factory=schema)

    with pytest.raises(RetryExhaustedError, match="metadata request timed out"):
        manager.initialize_with_retry()

    assert len(handles) == chain_config.max_retries
    assert all(handle.destroyed for handle in handles)
    assert manager.state is ConnectionState.UNINITIALIZED


class BrokenSurface(StubSurface):
    def close(self) -> None:
        raise OSError("socket already gone")


def test_disconnect_destroys_handle_when_surface_close_fails(chain_config: ChainConfig) -> None:
    handle = StubHandle()
    manager = _manager(chain_config, lambda endpoint: handle, schema_factory=lambda h: BrokenSurface())
    manager.initialize()
    manager.get_typed_surface()

    with pytest.raises(ChainConnectionError, match="socket already gone"):
        manager.disconnect()

    assert handle.destroyed is True
    assert manager.state is ConnectionState.DISCONNECTED
    manager.disconnect()


def test_reinitialize_destroys_handle_when_surface_close_fails(chain_config: ChainConfig) -> None:
    handles: list[StubHandle] = []

    def factory(endpoint: str) -> StubHandle:
        handles.append(StubHandle())
        return handles[-1]

    manager = _manager(chain_config, factory, schema_factory=lambda h: BrokenSurface())
    manager.initialize()
    manager.get_typed_surface()
    manager.initialize()

    assert handles[0].destroyed is True
    assert manager.get_handle() is handles[1]
