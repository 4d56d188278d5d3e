"""Shared stubs standing in for the node, typed surface and keyring."""

from __future__ import annotations

import hashlib
from types import SimpleNamespace
from typing import Any

import pytest

from polkapay.config import ChainConfig
from polkapay.connection import ConnectionManager


class StubStream:
    """Push stream driven by the test through :meth:`emit` and :meth:`fail`.

    Values in ``replay`` are pushed synchronously while subscribing, as a
    client with buffered updates would.
    """

    def __init__(self, replay: list[Any] | None = None) -> None:
        self.on_next = None
        self.on_error = None
        self.released = 0
        self.replay = list(replay or [])

    def subscribe(self, on_next, on_error=None):
        self.on_next = on_next
        self.on_error = on_error
        for value in self.replay:
            on_next(value)
        return SimpleNamespace(unsubscribe=self._release)

    def _release(self) -> None:
        self.released += 1

    def emit(self, value: Any) -> None:
        self.on_next(value)

    def fail(self, exc: BaseException) -> None:
        self.on_error(exc)


class StubStorage:
    """Storage map keyed by the tuple of storage keys."""

    def __init__(self, entries: dict[tuple[Any, ...], Any] | None = None) -> None:
        self.entries = dict(entries or {})
        self.get_value_calls: list[tuple[tuple[Any, ...], str | None]] = []
        self.get_values_calls: list[tuple[list[tuple[Any, ...]], str | None]] = []
        self.streams: list[StubStream] = []
        self.error: Exception | None = None

    def get_value(self, *keys: Any, at: str | None = None) -> Any:
        self.get_value_calls.append((keys, at))
        if self.error is not None:
            raise self.error
        return self.entries.get(keys)

    def get_values(self, key_tuples, at: str | None = None) -> list[Any]:
        self.get_values_calls.append((list(key_tuples), at))
        if self.error is not None:
            raise self.error
        return [self.entries.get(tuple(keys)) for keys in key_tuples]

    def watch_value(self, *keys: Any, at: str = "best") -> StubStream:
        stream = StubStream()
        self.streams.append(stream)
        return stream


class StubCall:
    """Unsigned call returned by ``tx.Assets.transfer``."""

    def __init__(self, params: dict[str, Any]) -> None:
        self.params = params
        self.fee: int | Exception = 1_234_567_890
        self.signed: Any = b"\x04\x01\x02\x03"
        self.submit_result: Any = {
            "txHash": "0xfeed",
            "ok": True,
            "block": {"number": 7, "hash": "0xb7", "index": 2},
        }
        self.submit_error: Exception | None = None
        self.stream = StubStream()
        self.keypairs: list[Any] = []
        self.options: list[dict[str, Any]] = []

    def get_estimated_fees(self, sender_address: str) -> int:
        if isinstance(self.fee, Exception):
            raise self.fee
        return self.fee

    def sign(self, keypair, options):
        self.keypairs.append(keypair)
        self.options.append(options)
        return self.signed

    def sign_and_submit(self, keypair, options):
        self.keypairs.append(keypair)
        self.options.append(options)
        if self.submit_error is not None:
            raise self.submit_error
        return self.submit_result

    def sign_submit_and_watch(self, keypair, options):
        self.keypairs.append(keypair)
        if self.submit_error is not None:
            raise self.submit_error
        return self.stream


class StubSurface:
    def __init__(self) -> None:
        self.asset_accounts = StubStorage()
        self.system_accounts = StubStorage()
        self.calls: list[StubCall] = []
        self.closed = False
        self.query = SimpleNamespace(
            Assets=SimpleNamespace(Account=self.asset_accounts),
            System=SimpleNamespace(Account=self.system_accounts),
        )
        self.tx = SimpleNamespace(Assets=SimpleNamespace(transfer=self._transfer))

    def _transfer(self, **params: Any) -> StubCall:
        call = StubCall(params)
        self.calls.append(call)
        return call

    def close(self) -> None:
        self.closed = True


class StubHandle:
    def __init__(self, number: int = 42, block_hash: str = "0xabc") -> None:
        self.number = number
        self.block_hash = block_hash
        self.destroyed = False
        self.header_error: Exception | None = None

    def get_finalized_block_header(self) -> dict[str, Any]:
        if self.header_error is not None:
            raise self.header_error
        return {"number": self.number, "hash": self.block_hash}

    def destroy(self) -> None:
        self.destroyed = True


class StubKeyring:
    """Deterministic keyring: the public key is a hash of the secret."""

    def __init__(self) -> None:
        self.generated = 0

    def generate(self, words: int = 24) -> str:
        self.generated += 1
        return " ".join(f"word{self.generated}x{index}" for index in range(words))

    def derive_keypair(self, secret: str, ss58_prefix: int):
        if secret.startswith("invalid"):
            raise ValueError(f"cannot parse {secret}")
        public_key = hashlib.blake2b(secret.encode("utf-8"), digest_size=32).digest()
        return SimpleNamespace(public_key=public_key, secret=secret)

    def sign(self, keypair, data: bytes) -> bytes:
        return hashlib.blake2b(keypair.public_key + data, digest_size=64).digest()


@pytest.fixture
def chain_config() -> ChainConfig:
    return ChainConfig(
        endpoint="http://localhost:9933",
        ws_endpoint="ws://localhost:9944",
        max_retries=3,
        retry_delay_ms=10,
    )


@pytest.fixture
def stub_surface() -> StubSurface:
    return StubSurface()


@pytest.fixture
def stub_handle() -> StubHandle:
    return StubHandle()


@pytest.fixture
def keyring() -> StubKeyring:
    return StubKeyring()


@pytest.fixture
def connected_manager(
    chain_config: ChainConfig, stub_handle: StubHandle, stub_surface: StubSurface
) -> ConnectionManager:
    manager = ConnectionManager(
        chain_config,
        transport_factory=lambda endpoint: stub_handle,
        schema_factory=lambda handle: stub_surface,
        sleep=lambda seconds: None,
    )
    manager.initialize()
    return manager
