"""Chain client and keyring backed by the ``substrate-interface`` library.

Install with ``pip install polkapay[substrate]``. The adapter supplies both the
connection handle and the typed surface built on top of it, so the connection
the manager verifies is the one every query and submission uses::

    manager = asset_hub_connection(config)
    manager.initialize_with_retry()

Storage subscriptions and watched submissions each run on their own
websocket connection and worker thread; unsubscribing closes that socket and
joins the thread.
"""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Any, Callable, Mapping

from substrateinterface import ExtrinsicReceipt, Keypair, KeypairType, SubstrateInterface

from .config import ChainConfig
from .connection import ChainHandle, ConnectionManager
from .transactions import extrinsic_hash

logger = logging.getLogger(__name__)

SubstrateFactory = Callable[[], SubstrateInterface]

STREAM_JOIN_TIMEOUT_SECONDS = 5.0


class SubstrateKeyring:
    """sr25519 keyring using ``Keypair.create_from_uri``."""

    def __init__(self, crypto_type: int = KeypairType.SR25519) -> None:
        self.crypto_type = crypto_type

    def generate(self, words: int = 24) -> str:
        return Keypair.generate_mnemonic(words)

    def derive_keypair(self, secret: str, ss58_prefix: int) -> Keypair:
        return Keypair.create_from_uri(secret, ss58_format=ss58_prefix, crypto_type=self.crypto_type)

    def sign(self, keypair: Keypair, data: bytes) -> bytes:
        return keypair.sign(data)


class SubstrateHandle:
    """Connection handle over one ``SubstrateInterface`` websocket.

    ``connect`` opens additional connections for streams, which need a socket
    of their own while the main one keeps serving queries.
    """

    def __init__(self, connect: SubstrateFactory) -> None:
        self.connect = connect
        self.substrate = connect()

    def get_finalized_block_header(self) -> dict[str, Any]:
        block_hash = self.substrate.get_chain_finalised_head()
        return {"number": self.substrate.get_block_number(block_hash), "hash": block_hash}

    def destroy(self) -> None:
        self.substrate.close()


def connect(endpoint: str, ss58_prefix: int = 0) -> SubstrateHandle:
    """Transport factory for :class:`ConnectionManager`."""

    return SubstrateHandle(partial(SubstrateInterface, url=endpoint, ss58_format=ss58_prefix))


class _Namespace:
    """Attribute access that builds children lazily (``query.Assets.Account``)."""

    def __init__(self, factory: Callable[[str], Any]) -> None:
        self._factory = factory

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._factory(name)


class _StreamHandle:
    def __init__(self, substrate: SubstrateInterface) -> None:
        self.stop = threading.Event()
        self.substrate = substrate
        self.thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._closed = False

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.substrate.close()

    def unsubscribe(self) -> None:
        self.stop.set()
        self.close()
        thread = self.thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(STREAM_JOIN_TIMEOUT_SECONDS)
            if thread.is_alive():
                logger.warning("Stream worker %s did not stop in time", thread.name)


class _ThreadedStream:
    """Push stream whose producer runs on a dedicated connection and thread."""

    def __init__(
        self,
        name: str,
        connect: SubstrateFactory,
        produce: Callable[[SubstrateInterface, Callable[[Any], None], threading.Event], None],
    ) -> None:
        self.name = name
        self._connect = connect
        self._produce = produce

    def subscribe(
        self,
        on_next: Callable[[Any], None],
        on_error: Callable[[BaseException], None] | None = None,
    ) -> _StreamHandle:
        handle = _StreamHandle(self._connect())

        def worker() -> None:
            try:
                self._produce(handle.substrate, on_next, handle.stop)
            except Exception as exc:
                if handle.stop.is_set():
                    logger.debug("Stream %s closed: %s", self.name, exc)
                elif on_error is not None:
                    on_error(exc)
                else:
                    logger.error("Stream %s failed: %s", self.name, exc)
            finally:
                handle.close()

        handle.thread = threading.Thread(target=worker, name=f"polkapay-{self.name}", daemon=True)
        handle.thread.start()
        return handle


def _block_hash(substrate: SubstrateInterface, at: str | None) -> str | None:
    if at in (None, "best"):
        return substrate.get_chain_head()
    if at == "finalized":
        return substrate.get_chain_finalised_head()
    return at


def _to_scale(value: Any) -> Any:
    # {"type": "Id", "value": addr} is the tagged enum form used by callers;
    # scalecodec expects {"Id": addr}.
    if isinstance(value, Mapping) and set(value) == {"type", "value"}:
        return {value["type"]: _to_scale(value["value"])}
    return value


class StorageItem:
    def __init__(self, surface: "SubstrateTypedSurface", pallet: str, storage: str) -> None:
        self.surface = surface
        self.pallet = pallet
        self.storage = storage

    def get_value(self, *keys: Any, at: str | None = None) -> Any:
        substrate = self.surface.substrate
        result = substrate.query(
            self.pallet, self.storage, params=list(keys), block_hash=_block_hash(substrate, at)
        )
        return None if result is None else result.value

    def get_values(self, key_tuples: list[tuple[Any, ...]], at: str | None = None) -> list[Any]:
        substrate = self.surface.substrate
        block_hash = _block_hash(substrate, at)
        storage_keys = [
            substrate.create_storage_key(self.pallet, self.storage, list(keys), block_hash=block_hash)
            for keys in key_tuples
        ]
        results = substrate.query_multi(storage_keys, block_hash=block_hash)
        return [None if obj is None else obj.value for _, obj in results]

    def watch_value(self, *keys: Any, at: str = "best") -> _ThreadedStream:
        if at != "best":
            logger.debug("Storage subscriptions follow the best block; ignoring at=%s", at)

        def produce(
            substrate: SubstrateInterface, emit: Callable[[Any], None], stop: threading.Event
        ) -> None:
            def handler(obj: Any, update_nr: int, subscription_id: str) -> Any:
                if stop.is_set():
                    return True
                emit(None if obj is None else obj.value)
                return None

            substrate.query(self.pallet, self.storage, params=list(keys), subscription_handler=handler)

        return _ThreadedStream(f"{self.pallet}.{self.storage}", self.surface.connect, produce)


def _watch_status(status: Any) -> str | None:
    """Map an ``author_extrinsicUpdate`` status onto an event type."""

    if status in ("ready", "future"):
        return "broadcasted"
    if status in ("invalid", "dropped"):
        return status
    if status == "usurped":
        return "dropped"
    if isinstance(status, Mapping):
        if "broadcast" in status:
            return "broadcasted"
        if "inBlock" in status:
            return "in_block"
        if "finalized" in status:
            return "finalized"
        if "usurped" in status or "finalityTimeout" in status or "retracted" in status:
            return "dropped"
    return None


class SubstrateCall:
    """Unsigned call with the pricing and submission operations of an intent."""

    def __init__(
        self, surface: "SubstrateTypedSurface", pallet: str, function: str, params: Mapping[str, Any]
    ) -> None:
        self.surface = surface
        self.pallet = pallet
        self.function = function
        self.params = {key: _to_scale(value) for key, value in params.items()}

    def _compose(self, substrate: SubstrateInterface) -> Any:
        return substrate.compose_call(
            call_module=self.pallet, call_function=self.function, call_params=self.params
        )

    def _signed(self, substrate: SubstrateInterface, keypair: Keypair, options: Mapping[str, Any]) -> Any:
        return substrate.create_signed_extrinsic(
            call=self._compose(substrate),
            keypair=keypair,
            era=options.get("era"),
            nonce=options.get("nonce"),
            tip=options.get("tip", 0),
        )

    def get_estimated_fees(self, sender_address: str) -> int:
        substrate = self.surface.substrate
        info = substrate.get_payment_info(
            call=self._compose(substrate), keypair=Keypair(ss58_address=sender_address)
        )
        if not info or "partialFee" not in info:
            raise ValueError(f"Node returned no fee information for {sender_address}")
        return int(info["partialFee"])

    def sign(self, keypair: Keypair, options: Mapping[str, Any]) -> str:
        return str(self._signed(self.surface.substrate, keypair, options).data)

    def sign_and_submit(self, keypair: Keypair, options: Mapping[str, Any]) -> dict[str, Any]:
        substrate = self.surface.substrate
        extrinsic = self._signed(substrate, keypair, options)
        receipt = substrate.submit_extrinsic(
            extrinsic, wait_for_inclusion=True, wait_for_finalization=True
        )
        return _receipt_payload(substrate, receipt)

    def sign_submit_and_watch(self, keypair: Keypair, options: Mapping[str, Any]) -> _ThreadedStream:
        def produce(
            substrate: SubstrateInterface, emit: Callable[[Any], None], stop: threading.Event
        ) -> None:
            extrinsic = self._signed(substrate, keypair, options)
            encoded = str(extrinsic.data)
            tx_hash = extrinsic_hash(encoded)
            emit({"type": "signed", "txHash": tx_hash})

            def handler(message: dict[str, Any], update_nr: int, subscription_id: str) -> Any:
                if stop.is_set():
                    return {"cancelled": True}
                status = message.get("params", {}).get("result")
                event_type = _watch_status(status)
                if event_type in ("broadcasted", "in_block"):
                    emit({"type": event_type, "txHash": tx_hash, "found": True})
                elif event_type == "finalized":
                    return {"finalized": status["finalized"]}
                elif event_type is not None:
                    return {"terminal": event_type}
                return None

            outcome = substrate.rpc_request(
                "author_submitAndWatchExtrinsic", [encoded], result_handler=handler
            )
            if stop.is_set() or not isinstance(outcome, dict):
                return
            if "finalized" in outcome:
                receipt = ExtrinsicReceipt(
                    substrate=substrate, extrinsic_hash=tx_hash, block_hash=outcome["finalized"]
                )
                emit({"type": "finalized", **_receipt_payload(substrate, receipt)})
            elif "terminal" in outcome:
                emit({"type": outcome["terminal"], "txHash": tx_hash, "ok": False})

        return _ThreadedStream(f"{self.pallet}.{self.function}", self.surface.connect, produce)


def _receipt_payload(substrate: SubstrateInterface, receipt: ExtrinsicReceipt) -> dict[str, Any]:
    ok = bool(receipt.is_success)
    return {
        "txHash": receipt.extrinsic_hash,
        "ok": ok,
        "block": {
            "number": substrate.get_block_number(receipt.block_hash),
            "hash": receipt.block_hash,
            "index": receipt.extrinsic_idx,
        },
        "dispatchError": None if ok else receipt.error_message,
    }


class SubstrateTypedSurface:
    """``query``/``tx`` namespaces over the manager's substrate handle."""

    def __init__(self, handle: SubstrateHandle) -> None:
        self.handle = handle
        self.substrate = handle.substrate
        self.connect = handle.connect
        self.query = _Namespace(
            lambda pallet: _Namespace(lambda storage: StorageItem(self, pallet, storage))
        )
        self.tx = _Namespace(
            lambda pallet: _Namespace(
                lambda function: lambda **params: SubstrateCall(self, pallet, function, params)
            )
        )


def asset_hub_schema(config: ChainConfig) -> Callable[[ChainHandle], SubstrateTypedSurface]:
    """Return the typed-surface factory for ``ConnectionManager.register_schema``."""

    def factory(handle: ChainHandle) -> SubstrateTypedSurface:
        if not isinstance(handle, SubstrateHandle):
            raise TypeError(
                f"AssetHub schema needs a substrate websocket handle, got {type(handle).__name__}"
            )
        logger.info("Loading AssetHub metadata for asset %d", config.asset_id)
        handle.substrate.init_runtime()
        return SubstrateTypedSurface(handle)

    return factory


def asset_hub_connection(config: ChainConfig, **kwargs: Any) -> ConnectionManager:
    """Build a manager whose verified handle also serves the typed surface."""

    manager = ConnectionManager(
        config,
        transport_factory=partial(connect, ss58_prefix=config.ss58_prefix),
        endpoint=config.subscription_endpoint,
        **kwargs,
    )
    manager.register_schema(asset_hub_schema(config))
    return manager
