"""Build, price, sign and submit asset transfers.

A transfer moves through ``BUILT -> (FEE_ESTIMATED) -> SIGNED -> SUBMITTED
-> FINALIZED | REJECTED``. Fee estimation is a side read and leaves the
intent untouched. On-chain rejection is reported through
``TransactionResult.ok`` rather than raised; only infrastructure failures
raise.

Transfer amounts use the asset's decimals while fees are denominated in the
native asset, so the service carries one codec for each.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Callable, Mapping

from .address import ss58_decode
from .amounts import AmountCodec
from .connection import ConnectionManager
from .errors import FeeEstimationError, SigningError, SubmissionError
from .keyring import KeyMaterial, Keyring, derive_keypair
from .models import (
    BlockInfo,
    SignedTransaction,
    TransactionEvent,
    TransactionResult,
    TransferIntent,
    field_value,
)
from .rpc_client import RPCError, format_rpc_hint
from .streams import Subscription, open_subscription

logger = logging.getLogger(__name__)

Signer = KeyMaterial | str


def multi_address_id(address: str) -> dict[str, str]:
    """Wrap an account id in the ``MultiAddress::Id`` variant used by pallets."""

    return {"type": "Id", "value": address}


def extrinsic_hash(extrinsic_hex: str) -> str:
    """Return the blake2b-256 hash substrate uses to identify an extrinsic."""

    payload = bytes.fromhex(extrinsic_hex.removeprefix("0x"))
    return "0x" + hashlib.blake2b(payload, digest_size=32).hexdigest()


def _with_hint(message: str, exc: BaseException) -> str:
    hint = format_rpc_hint(exc) if isinstance(exc, RPCError) else None
    return f"{message}\nHint: {hint}" if hint else message


class TransactionService:
    """Transfer lifecycle for one fungible asset."""

    def __init__(
        self,
        connection: ConnectionManager,
        keyring: Keyring,
        *,
        asset_id: int | None = None,
        asset_codec: AmountCodec | None = None,
        native_codec: AmountCodec | None = None,
    ) -> None:
        config = connection.config
        self.connection = connection
        self.keyring = keyring
        self.asset_id = config.asset_id if asset_id is None else asset_id
        self.asset_codec = asset_codec or config.asset_codec
        self.native_codec = native_codec or config.native_codec
        self.min_balance = config.asset_min_balance
        self.ss58_prefix = config.ss58_prefix

    def build_transfer(self, destination: str, amount: str) -> TransferIntent:
        """Create an unsigned ``Assets.transfer`` for a human amount such as ``"5.25"``."""

        ss58_decode(destination)
        base_units = self.asset_codec.to_base_units(amount)
        if base_units <= 0:
            raise ValueError(f"Transfer amount must be positive, got {amount!r}")
        if base_units < self.min_balance:
            logger.warning(
                "Transfer of %s is below the asset minimum balance of %s; "
                "it fails unless %s already holds the asset",
                self.asset_codec.describe(base_units),
                self.asset_codec.describe(self.min_balance),
                destination,
            )

        surface = self.connection.get_typed_surface()
        target = multi_address_id(destination)
        call = surface.tx.Assets.transfer(id=self.asset_id, target=target, amount=base_units)
        logger.info(
            "Built transfer of %s (%d base units) to %s",
            self.asset_codec.describe(base_units),
            base_units,
            destination,
        )
        return TransferIntent(
            asset_id=self.asset_id,
            destination=destination,
            target=target,
            amount=base_units,
            call=call,
        )

    def estimate_fees(self, intent: TransferIntent, sender_address: str) -> int:
        """Price ``intent`` for ``sender_address`` in native base units."""

        ss58_decode(sender_address)
        try:
            fee = int(intent.call.get_estimated_fees(sender_address))
        except Exception as exc:
            logger.warning("Fee estimation failed for %s: %s", sender_address, exc)
            raise FeeEstimationError(
                _with_hint(f"Failed to estimate fees for sender {sender_address}: {exc}", exc)
            ) from exc
        logger.info("Estimated fees: %s (%d base units)", self.native_codec.describe_fee(fee), fee)
        return fee

    def sign(
        self,
        intent: TransferIntent,
        signer: Signer,
        options: Mapping[str, Any] | None = None,
    ) -> SignedTransaction:
        """Produce a submittable signed extrinsic without touching the network."""

        keypair = self._keypair(signer)
        try:
            signed = intent.call.sign(keypair, dict(options or {}))
        except Exception as exc:
            raise SigningError(f"Failed to sign transaction: {exc}") from exc

        if isinstance(signed, (bytes, bytearray)):
            signed = "0x" + bytes(signed).hex()
        if isinstance(signed, str):
            extrinsic = signed
            tx_hash = None
        else:
            extrinsic = str(field_value(signed, "extrinsic"))
            tx_hash = field_value(signed, "txHash", None) or field_value(signed, "tx_hash", None)
        if tx_hash is None:
            tx_hash = extrinsic_hash(extrinsic)
        logger.info("Transaction signed: %s", tx_hash)
        return SignedTransaction(extrinsic=extrinsic, tx_hash=tx_hash)

    def submit(
        self,
        intent: TransferIntent,
        signer: Signer,
        options: Mapping[str, Any] | None = None,
    ) -> TransactionResult:
        """Sign, broadcast and block until the chain reports finality."""

        keypair = self._keypair(signer)
        logger.info(
            "Submitting transfer of %s to %s",
            self.asset_codec.describe(intent.amount),
            intent.destination,
        )
        try:
            raw = intent.call.sign_and_submit(keypair, dict(options or {}))
        except Exception as exc:
            logger.error(
                "Failed to submit transaction: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise SubmissionError(_with_hint(f"Failed to submit transaction: {exc}", exc)) from exc

        result = _result_from_raw(raw)
        if result.ok:
            logger.info(
                "Transaction %s finalized in block #%s",
                result.tx_hash,
                result.block.number if result.block else "?",
            )
        else:
            logger.warning(
                "Transaction %s rejected on chain: %s", result.tx_hash, result.dispatch_error
            )
        return result

    def watch(
        self,
        intent: TransferIntent,
        signer: Signer,
        on_event: Callable[[TransactionEvent], None],
        options: Mapping[str, Any] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> Subscription:
        """Sign and submit, streaming lifecycle events to ``on_event``.

        The subscription closes itself after a terminal event and can be
        cancelled earlier by calling it.
        """

        keypair = self._keypair(signer)
        try:
            stream = intent.call.sign_submit_and_watch(keypair, dict(options or {}))
        except Exception as exc:
            raise SubmissionError(_with_hint(f"Failed to submit transaction: {exc}", exc)) from exc

        opened: list[Subscription] = []
        finished: list[TransactionEvent] = []

        def handle_event(event: TransactionEvent) -> None:
            if finished:
                return
            logger.info("Transaction event: %s", event.type)
            try:
                on_event(event)
            finally:
                if event.is_terminal:
                    finished.append(event)
                    if opened:
                        opened[0].unsubscribe()

        subscription = open_subscription(
            f"tx:{intent.destination}",
            stream,
            handle_event,
            transform=TransactionEvent.from_raw,
            on_error=on_error,
        )
        opened.append(subscription)
        # A synchronous stream may finish before the subscription is bound.
        if finished:
            subscription.unsubscribe()
        return subscription

    def transfer(
        self,
        destination: str,
        amount: str,
        signer: KeyMaterial,
        options: Mapping[str, Any] | None = None,
    ) -> TransactionResult:
        """Build, price (best effort) and submit a transfer in one call."""

        intent = self.build_transfer(destination, amount)
        try:
            self.estimate_fees(intent, signer.address)
        except FeeEstimationError:
            logger.info("Continuing without a fee estimate for %s", signer.address)
        return self.submit(intent, signer, options)

    def _keypair(self, signer: Signer) -> Any:
        if isinstance(signer, str):
            return derive_keypair(self.keyring, signer, self.ss58_prefix)
        if not signer.seed_phrase:
            raise SigningError(f"Key material for {signer.address} does not carry a secret")
        keypair = derive_keypair(self.keyring, signer.seed_phrase, signer.ss58_prefix)
        derived = KeyMaterial.from_keypair(keypair, signer.ss58_prefix)
        if derived.address != signer.address:
            raise SigningError(
                f"Secret derives {derived.address}, not the expected signer {signer.address}"
            )
        return keypair


def _result_from_raw(raw: Any) -> TransactionResult:
    ok = bool(field_value(raw, "ok", False))
    return TransactionResult(
        tx_hash=str(field_value(raw, "txHash", None) or field_value(raw, "tx_hash", "")),
        ok=ok,
        status="Success" if ok else "Failed",
        block=BlockInfo.from_raw(field_value(raw, "block", None)),
        dispatch_error=field_value(raw, "dispatchError", None) or field_value(raw, "dispatch_error", None),
    )
