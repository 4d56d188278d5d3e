"""Read-only queries against ``Assets.Account`` storage.

A missing storage entry means the account was never initialised for the
asset. That is a normal answer (balance ``0``, ``exists=False``); only
transport and decoding failures raise.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from .address import InvalidAddressError, ss58_decode
from .amounts import AmountCodec
from .connection import ConnectionManager
from .errors import PolkaPayError, QueryError
from .models import AccountSnapshot, AccountStatus, enum_tag, field_value
from .streams import Subscription, open_subscription

logger = logging.getLogger(__name__)

BEST_BLOCK = "best"
FINALIZED_BLOCK = "finalized"


def balance_from_entry(entry: Any) -> int:
    """Return the balance stored in an ``Assets.Account`` entry (``0`` if absent)."""

    if entry is None:
        return 0
    return int(field_value(entry, "balance", 0) or 0)


class AccountService:
    """Balance and account lookups for one fungible asset."""

    def __init__(
        self,
        connection: ConnectionManager,
        *,
        asset_id: int | None = None,
        codec: AmountCodec | None = None,
        default_at: str = BEST_BLOCK,
    ) -> None:
        config = connection.config
        self.connection = connection
        self.asset_id = config.asset_id if asset_id is None else asset_id
        self.codec = codec or config.asset_codec
        self.native_codec = config.native_codec
        self.default_at = default_at

    def get_balance(self, address: str, at: str | None = None) -> int:
        entry = self._read_entry(address, at)
        balance = balance_from_entry(entry)
        logger.debug("Balance for %s: %s", address, self.codec.describe(balance))
        return balance

    def get_batch_balances(self, addresses: Iterable[str], at: str | None = None) -> dict[str, int]:
        """Read many balances in one round trip, keeping the input order."""

        unique = list(dict.fromkeys(addresses))
        if not unique:
            return {}
        for address in unique:
            _check_address(address)

        storage = self._account_storage()
        keys = [(self.asset_id, address) for address in unique]
        try:
            entries = list(storage.get_values(keys, at=at or self.default_at))
        except Exception as exc:
            logger.error(
                "Batch balance query failed: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise QueryError(f"Failed to query {len(keys)} balances: {exc}") from exc
        if len(entries) != len(unique):
            raise QueryError(
                f"Batch query returned {len(entries)} entries for {len(unique)} addresses"
            )
        return {address: balance_from_entry(entry) for address, entry in zip(unique, entries)}

    def account_exists(self, address: str, at: str | None = None) -> bool:
        """True when the asset account has a storage entry, even with a zero balance."""

        return self._read_entry(address, at) is not None

    def get_account_details(self, address: str, at: str | None = None) -> AccountSnapshot:
        entry = self._read_entry(address, at)
        if entry is None:
            return AccountSnapshot(
                exists=False,
                address=address,
                balance=0,
                formatted_balance=self.codec.to_decimal_string(0),
            )
        balance = balance_from_entry(entry)
        return AccountSnapshot(
            exists=True,
            address=address,
            balance=balance,
            formatted_balance=self.codec.to_decimal_string(balance),
            status=AccountStatus.parse(field_value(entry, "status")),
            reason=enum_tag(field_value(entry, "reason")),
        )

    def subscribe_to_balance(
        self,
        address: str,
        on_change: Callable[[int], None],
        at: str = BEST_BLOCK,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> Subscription:
        """Push every observed balance (the current one first) to ``on_change``."""

        _check_address(address)
        storage = self._account_storage()
        try:
            stream = storage.watch_value(self.asset_id, address, at=at)
        except Exception as exc:
            raise QueryError(f"Failed to subscribe to balance of {address}: {exc}") from exc
        logger.info("Watching %s balance for %s", self.codec.symbol, address)
        return open_subscription(
            f"balance:{address}",
            stream,
            on_change,
            transform=balance_from_entry,
            on_error=on_error,
        )

    def get_native_balance(self, address: str, at: str | None = None) -> int:
        """Free balance of the native fee asset from ``System.Account``."""

        _check_address(address)
        storage = self.connection.get_typed_surface().query.System.Account
        try:
            entry = storage.get_value(address, at=at or self.default_at)
        except Exception as exc:
            raise QueryError(f"Failed to query native balance for {address}: {exc}") from exc
        if entry is None:
            return 0
        data = field_value(entry, "data", {})
        return int(field_value(data, "free", 0) or 0)

    def format_balance(self, base_units: int) -> str:
        return self.codec.to_decimal_string(base_units)

    def _account_storage(self) -> Any:
        return self.connection.get_typed_surface().query.Assets.Account

    def _read_entry(self, address: str, at: str | None) -> Any:
        _check_address(address)
        storage = self._account_storage()
        try:
            return storage.get_value(self.asset_id, address, at=at or self.default_at)
        except PolkaPayError:
            raise
        except Exception as exc:
            logger.error(
                "Failed to query balance for %s: %s",
                address,
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise QueryError(f"Failed to query balance for {address}: {exc}") from exc


def _check_address(address: str) -> None:
    try:
        ss58_decode(address)
    except InvalidAddressError:
        logger.warning("Rejected malformed address %r", address)
        raise
